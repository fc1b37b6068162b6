"""
Label Extractor

Derives ground-truth labels from validation filenames, independently of
the class indices the data loader assigns. Having a second label source
lets the evaluation cross-check the two.

A filename containing "scd" is labelled 1, otherwise one containing
"control" is labelled 0. Anything else is skipped (or rejected in strict
mode).
"""

import warnings
from typing import List, NamedTuple, Optional, Sequence


SCD_TOKEN = "scd"
CONTROL_TOKEN = "control"


class LabelRow(NamedTuple):
    """One label table entry."""

    index: int      # Position in the validation supply
    filename: str
    label: int      # 0 = control, 1 = scd


def label_from_filename(filename) -> Optional[int]:
    """Return 1 for "scd", 0 for "control" (checked in that order), else None."""
    if SCD_TOKEN in filename:
        return 1
    if CONTROL_TOKEN in filename:
        return 0
    return None


def extract_labels(filenames: Sequence[str], strict: bool = False) -> List[LabelRow]:
    """
    Build the label table for an ordered filename listing.

    Args:
        filenames: Validation filenames in supply order
        strict: Raise instead of skipping filenames that match neither token

    Returns:
        List of LabelRow in the same order as filenames

    Raises:
        ValueError: In strict mode, for the first unmatched filename
    """
    table = []
    skipped = []

    for index, filename in enumerate(filenames):
        label = label_from_filename(filename)
        if label is None:
            if strict:
                raise ValueError(
                    f"Filename matches neither '{SCD_TOKEN}' nor '{CONTROL_TOKEN}': {filename}"
                )
            skipped.append(filename)
            continue
        table.append(LabelRow(index, filename, label))

    if skipped:
        warnings.warn(
            f"Skipped {len(skipped)} filename(s) without a class token: "
            f"{', '.join(skipped[:5])}{' ...' if len(skipped) > 5 else ''}"
        )

    return table
