"""
Evaluation

Runs strictly after training, with the model frozen:

- aggregate loss / accuracy over the validation supply
- per-sample SCD probabilities
- thresholding into binary predictions
- joining predictions with the filename-derived label table
- recomputing accuracy from the joined table for cross-checking
"""

import numpy as np
import pandas as pd
import torch
from sklearn.metrics import confusion_matrix, precision_recall_fscore_support
from tqdm import tqdm

from config import THRESHOLD, ensure_parent_dir


PREDICTION_COLUMNS = ["index", "filename", "label", "probability", "prediction"]


def threshold_predictions(scores, threshold=THRESHOLD):
    """
    Turn probability scores into binary classes.

    score >= threshold -> 1 (SCD), otherwise 0 (control).
    Works on numpy arrays, lists and torch tensors.
    """
    if isinstance(scores, torch.Tensor):
        return (scores >= threshold).float()
    return (np.asarray(scores, dtype=np.float64) >= threshold).astype(int)


def evaluate_and_predict(model, loader, criterion, device, threshold=THRESHOLD):
    """
    Aggregate loss, accuracy and per-sample scores from a single pass.

    Validation images may be augmented, so two passes see different
    inputs. Scores and accuracy returned here describe the same images.

    Args:
        model: The trained network
        loader: Validation DataLoader (no shuffling)
        criterion: Loss function (BCE)
        device: Device to run on (CPU/GPU)
        threshold: Decision threshold for accuracy

    Returns:
        avg_loss: Average loss per sample
        accuracy: Fraction of correctly classified samples
        scores: 1-D numpy array of SCD probabilities in loader order
    """
    model.eval()  # Weights are frozen from here on

    running_loss = 0.0
    correct = 0
    total = 0
    scores = []

    with torch.no_grad():
        progress_bar = tqdm(loader, desc="Evaluating", leave=False)

        for images, labels in progress_bar:
            images = images.to(device)
            labels = labels.to(device)

            outputs = model(images)
            loss = criterion(outputs, labels)

            running_loss += loss.item() * images.size(0)
            predictions = threshold_predictions(outputs, threshold)
            correct += (predictions == labels).sum().item()
            total += labels.size(0)
            scores.append(outputs.view(-1).cpu().numpy())

    if total == 0:
        raise ValueError("Cannot evaluate on an empty dataset")

    return running_loss / total, correct / total, np.concatenate(scores)


def evaluate(model, loader, criterion, device, threshold=THRESHOLD):
    """
    Aggregate loss and accuracy over one pass of the loader.

    Returns:
        avg_loss: Average loss per sample
        accuracy: Fraction of correctly classified samples
    """
    avg_loss, accuracy, _ = evaluate_and_predict(model, loader, criterion, device, threshold)
    return avg_loss, accuracy


def build_prediction_table(label_table, scores, threshold=THRESHOLD):
    """
    Join the label table with prediction scores.

    Each label row carries its position in the validation supply, and the
    score at that position is the one attached to it. This only holds
    while the validation loader is unshuffled.

    Args:
        label_table: Sequence of LabelRow from labels.extract_labels
        scores: Per-sample probabilities from evaluate_and_predict
        threshold: Decision threshold

    Returns:
        pandas DataFrame with PREDICTION_COLUMNS, one row per label row

    Raises:
        ValueError: If a label row points past the end of scores
    """
    scores = np.asarray(scores, dtype=np.float64)

    rows = []
    for row in label_table:
        if row.index >= len(scores):
            raise ValueError(
                f"Label row {row.index} ({row.filename}) has no prediction; "
                f"only {len(scores)} scores available"
            )
        rows.append((row.index, row.filename, row.label, scores[row.index]))

    table = pd.DataFrame(rows, columns=PREDICTION_COLUMNS[:4])
    table["label"] = table["label"].astype(int)
    table["probability"] = table["probability"].astype(float)
    table["prediction"] = threshold_predictions(table["probability"].to_numpy(), threshold)
    return table


def recompute_accuracy(table):
    """Fraction of rows where prediction equals the filename-derived label."""
    if len(table) == 0:
        raise ValueError("Cannot compute accuracy of an empty prediction table")
    return float((table["prediction"] == table["label"]).mean())


def compute_confusion_matrix(table):
    """
    2x2 counts of ground truth (rows) vs prediction (columns).

    Both classes are always present in the matrix, so the cells sum to
    the number of rows in the table.
    """
    return confusion_matrix(table["label"], table["prediction"], labels=[0, 1])


def classification_summary(table):
    """Precision, recall and F1 for the SCD class plus the confusion matrix."""
    precision, recall, f1, _ = precision_recall_fscore_support(
        table["label"],
        table["prediction"],
        pos_label=1,
        average="binary",
        zero_division=0,
    )
    return {
        "precision": float(precision),
        "recall": float(recall),
        "f1": float(f1),
        "confusion_matrix": compute_confusion_matrix(table).tolist(),
    }


def save_predictions(table, filepath):
    """
    Write the prediction table as CSV.

    Args:
        table: DataFrame from build_prediction_table
        filepath: Destination path (parent directories are created)
    """
    ensure_parent_dir(filepath)
    table.to_csv(filepath, index=False, columns=PREDICTION_COLUMNS)
