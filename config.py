"""
Experiment Configuration

All knobs of the sickle cell experiment live here. The module-level
constants are the defaults used by the notebook-style run; the
ExperimentConfig dataclass bundles them so the training script can
override any of them from the command line.
"""

import os
from dataclasses import dataclass, field
from typing import Optional, Tuple

import torch


# =============================================================================
# DEFAULTS
# =============================================================================

IMAGE_SIZE = 256           # Images are resized to IMAGE_SIZE x IMAGE_SIZE
CHANNELS = 3               # RGB
BATCH_SIZE = 32            # Images per batch
EPOCHS = 5                 # Fixed training budget, no early stopping
LEARNING_RATE = 0.001      # Adam default
SEED = 42

# Augmentation ranges
RESCALE = 1.0 / 255        # Pixel values 0-255 -> 0-1
SHEAR_RANGE = 0.1          # Shear angle in degrees, sampled from [-0.1, 0.1]
ZOOM_RANGE = 0.2           # Zoom factor sampled from [0.8, 1.2]
BRIGHTNESS_RANGE = (0.5, 1.5)

# Prediction score >= THRESHOLD -> class 1 (SCD)
THRESHOLD = 0.5

NUM_WORKERS = 0

# Class names in label order: control = 0, scd = 1
CLASS_NAMES = ("control", "scd")


def ensure_parent_dir(filepath):
    """Create the directory a file will be written into."""
    directory = os.path.dirname(filepath)
    if directory:
        os.makedirs(directory, exist_ok=True)
    return filepath


def default_device():
    """Pick the GPU when there is one."""
    return torch.device("cuda" if torch.cuda.is_available() else "cpu")


@dataclass
class ExperimentConfig:
    """Everything one experiment run needs to know."""

    train_dir: str = "data/train"
    val_dir: str = "data/val"
    output_dir: str = "outputs"
    weights_path: str = "weights/final_model.pth"

    image_size: int = IMAGE_SIZE
    batch_size: int = BATCH_SIZE
    epochs: int = EPOCHS
    learning_rate: float = LEARNING_RATE
    seed: int = SEED
    num_workers: int = NUM_WORKERS

    rescale: float = RESCALE
    shear_range: float = SHEAR_RANGE
    zoom_range: float = ZOOM_RANGE
    brightness_range: Optional[Tuple[float, float]] = BRIGHTNESS_RANGE
    augment_validation: bool = True

    threshold: float = THRESHOLD
    strict_labels: bool = False

    device: torch.device = field(default_factory=default_device)

    @property
    def input_shape(self):
        """(channels, height, width) as the model sees it."""
        return (CHANNELS, self.image_size, self.image_size)
