"""
Pytest configuration and fixtures.

Image directories are generated on the fly with Pillow so the tests
don't need the microscopy dataset.
"""

import os

import pytest
import torch
import torch.nn as nn
from PIL import Image

from config import ExperimentConfig


# Small images keep the CNN fast: 32 -> 15 -> 6 -> 2 after the conv blocks
TEST_IMAGE_SIZE = 32


def write_image(path, value=128, size=(40, 40)):
    """Write a uniform RGB image (format picked from the extension)."""
    os.makedirs(os.path.dirname(path), exist_ok=True)
    Image.new("RGB", size, color=(value, value, value)).save(path)
    return path


def make_class_tree(root, files):
    """
    Create a class-partitioned image directory.

    Args:
        root: Directory to create
        files: Dict of class name -> list of filenames (may be empty)
    """
    for class_name, filenames in files.items():
        class_dir = os.path.join(root, class_name)
        os.makedirs(class_dir, exist_ok=True)
        for i, filename in enumerate(filenames):
            # Give each class its own gray level so the classes are separable
            value = 60 if class_name == "control" else 200
            write_image(os.path.join(class_dir, filename), value=value + i)
    return str(root)


class ConstantModel(nn.Module):
    """Stand-in classifier that predicts the same probability for every image."""

    def __init__(self, probability):
        super().__init__()
        self.probability = probability

    def forward(self, x):
        return torch.full((x.size(0), 1), self.probability, dtype=torch.float32)


@pytest.fixture(scope="session")
def device():
    """Get the device to run tests on."""
    return torch.device("cuda" if torch.cuda.is_available() else "cpu")


@pytest.fixture
def val_dir(tmp_path):
    """Validation directory with 2 control and 2 SCD images."""
    return make_class_tree(tmp_path / "val", {
        "control": ["control_1.jpg", "control_2.jpg"],
        "scd": ["scd_1.jpg", "scd_2.jpg"],
    })


@pytest.fixture
def train_dir(tmp_path):
    """Training directory with 4 images per class, mixed formats."""
    return make_class_tree(tmp_path / "train", {
        "control": ["control_1.jpg", "control_2.jpg", "control_3.tif", "control_4.TIF"],
        "scd": ["scd_1.jpg", "scd_2.jpg", "scd_3.tif", "scd_4.jpg"],
    })


@pytest.fixture
def small_config(tmp_path, train_dir, val_dir):
    """Config for a quick run on the generated directories."""
    return ExperimentConfig(
        train_dir=train_dir,
        val_dir=val_dir,
        output_dir=str(tmp_path / "outputs"),
        weights_path=str(tmp_path / "weights" / "final_model.pth"),
        image_size=TEST_IMAGE_SIZE,
        batch_size=4,
        epochs=1,
        device=torch.device("cpu"),
    )
