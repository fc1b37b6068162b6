"""
Dataset Loader

Reads red blood cell images from a class-partitioned directory:

    root/
        control/  img_001.jpg ...
        scd/      img_101.tif ...

Class indices follow the sorted subdirectory names, so "control" -> 0
and "scd" -> 1. Files inside each class are listed in sorted order,
which keeps the validation supply stable between runs.
"""

import os

import torch
from PIL import Image, UnidentifiedImageError
from torch.utils.data import DataLoader, Dataset

from augmentation import build_transform
from config import ExperimentConfig


# Formats found in the microscopy dataset
IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".tif", ".tiff"}


def is_image_file(filename):
    """Check the extension (case-insensitive, so .TIF counts)."""
    _, ext = os.path.splitext(filename)
    return ext.lower() in IMAGE_EXTENSIONS


def find_classes(root):
    """
    Map class subdirectories to binary labels.

    Args:
        root: Dataset root directory

    Returns:
        Tuple of (class_names, class_to_idx)

    Raises:
        FileNotFoundError: If root doesn't exist
        ValueError: If root doesn't contain exactly two class directories
    """
    if not os.path.isdir(root):
        raise FileNotFoundError(f"Dataset directory not found: {root}")

    class_names = sorted(
        entry.name for entry in os.scandir(root) if entry.is_dir()
    )
    if len(class_names) != 2:
        raise ValueError(
            f"Expected exactly 2 class directories in {root}, "
            f"found {len(class_names)}: {class_names}"
        )

    class_to_idx = {name: idx for idx, name in enumerate(class_names)}
    return class_names, class_to_idx


def load_image(path):
    """
    Decode an image file as RGB.

    Raises:
        IOError: If the file can't be read or isn't an image
    """
    try:
        with Image.open(path) as image:
            # Convert to RGB (handles grayscale, RGBA, 16-bit TIFF, etc.)
            return image.convert("RGB")
    except UnidentifiedImageError:
        raise IOError(f"Cannot identify image file (may be corrupted or not an image): {path}")
    except OSError as e:
        raise IOError(f"Failed to load image {path}: {e}")


class CellImageDataset(Dataset):
    """
    Red blood cell images labelled by their class directory.

    Each sample is (image_tensor, label_tensor) where the image has shape
    (3, image_size, image_size) and the label has shape (1,) with value
    0.0 (control) or 1.0 (scd).
    """

    def __init__(self, root, transform=None):
        """
        Args:
            root: Directory whose two subdirectories are the classes
            transform: Callable applied to each decoded PIL image
        """
        self.root = root
        self.transform = transform
        self.class_names, self.class_to_idx = find_classes(root)

        # (relative path, label) in stable listing order
        self.samples = []
        for class_name in self.class_names:
            class_dir = os.path.join(root, class_name)
            # An empty class directory just contributes no samples
            for filename in sorted(os.listdir(class_dir)):
                path = os.path.join(class_dir, filename)
                if os.path.isfile(path) and is_image_file(filename):
                    relative = f"{class_name}/{filename}"
                    self.samples.append((relative, self.class_to_idx[class_name]))

    @property
    def filenames(self):
        """Relative paths ("class/file") in the order samples are served."""
        return [relative for relative, _ in self.samples]

    @property
    def targets(self):
        return [label for _, label in self.samples]

    def class_counts(self):
        """Number of samples per class name."""
        counts = {name: 0 for name in self.class_names}
        for _, label in self.samples:
            counts[self.class_names[label]] += 1
        return counts

    def __len__(self):
        return len(self.samples)

    def __getitem__(self, idx):
        relative, label = self.samples[idx]
        image = load_image(os.path.join(self.root, relative))
        if self.transform is not None:
            image = self.transform(image)
        return image, torch.tensor([float(label)], dtype=torch.float32)


def get_data_loaders(config=None):
    """
    Create training and validation data loaders.

    The training loader reshuffles every epoch. The validation loader
    keeps file order so predictions can be joined with labels by index.

    Returns:
        train_loader: DataLoader for training
        val_loader: DataLoader for validation
    """
    config = config or ExperimentConfig()

    print("Setting up data loaders...")

    train_dataset = CellImageDataset(
        config.train_dir,
        transform=build_transform(config, augment=True),
    )
    val_dataset = CellImageDataset(
        config.val_dir,
        transform=build_transform(config, augment=config.augment_validation),
    )

    print(f"Training set:   {len(train_dataset)} images {train_dataset.class_counts()}")
    print(f"Validation set: {len(val_dataset)} images {val_dataset.class_counts()}")

    pin_memory = config.device.type == "cuda"

    train_loader = DataLoader(
        train_dataset,
        batch_size=config.batch_size,
        shuffle=True,  # Reshuffled every epoch
        num_workers=config.num_workers,
        pin_memory=pin_memory,
    )

    val_loader = DataLoader(
        val_dataset,
        batch_size=config.batch_size,
        shuffle=False,  # Order must match the label table
        num_workers=config.num_workers,
        pin_memory=pin_memory,
    )

    return train_loader, val_loader
