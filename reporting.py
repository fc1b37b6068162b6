"""
Reporting

Static figures for one experiment run:

- augmentation preview (a grid of augmented training samples)
- loss / accuracy curves per epoch
- count plot of predicted classes
- confusion matrix heatmap

Every function saves a PNG and returns its path.
"""

import matplotlib

matplotlib.use("Agg")  # Figures are only written to disk

import matplotlib.pyplot as plt
import pandas as pd
import seaborn as sns

from config import CLASS_NAMES, ensure_parent_dir
from evaluate import compute_confusion_matrix


def _save(fig, save_path):
    ensure_parent_dir(save_path)
    fig.tight_layout()
    fig.savefig(save_path, dpi=150, bbox_inches="tight")
    plt.close(fig)
    return save_path


def save_augmentation_preview(dataset, save_path, num_images=9, columns=3):
    """
    Plot augmented samples from a dataset.

    Args:
        dataset: CellImageDataset with an augmenting transform
        save_path: Where to write the PNG
        num_images: How many samples to show (capped at len(dataset))
        columns: Grid width
    """
    num_images = min(num_images, len(dataset))
    rows = max(1, -(-num_images // columns))

    fig, axes = plt.subplots(rows, columns, figsize=(3 * columns, 3 * rows), squeeze=False)

    for i, ax in enumerate(axes.flat):
        ax.axis("off")
        if i >= num_images:
            continue
        image, label = dataset[i]
        # (3, H, W) -> (H, W, 3), values already in [0, 1]
        ax.imshow(image.permute(1, 2, 0).clamp(0, 1).numpy())
        ax.set_title(dataset.class_names[int(label.item())])

    fig.suptitle("Augmented Training Samples")
    return _save(fig, save_path)


def plot_history(history, save_path):
    """
    Loss and accuracy against epoch number.

    Args:
        history: Sequence of EpochRecord (or a DataFrame with the same columns)
    """
    frame = pd.DataFrame(history)
    epochs = frame["epoch"]

    fig, axes = plt.subplots(1, 2, figsize=(12, 4))

    axes[0].plot(epochs, frame["train_loss"], "b-", label="Train Loss", linewidth=2)
    axes[0].plot(epochs, frame["val_loss"], "r-", label="Val Loss", linewidth=2)
    axes[0].set_xlabel("Epoch")
    axes[0].set_ylabel("Loss")
    axes[0].set_title("Loss Curves")
    axes[0].legend()
    axes[0].grid(True, alpha=0.3)

    axes[1].plot(epochs, frame["train_acc"], "b-", label="Train Acc", linewidth=2)
    axes[1].plot(epochs, frame["val_acc"], "r-", label="Val Acc", linewidth=2)
    axes[1].set_xlabel("Epoch")
    axes[1].set_ylabel("Accuracy")
    axes[1].set_title("Accuracy Curves")
    axes[1].legend()
    axes[1].grid(True, alpha=0.3)

    return _save(fig, save_path)


def plot_prediction_counts(table, save_path):
    """Count plot of how often each class was predicted."""
    fig, ax = plt.subplots(figsize=(6, 4))

    predicted = table["prediction"].map(lambda value: CLASS_NAMES[int(value)])
    sns.countplot(x=predicted, order=list(CLASS_NAMES), ax=ax)

    ax.set_xlabel("Predicted Class")
    ax.set_ylabel("Count")
    ax.set_title("Predicted Class Distribution")

    return _save(fig, save_path)


def plot_confusion_matrix(table, save_path):
    """Heatmap of ground truth (rows) vs predicted class (columns)."""
    cm = compute_confusion_matrix(table)

    fig, ax = plt.subplots(figsize=(6, 5))
    sns.heatmap(
        cm,
        annot=True,
        fmt="d",
        cmap="Blues",
        xticklabels=CLASS_NAMES,
        yticklabels=CLASS_NAMES,
        ax=ax,
    )

    ax.set_xlabel("Predicted Label", fontsize=12)
    ax.set_ylabel("True Label", fontsize=12)
    ax.set_title("Confusion Matrix", fontsize=14)

    return _save(fig, save_path)
