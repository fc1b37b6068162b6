"""
Training Pipeline for SickleCellClassifier

This script runs the complete experiment:
1. Loading the class-partitioned training and validation directories
2. Training for a fixed number of epochs with a validation pass after each
3. Evaluating the frozen model and joining predictions with filename labels
4. Writing predictions, history, weights and report figures

Usage:
    python train.py --train-dir data/train --val-dir data/val

Outputs (under --output-dir, default ./outputs):
- predictions.csv, history.csv
- augmentation_preview.png, training_curves.png,
  prediction_counts.png, confusion_matrix.png
"""

import argparse
import os
import random
from typing import NamedTuple

import numpy as np
import pandas as pd
import torch
from tqdm import tqdm

from config import ExperimentConfig, ensure_parent_dir
from dataset import get_data_loaders
from evaluate import (
    build_prediction_table,
    classification_summary,
    evaluate,
    evaluate_and_predict,
    recompute_accuracy,
    save_predictions,
    threshold_predictions,
)
from labels import extract_labels
from model import build_model, count_parameters
from reporting import (
    plot_confusion_matrix,
    plot_history,
    plot_prediction_counts,
    save_augmentation_preview,
)


class EpochRecord(NamedTuple):
    """One row of training history."""

    epoch: int
    train_loss: float
    train_acc: float
    val_loss: float
    val_acc: float


# =============================================================================
# TRAINING FUNCTIONS
# =============================================================================

def set_seed(seed):
    """Seed python, numpy and torch for a repeatable run."""
    random.seed(seed)
    np.random.seed(seed)
    torch.manual_seed(seed)


def train_one_epoch(model, train_loader, criterion, optimizer, device, threshold=0.5):
    """
    Train the model for one epoch.

    Args:
        model: The neural network
        train_loader: DataLoader for training data
        criterion: Loss function (BCE)
        optimizer: Optimizer (Adam)
        device: Device to train on (CPU/GPU)
        threshold: Decision threshold for accuracy

    Returns:
        avg_loss: Average training loss for the epoch
        accuracy: Training accuracy for the epoch
    """
    model.train()

    running_loss = 0.0
    correct = 0
    total = 0

    progress_bar = tqdm(train_loader, desc="Training", leave=False)

    for images, labels in progress_bar:
        images = images.to(device)
        labels = labels.to(device)

        # PyTorch accumulates gradients by default
        optimizer.zero_grad()

        outputs = model(images)
        loss = criterion(outputs, labels)

        loss.backward()
        optimizer.step()

        running_loss += loss.item() * images.size(0)

        predictions = threshold_predictions(outputs.detach(), threshold)
        correct += (predictions == labels).sum().item()
        total += labels.size(0)

        progress_bar.set_postfix({
            "loss": f"{loss.item():.4f}",
            "acc": f"{100 * correct / total:.1f}%"
        })

    if total == 0:
        raise ValueError("Training loader produced no samples")

    return running_loss / total, correct / total


def fit(model, train_loader, val_loader, criterion, optimizer, device, epochs, threshold=0.5):
    """
    Run a fixed number of epochs, validating after each one.

    There is no early stopping, checkpointing or learning rate
    scheduling: the model is trained for exactly `epochs` passes.

    Returns:
        List of EpochRecord, one per epoch
    """
    history = []

    for epoch in range(1, epochs + 1):
        print(f"\nEpoch {epoch}/{epochs}")
        print("-" * 40)

        train_loss, train_acc = train_one_epoch(
            model, train_loader, criterion, optimizer, device, threshold
        )
        val_loss, val_acc = evaluate(model, val_loader, criterion, device, threshold)

        history.append(EpochRecord(epoch, train_loss, train_acc, val_loss, val_acc))

        print(f"Train Loss: {train_loss:.4f} | Train Acc: {100 * train_acc:.2f}%")
        print(f"Val Loss:   {val_loss:.4f} | Val Acc:   {100 * val_acc:.2f}%")

    return history


def save_checkpoint(model, filepath, message=None):
    """
    Save model weights to file.

    Args:
        model: The neural network
        filepath: Path to save weights
        message: Optional message to print
    """
    ensure_parent_dir(filepath)

    # State dict only (weights, not the architecture)
    torch.save(model.state_dict(), filepath)

    if message:
        print(message)


def save_history(history, filepath):
    """Write the per-epoch history as CSV."""
    ensure_parent_dir(filepath)
    pd.DataFrame(history, columns=EpochRecord._fields).to_csv(filepath, index=False)


# =============================================================================
# EXPERIMENT
# =============================================================================

def run_experiment(config):
    """
    Train, evaluate and report.

    Returns:
        Dict with history, aggregate and recomputed accuracy,
        the prediction table and the classification summary
    """
    print("=" * 60)
    print("SickleCellClassifier Training Pipeline")
    print("=" * 60)
    print(f"Device: {config.device}")
    print(f"Epochs: {config.epochs}")
    print(f"Batch size: {config.batch_size}")
    print(f"Image size: {config.image_size}x{config.image_size}")
    print(f"Learning rate: {config.learning_rate}")
    print("=" * 60)

    set_seed(config.seed)

    train_loader, val_loader = get_data_loaders(config)
    val_dataset = val_loader.dataset

    # Filename-derived ground truth, in validation supply order
    label_table = extract_labels(val_dataset.filenames, strict=config.strict_labels)
    print(f"Label table: {len(label_table)} of {len(val_dataset)} validation files labelled")

    preview_path = os.path.join(config.output_dir, "augmentation_preview.png")
    save_augmentation_preview(train_loader.dataset, preview_path)

    print("\nInitializing model...")
    model, criterion, optimizer = build_model(config)
    total_params, trainable_params = count_parameters(model)
    print(f"Total parameters: {total_params:,}")
    print(f"Trainable parameters: {trainable_params:,}")

    print("\n" + "=" * 60)
    print("Starting training...")
    print("=" * 60)

    history = fit(
        model, train_loader, val_loader, criterion, optimizer,
        config.device, config.epochs, config.threshold,
    )

    save_checkpoint(
        model,
        config.weights_path,
        f"\nFinal model saved to {config.weights_path}"
    )

    # Training is over: weights are read-only from here.
    # Aggregate metrics and scores come from one pass over the same images.
    test_loss, test_acc, scores = evaluate_and_predict(
        model, val_loader, criterion, config.device, config.threshold
    )

    table = build_prediction_table(label_table, scores, config.threshold)
    recomputed_acc = recompute_accuracy(table)
    summary = classification_summary(table)

    save_history(history, os.path.join(config.output_dir, "history.csv"))
    save_predictions(table, os.path.join(config.output_dir, "predictions.csv"))

    plot_history(history, os.path.join(config.output_dir, "training_curves.png"))
    plot_prediction_counts(table, os.path.join(config.output_dir, "prediction_counts.png"))
    plot_confusion_matrix(table, os.path.join(config.output_dir, "confusion_matrix.png"))

    print("\n" + "=" * 60)
    print("Training Complete!")
    print("=" * 60)
    print(f"Test Loss: {test_loss:.4f}")
    print(f"Test Accuracy (aggregate):  {100 * test_acc:.2f}%")
    print(f"Test Accuracy (recomputed): {100 * recomputed_acc:.2f}%")
    print(f"SCD precision: {summary['precision']:.3f} | "
          f"recall: {summary['recall']:.3f} | F1: {summary['f1']:.3f}")
    print(f"Confusion matrix [[TN, FP], [FN, TP]]: {summary['confusion_matrix']}")
    print(f"\nReports written to {config.output_dir}")

    return {
        "history": history,
        "test_loss": test_loss,
        "test_accuracy": test_acc,
        "recomputed_accuracy": recomputed_acc,
        "predictions": table,
        "summary": summary,
    }


def parse_args(argv=None):
    """Parse command line arguments into an ExperimentConfig."""
    defaults = ExperimentConfig()

    parser = argparse.ArgumentParser(
        description="Train a CNN to classify red blood cells as control or SCD."
    )
    parser.add_argument("--train-dir", default=defaults.train_dir,
                        help="Training directory with one subdirectory per class")
    parser.add_argument("--val-dir", default=defaults.val_dir,
                        help="Validation directory with one subdirectory per class")
    parser.add_argument("--output-dir", default=defaults.output_dir,
                        help="Where predictions, history and figures are written")
    parser.add_argument("--weights-path", default=defaults.weights_path,
                        help="Where the final model weights are saved")
    parser.add_argument("--epochs", type=int, default=defaults.epochs)
    parser.add_argument("--batch-size", type=int, default=defaults.batch_size)
    parser.add_argument("--image-size", type=int, default=defaults.image_size)
    parser.add_argument("--learning-rate", type=float, default=defaults.learning_rate)
    parser.add_argument("--seed", type=int, default=defaults.seed)
    parser.add_argument("--num-workers", type=int, default=defaults.num_workers)
    parser.add_argument("--rescale", type=float, default=defaults.rescale)
    parser.add_argument("--shear", type=float, default=defaults.shear_range,
                        help="Shear range in degrees (0 disables)")
    parser.add_argument("--zoom", type=float, default=defaults.zoom_range,
                        help="Zoom range, e.g. 0.2 for [0.8, 1.2] (0 disables)")
    parser.add_argument("--brightness", type=float, nargs=2, metavar=("LOW", "HIGH"),
                        default=defaults.brightness_range,
                        help="Brightness multiplier range")
    parser.add_argument("--no-brightness", action="store_true",
                        help="Disable brightness jitter")
    parser.add_argument("--threshold", type=float, default=defaults.threshold)
    parser.add_argument("--no-val-augmentation", action="store_true",
                        help="Only resize and rescale validation images")
    parser.add_argument("--strict-labels", action="store_true",
                        help="Fail on validation filenames without 'scd' or 'control'")
    args = parser.parse_args(argv)

    return ExperimentConfig(
        train_dir=args.train_dir,
        val_dir=args.val_dir,
        output_dir=args.output_dir,
        weights_path=args.weights_path,
        image_size=args.image_size,
        batch_size=args.batch_size,
        epochs=args.epochs,
        learning_rate=args.learning_rate,
        seed=args.seed,
        num_workers=args.num_workers,
        rescale=args.rescale,
        shear_range=args.shear,
        zoom_range=args.zoom,
        brightness_range=None if args.no_brightness else tuple(args.brightness),
        augment_validation=not args.no_val_augmentation,
        threshold=args.threshold,
        strict_labels=args.strict_labels,
    )


def main(argv=None):
    """Main training function."""
    config = parse_args(argv)
    run_experiment(config)


if __name__ == "__main__":
    main()
