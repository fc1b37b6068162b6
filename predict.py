"""
SickleCellClassifier - CLI Entry Point

Classifies a single red blood cell image as "scd" or "control" using the
weights saved by train.py.

Usage:
    python predict.py <image_path>
    python predict.py <image_path> --json --weights weights/final_model.pth

Exit codes:
    0 = classified as SCD
    1 = classified as control
    2 = error (file not found, invalid image, model error, etc.)
"""

import argparse
import json
import os
import sys

import torch

from augmentation import build_transform
from config import CLASS_NAMES, ExperimentConfig
from dataset import IMAGE_EXTENSIONS, load_image
from model import SickleCellClassifier


# Exit codes
EXIT_SCD = 0
EXIT_CONTROL = 1
EXIT_ERROR = 2


def load_model(weights_path, image_size):
    """
    Load the trained classifier in evaluation mode.

    Raises:
        FileNotFoundError: If the weights file doesn't exist
        RuntimeError: If the weights don't fit the model
    """
    if not os.path.isfile(weights_path):
        raise FileNotFoundError(f"Model weights not found: {weights_path}")

    model = SickleCellClassifier(image_size=image_size)
    try:
        state_dict = torch.load(weights_path, map_location="cpu", weights_only=True)
        model.load_state_dict(state_dict)
    except Exception as e:
        raise RuntimeError(f"Failed to load model weights: {e}")

    model.eval()
    return model


def validate_image_path(image_path):
    """
    Check that the path is an existing file with a supported extension.

    Raises:
        FileNotFoundError: If file doesn't exist
        ValueError: If it isn't a file or the extension is not supported
    """
    if not os.path.exists(image_path):
        raise FileNotFoundError(f"File not found: {image_path}")

    if not os.path.isfile(image_path):
        raise ValueError(f"Path is not a file: {image_path}")

    _, ext = os.path.splitext(image_path)
    if ext.lower() not in IMAGE_EXTENSIONS:
        raise ValueError(
            f"Unsupported file extension '{ext}'. "
            f"Supported formats: {', '.join(sorted(IMAGE_EXTENSIONS))}"
        )


def classify_image(model, image_path, config):
    """
    Classify one image.

    Returns:
        Tuple of (label: int, probability: float) where probability is
        the SCD score and label is 1 when it reaches the threshold

    Raises:
        FileNotFoundError, ValueError: Bad path
        IOError: Image can't be decoded
        RuntimeError: Inference failed
    """
    validate_image_path(image_path)
    image = load_image(image_path)

    # Deterministic preprocessing: resize + rescale only
    transform = build_transform(config, augment=False)
    image_tensor = transform(image).unsqueeze(0)  # (1, 3, H, W)

    try:
        with torch.no_grad():
            probability = model(image_tensor).item()
    except Exception as e:
        raise RuntimeError(f"Model inference failed: {e}")

    label = 1 if probability >= config.threshold else 0
    return label, probability


def output_json(result=None, probability=None, error=None):
    """Print the result as a single JSON object."""
    print(json.dumps({
        "result": result,
        "probability": probability,
        "error": error
    }))


def output_human(label, probability):
    """Print the result for a person."""
    if label == 1:
        print(f"\nSCD (probability: {100 * probability:.1f}%)")
    else:
        print(f"\nCONTROL (SCD probability: {100 * probability:.1f}%)")


def parse_args(argv=None):
    """Parse command line arguments."""
    defaults = ExperimentConfig()
    parser = argparse.ArgumentParser(
        description="Classify a red blood cell image as SCD or control.",
        epilog="Exit codes: 0=SCD, 1=control, 2=error"
    )
    parser.add_argument("image_path", help="Path to the image file to classify")
    parser.add_argument("--weights", default=defaults.weights_path,
                        help="Path to saved model weights")
    parser.add_argument("--image-size", type=int, default=defaults.image_size)
    parser.add_argument("--threshold", type=float, default=defaults.threshold)
    parser.add_argument("--json", action="store_true", dest="json_output",
                        help="Output result as JSON")
    return parser.parse_args(argv)


def main(argv=None):
    """Main entry point."""
    args = parse_args(argv)
    config = ExperimentConfig(image_size=args.image_size, threshold=args.threshold)

    try:
        model = load_model(args.weights, config.image_size)
        label, probability = classify_image(model, args.image_path, config)
    except (FileNotFoundError, ValueError, IOError, RuntimeError) as e:
        if args.json_output:
            output_json(error=str(e))
        else:
            print(f"Error: {e}")
        sys.exit(EXIT_ERROR)

    if args.json_output:
        output_json(result=CLASS_NAMES[label], probability=round(probability, 4))
    else:
        output_human(label, probability)

    sys.exit(EXIT_SCD if label == 1 else EXIT_CONTROL)


if __name__ == "__main__":
    main()
