"""
Augmentation Pipeline

Builds the per-sample transform applied to every image before it reaches
the model:

1. Resize to the configured square size
2. Random shear, then random zoom drawn separately for each axis
3. Random brightness multiplier
4. Pixel rescale (0-255 -> 0-1 with the default factor)

Each transform only looks at the image it is given, so samples in a
batch are augmented independently. Output size is always
(3, image_size, image_size).
"""

import torch
from PIL import Image
from torchvision import transforms

from config import ExperimentConfig


class Rescale:
    """Convert a uint8 image tensor to float and multiply by a fixed factor."""

    def __init__(self, factor):
        self.factor = factor

    def __call__(self, tensor):
        return tensor.to(torch.float32) * self.factor

    def __repr__(self):
        return f"{self.__class__.__name__}(factor={self.factor})"


class RandomZoom:
    """
    Zoom in or out by independent factors along x and y.

    Each factor is drawn uniformly from [1 - zoom_range, 1 + zoom_range].
    A factor below 1 zooms in. The output keeps the input size; uncovered
    areas are filled with black.
    """

    def __init__(self, zoom_range):
        if zoom_range < 0 or zoom_range >= 1:
            raise ValueError(f"zoom_range must be in [0, 1), got {zoom_range}")
        self.zoom_range = zoom_range

    @staticmethod
    def get_params(zoom_range):
        """Draw (zoom_x, zoom_y) from the torch generator."""
        factors = torch.empty(2).uniform_(1 - zoom_range, 1 + zoom_range)
        return float(factors[0]), float(factors[1])

    def __call__(self, image):
        zoom_x, zoom_y = self.get_params(self.zoom_range)
        width, height = image.size
        center_x, center_y = width / 2, height / 2

        # Output pixel (x, y) samples the input at the zoomed position around the center
        coefficients = (
            zoom_x, 0.0, center_x * (1 - zoom_x),
            0.0, zoom_y, center_y * (1 - zoom_y),
        )
        return image.transform(
            image.size, Image.Transform.AFFINE, coefficients,
            resample=Image.Resampling.BILINEAR,
        )

    def __repr__(self):
        return f"{self.__class__.__name__}(zoom_range={self.zoom_range})"


def build_transform(config=None, augment=True):
    """
    Create the transform pipeline for one data source.

    Args:
        config: ExperimentConfig with image size and augmentation ranges
        augment: If False, only resize + rescale are applied
                 (used by the predict CLI and for previews of raw input)

    Returns:
        torchvision.transforms.Compose mapping a PIL image to a float tensor
    """
    config = config or ExperimentConfig()
    size = config.image_size

    steps = [transforms.Resize((size, size))]

    if augment:
        # Shear angle in degrees, no rotation
        if config.shear_range:
            steps.append(transforms.RandomAffine(degrees=0, shear=config.shear_range))

        if config.zoom_range:
            steps.append(RandomZoom(config.zoom_range))

        # Brightness multiplier drawn uniformly from [low, high]
        if config.brightness_range is not None:
            steps.append(transforms.ColorJitter(brightness=tuple(config.brightness_range)))

    # Keep uint8 values so the rescale factor is the only normalization
    steps.append(transforms.PILToTensor())
    steps.append(Rescale(config.rescale))

    return transforms.Compose(steps)
