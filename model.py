"""
CNN Model for Sickle Cell Classification

A small Convolutional Neural Network that classifies red blood cell
microscopy images as "control" (normal) or "scd" (Sickle Cell Disease).
The topology is fixed so reported numbers stay reproducible.
"""

import torch
import torch.nn as nn

from config import CHANNELS, IMAGE_SIZE


def conv_output_size(image_size, blocks=3, kernel_size=3, pool_size=2):
    """
    Spatial size after the conv + pool blocks.

    Convolutions are unpadded, so each one trims kernel_size - 1 pixels,
    and each pooling step halves the size (rounding down).
    """
    size = image_size
    for _ in range(blocks):
        size = (size - (kernel_size - 1)) // pool_size
    return size


class SickleCellClassifier(nn.Module):
    """
    A simple CNN for binary image classification (control vs SCD).

    Architecture Overview:
    - 3 Convolutional layers (32, 64, 128 filters) with ReLU and max pooling
    - Flatten
    - Dense layer with 512 units and ReLU
    - Single sigmoid output unit (0 = control, 1 = SCD)

    Input: RGB image tensor of shape (batch_size, 3, 256, 256)
    Output: Probability tensor of shape (batch_size, 1)
    """

    def __init__(self, image_size=IMAGE_SIZE):
        super(SickleCellClassifier, self).__init__()

        self.image_size = image_size

        # ============================================================
        # CONVOLUTIONAL LAYERS
        # 3x3 filters without padding, widening 32 -> 64 -> 128
        # ============================================================

        # Conv Layer 1: (batch, 3, 256, 256) -> (batch, 32, 254, 254)
        self.conv1 = nn.Conv2d(
            in_channels=CHANNELS,
            out_channels=32,
            kernel_size=3,
        )

        # Conv Layer 2: (batch, 32, 127, 127) -> (batch, 64, 125, 125)
        self.conv2 = nn.Conv2d(
            in_channels=32,
            out_channels=64,
            kernel_size=3,
        )

        # Conv Layer 3: (batch, 64, 62, 62) -> (batch, 128, 60, 60)
        self.conv3 = nn.Conv2d(
            in_channels=64,
            out_channels=128,
            kernel_size=3,
        )

        # Max Pooling: 2x2 window, stride 2, halves each spatial dimension
        self.pool = nn.MaxPool2d(kernel_size=2, stride=2)

        # ============================================================
        # FULLY CONNECTED LAYERS
        # ============================================================

        # 256 -> 254 -> 127 -> 125 -> 62 -> 60 -> 30
        # Final feature map size: 128 channels x 30 x 30 = 115,200 values
        feature_size = conv_output_size(image_size)
        if feature_size < 1:
            raise ValueError(f"Image size {image_size} is too small for 3 conv blocks")
        self.flat_features = 128 * feature_size * feature_size

        self.fc1 = nn.Linear(
            in_features=self.flat_features,
            out_features=512
        )

        # Single output: SCD probability
        self.fc2 = nn.Linear(
            in_features=512,
            out_features=1
        )

        self.relu = nn.ReLU()
        self.sigmoid = nn.Sigmoid()

    def forward(self, x):
        """
        Forward pass.

        Args:
            x: Input tensor of shape (batch_size, 3, image_size, image_size)
               with pixel values in [0, 1]

        Returns:
            Tensor of shape (batch_size, 1) with values in [0, 1]
            representing the probability of SCD
        """
        x = self.pool(self.relu(self.conv1(x)))
        x = self.pool(self.relu(self.conv2(x)))
        x = self.pool(self.relu(self.conv3(x)))

        x = x.view(x.size(0), -1)  # -> (batch, flat_features)

        x = self.relu(self.fc1(x))  # -> (batch, 512)
        x = self.sigmoid(self.fc2(x))  # -> (batch, 1)

        return x


def build_model(config, device=None):
    """
    Create the classifier plus its loss function and optimizer.

    Returns:
        Tuple of (model, criterion, optimizer)
    """
    device = device or config.device
    model = SickleCellClassifier(image_size=config.image_size).to(device)

    # Binary Cross Entropy on sigmoid probabilities
    criterion = nn.BCELoss()

    # Adam: first-order adaptive optimizer
    optimizer = torch.optim.Adam(model.parameters(), lr=config.learning_rate)

    return model, criterion, optimizer


def count_parameters(model):
    """Return (total, trainable) parameter counts."""
    total = sum(p.numel() for p in model.parameters())
    trainable = sum(p.numel() for p in model.parameters() if p.requires_grad)
    return total, trainable
