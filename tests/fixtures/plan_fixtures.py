"""
Programmatic test image generation for plan raster tests.
"""

from typing import Tuple

import numpy as np


def create_white_image(size: Tuple[int, int] = (200, 300), channels: int = 3) -> np.ndarray:
    """
    Create an all-white image.

    Args:
        size: Image dimensions (height, width)
        channels: 1 for grayscale, 3 for BGR

    Returns:
        uint8 image
    """
    if channels == 1:
        return np.full(size, 255, dtype=np.uint8)
    return np.full((size[0], size[1], channels), 255, dtype=np.uint8)


def create_dark_rectangle(
    size: Tuple[int, int] = (200, 300),
    rect: Tuple[int, int, int, int] = (50, 40, 120, 80),
    value: int = 0,
) -> np.ndarray:
    """
    Create white background with one solid dark rectangle.

    Args:
        size: Image dimensions (height, width)
        rect: (x, y, width, height) of the rectangle
        value: Gray level of the rectangle

    Returns:
        BGR image
    """
    image = create_white_image(size)
    x, y, w, h = rect
    image[y:y + h, x:x + w] = value
    return image


def create_hatched_patch(
    size: Tuple[int, int] = (120, 120),
    rect: Tuple[int, int, int, int] = (30, 30, 60, 60),
    light: int = 180,
    dark: int = 90,
    period: int = 2,
) -> np.ndarray:
    """
    Create white background with a mid-gray hatched (striped) patch.

    Every stripe is within the mid luminance band, and neighbouring stripes
    differ by more than the default texture variation threshold.

    Returns:
        BGR image
    """
    image = create_white_image(size)
    x, y, w, h = rect
    patch = np.full((h, w), light, dtype=np.uint8)
    for col in range(0, w, 2 * period):
        patch[:, col:col + period] = dark
    image[y:y + h, x:x + w] = patch[:, :, None]
    return image


def create_flat_gray(size: Tuple[int, int] = (60, 60), value: int = 128) -> np.ndarray:
    """Create a uniform mid-gray image (no texture)."""
    return np.full((size[0], size[1], 3), value, dtype=np.uint8)
