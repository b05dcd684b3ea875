"""
Pixel classification and output compositing.
"""

from .classifier import (
    PixelClass,
    PixelClassifier,
    ClassificationResult,
    compute_luminance,
    count_texture_variations,
)
from .compositor import Compositor, CompositeResult, reclassify, erase_regions

__all__ = [
    "PixelClass",
    "PixelClassifier",
    "ClassificationResult",
    "compute_luminance",
    "count_texture_variations",
    "Compositor",
    "CompositeResult",
    "reclassify",
    "erase_regions",
]
