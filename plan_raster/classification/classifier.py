"""
Per-pixel structural classification.

Dark pixels are structural linework. Mid-gray pixels count as structural
only when their neighbourhood is textured (hatching, material patterns);
flat mid-gray and everything brighter is background, which is where
printed text and annotations end up once thresholds are tuned.
"""

import logging
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Dict, Any, Optional

import numpy as np

from ..config.pipeline_config import PipelineConfig

logger = logging.getLogger(__name__)

# Rows processed per strip when counting texture, bounds peak memory
STRIP_ROWS = 512


class PixelClass(IntEnum):
    """Pixel categories, stored as uint8 labels."""
    BACKGROUND = 0
    STRUCTURAL = 1
    PATTERNED_STRUCTURAL = 2


@dataclass
class ClassificationResult:
    """
    Per-pixel classification of a raster.

    Attributes:
        labels: (H, W) uint8 array of PixelClass values
        confidence: (H, W) float32 array in [0, 1]
        counts: Pixel count per class name
    """
    labels: np.ndarray
    confidence: np.ndarray
    counts: Dict[str, int] = field(default_factory=dict)

    @property
    def structural_mask(self) -> np.ndarray:
        """Boolean mask of pixels to keep (structural or patterned)."""
        return self.labels != PixelClass.BACKGROUND

    @property
    def total_pixels(self) -> int:
        return int(self.labels.size)

    def to_dict(self) -> Dict[str, Any]:
        """Summary without the per-pixel arrays."""
        total = max(1, self.total_pixels)
        return {
            "counts": dict(self.counts),
            "fractions": {name: count / total for name, count in self.counts.items()},
            "mean_confidence": float(self.confidence.mean()) if self.confidence.size else 0.0,
        }


def compute_luminance(pixels: np.ndarray) -> np.ndarray:
    """
    Luminance (ITU-R BT.601 weights) of an OpenCV-ordered buffer.

    Returns:
        (H, W) float32 array in 0..255
    """
    if pixels.ndim == 2:
        return pixels.astype(np.float32)
    b = pixels[:, :, 0].astype(np.float32)
    g = pixels[:, :, 1].astype(np.float32)
    r = pixels[:, :, 2].astype(np.float32)
    return 0.114 * b + 0.587 * g + 0.299 * r


def count_texture_variations(
    luminance: np.ndarray,
    radius: int = 3,
    variation_threshold: float = 30,
) -> np.ndarray:
    """
    Count, for every pixel, the neighbours whose luminance differs by more
    than ``variation_threshold``.

    The neighbourhood is the (2r+1)^2 square around the pixel, centre
    excluded. Borders are edge-replicated, so off-image neighbours never
    count as variation. Rows are processed in strips.

    Returns:
        (H, W) uint16 array of counts, at most (2r+1)^2 - 1
    """
    height, width = luminance.shape
    counts = np.zeros((height, width), dtype=np.uint16)
    lum = luminance.astype(np.float32, copy=False)

    for r0 in range(0, height, STRIP_ROWS):
        r1 = min(height, r0 + STRIP_ROWS)
        top = max(0, r0 - radius)
        bottom = min(height, r1 + radius)
        block = lum[top:bottom]
        padded = np.pad(
            block,
            ((radius - (r0 - top), radius - (bottom - r1)), (radius, radius)),
            mode="edge",
        )

        strip_h = r1 - r0
        centre = padded[radius:radius + strip_h, radius:radius + width]
        strip_counts = np.zeros((strip_h, width), dtype=np.uint16)
        for dy in range(-radius, radius + 1):
            for dx in range(-radius, radius + 1):
                if dy == 0 and dx == 0:
                    continue
                neighbour = padded[radius + dy:radius + dy + strip_h, radius + dx:radius + dx + width]
                strip_counts += (np.abs(neighbour - centre) > variation_threshold)
        counts[r0:r1] = strip_counts

    return counts


class PixelClassifier:
    """
    Classifies pixels as structural, patterned-structural or background.

    Example:
        >>> classifier = PixelClassifier()
        >>> result = classifier.classify(image.pixels)
        >>> keep = result.structural_mask
    """

    def __init__(
        self,
        dark_threshold: int = 50,
        mid_upper: int = 200,
        texture_radius: int = 3,
        variation_threshold: int = 30,
        neighbor_count_min: int = 5,
        config: Optional[PipelineConfig] = None,
    ):
        if config is not None:
            dark_threshold = config.dark_luminance_threshold
            mid_upper = config.mid_luminance_upper
            texture_radius = config.texture_radius
            variation_threshold = config.texture_variation_threshold
            neighbor_count_min = config.texture_neighbor_count_min
        self.dark_threshold = dark_threshold
        self.mid_upper = mid_upper
        self.texture_radius = texture_radius
        self.variation_threshold = variation_threshold
        self.neighbor_count_min = neighbor_count_min

    def classify(self, pixels: np.ndarray) -> ClassificationResult:
        """
        Classify every pixel of a buffer.

        Args:
            pixels: (H, W) or (H, W, C) uint8 buffer, not modified

        Returns:
            ClassificationResult
        """
        luminance = compute_luminance(pixels)
        labels = np.full(luminance.shape, PixelClass.BACKGROUND, dtype=np.uint8)
        confidence = np.ones(luminance.shape, dtype=np.float32)

        structural = luminance < self.dark_threshold
        mid_band = (luminance >= self.dark_threshold) & (luminance <= self.mid_upper)

        labels[structural] = PixelClass.STRUCTURAL
        # Darker pixels are more certainly linework: 0.5 at the threshold, 1.0 at black
        if self.dark_threshold > 0:
            confidence[structural] = 0.5 + 0.5 * (
                (self.dark_threshold - luminance[structural]) / self.dark_threshold
            )

        if mid_band.any():
            variations = count_texture_variations(
                luminance,
                radius=self.texture_radius,
                variation_threshold=self.variation_threshold,
            )
            textured = mid_band & (variations > self.neighbor_count_min)
            labels[textured] = PixelClass.PATTERNED_STRUCTURAL

            saturation = float(max(1, 2 * self.neighbor_count_min))
            ratio = np.minimum(1.0, variations.astype(np.float32) / saturation)
            confidence[textured] = np.maximum(0.5, ratio[textured])
            flat = mid_band & ~textured
            confidence[flat] = 1.0 - 0.5 * ratio[flat]

        counts = {
            PixelClass.BACKGROUND.name.lower(): int(np.count_nonzero(labels == PixelClass.BACKGROUND)),
            PixelClass.STRUCTURAL.name.lower(): int(np.count_nonzero(labels == PixelClass.STRUCTURAL)),
            PixelClass.PATTERNED_STRUCTURAL.name.lower(): int(
                np.count_nonzero(labels == PixelClass.PATTERNED_STRUCTURAL)
            ),
        }
        logger.debug(f"Pixel classification: {counts}")

        return ClassificationResult(labels=labels, confidence=confidence, counts=counts)
