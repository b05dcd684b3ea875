"""
Output raster compositing.

Both modes allocate a fresh buffer; the source buffer is only ever read.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional

import numpy as np

from ..tiling.models import DetectedRegion
from .classifier import ClassificationResult, PixelClassifier

logger = logging.getLogger(__name__)


@dataclass
class CompositeResult:
    """
    Output buffer plus what went into it.

    Attributes:
        pixels: Fresh output buffer, same shape as the source
        mode: "reclassify" or "erase"
        erased_regions: Number of regions filled with background (erase mode)
        erased_pixels: Pixels overwritten with background
        classification: Per-pixel classification (reclassify mode)
    """
    pixels: np.ndarray
    mode: str
    erased_regions: int = 0
    erased_pixels: int = 0
    classification: Optional[ClassificationResult] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary (without pixel data)."""
        return {
            "mode": self.mode,
            "width": int(self.pixels.shape[1]),
            "height": int(self.pixels.shape[0]),
            "erased_regions": self.erased_regions,
            "erased_pixels": self.erased_pixels,
            "classification": self.classification.to_dict() if self.classification else None,
            "metadata": self.metadata,
        }


def _background_like(source: np.ndarray, value: int) -> np.ndarray:
    return np.full(source.shape, value, dtype=source.dtype)


def reclassify(
    source: np.ndarray,
    classification: ClassificationResult,
    background_value: int = 255,
) -> np.ndarray:
    """
    Build an output from a background-filled canvas, copying in only the
    pixels classified as structural or patterned-structural.

    Starting from background means a classification bug can only drop
    wanted pixels, never expose unwanted ones.
    """
    if classification.labels.shape != source.shape[:2]:
        raise ValueError(
            f"classification shape {classification.labels.shape} does not match source {source.shape[:2]}"
        )
    output = _background_like(source, background_value)
    keep = classification.structural_mask
    output[keep] = source[keep]
    return output


def region_fill_box(
    region: DetectedRegion,
    width: int,
    height: int,
    padding: int,
) -> Optional[tuple]:
    """
    Integer (x1, y1, x2, y2) pixel box covering a global region plus padding,
    clipped to the image. None if nothing remains.
    """
    if not region.is_global:
        raise ValueError(f"region from tile {region.tile_index} is not in global coordinates")
    x1 = max(0, int(math.floor(region.bbox.x)) - padding)
    y1 = max(0, int(math.floor(region.bbox.y)) - padding)
    x2 = min(width, int(math.ceil(region.bbox.x2)) + padding)
    y2 = min(height, int(math.ceil(region.bbox.y2)) + padding)
    if x1 >= x2 or y1 >= y2:
        return None
    return (x1, y1, x2, y2)


def erase_regions(
    source: np.ndarray,
    regions: List[DetectedRegion],
    padding: int = 4,
    background_value: int = 255,
) -> tuple:
    """
    Copy the source and fill each region's padded box with background.

    Returns:
        (output buffer, regions erased, pixels erased)
    """
    output = source.copy()
    height, width = source.shape[:2]
    erased_mask = np.zeros((height, width), dtype=bool)
    erased = 0

    for region in regions:
        box = region_fill_box(region, width, height, padding)
        if box is None:
            continue
        x1, y1, x2, y2 = box
        output[y1:y2, x1:x2] = background_value
        erased_mask[y1:y2, x1:x2] = True
        erased += 1

    return output, erased, int(np.count_nonzero(erased_mask))


class Compositor:
    """
    Produces the final output raster in one of two modes.

    - ``reclassify``: background canvas + structural pixels from the source
    - ``erase``: copy of the source with detected regions filled

    Example:
        >>> compositor = Compositor(mode="erase", padding=4)
        >>> result = compositor.compose(image.pixels, regions)
    """

    def __init__(
        self,
        mode: str = "erase",
        padding: int = 4,
        background_value: int = 255,
        classifier: Optional[PixelClassifier] = None,
    ):
        if mode not in ("erase", "reclassify"):
            raise ValueError(f"unknown composite mode '{mode}'")
        self.mode = mode
        self.padding = padding
        self.background_value = background_value
        self.classifier = classifier or PixelClassifier()

    def compose(
        self,
        source: np.ndarray,
        regions: Optional[List[DetectedRegion]] = None,
    ) -> CompositeResult:
        """
        Build the output buffer.

        Args:
            source: Source pixel buffer (not modified)
            regions: Deduplicated global regions (used in erase mode)

        Returns:
            CompositeResult with a freshly allocated buffer
        """
        if self.mode == "reclassify":
            classification = self.classifier.classify(source)
            output = reclassify(source, classification, self.background_value)
            logger.info(
                f"Reclassified output: {classification.counts.get('structural', 0)} structural, "
                f"{classification.counts.get('patterned_structural', 0)} patterned pixels kept"
            )
            return CompositeResult(
                pixels=output,
                mode=self.mode,
                erased_pixels=classification.counts.get("background", 0),
                classification=classification,
            )

        output, erased_regions, erased_pixels = erase_regions(
            source, regions or [], self.padding, self.background_value
        )
        logger.info(f"Erased {erased_regions} region(s), {erased_pixels} pixels")
        return CompositeResult(
            pixels=output,
            mode=self.mode,
            erased_regions=erased_regions,
            erased_pixels=erased_pixels,
        )
