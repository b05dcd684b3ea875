"""
Cross-tile deduplication of global detections.

Adjacent tiles share an overlap band, so a single printed label inside the
band is usually reported by two (or four) tiles. These functions collapse
those repeats while keeping detections in stable tile-scan order.
"""

import logging
from typing import List

from .iou import bbox_iou
from .models import DetectedRegion

logger = logging.getLogger(__name__)


def _require_global(detections: List[DetectedRegion]) -> None:
    for d in detections:
        if not d.is_global:
            raise ValueError(
                f"deduplication needs global coordinates, tile {d.tile_index} "
                f"detection is {d.bbox.convention.value}"
            )


def dedupe(detections: List[DetectedRegion], tolerance_px: float) -> List[DetectedRegion]:
    """
    Greedy single-pass deduplication by origin distance.

    A detection is kept only if no already-kept detection has its global
    origin within ``tolerance_px`` on both axes. Input order decides which
    copy survives, so callers pass detections in tile-scan order.

    Running this on its own output returns the same list.

    Args:
        detections: Detections in GLOBAL convention
        tolerance_px: Max per-axis origin distance for a duplicate

    Returns:
        Unique detections, input order preserved
    """
    if tolerance_px < 0:
        raise ValueError(f"tolerance_px must be >= 0, got {tolerance_px}")
    _require_global(detections)

    unique: List[DetectedRegion] = []
    for candidate in detections:
        cx, cy = candidate.origin
        duplicate = any(
            abs(cx - kept.bbox.x) <= tolerance_px and abs(cy - kept.bbox.y) <= tolerance_px
            for kept in unique
        )
        if not duplicate:
            unique.append(candidate)

    removed = len(detections) - len(unique)
    if removed:
        logger.debug(f"Origin dedup removed {removed} of {len(detections)} detections")
    return unique


def dedupe_by_iou(detections: List[DetectedRegion], iou_threshold: float = 0.5) -> List[DetectedRegion]:
    """
    Greedy deduplication by box overlap instead of origin distance.

    Keeps a detection unless its IoU with an already-kept detection is at
    least ``iou_threshold``. Unlike :func:`dedupe` this tolerates boxes that
    were clipped differently at tile edges, and it separates close but
    disjoint labels.
    """
    if not (0.0 < iou_threshold <= 1.0):
        raise ValueError(f"iou_threshold must be in (0, 1], got {iou_threshold}")
    _require_global(detections)

    unique: List[DetectedRegion] = []
    for candidate in detections:
        if all(bbox_iou(candidate.bbox, kept.bbox) < iou_threshold for kept in unique):
            unique.append(candidate)

    removed = len(detections) - len(unique)
    if removed:
        logger.debug(f"IoU dedup removed {removed} of {len(detections)} detections")
    return unique


class RegionDeduplicator:
    """
    Applies one deduplication strategy uniformly for a job.

    Example:
        >>> deduplicator = RegionDeduplicator(tolerance_px=10)
        >>> unique = deduplicator.dedupe(global_detections)
    """

    def __init__(self, tolerance_px: float = 10.0, strategy: str = "origin", iou_threshold: float = 0.5):
        if strategy not in ("origin", "iou"):
            raise ValueError(f"unknown dedup strategy '{strategy}'")
        self.tolerance_px = tolerance_px
        self.strategy = strategy
        self.iou_threshold = iou_threshold

    def dedupe(self, detections: List[DetectedRegion]) -> List[DetectedRegion]:
        if self.strategy == "iou":
            return dedupe_by_iou(detections, self.iou_threshold)
        return dedupe(detections, self.tolerance_px)
