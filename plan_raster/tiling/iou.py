"""
IoU (Intersection over Union) of axis-aligned detection boxes.
"""

from typing import Tuple

from .models import BBox


def calculate_iou_fast(
    box_a: Tuple[float, float, float, float],
    box_b: Tuple[float, float, float, float],
) -> float:
    """
    IoU of two boxes given as (x1, y1, x2, y2).

    Returns:
        IoU value between 0.0 and 1.0
    """
    ax1, ay1, ax2, ay2 = box_a
    bx1, by1, bx2, by2 = box_b

    overlap_w = min(ax2, bx2) - max(ax1, bx1)
    overlap_h = min(ay2, by2) - max(ay1, by1)
    if overlap_w <= 0 or overlap_h <= 0:
        return 0.0

    intersection = overlap_w * overlap_h
    union = (ax2 - ax1) * (ay2 - ay1) + (bx2 - bx1) * (by2 - by1) - intersection
    if union <= 0:
        return 0.0
    return intersection / union


def bbox_iou(a: BBox, b: BBox) -> float:
    """IoU of two boxes in the same convention."""
    if a.convention != b.convention:
        raise ValueError(f"cannot compare {a.convention.value} and {b.convention.value} boxes")
    return calculate_iou_fast(a.corners, b.corners)
