"""
Tiled processing of large plan rasters.

Splits an image into overlapping windows, maps per-tile detections back
to global coordinates and collapses duplicates from the overlap bands.
"""

from .models import (
    BBox,
    BoxConvention,
    DetectedRegion,
    OverlapRegion,
    TileDescriptor,
    TileInferenceResult,
    TileStatus,
)
from .tiler import TilePartitioner, partition, validate_tiling
from .transforms import (
    to_global,
    to_local,
    clip_to_image,
    region_to_global,
)
from .iou import calculate_iou_fast, bbox_iou
from .dedup import dedupe, dedupe_by_iou, RegionDeduplicator
from .processor import TileDispatcher, DispatchReport, ProcessingProgress
from .visualization import draw_overlay, save_overlay

__all__ = [
    # Models
    "BBox",
    "BoxConvention",
    "DetectedRegion",
    "OverlapRegion",
    "TileDescriptor",
    "TileInferenceResult",
    "TileStatus",
    # Tiler
    "TilePartitioner",
    "partition",
    "validate_tiling",
    # Transforms
    "to_global",
    "to_local",
    "clip_to_image",
    "region_to_global",
    # IoU
    "calculate_iou_fast",
    "bbox_iou",
    # Dedup
    "dedupe",
    "dedupe_by_iou",
    "RegionDeduplicator",
    # Processor
    "TileDispatcher",
    "DispatchReport",
    "ProcessingProgress",
    # Visualization
    "draw_overlay",
    "save_overlay",
]
