"""
QA overlays for tiled plan processing.
"""

import math
from pathlib import Path
from typing import List, Optional, Union

import cv2
import numpy as np

from .models import DetectedRegion, TileDescriptor


# Color palette for tiles (BGR)
TILE_COLORS = [
    (255, 0, 0),    # Blue
    (0, 255, 0),    # Green
    (0, 0, 255),    # Red
    (255, 255, 0),  # Cyan
    (255, 0, 255),  # Magenta
    (0, 255, 255),  # Yellow
    (128, 0, 255),  # Purple
    (255, 128, 0),  # Orange-ish
]

REGION_COLOR = (0, 0, 255)


def _to_bgr(image: np.ndarray) -> np.ndarray:
    if image.ndim == 2:
        return cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
    if image.shape[2] == 4:
        return cv2.cvtColor(image, cv2.COLOR_BGRA2BGR)
    return image.copy()


def draw_overlay(
    image: np.ndarray,
    tiles: List[TileDescriptor],
    regions: Optional[List[DetectedRegion]] = None,
    show_labels: bool = True,
    alpha: float = 0.15,
) -> np.ndarray:
    """
    Draw tile borders and retained regions over a copy of the image.

    Args:
        image: Source image (not modified)
        tiles: Tile grid
        regions: Global, deduplicated regions to outline
        show_labels: Whether to label each tile with its id
        alpha: Transparency for tile fill

    Returns:
        New BGR image
    """
    vis = _to_bgr(image)
    overlay = vis.copy()

    for tile in tiles:
        color = TILE_COLORS[tile.index % len(TILE_COLORS)]
        x1, y1, x2, y2 = tile.bounds
        cv2.rectangle(overlay, (x1, y1), (x2 - 1, y2 - 1), color, -1)
        cv2.rectangle(vis, (x1, y1), (x2 - 1, y2 - 1), color, 2)

        if show_labels:
            label = tile.id
            label_x = x1 + 5
            label_y = y1 + 20
            (text_w, text_h), _ = cv2.getTextSize(label, cv2.FONT_HERSHEY_SIMPLEX, 0.5, 1)
            cv2.rectangle(vis, (label_x - 2, label_y - text_h - 2),
                          (label_x + text_w + 2, label_y + 2), (0, 0, 0), -1)
            cv2.putText(vis, label, (label_x, label_y),
                        cv2.FONT_HERSHEY_SIMPLEX, 0.5, color, 1)

    cv2.addWeighted(overlay, alpha, vis, 1 - alpha, 0, vis)

    for region in regions or []:
        if not region.is_global:
            raise ValueError(f"region from tile {region.tile_index} is not in global coordinates")
        x1 = int(math.floor(region.bbox.x))
        y1 = int(math.floor(region.bbox.y))
        x2 = int(math.ceil(region.bbox.x2))
        y2 = int(math.ceil(region.bbox.y2))
        cv2.rectangle(vis, (x1, y1), (max(x1, x2 - 1), max(y1, y2 - 1)), REGION_COLOR, 1)

    return vis


def save_overlay(
    image: np.ndarray,
    tiles: List[TileDescriptor],
    output_path: Union[str, Path],
    regions: Optional[List[DetectedRegion]] = None,
    show_labels: bool = True,
) -> str:
    """
    Draw an overlay and write it to disk.

    Returns:
        Path to saved visualization
    """
    vis = draw_overlay(image, tiles, regions, show_labels=show_labels)
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    if not cv2.imwrite(str(output_path), vis):
        raise IOError(f"Could not write overlay to {output_path}")
    return str(output_path)
