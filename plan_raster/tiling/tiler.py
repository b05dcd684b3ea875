"""
Tile grid partitioning for large plan rasters.

The vision backend only accepts windows up to a fixed size, so the raster
is cut into a row-major grid of overlapping tiles.
"""

import math
from typing import List, Optional

import numpy as np

from ..config.pipeline_config import PipelineConfig
from ..errors import ConfigurationError
from .models import TileDescriptor, OverlapRegion


def validate_tiling(tile_size: int, overlap: int) -> None:
    """Raise ConfigurationError unless 0 < overlap < tile_size."""
    if tile_size <= 0:
        raise ConfigurationError(f"tile_size must be > 0, got {tile_size}")
    if not (0 < overlap < tile_size):
        raise ConfigurationError(
            f"overlap ({overlap}) must satisfy 0 < overlap < tile_size ({tile_size})"
        )


def partition(width: int, height: int, tile_size: int, overlap: int) -> List[TileDescriptor]:
    """
    Compute the tile grid over an image.

    Tiles start every ``tile_size - overlap`` pixels along both axes and are
    clipped at the image edge, so the grid has ``ceil(width / step)`` columns
    and ``ceil(height / step)`` rows.

    Args:
        width: Image width
        height: Image height
        tile_size: Maximum tile edge length
        overlap: Pixels shared between adjacent tiles

    Returns:
        Tiles in row-major order

    Raises:
        ConfigurationError: On invalid tile_size/overlap or image size

    Example:
        >>> [t.bounds for t in partition(800, 400, 500, 100)]
        [(0, 0, 500, 400), (400, 0, 800, 400)]
    """
    validate_tiling(tile_size, overlap)
    if width <= 0 or height <= 0:
        raise ConfigurationError(f"image dimensions must be positive, got {width}x{height}")

    step = tile_size - overlap
    tiles_x = math.ceil(width / step)
    tiles_y = math.ceil(height / step)

    tiles = []
    for row in range(tiles_y):
        y = row * step
        for col in range(tiles_x):
            x = col * step
            tiles.append(TileDescriptor(
                index=len(tiles),
                x=x,
                y=y,
                width=min(tile_size, width - x),
                height=min(tile_size, height - y),
                row=row,
                col=col,
            ))
    return tiles


class TilePartitioner:
    """
    Splits plan rasters into overlapping tiles.

    Example:
        >>> partitioner = TilePartitioner(tile_size=672, overlap=64)
        >>> tiles = partitioner.partition(2016, 1344)
        >>> len(tiles)
        12
    """

    def __init__(
        self,
        tile_size: int = 672,
        overlap: int = 64,
        config: Optional[PipelineConfig] = None,
    ):
        """
        Initialize the partitioner.

        Args:
            tile_size: Target tile size in pixels
            overlap: Overlap between adjacent tiles in pixels
            config: Optional PipelineConfig to use instead of individual params
        """
        if config is not None:
            tile_size = config.tile_size
            overlap = config.overlap
        validate_tiling(tile_size, overlap)
        self.tile_size = tile_size
        self.overlap = overlap

    @property
    def step(self) -> int:
        return self.tile_size - self.overlap

    def partition(self, width: int, height: int) -> List[TileDescriptor]:
        """Compute the tile grid for the given dimensions."""
        return partition(width, height, self.tile_size, self.overlap)

    def tile_count(self, width: int, height: int) -> int:
        """Number of tiles the grid will contain."""
        return math.ceil(width / self.step) * math.ceil(height / self.step)

    def grid_shape(self, width: int, height: int) -> tuple:
        """(rows, cols) of the grid."""
        return (math.ceil(height / self.step), math.ceil(width / self.step))

    @staticmethod
    def extract(image: np.ndarray, tile: TileDescriptor) -> np.ndarray:
        """
        Copy a tile's pixels out of the source buffer.

        The copy keeps backends from holding a view into (or writing to)
        the source raster.
        """
        x1, y1, x2, y2 = tile.bounds
        return image[y1:y2, x1:x2].copy()

    @staticmethod
    def overlap_regions(tiles: List[TileDescriptor], tile: TileDescriptor) -> List[OverlapRegion]:
        """
        List the overlap bands a tile shares with other tiles.

        Args:
            tiles: Full tile grid
            tile: Tile to inspect

        Returns:
            OverlapRegion per intersecting neighbour, in tile-local coordinates
        """
        x1, y1, x2, y2 = tile.bounds
        overlaps = []

        for other in tiles:
            if other.index == tile.index:
                continue

            ox1, oy1, ox2, oy2 = other.bounds
            inter_x1 = max(x1, ox1)
            inter_y1 = max(y1, oy1)
            inter_x2 = min(x2, ox2)
            inter_y2 = min(y2, oy2)

            if inter_x1 < inter_x2 and inter_y1 < inter_y2:
                overlaps.append(OverlapRegion(
                    adjacent_tile_index=other.index,
                    region=(inter_x1 - x1, inter_y1 - y1, inter_x2 - x1, inter_y2 - y1),
                ))

        return overlaps
