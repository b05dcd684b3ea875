"""
Data structures for tiled plan processing.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Tuple, Dict, Any, Optional


class BoxConvention(Enum):
    """Coordinate convention a bounding box is expressed in."""
    PIXEL = "pixel"  # Tile-local pixels
    NORMALIZED = "normalized"  # Tile-local fractions 0..1
    GLOBAL = "global"  # Pixels of the full source image


@dataclass(frozen=True)
class BBox:
    """
    Axis-aligned bounding box, tagged with its coordinate convention.

    Attributes:
        x: Left edge
        y: Top edge
        width: Box width
        height: Box height
        convention: How x/y/width/height are to be interpreted
    """
    x: float
    y: float
    width: float
    height: float
    convention: BoxConvention = BoxConvention.PIXEL

    @property
    def x2(self) -> float:
        return self.x + self.width

    @property
    def y2(self) -> float:
        return self.y + self.height

    @property
    def area(self) -> float:
        return max(0.0, self.width) * max(0.0, self.height)

    @property
    def corners(self) -> Tuple[float, float, float, float]:
        """(x1, y1, x2, y2)."""
        return (self.x, self.y, self.x2, self.y2)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "x": self.x,
            "y": self.y,
            "width": self.width,
            "height": self.height,
            "convention": self.convention.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BBox":
        """Create from dictionary."""
        return cls(
            x=float(data["x"]),
            y=float(data["y"]),
            width=float(data["width"]),
            height=float(data["height"]),
            convention=BoxConvention(data.get("convention", "pixel")),
        )


@dataclass(frozen=True)
class TileDescriptor:
    """
    A window over the source image.

    Attributes:
        index: Sequence index in row-major order
        x: Left edge in the source image
        y: Top edge in the source image
        width: Tile width (clipped at the image edge)
        height: Tile height (clipped at the image edge)
        row: Grid row
        col: Grid column
    """
    index: int
    x: int
    y: int
    width: int
    height: int
    row: int = 0
    col: int = 0

    @property
    def id(self) -> str:
        return f"tile_{self.index}"

    @property
    def bounds(self) -> Tuple[int, int, int, int]:
        """(x1, y1, x2, y2) in source image coordinates."""
        return (self.x, self.y, self.x + self.width, self.y + self.height)

    @property
    def offset(self) -> Tuple[int, int]:
        return (self.x, self.y)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "index": self.index,
            "id": self.id,
            "row": self.row,
            "col": self.col,
            "x": self.x,
            "y": self.y,
            "width": self.width,
            "height": self.height,
        }


@dataclass
class OverlapRegion:
    """
    Overlap band shared with an adjacent tile.

    Attributes:
        adjacent_tile_index: Index of the neighbouring tile
        region: (x1, y1, x2, y2) in this tile's local coordinates
    """
    adjacent_tile_index: int
    region: Tuple[int, int, int, int]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "adjacent_tile_index": self.adjacent_tile_index,
            "region": {
                "x1": self.region[0],
                "y1": self.region[1],
                "x2": self.region[2],
                "y2": self.region[3],
            },
        }


@dataclass
class DetectedRegion:
    """
    A detection returned for a tile, later lifted to global coordinates.

    Attributes:
        bbox: Bounding box, tagged with its convention
        confidence: Detection confidence in [0, 1]
        tile_index: Index of the tile that produced the detection
        text: Recognized text content, if any
        label: Optional category from the backend (e.g. "text", "dimension")
    """
    bbox: BBox
    confidence: float
    tile_index: int
    text: Optional[str] = None
    label: Optional[str] = None

    @property
    def is_global(self) -> bool:
        return self.bbox.convention == BoxConvention.GLOBAL

    @property
    def origin(self) -> Tuple[float, float]:
        return (self.bbox.x, self.bbox.y)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "text": self.text,
            "label": self.label,
            "bbox": self.bbox.to_dict(),
            "confidence": self.confidence,
            "tile_index": self.tile_index,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DetectedRegion":
        """Create from dictionary."""
        return cls(
            bbox=BBox.from_dict(data["bbox"]),
            confidence=float(data["confidence"]),
            tile_index=int(data["tile_index"]),
            text=data.get("text"),
            label=data.get("label"),
        )


class TileStatus(Enum):
    """Outcome of a single tile inference call."""
    OK = "ok"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    SKIPPED = "skipped"  # Never dispatched because the job was cancelled
    CANCELLED = "cancelled"  # In flight when the job was cancelled


@dataclass
class TileInferenceResult:
    """
    Result of running inference on one tile.

    Detections stay in tile-local coordinates until aggregation.
    """
    tile: TileDescriptor
    status: TileStatus
    regions: List[DetectedRegion] = field(default_factory=list)
    error: Optional[str] = None
    elapsed_s: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status == TileStatus.OK

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "tile": self.tile.to_dict(),
            "status": self.status.value,
            "region_count": len(self.regions),
            "error": self.error,
            "elapsed_s": self.elapsed_s,
        }
