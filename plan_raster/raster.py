"""
Raster input handling.

Decoding itself is delegated to OpenCV; Pillow is used only to read the
scan resolution stored in the file's metadata.
"""

import base64
import io
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Dict, Any, Union

import cv2
import numpy as np
from PIL import Image

from .errors import ImageLoadError

logger = logging.getLogger(__name__)


@dataclass
class RasterImage:
    """
    A decoded plan raster.

    Attributes:
        pixels: uint8 buffer, (H, W) grayscale or (H, W, 3|4) in OpenCV channel order
        dpi: Scan resolution from metadata, if known
        channel_order: "GRAY", "BGR" or "BGRA"
        source: Optional description of where the raster came from
    """
    pixels: np.ndarray
    dpi: Optional[float] = None
    channel_order: str = "BGR"
    source: Optional[str] = None

    def __post_init__(self):
        """Validate buffer shape and dtype."""
        if not isinstance(self.pixels, np.ndarray):
            raise ImageLoadError("pixel buffer must be a numpy array")
        if self.pixels.dtype != np.uint8:
            raise ImageLoadError(f"pixel buffer must be uint8, got {self.pixels.dtype}")
        if self.pixels.ndim == 2:
            self.channel_order = "GRAY"
        elif self.pixels.ndim == 3 and self.pixels.shape[2] in (3, 4):
            if self.pixels.shape[2] == 4:
                self.channel_order = "BGRA"
        else:
            raise ImageLoadError(f"unsupported pixel buffer shape {self.pixels.shape}")
        if self.pixels.shape[0] == 0 or self.pixels.shape[1] == 0:
            raise ImageLoadError(f"empty raster {self.pixels.shape}")
        if self.dpi is not None and self.dpi <= 0:
            self.dpi = None

    @property
    def width(self) -> int:
        return self.pixels.shape[1]

    @property
    def height(self) -> int:
        return self.pixels.shape[0]

    @property
    def channels(self) -> int:
        return 1 if self.pixels.ndim == 2 else self.pixels.shape[2]

    def freeze(self) -> "RasterImage":
        """Mark the pixel buffer read-only so no stage can mutate the source."""
        self.pixels.flags.writeable = False
        return self

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary (without pixel data)."""
        return {
            "width": self.width,
            "height": self.height,
            "channels": self.channels,
            "channel_order": self.channel_order,
            "dpi": self.dpi,
            "source": self.source,
        }


# Guards the temporary lift of Pillow's pixel limit in _read_dpi
_PIXEL_LIMIT_LOCK = threading.Lock()


def _read_dpi(source: Union[str, Path, io.BytesIO]) -> Optional[float]:
    """
    Read the horizontal scan resolution from image metadata, if present.

    Only the header is parsed, so Pillow's decompression-bomb limit is lifted
    for this open; large scans were already decoded by OpenCV.
    """
    try:
        with _PIXEL_LIMIT_LOCK:
            limit = Image.MAX_IMAGE_PIXELS
            Image.MAX_IMAGE_PIXELS = None
            try:
                with Image.open(source) as img:
                    dpi = img.info.get("dpi")
            finally:
                Image.MAX_IMAGE_PIXELS = limit
    except (OSError, ValueError, Image.DecompressionBombError) as e:
        logger.debug(f"No readable DPI metadata: {e}")
        return None

    if not dpi:
        return None
    value = float(dpi[0]) if isinstance(dpi, (tuple, list)) else float(dpi)
    # PNG pHYs stores dots per metre, so round-tripped values drift slightly
    return round(value, 1) if value > 0 else None


def load_raster(path: Union[str, Path], dpi: Optional[float] = None) -> RasterImage:
    """
    Load a raster from disk.

    Args:
        path: Image file path
        dpi: Explicit scan resolution; overrides file metadata

    Returns:
        RasterImage

    Raises:
        ImageLoadError: If the file is missing or cannot be decoded
    """
    path = Path(path)
    if not path.is_file():
        raise ImageLoadError(f"Image not found: {path}", details={"path": str(path)})

    pixels = cv2.imread(str(path), cv2.IMREAD_UNCHANGED)
    if pixels is None:
        raise ImageLoadError(f"Could not decode image: {path}", details={"path": str(path)})
    if pixels.dtype != np.uint8:
        pixels = cv2.convertScaleAbs(pixels, alpha=255.0 / max(1, int(pixels.max())))

    metadata_dpi = _read_dpi(path)
    if dpi is not None and metadata_dpi is not None and abs(dpi - metadata_dpi) > 0.5:
        logger.warning(f"Explicit DPI {dpi} overrides metadata DPI {metadata_dpi} for {path.name}")

    image = RasterImage(
        pixels=pixels,
        dpi=dpi if dpi is not None else metadata_dpi,
        source=str(path),
    )
    logger.info(f"Loaded {path.name}: {image.width}x{image.height}, {image.channels} channel(s), dpi={image.dpi}")
    return image


def raster_from_bytes(data: bytes, dpi: Optional[float] = None, source: Optional[str] = None) -> RasterImage:
    """Decode an encoded image (PNG, JPEG, TIFF, ...) held in memory."""
    buffer = np.frombuffer(data, dtype=np.uint8)
    pixels = cv2.imdecode(buffer, cv2.IMREAD_UNCHANGED) if buffer.size else None
    if pixels is None:
        raise ImageLoadError("Failed to decode image bytes", details={"source": source})
    if pixels.dtype != np.uint8:
        pixels = cv2.convertScaleAbs(pixels, alpha=255.0 / max(1, int(pixels.max())))
    return RasterImage(
        pixels=pixels,
        dpi=dpi if dpi is not None else _read_dpi(io.BytesIO(data)),
        source=source,
    )


def image_from_base64(base64_string: str, dpi: Optional[float] = None) -> RasterImage:
    """Decode a base64 image string (with or without data URL prefix)."""
    if "," in base64_string:
        base64_string = base64_string.split(",")[1]
    try:
        data = base64.b64decode(base64_string, validate=True)
    except ValueError as e:
        raise ImageLoadError(f"Invalid base64 image: {e}") from e
    return raster_from_bytes(data, dpi=dpi, source="base64")


def image_to_base64(pixels: np.ndarray, format: str = "png") -> str:
    """Encode an OpenCV-ordered buffer to a base64 string."""
    if pixels.ndim == 3 and pixels.shape[2] == 4:
        rgb = cv2.cvtColor(pixels, cv2.COLOR_BGRA2RGBA)
    elif pixels.ndim == 3:
        rgb = cv2.cvtColor(pixels, cv2.COLOR_BGR2RGB)
    else:
        rgb = pixels

    pil_image = Image.fromarray(rgb)
    buffer = io.BytesIO()
    pil_image.save(buffer, format=format.upper())
    return base64.b64encode(buffer.getvalue()).decode("utf-8")


def save_raster(pixels: np.ndarray, path: Union[str, Path], dpi: Optional[float] = None) -> str:
    """
    Write an output buffer to disk.

    PNG output goes through Pillow so the scan resolution survives; other
    formats are written by OpenCV.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    if path.suffix.lower() == ".png" and dpi:
        if pixels.ndim == 3 and pixels.shape[2] == 4:
            rgb = cv2.cvtColor(pixels, cv2.COLOR_BGRA2RGBA)
        elif pixels.ndim == 3:
            rgb = cv2.cvtColor(pixels, cv2.COLOR_BGR2RGB)
        else:
            rgb = pixels
        Image.fromarray(rgb).save(str(path), dpi=(dpi, dpi))
    elif not cv2.imwrite(str(path), pixels):
        raise IOError(f"Could not write image to {path}")
    return str(path)
