"""
Region inference backends.

The pipeline talks to its vision/OCR collaborator only through
RegionInferenceAdapter. The concrete backend is chosen once, when the
pipeline is built, via create_inference_backend().
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Callable, List, Optional

import cv2
import numpy as np
import pytesseract
from PIL import Image

from ..errors import BackendUnavailableError, ConfigurationError
from ..tiling.models import BBox, BoxConvention, DetectedRegion, TileDescriptor

logger = logging.getLogger(__name__)


class RegionInferenceAdapter(ABC):
    """
    Per-tile detection contract.

    Implementations receive a copy of one tile's pixels and return detections
    in tile-local coordinates (PIXEL or NORMALIZED). Any absolute position the
    backend reports is ignored; the caller maps boxes using the tile itself.
    Implementations may raise on failure; the caller absorbs it per tile.
    """

    name = "abstract"

    @abstractmethod
    def detect(self, pixels: np.ndarray, tile: TileDescriptor) -> List[DetectedRegion]:
        raise NotImplementedError

    def close(self) -> None:
        """Release backend resources. Default is a no-op."""


class NullBackend(RegionInferenceAdapter):
    """Backend that never detects anything."""

    name = "null"

    def detect(self, pixels: np.ndarray, tile: TileDescriptor) -> List[DetectedRegion]:
        return []


class CallableBackend(RegionInferenceAdapter):
    """
    Wraps a plain function ``fn(pixels, tile) -> List[DetectedRegion]``.

    Handy for plugging in a remote vision model client without subclassing.
    """

    name = "callable"

    def __init__(self, fn: Callable[[np.ndarray, TileDescriptor], List[DetectedRegion]], name: Optional[str] = None):
        self._fn = fn
        if name:
            self.name = name

    def detect(self, pixels: np.ndarray, tile: TileDescriptor) -> List[DetectedRegion]:
        return list(self._fn(pixels, tile))


def _to_pil(pixels: np.ndarray) -> Image.Image:
    """OpenCV-ordered buffer to a PIL image."""
    if pixels.ndim == 3 and pixels.shape[2] == 4:
        return Image.fromarray(cv2.cvtColor(pixels, cv2.COLOR_BGRA2RGB))
    if pixels.ndim == 3:
        return Image.fromarray(cv2.cvtColor(pixels, cv2.COLOR_BGR2RGB))
    return Image.fromarray(pixels)


class TesseractRegionBackend(RegionInferenceAdapter):
    """
    Detects printed text regions with Tesseract word boxes.

    Concurrent Tesseract processes are capped by a semaphore owned by the
    backend, independently of how many tiles the pipeline has in flight.

    Args:
        language: Tesseract language string, e.g. "eng" or "deu+eng"
        psm: Page segmentation mode; 11 (sparse text) suits plans
        min_confidence: Word confidence floor in [0, 1]
        timeout_s: Per-call Tesseract timeout, 0 disables
        max_processes: Max concurrent Tesseract invocations
    """

    name = "tesseract"

    def __init__(
        self,
        language: str = "eng",
        psm: int = 11,
        min_confidence: float = 0.3,
        timeout_s: float = 30.0,
        max_processes: int = 4,
    ):
        if max_processes < 1:
            raise ConfigurationError(f"max_processes must be >= 1, got {max_processes}")
        self.language = language
        self.psm = psm
        self.min_confidence = min_confidence
        self.timeout_s = timeout_s
        self._slots = threading.BoundedSemaphore(max_processes)

    def detect(self, pixels: np.ndarray, tile: TileDescriptor) -> List[DetectedRegion]:
        image = _to_pil(pixels)
        with self._slots:
            try:
                data = pytesseract.image_to_data(
                    image,
                    lang=self.language,
                    config=f"--psm {self.psm}",
                    output_type=pytesseract.Output.DICT,
                    timeout=self.timeout_s,
                )
            except pytesseract.TesseractNotFoundError as e:
                raise BackendUnavailableError("Tesseract binary not found") from e
            except RuntimeError as e:
                # pytesseract signals its own timeout as RuntimeError
                raise BackendUnavailableError(f"Tesseract call failed on {tile.id}: {e}") from e

        regions = []
        for i, raw_text in enumerate(data["text"]):
            text = raw_text.strip()
            conf = float(data["conf"][i])
            if not text or conf < 0:
                continue
            confidence = conf / 100.0
            if confidence < self.min_confidence:
                continue
            regions.append(DetectedRegion(
                bbox=BBox(
                    x=float(data["left"][i]),
                    y=float(data["top"][i]),
                    width=float(data["width"][i]),
                    height=float(data["height"][i]),
                    convention=BoxConvention.PIXEL,
                ),
                confidence=confidence,
                tile_index=tile.index,
                text=text,
                label="text",
            ))
        return regions


INFERENCE_BACKENDS = ("null", "tesseract")


def create_inference_backend(name: str, **options) -> RegionInferenceAdapter:
    """
    Build the inference backend once, at pipeline construction.

    Args:
        name: "null" or "tesseract"
        **options: Passed to the backend constructor

    Raises:
        ConfigurationError: For unknown backend names
    """
    if name == "null":
        return NullBackend()
    if name == "tesseract":
        return TesseractRegionBackend(**options)
    raise ConfigurationError(f"unknown inference backend '{name}', expected one of {INFERENCE_BACKENDS}")
