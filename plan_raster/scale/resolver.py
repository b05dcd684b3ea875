"""
Drawing scale resolution.

Searches prioritized regions of the plan (footer, title block, ...) for a
printed "1:N" notation and derives a pixels-per-millimeter conversion.
Resolution never fails for "not found": the result carries a method tag and
a confidence so callers can decide how far to trust it.
"""

import logging
import math
import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Dict, Any, Optional, Pattern, Sequence, Tuple

import cv2
import numpy as np

from ..config.pipeline_config import CandidateRegion, PipelineConfig
from ..errors import BackendUnavailableError, ConfigurationError
from ..inference.text_extraction import NullTextExtractor, TextExtractor
from ..raster import RasterImage

logger = logging.getLogger(__name__)

MM_PER_INCH = 25.4
TRUSTED_CONFIDENCE = 0.5


class ScaleMethod(Enum):
    """How a scale was obtained."""
    OCR_FOOTER = "ocr_footer"  # Known scale read from a candidate region
    PATTERN_FALLBACK = "pattern_fallback"  # Plausible but unknown ratio, or caller text
    DEFAULT = "default"  # Nothing usable found


@dataclass
class ScaleResult:
    """
    Resolved drawing scale.

    Attributes:
        notation: e.g. "1:50"
        ratio: N of 1:N
        pixels_per_mm: Raster pixels per real-world millimeter
        confidence: 0..1
        method: How the scale was obtained
        detected_in: Candidate region name, "supplied_text" or None
        scan_dpi: Scan resolution used for the conversion
    """
    notation: str
    ratio: int
    pixels_per_mm: float
    confidence: float
    method: ScaleMethod
    detected_in: Optional[str]
    scan_dpi: float

    @property
    def is_trusted(self) -> bool:
        return self.method != ScaleMethod.DEFAULT and self.confidence > TRUSTED_CONFIDENCE

    @property
    def mm_per_pixel(self) -> float:
        return 1.0 / self.pixels_per_mm

    def pixels_to_mm(self, pixels: float) -> float:
        """Convert a raster distance to real-world millimeters."""
        return pixels / self.pixels_per_mm

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "notation": self.notation,
            "ratio": self.ratio,
            "pixelsPerMillimeter": self.pixels_per_mm,
            "confidence": self.confidence,
            "method": self.method.value,
            "detectedIn": self.detected_in,
            "scanDpi": self.scan_dpi,
        }


def pixels_per_mm(scan_dpi: float, ratio: int) -> float:
    """
    Raster pixels per real-world millimeter.

    A 1:N drawing scanned at D dpi has D / 25.4 pixels per paper millimeter,
    and each paper millimeter stands for N real millimeters.
    """
    if scan_dpi <= 0:
        raise ConfigurationError(f"scan_dpi must be > 0, got {scan_dpi}")
    if ratio <= 0:
        raise ValueError(f"ratio must be > 0, got {ratio}")
    return scan_dpi / MM_PER_INCH / ratio


def compile_patterns(patterns: Sequence[str]) -> List[Pattern]:
    """Compile scale notation patterns, case-insensitive."""
    compiled = []
    for pattern in patterns:
        try:
            compiled.append(re.compile(pattern, re.IGNORECASE))
        except re.error as e:
            raise ConfigurationError(f"invalid scale pattern {pattern!r}: {e}") from e
        if compiled[-1].groups < 1:
            raise ConfigurationError(f"scale pattern {pattern!r} needs a capture group for the ratio")
    return compiled


def parse_scale_notation(text: str, patterns: Sequence[Pattern]) -> Optional[int]:
    """
    Extract N from the first pattern that matches.

    Example:
        >>> parse_scale_notation("M 1:50", compile_patterns([r"1\\s*:\\s*(\\d+)"]))
        50
    """
    if not text:
        return None
    for pattern in patterns:
        match = pattern.search(text)
        if match:
            try:
                return int(match.group(1))
            except (TypeError, ValueError):
                continue
    return None


def crop_relative(pixels: np.ndarray, rect: Tuple[float, float, float, float]) -> np.ndarray:
    """Crop a fractional (x, y, w, h) rectangle out of an image."""
    height, width = pixels.shape[:2]
    x, y, w, h = rect
    x1 = int(math.floor(x * width))
    y1 = int(math.floor(y * height))
    x2 = min(width, int(math.ceil((x + w) * width)))
    y2 = min(height, int(math.ceil((y + h) * height)))
    return pixels[y1:y2, x1:x2]


def preprocess_for_ocr(region: np.ndarray) -> np.ndarray:
    """
    Grayscale and Otsu-threshold a region to help text extraction.

    Returns:
        Binary uint8 image (text dark on white)
    """
    if region.ndim == 3 and region.shape[2] == 4:
        gray = cv2.cvtColor(region, cv2.COLOR_BGRA2GRAY)
    elif region.ndim == 3:
        gray = cv2.cvtColor(region, cv2.COLOR_BGR2GRAY)
    else:
        gray = region
    _, binary = cv2.threshold(gray, 0, 255, cv2.THRESH_BINARY + cv2.THRESH_OTSU)
    return binary


class ScaleResolver:
    """
    Resolves the drawing scale of a plan raster.

    Example:
        >>> resolver = ScaleResolver(config, TesseractTextExtractor())
        >>> scale = resolver.resolve(image, scan_dpi=300)
        >>> if not scale.is_trusted:
        ...     warn_user(scale)
    """

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        text_extractor: Optional[TextExtractor] = None,
    ):
        self.config = config or PipelineConfig()
        self.text_extractor = text_extractor or NullTextExtractor()
        self.patterns = compile_patterns(self.config.scale_patterns)
        self.accepted_scales = {scale.ratio for scale in self.config.known_scales}

    def _scan_dpi(self, image: RasterImage, scan_dpi: Optional[float]) -> float:
        dpi = scan_dpi if scan_dpi is not None else image.dpi
        if dpi is None:
            raise ConfigurationError(
                "scan resolution unknown: pass scan_dpi or use an image with DPI metadata",
                details={"source": image.source},
            )
        if dpi <= 0:
            raise ConfigurationError(f"scan_dpi must be > 0, got {dpi}")
        return float(dpi)

    def _build(self, ratio: int, confidence: float, method: ScaleMethod,
               detected_in: Optional[str], dpi: float) -> ScaleResult:
        return ScaleResult(
            notation=f"1:{ratio}",
            ratio=ratio,
            pixels_per_mm=pixels_per_mm(dpi, ratio),
            confidence=confidence,
            method=method,
            detected_in=detected_in,
            scan_dpi=dpi,
        )

    def classify_ratio(self, ratio: Optional[int]) -> Optional[ScaleMethod]:
        """
        Validate a parsed ratio.

        Returns:
            OCR_FOOTER for known scales, PATTERN_FALLBACK for plausible ones,
            None if the ratio is unusable
        """
        if ratio is None or ratio <= 0:
            return None
        if ratio in self.accepted_scales:
            return ScaleMethod.OCR_FOOTER
        low, high = self.config.sane_ratio_range
        if low <= ratio <= high:
            return ScaleMethod.PATTERN_FALLBACK
        return None

    def resolve(
        self,
        image: RasterImage,
        candidate_regions: Optional[List[CandidateRegion]] = None,
        scan_dpi: Optional[float] = None,
        supplied_text: Optional[str] = None,
    ) -> ScaleResult:
        """
        Resolve the drawing scale.

        Args:
            image: Source raster (read only)
            candidate_regions: Regions to search; defaults to the configured list
            scan_dpi: Scan resolution; falls back to image.dpi
            supplied_text: Text the caller already has (e.g. from a PDF text
                layer), matched pattern-only if OCR yields nothing

        Returns:
            ScaleResult, never None

        Raises:
            ConfigurationError: If the scan resolution is unknown
        """
        dpi = self._scan_dpi(image, scan_dpi)
        regions = sorted(
            candidate_regions if candidate_regions is not None else self.config.footer_candidate_regions,
            key=lambda r: r.priority,
        )

        fallback: Optional[ScaleResult] = None
        for region in regions:
            crop = crop_relative(image.pixels, region.rect)
            if crop.size == 0:
                logger.debug(f"Candidate region {region.name} is empty at this image size")
                continue

            try:
                extraction = self.text_extractor.extract(preprocess_for_ocr(crop))
            except BackendUnavailableError as e:
                logger.warning(f"Text extraction unavailable, falling back to pattern matching: {e}")
                break

            if extraction.confidence < self.config.min_text_confidence:
                logger.debug(
                    f"Region {region.name}: OCR confidence {extraction.confidence:.2f} "
                    f"below floor {self.config.min_text_confidence}"
                )
                continue

            ratio = parse_scale_notation(extraction.text, self.patterns)
            method = self.classify_ratio(ratio)
            if method == ScaleMethod.OCR_FOOTER:
                logger.info(f"Scale 1:{ratio} found in {region.name}")
                return self._build(ratio, 1.0, ScaleMethod.OCR_FOOTER, region.name, dpi)
            if method == ScaleMethod.PATTERN_FALLBACK and fallback is None:
                # Keep searching lower-priority regions for a known scale
                fallback = self._build(
                    ratio, self.config.fallback_confidence, ScaleMethod.PATTERN_FALLBACK, region.name, dpi
                )
            elif ratio is not None and method is None:
                logger.debug(f"Region {region.name}: ratio 1:{ratio} outside plausible range")

        if fallback is not None:
            logger.warning(f"Using unrecognized scale {fallback.notation} from {fallback.detected_in}")
            return fallback

        if supplied_text:
            ratio = parse_scale_notation(supplied_text, self.patterns)
            if self.classify_ratio(ratio) is not None:
                logger.warning(f"Scale 1:{ratio} taken from supplied text without OCR confirmation")
                return self._build(
                    ratio, self.config.fallback_confidence, ScaleMethod.PATTERN_FALLBACK, "supplied_text", dpi
                )

        logger.warning(f"No scale notation found, using default 1:{self.config.default_ratio}")
        return self._build(
            self.config.default_ratio,
            min(self.config.default_confidence, TRUSTED_CONFIDENCE),
            ScaleMethod.DEFAULT,
            None,
            dpi,
        )
