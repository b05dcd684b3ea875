"""
Text extraction collaborators used by scale resolution.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Any

import numpy as np
import pytesseract
from PIL import Image

from ..errors import BackendUnavailableError, ConfigurationError

logger = logging.getLogger(__name__)

# Characters that can appear in a scale notation (incl. German "Maßstab")
SCALE_CHAR_WHITELIST = "0123456789:MmaßstbScle. "


@dataclass
class TextExtraction:
    """Text read from an image region."""
    text: str
    confidence: float

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {"text": self.text, "confidence": self.confidence}


class TextExtractor(ABC):
    """Reads text from a (preprocessed) image region."""

    name = "abstract"

    @abstractmethod
    def extract(self, image: np.ndarray) -> TextExtraction:
        """
        Raises:
            BackendUnavailableError: If the OCR engine cannot be reached
        """
        raise NotImplementedError


class NullTextExtractor(TextExtractor):
    """Stands for "no OCR engine configured"; every call is unavailable."""

    name = "none"

    def extract(self, image: np.ndarray) -> TextExtraction:
        raise BackendUnavailableError("no text extraction backend configured")


class StaticTextExtractor(TextExtractor):
    """Returns the same text for every region."""

    name = "static"

    def __init__(self, text: str, confidence: float = 1.0):
        self.text = text
        self.confidence = confidence

    def extract(self, image: np.ndarray) -> TextExtraction:
        return TextExtraction(text=self.text, confidence=self.confidence)


class TesseractTextExtractor(TextExtractor):
    """
    Single-line Tesseract OCR restricted to scale notation characters.

    Confidence is the mean word confidence reported by Tesseract, scaled to
    0..1.
    """

    name = "tesseract"

    def __init__(self, language: str = "eng+deu", psm: int = 7, timeout_s: float = 15.0):
        self.language = language
        self.psm = psm
        self.timeout_s = timeout_s

    def extract(self, image: np.ndarray) -> TextExtraction:
        config = f"--psm {self.psm} -c tessedit_char_whitelist={SCALE_CHAR_WHITELIST!r}"
        try:
            data = pytesseract.image_to_data(
                Image.fromarray(image),
                lang=self.language,
                config=config,
                output_type=pytesseract.Output.DICT,
                timeout=self.timeout_s,
            )
        except pytesseract.TesseractNotFoundError as e:
            raise BackendUnavailableError("Tesseract binary not found") from e
        except (RuntimeError, pytesseract.TesseractError) as e:
            raise BackendUnavailableError(f"Tesseract text extraction failed: {e}") from e

        words = []
        confidences = []
        for raw_text, raw_conf in zip(data["text"], data["conf"]):
            text = raw_text.strip()
            conf = float(raw_conf)
            if text and conf >= 0:
                words.append(text)
                confidences.append(conf / 100.0)

        if not words:
            return TextExtraction(text="", confidence=0.0)
        return TextExtraction(
            text=" ".join(words),
            confidence=sum(confidences) / len(confidences),
        )


TEXT_EXTRACTORS = ("none", "tesseract")


def create_text_extractor(name: str, **options) -> TextExtractor:
    """Build the text extractor once, at pipeline construction."""
    if name in ("none", "null"):
        return NullTextExtractor()
    if name == "tesseract":
        return TesseractTextExtractor(**options)
    raise ConfigurationError(f"unknown text extractor '{name}', expected one of {TEXT_EXTRACTORS}")
