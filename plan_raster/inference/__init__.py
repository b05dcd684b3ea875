"""
Collaborator contracts for region detection and scale text extraction.
"""

from .adapters import (
    RegionInferenceAdapter,
    NullBackend,
    CallableBackend,
    TesseractRegionBackend,
    create_inference_backend,
    INFERENCE_BACKENDS,
)
from .text_extraction import (
    TextExtraction,
    TextExtractor,
    NullTextExtractor,
    StaticTextExtractor,
    TesseractTextExtractor,
    create_text_extractor,
    TEXT_EXTRACTORS,
)

__all__ = [
    "RegionInferenceAdapter",
    "NullBackend",
    "CallableBackend",
    "TesseractRegionBackend",
    "create_inference_backend",
    "INFERENCE_BACKENDS",
    "TextExtraction",
    "TextExtractor",
    "NullTextExtractor",
    "StaticTextExtractor",
    "TesseractTextExtractor",
    "create_text_extractor",
    "TEXT_EXTRACTORS",
]
