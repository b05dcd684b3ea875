"""Tests for scale text extractors."""

import numpy as np
import pytest
import pytesseract

from plan_raster.errors import BackendUnavailableError, ConfigurationError
from plan_raster.inference.text_extraction import (
    NullTextExtractor,
    StaticTextExtractor,
    TesseractTextExtractor,
    TextExtraction,
    create_text_extractor,
)


@pytest.fixture
def region():
    """A binarized white region."""
    return np.full((40, 200), 255, dtype=np.uint8)


class TestSimpleExtractors:
    """Tests for the null and static extractors."""

    def test_null_is_unavailable(self, region):
        """Test that the null extractor reports an unavailable backend."""
        with pytest.raises(BackendUnavailableError):
            NullTextExtractor().extract(region)

    def test_static(self, region):
        """Test that the static extractor returns its text."""
        result = StaticTextExtractor("M 1:50", confidence=0.9).extract(region)
        assert result == TextExtraction(text="M 1:50", confidence=0.9)
        assert result.to_dict() == {"text": "M 1:50", "confidence": 0.9}


class TestTesseractTextExtractor:
    """Tests for the Tesseract extractor with a stubbed engine."""

    def test_joins_words_and_averages_confidence(self, monkeypatch, region):
        """Test that words are joined and confidences averaged."""
        captured = {}

        def fake(image, **kwargs):
            captured.update(kwargs)
            return {"text": ["Maßstab", "1:50", ""], "conf": [80, 90, -1]}

        monkeypatch.setattr(pytesseract, "image_to_data", fake)
        result = TesseractTextExtractor(psm=7).extract(region)

        assert result.text == "Maßstab 1:50"
        assert result.confidence == pytest.approx(0.85)
        assert "--psm 7" in captured["config"]
        assert "tessedit_char_whitelist" in captured["config"]

    def test_no_words(self, monkeypatch, region):
        """Test that an empty read has zero confidence."""
        monkeypatch.setattr(pytesseract, "image_to_data", lambda image, **kw: {"text": [""], "conf": [-1]})
        assert TesseractTextExtractor().extract(region) == TextExtraction(text="", confidence=0.0)

    def test_missing_binary(self, monkeypatch, region):
        """Test that a missing binary is reported as unavailable."""
        def missing(image, **kwargs):
            raise pytesseract.TesseractNotFoundError()

        monkeypatch.setattr(pytesseract, "image_to_data", missing)
        with pytest.raises(BackendUnavailableError):
            TesseractTextExtractor().extract(region)


class TestCreateTextExtractor:
    """Tests for extractor selection."""

    @pytest.mark.parametrize("name", ["none", "null"])
    def test_none(self, name):
        """Test selecting no OCR."""
        assert isinstance(create_text_extractor(name), NullTextExtractor)

    def test_tesseract(self):
        """Test selecting Tesseract."""
        assert isinstance(create_text_extractor("tesseract"), TesseractTextExtractor)

    def test_unknown(self):
        """Test that unknown names are configuration errors."""
        with pytest.raises(ConfigurationError):
            create_text_extractor("easyocr")
