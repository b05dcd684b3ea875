"""
Tests for the REST API.
"""

import base64
import io

import cv2
import numpy as np
import pytest
from fastapi.testclient import TestClient
from PIL import Image

from server import create_app
from plan_raster.raster import image_to_base64
from tests.fixtures.plan_fixtures import create_dark_rectangle


@pytest.fixture
def client():
    """API client with no inference backend and no OCR."""
    return TestClient(create_app(backend="null", ocr="none"))


@pytest.fixture
def plan_b64():
    """Base64 PNG of a small plan."""
    return image_to_base64(create_dark_rectangle())


def png_bytes_with_dpi(pixels, dpi):
    """Encode a BGR buffer as PNG with DPI metadata."""
    buffer = io.BytesIO()
    Image.fromarray(cv2.cvtColor(pixels, cv2.COLOR_BGR2RGB)).save(buffer, format="PNG", dpi=(dpi, dpi))
    return buffer.getvalue()


class TestHealth:
    """Tests for service metadata endpoints."""

    def test_health(self, client):
        """Test the health check."""
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["backend"] == "null"
        assert data["ocr"] == "none"

    def test_default_config(self, client):
        """Test that the default configuration is exposed."""
        data = client.get("/process/config").json()
        assert data["tile_size"] == 672
        assert data["overlap"] == 64
        assert data["composite_mode"] == "erase"


class TestProcessBase64:
    """Tests for POST /process."""

    def test_process(self, client, plan_b64):
        """Test a successful job with an output image."""
        response = client.post("/process", json={"image": plan_b64, "dpi": 300})
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "complete"
        assert data["state"] == "done"
        assert data["quality"] == "degraded"

        decoded = np.array(Image.open(io.BytesIO(base64.b64decode(data["output_image"]))))
        expected = cv2.cvtColor(create_dark_rectangle(), cv2.COLOR_BGR2RGB)
        np.testing.assert_array_equal(decoded, expected)

    def test_data_url_prefix(self, client, plan_b64):
        """Test that a data URL prefix is accepted."""
        response = client.post("/process", json={
            "image": f"data:image/png;base64,{plan_b64}",
            "dpi": 300,
            "include_output_image": False,
        })
        assert response.status_code == 200
        assert "output_image" not in response.json()

    def test_scale_text_and_overrides(self, client, plan_b64):
        """Test caller scale text and configuration overrides."""
        response = client.post("/process", json={
            "image": plan_b64,
            "dpi": 300,
            "scale_text": "M 1:50",
            "tile_size": 128,
            "overlap": 16,
            "composite_mode": "reclassify",
            "include_output_image": False,
        })
        assert response.status_code == 200
        data = response.json()
        assert data["scale"]["notation"] == "1:50"
        assert data["scale"]["detectedIn"] == "supplied_text"
        assert data["tiles"]["total"] == 6
        assert data["composite"]["mode"] == "reclassify"

    def test_missing_dpi(self, client, plan_b64):
        """Test that an unknown scan resolution is a client error."""
        response = client.post("/process", json={"image": plan_b64})
        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "configuration_error"

    def test_invalid_image(self, client):
        """Test that undecodable data is a client error."""
        response = client.post("/process", json={"image": "bm90IGFuIGltYWdl", "dpi": 300})
        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "image_load_error"

    def test_invalid_override(self, client, plan_b64):
        """Test that invalid configuration overrides are rejected."""
        response = client.post("/process", json={"image": plan_b64, "dpi": 300, "tile_size": 10, "overlap": 20})
        assert response.status_code == 400


class TestProcessUpload:
    """Tests for POST /process/upload."""

    def test_upload_with_metadata_dpi(self, client):
        """Test that DPI is read from the uploaded file."""
        data = png_bytes_with_dpi(create_dark_rectangle(), 300)
        response = client.post("/process/upload", files={"file": ("plan.png", data, "image/png")})
        assert response.status_code == 200
        body = response.json()
        assert body["scale"]["scanDpi"] == pytest.approx(300, abs=0.5)
        assert "output_image" not in body

    def test_upload_form_fields(self, client):
        """Test form overrides on upload."""
        _, encoded = cv2.imencode(".png", create_dark_rectangle())
        response = client.post(
            "/process/upload",
            files={"file": ("plan.png", encoded.tobytes(), "image/png")},
            data={"dpi": "200", "scale_text": "Maßstab 1:100", "include_output_image": "true"},
        )
        assert response.status_code == 200
        body = response.json()
        assert body["scale"]["scanDpi"] == 200
        assert body["scale"]["ratio"] == 100
        assert "output_image" in body

    def test_upload_garbage(self, client):
        """Test that an undecodable upload is a client error."""
        response = client.post(
            "/process/upload",
            files={"file": ("plan.png", b"not an image", "image/png")},
            data={"dpi": "300"},
        )
        assert response.status_code == 400
