"""Tests for output compositing."""

import numpy as np
import pytest

from plan_raster.classification.classifier import PixelClassifier
from plan_raster.classification.compositor import (
    Compositor,
    erase_regions,
    reclassify,
    region_fill_box,
)
from plan_raster.tiling.models import BBox, BoxConvention, DetectedRegion
from tests.fixtures.plan_fixtures import (
    create_dark_rectangle,
    create_flat_gray,
    create_hatched_patch,
    create_white_image,
)


def global_region(x, y, w, h, confidence=0.9):
    """A detection already lifted to global coordinates."""
    return DetectedRegion(
        bbox=BBox(x, y, w, h, BoxConvention.GLOBAL),
        confidence=confidence,
        tile_index=0,
    )


class TestReclassify:
    """Tests for reclassify mode."""

    def test_dark_rectangle_reproduced(self):
        """Test that a plan of pure linework comes out unchanged."""
        image = create_dark_rectangle()
        result = Compositor(mode="reclassify").compose(image)
        np.testing.assert_array_equal(result.pixels, image)
        assert result.pixels is not image

    def test_flat_gray_becomes_background(self):
        """Test that untextured gray is dropped to white."""
        result = Compositor(mode="reclassify").compose(create_flat_gray())
        assert (result.pixels == 255).all()

    def test_hatching_survives(self):
        """Test that textured fill is copied into the output."""
        image = create_hatched_patch()
        result = Compositor(mode="reclassify").compose(image)
        np.testing.assert_array_equal(result.pixels[30:90, 30:90], image[30:90, 30:90])
        assert result.classification is not None

    def test_shape_mismatch(self):
        """Test that a classification for another image is rejected."""
        classification = PixelClassifier().classify(create_white_image((10, 10)))
        with pytest.raises(ValueError):
            reclassify(create_white_image((20, 20)), classification)

    def test_custom_background_value(self):
        """Test the configured fill value."""
        classification = PixelClassifier().classify(create_flat_gray())
        output = reclassify(create_flat_gray(), classification, background_value=240)
        assert (output == 240).all()


class TestRegionFillBox:
    """Tests for region_fill_box."""

    def test_padding_and_rounding(self):
        """Test that fractional boxes are expanded outwards and padded."""
        box = region_fill_box(global_region(10.4, 20.6, 5.2, 3.1), 100, 100, padding=2)
        assert box == (8, 18, 18, 26)

    def test_clipped_to_image(self):
        """Test clipping at the image border."""
        assert region_fill_box(global_region(95, -3, 20, 10), 100, 50, padding=4) == (91, 0, 100, 11)

    def test_outside_image(self):
        """Test that a box entirely outside the image yields None."""
        assert region_fill_box(global_region(200, 200, 5, 5), 100, 100, padding=0) is None

    def test_local_region_rejected(self):
        """Test that tile-local boxes cannot be composited."""
        region = DetectedRegion(bbox=BBox(1, 1, 2, 2), confidence=0.9, tile_index=3)
        with pytest.raises(ValueError):
            region_fill_box(region, 100, 100, 0)


class TestErase:
    """Tests for erase mode."""

    def test_erases_padded_box(self):
        """Test that the padded region is filled and nothing else changes."""
        image = create_dark_rectangle(size=(100, 100), rect=(0, 0, 100, 100))
        output, erased, pixels = erase_regions(image, [global_region(40, 40, 10, 10)], padding=4)
        assert erased == 1
        assert pixels == 18 * 18
        assert (output[36:54, 36:54] == 255).all()
        assert (output[:36] == 0).all()
        assert (output[54:] == 0).all()

    def test_overlapping_regions_counted_once(self):
        """Test that erased pixels are counted by union."""
        image = create_white_image((50, 50))
        regions = [global_region(10, 10, 10, 10), global_region(15, 15, 10, 10)]
        _, erased, pixels = erase_regions(image, regions, padding=0)
        assert erased == 2
        assert pixels == 100 + 100 - 25

    def test_no_regions_is_copy(self):
        """Test that erase without detections reproduces the source."""
        image = create_hatched_patch()
        result = Compositor(mode="erase").compose(image, [])
        np.testing.assert_array_equal(result.pixels, image)
        assert result.erased_regions == 0
        assert result.pixels is not image

    def test_source_never_mutated(self):
        """Test that the source buffer is only read."""
        image = create_dark_rectangle()
        image.flags.writeable = False
        result = Compositor(mode="erase", padding=2).compose(image, [global_region(60, 50, 20, 20)])
        assert (image[50:70, 60:80] == 0).all()
        assert (result.pixels[50:70, 60:80] == 255).all()

    def test_grayscale_source(self):
        """Test erasing a single-channel buffer."""
        image = np.zeros((30, 30), dtype=np.uint8)
        result = Compositor(mode="erase", padding=0, background_value=200).compose(
            image, [global_region(5, 5, 10, 10)]
        )
        assert (result.pixels[5:15, 5:15] == 200).all()
        assert result.pixels[0, 0] == 0


class TestCompositor:
    """Tests for Compositor construction and reporting."""

    def test_unknown_mode(self):
        """Test that unknown modes are rejected."""
        with pytest.raises(ValueError):
            Compositor(mode="blur")

    def test_to_dict(self):
        """Test the summary record."""
        result = Compositor(mode="erase").compose(create_white_image(), [global_region(1, 1, 4, 4)])
        data = result.to_dict()
        assert data["mode"] == "erase"
        assert data["erased_regions"] == 1
        assert data["width"] == 300
        assert data["height"] == 200
        assert data["classification"] is None
