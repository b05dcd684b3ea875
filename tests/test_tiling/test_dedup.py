"""Tests for cross-tile deduplication."""

import pytest

from plan_raster.tiling.dedup import RegionDeduplicator, dedupe, dedupe_by_iou
from plan_raster.tiling.models import BBox, BoxConvention, DetectedRegion


def region(x, y, w=40, h=12, tile_index=0, text=None):
    """Global detection helper."""
    return DetectedRegion(
        bbox=BBox(x, y, w, h, BoxConvention.GLOBAL),
        confidence=0.9,
        tile_index=tile_index,
        text=text,
    )


class TestDedupe:
    """Tests for origin-distance deduplication."""

    def test_close_origins_collapse(self):
        """Test that detections within tolerance collapse to one."""
        result = dedupe([region(100, 100, tile_index=0), region(105, 96, tile_index=1)], tolerance_px=10)
        assert len(result) == 1
        assert result[0].tile_index == 0

    def test_boundary_is_inclusive(self):
        """Test that a distance exactly equal to the tolerance is a duplicate."""
        result = dedupe([region(100, 100), region(110, 110)], tolerance_px=10)
        assert len(result) == 1

    def test_far_origins_survive(self):
        """Test that detections farther apart than tolerance both survive."""
        result = dedupe([region(100, 100), region(111, 100)], tolerance_px=10)
        assert len(result) == 2

    def test_one_axis_far_survives(self):
        """Test that closeness on only one axis is not a duplicate."""
        result = dedupe([region(100, 100), region(100, 130)], tolerance_px=10)
        assert len(result) == 2

    def test_four_tile_corner(self):
        """Test a label in a four-way overlap reported by every tile."""
        detections = [region(600 + i, 600 - i, tile_index=i) for i in range(4)]
        result = dedupe(detections, tolerance_px=10)
        assert [r.tile_index for r in result] == [0]

    def test_order_preserved(self):
        """Test that surviving detections keep input order."""
        detections = [region(500, 10, text="b"), region(10, 10, text="a"), region(503, 12, text="dup")]
        assert [r.text for r in dedupe(detections, 10)] == ["b", "a"]

    def test_idempotent(self):
        """Test that deduplicating twice equals deduplicating once."""
        detections = [region(x, y) for x, y in [(0, 0), (5, 5), (12, 0), (20, 3), (40, 40), (44, 49)]]
        once = dedupe(detections, 10)
        assert dedupe(once, 10) == once

    def test_empty(self):
        """Test empty input."""
        assert dedupe([], 10) == []

    def test_zero_tolerance(self):
        """Test that zero tolerance removes only identical origins."""
        result = dedupe([region(1, 1), region(1, 1), region(2, 1)], tolerance_px=0)
        assert len(result) == 2

    def test_rejects_local_boxes(self):
        """Test that tile-local detections are rejected."""
        local = DetectedRegion(BBox(0, 0, 1, 1, BoxConvention.PIXEL), 0.5, 0)
        with pytest.raises(ValueError, match="global"):
            dedupe([local], 10)

    def test_negative_tolerance(self):
        """Test that negative tolerance is rejected."""
        with pytest.raises(ValueError):
            dedupe([], -1)


class TestDedupeByIou:
    """Tests for IoU-based deduplication."""

    def test_overlapping_boxes_collapse(self):
        """Test that heavily overlapping boxes collapse."""
        result = dedupe_by_iou([region(100, 100), region(102, 100)], iou_threshold=0.5)
        assert len(result) == 1

    def test_close_disjoint_boxes_survive(self):
        """Test that adjacent but disjoint labels both survive."""
        detections = [region(100, 100, w=8, h=8), region(108, 100, w=8, h=8)]
        assert len(dedupe(detections, 10)) == 1
        assert len(dedupe_by_iou(detections, 0.5)) == 2

    def test_idempotent(self):
        """Test that IoU deduplication is idempotent."""
        detections = [region(x, 0) for x in (0, 3, 30, 33, 100)]
        once = dedupe_by_iou(detections, 0.5)
        assert dedupe_by_iou(once, 0.5) == once


class TestRegionDeduplicator:
    """Tests for strategy selection."""

    def test_origin_strategy_default(self):
        """Test that origin distance is the default strategy."""
        deduplicator = RegionDeduplicator(tolerance_px=10)
        assert deduplicator.strategy == "origin"
        assert len(deduplicator.dedupe([region(0, 0), region(9, 9)])) == 1

    def test_iou_strategy(self):
        """Test selecting the IoU strategy."""
        deduplicator = RegionDeduplicator(strategy="iou", iou_threshold=0.5)
        detections = [region(100, 100, w=8, h=8), region(108, 100, w=8, h=8)]
        assert len(deduplicator.dedupe(detections)) == 2

    def test_unknown_strategy(self):
        """Test that unknown strategies are rejected."""
        with pytest.raises(ValueError):
            RegionDeduplicator(strategy="nearest")
