"""
Tests for the plan_raster command-line interface.
"""

import json
import os
import subprocess
import sys

import cv2
import numpy as np
import pytest

from plan_raster.cli import main, setup_argparse
from plan_raster.raster import save_raster
from tests.fixtures.plan_fixtures import create_dark_rectangle

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


def run_cli(*args):
    """Run ``python -m plan_raster`` from the project root."""
    return subprocess.run(
        [sys.executable, "-m", "plan_raster", *args],
        capture_output=True,
        text=True,
        cwd=PROJECT_ROOT,
    )


@pytest.fixture
def plan_path(tmp_path):
    """A small plan image without DPI metadata."""
    path = tmp_path / "plan.png"
    cv2.imwrite(str(path), create_dark_rectangle())
    return str(path)


@pytest.fixture
def plan_path_with_dpi(tmp_path):
    """A small plan image carrying 300 dpi metadata."""
    return save_raster(create_dark_rectangle(), tmp_path / "plan_300.png", dpi=300)


class TestModuleEntryPoint:
    """Tests running the package as a module."""

    def test_tiles_command(self):
        """Test that tiles prints the grid as JSON."""
        result = run_cli("tiles", "2016", "1344")

        assert result.returncode == 0
        output = json.loads(result.stdout)
        assert output["tile_count"] == 12
        assert output["grid"] == {"rows": 3, "cols": 4}
        assert output["step"] == 608

    def test_process_command(self, plan_path, tmp_path):
        """Test a full run with explicit DPI and no OCR."""
        output_path = tmp_path / "clean.png"
        result = run_cli("process", plan_path, "--dpi", "300", "--ocr", "none", "-o", str(output_path))

        assert result.returncode == 0
        report = json.loads(result.stdout)
        assert report["status"] == "complete"
        assert report["state"] == "done"
        assert report["scale"]["method"] == "default"
        assert output_path.exists()
        np.testing.assert_array_equal(cv2.imread(str(output_path)), cv2.imread(plan_path))

    def test_missing_file(self):
        """Test that a missing input returns exit code 1."""
        result = run_cli("process", "nonexistent.png", "--dpi", "300", "--ocr", "none")

        assert result.returncode == 1
        assert "Error:" in result.stderr

    def test_help_shows_usage(self):
        """Test that --help lists the commands."""
        result = run_cli("--help")

        assert result.returncode == 0
        for command in ("process", "scale", "tiles"):
            assert command in result.stdout


class TestMain:
    """Tests calling main() in-process."""

    def test_no_command_prints_help(self, capsys):
        """Test that running without a command shows help."""
        assert main([]) == 0
        assert "usage" in capsys.readouterr().out.lower()

    def test_missing_dpi_is_error(self, plan_path, capsys):
        """Test that an image without DPI needs --dpi."""
        assert main(["process", plan_path, "--ocr", "none"]) == 1
        assert "scan resolution" in capsys.readouterr().err

    def test_failed_report_written(self, plan_path, tmp_path):
        """Test that a failed job still writes its report."""
        report_path = tmp_path / "report.json"
        assert main(["process", plan_path, "--ocr", "none", "--report", str(report_path)]) == 1
        report = json.loads(report_path.read_text())
        assert report["status"] == "failed"
        assert report["errors"][0]["code"] == "configuration_error"

    def test_process_with_report_and_overlay(self, plan_path_with_dpi, tmp_path):
        """Test writing report and QA overlay files."""
        report_path = tmp_path / "out" / "report.json"
        overlay_path = tmp_path / "out" / "overlay.png"
        code = main([
            "process", plan_path_with_dpi, "--ocr", "none",
            "--tile-size", "128", "--overlap", "16",
            "--report", str(report_path), "--overlay", str(overlay_path),
        ])

        assert code == 0
        report = json.loads(report_path.read_text())
        assert report["tiles"]["total"] == 6
        assert report["input"] == plan_path_with_dpi
        assert cv2.imread(str(overlay_path)) is not None

    def test_unwritable_output_is_error(self, plan_path, tmp_path, capsys):
        """Test that a failed output write exits with an error message."""
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        output_path = blocker / "out.png"

        code = main(["process", plan_path, "--dpi", "300", "--ocr", "none", "--output", str(output_path)])

        assert code == 1
        assert "Error:" in capsys.readouterr().err
        assert not output_path.exists()

    def test_unwritable_overlay_is_error(self, plan_path, tmp_path, capsys):
        """Test that a failed overlay write exits with an error message."""
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")

        code = main([
            "process", plan_path, "--dpi", "300", "--ocr", "none",
            "--overlay", str(blocker / "overlay.png"),
        ])

        assert code == 1
        assert "Error:" in capsys.readouterr().err

    def test_reclassify_mode(self, plan_path, capsys):
        """Test the --mode option."""
        assert main(["process", plan_path, "--dpi", "300", "--ocr", "none", "--mode", "reclassify"]) == 0
        report = json.loads(capsys.readouterr().out)
        assert report["composite"]["mode"] == "reclassify"

    def test_config_file(self, plan_path, tmp_path, capsys):
        """Test loading options from YAML with command-line overrides on top."""
        config_path = tmp_path / "pipeline.yaml"
        config_path.write_text("pipeline:\n  tile_size: 100\n  overlap: 10\n  assumed_scan_dpi: 150\n")

        assert main(["process", plan_path, "--config", str(config_path), "--ocr", "none", "--overlap", "20"]) == 0
        report = json.loads(capsys.readouterr().out)
        assert report["scale"]["scanDpi"] == 150
        # 300x200 with step 80
        assert report["tiles"]["total"] == 12

    def test_invalid_config_is_error(self, plan_path, capsys):
        """Test that invalid tiling options are rejected before processing."""
        assert main(["process", plan_path, "--dpi", "300", "--tile-size", "64", "--overlap", "64"]) == 1
        assert "overlap" in capsys.readouterr().err

    def test_scale_command_with_text(self, plan_path, capsys):
        """Test scale resolution from caller-supplied text."""
        assert main(["scale", plan_path, "--dpi", "300", "--ocr", "none", "--scale-text", "M 1:50"]) == 0
        output = json.loads(capsys.readouterr().out)
        assert output["notation"] == "1:50"
        assert output["method"] == "pattern_fallback"
        assert output["trusted"] is True

    def test_tiles_invalid_overlap(self, capsys):
        """Test that tiles rejects an overlap not smaller than the tile size."""
        assert main(["tiles", "100", "100", "--tile-size", "50", "--overlap", "50"]) == 1
        assert "Error" in capsys.readouterr().err


class TestArgparse:
    """Tests for argument parsing."""

    def test_process_defaults(self):
        """Test default backend choices."""
        args = setup_argparse().parse_args(["process", "plan.png"])
        assert args.backend == "null"
        assert args.ocr == "tesseract"
        assert args.mode is None

    def test_invalid_mode_rejected(self):
        """Test that unknown composite modes are rejected by argparse."""
        with pytest.raises(SystemExit):
            setup_argparse().parse_args(["process", "plan.png", "--mode", "blur"])
