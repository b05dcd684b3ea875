"""
Command-line interface for plan raster processing.

Usage:
    python -m plan_raster process <image_path> [--dpi 300] [--mode erase|reclassify] [--output out.png]
    python -m plan_raster scale <image_path> [--dpi 300] [--ocr tesseract|none] [--scale-text "M 1:50"]
    python -m plan_raster tiles <width> <height> [--tile-size 672] [--overlap 64]
    python -m plan_raster --help
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from plan_raster.errors import PlanRasterError


def _add_config_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        type=str,
        help="YAML configuration file (top-level 'pipeline' key or bare mapping)",
    )
    parser.add_argument(
        "--dpi",
        type=float,
        help="Scan resolution; overrides image metadata",
    )
    parser.add_argument(
        "--ocr",
        choices=["tesseract", "none"],
        default="tesseract",
        help="Text extraction backend for scale notation (default: tesseract)",
    )
    parser.add_argument(
        "--scale-text",
        type=str,
        help="Scale text already known to the caller, e.g. 'M 1:50'",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )


def setup_argparse() -> argparse.ArgumentParser:
    """Set up argument parser."""
    parser = argparse.ArgumentParser(
        prog="plan_raster",
        description="Scale resolution, tiling and text removal for scanned construction plans",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # process command
    process_parser = subparsers.add_parser(
        "process",
        help="Run the full pipeline on an image",
    )
    process_parser.add_argument(
        "image_path",
        type=str,
        help="Path to the input image",
    )
    _add_config_arguments(process_parser)
    process_parser.add_argument(
        "--mode",
        choices=["erase", "reclassify"],
        help="Composite mode (default from config: erase)",
    )
    process_parser.add_argument(
        "--backend",
        choices=["null", "tesseract"],
        default="null",
        help="Region inference backend (default: null)",
    )
    process_parser.add_argument("--tile-size", type=int, help="Tile edge length in pixels")
    process_parser.add_argument("--overlap", type=int, help="Overlap between tiles in pixels")
    process_parser.add_argument("--workers", type=int, help="Max concurrent tile inference calls")
    process_parser.add_argument("--timeout", type=float, help="Per-tile timeout in seconds")
    process_parser.add_argument(
        "--output",
        "-o",
        type=str,
        help="Path for the output image",
    )
    process_parser.add_argument(
        "--report",
        type=str,
        help="Path for the JSON report (default: print to stdout)",
    )
    process_parser.add_argument(
        "--overlay",
        type=str,
        help="Path for a QA overlay with tiles and retained regions",
    )

    # scale command
    scale_parser = subparsers.add_parser(
        "scale",
        help="Resolve the drawing scale only",
    )
    scale_parser.add_argument(
        "image_path",
        type=str,
        help="Path to the input image",
    )
    _add_config_arguments(scale_parser)

    # tiles command
    tiles_parser = subparsers.add_parser(
        "tiles",
        help="Print the tile grid for an image size",
    )
    tiles_parser.add_argument("width", type=int, help="Image width in pixels")
    tiles_parser.add_argument("height", type=int, help="Image height in pixels")
    tiles_parser.add_argument("--tile-size", type=int, default=672, help="Tile edge length (default: 672)")
    tiles_parser.add_argument("--overlap", type=int, default=64, help="Overlap in pixels (default: 64)")

    return parser


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _load_config(args):
    """Build the pipeline configuration from file + command-line overrides."""
    from plan_raster.config import PipelineConfig

    data = {}
    if args.config:
        data = PipelineConfig.from_yaml(args.config).to_dict()

    overrides = {
        "assumed_scan_dpi": args.dpi,
        "composite_mode": getattr(args, "mode", None),
        "tile_size": getattr(args, "tile_size", None),
        "overlap": getattr(args, "overlap", None),
        "max_tile_concurrency": getattr(args, "workers", None),
        "per_tile_timeout_s": getattr(args, "timeout", None),
    }
    data.update({k: v for k, v in overrides.items() if v is not None})
    return PipelineConfig.from_dict(data)


def cmd_process(args) -> int:
    """Handle process command."""
    from plan_raster.inference import create_inference_backend, create_text_extractor
    from plan_raster.processing import PlanPipeline, PipelineResult
    from plan_raster.raster import save_raster
    from plan_raster.tiling import save_overlay

    try:
        config = _load_config(args)
        pipeline = PlanPipeline(
            config,
            inference_backend=create_inference_backend(args.backend),
            text_extractor=create_text_extractor(args.ocr),
        )
        try:
            result = pipeline.process_file(args.image_path, supplied_scale_text=args.scale_text)
        finally:
            pipeline.close()
    except PlanRasterError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        if args.report:
            Path(args.report).write_text(json.dumps(PipelineResult.from_error(e).to_dict(), indent=2))
        return 1

    report = result.to_dict()
    report["input"] = str(args.image_path)
    report["output"] = args.output
    try:
        if args.output:
            save_raster(result.output, args.output, dpi=result.scale.scan_dpi)
        if args.overlay:
            save_overlay(result.output, result.tiles, args.overlay, regions=result.regions)
        if args.report:
            report_path = Path(args.report)
            report_path.parent.mkdir(parents=True, exist_ok=True)
            report_path.write_text(json.dumps(report, indent=2))
    except OSError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if not args.report:
        print(json.dumps(report, indent=2))
    return 0


def cmd_scale(args) -> int:
    """Handle scale command."""
    from plan_raster.inference import create_text_extractor
    from plan_raster.raster import load_raster
    from plan_raster.scale import ScaleResolver

    try:
        config = _load_config(args)
        image = load_raster(args.image_path, dpi=args.dpi)
        resolver = ScaleResolver(config, create_text_extractor(args.ocr))
        scan_dpi = config.assumed_scan_dpi if config.assumed_scan_dpi is not None else image.dpi
        result = resolver.resolve(image, scan_dpi=scan_dpi, supplied_text=args.scale_text)
    except PlanRasterError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1

    output = result.to_dict()
    output["trusted"] = result.is_trusted
    print(json.dumps(output, indent=2))
    return 0


def cmd_tiles(args) -> int:
    """Handle tiles command."""
    from plan_raster.tiling import TilePartitioner

    try:
        partitioner = TilePartitioner(tile_size=args.tile_size, overlap=args.overlap)
        tiles = partitioner.partition(args.width, args.height)
        rows, cols = partitioner.grid_shape(args.width, args.height)
    except (PlanRasterError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(json.dumps({
        "width": args.width,
        "height": args.height,
        "tile_size": args.tile_size,
        "overlap": args.overlap,
        "step": partitioner.step,
        "grid": {"rows": rows, "cols": cols},
        "tile_count": len(tiles),
        "tiles": [t.to_dict() for t in tiles],
    }, indent=2))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = setup_argparse()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    _setup_logging(getattr(args, "verbose", False))

    if args.command == "process":
        return cmd_process(args)
    if args.command == "scale":
        return cmd_scale(args)
    if args.command == "tiles":
        return cmd_tiles(args)

    return 0


if __name__ == "__main__":
    sys.exit(main())
