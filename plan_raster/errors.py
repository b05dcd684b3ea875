"""
Error taxonomy for the plan raster pipeline.

Fatal errors (ConfigurationError, ImageLoadError) abort a job. Recoverable
conditions (BackendUnavailableError, PartialTileFailure) are absorbed by the
pipeline and surfaced through result metadata instead.
"""

from typing import Dict, Any, Optional


class PlanRasterError(Exception):
    """Base class for all pipeline errors."""

    code = "plan_raster_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a structured, serializable error."""
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(PlanRasterError, ValueError):
    """Invalid option combination. Raised before any processing begins."""

    code = "configuration_error"


class ImageLoadError(PlanRasterError, IOError):
    """The source raster cannot be obtained or decoded."""

    code = "image_load_error"


class BackendUnavailableError(PlanRasterError):
    """An inference or text-extraction collaborator is unreachable."""

    code = "backend_unavailable"


class PartialTileFailure(PlanRasterError):
    """
    A single tile's inference call failed or timed out.

    Instances are collected on the job result rather than raised out of
    the pipeline; the tile contributes zero detections.
    """

    code = "partial_tile_failure"

    def __init__(self, tile_index: int, reason: str, timed_out: bool = False):
        super().__init__(
            f"tile {tile_index}: {reason}",
            details={"tile_index": tile_index, "timed_out": timed_out},
        )
        self.tile_index = tile_index
        self.reason = reason
        self.timed_out = timed_out
