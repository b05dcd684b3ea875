"""
Plan raster processing.

Resolves the drawing scale of scanned construction plans, tiles them for a
size-limited vision backend, removes printed text regions and classifies
structural linework.
"""

from .config import PipelineConfig, CandidateRegion
from .errors import (
    PlanRasterError,
    ConfigurationError,
    ImageLoadError,
    BackendUnavailableError,
    PartialTileFailure,
)
from .raster import RasterImage, load_raster, save_raster
from .processing import PlanPipeline, PipelineResult, JobState
from .scale import ScaleResolver, ScaleResult, ScaleMethod
from .tiling import TilePartitioner, DetectedRegion, BBox, BoxConvention, TileDescriptor

__version__ = "0.1.0"

__all__ = [
    "PipelineConfig",
    "CandidateRegion",
    "PlanRasterError",
    "ConfigurationError",
    "ImageLoadError",
    "BackendUnavailableError",
    "PartialTileFailure",
    "RasterImage",
    "load_raster",
    "save_raster",
    "PlanPipeline",
    "PipelineResult",
    "JobState",
    "ScaleResolver",
    "ScaleResult",
    "ScaleMethod",
    "TilePartitioner",
    "DetectedRegion",
    "BBox",
    "BoxConvention",
    "TileDescriptor",
]
