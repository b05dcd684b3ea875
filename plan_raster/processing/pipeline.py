"""
End-to-end plan raster job.

Resolves the drawing scale, tiles the raster, runs region inference per
tile with bounded concurrency, lifts detections to global coordinates,
deduplicates them and composites a fresh output buffer.
"""

import json
import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, Any, List, Optional, Union

import numpy as np

from ..classification.classifier import PixelClassifier
from ..classification.compositor import CompositeResult, Compositor
from ..config.pipeline_config import PipelineConfig
from ..errors import ConfigurationError, PlanRasterError
from ..inference.adapters import NullBackend, RegionInferenceAdapter
from ..inference.text_extraction import NullTextExtractor, TextExtractor
from ..raster import RasterImage, load_raster
from ..scale.resolver import ScaleResolver, ScaleResult
from ..tiling.dedup import RegionDeduplicator
from ..tiling.models import DetectedRegion, TileDescriptor, TileStatus
from ..tiling.processor import DispatchReport, ProcessingProgress, TileDispatcher
from ..tiling.tiler import TilePartitioner
from ..tiling.transforms import region_to_global

logger = logging.getLogger(__name__)


class JobState(Enum):
    """Lifecycle of a single pipeline job."""
    INIT = "init"
    SCALE_RESOLVED = "scale_resolved"
    TILING = "tiling"
    PER_TILE_INFERENCE = "per_tile_inference"
    AGGREGATING = "aggregating"
    DEDUPING = "deduping"
    COMPOSITING = "compositing"
    DONE = "done"
    FAILED = "failed"


# FAILED is reachable from any non-terminal state, but only on fatal errors
_TRANSITIONS = {
    JobState.INIT: {JobState.SCALE_RESOLVED, JobState.FAILED},
    JobState.SCALE_RESOLVED: {JobState.TILING, JobState.FAILED},
    JobState.TILING: {JobState.PER_TILE_INFERENCE, JobState.FAILED},
    JobState.PER_TILE_INFERENCE: {JobState.AGGREGATING, JobState.FAILED},
    JobState.AGGREGATING: {JobState.DEDUPING, JobState.FAILED},
    JobState.DEDUPING: {JobState.COMPOSITING, JobState.FAILED},
    JobState.COMPOSITING: {JobState.DONE, JobState.FAILED},
    JobState.DONE: set(),
    JobState.FAILED: set(),
}


class JobStateMachine:
    """Validated job state with transition history."""

    def __init__(self):
        self.state = JobState.INIT
        self.history: List[JobState] = [JobState.INIT]

    def advance(self, new_state: JobState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"invalid job transition {self.state.value} -> {new_state.value}")
        logger.debug(f"Job state {self.state.value} -> {new_state.value}")
        self.state = new_state
        self.history.append(new_state)

    def fail(self) -> None:
        if self.state not in (JobState.DONE, JobState.FAILED):
            self.advance(JobState.FAILED)


@dataclass
class TileStats:
    """Per-job tile counts."""
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    timed_out: int = 0
    skipped: int = 0
    cancelled: int = 0

    @classmethod
    def from_report(cls, report: DispatchReport) -> "TileStats":
        return cls(
            total=len(report.results),
            succeeded=report.count(TileStatus.OK),
            failed=report.count(TileStatus.FAILED),
            timed_out=report.count(TileStatus.TIMED_OUT),
            skipped=report.count(TileStatus.SKIPPED),
            cancelled=report.count(TileStatus.CANCELLED),
        )

    @property
    def empty_contributions(self) -> int:
        """Tiles that contributed nothing because of a failure or cancellation."""
        return self.failed + self.timed_out + self.skipped + self.cancelled

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "timed_out": self.timed_out,
            "skipped": self.skipped,
            "cancelled": self.cancelled,
        }


@dataclass
class PipelineResult:
    """
    Outcome of a pipeline job.

    ``status`` is "complete" when every tile was processed, "partial" when the
    job was cancelled, and "failed" when a fatal error stopped it. ``quality``
    is "trusted" only for a complete job with a trusted scale and no failed
    or timed-out tiles; anything else is "degraded".
    """
    status: str
    state: JobState
    scale: Optional[ScaleResult] = None
    output: Optional[np.ndarray] = None
    regions: List[DetectedRegion] = field(default_factory=list)
    tiles: List[TileDescriptor] = field(default_factory=list)
    tile_stats: TileStats = field(default_factory=TileStats)
    duplicates_removed: int = 0
    composite: Optional[CompositeResult] = None
    state_history: List[JobState] = field(default_factory=list)
    metrics: Dict[str, Any] = field(default_factory=dict)
    errors: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def quality(self) -> str:
        trusted = (
            self.status == "complete"
            and self.scale is not None
            and self.scale.is_trusted
            and self.tile_stats.empty_contributions == 0
        )
        return "trusted" if trusted else "degraded"

    @property
    def classification(self) -> Optional[Dict[str, Any]]:
        if self.composite is None or self.composite.classification is None:
            return None
        return self.composite.classification.to_dict()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary (without pixel data)."""
        return {
            "status": self.status,
            "state": self.state.value,
            "quality": self.quality,
            "scale": self.scale.to_dict() if self.scale else None,
            "regions": [r.to_dict() for r in self.regions],
            "region_count": len(self.regions),
            "tiles": self.tile_stats.to_dict(),
            "duplicates_removed": self.duplicates_removed,
            "composite": self.composite.to_dict() if self.composite else None,
            "classification": self.classification,
            "state_history": [s.value for s in self.state_history],
            "metrics": self.metrics,
            "errors": self.errors,
        }

    def regions_to_json(self, indent: int = 2) -> str:
        """Auditable list of retained regions."""
        return json.dumps([r.to_dict() for r in self.regions], indent=indent)

    @classmethod
    def from_error(cls, error: PlanRasterError) -> "PipelineResult":
        """Result record for a job stopped by a fatal error."""
        return cls(
            status="failed",
            state=JobState.FAILED,
            state_history=[JobState.INIT, JobState.FAILED],
            errors=[error.to_dict()],
        )


class PlanPipeline:
    """
    Runs the full plan raster job.

    Collaborators are chosen once at construction; nothing is looked up per call.

    Example:
        >>> pipeline = PlanPipeline(PipelineConfig(assumed_scan_dpi=300))
        >>> result = pipeline.run(load_raster("plan.png"))
        >>> if result.quality != "trusted":
        ...     review(result)
    """

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        inference_backend: Optional[RegionInferenceAdapter] = None,
        text_extractor: Optional[TextExtractor] = None,
        progress_callback: Optional[Callable[[ProcessingProgress], None]] = None,
    ):
        """
        Initialize the pipeline.

        Args:
            config: Job configuration (validated on construction)
            inference_backend: Per-tile region detector; NullBackend if None
            text_extractor: OCR collaborator for scale text; none if None
            progress_callback: Called as tiles finish
        """
        self.config = config or PipelineConfig()
        self.inference_backend = inference_backend or NullBackend()
        self.text_extractor = text_extractor or NullTextExtractor()
        self.progress_callback = progress_callback

        self.partitioner = TilePartitioner(config=self.config)
        self.scale_resolver = ScaleResolver(self.config, self.text_extractor)
        self.deduplicator = RegionDeduplicator(
            tolerance_px=self.config.dedup_tolerance_px,
            strategy=self.config.dedup_strategy,
            iou_threshold=self.config.dedup_iou_threshold,
        )
        self.compositor = Compositor(
            mode=self.config.composite_mode,
            padding=self.config.erase_padding_px,
            background_value=self.config.background_value,
            classifier=PixelClassifier(config=self.config),
        )

    def _scan_dpi(self, image: RasterImage) -> float:
        dpi = self.config.assumed_scan_dpi if self.config.assumed_scan_dpi is not None else image.dpi
        if dpi is None:
            raise ConfigurationError(
                "scan resolution unknown: set assumed_scan_dpi or supply an image with DPI metadata",
                details={"source": image.source},
            )
        return float(dpi)

    def _aggregate(self, image: RasterImage, report: DispatchReport) -> List[DetectedRegion]:
        aggregated = []
        dropped = 0
        for result in report.results:
            if not result.ok:
                continue
            for region in result.regions:
                lifted = region_to_global(region, result.tile, image.width, image.height)
                if lifted.bbox.area <= 0 or lifted.confidence < self.config.min_region_confidence:
                    dropped += 1
                    continue
                aggregated.append(lifted)
        if dropped:
            logger.debug(f"Dropped {dropped} empty or low-confidence detections")
        return aggregated

    def run(
        self,
        image: RasterImage,
        cancel_event: Optional[threading.Event] = None,
        supplied_scale_text: Optional[str] = None,
    ) -> PipelineResult:
        """
        Process one raster.

        Args:
            image: Decoded source raster; its buffer is frozen read-only
            cancel_event: Set to stop the job and return a partial result
            supplied_scale_text: Text the caller already has for scale matching

        Returns:
            PipelineResult

        Raises:
            ConfigurationError: If the scan resolution is unknown
            PlanRasterError: For other fatal errors
        """
        machine = JobStateMachine()
        cancel_event = cancel_event or threading.Event()
        start_time = time.time()
        metrics: Dict[str, Any] = {}
        was_writeable = image.pixels.flags.writeable

        try:
            image.freeze()
            dpi = self._scan_dpi(image)

            t = time.time()
            scale = self.scale_resolver.resolve(image, scan_dpi=dpi, supplied_text=supplied_scale_text)
            metrics["scale_time_ms"] = (time.time() - t) * 1000
            machine.advance(JobState.SCALE_RESOLVED)

            machine.advance(JobState.TILING)
            tiles = self.partitioner.partition(image.width, image.height)
            logger.info(f"Partitioned {image.width}x{image.height} into {len(tiles)} tiles")

            machine.advance(JobState.PER_TILE_INFERENCE)
            t = time.time()
            dispatcher = TileDispatcher(
                self.inference_backend,
                max_workers=self.config.max_tile_concurrency,
                per_tile_timeout_s=self.config.per_tile_timeout_s,
                progress_callback=self.progress_callback,
            )
            report = dispatcher.dispatch(image.pixels, tiles, cancel_event)
            metrics["inference_time_ms"] = (time.time() - t) * 1000

            machine.advance(JobState.AGGREGATING)
            aggregated = self._aggregate(image, report)

            machine.advance(JobState.DEDUPING)
            regions = self.deduplicator.dedupe(aggregated)

            machine.advance(JobState.COMPOSITING)
            t = time.time()
            composite = self.compositor.compose(image.pixels, regions)
            metrics["composite_time_ms"] = (time.time() - t) * 1000

            machine.advance(JobState.DONE)
        except PlanRasterError:
            machine.fail()
            logger.error(f"Job failed in state {machine.history[-2].value}")
            raise
        except Exception:
            machine.fail()
            raise
        finally:
            if was_writeable:
                image.pixels.flags.writeable = True

        metrics["total_time_ms"] = (time.time() - start_time) * 1000
        result = PipelineResult(
            status="partial" if report.cancelled else "complete",
            state=machine.state,
            scale=scale,
            output=composite.pixels,
            regions=regions,
            tiles=tiles,
            tile_stats=TileStats.from_report(report),
            duplicates_removed=len(aggregated) - len(regions),
            composite=composite,
            state_history=list(machine.history),
            metrics=metrics,
            errors=[f.to_dict() for f in report.failures],
        )
        logger.info(
            f"Job {result.status} ({result.quality}): scale {scale.notation} via {scale.method.value}, "
            f"{len(regions)} regions, {result.tile_stats.succeeded}/{len(tiles)} tiles ok, "
            f"{metrics['total_time_ms']:.0f}ms"
        )
        return result

    def process_file(
        self,
        path: Union[str, Path],
        dpi: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
        supplied_scale_text: Optional[str] = None,
    ) -> PipelineResult:
        """
        Load a raster from disk and process it.

        Raises:
            ImageLoadError: If the file cannot be loaded
        """
        image = load_raster(path, dpi=dpi)
        return self.run(image, cancel_event=cancel_event, supplied_scale_text=supplied_scale_text)

    def close(self) -> None:
        """Release backend resources."""
        self.inference_backend.close()
