"""
Bounded-concurrency dispatch of tiles to an inference backend.

Tiles are independent; the backend call is the only blocking step. Each call
runs on its own daemon thread and at most ``max_workers`` run at once. A call
past its timeout is abandoned and frees its slot. Failures are absorbed per
tile, and a cancel event stops the job early.
"""

import logging
import threading
import time
from collections import deque
from concurrent.futures import Future, wait, FIRST_COMPLETED
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Any, TYPE_CHECKING

import numpy as np

from ..errors import PartialTileFailure
from .models import TileDescriptor, TileInferenceResult, TileStatus
from .tiler import TilePartitioner

if TYPE_CHECKING:
    from ..inference.adapters import RegionInferenceAdapter

logger = logging.getLogger(__name__)


@dataclass
class ProcessingProgress:
    """Progress information for tiled processing."""
    total_tiles: int
    completed_tiles: int
    current_tile: Optional[str] = None
    status: str = "pending"  # pending, processing, complete, cancelled
    error_message: Optional[str] = None

    @property
    def progress_percent(self) -> float:
        """Get completion percentage."""
        if self.total_tiles == 0:
            return 100.0
        return (self.completed_tiles / self.total_tiles) * 100

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "total_tiles": self.total_tiles,
            "completed_tiles": self.completed_tiles,
            "current_tile": self.current_tile,
            "status": self.status,
            "progress_percent": self.progress_percent,
            "error_message": self.error_message,
        }


@dataclass
class DispatchReport:
    """
    Outcome of dispatching every tile.

    Attributes:
        results: One result per tile, ordered by tile index
        failures: Recoverable per-tile failures (errors and timeouts)
        cancelled: True if the job was cancelled before all tiles finished
    """
    results: List[TileInferenceResult]
    failures: List[PartialTileFailure] = field(default_factory=list)
    cancelled: bool = False

    def count(self, status: TileStatus) -> int:
        return sum(1 for r in self.results if r.status == status)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "total": len(self.results),
            "ok": self.count(TileStatus.OK),
            "failed": self.count(TileStatus.FAILED),
            "timed_out": self.count(TileStatus.TIMED_OUT),
            "skipped": self.count(TileStatus.SKIPPED),
            "cancelled": self.count(TileStatus.CANCELLED),
            "job_cancelled": self.cancelled,
            "failures": [f.to_dict() for f in self.failures],
        }


class TileDispatcher:
    """
    Runs a RegionInferenceAdapter over tiles with bounded concurrency.

    Results are keyed by tile index and returned in index order, so the
    order in which calls complete never affects the output.

    Example:
        >>> dispatcher = TileDispatcher(backend, max_workers=4, per_tile_timeout_s=30)
        >>> report = dispatcher.dispatch(image.pixels, tiles)
    """

    def __init__(
        self,
        adapter: "RegionInferenceAdapter",
        max_workers: int = 4,
        per_tile_timeout_s: float = 30.0,
        progress_callback: Optional[Callable[[ProcessingProgress], None]] = None,
        poll_interval_s: float = 0.05,
    ):
        """
        Initialize the dispatcher.

        Args:
            adapter: Backend queried once per tile
            max_workers: Max concurrent backend calls
            per_tile_timeout_s: Timeout for one call, measured from its start
            progress_callback: Optional callback for progress updates
            poll_interval_s: How often running calls are checked for timeouts
        """
        if max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {max_workers}")
        if per_tile_timeout_s <= 0:
            raise ValueError(f"per_tile_timeout_s must be > 0, got {per_tile_timeout_s}")
        self.adapter = adapter
        self.max_workers = max_workers
        self.per_tile_timeout_s = per_tile_timeout_s
        self.progress_callback = progress_callback
        self.poll_interval_s = poll_interval_s
        self._progress = ProcessingProgress(total_tiles=0, completed_tiles=0)

    def _run_tile(
        self,
        image: np.ndarray,
        tile: TileDescriptor,
        cancel_event: threading.Event,
    ) -> Optional[list]:
        if cancel_event.is_set():
            return None
        pixels = TilePartitioner.extract(image, tile)
        return self.adapter.detect(pixels, tile)

    def _launch(
        self,
        image: np.ndarray,
        tile: TileDescriptor,
        started: Dict[int, float],
        cancel_event: threading.Event,
    ) -> Future:
        """Start one backend call on its own daemon thread."""
        future: Future = Future()
        future.set_running_or_notify_cancel()

        def target():
            try:
                regions = self._run_tile(image, tile, cancel_event)
            except Exception as e:
                future.set_exception(e)
            else:
                future.set_result(regions)

        started[tile.index] = time.monotonic()
        threading.Thread(target=target, name=f"tile-{tile.index}", daemon=True).start()
        return future

    def _collect(self, future: Future, tile: TileDescriptor, elapsed: float,
                 report: DispatchReport) -> TileInferenceResult:
        try:
            regions = future.result()
        except Exception as e:
            failure = PartialTileFailure(tile.index, f"{type(e).__name__}: {e}")
            report.failures.append(failure)
            logger.warning(f"Tile {tile.id} inference failed, contributing no detections: {e}")
            return TileInferenceResult(tile=tile, status=TileStatus.FAILED, error=str(e), elapsed_s=elapsed)

        if regions is None:
            return TileInferenceResult(tile=tile, status=TileStatus.SKIPPED, error="job cancelled", elapsed_s=elapsed)
        return TileInferenceResult(tile=tile, status=TileStatus.OK, regions=list(regions), elapsed_s=elapsed)

    def dispatch(
        self,
        image: np.ndarray,
        tiles: List[TileDescriptor],
        cancel_event: Optional[threading.Event] = None,
    ) -> DispatchReport:
        """
        Run inference on every tile.

        At most ``max_workers`` calls are in flight. A call that exceeds its
        timeout is abandoned and gives its slot to the next queued tile, so
        stuck calls never hold up the rest of the job.

        Args:
            image: Source pixel buffer (read only)
            tiles: Tile grid
            cancel_event: Set to stop dispatching and abandon in-flight calls

        Returns:
            DispatchReport with exactly one result per tile
        """
        cancel_event = cancel_event or threading.Event()
        report = DispatchReport(results=[])
        results: Dict[int, TileInferenceResult] = {}
        started: Dict[int, float] = {}
        queued = deque(tiles)
        running: Dict[Future, TileDescriptor] = {}
        total = len(tiles)
        self._update_progress(total, 0, "processing")

        while queued or running:
            if cancel_event.is_set():
                report.cancelled = True
                break

            while queued and len(running) < self.max_workers:
                tile = queued.popleft()
                running[self._launch(image, tile, started, cancel_event)] = tile

            done, _ = wait(list(running), timeout=self.poll_interval_s, return_when=FIRST_COMPLETED)
            now = time.monotonic()

            for future in done:
                tile = running.pop(future)
                results[tile.index] = self._collect(future, tile, now - started[tile.index], report)
                self._update_progress(total, len(results), "processing", tile.id)

            for future, tile in list(running.items()):
                elapsed = now - started[tile.index]
                if elapsed <= self.per_tile_timeout_s:
                    continue
                # The thread cannot be interrupted; it is abandoned and its late result ignored
                del running[future]
                failure = PartialTileFailure(
                    tile.index, f"timed out after {self.per_tile_timeout_s:.1f}s", timed_out=True
                )
                report.failures.append(failure)
                logger.warning(f"Tile {tile.id} timed out after {self.per_tile_timeout_s:.1f}s")
                results[tile.index] = TileInferenceResult(
                    tile=tile,
                    status=TileStatus.TIMED_OUT,
                    error=failure.reason,
                    elapsed_s=elapsed,
                )
                self._update_progress(total, len(results), "processing", tile.id)

        if report.cancelled:
            for future, tile in running.items():
                if future.done():
                    results[tile.index] = self._collect(future, tile, 0.0, report)
                else:
                    results[tile.index] = TileInferenceResult(
                        tile=tile, status=TileStatus.CANCELLED, error="job cancelled"
                    )
            for tile in queued:
                results[tile.index] = TileInferenceResult(
                    tile=tile, status=TileStatus.SKIPPED, error="job cancelled"
                )

        report.results = [results[tile.index] for tile in tiles]
        # Tiles that saw the cancel event before starting also mark the job cancelled
        if any(r.status in (TileStatus.SKIPPED, TileStatus.CANCELLED) for r in report.results):
            report.cancelled = True
        if report.cancelled:
            completed = report.count(TileStatus.OK)
            logger.warning(f"Job cancelled: {completed}/{total} tiles completed")
        self._update_progress(total, total, "cancelled" if report.cancelled else "complete")
        return report


    def _update_progress(
        self,
        total: int,
        completed: int,
        status: str,
        current_tile: Optional[str] = None,
        error: Optional[str] = None,
    ):
        """Update progress and notify callback."""
        self._progress = ProcessingProgress(
            total_tiles=total,
            completed_tiles=completed,
            current_tile=current_tile,
            status=status,
            error_message=error,
        )

        if self.progress_callback:
            self.progress_callback(self._progress)

    @property
    def progress(self) -> ProcessingProgress:
        """Get current processing progress."""
        return self._progress
