"""
Detection pipeline engine.

A fixed-period sampler drives the whole flow:
- Frame acquisition from an observation source
- Inference on the acquired frame
- Overlay rendering and session state update
- Rate-limited alert and snapshot reactions

Every tick runs as its own asyncio task. Ticks are never queued behind a slow
inference call, so up to max_inflight of them may overlap and finish out of
order; the most recently completed tick wins. Detector calls themselves are
serialized. A tick applies its result in one synchronous step (no awaits),
which makes the apply atomic with respect to other ticks.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Set

from models.detection import Detection
from models.frame import FrameData
from models.state import (
    PipelineMode,
    PipelineState,
    STATUS_ACTIVE,
    STATUS_CAMERA_ERROR,
    STATUS_CAMERA_STARTED,
    STATUS_MODEL_FAILED,
)
from inference.backend import InferenceBackend
from observation.base import ObservationSource
from pipeline.errors import AcquisitionFailure, InferenceFailure
from pipeline.overlay import OverlaySurface, render_detections
from pipeline.reactions import AlertReaction, SnapshotReaction


@dataclass
class PipelineConfig:
    """
    Configuration for the detection pipeline.

    Attributes:
        tick_interval: Seconds between sampler ticks.
        target_label: Class label that drives counting, overlay and alerts.
        offload_inference: Run frame acquisition and inference in worker
            threads so the event loop stays responsive.
        stats_log_interval: Seconds between status log messages.
        max_inflight: Ticks allowed to run at once; a tick that comes due
            while this many are outstanding is skipped.
    """
    tick_interval: float = 0.2
    target_label: str = "person"
    offload_inference: bool = True
    stats_log_interval: float = 60.0
    max_inflight: int = 2


@dataclass
class PipelineStats:
    """Runtime statistics for the pipeline."""
    ticks: int = 0
    ticks_skipped: int = 0
    inferences: int = 0
    inference_failures: int = 0
    acquisition_failures: int = 0
    results_applied: int = 0
    results_discarded: int = 0
    alerts_fired: int = 0
    snapshots_saved: int = 0
    start_time: float = field(default_factory=time.time)
    last_stats_log_time: float = field(default_factory=time.time)


class DetectionPipeline:
    """
    Samples frames, runs detection and reacts to the target label.

    Example:
        pipeline = DetectionPipeline(
            source,
            detector_factory=lambda: create_backend(detection_cfg),
            alert=AlertReaction(player),
            snapshot=SnapshotReaction(writer, "person"),
        )
        asyncio.run(pipeline.run())
    """

    def __init__(
        self,
        source: ObservationSource,
        detector_factory: Callable[[], InferenceBackend],
        alert: AlertReaction,
        snapshot: SnapshotReaction,
        config: Optional[PipelineConfig] = None,
        state: Optional[PipelineState] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.source = source
        self.alert = alert
        self.snapshot = snapshot
        self.config = config or PipelineConfig()
        self.state = state or PipelineState()
        self.surface = OverlaySurface()
        self.stats = PipelineStats()
        self._detector_factory = detector_factory
        self._detector: Optional[InferenceBackend] = None
        # Detectors hold per-call state (input blob, predictor) and are not
        # safe to run from two worker threads at once
        self._detect_lock = threading.Lock()
        self.last_frame: Optional[FrameData] = None
        self.clock = clock
        self._running = False
        self._camera_error = False
        self._inflight: Set[asyncio.Task] = set()
        self._callbacks: List[Callable[[FrameData, List[Detection], int], None]] = []

    @property
    def mode(self) -> PipelineMode:
        return self.state.mode

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def inflight_ticks(self) -> int:
        return len(self._inflight)

    def add_callback(self, callback: Callable[[FrameData, List[Detection], int], None]) -> None:
        """
        Add a callback to be called after each applied tick.

        Args:
            callback: Function taking (frame_data, detections, target_count).
        """
        self._callbacks.append(callback)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """
        Run the sampler until stop() is called.

        Opens the source, starts loading the detector in the background and
        schedules a tick every tick_interval seconds. On exit, in-flight ticks
        are awaited before the source is closed.
        """
        self._running = True
        self.stats = PipelineStats()
        loop = asyncio.get_running_loop()

        await self._start_source()
        loader = asyncio.create_task(self.load_detector())
        logging.info(
            f"Pipeline started: source={self.source.source_id}, "
            f"tick_interval={self.config.tick_interval}s, target={self.config.target_label}"
        )

        next_tick = loop.time()
        try:
            while self._running:
                self._schedule_tick()
                self._handle_periodic_tasks()

                next_tick += self.config.tick_interval
                delay = next_tick - loop.time()
                if delay < 0:
                    # Fell behind; resync instead of firing a burst of ticks
                    next_tick = loop.time()
                    delay = 0
                await asyncio.sleep(delay)
        finally:
            self._running = False
            loader.cancel()
            await asyncio.gather(loader, return_exceptions=True)
            await self.drain()
            self._cleanup()

    def stop(self) -> None:
        """Signal the sampler to stop after the current period."""
        self._running = False

    async def drain(self) -> None:
        """Wait for all in-flight ticks to finish."""
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    async def load_detector(self) -> bool:
        """
        Build the detector (ModelLoading -> Active, exactly once).

        Returns True once a detector is available. A failed load is logged
        and leaves the pipeline in ModelLoading.
        """
        if self.state.model_ready:
            return True
        try:
            detector = await self._call(self._detector_factory)
        except Exception as e:
            logging.error(f"Failed to load detection model: {e}")
            self.state.status_text = STATUS_MODEL_FAILED
            return False

        self._detector = detector
        if self.state.mark_model_ready():
            logging.info(f"Detection model loaded; pipeline is {self.state.mode.value}")
        return True

    async def _start_source(self) -> None:
        try:
            await self._call(self.source.open)
        except AcquisitionFailure as e:
            logging.error(f"Error accessing camera: {e}")
            self._camera_error = True
            self.state.status_text = STATUS_CAMERA_ERROR
            return
        self.state.status_text = STATUS_CAMERA_STARTED

    def _cleanup(self) -> None:
        try:
            self.source.close()
        except Exception as e:
            logging.warning(f"Error closing source: {e}")
        logging.info(
            f"Pipeline stopped: ticks={self.stats.ticks}, inferences={self.stats.inferences}, "
            f"alerts={self.stats.alerts_fired}, snapshots={self.stats.snapshots_saved}"
        )

    # ------------------------------------------------------------------
    # User controls
    # ------------------------------------------------------------------

    def toggle(self) -> bool:
        """Flip between Active and Paused. Returns the new enabled flag."""
        self.set_enabled(not self.state.enabled)
        return self.state.enabled

    def set_enabled(self, enabled: bool) -> None:
        """
        Explicit enable/disable.

        Disabling zeroes the count and clears the overlay before returning;
        ticks still in flight will find a new epoch and drop their results.
        Throttle history is left alone.
        """
        if not self.state.set_enabled(enabled):
            return
        if not enabled:
            self.surface.clear()
        logging.info(f"Detection {'resumed' if enabled else 'paused'}")

    async def capture_snapshot(self) -> Optional[Any]:
        """
        Manual snapshot of a fresh frame.

        Skips the snapshot throttle (and leaves its timer untouched) but goes
        through the same capture/encode/persist path. Refused while no target
        is currently detected.
        """
        if self.state.last_detection_count == 0:
            logging.info(f"Manual snapshot ignored: no {self.config.target_label} detected")
            return None
        try:
            frame_data = await self._call(self.source.acquire)
        except AcquisitionFailure as e:
            logging.warning(f"Manual snapshot failed: {e}")
            return None
        if frame_data is None:
            logging.warning("Manual snapshot failed: no frame available")
            return None
        path = self.snapshot.capture(frame_data.frame)
        if path is not None:
            self.stats.snapshots_saved += 1
        return path

    # ------------------------------------------------------------------
    # Ticks
    # ------------------------------------------------------------------

    def _schedule_tick(self) -> Optional[asyncio.Task]:
        """Start one tick as an independent task (never queued)."""
        if not self.state.model_ready or not self.state.enabled:
            return None
        if len(self._inflight) >= self.config.max_inflight:
            self.stats.ticks_skipped += 1
            logging.debug(f"Skipping tick: {len(self._inflight)} tick(s) still in flight")
            return None
        task = asyncio.create_task(self.tick())
        self._inflight.add(task)
        task.add_done_callback(self._on_tick_done)
        return task

    def _on_tick_done(self, task: asyncio.Task) -> None:
        self._inflight.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logging.error(f"Tick failed unexpectedly: {type(exc).__name__}: {exc}")

    async def tick(self) -> Optional[int]:
        """
        Run one detection-and-reaction sequence.

        Returns:
            Target count applied by this tick, or None if the tick was
            skipped (loading, paused, no frame) or its result discarded.
        """
        if self._detector is None or not self.state.model_ready:
            return None
        if not self.state.enabled:
            return None

        epoch = self.state.epoch
        self.stats.ticks += 1

        try:
            frame_data = await self._call(self.source.acquire)
        except AcquisitionFailure as e:
            self._report_acquisition_failure(e)
            return None
        if frame_data is None:
            # Camera still warming up
            return None
        self.last_frame = frame_data
        self._clear_acquisition_failure()

        if not self._is_current(epoch):
            self.stats.results_discarded += 1
            return None

        try:
            detections = await self._infer(frame_data)
        except InferenceFailure as e:
            self.stats.inference_failures += 1
            logging.warning(f"Inference failed on frame {frame_data.frame_index}: {e}")
            detections = []

        return self._apply(frame_data, detections, epoch)

    async def _infer(self, frame_data: FrameData) -> List[Detection]:
        self.stats.inferences += 1
        try:
            result = await self._call(self._detect, frame_data.frame)
        except Exception as e:
            raise InferenceFailure(f"{type(e).__name__}: {e}") from e
        return list(result or [])

    def _detect(self, frame: Any) -> Any:
        with self._detect_lock:
            return self._detector.detect(frame)

    def _apply(self, frame_data: FrameData, detections: List[Detection], epoch: int) -> Optional[int]:
        """Render, count and react for a completed tick. Must not await."""
        if not self._is_current(epoch):
            self.stats.results_discarded += 1
            logging.debug(f"Discarding stale result for frame {frame_data.frame_index}")
            return None

        label = self.config.target_label
        count = render_detections(
            self.surface,
            frame_data.width,
            frame_data.height,
            detections,
            label,
        )
        self.state.last_detection_count = count
        self.stats.results_applied += 1

        if count > 0:
            now = self.clock()
            self.state.last_detection_at = now
            if self.alert.on_detection(now):
                self.stats.alerts_fired += 1
                logging.info(f"{count} {label}(s) detected, alert fired")
            if self.snapshot.on_detection(frame_data.frame, now) is not None:
                self.stats.snapshots_saved += 1

        for callback in self._callbacks:
            try:
                callback(frame_data, detections, count)
            except Exception as e:
                logging.warning(f"Callback error: {e}")

        return count

    def _is_current(self, epoch: int) -> bool:
        return self.state.enabled and self.state.epoch == epoch

    def _report_acquisition_failure(self, error: Exception) -> None:
        self.stats.acquisition_failures += 1
        if not self._camera_error:
            logging.error(f"Error accessing camera: {error}")
        else:
            logging.debug(f"Camera still unavailable: {error}")
        self._camera_error = True
        if self.state.enabled:
            self.state.status_text = STATUS_CAMERA_ERROR

    def _clear_acquisition_failure(self) -> None:
        if self._camera_error:
            logging.info("Camera recovered")
            self._camera_error = False
            if self.state.enabled:
                self.state.status_text = STATUS_ACTIVE

    async def _call(self, fn: Callable[..., Any], *args: Any) -> Any:
        """Invoke a capability, off-thread if configured, awaiting async results."""
        if self.config.offload_inference:
            result = await asyncio.to_thread(fn, *args)
        else:
            result = fn(*args)
        if inspect.isawaitable(result):
            result = await result
        return result

    def _handle_periodic_tasks(self) -> None:
        """Log statistics periodically."""
        now = time.time()
        if now - self.stats.last_stats_log_time >= self.config.stats_log_interval:
            logging.info(
                f"Pipeline stats: mode={self.state.mode.value}, ticks={self.stats.ticks}, "
                f"skipped={self.stats.ticks_skipped}, inferences={self.stats.inferences}, "
                f"failures={self.stats.inference_failures}, "
                f"alerts={self.stats.alerts_fired}, snapshots={self.stats.snapshots_saved}, "
                f"last_count={self.state.last_detection_count}"
            )
            self.stats.last_stats_log_time = now
