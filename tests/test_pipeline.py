"""
Tests for the detection pipeline engine.
"""

import asyncio
import threading
import time
from pathlib import Path
from unittest.mock import MagicMock

import numpy as np
import pytest

from conftest import ScriptedDetector, StaticSource, people
from models.detection import Detection
from models.state import (
    PipelineMode,
    STATUS_ACTIVE,
    STATUS_CAMERA_ERROR,
    STATUS_INITIALIZING,
    STATUS_MODEL_FAILED,
    STATUS_MODEL_READY,
    STATUS_PAUSED,
)
from pipeline.engine import DetectionPipeline, PipelineConfig
from pipeline.errors import AcquisitionFailure
from pipeline.reactions import AlertReaction, SnapshotReaction


class GatedDetector:
    """Async detector whose calls finish only when the test releases them."""

    def __init__(self, results):
        self.results = list(results)
        self.gates = []

    async def detect(self, frame):
        index = len(self.gates)
        gate = asyncio.Event()
        self.gates.append(gate)
        await gate.wait()
        return self.results[index]


class SharedStateDetector:
    """Sync detector that stages its input before reading it back, like cv2.dnn."""

    def __init__(self):
        self._staged = None
        self._guard = threading.Lock()
        self.active = 0
        self.max_active = 0

    def detect(self, frame):
        with self._guard:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        self._staged = frame
        time.sleep(0.02)
        staged = self._staged
        with self._guard:
            self.active -= 1
        return people(1) if staged.mean() > 100 else []


class AlternatingSource(StaticSource):
    """Odd frames are dark, even frames are bright."""

    def read(self):
        frame_data = super().read()
        if frame_data is not None:
            level = 200 if frame_data.frame_index % 2 == 0 else 40
            frame_data.frame = np.full_like(self.frame, level)
        return frame_data


class StallingSource(StaticSource):
    """open() blocks until released, then fails."""

    def __init__(self):
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()

    def open(self):
        self.entered.set()
        self.release.wait(timeout=5)
        raise AcquisitionFailure("camera unplugged")


def make_pipeline(detector, clock, source=None, offload=False, **config):
    player = MagicMock()
    writer = MagicMock()
    writer.capture.return_value = Path("person-detected.png")
    pipeline = DetectionPipeline(
        source=source or StaticSource(),
        detector_factory=lambda: detector,
        alert=AlertReaction(player),
        snapshot=SnapshotReaction(writer, "person"),
        config=PipelineConfig(offload_inference=offload, **config),
        clock=clock,
    )
    return pipeline, player, writer


async def _until(predicate, attempts=100):
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition never became true")


class TestTicks:
    def test_counts_follow_latest_tick(self, fake_clock):
        detector = ScriptedDetector([people(2), people(0), people(1) + [Detection.from_xywh("dog", 0.9, 0, 0, 5, 5)]])
        pipeline, _, _ = make_pipeline(detector, fake_clock)

        async def scenario():
            await pipeline.load_detector()
            counts = []
            for _ in range(3):
                counts.append(await pipeline.tick())
                assert pipeline.state.last_detection_count == counts[-1]
                fake_clock.advance(0.2)
            return counts

        assert asyncio.run(scenario()) == [2, 0, 1]

    def test_burst_alerts_and_snapshots_once(self, fake_clock):
        """Counts [0, 0, 3, 3, 0] at 200 ms spacing: one alert, one snapshot."""
        detector = ScriptedDetector([people(0), people(0), people(3), people(3), people(0)])
        pipeline, player, writer = make_pipeline(detector, fake_clock)
        fired_at = []

        async def scenario():
            await pipeline.load_detector()
            for i in range(5):
                await pipeline.tick()
                if player.play.call_count > len(fired_at):
                    fired_at.append(i)
                fake_clock.advance(0.2)

        asyncio.run(scenario())

        assert player.play.call_count == 1
        assert writer.capture.call_count == 1
        assert fired_at == [2]
        assert pipeline.state.last_detection_count == 0
        assert pipeline.stats.alerts_fired == 1
        assert pipeline.stats.snapshots_saved == 1

    def test_second_detection_within_alert_interval_is_silent(self, fake_clock):
        detector = ScriptedDetector([people(1), people(1)])
        pipeline, player, writer = make_pipeline(detector, fake_clock)

        async def scenario():
            await pipeline.load_detector()
            await pipeline.tick()
            fake_clock.advance(4.0)
            await pipeline.tick()

        asyncio.run(scenario())

        assert player.play.call_count == 1
        assert writer.capture.call_count == 1

    def test_alert_and_snapshot_intervals_are_independent(self, fake_clock):
        detector = ScriptedDetector([people(1)])
        pipeline, player, writer = make_pipeline(detector, fake_clock)

        async def scenario():
            await pipeline.load_detector()
            for _ in range(3):
                await pipeline.tick()
                fake_clock.advance(5.0)

        # Ticks at 0, 5, 10 s
        asyncio.run(scenario())

        assert player.play.call_count == 3
        assert writer.capture.call_count == 2

    def test_detector_failure_counts_as_empty(self, fake_clock):
        detector = ScriptedDetector([people(1), RuntimeError("model crashed"), people(2)])
        pipeline, _, _ = make_pipeline(detector, fake_clock)

        async def scenario():
            await pipeline.load_detector()
            return [await pipeline.tick() for _ in range(3)]

        assert asyncio.run(scenario()) == [1, 0, 2]
        assert pipeline.stats.inference_failures == 1

    def test_overlay_matches_latest_tick(self, fake_clock):
        detector = ScriptedDetector([people(1), people(0)])
        pipeline, _, _ = make_pipeline(detector, fake_clock)

        async def scenario():
            await pipeline.load_detector()
            await pipeline.tick()
            assert not pipeline.surface.is_blank()
            assert (pipeline.surface.width, pipeline.surface.height) == (640, 480)
            await pipeline.tick()

        asyncio.run(scenario())

        assert pipeline.surface.is_blank()

    def test_callback_receives_count(self, fake_clock):
        detector = ScriptedDetector([people(2)])
        pipeline, _, _ = make_pipeline(detector, fake_clock)
        seen = []
        pipeline.add_callback(lambda frame_data, detections, count: seen.append(count))

        async def scenario():
            await pipeline.load_detector()
            await pipeline.tick()

        asyncio.run(scenario())

        assert seen == [2]

    def test_offloaded_tick(self, fake_clock):
        detector = ScriptedDetector([people(1)])
        pipeline, _, _ = make_pipeline(detector, fake_clock, offload=True)

        async def scenario():
            await pipeline.load_detector()
            return await pipeline.tick()

        assert asyncio.run(scenario()) == 1


class TestOverlappingTicks:
    def test_last_completed_tick_wins(self, fake_clock):
        detector = GatedDetector([people(1), people(3)])
        pipeline, _, _ = make_pipeline(detector, fake_clock)

        async def scenario():
            await pipeline.load_detector()
            first = pipeline._schedule_tick()
            second = pipeline._schedule_tick()
            await _until(lambda: len(detector.gates) == 2)
            assert pipeline.inflight_ticks == 2

            # The later tick finishes first
            detector.gates[1].set()
            assert await second == 3
            detector.gates[0].set()
            assert await first == 1

        asyncio.run(scenario())

        assert pipeline.state.last_detection_count == 1
        assert pipeline.inflight_ticks == 0

    def test_pause_discards_in_flight_result(self, fake_clock):
        detector = GatedDetector([people(2)])
        pipeline, player, writer = make_pipeline(detector, fake_clock)

        async def scenario():
            await pipeline.load_detector()
            task = pipeline._schedule_tick()
            await _until(lambda: detector.gates)
            pipeline.set_enabled(False)
            detector.gates[0].set()
            return await task

        assert asyncio.run(scenario()) is None
        assert pipeline.state.last_detection_count == 0
        assert pipeline.surface.is_blank()
        assert pipeline.stats.results_discarded == 1
        player.play.assert_not_called()
        writer.capture.assert_not_called()

    def test_pause_and_resume_still_discards_older_tick(self, fake_clock):
        detector = GatedDetector([people(2), people(0)])
        pipeline, _, _ = make_pipeline(detector, fake_clock)

        async def scenario():
            await pipeline.load_detector()
            stale = pipeline._schedule_tick()
            await _until(lambda: detector.gates)
            pipeline.toggle()
            pipeline.toggle()
            detector.gates[0].set()
            return await stale

        assert asyncio.run(scenario()) is None
        assert pipeline.state.last_detection_count == 0

    def test_tick_skipped_while_max_inflight_outstanding(self, fake_clock):
        detector = GatedDetector([people(1), people(1), people(2)])
        pipeline, _, _ = make_pipeline(detector, fake_clock, max_inflight=2)

        async def scenario():
            await pipeline.load_detector()
            first = pipeline._schedule_tick()
            second = pipeline._schedule_tick()
            assert pipeline._schedule_tick() is None
            await _until(lambda: len(detector.gates) == 2)

            detector.gates[0].set()
            await first
            await _until(lambda: pipeline.inflight_ticks == 1)
            third = pipeline._schedule_tick()
            assert third is not None
            await _until(lambda: len(detector.gates) == 3)

            detector.gates[1].set()
            detector.gates[2].set()
            await asyncio.gather(second, third)

        asyncio.run(scenario())

        assert pipeline.stats.ticks_skipped == 1
        assert pipeline.stats.ticks == 3


class TestDetectorThreads:
    def test_offloaded_detect_calls_never_overlap(self, fake_clock):
        detector = SharedStateDetector()
        source = AlternatingSource()
        pipeline, _, _ = make_pipeline(detector, fake_clock, source=source, offload=True)
        applied = []
        pipeline.add_callback(
            lambda frame_data, detections, count: applied.append((frame_data.frame.mean() > 100, count))
        )

        async def scenario():
            await pipeline.load_detector()
            await asyncio.gather(*(pipeline.tick() for _ in range(4)))

        asyncio.run(scenario())

        assert detector.max_active == 1
        assert len(applied) == 4
        # Each tick's detections belong to the frame that tick acquired
        assert all(count == (1 if bright else 0) for bright, count in applied)
        assert sorted(count for _, count in applied) == [0, 0, 1, 1]


class TestToggle:
    def test_disable_zeroes_count_and_clears_overlay(self, fake_clock):
        detector = ScriptedDetector([people(2)])
        pipeline, _, _ = make_pipeline(detector, fake_clock)

        async def scenario():
            await pipeline.load_detector()
            await pipeline.tick()

        asyncio.run(scenario())
        assert pipeline.state.last_detection_count == 2

        assert pipeline.toggle() is False

        assert pipeline.mode == PipelineMode.PAUSED
        assert pipeline.state.last_detection_count == 0
        assert pipeline.state.status_text == STATUS_PAUSED
        assert pipeline.surface.is_blank()

    def test_paused_ticks_do_nothing(self, fake_clock):
        detector = ScriptedDetector([people(1)])
        pipeline, player, _ = make_pipeline(detector, fake_clock)

        async def scenario():
            await pipeline.load_detector()
            pipeline.set_enabled(False)
            assert pipeline._schedule_tick() is None
            return await pipeline.tick()

        assert asyncio.run(scenario()) is None
        assert detector.calls == 0
        player.play.assert_not_called()

    def test_enable_is_idempotent(self, fake_clock):
        pipeline, _, _ = make_pipeline(ScriptedDetector([[]]), fake_clock)
        epoch = pipeline.state.epoch

        pipeline.set_enabled(True)
        pipeline.set_enabled(True)

        assert pipeline.state.epoch == epoch
        assert pipeline.state.enabled is True

    def test_resume_sets_active_status(self, fake_clock):
        pipeline, _, _ = make_pipeline(ScriptedDetector([[]]), fake_clock)
        asyncio.run(pipeline.load_detector())

        pipeline.toggle()
        pipeline.toggle()

        assert pipeline.mode == PipelineMode.ACTIVE
        assert pipeline.state.status_text == STATUS_ACTIVE

    def test_toggle_keeps_throttle_timers(self, fake_clock):
        detector = ScriptedDetector([people(1)])
        pipeline, player, writer = make_pipeline(detector, fake_clock)

        async def scenario():
            await pipeline.load_detector()
            await pipeline.tick()
            pipeline.toggle()
            pipeline.toggle()
            fake_clock.advance(1.0)
            await pipeline.tick()

        asyncio.run(scenario())

        assert player.play.call_count == 1
        assert writer.capture.call_count == 1


class TestModelLoading:
    def test_ticks_skipped_until_model_ready(self, fake_clock):
        detector = ScriptedDetector([people(1)])
        pipeline, _, _ = make_pipeline(detector, fake_clock)

        assert pipeline.mode == PipelineMode.MODEL_LOADING
        assert pipeline.state.status_text == STATUS_INITIALIZING
        assert asyncio.run(pipeline.tick()) is None
        assert detector.calls == 0

    def test_model_ready(self, fake_clock):
        pipeline, _, _ = make_pipeline(ScriptedDetector([[]]), fake_clock)

        assert asyncio.run(pipeline.load_detector()) is True

        assert pipeline.mode == PipelineMode.ACTIVE
        assert pipeline.state.status_text == STATUS_MODEL_READY

    def test_model_failure_stays_loading(self, fake_clock):
        def broken_factory():
            raise FileNotFoundError("yolov8n.pt")

        pipeline = DetectionPipeline(
            source=StaticSource(),
            detector_factory=broken_factory,
            alert=AlertReaction(None),
            snapshot=SnapshotReaction(None, "person"),
            config=PipelineConfig(offload_inference=False),
            clock=fake_clock,
        )

        assert asyncio.run(pipeline.load_detector()) is False
        assert pipeline.mode == PipelineMode.MODEL_LOADING
        assert pipeline.state.status_text == STATUS_MODEL_FAILED
        assert asyncio.run(pipeline.tick()) is None

    def test_pause_requested_while_loading(self, fake_clock):
        pipeline, _, _ = make_pipeline(ScriptedDetector([people(1)]), fake_clock)

        pipeline.set_enabled(False)
        asyncio.run(pipeline.load_detector())

        assert pipeline.mode == PipelineMode.PAUSED
        assert pipeline.state.status_text == STATUS_PAUSED


class TestCameraErrors:
    def test_acquisition_failure_then_recovery(self, fake_clock):
        source = StaticSource(fail_open=1)
        pipeline, _, _ = make_pipeline(ScriptedDetector([people(1)]), fake_clock, source=source)

        async def scenario():
            await pipeline.load_detector()
            first = await pipeline.tick()
            assert pipeline.state.status_text == STATUS_CAMERA_ERROR
            second = await pipeline.tick()
            return first, second

        assert asyncio.run(scenario()) == (None, 1)
        assert pipeline.state.status_text == STATUS_ACTIVE
        assert pipeline.stats.acquisition_failures == 1
        assert source.open_calls == 2

    def test_failure_while_paused_keeps_paused_status(self, fake_clock):
        source = StallingSource()
        pipeline, _, _ = make_pipeline(
            ScriptedDetector([people(1)]), fake_clock, source=source, offload=True
        )

        async def scenario():
            await pipeline.load_detector()
            task = asyncio.create_task(pipeline.tick())
            assert await asyncio.to_thread(source.entered.wait, 5)
            pipeline.set_enabled(False)
            source.release.set()
            result = await task
            paused_status = pipeline.state.status_text

            pipeline.set_enabled(True)
            await pipeline.tick()
            return result, paused_status

        result, paused_status = asyncio.run(scenario())

        assert result is None
        assert paused_status == STATUS_PAUSED
        assert pipeline.state.status_text == STATUS_CAMERA_ERROR
        assert pipeline.stats.acquisition_failures == 2


class TestManualSnapshot:
    def test_refused_without_detection(self, fake_clock):
        pipeline, _, writer = make_pipeline(ScriptedDetector([[]]), fake_clock)

        async def scenario():
            await pipeline.load_detector()
            await pipeline.tick()
            return await pipeline.capture_snapshot()

        assert asyncio.run(scenario()) is None
        writer.capture.assert_not_called()

    def test_bypasses_throttle_without_advancing_it(self, fake_clock):
        pipeline, _, writer = make_pipeline(ScriptedDetector([people(1)]), fake_clock)

        async def scenario():
            await pipeline.load_detector()
            await pipeline.tick()
            return await pipeline.capture_snapshot()

        path = asyncio.run(scenario())

        assert path == Path("person-detected.png")
        assert writer.capture.call_count == 2
        assert pipeline.snapshot.throttle.fire_count == 1
        assert pipeline.snapshot.throttle.last_fire == fake_clock.now


class TestRunLoop:
    def test_run_loads_model_ticks_and_cleans_up(self):
        source = StaticSource()
        detector = ScriptedDetector([people(1)])
        pipeline, player, _ = make_pipeline(
            detector, clock=lambda: 0.0, source=source, offload=True, tick_interval=0.01
        )

        async def scenario():
            task = asyncio.create_task(pipeline.run())
            for _ in range(300):
                await asyncio.sleep(0.01)
                if pipeline.state.last_detection_count == 1:
                    break
            pipeline.stop()
            await task

        asyncio.run(scenario())

        assert pipeline.state.status_text == STATUS_MODEL_READY
        assert pipeline.state.last_detection_count == 1
        assert pipeline.stats.ticks >= 1
        assert pipeline.inflight_ticks == 0
        assert source.close_calls == 1
        assert not pipeline.is_running
        player.play.assert_called_once()

    def test_run_survives_missing_camera(self):
        source = StaticSource(fail_open=1000)
        pipeline, _, _ = make_pipeline(
            ScriptedDetector([[]]), clock=lambda: 0.0, source=source, tick_interval=0.01
        )

        async def scenario():
            task = asyncio.create_task(pipeline.run())
            for _ in range(300):
                await asyncio.sleep(0.01)
                if pipeline.stats.acquisition_failures >= 2:
                    break
            pipeline.stop()
            await task

        asyncio.run(scenario())

        assert pipeline.state.status_text == STATUS_CAMERA_ERROR
        assert pipeline.stats.acquisition_failures >= 2
