"""Tests for FrameScheduler backpressure, stop semantics and error escalation."""

import pytest

from configs.config import PipelineConfig, SchedulerConfig
from tracker.detector import TIMING_WINDOW, PoseDetector
from tracker.errors import DetectionError, DeviceUnavailable
from tracker.frame_source import FrameSource
from tracker.lifecycle import CancellationToken
from tracker.scheduler import FrameScheduler

from conftest import FakeModelFactory, make_frame, wait_for, wait_for_event


class StubSource:
    """Hands out whatever frame the test put there."""

    def __init__(self):
        self.frame = None
        self.error = None

    def current_frame(self):
        return self.frame


class StreamingSource(StubSource):
    """A new frame on every poll."""

    def __init__(self):
        super().__init__()
        self.index = 0

    def current_frame(self):
        self.index += 1
        return make_frame(index=self.index)


async def ready_detector(model):
    detector = PoseDetector(model_factory=FakeModelFactory(model), warmup=False)
    await detector.initialize(PipelineConfig())
    return detector


class TestTick:

    @pytest.mark.asyncio
    async def test_nothing_to_do_without_frames(self, model):
        scheduler = FrameScheduler(StubSource(), await ready_detector(model))
        assert not scheduler.tick(CancellationToken())
        assert scheduler.submitted == 0

    @pytest.mark.asyncio
    async def test_same_frame_submitted_once(self, model):
        source = StubSource()
        scheduler = FrameScheduler(source, await ready_detector(model))
        token = CancellationToken()

        source.frame = make_frame(index=1)
        assert scheduler.tick(token)
        await scheduler.wait_idle()
        assert not scheduler.tick(token)

        assert scheduler.submitted == 1
        assert scheduler.completed == 1

    @pytest.mark.asyncio
    async def test_frames_dropped_while_busy(self, model):
        source = StubSource()
        scheduler = FrameScheduler(source, await ready_detector(model))
        token = CancellationToken()
        model.hold()

        source.frame = make_frame(index=1)
        assert scheduler.tick(token)
        await wait_for_event(model.entered)

        for index in (2, 3):
            source.frame = make_frame(index=index)
            assert not scheduler.tick(token)

        assert scheduler.in_flight
        assert scheduler.dropped == 2

        model.release()
        await scheduler.wait_idle()

        source.frame = make_frame(index=4)
        assert scheduler.tick(token)
        await scheduler.wait_idle()

        assert scheduler.submitted == 2
        assert scheduler.completed == 2
        assert model.max_active == 1

    @pytest.mark.asyncio
    async def test_cancelled_token_submits_nothing(self, model):
        source = StubSource()
        source.frame = make_frame()
        scheduler = FrameScheduler(source, await ready_detector(model))
        token = CancellationToken()
        token.cancel()

        assert not scheduler.tick(token)

    @pytest.mark.asyncio
    async def test_timing_history_is_bounded(self, model):
        source = StubSource()
        scheduler = FrameScheduler(source, await ready_detector(model))
        token = CancellationToken()

        for index in range(TIMING_WINDOW + 20):
            source.frame = make_frame(index=index)
            scheduler.tick(token)
            await scheduler.wait_idle()

        assert scheduler.completed == TIMING_WINDOW + 20
        assert len(scheduler._cycle_times) == TIMING_WINDOW
        assert scheduler.get_average_fps() > 0


class TestStop:

    @pytest.mark.asyncio
    async def test_in_flight_result_discarded_after_stop(self, model):
        source = StubSource()
        detector = await ready_detector(model)
        received = []
        detector.on_result(lambda frame, landmarks: received.append(landmarks))
        scheduler = FrameScheduler(source, detector, SchedulerConfig(refresh_hz=200))
        model.hold()

        scheduler.start(CancellationToken())
        source.frame = make_frame(index=1)
        await wait_for_event(model.entered)

        scheduler.stop()
        model.release()
        await scheduler.wait_idle()

        assert not scheduler.running
        assert received == []
        assert scheduler.completed == 0

    @pytest.mark.asyncio
    async def test_parent_token_cancels_run(self, model):
        root = CancellationToken()
        scheduler = FrameScheduler(StubSource(), await ready_detector(model))

        scheduler.start(root)
        assert scheduler.running
        root.cancel()
        await scheduler.wait_idle()

        assert not scheduler.running

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, model):
        scheduler = FrameScheduler(StubSource(), await ready_detector(model))
        scheduler.stop()
        scheduler.start()
        scheduler.stop()
        scheduler.stop()
        await scheduler.wait_idle()
        assert not scheduler.running


class TestFailures:

    @pytest.mark.asyncio
    async def test_single_failure_is_absorbed(self, model):
        source = StubSource()
        failures = []
        scheduler = FrameScheduler(
            source, await ready_detector(model), SchedulerConfig(max_consecutive_detection_errors=3),
            on_failure=failures.append,
        )
        token = CancellationToken()

        model.error = RuntimeError("bad frame")
        source.frame = make_frame(index=1)
        scheduler.tick(token)
        await scheduler.wait_idle()

        model.error = None
        source.frame = make_frame(index=2)
        scheduler.tick(token)
        await scheduler.wait_idle()

        assert scheduler.failed == 1
        assert scheduler.completed == 1
        assert failures == []

    @pytest.mark.asyncio
    async def test_consecutive_failures_escalate_once(self, model):
        failures = []
        scheduler = FrameScheduler(
            StreamingSource(),
            await ready_detector(model),
            SchedulerConfig(refresh_hz=500, max_consecutive_detection_errors=3),
            on_failure=failures.append,
        )
        model.error = RuntimeError("bad frame")

        scheduler.start(CancellationToken())
        await wait_for(lambda: failures)
        await scheduler.wait_idle()

        assert len(failures) == 1
        assert isinstance(failures[0], DetectionError)
        assert scheduler.failed == 3
        assert not scheduler.running

    @pytest.mark.asyncio
    async def test_source_error_reported(self, model):
        source = StubSource()
        source.error = DeviceUnavailable("Camera 0 stopped delivering frames")
        failures = []
        scheduler = FrameScheduler(source, await ready_detector(model), on_failure=failures.append)

        assert not scheduler.tick(CancellationToken())

        assert failures == [source.error]


@pytest.mark.asyncio
async def test_runs_against_live_source(camera, model):
    source = FrameSource(camera)
    detector = await ready_detector(model)
    scheduler = FrameScheduler(source, detector, SchedulerConfig(refresh_hz=200))
    await source.start()
    try:
        scheduler.start(CancellationToken())
        await wait_for(lambda: scheduler.completed >= 3)
        assert model.max_active == 1
    finally:
        scheduler.stop()
        await scheduler.wait_idle()
        source.stop()
        await source.closed()
