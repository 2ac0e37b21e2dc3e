"""
================================================================================
FRAME SCHEDULER
================================================================================
Turns the pull-based FrameSource into a detection stream with at most one
detection in flight.

Every tick (display refresh rate) the scheduler reads the newest frame. A
frame that was already seen is ignored. A new frame is submitted if the
detector is idle and dropped if it is busy: frames are never queued, so a
slow detector cannot build up a backlog.

stop() ends submission at once. A detection already running is left to
finish, but it runs under the scheduler's token, which stop() cancels, so
its result never reaches the result channel.
================================================================================
"""

import asyncio
import logging
import time
from collections import deque
from typing import Callable, Deque, Optional

from configs.config import SchedulerConfig
from tracker.detector import TIMING_WINDOW, LandmarkDetector
from tracker.errors import DetectionError, DetectorDisposedError, TrackerError
from tracker.frame_source import FrameSource
from tracker.landmarks import Frame
from tracker.lifecycle import CancellationToken

logger = logging.getLogger(__name__)

FailureCallback = Callable[[TrackerError], None]


class FrameScheduler:
    """Drives FrameSource -> LandmarkDetector, one detection at a time."""

    def __init__(
        self,
        source: FrameSource,
        detector: LandmarkDetector,
        config: Optional[SchedulerConfig] = None,
        on_failure: Optional[FailureCallback] = None,
    ):
        self.source = source
        self.detector = detector
        self.config = config or SchedulerConfig()
        self.on_failure = on_failure

        self._token: Optional[CancellationToken] = None
        self._loop_task: Optional[asyncio.Task] = None
        self._detect_task: Optional[asyncio.Task] = None
        self._last_index: Optional[int] = None
        self._consecutive_errors = 0
        self._failed = False

        # Statistics
        self.submitted = 0
        self.dropped = 0
        self.completed = 0
        self.failed = 0
        self._cycle_times: Deque[float] = deque(maxlen=TIMING_WINDOW)

    @property
    def running(self) -> bool:
        return self._token is not None and self._token.alive

    @property
    def in_flight(self) -> bool:
        return self._detect_task is not None

    # --------------------------------------------------------------------------
    # Lifecycle
    # --------------------------------------------------------------------------

    def start(self, token: Optional[CancellationToken] = None) -> None:
        """Start ticking. The run token is a child of `token` when given."""
        if self.running:
            return
        self._token = token.child() if token is not None else CancellationToken()
        self._failed = False
        self._consecutive_errors = 0
        self._loop_task = asyncio.get_running_loop().create_task(self._run(self._token))
        logger.debug("Scheduler started at %.0f Hz", self.config.refresh_hz)

    def stop(self) -> None:
        """Stop submitting frames. Idempotent."""
        if self._token is not None:
            self._token.cancel()
        task = self._loop_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def wait_idle(self) -> None:
        """Wait for the tick loop and any in-flight detection to finish."""
        waiting = [t for t in (self._loop_task, self._detect_task) if t is not None and not t.done()]
        if waiting:
            await asyncio.wait(waiting)

    # --------------------------------------------------------------------------
    # Ticking
    # --------------------------------------------------------------------------

    async def _run(self, token: CancellationToken) -> None:
        interval = self.config.tick_interval
        while token.alive:
            self.tick(token)
            await asyncio.sleep(interval)

    def tick(self, token: CancellationToken) -> bool:
        """
        One scheduling cycle.

        Returns:
            True if a frame was submitted to the detector
        """
        if token.cancelled:
            return False

        error = self.source.error
        if error is not None:
            self._fail(error, token)
            return False

        frame = self.source.current_frame()
        if frame is None or frame.index == self._last_index:
            return False
        self._last_index = frame.index

        if self._detect_task is not None:
            self.dropped += 1
            return False

        self.submitted += 1
        self._detect_task = asyncio.get_running_loop().create_task(self._detect(frame, token))
        return True

    async def _detect(self, frame: Frame, token: CancellationToken) -> None:
        start_time = time.perf_counter()
        try:
            await self.detector.detect(frame, token)
        except DetectorDisposedError:
            logger.debug("Detection for frame %d discarded: detector disposed", frame.index)
        except Exception as exc:
            if token.alive:
                self._record_failure(frame, exc, token)
        else:
            if token.alive:
                self.completed += 1
                self._consecutive_errors = 0
                self._cycle_times.append(time.perf_counter() - start_time)
        finally:
            self._detect_task = None

    def _record_failure(self, frame: Frame, exc: Exception, token: CancellationToken) -> None:
        self.failed += 1
        self._consecutive_errors += 1
        logger.warning("Detection failed on frame %d: %s", frame.index, exc)

        limit = self.config.max_consecutive_detection_errors
        if self._consecutive_errors >= limit:
            self._fail(DetectionError(f"{self._consecutive_errors} consecutive detections failed; last: {exc}"), token)

    def _fail(self, error: TrackerError, token: CancellationToken) -> None:
        if self._failed:
            return
        self._failed = True
        notify = token.alive
        self.stop()
        if notify and self.on_failure is not None:
            self.on_failure(error)

    # --------------------------------------------------------------------------
    # Statistics
    # --------------------------------------------------------------------------

    def get_average_fps(self) -> float:
        if not self._cycle_times:
            return 0.0
        avg_time = sum(self._cycle_times) / len(self._cycle_times)
        return 1.0 / avg_time if avg_time > 0 else 0.0
