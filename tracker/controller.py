"""
================================================================================
PIPELINE CONTROLLER
================================================================================
Composes FrameSource, LandmarkDetector, FrameScheduler and OverlayRenderer
into one unit with a single lifecycle:

    UNINITIALIZED -> INITIALIZING -> RUNNING -> DISPOSED
                          |             |
                          +--> FAILED <-+        (FAILED -> DISPOSED too)

Consumers only see PipelineStatus: Loading, Running or Failed(reason).

Disposal is idempotent and awaitable. dispose() cancels the controller's
token and runs the release steps (scheduler stop, detector dispose, frame
source stop) synchronously, so nothing reaches the surface or the landmark
callback after it returns. Awaiting the returned task additionally waits
until any in-flight inference or camera open has let go of its resource,
which is what a replacement pipeline must wait for before it opens the
same camera.

Example:
    >>> controller = create_pipeline(DetectorKind.HAND, get_hand_config(), on_landmarks=print)
    >>> controller.start()
    >>> status = await controller.ready()
    >>> ...
    >>> await controller.dispose()
================================================================================
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Union

from configs.config import PipelineConfig
from tracker.camera import CameraBackend
from tracker.detector import LandmarkDetector, ModelFactory, create_detector
from tracker.errors import CaptureError, InitError, TrackerError
from tracker.frame_source import FrameSource
from tracker.landmarks import DetectorKind, Frame, LandmarkSet
from tracker.lifecycle import CancellationToken
from tracker.renderer import DrawingSurface, OverlayRenderer, RenderSummary
from tracker.scheduler import FrameScheduler

logger = logging.getLogger(__name__)


# ==============================================================================
# STATE AND STATUS
# ==============================================================================

class PipelineState(Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    RUNNING = "running"
    FAILED = "failed"
    DISPOSED = "disposed"


@dataclass(frozen=True)
class Loading:
    name = "loading"


@dataclass(frozen=True)
class Running:
    name = "running"


@dataclass(frozen=True)
class Failed:
    reason: TrackerError
    name = "failed"

    @property
    def kind(self) -> str:
        return self.reason.kind

    @property
    def message(self) -> str:
        return str(self.reason)


PipelineStatus = Union[Loading, Running, Failed]

LandmarkCallback = Callable[[LandmarkSet], None]
StatusListener = Callable[[PipelineStatus], None]


# ==============================================================================
# CONTROLLER
# ==============================================================================

class PipelineController:
    """Owns one camera stream and one detector for its whole lifetime."""

    def __init__(
        self,
        detector: LandmarkDetector,
        source: FrameSource,
        config: Optional[PipelineConfig] = None,
        on_landmarks: Optional[LandmarkCallback] = None,
        renderer: Optional[OverlayRenderer] = None,
        surface: Optional[DrawingSurface] = None,
    ):
        self.config = config or PipelineConfig()
        self.detector = detector
        self.source = source
        self.renderer = renderer or OverlayRenderer()
        self.surface = surface or DrawingSurface(
            self.config.camera.ideal_width, self.config.camera.ideal_height
        )
        self.scheduler = FrameScheduler(
            source, detector, self.config.scheduler, on_failure=self._on_scheduler_failure
        )
        self._on_landmarks = on_landmarks

        self._token = CancellationToken()
        self._state = PipelineState.UNINITIALIZED
        self._status: PipelineStatus = Loading()
        self._listeners: List[StatusListener] = []
        self._init_task: Optional[asyncio.Task] = None
        self._dispose_task: Optional[asyncio.Task] = None

        self.last_landmarks: Optional[LandmarkSet] = None
        self.last_summary: Optional[RenderSummary] = None

    # --------------------------------------------------------------------------
    # Observation
    # --------------------------------------------------------------------------

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def status(self) -> PipelineStatus:
        return self._status

    @property
    def kind(self) -> DetectorKind:
        return self.detector.kind

    @property
    def alive(self) -> bool:
        return self._token.alive

    def add_status_listener(self, listener: StatusListener) -> None:
        self._listeners.append(listener)

    def _set_status(self, status: PipelineStatus) -> None:
        self._status = status
        for listener in list(self._listeners):
            try:
                listener(status)
            except Exception:
                logger.exception("Status listener raised")

    # --------------------------------------------------------------------------
    # Startup
    # --------------------------------------------------------------------------

    def start(self) -> asyncio.Task:
        """Begin initializing detector and camera concurrently."""
        if self._init_task is not None:
            return self._init_task
        if self._token.cancelled:
            raise RuntimeError("Pipeline has been disposed")

        self._state = PipelineState.INITIALIZING
        self._init_task = asyncio.get_running_loop().create_task(self._initialize(self._token))
        return self._init_task

    async def ready(self) -> PipelineStatus:
        """Wait for initialization to settle and return the status."""
        task = self._init_task if self._init_task is not None else self.start()
        await asyncio.wait([task])
        return self._status

    async def _initialize(self, token: CancellationToken) -> None:
        logger.info("Initializing %s pipeline", self.kind.value)

        results = await asyncio.gather(
            self.detector.initialize(self.config),
            self.source.start(),
            return_exceptions=True,
        )

        if token.cancelled:
            logger.debug("%s pipeline disposed during initialization", self.kind.value)
            return

        errors = [r for r in results if isinstance(r, BaseException)]
        if errors:
            # Camera problems are the ones a user can act on; report them first.
            reason = next((e for e in errors if isinstance(e, CaptureError)), errors[0])
            if not isinstance(reason, TrackerError):
                reason = InitError(f"Unexpected initialization failure: {reason!r}")
            self._fail(reason)
            return

        self.detector.on_result(self._handle_result)
        self._state = PipelineState.RUNNING
        self.scheduler.start(token)
        self._set_status(Running())
        logger.info("%s pipeline running", self.kind.value)

    # --------------------------------------------------------------------------
    # Results
    # --------------------------------------------------------------------------

    def _handle_result(self, frame: Frame, landmarks: LandmarkSet) -> None:
        if self._token.cancelled:
            return

        self.last_summary = self.renderer.render(
            frame,
            None if landmarks.is_empty else landmarks,
            self.config,
            self.surface,
        )
        self.last_landmarks = landmarks

        if self._on_landmarks is not None:
            try:
                self._on_landmarks(landmarks)
            except Exception:
                logger.exception("Landmark callback raised")

    # --------------------------------------------------------------------------
    # Failure and teardown
    # --------------------------------------------------------------------------

    def _on_scheduler_failure(self, error: TrackerError) -> None:
        self._fail(error)

    def _fail(self, reason: TrackerError) -> None:
        if self._token.cancelled or self._state in (PipelineState.FAILED, PipelineState.DISPOSED):
            return
        logger.error("%s pipeline failed: %s", self.kind.value, reason)
        self._state = PipelineState.FAILED
        self._release()
        self._set_status(Failed(reason))

    def _release(self) -> None:
        """Total-effort release: every step runs even if an earlier one fails."""
        steps = (
            ("scheduler stop", self.scheduler.stop),
            ("detector dispose", self.detector.dispose),
            ("frame source stop", self.source.stop),
        )
        for name, step in steps:
            try:
                step()
            except Exception:
                logger.exception("Error during %s", name)

    def dispose(self) -> Optional[asyncio.Task]:
        """
        Tear the pipeline down. Idempotent.

        The token is cancelled and resources are released before this
        returns; await the returned task to wait until every resource has
        actually been let go. Outside a running event loop the release is
        done in place, the pipeline is DISPOSED on return and None is
        returned.
        """
        if not self._token.cancelled:
            self._token.cancel()
            self._release()

        if self._dispose_task is None:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                self._state = PipelineState.DISPOSED
                logger.info("%s pipeline disposed", self.kind.value)
                return None
            self._dispose_task = loop.create_task(self._finish_dispose())
        return self._dispose_task

    async def _finish_dispose(self) -> None:
        waiting = []
        if self._init_task is not None:
            waiting.append(self._init_task)
        for step in (self.scheduler.wait_idle(), self.detector.wait_closed(), self.source.closed()):
            waiting.append(asyncio.ensure_future(step))

        done, _ = await asyncio.wait(waiting)
        for task in done:
            if not task.cancelled() and task.exception() is not None:
                logger.error("Error while finishing disposal: %s", task.exception())

        # The init task may have acquired resources after the first release.
        self._release()
        self._state = PipelineState.DISPOSED
        logger.info("%s pipeline disposed", self.kind.value)

    async def __aenter__(self) -> "PipelineController":
        self.start()
        await self.ready()
        return self

    async def __aexit__(self, *args) -> None:
        await self.dispose()


# ==============================================================================
# FACTORY
# ==============================================================================

def create_pipeline(
    kind: DetectorKind,
    config: Optional[PipelineConfig] = None,
    on_landmarks: Optional[LandmarkCallback] = None,
    camera: Optional[CameraBackend] = None,
    model_factory: Optional[ModelFactory] = None,
) -> PipelineController:
    """Build an unstarted controller with its own detector and frame source."""
    config = config or PipelineConfig()
    detector = create_detector(kind, model_factory=model_factory)
    source = FrameSource(camera, config.camera)
    return PipelineController(detector, source, config, on_landmarks=on_landmarks)
