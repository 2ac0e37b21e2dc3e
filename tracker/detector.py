"""
================================================================================
LANDMARK DETECTOR
================================================================================
One lifecycle (initialize -> detect* -> dispose) shared by the pose and hand
variants; the variants differ only in model options, result parsing and
skeleton topology.

The model runs in the default executor so the event loop never blocks on
inference. The model is never closed while an inference is running on it:
dispose() during a detection marks the detector disposed at once and the
close happens when that inference returns. The detection itself then
resolves to DetectorDisposedError and never reaches the result channel.
================================================================================
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections import deque
from typing import Any, Callable, Deque, Optional

import cv2
import numpy as np

from configs.config import ModelComplexity, PipelineConfig
from tracker.errors import DetectionError, DetectorDisposedError, InitError
from tracker.landmarks import (
    HAND_LANDMARK_NAMES,
    POSE_LANDMARK_NAMES,
    TOPOLOGIES,
    DetectorKind,
    Frame,
    Landmark,
    LandmarkSet,
    Subject,
)
from tracker.lifecycle import CancellationToken
from tracker.models import DetectionModel, ModelOptions, create_hand_model, create_pose_model
from tracker.smoothing import LandmarkSmoother

logger = logging.getLogger(__name__)

# Most recent timings kept for the FPS averages.
TIMING_WINDOW = 300

ResultCallback = Callable[[Frame, LandmarkSet], None]
ModelFactory = Callable[[ModelOptions], DetectionModel]


class LandmarkDetector(ABC):
    """
    Base class for MediaPipe-backed landmark detectors.

    Example:
        >>> detector = PoseDetector()
        >>> await detector.initialize(get_arm_config())
        >>> detector.on_result(lambda frame, landmarks: print(landmarks.num_subjects))
        >>> landmarks = await detector.detect(frame)
        >>> detector.dispose()
    """

    kind: DetectorKind

    def __init__(self, model_factory: Optional[ModelFactory] = None, warmup: bool = True):
        self._model_factory = model_factory or self.default_model_factory()
        self.warmup = warmup

        self._model: Optional[DetectionModel] = None
        self._loading: Optional[asyncio.Future] = None
        self._pending: Optional[asyncio.Future] = None
        self._disposed = False
        self._callback: Optional[ResultCallback] = None
        self._smoother: Optional[LandmarkSmoother] = None
        self._detect_times: Deque[float] = deque(maxlen=TIMING_WINDOW)

    # --------------------------------------------------------------------------
    # Variant hooks
    # --------------------------------------------------------------------------

    @abstractmethod
    def default_model_factory(self) -> ModelFactory: ...

    @abstractmethod
    def build_options(self, config: PipelineConfig) -> ModelOptions: ...

    @abstractmethod
    def parse_result(self, raw: Any, frame: Frame) -> LandmarkSet: ...

    # --------------------------------------------------------------------------
    # State
    # --------------------------------------------------------------------------

    @property
    def topology(self):
        return TOPOLOGIES[self.kind]

    @property
    def ready(self) -> bool:
        return self._model is not None and not self._disposed

    @property
    def disposed(self) -> bool:
        return self._disposed

    @property
    def in_flight(self) -> bool:
        return self._pending is not None

    def on_result(self, callback: Optional[ResultCallback]) -> None:
        """Register the result channel. A new registration replaces the old one."""
        self._callback = callback

    # --------------------------------------------------------------------------
    # Initialization
    # --------------------------------------------------------------------------

    async def initialize(self, config: PipelineConfig) -> None:
        """
        Load the model in the executor.

        Raises:
            InitError: Model could not be loaded, or the detector was disposed
                before loading finished
        """
        if self._disposed:
            raise InitError("Detector has been disposed")
        if self._model is not None:
            return
        if self._loading is not None:
            await asyncio.wait([self._loading])
            if self._model is None:
                raise InitError(f"{self.kind.value} model did not load")
            return

        options = self.build_options(config)
        self._smoother = LandmarkSmoother(config.smoothing) if config.smoothing.enabled else None

        logger.info(
            "Loading %s model (complexity=%d, detection=%.2f, tracking=%.2f)",
            self.kind.value, options.model_complexity,
            options.min_detection_confidence, options.min_tracking_confidence,
        )
        loop = asyncio.get_running_loop()
        loading = loop.run_in_executor(None, self._load_model, options)
        self._loading = loading
        loading.add_done_callback(self._on_model_loaded)

        try:
            await asyncio.shield(loading)
        except InitError:
            raise
        except Exception as exc:
            raise InitError(f"Failed to load {self.kind.value} model: {exc}") from exc

        if self._model is None:
            raise InitError("Detector disposed during initialization")

    def _load_model(self, options: ModelOptions) -> DetectionModel:
        model = self._model_factory(options)
        if self.warmup:
            self._warmup(model)
        return model

    def _warmup(self, model: DetectionModel) -> None:
        dummy_img = np.zeros((480, 640, 3), dtype=np.uint8)
        try:
            model.process(dummy_img)
            logger.debug("%s model warmup complete", self.kind.value)
        except Exception as e:
            logger.warning("%s model warmup failed: %s", self.kind.value, e)

    def _on_model_loaded(self, fut: asyncio.Future) -> None:
        self._loading = None
        if fut.cancelled() or fut.exception() is not None:
            return

        model = fut.result()
        if self._disposed:
            self._close(model)
            return
        self._model = model
        logger.info("%s model loaded", self.kind.value)

    # --------------------------------------------------------------------------
    # Detection
    # --------------------------------------------------------------------------

    async def detect(self, frame: Frame, token: Optional[CancellationToken] = None) -> LandmarkSet:
        """
        Run one detection on a frame.

        The result channel is invoked only if the detector is still live and
        the token (when given) has not been cancelled.

        Raises:
            DetectorDisposedError: Called after dispose(), or disposed while
                the detection was running
            DetectionError: Not initialized, another detection in flight, or
                the model failed
        """
        if self._disposed:
            raise DetectorDisposedError("detect() called after dispose()")
        if self._model is None:
            raise DetectionError("detect() called before initialize() completed")
        if self._pending is not None:
            raise DetectionError("A detection is already in flight")

        model = self._model
        start_time = time.perf_counter()

        try:
            rgb = cv2.cvtColor(frame.image, cv2.COLOR_BGR2RGB)
        except cv2.error as exc:
            raise DetectionError(f"Frame {frame.index} could not be converted: {exc}") from exc

        loop = asyncio.get_running_loop()
        pending = loop.run_in_executor(None, model.process, rgb)
        self._pending = pending
        pending.add_done_callback(self._on_detect_done)

        try:
            raw = await asyncio.shield(pending)
        except Exception as exc:
            if self._disposed:
                raise DetectorDisposedError("Detector disposed while detection was in flight") from exc
            raise DetectionError(f"{self.kind.value} detection failed: {exc}") from exc

        if self._disposed:
            raise DetectorDisposedError("Detector disposed while detection was in flight")

        self._detect_times.append(time.perf_counter() - start_time)

        try:
            landmarks = self.parse_result(raw, frame)
        except DetectionError:
            raise
        except Exception as exc:
            raise DetectionError(f"Unreadable {self.kind.value} result: {exc}") from exc

        if self._smoother is not None:
            landmarks = self._smoother.smooth(landmarks, frame.timestamp)

        callback = self._callback
        if callback is not None and (token is None or token.alive):
            callback(frame, landmarks)

        return landmarks

    def _on_detect_done(self, fut: asyncio.Future) -> None:
        self._pending = None
        if not fut.cancelled():
            # Mark the exception retrieved; detect() reports it.
            fut.exception()
        if self._disposed:
            self._close_model()

    # --------------------------------------------------------------------------
    # Teardown
    # --------------------------------------------------------------------------

    def dispose(self) -> None:
        """Release the model. Idempotent; deferred while an inference runs."""
        if self._disposed:
            return
        self._disposed = True
        self._callback = None
        if self._smoother is not None:
            self._smoother.reset()

        if self._pending is None:
            self._close_model()
        logger.info("%s detector disposed", self.kind.value)

    async def wait_closed(self) -> None:
        """Wait for a running load or inference so the model is really closed."""
        waiting = [f for f in (self._loading, self._pending) if f is not None]
        if waiting:
            await asyncio.wait(waiting)

    def _close_model(self) -> None:
        model, self._model = self._model, None
        if model is not None:
            self._close(model)

    def _close(self, model: DetectionModel) -> None:
        try:
            model.close()
        except Exception:
            logger.exception("Error closing %s model", self.kind.value)

    # --------------------------------------------------------------------------
    # Statistics
    # --------------------------------------------------------------------------

    def get_average_fps(self) -> float:
        if not self._detect_times:
            return 0.0
        avg_time = sum(self._detect_times) / len(self._detect_times)
        return 1.0 / avg_time if avg_time > 0 else 0.0


# ==============================================================================
# POSE
# ==============================================================================

class PoseDetector(LandmarkDetector):
    """33-point body skeleton, one person."""

    kind = DetectorKind.POSE

    def default_model_factory(self) -> ModelFactory:
        return create_pose_model

    def build_options(self, config: PipelineConfig) -> ModelOptions:
        if config.max_subjects > 1:
            logger.warning("Pose tracking follows one person; max_subjects=%d ignored", config.max_subjects)
        return ModelOptions(
            model_complexity=config.model_complexity.value,
            min_detection_confidence=config.detection_confidence_threshold,
            min_tracking_confidence=config.tracking_confidence_threshold,
            max_subjects=1,
            smooth_landmarks=config.smooth_landmarks,
        )

    def parse_result(self, raw: Any, frame: Frame) -> LandmarkSet:
        pose = getattr(raw, "pose_landmarks", None) if raw is not None else None
        if not pose:
            return LandmarkSet(kind=self.kind, frame_index=frame.index)

        points = tuple(
            Landmark(
                x=float(p.x),
                y=float(p.y),
                z=float(p.z),
                visibility=float(getattr(p, "visibility", 0.0) or 0.0),
            )
            for p in pose.landmark
        )
        if len(points) != len(POSE_LANDMARK_NAMES):
            raise DetectionError(f"Expected {len(POSE_LANDMARK_NAMES)} pose landmarks, got {len(points)}")

        return LandmarkSet(kind=self.kind, subjects=(Subject(landmarks=points),), frame_index=frame.index)


# ==============================================================================
# HANDS
# ==============================================================================

class HandDetector(LandmarkDetector):
    """21-point hand skeletons with handedness labels."""

    kind = DetectorKind.HAND

    def default_model_factory(self) -> ModelFactory:
        return create_hand_model

    def build_options(self, config: PipelineConfig) -> ModelOptions:
        complexity = config.model_complexity
        if complexity is ModelComplexity.HIGH:
            logger.warning("Hand model has no heavy variant; using complexity 'mid'")
            complexity = ModelComplexity.MID
        return ModelOptions(
            model_complexity=complexity.value,
            min_detection_confidence=config.detection_confidence_threshold,
            min_tracking_confidence=config.tracking_confidence_threshold,
            max_subjects=config.max_subjects,
            smooth_landmarks=config.smooth_landmarks,
        )

    def parse_result(self, raw: Any, frame: Frame) -> LandmarkSet:
        hands = getattr(raw, "multi_hand_landmarks", None) if raw is not None else None
        if not hands:
            return LandmarkSet(kind=self.kind, frame_index=frame.index)

        handedness = getattr(raw, "multi_handedness", None) or []
        subjects = []
        for i, hand in enumerate(hands):
            points = tuple(
                Landmark(x=float(p.x), y=float(p.y), z=float(p.z))
                for p in hand.landmark
            )
            if len(points) != len(HAND_LANDMARK_NAMES):
                raise DetectionError(f"Expected {len(HAND_LANDMARK_NAMES)} hand landmarks, got {len(points)}")

            label, score = None, None
            if i < len(handedness) and handedness[i].classification:
                classification = handedness[i].classification[0]
                label = str(classification.label)
                score = float(classification.score)
            subjects.append(Subject(landmarks=points, handedness=label, score=score))

        return LandmarkSet(kind=self.kind, subjects=tuple(subjects), frame_index=frame.index)


DETECTORS = {
    DetectorKind.POSE: PoseDetector,
    DetectorKind.HAND: HandDetector,
}


def create_detector(kind: DetectorKind, model_factory: Optional[ModelFactory] = None, **kwargs) -> LandmarkDetector:
    """Create an (uninitialized) detector for a variant."""
    return DETECTORS[kind](model_factory=model_factory, **kwargs)
