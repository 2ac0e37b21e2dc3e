"""Shared fakes: a scriptable camera and MediaPipe-shaped models."""

import asyncio
import threading
import time
from types import SimpleNamespace
from typing import List, Optional

import numpy as np
import pytest

from tracker import frame_source
from tracker.camera import CameraBackend, CameraConstraints, StreamHandle
from tracker.landmarks import Frame


# ==============================================================================
# CAMERA
# ==============================================================================

class FakeStreamHandle(StreamHandle):
    def __init__(self, camera: "FakeCamera", device_index: int):
        self.camera = camera
        self._device_index = device_index
        self.released = False

    @property
    def device_id(self) -> int:
        return self._device_index

    def get_frame(self) -> Optional[np.ndarray]:
        time.sleep(self.camera.frame_interval)
        if self.released or self.camera.fail_reads:
            return None
        return np.full((self.camera.height, self.camera.width, 3), 200, dtype=np.uint8)

    def release(self) -> None:
        if not self.released:
            self.released = True
            with self.camera.lock:
                self.camera.released += 1
                self.camera.active -= 1


class FakeCamera(CameraBackend):
    """
    Counts acquisitions and releases. `error` is raised from
    request_access(); clearing `gate` holds the open until it is set.
    """

    def __init__(self, width=320, height=240, error=None, fail_reads=False, frame_interval=0.005):
        self.width = width
        self.height = height
        self.error = error
        self.fail_reads = fail_reads
        self.frame_interval = frame_interval

        self.lock = threading.Lock()
        self.gate = threading.Event()
        self.gate.set()
        self.entered = threading.Event()

        self.requests = 0
        self.opened = 0
        self.released = 0
        self.active = 0
        self.max_active = 0
        self.handles: List[FakeStreamHandle] = []

    def request_access(self, constraints: CameraConstraints) -> StreamHandle:
        with self.lock:
            self.requests += 1
        self.entered.set()
        self.gate.wait(timeout=5)
        if self.error is not None:
            raise self.error

        handle = FakeStreamHandle(self, constraints.device_index)
        with self.lock:
            self.opened += 1
            self.active += 1
            self.max_active = max(self.max_active, self.active)
            self.handles.append(handle)
        return handle


# ==============================================================================
# MODELS
# ==============================================================================

def pose_result(num_points: int = 33, visibility: float = 0.9):
    # z encodes the joint index so ordering can be checked after parsing.
    points = [
        SimpleNamespace(
            x=0.3 + 0.4 * (i % 6) / 5,
            y=0.3 + 0.4 * (i // 6) / 5,
            z=i / 100.0,
            visibility=visibility,
        )
        for i in range(num_points)
    ]
    return SimpleNamespace(pose_landmarks=SimpleNamespace(landmark=points))


def hand_points(x0: float, x1: float):
    return SimpleNamespace(landmark=[
        SimpleNamespace(x=x0 + (x1 - x0) * (i % 5) / 4, y=0.35 + 0.3 * (i // 5) / 4, z=i / 100.0)
        for i in range(21)
    ])


def hands_result(labels=("Left", "Right")):
    spans = [(0.05, 0.3), (0.7, 0.95)]
    hands = [hand_points(*spans[i % 2]) for i in range(len(labels))]
    handedness = [
        SimpleNamespace(classification=[SimpleNamespace(label=label, score=0.95)])
        for label in labels
    ]
    return SimpleNamespace(multi_hand_landmarks=hands, multi_handedness=handedness)


class FakeModel:
    """
    Stands in for mp.solutions Pose/Hands. hold() makes the next process()
    calls block until release().
    """

    def __init__(self, result=None, error: Optional[Exception] = None):
        self.result = result if result is not None else pose_result()
        self.error = error
        self.lock = threading.Lock()
        self.gate = threading.Event()
        self.gate.set()
        self.entered = threading.Event()

        self.calls = 0
        self.active = 0
        self.max_active = 0
        self.closed = 0
        self.closed_while_active = False

    def hold(self) -> None:
        self.entered.clear()
        self.gate.clear()

    def release(self) -> None:
        self.gate.set()

    def process(self, image: np.ndarray):
        with self.lock:
            self.calls += 1
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        self.entered.set()
        try:
            self.gate.wait(timeout=5)
            if self.error is not None:
                raise self.error
            return self.result
        finally:
            with self.lock:
                self.active -= 1

    def close(self) -> None:
        with self.lock:
            if self.active:
                self.closed_while_active = True
            self.closed += 1


class FakeModelFactory:
    """Callable model factory recording the options it was given."""

    def __init__(self, model: Optional[FakeModel] = None, error: Optional[Exception] = None):
        self.model = model or FakeModel()
        self.error = error
        self.options = []
        self.gate = threading.Event()
        self.gate.set()

    def __call__(self, options):
        self.options.append(options)
        self.gate.wait(timeout=5)
        if self.error is not None:
            raise self.error
        return self.model


# ==============================================================================
# HELPERS
# ==============================================================================

def make_frame(index: int = 1, width: int = 320, height: int = 240, value: int = 200) -> Frame:
    image = np.full((height, width, 3), value, dtype=np.uint8)
    return Frame.from_image(image, index, time.monotonic())


async def wait_for(predicate, timeout: float = 3.0, interval: float = 0.005) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(interval)


async def wait_for_event(event: threading.Event, timeout: float = 3.0) -> None:
    await wait_for(event.is_set, timeout=timeout)


@pytest.fixture
def camera():
    cam = FakeCamera()
    yield cam
    cam.gate.set()


@pytest.fixture
def model():
    fake = FakeModel()
    yield fake
    fake.release()


@pytest.fixture(autouse=True)
def device_registry():
    yield
    # Sources a failing test never stopped must not leak into the next test.
    with frame_source._DEVICE_LOCK:
        frame_source._DEVICE_OWNERS.clear()
