"""
================================================================================
CAMERA CAPABILITY
================================================================================
Thin adapters over the capture device. A CameraBackend turns a set of
constraints into an open StreamHandle; the handle hands out raw BGR images
and releases the device.

FrameSource owns the lifecycle; nothing here is thread-aware beyond making
release() safe to call while another thread is inside get_frame().
================================================================================
"""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import cv2
import numpy as np

from configs.config import CameraConfig
from tracker.errors import DeviceUnavailable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CameraConstraints:
    """What the pipeline asks the camera for."""
    device_index: int = 0
    facing_mode: str = "user"
    ideal_width: int = 640
    ideal_height: int = 480

    @classmethod
    def from_config(cls, config: CameraConfig) -> "CameraConstraints":
        return cls(
            device_index=config.device_index,
            facing_mode=config.facing_mode,
            ideal_width=config.ideal_width,
            ideal_height=config.ideal_height,
        )


class StreamHandle(ABC):
    """An open capture stream. Exclusive to its FrameSource."""

    @property
    @abstractmethod
    def device_id(self) -> int: ...

    @abstractmethod
    def get_frame(self) -> Optional[np.ndarray]:
        """Return the next BGR image, or None if the read failed."""

    @abstractmethod
    def release(self) -> None: ...


class CameraBackend(ABC):
    """
    Camera adapter interface.

    request_access() blocks while the device opens and raises
    PermissionDenied or DeviceUnavailable on failure.
    """

    @abstractmethod
    def request_access(self, constraints: CameraConstraints) -> StreamHandle: ...


# ==============================================================================
# OPENCV BACKEND
# ==============================================================================

class OpenCVStreamHandle(StreamHandle):
    """Wraps cv2.VideoCapture; reads and release are serialized."""

    def __init__(self, capture: "cv2.VideoCapture", device_index: int):
        self._cap = capture
        self._device_index = device_index
        self._lock = threading.Lock()

    @property
    def device_id(self) -> int:
        return self._device_index

    @property
    def size(self):
        with self._lock:
            if self._cap is None:
                return (0, 0)
            return (
                int(self._cap.get(cv2.CAP_PROP_FRAME_WIDTH)),
                int(self._cap.get(cv2.CAP_PROP_FRAME_HEIGHT)),
            )

    def get_frame(self) -> Optional[np.ndarray]:
        with self._lock:
            if self._cap is None:
                return None
            ok, frame = self._cap.read()
        if not ok or frame is None:
            return None
        return frame

    def release(self) -> None:
        with self._lock:
            if self._cap is not None:
                self._cap.release()
                self._cap = None


class OpenCVCamera(CameraBackend):
    """
    Opens local cameras through OpenCV.

    OpenCV cannot tell a refused permission from a missing device, so every
    open failure is reported as DeviceUnavailable. facing_mode is advisory:
    desktop cameras are addressed by index only.
    """

    def request_access(self, constraints: CameraConstraints) -> StreamHandle:
        if constraints.facing_mode != "user":
            logger.debug(
                "facing_mode=%s ignored; using device %d",
                constraints.facing_mode, constraints.device_index,
            )

        cap = cv2.VideoCapture(constraints.device_index)
        if not cap.isOpened():
            cap.release()
            raise DeviceUnavailable(
                f"Unable to open camera at index {constraints.device_index}."
            )

        cap.set(cv2.CAP_PROP_FRAME_WIDTH, constraints.ideal_width)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, constraints.ideal_height)

        handle = OpenCVStreamHandle(cap, constraints.device_index)
        width, height = handle.size
        logger.info(
            "Camera %d opened at %dx%d (requested %dx%d)",
            constraints.device_index, width, height,
            constraints.ideal_width, constraints.ideal_height,
        )
        return handle
