"""
================================================================================
FRAME SOURCE
================================================================================
Owns one live camera stream and exposes the newest captured frame.

Capture runs on its own thread at the camera's pace; consumers pull with
current_frame(), which never blocks. start() is a coroutine (the device
opens in an executor). stop() is synchronous, idempotent and may be called
at any point, including while start() is still waiting on the device; it
only signals the capture thread, and the join and device release run in
the executor. closed() waits for that release.

A camera device can be held by one FrameSource at a time in this process.
A second start() against a claimed device fails with DeviceUnavailable.

Example:
    >>> source = FrameSource(OpenCVCamera(), CameraConfig())
    >>> await source.start()
    >>> frame = source.current_frame()
    >>> source.stop()
================================================================================
"""

import asyncio
import logging
import threading
import time
from typing import Dict, Optional

from configs.config import CameraConfig
from tracker.camera import CameraBackend, CameraConstraints, OpenCVCamera, StreamHandle
from tracker.errors import CaptureAborted, CaptureError, DeviceUnavailable
from tracker.landmarks import Frame

logger = logging.getLogger(__name__)


# ==============================================================================
# DEVICE OWNERSHIP
# ==============================================================================

_DEVICE_OWNERS: Dict[int, int] = {}
_DEVICE_LOCK = threading.Lock()


def _claim_device(device: int, owner: object) -> bool:
    with _DEVICE_LOCK:
        current = _DEVICE_OWNERS.get(device)
        if current is not None and current != id(owner):
            return False
        _DEVICE_OWNERS[device] = id(owner)
        return True


def _release_device(device: int, owner: object) -> None:
    with _DEVICE_LOCK:
        if _DEVICE_OWNERS.get(device) == id(owner):
            del _DEVICE_OWNERS[device]


def is_device_claimed(device: int) -> bool:
    with _DEVICE_LOCK:
        return device in _DEVICE_OWNERS


# ==============================================================================
# FRAME SOURCE
# ==============================================================================

class FrameSource:
    """Pull-based access to a live camera."""

    def __init__(
        self,
        camera: Optional[CameraBackend] = None,
        config: Optional[CameraConfig] = None,
    ):
        self.config = config or CameraConfig()
        self.camera = camera or OpenCVCamera()
        self.constraints = CameraConstraints.from_config(self.config)

        self._generation = 0
        self._handle: Optional[StreamHandle] = None
        self._claimed = False
        self._pending: Optional[asyncio.Future] = None
        self._closing: Optional[asyncio.Future] = None

        self._thread: Optional[threading.Thread] = None
        self._stop_event: Optional[threading.Event] = None
        self._frame_lock = threading.Lock()
        self._latest: Optional[Frame] = None
        self._frame_counter = 0
        self._error: Optional[CaptureError] = None

    @property
    def device(self) -> int:
        return self.constraints.device_index

    @property
    def running(self) -> bool:
        return self._handle is not None

    @property
    def error(self) -> Optional[CaptureError]:
        """Set by the capture thread when the camera stops delivering frames."""
        return self._error

    # --------------------------------------------------------------------------
    # Lifecycle
    # --------------------------------------------------------------------------

    async def start(self) -> None:
        """
        Open the camera and begin capturing.

        Calling start() on a running source is a no-op; a concurrent call
        joins the start already in progress.

        Raises:
            PermissionDenied: Camera access refused
            DeviceUnavailable: Camera missing or held by another source
            CaptureAborted: stop() was called before the camera opened
        """
        if self._handle is not None:
            return

        if self._closing is not None:
            # A restart waits for the previous stream to be released.
            await asyncio.wait([self._closing])
            if self._handle is not None:
                return

        if self._pending is not None:
            generation = self._generation
            await asyncio.wait([self._pending])
            if self._handle is None or generation != self._generation:
                raise CaptureAborted("camera start did not complete")
            return

        if not _claim_device(self.device, self):
            raise DeviceUnavailable(f"Camera {self.device} is in use by another pipeline")
        self._claimed = True
        self._error = None

        generation = self._generation
        loop = asyncio.get_running_loop()
        pending = loop.run_in_executor(None, self.camera.request_access, self.constraints)
        self._pending = pending
        pending.add_done_callback(lambda fut: self._on_access_resolved(generation, fut))

        try:
            await asyncio.shield(pending)
        except CaptureError:
            raise
        except Exception as exc:
            raise DeviceUnavailable(str(exc)) from exc

        if generation != self._generation or self._handle is None:
            raise CaptureAborted("camera start superseded by stop()")

    def _on_access_resolved(self, generation: int, fut: asyncio.Future) -> None:
        """Runs on the event loop once request_access() returns or raises."""
        self._pending = None

        if fut.cancelled() or fut.exception() is not None:
            self._release_claim()
            return

        handle = fut.result()
        if generation != self._generation:
            # stop() won the race; the device must not stay open.
            self._release_handle(handle)
            self._release_claim()
            return

        self._handle = handle
        self._stop_event = threading.Event()
        self._thread = threading.Thread(
            target=self._capture_loop,
            args=(handle, self._stop_event),
            name=f"FrameSource-{self.device}",
            daemon=True,
        )
        self._thread.start()
        logger.info("Frame source started on camera %d", handle.device_id)

    def stop(self) -> None:
        """
        Stop capturing. Safe to call repeatedly, never blocks the event loop.

        The capture thread is signalled at once; joining it and releasing
        the device happen in the executor. Await closed() to know the
        camera is free again.
        """
        self._generation += 1

        if self._stop_event is not None:
            self._stop_event.set()
        thread, self._thread = self._thread, None
        handle, self._handle = self._handle, None

        with self._frame_lock:
            self._latest = None

        if handle is not None:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                loop = None

            if loop is None:
                self._shutdown_capture(thread, handle)
            else:
                closing = loop.run_in_executor(None, self._shutdown_capture, thread, handle)
                self._closing = closing
                closing.add_done_callback(self._on_capture_closed)
                return

        # A start() still waiting on the device releases the claim itself.
        if self._pending is None and self._closing is None:
            self._release_claim()

    async def closed(self) -> None:
        """Wait until the camera has actually been let go of."""
        waiting = [f for f in (self._pending, self._closing) if f is not None]
        if waiting:
            await asyncio.wait(waiting)

    def _shutdown_capture(self, thread: Optional[threading.Thread], handle: StreamHandle) -> None:
        """Runs off the event loop: join the capture thread, then release."""
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=2.0)
            if thread.is_alive():
                logger.warning("Capture thread for camera %d did not exit in time", self.device)
        self._release_handle(handle)
        logger.info("Frame source stopped; camera %d released", handle.device_id)

    def _on_capture_closed(self, fut: asyncio.Future) -> None:
        self._closing = None
        if not fut.cancelled() and fut.exception() is not None:
            logger.error("Error shutting down camera %d: %s", self.device, fut.exception())
        if self._pending is None:
            self._release_claim()

    def _release_handle(self, handle: StreamHandle) -> None:
        try:
            handle.release()
        except Exception:
            logger.exception("Error releasing camera %d", self.device)

    def _release_claim(self) -> None:
        if self._claimed:
            self._claimed = False
            _release_device(self.device, self)

    # --------------------------------------------------------------------------
    # Capture
    # --------------------------------------------------------------------------

    def current_frame(self) -> Optional[Frame]:
        """Newest captured frame, or None before the first capture."""
        with self._frame_lock:
            return self._latest

    def _capture_loop(self, handle: StreamHandle, stop_event: threading.Event) -> None:
        failures = 0
        max_failures = self.config.max_read_failures

        while not stop_event.is_set():
            try:
                image = handle.get_frame()
            except Exception as exc:
                logger.debug("Camera %d read raised: %s", self.device, exc)
                image = None

            if image is None:
                failures += 1
                if failures >= max_failures:
                    self._error = DeviceUnavailable(
                        f"Camera {self.device} stopped delivering frames"
                    )
                    logger.error("%s after %d failed reads", self._error, failures)
                    return
                stop_event.wait(0.01)
                continue

            failures = 0
            with self._frame_lock:
                if stop_event.is_set():
                    return
                self._frame_counter += 1
                self._latest = Frame.from_image(image, self._frame_counter, time.monotonic())
