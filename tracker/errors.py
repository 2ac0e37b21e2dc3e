"""
Exception hierarchy for the tracking pipeline.

Initialization and capture errors end a pipeline (status Failed); a single
DetectionError is absorbed by the scheduler. A completion that arrives after
disposal is not an error at all: the cancellation token drops it.
"""


class TrackerError(Exception):
    """Base class for every error the pipeline reports."""

    kind = "tracker_error"

    def __str__(self) -> str:
        message = super().__str__()
        return message or self.kind


# ------------------------------------------------------------------------------
# Camera
# ------------------------------------------------------------------------------

class CaptureError(TrackerError):
    kind = "capture_error"


class PermissionDenied(CaptureError):
    """Camera access was refused. Terminal for the instance."""

    kind = "permission_denied"


class DeviceUnavailable(CaptureError):
    """Camera is missing, busy or stopped delivering frames."""

    kind = "device_unavailable"


class CaptureAborted(CaptureError):
    """start() was superseded by stop() before the camera opened."""

    kind = "capture_aborted"


# ------------------------------------------------------------------------------
# Detector
# ------------------------------------------------------------------------------

class InitError(TrackerError):
    """The detection model could not be loaded."""

    kind = "init_error"


class DetectionError(TrackerError):
    """A single detect() call failed."""

    kind = "detection_error"


class DetectorDisposedError(DetectionError):
    kind = "detector_disposed"
