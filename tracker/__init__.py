"""Live camera -> landmark detection -> overlay pipeline."""
from tracker.landmarks import (
    Frame,
    Landmark,
    Subject,
    LandmarkSet,
    DetectorKind,
    POSE_CONNECTIONS,
    HAND_CONNECTIONS,
)
from tracker.errors import (
    TrackerError,
    CaptureError,
    PermissionDenied,
    DeviceUnavailable,
    InitError,
    DetectionError,
)
from tracker.frame_source import FrameSource
from tracker.detector import (
    LandmarkDetector,
    PoseDetector,
    HandDetector,
    create_detector,
)
from tracker.scheduler import FrameScheduler
from tracker.renderer import (
    OverlayRenderer,
    DrawingSurface,
    RenderSummary,
)
from tracker.controller import (
    PipelineController,
    PipelineState,
    Loading,
    Running,
    Failed,
    create_pipeline,
)
from tracker.session import TrackerSession
