"""
================================================================================
LIVE SKELETON TRACKER CONFIGURATION
================================================================================
This configuration file centralizes all settings for the live tracking
pipeline. Modify these values to customize behavior without touching core
logic.

Project: Live Skeleton Tracker (camera -> landmark detection -> overlay)
Backend: MediaPipe Pose (33 body landmarks) / MediaPipe Hands (21 per hand)

A PipelineConfig is frozen: one controller lives with exactly one config.
To change a setting, build a new config (dataclasses.replace) and rebuild
the pipeline.

CONFIGURATION SECTIONS:
    1. Model Settings - Detector complexity levels
    2. Camera Settings - Capture device and resolution
    3. Scheduler Settings - Cadence and detection error policy
    4. Visualization Settings - Drawing and display options
    5. Smoothing Settings - Optional landmark filtering
================================================================================
"""

import json
from dataclasses import dataclass, field, fields, is_dataclass, replace
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union


# ==============================================================================
# SECTION 1: MODEL SETTINGS
# ==============================================================================
# MediaPipe exposes three pose model sizes and two hand model sizes.
#
#   LOW  (0): lite model, fastest
#   MID  (1): full model [RECOMMENDED]
#   HIGH (2): heavy model, pose only (hands clamp to MID)
# ==============================================================================

class ModelComplexity(Enum):
    """Detector model size; the value is what MediaPipe expects."""
    LOW = 0
    MID = 1
    HIGH = 2

    @classmethod
    def parse(cls, value: Union[str, int, "ModelComplexity"]) -> "ModelComplexity":
        """Accept an enum member, its name ('mid') or its integer value."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str) and not value.isdigit():
            try:
                return cls[value.strip().upper()]
            except KeyError:
                raise ValueError(f"Unknown model complexity: {value!r}") from None
        return cls(int(value))


# ==============================================================================
# SECTION 2: CAMERA SETTINGS
# ==============================================================================
# The camera is requested with "ideal" dimensions; the device may deliver
# something else and every downstream stage uses the frame's native size.
# ==============================================================================

@dataclass(frozen=True)
class CameraConfig:
    """
    Capture device configuration.

    Attributes:
        device_index: OpenCV device index of the camera
        facing_mode: 'user' (front/selfie) or 'environment' (rear)
        ideal_width: Requested frame width in pixels
        ideal_height: Requested frame height in pixels
        mirror: Flip the displayed surface horizontally (selfie view)
        max_read_failures: Consecutive failed reads before the camera is
            declared unavailable
    """
    device_index: int = 0
    facing_mode: str = "user"
    ideal_width: int = 640
    ideal_height: int = 480
    mirror: bool = True
    max_read_failures: int = 30

    def __post_init__(self):
        if self.facing_mode not in ("user", "environment"):
            raise ValueError("facing_mode must be 'user' or 'environment'")
        if self.ideal_width <= 0 or self.ideal_height <= 0:
            raise ValueError("ideal_width and ideal_height must be positive")
        if self.max_read_failures < 1:
            raise ValueError("max_read_failures must be at least 1")


# ==============================================================================
# SECTION 3: SCHEDULER SETTINGS
# ==============================================================================
# The scheduler ticks at the display refresh rate and submits the newest
# frame only when no detection is outstanding. Frames that arrive while the
# detector is busy are dropped, never queued.
# ==============================================================================

@dataclass(frozen=True)
class SchedulerConfig:
    """
    Frame scheduling configuration.

    Attributes:
        refresh_hz: Scheduler tick rate (display refresh)
        max_consecutive_detection_errors: Failed detections in a row that
            escalate the pipeline to Failed
        drop_policy: Backpressure policy; only 'drop' is implemented
    """
    refresh_hz: float = 60.0
    max_consecutive_detection_errors: int = 10
    drop_policy: str = "drop"

    def __post_init__(self):
        if self.refresh_hz <= 0:
            raise ValueError("refresh_hz must be positive")
        if self.max_consecutive_detection_errors < 1:
            raise ValueError("max_consecutive_detection_errors must be at least 1")
        if self.drop_policy != "drop":
            raise ValueError(f"Unsupported drop_policy: {self.drop_policy!r}")

    @property
    def tick_interval(self) -> float:
        return 1.0 / self.refresh_hz


# ==============================================================================
# SECTION 4: VISUALIZATION SETTINGS
# ==============================================================================
# Colors are BGR (OpenCV order).
# ==============================================================================

@dataclass(frozen=True)
class VisualizationConfig:
    """Visualization and drawing configuration."""

    connector_color: Tuple[int, int, int] = (0, 255, 0)    # Green BGR
    connector_thickness: int = 2
    landmark_color: Tuple[int, int, int] = (0, 0, 255)     # Red BGR
    landmark_radius: int = 3

    # Stylized overlay background: 1.0 is an opaque fill, lower values
    # let a dimmed copy of the frame show through.
    background_color: Tuple[int, int, int] = (20, 20, 20)
    background_opacity: float = 1.0

    # None draws a marker for every landmark.
    marker_indices: Optional[Tuple[int, ...]] = None
    min_visibility: float = 0.0

    status_font_scale: float = 0.7

    def __post_init__(self):
        if not 0 <= self.background_opacity <= 1:
            raise ValueError("background_opacity must be between 0 and 1")
        if not 0 <= self.min_visibility <= 1:
            raise ValueError("min_visibility must be between 0 and 1")
        if self.connector_thickness < 1 or self.landmark_radius < 1:
            raise ValueError("connector_thickness and landmark_radius must be >= 1")


# ==============================================================================
# SECTION 5: SMOOTHING SETTINGS
# ==============================================================================

@dataclass(frozen=True)
class SmoothingConfig:
    """
    Temporal smoothing configuration for reducing landmark jitter.

    Uses One Euro Filter - adaptive smoothing that's smooth on slow
    movements and responsive on fast movements. MediaPipe Pose already
    smooths natively (smooth_landmarks), so this is mostly useful for hands.
    Cutoffs are in Hz and the filter runs on frame capture timestamps.
    """
    enabled: bool = False
    min_cutoff: float = 1.0   # Lower = smoother
    beta: float = 0.5         # Higher = more reactive to speed
    d_cutoff: float = 1.0     # Derivative cutoff
    min_visibility: float = 0.5  # Less visible pose landmarks pass through raw


# ==============================================================================
# MASTER CONFIGURATION CLASS
# ==============================================================================

@dataclass(frozen=True)
class PipelineConfig:
    """
    Master configuration for one pipeline instance.

    Usage:
        >>> config = get_hand_config()
        >>> config = replace(config, overlay_enabled=False)
        >>> config.print_summary()
    """

    overlay_enabled: bool = True
    detection_confidence_threshold: float = 0.5
    tracking_confidence_threshold: float = 0.5
    max_subjects: int = 1
    model_complexity: ModelComplexity = ModelComplexity.MID
    smooth_landmarks: bool = True

    camera: CameraConfig = field(default_factory=CameraConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    visualization: VisualizationConfig = field(default_factory=VisualizationConfig)
    smoothing: SmoothingConfig = field(default_factory=SmoothingConfig)

    def __post_init__(self):
        """Validate configuration after initialization."""
        if not 0 <= self.detection_confidence_threshold <= 1:
            raise ValueError("detection_confidence_threshold must be between 0 and 1")
        if not 0 <= self.tracking_confidence_threshold <= 1:
            raise ValueError("tracking_confidence_threshold must be between 0 and 1")
        if self.max_subjects < 1:
            raise ValueError("max_subjects must be at least 1")
        if not isinstance(self.model_complexity, ModelComplexity):
            object.__setattr__(
                self, "model_complexity", ModelComplexity.parse(self.model_complexity)
            )

    def print_summary(self) -> None:
        """Print a summary of current configuration."""
        print("\n" + "=" * 60)
        print("LIVE TRACKER CONFIGURATION SUMMARY")
        print("=" * 60)
        print(f"\n[Detector]")
        print(f"  Overlay: {self.overlay_enabled}")
        print(f"  Complexity: {self.model_complexity.name.lower()}")
        print(f"  Detection Confidence: {self.detection_confidence_threshold}")
        print(f"  Tracking Confidence: {self.tracking_confidence_threshold}")
        print(f"  Max Subjects: {self.max_subjects}")
        print(f"\n[Camera]")
        print(f"  Device: {self.camera.device_index} ({self.camera.facing_mode})")
        print(f"  Ideal Size: {self.camera.ideal_width}x{self.camera.ideal_height}")
        print(f"\n[Scheduler]")
        print(f"  Refresh: {self.scheduler.refresh_hz:.0f} Hz")
        print(f"  Error Threshold: {self.scheduler.max_consecutive_detection_errors}")
        print(f"\n[Smoothing]")
        print(f"  One Euro: {self.smoothing.enabled}")
        print("=" * 60 + "\n")


# ==============================================================================
# PRESET FACTORIES
# ==============================================================================

# Shoulder, elbow, wrist and hand landmarks of the 33-point pose skeleton.
ARM_MARKER_INDICES: Tuple[int, ...] = tuple(range(11, 23))


def get_arm_config() -> PipelineConfig:
    """Pose tracking focused on the arms."""
    return PipelineConfig(
        max_subjects=1,
        visualization=VisualizationConfig(
            connector_thickness=2,
            marker_indices=ARM_MARKER_INDICES,
        ),
    )


def get_hand_config() -> PipelineConfig:
    """Two-hand tracking."""
    return PipelineConfig(
        max_subjects=2,
        visualization=VisualizationConfig(connector_thickness=3),
    )


# ==============================================================================
# JSON OVERRIDES
# ==============================================================================

def _apply_overrides(obj: Any, overrides: Dict[str, Any]) -> Any:
    """Recursively replace dataclass fields from a plain dict."""
    known = {f.name: f for f in fields(obj)}
    changes: Dict[str, Any] = {}
    for key, value in overrides.items():
        if key not in known:
            raise ValueError(f"Unknown configuration key: {key!r}")
        current = getattr(obj, key)
        if is_dataclass(current) and isinstance(value, dict):
            changes[key] = _apply_overrides(current, value)
        elif isinstance(value, list):
            changes[key] = tuple(value)
        elif key == "model_complexity":
            changes[key] = ModelComplexity.parse(value)
        else:
            changes[key] = value
    return replace(obj, **changes)


def load_config(
    path: Union[str, Path],
    base: Optional[PipelineConfig] = None,
) -> PipelineConfig:
    """
    Load JSON overrides on top of a base configuration.

    The file mirrors the dataclass layout, e.g.:
        {"max_subjects": 2, "camera": {"device_index": 1}}

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: On unknown keys or invalid values
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config not found: {path}")

    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"Config root must be an object: {path}")

    return _apply_overrides(base or PipelineConfig(), data)


# ==============================================================================
# MODULE TEST
# ==============================================================================

if __name__ == "__main__":
    get_arm_config().print_summary()
