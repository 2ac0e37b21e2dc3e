"""
MediaPipe model adapters.

A detection model takes an RGB image (H, W, 3 uint8) and returns the raw
MediaPipe result object; the detector variants turn that into a
LandmarkSet. MediaPipe is imported lazily so the rest of the pipeline (and
its tests) never pay for it.
"""

from dataclasses import dataclass
from typing import Any, Protocol

import numpy as np

from tracker.errors import InitError


@dataclass(frozen=True)
class ModelOptions:
    """Options handed to the model at construction time."""
    model_complexity: int = 1
    min_detection_confidence: float = 0.5
    min_tracking_confidence: float = 0.5
    max_subjects: int = 1
    smooth_landmarks: bool = True


class DetectionModel(Protocol):
    def process(self, image: np.ndarray) -> Any: ...

    def close(self) -> None: ...


def _import_solutions():
    try:
        import mediapipe as mp  # type: ignore
    except Exception as e:
        raise InitError("MediaPipe is not installed. Install with: pip install mediapipe") from e

    solutions = getattr(mp, "solutions", None)
    if solutions is None:
        raise InitError(
            f"MediaPipe {getattr(mp, '__version__', '?')} does not ship the solutions API; "
            "install mediapipe>=0.10.9,<0.10.30"
        )
    return solutions


def create_pose_model(options: ModelOptions) -> DetectionModel:
    """MediaPipe Pose in video (tracking) mode."""
    solutions = _import_solutions()
    return solutions.pose.Pose(
        static_image_mode=False,
        model_complexity=int(options.model_complexity),
        smooth_landmarks=bool(options.smooth_landmarks),
        enable_segmentation=False,
        smooth_segmentation=False,
        min_detection_confidence=float(options.min_detection_confidence),
        min_tracking_confidence=float(options.min_tracking_confidence),
    )


def create_hand_model(options: ModelOptions) -> DetectionModel:
    """MediaPipe Hands in video (tracking) mode."""
    solutions = _import_solutions()
    return solutions.hands.Hands(
        static_image_mode=False,
        max_num_hands=int(options.max_subjects),
        model_complexity=int(options.model_complexity),
        min_detection_confidence=float(options.min_detection_confidence),
        min_tracking_confidence=float(options.min_tracking_confidence),
    )
