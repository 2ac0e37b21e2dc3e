"""
================================================================================
LANDMARK DATA MODEL
================================================================================
Frames, normalized landmarks and the fixed skeleton topologies of the two
detector variants.

MediaPipe Pose 33-Landmark Layout (excerpt):
    0: nose            11: left_shoulder   23: left_hip
    7: left_ear        13: left_elbow      25: left_knee
    8: right_ear       15: left_wrist      27: left_ankle
                       17-22: hand points  31: left_foot_index

MediaPipe Hands 21-Landmark Layout:
    0: wrist, 1-4: thumb, 5-8: index, 9-12: middle, 13-16: ring, 17-20: pinky

Index order is significant: index i always names the same joint.
================================================================================
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple

import numpy as np


# ==============================================================================
# FRAMES
# ==============================================================================

@dataclass(frozen=True)
class Frame:
    """One captured video image (BGR) with its native pixel size."""
    image: np.ndarray
    width: int
    height: int
    index: int
    timestamp: float

    @classmethod
    def from_image(cls, image: np.ndarray, index: int, timestamp: float) -> "Frame":
        return cls(
            image=image,
            width=int(image.shape[1]),
            height=int(image.shape[0]),
            index=index,
            timestamp=timestamp,
        )


# ==============================================================================
# DETECTOR VARIANTS
# ==============================================================================

class DetectorKind(Enum):
    POSE = "pose"
    HAND = "hand"


POSE_LANDMARK_NAMES: Tuple[str, ...] = (
    "nose",              # 0
    "left_eye_inner",    # 1
    "left_eye",          # 2
    "left_eye_outer",    # 3
    "right_eye_inner",   # 4
    "right_eye",         # 5
    "right_eye_outer",   # 6
    "left_ear",          # 7
    "right_ear",         # 8
    "mouth_left",        # 9
    "mouth_right",       # 10
    "left_shoulder",     # 11
    "right_shoulder",    # 12
    "left_elbow",        # 13
    "right_elbow",       # 14
    "left_wrist",        # 15
    "right_wrist",       # 16
    "left_pinky",        # 17
    "right_pinky",       # 18
    "left_index",        # 19
    "right_index",       # 20
    "left_thumb",        # 21
    "right_thumb",       # 22
    "left_hip",          # 23
    "right_hip",         # 24
    "left_knee",         # 25
    "right_knee",        # 26
    "left_ankle",        # 27
    "right_ankle",       # 28
    "left_heel",         # 29
    "right_heel",        # 30
    "left_foot_index",   # 31
    "right_foot_index",  # 32
)

HAND_LANDMARK_NAMES: Tuple[str, ...] = (
    "wrist",              # 0
    "thumb_cmc",          # 1
    "thumb_mcp",          # 2
    "thumb_ip",           # 3
    "thumb_tip",          # 4
    "index_finger_mcp",   # 5
    "index_finger_pip",   # 6
    "index_finger_dip",   # 7
    "index_finger_tip",   # 8
    "middle_finger_mcp",  # 9
    "middle_finger_pip",  # 10
    "middle_finger_dip",  # 11
    "middle_finger_tip",  # 12
    "ring_finger_mcp",    # 13
    "ring_finger_pip",    # 14
    "ring_finger_dip",    # 15
    "ring_finger_tip",    # 16
    "pinky_mcp",          # 17
    "pinky_pip",          # 18
    "pinky_dip",          # 19
    "pinky_tip",          # 20
)

# ------------------------------------------------------------------------------
# Skeleton Connections
# Each tuple is (start_landmark_idx, end_landmark_idx)
# ------------------------------------------------------------------------------
POSE_CONNECTIONS: Tuple[Tuple[int, int], ...] = (
    # Face
    (0, 1), (1, 2), (2, 3), (3, 7), (0, 4), (4, 5), (5, 6), (6, 8), (9, 10),
    # Torso
    (11, 12), (11, 23), (12, 24), (23, 24),
    # Left arm and hand
    (11, 13), (13, 15), (15, 17), (15, 19), (15, 21), (17, 19),
    # Right arm and hand
    (12, 14), (14, 16), (16, 18), (16, 20), (16, 22), (18, 20),
    # Left leg
    (23, 25), (25, 27), (27, 29), (29, 31), (27, 31),
    # Right leg
    (24, 26), (26, 28), (28, 30), (30, 32), (28, 32),
)

HAND_CONNECTIONS: Tuple[Tuple[int, int], ...] = (
    # Palm
    (0, 1), (0, 5), (5, 9), (9, 13), (13, 17), (0, 17),
    # Thumb
    (1, 2), (2, 3), (3, 4),
    # Index
    (5, 6), (6, 7), (7, 8),
    # Middle
    (9, 10), (10, 11), (11, 12),
    # Ring
    (13, 14), (14, 15), (15, 16),
    # Pinky
    (17, 18), (18, 19), (19, 20),
)

LANDMARK_NAMES: Dict[DetectorKind, Tuple[str, ...]] = {
    DetectorKind.POSE: POSE_LANDMARK_NAMES,
    DetectorKind.HAND: HAND_LANDMARK_NAMES,
}

TOPOLOGIES: Dict[DetectorKind, Tuple[Tuple[int, int], ...]] = {
    DetectorKind.POSE: POSE_CONNECTIONS,
    DetectorKind.HAND: HAND_CONNECTIONS,
}


def get_landmark_index(kind: DetectorKind, name: str) -> int:
    """Get index for a landmark by name."""
    return LANDMARK_NAMES[kind].index(name)


# ==============================================================================
# LANDMARKS
# ==============================================================================

@dataclass(frozen=True)
class Landmark:
    """A point in [0, 1]-normalized image space; visibility is pose-only."""
    x: float
    y: float
    z: float = 0.0
    visibility: Optional[float] = None

    def to_pixel(self, width: int, height: int) -> Tuple[int, int]:
        return int(round(self.x * width)), int(round(self.y * height))


@dataclass(frozen=True)
class Subject:
    """One detected body or hand, landmarks in anatomical index order."""
    landmarks: Tuple[Landmark, ...]
    handedness: Optional[str] = None
    score: Optional[float] = None

    def __len__(self) -> int:
        return len(self.landmarks)


@dataclass(frozen=True)
class LandmarkSet:
    """Container for the landmarks detected in a single frame."""
    kind: DetectorKind
    subjects: Tuple[Subject, ...] = ()
    frame_index: Optional[int] = None

    @property
    def num_subjects(self) -> int:
        return len(self.subjects)

    @property
    def is_empty(self) -> bool:
        return not self.subjects

    @property
    def topology(self) -> Tuple[Tuple[int, int], ...]:
        return TOPOLOGIES[self.kind]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "frame_index": self.frame_index,
            "num_subjects": self.num_subjects,
            "subjects": [
                {
                    "handedness": s.handedness,
                    "score": s.score,
                    "landmarks": [
                        [lm.x, lm.y, lm.z, lm.visibility] for lm in s.landmarks
                    ],
                }
                for s in self.subjects
            ],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LandmarkSet":
        subjects = tuple(
            Subject(
                landmarks=tuple(
                    Landmark(x=p[0], y=p[1], z=p[2], visibility=p[3])
                    for p in s["landmarks"]
                ),
                handedness=s.get("handedness"),
                score=s.get("score"),
            )
            for s in data.get("subjects", [])
        )
        return cls(
            kind=DetectorKind(data["kind"]),
            subjects=subjects,
            frame_index=data.get("frame_index"),
        )
