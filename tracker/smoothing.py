"""
Temporal smoothing for landmark stabilization.

One Euro filtering per tracked subject, driven by frame capture
timestamps. Each landmark adapts its own cutoff to its own speed, and
landmarks the model barely sees are passed through untouched.

Reference: https://cristal.univ-lille.fr/~casiez/1euro/
"""
from collections import Counter
from dataclasses import replace
from typing import Dict, Hashable, Optional, Tuple

import numpy as np

from configs.config import SmoothingConfig
from tracker.landmarks import Landmark, LandmarkSet, Subject


def _alpha(cutoff, dt: float):
    tau = 1.0 / (2 * np.pi * cutoff)
    return 1.0 / (1.0 + tau / dt)


class SubjectFilter:
    """
    One Euro state for the landmarks of one subject.

    A landmark whose visibility is below `min_visibility` keeps its raw
    position and restarts its velocity, so a limb coming back into view is
    not dragged from where it was last seen. Landmarks without visibility
    (hands) are always filtered.
    """

    def __init__(self, config: SmoothingConfig):
        self.config = config
        self._x: Optional[np.ndarray] = None    # (N, 3) filtered positions
        self._dx: Optional[np.ndarray] = None   # (N, 3) filtered velocity, units/s
        self._last_t: Optional[float] = None

    def _visible(self, subject: Subject) -> np.ndarray:
        return np.array([
            lm.visibility is None or lm.visibility >= self.config.min_visibility
            for lm in subject.landmarks
        ], dtype=bool)

    def filter(self, subject: Subject, timestamp: float) -> Subject:
        points = np.array(
            [[lm.x, lm.y, lm.z] for lm in subject.landmarks], dtype=np.float64
        ).reshape(-1, 3)

        if (
            self._x is None
            or self._x.shape != points.shape
            or self._last_t is None
            or timestamp <= self._last_t
        ):
            self._x = points
            self._dx = np.zeros_like(points)
            self._last_t = timestamp
            return subject

        dt = timestamp - self._last_t
        self._last_t = timestamp

        a_d = _alpha(self.config.d_cutoff, dt)
        dx = a_d * (points - self._x) / dt + (1 - a_d) * self._dx

        speed = np.linalg.norm(dx, axis=1, keepdims=True)
        a = _alpha(self.config.min_cutoff + self.config.beta * speed, dt)
        x = a * points + (1 - a) * self._x

        hidden = ~self._visible(subject)
        x[hidden] = points[hidden]
        dx[hidden] = 0.0

        self._x, self._dx = x, dx
        landmarks = tuple(
            Landmark(x=float(p[0]), y=float(p[1]), z=float(p[2]), visibility=lm.visibility)
            for p, lm in zip(x, subject.landmarks)
        )
        return replace(subject, landmarks=landmarks)


class LandmarkSmoother:
    """
    Keeps one SubjectFilter per tracked subject.

    Subjects are keyed by (handedness, occurrence of that label in the
    set): the left and right hand never share state, and two hands the
    model labels the same way stay apart too. Bodies carry no label and
    fall back to their position. Filters for subjects that disappear are
    dropped.

    Usage:
        smoother = LandmarkSmoother(SmoothingConfig(enabled=True))
        smoothed = smoother.smooth(landmark_set, frame.timestamp)
    """

    def __init__(self, config: Optional[SmoothingConfig] = None):
        self.config = config or SmoothingConfig(enabled=True)
        self._filters: Dict[Hashable, SubjectFilter] = {}

    @staticmethod
    def _keys(landmark_set: LandmarkSet) -> Tuple[Hashable, ...]:
        seen = Counter()
        keys = []
        for subject in landmark_set.subjects:
            keys.append((subject.handedness, seen[subject.handedness]))
            seen[subject.handedness] += 1
        return tuple(keys)

    def smooth(self, landmark_set: LandmarkSet, timestamp: float) -> LandmarkSet:
        keys = self._keys(landmark_set)
        subjects = []
        for key, subject in zip(keys, landmark_set.subjects):
            filt = self._filters.get(key)
            if filt is None:
                filt = self._filters[key] = SubjectFilter(self.config)
            subjects.append(filt.filter(subject, timestamp))

        for key in list(self._filters):
            if key not in keys:
                del self._filters[key]

        return replace(landmark_set, subjects=tuple(subjects))

    def reset(self):
        self._filters.clear()
