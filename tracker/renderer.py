"""
================================================================================
OVERLAY RENDERER
================================================================================
Draws a frame and its landmarks onto a DrawingSurface.

Two looks:
    - overlay disabled: the raw camera frame, nothing else
    - overlay enabled: a stylized background (opaque fill, or the frame
      dimmed under a semi-transparent fill) with every skeleton edge drawn
      as a line and landmarks drawn as point markers

The surface is resized to the frame's native size before every draw, so
normalized landmark coordinates scale straight to pixels.
================================================================================
"""

from dataclasses import dataclass
from typing import Optional, Tuple

import cv2
import numpy as np

from configs.config import PipelineConfig
from tracker.landmarks import Frame, LandmarkSet, Subject


# ==============================================================================
# DRAWING SURFACE
# ==============================================================================

class DrawingSurface:
    """
    The render target: a BGR image owned by one pipeline.

    Example:
        >>> surface = DrawingSurface()
        >>> renderer.render(frame, landmarks, config, surface)
        >>> cv2.imshow("tracker", surface.snapshot())
    """

    def __init__(self, width: int = 0, height: int = 0):
        self.image = np.zeros((max(height, 0), max(width, 0), 3), dtype=np.uint8)
        self.draw_count = 0

    @property
    def width(self) -> int:
        return int(self.image.shape[1])

    @property
    def height(self) -> int:
        return int(self.image.shape[0])

    @property
    def is_blank(self) -> bool:
        return self.draw_count == 0

    def resize(self, width: int, height: int) -> None:
        """Match the surface to a frame's dimensions; clears on change."""
        if (width, height) != (self.width, self.height):
            self.image = np.zeros((height, width, 3), dtype=np.uint8)

    def snapshot(self) -> np.ndarray:
        return self.image.copy()


@dataclass(frozen=True)
class RenderSummary:
    """What one render() call put on the surface."""
    overlay: bool
    subjects: int = 0
    edges: int = 0
    markers: int = 0


# ==============================================================================
# RENDERER
# ==============================================================================

class OverlayRenderer:
    """
    Draws raw frames or stylized skeleton views.

    Example:
        >>> renderer = OverlayRenderer()
        >>> summary = renderer.render(frame, landmarks, config, surface)
        >>> summary.edges, summary.markers
    """

    def render(
        self,
        frame: Frame,
        landmark_set: Optional[LandmarkSet],
        config: PipelineConfig,
        surface: DrawingSurface,
    ) -> RenderSummary:
        """
        Draw one frame onto the surface.

        Args:
            frame: Source frame (BGR)
            landmark_set: Detection result for the frame, or None
            config: Pipeline configuration (overlay switch, colors)
            surface: Render target, resized to the frame

        Returns:
            RenderSummary counting subjects, edges and markers drawn
        """
        surface.resize(frame.width, frame.height)
        surface.draw_count += 1

        if not config.overlay_enabled:
            np.copyto(surface.image, frame.image)
            return RenderSummary(overlay=False)

        self._draw_background(frame, config, surface)

        if landmark_set is None or landmark_set.is_empty:
            return RenderSummary(overlay=True)

        edges = markers = 0
        for subject in landmark_set.subjects:
            edges += self._draw_skeleton_lines(surface.image, subject, landmark_set.topology, config)
            markers += self._draw_landmark_points(surface.image, subject, config)

        return RenderSummary(
            overlay=True,
            subjects=landmark_set.num_subjects,
            edges=edges,
            markers=markers,
        )

    def _draw_background(self, frame: Frame, config: PipelineConfig, surface: DrawingSurface) -> None:
        viz = config.visualization
        opacity = viz.background_opacity

        surface.image[:] = viz.background_color
        if opacity < 1.0:
            # Semi-transparent fill: dimmed frame shows through.
            surface.image[:] = cv2.addWeighted(surface.image, opacity, frame.image, 1.0 - opacity, 0)

    def _draw_skeleton_lines(
        self,
        image: np.ndarray,
        subject: Subject,
        topology: Tuple[Tuple[int, int], ...],
        config: PipelineConfig,
    ) -> int:
        """Draw lines connecting landmarks to form the skeleton."""
        viz = config.visualization
        height, width = image.shape[:2]
        count = 0

        for start_idx, end_idx in topology:
            if start_idx >= len(subject) or end_idx >= len(subject):
                continue
            start, end = subject.landmarks[start_idx], subject.landmarks[end_idx]

            if not self._visible(start, viz.min_visibility) or not self._visible(end, viz.min_visibility):
                continue

            cv2.line(
                image,
                start.to_pixel(width, height),
                end.to_pixel(width, height),
                viz.connector_color,
                viz.connector_thickness,
                cv2.LINE_AA,
            )
            count += 1

        return count

    def _draw_landmark_points(self, image: np.ndarray, subject: Subject, config: PipelineConfig) -> int:
        """Draw a filled circle at each (selected) landmark."""
        viz = config.visualization
        height, width = image.shape[:2]
        indices = viz.marker_indices if viz.marker_indices is not None else range(len(subject))
        count = 0

        for idx in indices:
            if idx >= len(subject):
                continue
            landmark = subject.landmarks[idx]
            if not self._visible(landmark, viz.min_visibility):
                continue

            cv2.circle(
                image,
                landmark.to_pixel(width, height),
                viz.landmark_radius,
                viz.landmark_color,
                -1,
                cv2.LINE_AA,
            )
            count += 1

        return count

    @staticmethod
    def _visible(landmark, threshold: float) -> bool:
        # Hand landmarks carry no visibility.
        if landmark.visibility is None or threshold <= 0:
            return True
        return landmark.visibility >= threshold


# ==============================================================================
# STATUS BANNER
# ==============================================================================

def draw_status(image: np.ndarray, text: str, error: bool = False, font_scale: float = 0.7) -> np.ndarray:
    """Dim the image and center a status line on it (loading / error)."""
    overlay = image.copy()
    fill = (0, 0, 180) if error else (0, 0, 0)
    cv2.rectangle(overlay, (0, 0), (image.shape[1], image.shape[0]), fill, -1)
    image = cv2.addWeighted(overlay, 0.5, image, 0.5, 0)

    (text_w, text_h), _ = cv2.getTextSize(text, cv2.FONT_HERSHEY_SIMPLEX, font_scale, 2)
    x = max(10, (image.shape[1] - text_w) // 2)
    y = (image.shape[0] + text_h) // 2
    cv2.putText(
        image, text, (x, y),
        cv2.FONT_HERSHEY_SIMPLEX, font_scale, (255, 255, 255), 2, cv2.LINE_AA,
    )
    return image
