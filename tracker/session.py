"""
Mode switching on top of PipelineController.

A session owns at most one live pipeline. Switching mode or toggling the
overlay rebuilds the pipeline: the old controller's disposal is awaited to
completion before the replacement starts, so the camera is free by the
time the new pipeline asks for it.
"""

import asyncio
import logging
from dataclasses import replace
from typing import Callable, Dict, Optional, Tuple

from configs.config import PipelineConfig, get_arm_config, get_hand_config
from tracker.camera import CameraBackend
from tracker.controller import LandmarkCallback, PipelineController, create_pipeline
from tracker.detector import ModelFactory
from tracker.landmarks import DetectorKind

logger = logging.getLogger(__name__)

MODES: Dict[str, Tuple[DetectorKind, Callable[[], PipelineConfig]]] = {
    "arm": (DetectorKind.POSE, get_arm_config),
    "hand": (DetectorKind.HAND, get_hand_config),
}


def default_config_for(mode: str) -> PipelineConfig:
    return MODES[mode][1]()


class TrackerSession:
    """
    Example:
        >>> session = TrackerSession(on_landmarks=print)
        >>> await session.switch("arm")
        >>> await session.toggle_overlay()
        >>> await session.close()
    """

    def __init__(
        self,
        on_landmarks: Optional[LandmarkCallback] = None,
        camera: Optional[CameraBackend] = None,
        model_factory: Optional[ModelFactory] = None,
        config_for: Callable[[str], PipelineConfig] = default_config_for,
    ):
        self.on_landmarks = on_landmarks
        self.camera = camera
        self.model_factory = model_factory
        self.config_for = config_for

        self.controller: Optional[PipelineController] = None
        self.mode: Optional[str] = None
        self._lock: Optional[asyncio.Lock] = None

    def _get_lock(self) -> asyncio.Lock:
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    @property
    def overlay_enabled(self) -> Optional[bool]:
        if self.controller is None:
            return None
        return self.controller.config.overlay_enabled

    async def switch(self, mode: str, overlay_enabled: Optional[bool] = None) -> PipelineController:
        """Replace the current pipeline with a fresh one for `mode`."""
        if mode not in MODES:
            raise ValueError(f"Unknown tracking mode: {mode!r} (expected one of {sorted(MODES)})")

        async with self._get_lock():
            if overlay_enabled is None:
                overlay_enabled = self.overlay_enabled

            await self._dispose_current()

            kind, _ = MODES[mode]
            config = self.config_for(mode)
            if overlay_enabled is not None and overlay_enabled != config.overlay_enabled:
                config = replace(config, overlay_enabled=overlay_enabled)

            controller = create_pipeline(
                kind,
                config,
                on_landmarks=self.on_landmarks,
                camera=self.camera,
                model_factory=self.model_factory,
            )
            self.controller = controller
            self.mode = mode
            controller.start()
            logger.info("Switched to %s mode (overlay=%s)", mode, config.overlay_enabled)
            return controller

    async def toggle_overlay(self) -> Optional[PipelineController]:
        if self.mode is None:
            return None
        return await self.switch(self.mode, overlay_enabled=not self.overlay_enabled)

    async def close(self) -> None:
        async with self._get_lock():
            await self._dispose_current()
            self.mode = None

    async def _dispose_current(self) -> None:
        controller, self.controller = self.controller, None
        if controller is not None:
            await controller.dispose()
