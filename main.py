"""
================================================================================
LIVE SKELETON TRACKER - MAIN RUNNER
================================================================================
Opens the camera, tracks arms (MediaPipe Pose) or hands (MediaPipe Hands)
and shows the skeleton overlay in an OpenCV window.

Usage:
    # Arm tracking with the stylized overlay
    python main.py --mode arm

    # Hand tracking, raw camera view
    python main.py --mode hand --no-overlay

    # Second camera, settings from a JSON file, record landmarks
    python main.py --device 1 --config tracker.json --record-landmarks out.jsonl

Keys:
    o      toggle overlay (rebuilds the pipeline)
    m      switch arm / hand mode
    q/Esc  quit
================================================================================
"""

import argparse
import asyncio
import json
import logging
import time
from dataclasses import replace
from pathlib import Path
from typing import Callable, Optional, TextIO

import cv2
import numpy as np

from configs.config import PipelineConfig, load_config
from tracker.controller import Failed, Running
from tracker.landmarks import LandmarkSet
from tracker.renderer import draw_status
from tracker.session import MODES, TrackerSession, default_config_for

logger = logging.getLogger("tracker.main")

WINDOW_NAME = "Live Skeleton Tracker"
LOADING_TEXT = {"arm": "Loading pose detection...", "hand": "Loading hand detection..."}


# ==============================================================================
# LANDMARK CONSUMER
# ==============================================================================

class LandmarkRecorder:
    """Logs subject counts and optionally appends landmark sets as JSON lines."""

    def __init__(self, output: Optional[TextIO] = None):
        self.output = output
        self.count = 0

    def __call__(self, landmarks: LandmarkSet) -> None:
        self.count += 1
        logger.debug("%s detected: %d", landmarks.kind.value, landmarks.num_subjects)
        if self.output is not None:
            record = landmarks.to_dict()
            record["t"] = time.time()
            self.output.write(json.dumps(record) + "\n")


# ==============================================================================
# APPLICATION
# ==============================================================================

class LiveTrackerApp:
    """
    Window loop around a TrackerSession.

    Example:
        >>> app = LiveTrackerApp(TrackerSession(), mode="hand")
        >>> asyncio.run(app.run())
    """

    def __init__(
        self,
        session: TrackerSession,
        mode: str = "arm",
        overlay_enabled: bool = True,
        refresh_hz: float = 60.0,
    ):
        self.session = session
        self.mode = mode
        self.overlay_enabled = overlay_enabled
        self.refresh_hz = refresh_hz

    async def run(self) -> None:
        await self.session.switch(self.mode, overlay_enabled=self.overlay_enabled)
        interval = 1.0 / self.refresh_hz
        try:
            while True:
                cv2.imshow(WINDOW_NAME, self.compose())
                key = cv2.waitKey(1) & 0xFF

                if key in (ord("q"), 27):
                    break
                if key == ord("o"):
                    await self.session.toggle_overlay()
                elif key == ord("m"):
                    self.mode = "hand" if self.session.mode == "arm" else "arm"
                    await self.session.switch(self.mode)

                await asyncio.sleep(interval)
        finally:
            self.print_stats()
            await self.session.close()
            cv2.destroyAllWindows()

    def compose(self) -> np.ndarray:
        """Build the image shown in the window for the current state."""
        controller = self.session.controller
        if controller is None:
            return np.zeros((480, 640, 3), dtype=np.uint8)

        camera = controller.config.camera
        image = controller.surface.snapshot()
        if image.size == 0:
            image = np.zeros((camera.ideal_height, camera.ideal_width, 3), dtype=np.uint8)
        if camera.mirror:
            image = cv2.flip(image, 1)

        status = controller.status
        font_scale = controller.config.visualization.status_font_scale
        if isinstance(status, Failed):
            return draw_status(image, f"Error: {status.message}", error=True, font_scale=font_scale)
        if not isinstance(status, Running) or controller.surface.is_blank:
            return draw_status(image, LOADING_TEXT.get(self.session.mode, "Loading..."), font_scale=font_scale)
        return image

    def print_stats(self) -> None:
        controller = self.session.controller
        if controller is None:
            return
        scheduler = controller.scheduler
        print("\n" + "=" * 60)
        print("SESSION COMPLETE")
        print("=" * 60)
        print(f"  Mode: {self.session.mode}")
        print(f"  Submitted: {scheduler.submitted}")
        print(f"  Dropped: {scheduler.dropped}")
        print(f"  Failed: {scheduler.failed}")
        print(f"  Detection Speed: {scheduler.get_average_fps():.1f} FPS")
        print("=" * 60 + "\n")


# ==============================================================================
# COMMAND LINE INTERFACE
# ==============================================================================

def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Live Skeleton Tracker (MediaPipe Pose / Hands)",
    )

    parser.add_argument("--mode", "-m", choices=sorted(MODES), default="arm", help="Tracking mode")
    parser.add_argument("--no-overlay", action="store_true", help="Show the raw camera view")
    parser.add_argument("--device", "-d", type=int, help="Camera device index")
    parser.add_argument("--config", "-c", type=str, help="JSON file with configuration overrides")
    parser.add_argument("--record-landmarks", "-r", type=str, help="Append landmark sets to a JSONL file")
    parser.add_argument("--verbose", action="store_true", help="Verbose output")

    return parser.parse_args(argv)


def build_config_loader(
    config_path: Optional[str] = None,
    device: Optional[int] = None,
) -> Callable[[str], PipelineConfig]:
    """Preset for the mode, then JSON overrides, then command line overrides."""

    def config_for(mode: str) -> PipelineConfig:
        config = default_config_for(mode)
        if config_path:
            config = load_config(config_path, base=config)
        if device is not None:
            config = replace(config, camera=replace(config.camera, device_index=device))
        return config

    return config_for


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )


def main(argv=None):
    args = parse_args(argv)
    configure_logging(args.verbose)

    print("\n" + "=" * 60)
    print("LIVE SKELETON TRACKER")
    print("=" * 60)

    config_for = build_config_loader(args.config, args.device)
    if args.verbose:
        config_for(args.mode).print_summary()

    output = None
    if args.record_landmarks:
        path = Path(args.record_landmarks)
        path.parent.mkdir(parents=True, exist_ok=True)
        output = open(path, "a", encoding="utf-8")

    try:
        session = TrackerSession(on_landmarks=LandmarkRecorder(output), config_for=config_for)
        app = LiveTrackerApp(session, mode=args.mode, overlay_enabled=not args.no_overlay)
        asyncio.run(app.run())
    except KeyboardInterrupt:
        pass
    finally:
        if output is not None:
            output.close()

    print("\n✓ Tracker closed")


if __name__ == "__main__":
    main()
