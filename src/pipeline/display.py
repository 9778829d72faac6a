"""
Local preview window for the detection pipeline.

Shows the live frame with the detection overlay composited on top, a status
bar and a short highlight border after each detection. Keyboard controls:
p/space toggles detection, s takes a snapshot, q/Esc quits.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Set

import cv2
import numpy as np

from models.state import PipelineMode
from pipeline.engine import DetectionPipeline
from pipeline.errors import AcquisitionFailure
from pipeline.overlay import composite

WINDOW_NAME = "Person Watch"

STATUS_BAR_HEIGHT = 28
HIGHLIGHT_SECONDS = 0.5
HIGHLIGHT_THICKNESS = 6

# Colors (BGR)
COLOR_BAR = (32, 32, 32)
COLOR_TEXT = (255, 255, 255)
COLOR_ACTIVE = (80, 200, 120)
COLOR_PAUSED = (0, 165, 255)
COLOR_LOADING = (200, 200, 200)
COLOR_HIGHLIGHT = (157, 107, 255)  # #ff6b9d

KEY_ESC = 27


class DisplayWindow:
    """
    cv2 window bound to a running DetectionPipeline.

    A live camera is read through the pipeline's source (acquire() is
    serialized, so it can share the device with in-flight ticks). A video
    file has no frames to spare: every read advances it, so for files the
    window shows the frame of the most recent tick instead. The detector
    itself is never touched.
    """

    def __init__(
        self,
        pipeline: DetectionPipeline,
        window_name: str = WINDOW_NAME,
        refresh_interval: float = 1.0 / 30,
        follow_ticks: Optional[bool] = None,
    ):
        self.pipeline = pipeline
        if follow_ticks is None:
            follow_ticks = bool(getattr(pipeline.source, "is_file", False))
        self.follow_ticks = follow_ticks
        self.window_name = window_name
        self.refresh_interval = refresh_interval
        self._pending: Set[asyncio.Task] = set()
        self._last_frame: Optional[np.ndarray] = None

    def render(self, frame: np.ndarray) -> np.ndarray:
        """Compose the displayed image for one frame."""
        state = self.pipeline.state
        mode = state.mode

        if mode == PipelineMode.PAUSED:
            image = (frame * 0.5).astype(np.uint8)
        else:
            image = composite(frame, self.pipeline.surface)

        if self.highlight_active():
            h, w = image.shape[:2]
            cv2.rectangle(image, (0, 0), (w - 1, h - 1), COLOR_HIGHLIGHT, HIGHLIGHT_THICKNESS)

        if mode == PipelineMode.PAUSED:
            self._draw_centered(image, "PAUSED - press p to resume")
        elif mode == PipelineMode.MODEL_LOADING:
            self._draw_centered(image, state.status_text)

        return self._draw_status_bar(image)

    def highlight_active(self) -> bool:
        """True for a short while after the last tick that saw a target."""
        state = self.pipeline.state
        if state.last_detection_at is None or state.last_detection_count == 0:
            return False
        return self.pipeline.clock() - state.last_detection_at < HIGHLIGHT_SECONDS

    def handle_key(self, key: int) -> bool:
        """
        React to a key press.

        Returns False when the user asked to quit.
        """
        if key in (ord("q"), KEY_ESC):
            logging.info("Quit requested from display window")
            return False
        if key in (ord("p"), ord(" ")):
            self.pipeline.toggle()
        elif key == ord("s"):
            task = asyncio.get_running_loop().create_task(self.pipeline.capture_snapshot())
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
        return True

    async def run(self) -> None:
        """Refresh the window until the user quits or the pipeline stops."""
        logging.info(f"Display window '{self.window_name}' opened")
        try:
            while self.pipeline.is_running:
                frame = await self._next_frame()
                if frame is not None:
                    cv2.imshow(self.window_name, self.render(frame))
                key = cv2.waitKey(1) & 0xFF
                if key != 0xFF and not self.handle_key(key):
                    self.pipeline.stop()
                    break
                await asyncio.sleep(self.refresh_interval)
        finally:
            if self._pending:
                await asyncio.gather(*list(self._pending), return_exceptions=True)
            cv2.destroyWindow(self.window_name)

    async def _next_frame(self) -> Optional[np.ndarray]:
        if self.follow_ticks:
            frame_data = self.pipeline.last_frame
            if frame_data is not None:
                self._last_frame = frame_data.frame
            return self._last_frame
        try:
            frame_data = await asyncio.to_thread(self.pipeline.source.acquire)
        except AcquisitionFailure:
            # The pipeline reports camera errors; keep showing the last frame
            frame_data = None
        if frame_data is not None:
            self._last_frame = frame_data.frame
        return self._last_frame

    def _draw_status_bar(self, image: np.ndarray) -> np.ndarray:
        state = self.pipeline.state
        h, w = image.shape[:2]
        bar = np.zeros((STATUS_BAR_HEIGHT, w, 3), dtype=np.uint8)
        bar[:] = COLOR_BAR

        mode = state.mode
        if mode == PipelineMode.ACTIVE:
            mode_text, mode_color = "ACTIVE", COLOR_ACTIVE
        elif mode == PipelineMode.PAUSED:
            mode_text, mode_color = "PAUSED", COLOR_PAUSED
        else:
            mode_text, mode_color = "LOADING", COLOR_LOADING

        label = self.pipeline.config.target_label
        text = f"{state.status_text}  |  {label}: {state.last_detection_count}"
        cv2.putText(bar, text, (8, 19), cv2.FONT_HERSHEY_SIMPLEX, 0.5, COLOR_TEXT, 1, cv2.LINE_AA)
        (tw, _), _ = cv2.getTextSize(mode_text, cv2.FONT_HERSHEY_SIMPLEX, 0.5, 2)
        cv2.putText(bar, mode_text, (w - tw - 8, 19), cv2.FONT_HERSHEY_SIMPLEX, 0.5, mode_color, 2, cv2.LINE_AA)

        return np.vstack([image, bar])

    @staticmethod
    def _draw_centered(image: np.ndarray, text: str) -> None:
        h, w = image.shape[:2]
        (tw, th), _ = cv2.getTextSize(text, cv2.FONT_HERSHEY_SIMPLEX, 0.8, 2)
        origin = (max(0, (w - tw) // 2), (h + th) // 2)
        cv2.putText(image, text, origin, cv2.FONT_HERSHEY_SIMPLEX, 0.8, COLOR_TEXT, 2, cv2.LINE_AA)
