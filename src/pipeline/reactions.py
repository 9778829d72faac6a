"""
Rate-limited reactions to target detections.

Each reaction pairs its own Throttle with a sink. They are triggered once per
tick that saw at least one target detection, independently of each other.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Protocol

import numpy as np

from pipeline.throttle import Throttle

DEFAULT_ALERT_INTERVAL = 5.0
DEFAULT_SNAPSHOT_INTERVAL = 10.0


class AlertSink(Protocol):
    def play(self) -> bool:
        ...


class SnapshotSink(Protocol):
    def capture(self, frame: np.ndarray, label: str) -> Optional[Path]:
        ...


class AlertReaction:
    """Plays an audible cue at most once per throttle interval."""

    def __init__(self, player: Optional[AlertSink], throttle: Optional[Throttle] = None):
        self.player = player
        self.throttle = throttle or Throttle(DEFAULT_ALERT_INTERVAL, name="alert")

    def on_detection(self, now: Optional[float] = None) -> bool:
        """Returns True if the cue fired (whether or not playback succeeded)."""
        if not self.throttle.try_fire(now):
            return False
        if self.player is None:
            logging.debug("Alert fired with no audio sink configured")
            return True
        try:
            self.player.play()
        except Exception as e:
            logging.error(f"Audio play failed: {e}")
        return True


class SnapshotReaction:
    """Persists the raw frame at most once per throttle interval."""

    def __init__(
        self,
        writer: Optional[SnapshotSink],
        target_label: str,
        throttle: Optional[Throttle] = None,
    ):
        self.writer = writer
        self.target_label = target_label
        self.throttle = throttle or Throttle(DEFAULT_SNAPSHOT_INTERVAL, name="snapshot")

    def on_detection(self, frame: np.ndarray, now: Optional[float] = None) -> Optional[Path]:
        """Capture if the throttle allows. Returns the saved path, if any."""
        if not self.throttle.try_fire(now):
            return None
        return self.capture(frame)

    def capture(self, frame: np.ndarray) -> Optional[Path]:
        """Capture immediately; the throttle is neither consulted nor advanced."""
        if self.writer is None:
            return None
        try:
            return self.writer.capture(frame, self.target_label)
        except Exception as e:
            logging.warning(f"Snapshot failed: {e}")
            return None
