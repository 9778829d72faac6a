"""
Session state for the detection pipeline.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class PipelineMode(str, Enum):
    """Observable pipeline modes."""
    MODEL_LOADING = "model_loading"
    ACTIVE = "active"
    PAUSED = "paused"


# Status messages shown to the user
STATUS_INITIALIZING = "Initializing..."
STATUS_CAMERA_STARTED = "Camera started. Loading model..."
STATUS_CAMERA_ERROR = "Error accessing camera"
STATUS_MODEL_READY = "Model loaded. Ready to detect!"
STATUS_MODEL_FAILED = "Model failed to load"
STATUS_ACTIVE = "Actively detecting..."
STATUS_PAUSED = "Detection paused"


@dataclass
class PipelineState:
    """
    Mutable state of one detection session.

    Owned by a single DetectionPipeline and mutated only by its tick handler
    and its toggle handler.

    Attributes:
        enabled: Whether ticks may run inference.
        last_detection_count: Target detections in the last applied tick.
        status_text: Human readable status line.
        model_ready: Whether the detector finished loading.
        epoch: Bumped on every enable/disable transition.
        last_detection_at: Monotonic time of the last tick with detections.
    """
    enabled: bool = True
    last_detection_count: int = 0
    status_text: str = STATUS_INITIALIZING
    model_ready: bool = False
    epoch: int = 0
    last_detection_at: Optional[float] = None

    @property
    def mode(self) -> PipelineMode:
        if not self.model_ready:
            return PipelineMode.MODEL_LOADING
        return PipelineMode.ACTIVE if self.enabled else PipelineMode.PAUSED

    def set_enabled(self, enabled: bool) -> bool:
        """
        Apply an explicit enable/disable request.

        Returns True if the flag actually changed. Disabling zeroes the
        detection count in the same step.
        """
        if enabled == self.enabled:
            return False
        self.enabled = enabled
        self.epoch += 1
        if enabled:
            self.status_text = STATUS_ACTIVE
        else:
            self.last_detection_count = 0
            self.status_text = STATUS_PAUSED
        return True

    def mark_model_ready(self) -> bool:
        """ModelLoading -> Active/Paused. Returns False if already ready."""
        if self.model_ready:
            return False
        self.model_ready = True
        self.status_text = STATUS_MODEL_READY if self.enabled else STATUS_PAUSED
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode.value,
            "enabled": self.enabled,
            "last_detection_count": self.last_detection_count,
            "status_text": self.status_text,
        }
