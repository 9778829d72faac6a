"""
Typed models for the person watch application.

These models provide strong typing for frames, detections, session state and
configuration. Use the from_dict adapters to convert from raw YAML dicts.
"""

from .frame import FrameData
from .detection import Detection, BoundingBox, filter_target
from .state import PipelineState, PipelineMode
from .config import (
    Config,
    CameraConfig,
    DetectionConfig,
    YoloConfig,
    DnnConfig,
    PipelineSettings,
    AlertConfig,
    SnapshotConfig,
)

__all__ = [
    # Frame
    "FrameData",
    # Detection
    "Detection",
    "BoundingBox",
    "filter_target",
    # State
    "PipelineState",
    "PipelineMode",
    # Config
    "Config",
    "CameraConfig",
    "DetectionConfig",
    "YoloConfig",
    "DnnConfig",
    "PipelineSettings",
    "AlertConfig",
    "SnapshotConfig",
]
