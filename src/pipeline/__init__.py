"""
Pipeline module for the person detection system.

The pipeline orchestrates the full processing flow:
- Frame acquisition from observation sources
- Detection on a fixed sampling period
- Overlay rendering and session state
- Rate-limited alert and snapshot reactions
"""

from .engine import DetectionPipeline, PipelineConfig, PipelineStats
from .errors import AcquisitionFailure, InferenceFailure, PipelineError, SideEffectFailure
from .overlay import OverlaySurface, composite, render_detections
from .reactions import AlertReaction, SnapshotReaction
from .throttle import Throttle

__all__ = [
    "DetectionPipeline",
    "PipelineConfig",
    "PipelineStats",
    "PipelineError",
    "AcquisitionFailure",
    "InferenceFailure",
    "SideEffectFailure",
    "OverlaySurface",
    "composite",
    "render_detections",
    "AlertReaction",
    "SnapshotReaction",
    "Throttle",
]
