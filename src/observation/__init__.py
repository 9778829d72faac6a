"""
Observation layer for pluggable video sources.

This layer abstracts the source of frames (camera, video file, remote stream)
from the detection pipeline. Each source implements the ObservationSource
interface and returns FrameData objects.
"""

from .base import ObservationSource, ObservationConfig
from .opencv_source import OpenCVSource, OpenCVSourceConfig, create_source_from_config

__all__ = [
    "ObservationSource",
    "ObservationConfig",
    "OpenCVSource",
    "OpenCVSourceConfig",
    "create_source_from_config",
]
