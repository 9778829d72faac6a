"""
ObservationSource interface for pluggable video sources.

This defines the contract the detection pipeline uses to sample frames:
- USB cameras
- RTSP/IP cameras
- Video files
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from models.frame import FrameData


@dataclass
class ObservationConfig:
    """
    Base configuration for observation sources.

    Attributes:
        source_id: Unique identifier for this source (e.g., "main-camera").
        resolution: Target resolution as (width, height). None = use source default.
        fps: Target frames per second. None = use source default.
        metadata: Additional source-specific configuration.
    """
    source_id: str = "default"
    resolution: Optional[tuple[int, int]] = None
    fps: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class ObservationSource(ABC):
    """
    Abstract base class for observation sources.

    Lifecycle:
        1. Create instance with config
        2. Call open() to initialize the source
        3. Call acquire() (or read()) to get frames
        4. Call close() to release resources

    The pipeline only calls acquire(), which reopens a closed source on
    demand so a missing camera is retried on every tick.

    Can also be used as a context manager:
        with OpenCVSource(config) as source:
            frame_data = source.acquire()
    """

    def __init__(self, config: ObservationConfig):
        self._config = config
        self._is_open = False
        self._frame_index = 0
        self._width: Optional[int] = None
        self._height: Optional[int] = None
        self._acquire_lock = threading.Lock()

    @property
    def source_id(self) -> str:
        """Unique identifier for this source."""
        return self._config.source_id

    @property
    def is_open(self) -> bool:
        """Whether the source is currently open and ready to read."""
        return self._is_open

    @property
    def frame_index(self) -> int:
        """Current frame index (number of frames read since open)."""
        return self._frame_index

    @property
    def width(self) -> Optional[int]:
        """Pixel width of the most recent frame, None before the first frame."""
        return self._width

    @property
    def height(self) -> Optional[int]:
        """Pixel height of the most recent frame, None before the first frame."""
        return self._height

    @abstractmethod
    def open(self) -> None:
        """
        Open/initialize the observation source.

        Raises:
            AcquisitionFailure: If the source cannot be opened.
        """
        pass

    @abstractmethod
    def read(self) -> Optional[FrameData]:
        """
        Read the next frame from the source.

        Returns:
            FrameData, or None if no frame is available right now.
        """
        pass

    @abstractmethod
    def close(self) -> None:
        """
        Close/release the observation source.

        Safe to call multiple times.
        """
        pass

    def acquire(self) -> Optional[FrameData]:
        """
        Return the current decodable frame.

        Opens the source first if needed. Returns None while the source has
        nothing decodable yet (e.g. camera warming up). Calls are serialized,
        so overlapping ticks and the display loop can share one source.

        Raises:
            AcquisitionFailure: If the source cannot be opened.
        """
        with self._acquire_lock:
            if not self._is_open:
                self.open()
            frame_data = self.read()
        if frame_data is None or not frame_data.is_decodable:
            return None
        self._width = frame_data.width
        self._height = frame_data.height
        return frame_data

    def __enter__(self) -> "ObservationSource":
        """Context manager entry - opens the source."""
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit - closes the source."""
        self.close()
