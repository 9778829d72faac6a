"""
Detection models for object detection results.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Tuple


@dataclass(frozen=True)
class BoundingBox:
    """
    A bounding box in frame pixel coordinates.

    Attributes:
        x: Left edge x coordinate.
        y: Top edge y coordinate.
        width: Box width in pixels.
        height: Box height in pixels.
    """
    x: float
    y: float
    width: float
    height: float

    @property
    def x2(self) -> float:
        return self.x + self.width

    @property
    def y2(self) -> float:
        return self.y + self.height

    def as_int_xyxy(self) -> Tuple[int, int, int, int]:
        """Return as integer (x1, y1, x2, y2) corners for drawing."""
        return (int(self.x), int(self.y), int(self.x2), int(self.y2))

    @classmethod
    def from_xyxy(cls, x1: float, y1: float, x2: float, y2: float) -> "BoundingBox":
        """Create from corner coordinates."""
        return cls(x=x1, y=y1, width=x2 - x1, height=y2 - y1)


@dataclass(frozen=True)
class Detection:
    """
    A single labeled detection from an object detector.

    Attributes:
        label: Class name reported by the model (e.g. "person").
        confidence: Detection confidence score (0-1).
        bbox: Bounding box in frame pixel coordinates.
    """
    label: str
    confidence: float
    bbox: BoundingBox

    def __post_init__(self):
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be within [0, 1], got {self.confidence}")

    @property
    def confidence_pct(self) -> float:
        return self.confidence * 100

    @classmethod
    def from_xywh(
        cls,
        label: str,
        confidence: float,
        x: float,
        y: float,
        width: float,
        height: float,
    ) -> "Detection":
        """Create Detection from (x, y, width, height)."""
        return cls(label=label, confidence=confidence, bbox=BoundingBox(x, y, width, height))

    @classmethod
    def from_xyxy(
        cls,
        label: str,
        confidence: float,
        x1: float,
        y1: float,
        x2: float,
        y2: float,
    ) -> "Detection":
        """Create Detection from corner coordinates, as most backends report them."""
        return cls(label=label, confidence=confidence, bbox=BoundingBox.from_xyxy(x1, y1, x2, y2))


def filter_target(detections: Iterable[Detection], target_label: str) -> List[Detection]:
    """Keep only detections whose label equals the target label."""
    return [d for d in detections if d.label == target_label]
