"""
Detection overlay rendering.

The overlay lives on its own transparent BGRA surface sized to the video
frame, so the raw frame stays untouched for snapshots. Rendering is a pure
function of (frame dimensions, detection list): it does not know about the
display loop or the pipeline state.
"""

from __future__ import annotations

from typing import Iterable, List, Optional, Tuple

import cv2
import numpy as np

from models.detection import BoundingBox, Detection, filter_target

# Colors (BGRA)
COLOR_BOX = (157, 107, 255, 255)  # #ff6b9d
COLOR_GLOW = (157, 107, 255, 70)
COLOR_CHIP = (157, 107, 255, 230)  # 90% opaque
COLOR_TEXT = (255, 255, 255, 255)

BOX_THICKNESS = 3
GLOW_THICKNESS = 7
DASH_LENGTH = 5

CHIP_WIDTH = 120
CHIP_HEIGHT = 20
# Boxes whose top edge is this close to the surface top get the chip below
CHIP_TOP_MARGIN = 30

FONT = cv2.FONT_HERSHEY_SIMPLEX
FONT_SCALE = 0.5
FONT_THICKNESS = 1


class OverlaySurface:
    """Transparent drawing surface aligned to the video's pixel grid."""

    def __init__(self, width: int = 0, height: int = 0):
        self._pixels = np.zeros((max(height, 0), max(width, 0), 4), dtype=np.uint8)

    @property
    def width(self) -> int:
        return self._pixels.shape[1]

    @property
    def height(self) -> int:
        return self._pixels.shape[0]

    @property
    def pixels(self) -> np.ndarray:
        return self._pixels

    def resize(self, width: int, height: int) -> None:
        """Match the surface to the frame dimensions. Reallocates only on change."""
        if width <= 0 or height <= 0:
            raise ValueError(f"Invalid surface size {width}x{height}")
        if (width, height) != (self.width, self.height):
            self._pixels = np.zeros((height, width, 4), dtype=np.uint8)

    def clear(self) -> None:
        self._pixels[...] = 0

    def is_blank(self) -> bool:
        return not self._pixels[..., 3].any()


def format_label(detection: Detection) -> str:
    """Chip text: class name plus confidence percentage with one decimal."""
    return f"{detection.label} {detection.confidence_pct:.1f}%"


def label_chip_origin(bbox: BoundingBox) -> Tuple[int, int, int, int]:
    """
    Place the label chip for a box.

    Returns (chip_x, chip_y, text_x, text_y). The chip sits above the box
    unless the box top is within CHIP_TOP_MARGIN of the surface top, in which
    case it goes below the box so it is not clipped.
    """
    x, y, h = int(bbox.x), int(bbox.y), int(bbox.height)
    if y > CHIP_TOP_MARGIN:
        return x, y - 25, x + 5, y - 10
    return x, y + h + 5, x + 5, y + h + 18


def _draw_dashed_rect(
    img: np.ndarray,
    pt1: Tuple[int, int],
    pt2: Tuple[int, int],
    color: Tuple[int, int, int, int],
    thickness: int,
    dash: int = DASH_LENGTH,
) -> None:
    """Draw a rectangle outline as alternating dash/gap segments."""
    x1, y1 = pt1
    x2, y2 = pt2
    edges = [
        ((x1, y1), (x2, y1)),
        ((x2, y1), (x2, y2)),
        ((x2, y2), (x1, y2)),
        ((x1, y2), (x1, y1)),
    ]
    for (ax, ay), (bx, by) in edges:
        length = int(max(abs(bx - ax), abs(by - ay)))
        if length == 0:
            continue
        for start in range(0, length, dash * 2):
            end = min(start + dash, length)
            sx = ax + (bx - ax) * start // length
            sy = ay + (by - ay) * start // length
            ex = ax + (bx - ax) * end // length
            ey = ay + (by - ay) * end // length
            cv2.line(img, (sx, sy), (ex, ey), color, thickness)


def draw_detection(surface: OverlaySurface, detection: Detection) -> None:
    """Draw one bounding box and its label chip."""
    img = surface.pixels
    x1, y1, x2, y2 = detection.bbox.as_int_xyxy()

    # Glow, then the dashed stroke on top
    cv2.rectangle(img, (x1, y1), (x2, y2), COLOR_GLOW, GLOW_THICKNESS)
    _draw_dashed_rect(img, (x1, y1), (x2, y2), COLOR_BOX, BOX_THICKNESS)

    # Label with background
    label = format_label(detection)
    (tw, _th), _ = cv2.getTextSize(label, FONT, FONT_SCALE, FONT_THICKNESS)
    chip_x, chip_y, text_x, text_y = label_chip_origin(detection.bbox)
    chip_w = max(CHIP_WIDTH, tw + 10)
    cv2.rectangle(img, (chip_x, chip_y), (chip_x + chip_w, chip_y + CHIP_HEIGHT), COLOR_CHIP, -1)
    cv2.putText(img, label, (text_x, text_y), FONT, FONT_SCALE, COLOR_TEXT, FONT_THICKNESS, cv2.LINE_AA)


def render_detections(
    surface: OverlaySurface,
    width: int,
    height: int,
    detections: Iterable[Detection],
    target_label: str,
) -> int:
    """
    Redraw the overlay for one frame.

    The surface is resized to (width, height) and fully cleared before the
    target-class detections are drawn; other classes are ignored.

    Returns:
        Number of target-class detections drawn.
    """
    matches: List[Detection] = filter_target(detections, target_label)
    surface.resize(width, height)
    surface.clear()
    for detection in matches:
        draw_detection(surface, detection)
    return len(matches)


def composite(frame: np.ndarray, surface: Optional[OverlaySurface]) -> np.ndarray:
    """Alpha-blend the overlay onto a copy of a BGR frame (for display)."""
    if surface is None or surface.width == 0 or surface.is_blank():
        return frame.copy()

    overlay = surface.pixels
    h, w = frame.shape[:2]
    if overlay.shape[:2] != (h, w):
        overlay = cv2.resize(overlay, (w, h), interpolation=cv2.INTER_NEAREST)

    alpha = overlay[..., 3:4].astype(np.float32) / 255.0
    blended = frame.astype(np.float32) * (1.0 - alpha) + overlay[..., :3].astype(np.float32) * alpha
    return blended.astype(np.uint8)
