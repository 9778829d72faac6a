"""
Snapshot persistence.

Snapshots are full-resolution copies of the raw frame (no overlay), encoded
with OpenCV and written to a local directory. File names carry the UTC
capture time so a plain directory listing sorts them chronologically.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

import cv2
import numpy as np

from pipeline.errors import SideEffectFailure

SUPPORTED_FORMATS = ("png", "jpg", "jpeg")


def snapshot_timestamp(when: datetime) -> str:
    """
    Filesystem-safe, sortable UTC timestamp.

    Example: 2024-05-01T12-30-45-123Z
    """
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    when = when.astimezone(timezone.utc)
    return when.strftime("%Y-%m-%dT%H-%M-%S") + f"-{when.microsecond // 1000:03d}Z"


def snapshot_name(label: str, when: datetime, image_format: str = "png") -> str:
    """Build the snapshot file name, e.g. person-detected-2024-05-01T12-30-45-123Z.png."""
    safe_label = "".join(c if c.isalnum() else "-" for c in label) or "object"
    return f"{safe_label}-detected-{snapshot_timestamp(when)}.{image_format}"


class SnapshotWriter:
    """Encodes frames and saves them under ``output_dir``."""

    def __init__(self, output_dir: Union[str, os.PathLike], image_format: str = "png"):
        image_format = image_format.lower().lstrip(".")
        if image_format not in SUPPORTED_FORMATS:
            raise ValueError(
                f"Unsupported snapshot format {image_format!r}; use one of {', '.join(SUPPORTED_FORMATS)}"
            )
        self.output_dir = Path(output_dir)
        self.image_format = image_format
        self.saved_count = 0

    def encode(self, frame: np.ndarray) -> bytes:
        """Encode a BGR frame to image bytes."""
        if frame is None or frame.size == 0:
            raise SideEffectFailure("Cannot encode an empty frame")
        ok, buf = cv2.imencode(f".{self.image_format}", frame)
        if not ok:
            raise SideEffectFailure(f"cv2.imencode failed for format {self.image_format}")
        return buf.tobytes()

    def save(self, data: bytes, name: str) -> Path:
        """Write encoded bytes to ``output_dir/name``."""
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            path = self.output_dir / name
            path.write_bytes(data)
        except OSError as e:
            raise SideEffectFailure(f"Failed to write snapshot {name}: {e}") from e
        self.saved_count += 1
        return path

    def capture(
        self,
        frame: np.ndarray,
        label: str,
        when: Optional[datetime] = None,
    ) -> Optional[Path]:
        """
        Encode and persist a frame.

        Failures are logged and reported as None; they never propagate into
        the pipeline.
        """
        when = when or datetime.now(timezone.utc)
        try:
            data = self.encode(frame)
            path = self.save(data, snapshot_name(label, when, self.image_format))
        except SideEffectFailure as e:
            logging.warning(f"Snapshot failed: {e}")
            return None
        logging.info(f"Snapshot saved: {path}")
        return path
