"""
Pytest configuration and shared fixtures.
"""

import os
import sys
import time
from typing import List, Optional

import numpy as np
import pytest

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from models.detection import Detection  # noqa: E402
from models.frame import FrameData  # noqa: E402
from observation.base import ObservationConfig, ObservationSource  # noqa: E402


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class StaticSource(ObservationSource):
    """Source that returns the same synthetic frame forever."""

    def __init__(self, width: int = 640, height: int = 480, fail_open: int = 0):
        super().__init__(ObservationConfig(source_id="test-camera"))
        self.frame = np.full((height, width, 3), 40, dtype=np.uint8)
        self.fail_open = fail_open
        self.open_calls = 0
        self.close_calls = 0

    def open(self) -> None:
        from pipeline.errors import AcquisitionFailure

        self.open_calls += 1
        if self.fail_open > 0:
            self.fail_open -= 1
            raise AcquisitionFailure("camera unplugged")
        self._is_open = True

    def read(self) -> Optional[FrameData]:
        if not self._is_open:
            return None
        self._frame_index += 1
        return FrameData(
            frame=self.frame,
            width=self.frame.shape[1],
            height=self.frame.shape[0],
            timestamp=time.time(),
            frame_index=self._frame_index,
            source=self.source_id,
        )

    def close(self) -> None:
        self.close_calls += 1
        self._is_open = False


class ScriptedDetector:
    """Returns a scripted list of detections per call; exceptions are raised."""

    def __init__(self, script: List):
        self.script = list(script)
        self.calls = 0

    def detect(self, frame):
        item = self.script[min(self.calls, len(self.script) - 1)]
        self.calls += 1
        if isinstance(item, Exception):
            raise item
        return item


def people(n: int, label: str = "person") -> List[Detection]:
    """n non-overlapping detections of ``label``."""
    return [
        Detection.from_xywh(label, 0.9, 10 + i * 130, 60, 100, 200)
        for i in range(n)
    ]


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def static_source():
    return StaticSource()


@pytest.fixture
def temp_config_dir(tmp_path):
    """Create a temporary config directory with default.yaml."""
    config_dir = tmp_path / "config"
    config_dir.mkdir()

    default_yaml = config_dir / "default.yaml"
    default_yaml.write_text("""
camera:
  backend: "opencv"
  device_id: 0
  resolution: [640, 480]
  fps: 30

detection:
  backend: "yolo"
  target_label: "person"
  yolo:
    model: "yolov8n.pt"
    conf_threshold: 0.25

alerts:
  min_interval_ms: 5000

snapshots:
  min_interval_ms: 10000
  output_dir: "output/snapshots"

log_path: "logs/test.log"
log_level: "INFO"
""")

    return config_dir


@pytest.fixture
def valid_config():
    """Return a valid configuration dictionary."""
    return {
        "camera": {
            "backend": "opencv",
            "device_id": 0,
            "resolution": [1280, 720],
            "fps": 30,
        },
        "detection": {
            "backend": "yolo",
            "target_label": "person",
            "yolo": {"model": "yolov8n.pt", "conf_threshold": 0.25, "iou_threshold": 0.45},
        },
        "pipeline": {
            "tick_interval_ms": 200,
            "offload_inference": True,
        },
        "alerts": {"enabled": True, "min_interval_ms": 5000, "volume": 0.8},
        "snapshots": {"enabled": True, "min_interval_ms": 10000, "output_dir": "output/snapshots"},
        "log_path": "logs/test.log",
        "log_level": "INFO",
    }
