"""
Inference backend interface.

Backends return labeled detections in the original frame's pixel
coordinates. detect() may be a plain method or a coroutine; the pipeline
awaits whatever comes back.
"""

from __future__ import annotations

from typing import Awaitable, List, Protocol, Union

import numpy as np

from models.detection import Detection


class InferenceBackend(Protocol):
    def detect(self, frame: np.ndarray) -> Union[List[Detection], Awaitable[List[Detection]]]:
        ...
