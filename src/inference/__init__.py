"""
Inference backends.

Backends are imported lazily by the factory so Ultralytics is only needed
when detection.backend is "yolo".
"""

from .backend import InferenceBackend
from .factory import backend_factory, create_backend

__all__ = ["InferenceBackend", "backend_factory", "create_backend"]
