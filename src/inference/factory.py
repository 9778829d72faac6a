"""
Backend selection from the detection config section.
"""

from __future__ import annotations

from typing import Any, Callable, Dict

from .backend import InferenceBackend


def create_backend(detection_cfg: Dict[str, Any]) -> InferenceBackend:
    """
    Build the backend named by detection.backend ("yolo" or "dnn").

    This loads model weights and may take seconds; call it off the event loop.
    """
    backend = detection_cfg.get("backend", "yolo")
    if backend == "yolo":
        from .cpu_backend import CpuYoloConfig, UltralyticsCpuBackend

        ycfg = detection_cfg.get("yolo", {}) or {}
        return UltralyticsCpuBackend(
            CpuYoloConfig(
                model=ycfg.get("model", "yolov8n.pt"),
                conf_threshold=float(ycfg.get("conf_threshold", 0.25)),
                iou_threshold=float(ycfg.get("iou_threshold", 0.45)),
                classes=ycfg.get("classes"),
            )
        )
    if backend == "dnn":
        from .dnn_backend import DnnSsdConfig, OpenCvDnnBackend

        dcfg = detection_cfg.get("dnn", {}) or {}
        return OpenCvDnnBackend(
            DnnSsdConfig(
                prototxt=dcfg.get("prototxt", "models/MobileNetSSD_deploy.prototxt"),
                caffemodel=dcfg.get("caffemodel", "models/MobileNetSSD_deploy.caffemodel"),
                conf_threshold=float(dcfg.get("conf_threshold", 0.5)),
            )
        )
    raise ValueError(f"Unknown detection backend: {backend}")


def backend_factory(detection_cfg: Dict[str, Any]) -> Callable[[], InferenceBackend]:
    """Defer backend construction until the pipeline asks for it."""
    return lambda: create_backend(detection_cfg)
