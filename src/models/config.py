"""
Typed configuration models matching the YAML config structure.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union


@dataclass
class CameraConfig:
    """Camera configuration."""
    backend: str = "opencv"
    device_id: Union[int, str] = 0
    secrets_file: Optional[str] = None
    resolution: List[int] = field(default_factory=lambda: [1280, 720])
    fps: int = 30
    rtsp_transport: str = "tcp"
    max_retries: int = 1
    swap_rb: bool = False
    rotate: int = 0
    flip_horizontal: bool = False
    flip_vertical: bool = False

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "CameraConfig":
        """Adapter: Create from config dictionary."""
        return cls(
            backend=d.get("backend", "opencv"),
            device_id=d.get("device_id", 0),
            secrets_file=d.get("secrets_file"),
            resolution=d.get("resolution", [1280, 720]),
            fps=d.get("fps", 30),
            rtsp_transport=d.get("rtsp_transport", "tcp"),
            max_retries=d.get("max_retries", 1),
            swap_rb=d.get("swap_rb", False),
            rotate=d.get("rotate", 0) or 0,
            flip_horizontal=d.get("flip_horizontal", False),
            flip_vertical=d.get("flip_vertical", False),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "backend": self.backend,
            "device_id": self.device_id,
            "secrets_file": self.secrets_file,
            "resolution": self.resolution,
            "fps": self.fps,
            "rtsp_transport": self.rtsp_transport,
            "max_retries": self.max_retries,
            "swap_rb": self.swap_rb,
            "rotate": self.rotate,
            "flip_horizontal": self.flip_horizontal,
            "flip_vertical": self.flip_vertical,
        }


@dataclass
class YoloConfig:
    """YOLO detector configuration."""
    model: str = "yolov8n.pt"
    conf_threshold: float = 0.25
    iou_threshold: float = 0.45

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "YoloConfig":
        return cls(
            model=d.get("model", "yolov8n.pt"),
            conf_threshold=d.get("conf_threshold", 0.25),
            iou_threshold=d.get("iou_threshold", 0.45),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "model": self.model,
            "conf_threshold": self.conf_threshold,
            "iou_threshold": self.iou_threshold,
        }


@dataclass
class DnnConfig:
    """OpenCV DNN (MobileNet-SSD) detector configuration."""
    prototxt: str = "models/MobileNetSSD_deploy.prototxt"
    caffemodel: str = "models/MobileNetSSD_deploy.caffemodel"
    conf_threshold: float = 0.5

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "DnnConfig":
        return cls(
            prototxt=d.get("prototxt", "models/MobileNetSSD_deploy.prototxt"),
            caffemodel=d.get("caffemodel", "models/MobileNetSSD_deploy.caffemodel"),
            conf_threshold=d.get("conf_threshold", 0.5),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "prototxt": self.prototxt,
            "caffemodel": self.caffemodel,
            "conf_threshold": self.conf_threshold,
        }


@dataclass
class DetectionConfig:
    """Detection configuration."""
    backend: str = "yolo"
    target_label: str = "person"
    yolo: Optional[YoloConfig] = None
    dnn: Optional[DnnConfig] = None

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "DetectionConfig":
        yolo_dict = d.get("yolo")
        dnn_dict = d.get("dnn")
        return cls(
            backend=d.get("backend", "yolo"),
            target_label=d.get("target_label", "person"),
            yolo=YoloConfig.from_dict(yolo_dict) if yolo_dict else None,
            dnn=DnnConfig.from_dict(dnn_dict) if dnn_dict else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "backend": self.backend,
            "target_label": self.target_label,
        }
        if self.yolo:
            d["yolo"] = self.yolo.to_dict()
        if self.dnn:
            d["dnn"] = self.dnn.to_dict()
        return d


@dataclass
class PipelineSettings:
    """Sampler/scheduler configuration."""
    tick_interval_ms: int = 200
    offload_inference: bool = True
    stats_log_interval: float = 60.0
    max_inflight: int = 2

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "PipelineSettings":
        return cls(
            tick_interval_ms=d.get("tick_interval_ms", 200),
            offload_inference=d.get("offload_inference", True),
            stats_log_interval=d.get("stats_log_interval", 60.0),
            max_inflight=d.get("max_inflight", 2),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tick_interval_ms": self.tick_interval_ms,
            "offload_inference": self.offload_inference,
            "stats_log_interval": self.stats_log_interval,
            "max_inflight": self.max_inflight,
        }


@dataclass
class AlertConfig:
    """Audible alert configuration."""
    enabled: bool = True
    min_interval_ms: int = 5000
    sound_file: Optional[str] = None
    volume: float = 0.8

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "AlertConfig":
        return cls(
            enabled=d.get("enabled", True),
            min_interval_ms=d.get("min_interval_ms", 5000),
            sound_file=d.get("sound_file"),
            volume=d.get("volume", 0.8),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "min_interval_ms": self.min_interval_ms,
            "sound_file": self.sound_file,
            "volume": self.volume,
        }


@dataclass
class SnapshotConfig:
    """Snapshot capture configuration."""
    enabled: bool = True
    min_interval_ms: int = 10000
    output_dir: str = "output/snapshots"
    image_format: str = "png"

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "SnapshotConfig":
        return cls(
            enabled=d.get("enabled", True),
            min_interval_ms=d.get("min_interval_ms", 10000),
            output_dir=d.get("output_dir", "output/snapshots"),
            image_format=d.get("image_format", "png"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "min_interval_ms": self.min_interval_ms,
            "output_dir": self.output_dir,
            "image_format": self.image_format,
        }


@dataclass
class Config:
    """
    Complete application configuration.

    This is a typed representation of the YAML config structure.
    """
    camera: CameraConfig = field(default_factory=CameraConfig)
    detection: DetectionConfig = field(default_factory=DetectionConfig)
    pipeline: PipelineSettings = field(default_factory=PipelineSettings)
    alerts: AlertConfig = field(default_factory=AlertConfig)
    snapshots: SnapshotConfig = field(default_factory=SnapshotConfig)
    log_path: str = "logs/person_watch.log"
    log_level: str = "INFO"

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Config":
        """Adapter: Create Config from raw dictionary (e.g., from load_config)."""
        return cls(
            camera=CameraConfig.from_dict(d.get("camera", {}) or {}),
            detection=DetectionConfig.from_dict(d.get("detection", {}) or {}),
            pipeline=PipelineSettings.from_dict(d.get("pipeline", {}) or {}),
            alerts=AlertConfig.from_dict(d.get("alerts", {}) or {}),
            snapshots=SnapshotConfig.from_dict(d.get("snapshots", {}) or {}),
            log_path=d.get("log_path", "logs/person_watch.log"),
            log_level=d.get("log_level", "INFO"),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert back to dictionary (for saving or logging)."""
        return {
            "camera": self.camera.to_dict(),
            "detection": self.detection.to_dict(),
            "pipeline": self.pipeline.to_dict(),
            "alerts": self.alerts.to_dict(),
            "snapshots": self.snapshots.to_dict(),
            "log_path": self.log_path,
            "log_level": self.log_level,
        }
