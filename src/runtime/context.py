from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from alerts.audio import AudioPlayer
from inference.factory import backend_factory
from models.config import Config
from observation.base import ObservationSource
from observation.opencv_source import create_source_from_config
from pipeline.engine import DetectionPipeline, PipelineConfig
from pipeline.reactions import AlertReaction, SnapshotReaction
from pipeline.throttle import Throttle
from storage.snapshots import SnapshotWriter


@dataclass
class RuntimeContext:
    """Holds the collaborators of one detection session; avoids global singletons."""

    config: Config
    source: ObservationSource
    pipeline: DetectionPipeline
    player: Optional[AudioPlayer] = None
    writer: Optional[SnapshotWriter] = None


def create_audio_player(config: Config, enabled: bool = True) -> Optional[AudioPlayer]:
    """Build the audio player, or None when audio is off or PyAudio is missing."""
    if not enabled or not config.alerts.enabled:
        logging.info("Audio alerts disabled")
        return None
    try:
        return AudioPlayer(sound_file=config.alerts.sound_file, volume=config.alerts.volume)
    except ImportError as e:
        logging.warning(f"{e}. Audio alerts disabled.")
        return None


def create_context_from_config(
    raw_config: Dict[str, Any],
    audio: bool = True,
    snapshot_dir: Optional[str] = None,
    source: Optional[ObservationSource] = None,
) -> RuntimeContext:
    """
    Wire a detection session from the merged YAML config.

    Args:
        raw_config: Merged configuration dictionary (from load_config).
        audio: Set False to run without an audio player (--no-audio).
        snapshot_dir: Overrides snapshots.output_dir when given.
        source: Pre-built frame source; built from the camera section if None.
    """
    config = Config.from_dict(raw_config)
    if snapshot_dir:
        config.snapshots.output_dir = snapshot_dir

    if source is None:
        source = create_source_from_config(raw_config.get("camera", {}) or {})

    target_label = config.detection.target_label
    player = create_audio_player(config, enabled=audio)

    writer = None
    if config.snapshots.enabled:
        writer = SnapshotWriter(config.snapshots.output_dir, config.snapshots.image_format)
    else:
        logging.info("Snapshots disabled")

    alert = AlertReaction(
        player,
        Throttle(config.alerts.min_interval_ms / 1000.0, name="alert"),
    )
    snapshot = SnapshotReaction(
        writer,
        target_label,
        Throttle(config.snapshots.min_interval_ms / 1000.0, name="snapshot"),
    )

    pipeline = DetectionPipeline(
        source=source,
        detector_factory=backend_factory(raw_config.get("detection", {}) or {}),
        alert=alert,
        snapshot=snapshot,
        config=PipelineConfig(
            tick_interval=config.pipeline.tick_interval_ms / 1000.0,
            target_label=target_label,
            offload_inference=config.pipeline.offload_inference,
            stats_log_interval=float(config.pipeline.stats_log_interval),
            max_inflight=config.pipeline.max_inflight,
        ),
    )

    return RuntimeContext(
        config=config,
        source=source,
        pipeline=pipeline,
        player=player,
        writer=writer,
    )
