"""
Person Watch: live person detection with audible alerts and snapshots.

Samples the camera on a fixed period, runs an object detector on each sample,
draws the detected people on an overlay, rings an alert and saves a snapshot
(each rate limited) whenever someone is in view.

Usage:
    python src/main.py --config config/config.yaml --display

Arguments:
    --config: Path to configuration file
    --display: Show a preview window (p/space pause, s snapshot, q quit)
    --no-audio: Run without audible alerts
    --snapshot-dir: Override snapshots.output_dir
"""

import os
import sys
import argparse
import asyncio
import logging
import yaml
from typing import Dict, Any, Tuple, Optional

from observation.rtsp_utils import inject_rtsp_credentials, sanitize_url
from ops.logging import setup_logging
from runtime.context import RuntimeContext, create_context_from_config
from storage.snapshots import SUPPORTED_FORMATS


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge override into base and return base."""
    for k, v in (override or {}).items():
        if isinstance(v, dict) and isinstance(base.get(k), dict):
            _deep_merge(base[k], v)
        else:
            base[k] = v
    return base


def load_config(config_path: str) -> Dict[str, Any]:
    """
    Load configuration with layering:
    - `config/default.yaml` (checked in)
    - `config/config.yaml` (local overrides)
    - plus any explicitly provided `--config` path (treated as overrides)
    """
    try:
        base_path = os.path.join(os.path.dirname(config_path), "default.yaml")
        base_cfg: Dict[str, Any] = {}
        if os.path.exists(base_path):
            with open(base_path, "r") as f:
                base_cfg = yaml.safe_load(f) or {}

        local_overrides_path = os.path.join(os.path.dirname(config_path), "config.yaml")
        local_cfg: Dict[str, Any] = {}
        if os.path.exists(local_overrides_path):
            with open(local_overrides_path, "r") as f:
                local_cfg = yaml.safe_load(f) or {}

        merged = _deep_merge(base_cfg, local_cfg)

        # Finally apply explicit config_path if it's not the local override file itself
        if os.path.exists(config_path) and os.path.abspath(config_path) != os.path.abspath(local_overrides_path):
            with open(config_path, "r") as f:
                explicit_cfg = yaml.safe_load(f) or {}
            merged = _deep_merge(merged, explicit_cfg)

        return merged
    except Exception as e:
        logging.error(f"Failed to load configuration: {e}")
        sys.exit(1)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_config(config: Dict[str, Any]) -> Tuple[bool, Optional[str]]:
    """
    Validate configuration file structure and values.

    Args:
        config: Configuration dictionary

    Returns:
        Tuple of (is_valid, error_message)
    """
    # Required top-level sections
    required_sections = ['camera', 'detection', 'log_path', 'log_level']
    for section in required_sections:
        if section not in config:
            return False, f"Missing required configuration section: {section}"

    # Validate camera settings
    camera = config.get('camera', {}) or {}
    if 'device_id' not in camera:
        return False, "Missing camera.device_id"
    if not isinstance(camera['device_id'], (int, str)) or isinstance(camera['device_id'], bool):
        return False, "camera.device_id must be an integer (index) or string (URL)"
    if isinstance(camera['device_id'], int) and camera['device_id'] < 0:
        return False, "camera.device_id integer must be non-negative"

    if 'resolution' in camera:
        if not isinstance(camera['resolution'], list) or len(camera['resolution']) != 2:
            return False, "camera.resolution must be a list of [width, height]"
        if not all(isinstance(x, int) and x > 0 for x in camera['resolution']):
            return False, "camera.resolution values must be positive integers"

    if 'fps' in camera:
        if not isinstance(camera['fps'], int) or camera['fps'] <= 0:
            return False, "camera.fps must be a positive integer"

    if camera.get('backend', 'opencv') != 'opencv':
        return False, "camera.backend must be: opencv"

    if camera.get('rotate', 0) not in (0, 90, 180, 270, None):
        return False, "camera.rotate must be one of: 0, 90, 180, 270"

    # Validate detection settings
    detection = config.get('detection', {}) or {}
    backend = detection.get('backend', 'yolo')
    if backend not in ('yolo', 'dnn'):
        return False, "detection.backend must be one of: yolo, dnn"
    target_label = detection.get('target_label', 'person')
    if not isinstance(target_label, str) or not target_label:
        return False, "detection.target_label must be a non-empty string"

    if backend == 'yolo':
        yolo_cfg = detection.get('yolo', {}) or {}
        if 'model' in yolo_cfg and (not isinstance(yolo_cfg['model'], str) or not yolo_cfg['model']):
            return False, "detection.yolo.model must be a non-empty string"
        for key in ('conf_threshold', 'iou_threshold'):
            if key in yolo_cfg:
                value = yolo_cfg[key]
                if not _is_number(value) or not (0 <= value <= 1):
                    return False, f"detection.yolo.{key} must be a number between 0 and 1"
    else:
        dnn_cfg = detection.get('dnn', {}) or {}
        for key in ('prototxt', 'caffemodel'):
            if not isinstance(dnn_cfg.get(key), str) or not dnn_cfg.get(key):
                return False, f"detection.dnn.{key} is required when detection.backend is 'dnn'"
        if 'conf_threshold' in dnn_cfg:
            value = dnn_cfg['conf_threshold']
            if not _is_number(value) or not (0 <= value <= 1):
                return False, "detection.dnn.conf_threshold must be a number between 0 and 1"

    # Optional pipeline settings
    pipeline = config.get('pipeline', {}) or {}
    if 'tick_interval_ms' in pipeline:
        if not isinstance(pipeline['tick_interval_ms'], int) or pipeline['tick_interval_ms'] <= 0:
            return False, "pipeline.tick_interval_ms must be a positive integer"
    if 'offload_inference' in pipeline and not isinstance(pipeline['offload_inference'], bool):
        return False, "pipeline.offload_inference must be true or false"
    if 'stats_log_interval' in pipeline:
        if not _is_number(pipeline['stats_log_interval']) or pipeline['stats_log_interval'] <= 0:
            return False, "pipeline.stats_log_interval must be a positive number"
    if 'max_inflight' in pipeline:
        value = pipeline['max_inflight']
        if not isinstance(value, int) or isinstance(value, bool) or value < 1:
            return False, "pipeline.max_inflight must be a positive integer"

    # Optional reaction settings
    for section in ('alerts', 'snapshots'):
        reaction = config.get(section, {}) or {}
        if 'min_interval_ms' in reaction:
            value = reaction['min_interval_ms']
            if not isinstance(value, int) or isinstance(value, bool) or value < 0:
                return False, f"{section}.min_interval_ms must be a non-negative integer"
        if 'enabled' in reaction and not isinstance(reaction['enabled'], bool):
            return False, f"{section}.enabled must be true or false"

    alerts = config.get('alerts', {}) or {}
    if 'volume' in alerts:
        if not _is_number(alerts['volume']) or not (0 <= alerts['volume'] <= 1):
            return False, "alerts.volume must be a number between 0 and 1"
    if alerts.get('sound_file') is not None and not isinstance(alerts['sound_file'], str):
        return False, "alerts.sound_file must be a string path"

    snapshots = config.get('snapshots', {}) or {}
    if 'output_dir' in snapshots and not isinstance(snapshots['output_dir'], str):
        return False, "snapshots.output_dir must be a string"
    if 'image_format' in snapshots and str(snapshots['image_format']).lower() not in SUPPORTED_FORMATS:
        return False, f"snapshots.image_format must be one of: {', '.join(SUPPORTED_FORMATS)}"

    # Validate log settings
    valid_log_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
    if config['log_level'] not in valid_log_levels:
        return False, f"log_level must be one of: {', '.join(valid_log_levels)}"

    return True, None


async def run_session(ctx: RuntimeContext, display: bool = False) -> None:
    """Run the pipeline (and the preview window, if requested) until quit."""
    if not display:
        await ctx.pipeline.run()
        return

    from pipeline.display import DisplayWindow

    window = DisplayWindow(ctx.pipeline)
    pipeline_task = asyncio.create_task(ctx.pipeline.run())
    # Let the pipeline mark itself running before the window checks it
    await asyncio.sleep(0)
    try:
        await window.run()
    finally:
        ctx.pipeline.stop()
        await pipeline_task


def main():
    """Main application function."""
    # Parse command-line arguments
    parser = argparse.ArgumentParser(description='Person Watch - live person detection')
    parser.add_argument('--config', type=str, default='config/config.yaml',
                        help='Path to configuration file')
    parser.add_argument('--display', action='store_true',
                        help='Enable visual display')
    parser.add_argument('--no-audio', action='store_true',
                        help='Disable audible alerts')
    parser.add_argument('--snapshot-dir', type=str, default=None,
                        help='Directory for saved snapshots (overrides config)')
    args = parser.parse_args()

    # Load configuration
    config = load_config(args.config)

    # Handle RTSP camera credentials if secrets_file is provided
    try:
        inject_rtsp_credentials(config.get("camera", {}) or {})
    except Exception as e:
        logging.error(f"Error loading camera secrets: {e}")

    # Validate configuration
    is_valid, error_msg = validate_config(config)
    if not is_valid:
        logging.error(f"Configuration validation failed: {error_msg}")
        sys.exit(1)

    # Setup logging
    setup_logging(config['log_path'], config['log_level'])

    logging.info("Starting Person Watch")
    logging.info(
        f"Camera: {sanitize_url(config['camera']['device_id'])}, "
        f"detector: {config['detection'].get('backend', 'yolo')}"
    )

    ctx = create_context_from_config(
        config,
        audio=not args.no_audio,
        snapshot_dir=args.snapshot_dir,
    )

    try:
        asyncio.run(run_session(ctx, display=args.display))
    except KeyboardInterrupt:
        logging.info("Interrupted by user")
    finally:
        if ctx.player is not None:
            ctx.player.wait(timeout=2.0)
        logging.info(
            f"Session ended: snapshots saved={ctx.writer.saved_count if ctx.writer else 0}, "
            f"alerts played={ctx.player.played_count if ctx.player else 0}"
        )


if __name__ == "__main__":
    main()
