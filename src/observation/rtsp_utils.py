"""
RTSP URL helpers.

Credentials live in a separate secrets file and are merged into the camera
device URL at startup; sanitize_url masks them again for log output.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, Union
from urllib.parse import urlparse, urlunparse

import yaml


def _is_rtsp(value: Any) -> bool:
    return isinstance(value, str) and value.startswith(("rtsp://", "rtsps://"))


def sanitize_url(device_id: Union[int, str]) -> str:
    """Return device_id with any URL password replaced by ***."""
    if not _is_rtsp(device_id):
        return str(device_id)
    parsed = urlparse(device_id)
    if not parsed.password:
        return device_id
    netloc = f"{parsed.username}:***@{parsed.hostname}"
    if parsed.port:
        netloc += f":{parsed.port}"
    return urlunparse(parsed._replace(netloc=netloc))


def inject_rtsp_credentials(camera_cfg: Dict[str, Any]) -> None:
    """
    Inject RTSP credentials from ``camera.secrets_file`` into ``device_id``.

    The secrets file is YAML with ``username``, ``password`` and an optional
    ``rtsp_url`` used when device_id is not already an RTSP URL. The camera
    dict is modified in place; a missing file is logged and ignored.
    """
    secrets_file = camera_cfg.get("secrets_file")
    if not secrets_file:
        return

    if not os.path.exists(secrets_file):
        logging.warning(f"Secrets file not found: {secrets_file}")
        return

    with open(secrets_file, "r") as f:
        secrets = yaml.safe_load(f) or {}

    device_id = camera_cfg.get("device_id", "")
    if _is_rtsp(device_id):
        base_url = device_id
    elif secrets.get("rtsp_url"):
        base_url = secrets["rtsp_url"]
        logging.info("Using RTSP URL from secrets file")
    else:
        return

    username = secrets.get("username")
    password = secrets.get("password")
    parsed = urlparse(base_url)
    if username and password and "@" not in parsed.netloc:
        netloc = f"{username}:{password}@{parsed.hostname}"
        if parsed.port:
            netloc += f":{parsed.port}"
        base_url = urlunparse(parsed._replace(netloc=netloc))
        logging.info("RTSP credentials injected into device URL")

    camera_cfg["device_id"] = base_url
