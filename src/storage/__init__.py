"""
Person Watch - Storage Module

This module handles snapshot persistence.
"""

from .snapshots import SnapshotWriter, snapshot_name, snapshot_timestamp

__all__ = ["SnapshotWriter", "snapshot_name", "snapshot_timestamp"]
