"""
Snapshot Publishing

Renders device snapshots and posts them to the display endpoint.
"""

from .payload import render_payload
from .publisher import ErrorCallback, PublishStats, SnapshotPublisher

__all__ = ["render_payload", "ErrorCallback", "PublishStats", "SnapshotPublisher"]
