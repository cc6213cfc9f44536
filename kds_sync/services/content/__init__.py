"""
Content Distribution

- hash_tracker.py - Per-destination digests of delivered content
- sources.py - Where source bytes come from
- sync.py - Periodic upload of changed content
"""

from .hash_tracker import ContentHashTracker, content_digest
from .sources import ContentSource, FileContentSource
from .sync import ContentSyncManager, SyncSummary, UploadResult

__all__ = [
    "ContentHashTracker",
    "content_digest",
    "ContentSource",
    "FileContentSource",
    "ContentSyncManager",
    "SyncSummary",
    "UploadResult",
]
