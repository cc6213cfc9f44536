"""
Content Hash Tracker

Remembers the digest of the content last delivered to each destination.

Entries are keyed by destination path, not by source key: one source
fanned out to several destinations is tracked (and re-uploaded) per
destination.
"""

import hashlib


def content_digest(data: bytes) -> str:
    """SHA-256 hex digest of the content"""
    return hashlib.sha256(data).hexdigest()


class ContentHashTracker:
    """destination path -> digest of last successful upload"""

    def __init__(self):
        self._digests: dict[str, str] = {}

    def has_changed(self, destination_path: str, data: bytes) -> bool:
        """True if `data` differs from what was last delivered (or nothing was)."""
        return self._digests.get(destination_path) != content_digest(data)

    def record_success(self, destination_path: str, data: bytes) -> None:
        """Store the digest. Call only after a confirmed upload."""
        self._digests[destination_path] = content_digest(data)

    def digest(self, destination_path: str) -> str | None:
        return self._digests.get(destination_path)

    def clear(self) -> None:
        self._digests.clear()

    def __len__(self) -> int:
        return len(self._digests)
