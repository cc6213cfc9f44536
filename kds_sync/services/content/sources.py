"""
Content Sources

Resolve a configured source key to the bytes to distribute.
"""

from pathlib import Path
from typing import Protocol


class ContentSource(Protocol):
    """Anything that can return the current bytes of a source key"""

    def read(self, source_key: str) -> bytes:
        """
        Raises:
            OSError: If the content cannot be read
        """
        ...


class FileContentSource:
    """Source keys are file paths relative to a content directory"""

    def __init__(self, source_dir: str | Path):
        self.source_dir = Path(source_dir)

    def resolve(self, source_key: str) -> Path:
        path = (self.source_dir / source_key).resolve()
        root = self.source_dir.resolve()
        if path != root and root not in path.parents:
            raise PermissionError(f"Source key escapes content directory: {source_key}")
        return path

    def read(self, source_key: str) -> bytes:
        return self.resolve(source_key).read_bytes()
