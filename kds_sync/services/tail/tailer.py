"""
Log Tailer

Polls the status log and returns only complete lines appended since the
previous poll.

Robustness Guarantees:
1. The file is opened read-only without locking; the producer keeps
   appending while we read (Python opens with shared read/write on Windows)
2. A line without its terminator is left for the next poll
3. The cursor only advances past lines that were returned
4. I/O errors are logged and treated as "nothing new" - never raised
"""

import codecs
import os
from dataclasses import dataclass
from pathlib import Path

from kds_sync.common.logging_setup import get_service_logger
from .cursor import PositionCursor

logger = get_service_logger("tail")

# Codecs whose plain name implies a BOM; the producer writes little-endian
_BOM_CODECS = {
    "utf-8-sig": "utf-8",
    "utf-16": "utf-16-le",
    "utf-32": "utf-32-le",
}

_BOMS = {
    "utf-8": codecs.BOM_UTF8,
    "utf-16-le": codecs.BOM_UTF16_LE,
    "utf-16-be": codecs.BOM_UTF16_BE,
    "utf-32-le": codecs.BOM_UTF32_LE,
    "utf-32-be": codecs.BOM_UTF32_BE,
}


@dataclass
class TailStats:
    """Counters for observability"""
    polls: int = 0
    lines: int = 0
    rotations: int = 0
    errors: int = 0
    skipped_lines: int = 0

    def to_dict(self) -> dict:
        return {
            "polls": self.polls,
            "lines": self.lines,
            "rotations": self.rotations,
            "errors": self.errors,
            "skipped_lines": self.skipped_lines,
        }


def normalize_encoding(encoding: str) -> str:
    """Map an encoding name to its BOM-less codec name."""
    name = codecs.lookup(encoding).name
    return _BOM_CODECS.get(name, name)


def split_complete_lines(
    data: bytes,
    terminator: bytes,
    start: int = 0,
) -> tuple[list[bytes], int]:
    """
    Split `data` into terminated lines.

    Terminators are only accepted at code-unit aligned positions (relative
    to `start`), so a 0x0A byte inside a wide character is not a line end.

    Returns:
        (raw lines without terminator, index just past the last terminator)
    """
    width = len(terminator)
    lines: list[bytes] = []
    line_start = start
    pos = start

    while True:
        idx = data.find(terminator, pos)
        if idx < 0:
            break
        if (idx - line_start) % width:
            pos = idx + 1
            continue
        lines.append(data[line_start:idx])
        line_start = idx + width
        pos = line_start

    return lines, line_start


class LogTailer:
    """
    Position-tracked tailer for one status log file.

    Usage:
        tailer = LogTailer("/var/log/kds/status.log", encoding="utf-16-le")
        for line in tailer.poll():
            ...
    """

    def __init__(
        self,
        path: str | Path,
        encoding: str = "utf-16-le",
        cursor: PositionCursor | None = None,
    ):
        self.path = Path(path)
        self.encoding = normalize_encoding(encoding)
        self.cursor = cursor or PositionCursor()
        self.stats = TailStats()

        self._terminator = "\n".encode(self.encoding)
        self._bom = _BOMS.get(self.encoding, b"")
        self._missing_logged = False
        # Set once poll() or skip_to_end() has read from the current start
        self._polled = False

    @property
    def offset(self) -> int:
        return self.cursor.offset

    def poll(self) -> list[str]:
        """
        Return complete lines appended since the last poll.

        Returns an empty list when the file is missing or unreadable.
        """
        self.stats.polls += 1
        self._polled = True
        lines = self._read_new()
        self.stats.lines += len(lines)
        return lines

    def reset_to_beginning(self) -> None:
        """Re-read the whole file on the next poll."""
        self.cursor.reset()
        self._polled = False
        logger.info(f"Cursor reset to start of {self.path}")

    def skip_to_end(self) -> int:
        """
        Move the cursor past every complete line currently in the file.

        Only content no poll has read is skipped. Once poll() has run the
        cursor already sits behind everything it returned, and lines
        appended since then are kept for the next poll. A trailing partial
        line is never skipped; it is returned once the producer finishes it.

        Returns:
            Number of lines skipped
        """
        if self._polled:
            logger.info(
                f"Cursor of {self.path} already past polled content (offset {self.cursor.offset})",
                extra={"offset": self.cursor.offset, "skipped": 0},
            )
            return 0

        skipped = len(self._read_new())
        self._polled = True
        self.stats.skipped_lines += skipped
        logger.info(
            f"Skipped to end of {self.path} (offset {self.cursor.offset}, {skipped} lines)",
            extra={"offset": self.cursor.offset, "skipped": skipped},
        )
        return skipped

    def _read_new(self) -> list[str]:
        try:
            stat_info = self.path.stat()
        except FileNotFoundError:
            if not self._missing_logged:
                logger.warning(f"Status log not found: {self.path}")
                self._missing_logged = True
            return []
        except OSError as e:
            self.stats.errors += 1
            logger.error(f"Cannot stat {self.path}: {e}")
            return []

        if self._missing_logged:
            logger.info(f"Status log available: {self.path}")
            self._missing_logged = False

        size = stat_info.st_size
        write_time = stat_info.st_mtime

        previous_offset = self.cursor.offset
        if self.cursor.check_rotation(size, write_time):
            self.stats.rotations += 1
            logger.info(
                f"Status log rotated (size {size} < offset {previous_offset} "
                f"or older write time), reading from start",
                extra={"size": size, "previous_offset": previous_offset},
            )

        offset = self.cursor.offset
        if size <= offset:
            self.cursor.advance(offset, write_time)
            return []

        try:
            with open(self.path, "rb") as f:
                f.seek(offset)
                data = f.read()
        except OSError as e:
            self.stats.errors += 1
            logger.error(f"Error reading {self.path} at offset {offset}: {e}")
            return []

        start = 0
        if offset == 0 and self._bom and data.startswith(self._bom):
            start = len(self._bom)

        raw_lines, consumed = split_complete_lines(data, self._terminator, start)
        if not raw_lines:
            # Only a partial line so far; keep the cursor where it is
            return []

        self.cursor.advance(offset + consumed, write_time)

        return [
            raw.decode(self.encoding, errors="replace").rstrip("\r")
            for raw in raw_lines
        ]

    def get_status(self) -> dict:
        return {
            "path": str(self.path),
            "encoding": self.encoding,
            "exists": os.path.exists(self.path),
            "cursor": self.cursor.to_dict(),
            **self.stats.to_dict(),
        }
