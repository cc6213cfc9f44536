"""
Status Log Tailing

- cursor.py - Byte offset tracking and rotation detection
- tailer.py - Polls the log file for newly completed lines
"""

from .cursor import PositionCursor
from .tailer import LogTailer, TailStats, split_complete_lines

__all__ = ["PositionCursor", "LogTailer", "TailStats", "split_complete_lines"]
