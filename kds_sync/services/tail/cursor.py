"""
Position Cursor

Tracks how much of the status log has been consumed and detects
truncation/rotation of the file underneath it.
"""

from dataclasses import dataclass


@dataclass
class PositionCursor:
    """
    Byte offset of the last consumed line end, plus the file write time
    seen at that point.

    The offset only moves forward while the file is not rotated. A file
    that is smaller than the offset, or whose write time went backwards,
    has been replaced and is re-read from the start.
    """
    offset: int = 0
    last_write_time: float = 0.0

    def is_rotated(self, size: int, write_time: float) -> bool:
        return size < self.offset or write_time < self.last_write_time

    def check_rotation(self, size: int, write_time: float) -> bool:
        """Reset the cursor if the file was rotated. Returns True on reset."""
        if self.is_rotated(size, write_time):
            self.reset()
            return True
        return False

    def advance(self, offset: int, write_time: float) -> None:
        if offset < self.offset:
            raise ValueError(
                f"Cursor cannot move backwards ({self.offset} -> {offset}) without a reset"
            )
        self.offset = offset
        self.last_write_time = max(self.last_write_time, write_time)

    def reset(self) -> None:
        self.offset = 0
        self.last_write_time = 0.0

    def to_dict(self) -> dict:
        return {"offset": self.offset, "last_write_time": self.last_write_time}
