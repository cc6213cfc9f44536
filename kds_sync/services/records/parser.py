"""
Record Parser

Turns status log lines into typed records.

Line format (delimiter-separated, tag first):
    1.0,<device_id>,<check_number>,<done_at>      order done
    2.0,<check_number>,<closed_at>                check closed
    3.0,<device_id>,<check_number>,<state>        distribution state

Unknown tags are out-of-scope data and are dropped quietly. A known tag
with the wrong number of fields or a bad timestamp is malformed: it is
logged at warning level and skipped.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Union

from kds_sync.common.exceptions import ParseError
from kds_sync.common.logging_setup import get_service_logger
from kds_sync.common.timestamp import parse_iso

logger = get_service_logger("records")


class RecordType(str, Enum):
    """Leading type tags understood by the parser"""
    ORDER_DONE = "1.0"
    CHECK_CLOSED = "2.0"
    DISTRIBUTION_STATE = "3.0"


class DistributionStatus(str, Enum):
    """Values of the state field in a distribution record"""
    SENT = "sent"
    DONE = "done"
    VOID = "void"


@dataclass(frozen=True)
class OrderDone:
    device_id: str
    check_number: str
    done_at: datetime
    raw: str = ""


@dataclass(frozen=True)
class CheckClosed:
    check_number: str
    closed_at: datetime
    raw: str = ""


@dataclass(frozen=True)
class DistributionState:
    device_id: str
    check_number: str
    state: str
    raw: str = ""

    @property
    def status(self) -> DistributionStatus | None:
        try:
            return DistributionStatus(self.state.lower())
        except ValueError:
            return None


Record = Union[OrderDone, CheckClosed, DistributionState]

# Total field count per tag, including the tag itself
FIELD_COUNTS: dict[RecordType, int] = {
    RecordType.ORDER_DONE: 4,
    RecordType.CHECK_CLOSED: 3,
    RecordType.DISTRIBUTION_STATE: 4,
}


@dataclass
class ParserStats:
    parsed: int = 0
    ignored: int = 0
    malformed: int = 0

    def to_dict(self) -> dict:
        return {"parsed": self.parsed, "ignored": self.ignored, "malformed": self.malformed}


class RecordParser:
    """Parses status log lines into records"""

    def __init__(self, delimiter: str = ","):
        self.delimiter = delimiter
        self.stats = ParserStats()

    def parse(self, line: str) -> Record | None:
        """
        Parse one line.

        Returns:
            The record, or None for blank, unknown or malformed lines
        """
        try:
            record = self.parse_strict(line)
        except ParseError as e:
            self.stats.malformed += 1
            logger.warning(
                f"Skipping malformed status line ({e.reason}): {e.line!r}",
                extra={"reason": e.reason},
            )
            return None

        if record is None:
            self.stats.ignored += 1
        else:
            self.stats.parsed += 1
        return record

    def parse_strict(self, line: str) -> Record | None:
        """
        Parse one line, raising on malformed known records.

        Raises:
            ParseError: Known tag with bad field count or timestamp
        """
        if not line or not line.strip():
            return None

        fields = [f.strip() for f in line.split(self.delimiter)]
        try:
            record_type = RecordType(fields[0])
        except ValueError:
            return None

        expected = FIELD_COUNTS[record_type]
        if len(fields) != expected:
            raise ParseError(
                f"tag {record_type.value} expects {expected} fields, got {len(fields)}",
                line,
            )
        if any(not f for f in fields[1:]):
            raise ParseError(f"tag {record_type.value} has an empty field", line)

        if record_type is RecordType.ORDER_DONE:
            return OrderDone(
                device_id=fields[1],
                check_number=fields[2],
                done_at=self._timestamp(fields[3], line),
                raw=line,
            )
        if record_type is RecordType.CHECK_CLOSED:
            return CheckClosed(
                check_number=fields[1],
                closed_at=self._timestamp(fields[2], line),
                raw=line,
            )
        return DistributionState(
            device_id=fields[1],
            check_number=fields[2],
            state=fields[3],
            raw=line,
        )

    @staticmethod
    def _timestamp(value: str, line: str) -> datetime:
        try:
            return parse_iso(value)
        except ValueError:
            raise ParseError(f"invalid timestamp {value!r}", line)


def record_time(record: Record) -> datetime | None:
    """The timestamp a record carries, if its shape has one."""
    if isinstance(record, OrderDone):
        return record.done_at
    if isinstance(record, CheckClosed):
        return record.closed_at
    return None


def replay_times(records: list[Record]) -> list[datetime | None]:
    """
    Estimate when each record was written, for replaying an old log.

    Distribution records carry no timestamp. Each one takes the latest
    timestamp seen on an earlier record, or failing that the first one
    that follows it. None is left only when no record in the batch has
    a timestamp.
    """
    times: list[datetime | None] = []
    latest: datetime | None = None
    for record in records:
        latest = record_time(record) or latest
        times.append(latest)

    # Records before the first timestamped one take its time
    first = next((t for t in times if t is not None), None)
    return [t or first for t in times]
