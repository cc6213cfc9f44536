"""
Status Line Records

Typed records parsed from the status log and the parser that builds them.
"""

from .parser import (
    RecordParser,
    RecordType,
    DistributionStatus,
    Record,
    OrderDone,
    CheckClosed,
    DistributionState,
    record_time,
    replay_times,
)

__all__ = [
    "RecordParser",
    "RecordType",
    "DistributionStatus",
    "Record",
    "OrderDone",
    "CheckClosed",
    "DistributionState",
    "record_time",
    "replay_times",
]
