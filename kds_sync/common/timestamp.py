"""
Timestamp Utilities

ISO-8601 parsing and formatting shared by the record parser and the
snapshot payload. All datetimes handled by the pipeline are timezone-aware
UTC; naive inputs are taken as UTC.
"""

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Current time as an aware UTC datetime (default pipeline clock)."""
    return datetime.now(timezone.utc)


def parse_iso(ts_iso: str) -> datetime:
    """
    Parse an ISO-8601 timestamp into an aware UTC datetime.

    Accepts a trailing "Z". Naive timestamps are assumed to be UTC.

    Raises:
        ValueError: If the string is not a valid ISO-8601 timestamp
    """
    if not ts_iso:
        raise ValueError("empty timestamp")

    ts_clean = ts_iso.strip()
    if ts_clean.endswith(("Z", "z")):
        ts_clean = ts_clean[:-1] + "+00:00"

    dt = datetime.fromisoformat(ts_clean)
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_iso(dt: datetime) -> str:
    """
    Format a datetime as ISO-8601 UTC with a "Z" suffix.

    Examples:
        2024-01-01 10:00:00+00:00 -> "2024-01-01T10:00:00Z"
        2024-01-01 10:00:00.250000+00:00 -> "2024-01-01T10:00:00.250Z"
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)

    if dt.microsecond:
        return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"
    return dt.strftime("%Y-%m-%dT%H:%M:%SZ")
