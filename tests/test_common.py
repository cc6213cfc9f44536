"""
Tests for timestamp helpers and logging utilities.
"""

import json
import logging
from datetime import datetime, timedelta, timezone

import pytest

from kds_sync.common.logging_setup import JsonFormatter, LogHistory
from kds_sync.common.timestamp import format_iso, parse_iso


class TestTimestamps:

    def test_parse_z_suffix(self):
        assert parse_iso("2024-01-01T10:00:00Z") == datetime(2024, 1, 1, 10, tzinfo=timezone.utc)

    def test_parse_naive_is_utc(self):
        assert parse_iso("2024-01-01T10:00:00").tzinfo is not None

    def test_parse_invalid(self):
        with pytest.raises(ValueError):
            parse_iso("yesterday")

    def test_format(self):
        dt = datetime(2024, 1, 1, 12, 0, tzinfo=timezone(timedelta(hours=2)))
        assert format_iso(dt) == "2024-01-01T10:00:00Z"
        assert format_iso(dt.replace(microsecond=250000)) == "2024-01-01T10:00:00.250Z"


def make_record(message, level=logging.INFO, **extra):
    record = logging.LogRecord("kds_sync.test", level, __file__, 1, message, None, None)
    record.service = "test"
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestLogging:

    def test_json_formatter_includes_extra(self):
        line = JsonFormatter().format(make_record("hello", device="DEV1"))
        data = json.loads(line)

        assert data["message"] == "hello"
        assert data["level"] == "INFO"
        assert data["service"] == "test"
        assert data["device"] == "DEV1"

    def test_history_is_bounded(self):
        history = LogHistory(max_entries=3)
        for i in range(5):
            history.emit(make_record(f"entry {i}"))

        assert [e["message"] for e in history.entries()] == ["entry 2", "entry 3", "entry 4"]
        assert [e["message"] for e in history.entries(limit=1)] == ["entry 4"]
        assert history.entries(limit=0) == []

    def test_history_clear(self):
        history = LogHistory()
        history.emit(make_record("x", level=logging.ERROR))
        history.clear()
        assert history.entries() == []
