"""
Structured Logging Setup

Consistent logging configuration across all services.
Uses JSON format for structured logs in production.

Every service logger also feeds a bounded in-memory history so the
control server can show the most recent entries without shell access.
"""

import logging
import sys
import os
import threading
from collections import deque
from datetime import datetime, timezone
from typing import Any
import json

# Attributes present on every LogRecord; anything else is an "extra" field
_RESERVED_ATTRS = (
    "name", "msg", "args", "levelname", "levelno", "pathname",
    "filename", "module", "exc_info", "exc_text", "stack_info",
    "lineno", "funcName", "created", "msecs", "relativeCreated",
    "thread", "threadName", "processName", "process", "service",
    "message", "taskName",
)


class JsonFormatter(logging.Formatter):
    """JSON log formatter for structured logging"""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "service": getattr(record, "service", "unknown"),
            "message": record.getMessage(),
            "logger": record.name,
        }

        # Add exception info if present
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Add extra fields
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_data[key] = value

        return json.dumps(log_data, default=str)


class LogHistory(logging.Handler):
    """
    Keeps the most recent log entries in memory.

    Shared by all service loggers; read by the control server's /logs route.
    """

    def __init__(self, max_entries: int = 100):
        super().__init__(level=logging.DEBUG)
        self._entries: deque[dict[str, Any]] = deque(maxlen=max_entries)
        self._entries_lock = threading.Lock()

    def emit(self, record: logging.LogRecord) -> None:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "service": getattr(record, "service", "unknown"),
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = repr(record.exc_info[1])
        with self._entries_lock:
            self._entries.append(entry)

    def entries(self, limit: int | None = None) -> list[dict[str, Any]]:
        """Return entries oldest first, optionally only the last `limit`."""
        with self._entries_lock:
            items = list(self._entries)
        if limit is not None:
            items = items[-limit:] if limit > 0 else []
        return items

    def clear(self) -> None:
        with self._entries_lock:
            self._entries.clear()


# Process-wide history; every service logger attaches it
log_history = LogHistory()


class ServiceLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that adds service name to all logs"""

    def process(self, msg: str, kwargs: dict) -> tuple[str, dict]:
        kwargs.setdefault("extra", {})
        kwargs["extra"]["service"] = self.extra.get("service", "unknown")
        return msg, kwargs


def setup_logging(
    service_name: str,
    log_level: str = "INFO",
    json_format: bool = True,
) -> logging.Logger:
    """
    Set up structured logging for a service.

    Args:
        service_name: Name of the service (e.g., "tail", "publish")
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON format (True for production, False for dev)

    Returns:
        Configured logger instance
    """
    # Get numeric log level
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    # Create logger
    logger = logging.getLogger(f"kds_sync.{service_name}")
    logger.setLevel(numeric_level)

    # Clear existing handlers
    logger.handlers.clear()

    # Create handler
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)

    # Set formatter
    if json_format:
        formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    handler.setFormatter(formatter)
    logger.addHandler(handler)
    logger.addHandler(log_history)

    # Don't propagate to root logger
    logger.propagate = False

    return logger


def get_service_logger(service_name: str) -> ServiceLoggerAdapter:
    """
    Get a logger adapter with service context.

    Args:
        service_name: Name of the service

    Returns:
        Logger adapter with service name in all logs
    """
    # Check for environment variable override
    log_level = os.environ.get("KDS_SYNC_LOG_LEVEL", "INFO")
    json_format = os.environ.get("KDS_SYNC_LOG_FORMAT", "json").lower() == "json"

    logger = setup_logging(service_name, log_level, json_format)
    return ServiceLoggerAdapter(logger, {"service": service_name})


def set_log_level(log_level: str) -> None:
    """Apply a level to every kds_sync logger created so far."""
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)
    for name, logger in list(logging.Logger.manager.loggerDict.items()):
        if not name.startswith("kds_sync.") or not isinstance(logger, logging.Logger):
            continue
        logger.setLevel(numeric_level)
        for handler in logger.handlers:
            if handler is not log_history:
                handler.setLevel(numeric_level)


def log_state_change(
    logger: logging.Logger,
    kind: str,
    device_id: str,
    check_numbers: tuple[str, ...],
) -> None:
    """Log a device state mutation"""
    logger.debug(
        f"{kind} on {device_id}: {', '.join(check_numbers) or '-'}",
        extra={"device": device_id, "kind": kind, "checks": list(check_numbers)},
    )
