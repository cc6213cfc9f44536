"""
Common Utilities

Shared modules used across all services:
- config.py - Configuration dataclasses and loading
- validator.py - Configuration validation
- exceptions.py - Custom exception classes
- logging_setup.py - Structured logging setup
- scheduler.py - Precise interval scheduling
- timestamp.py - ISO-8601 helpers
"""

from .config import (
    PipelineConfig,
    TailSettings,
    DeviceMapping,
    ContentMapping,
    ContentSettings,
    EndpointSettings,
    ControlSettings,
    load_pipeline_config,
    apply_env_overrides,
    read_config_file,
)
from .exceptions import (
    KdsSyncError,
    ConfigError,
    ParseError,
    PublishError,
    SyncError,
)
from .logging_setup import (
    setup_logging,
    get_service_logger,
    set_log_level,
    log_history,
    LogHistory,
)
from .scheduler import ScheduledLoop, SchedulerGroup
from .validator import ConfigValidator

__all__ = [
    # Config
    "PipelineConfig",
    "TailSettings",
    "DeviceMapping",
    "ContentMapping",
    "ContentSettings",
    "EndpointSettings",
    "ControlSettings",
    "load_pipeline_config",
    "apply_env_overrides",
    "read_config_file",
    "ConfigValidator",
    # Exceptions
    "KdsSyncError",
    "ConfigError",
    "ParseError",
    "PublishError",
    "SyncError",
    # Logging
    "setup_logging",
    "get_service_logger",
    "set_log_level",
    "log_history",
    "LogHistory",
    # Scheduling
    "ScheduledLoop",
    "SchedulerGroup",
]
