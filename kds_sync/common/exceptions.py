"""
Custom Exception Classes for kds-sync

Hierarchical exception structure for error handling across services.
Runtime failures are recoverable; they are logged and forwarded to the
error notification channel instead of stopping the pipeline.
"""


class KdsSyncError(Exception):
    """Base exception for all kds-sync errors"""

    def __init__(self, message: str, recoverable: bool = True):
        self.message = message
        self.recoverable = recoverable
        super().__init__(message)


class ConfigError(KdsSyncError):
    """Configuration-related errors"""

    def __init__(self, message: str, recoverable: bool = True):
        super().__init__(f"Config Error: {message}", recoverable)


class ParseError(KdsSyncError):
    """A line carried a known tag but could not be turned into a record"""

    def __init__(self, reason: str, line: str):
        self.reason = reason
        self.line = line
        super().__init__(f"Parse Error: {reason}", recoverable=True)


class PublishError(KdsSyncError):
    """Snapshot publish failed"""

    def __init__(
        self,
        message: str,
        device_id: str | None = None,
        status_code: int | None = None,
    ):
        self.device_id = device_id
        self.status_code = status_code
        super().__init__(f"Publish Error: {message}", recoverable=True)


class SyncError(KdsSyncError):
    """Content synchronization errors"""

    def __init__(
        self,
        message: str,
        destination_path: str | None = None,
        operation: str | None = None,
    ):
        self.destination_path = destination_path
        self.operation = operation
        super().__init__(f"Sync Error: {message}", recoverable=True)
