"""Exception hierarchy for the monitoring core.

Probe failures never appear here: they are recorded as error results. These
exceptions cover history persistence, import/export, and the remote
time-series backend.
"""


class RpcMonitorError(Exception):
    """Base exception for rpc-monitor errors."""


class StorageError(RpcMonitorError):
    """Raised when the durable store cannot be read or written."""


class StorageCapacityError(StorageError):
    """Raised when a write does not fit in the durable store."""

    def __init__(self, message: str, *, required_bytes: int | None = None, quota_bytes: int | None = None) -> None:
        super().__init__(message)
        self.required_bytes: int | None = required_bytes
        self.quota_bytes: int | None = quota_bytes


class PersistenceError(StorageError):
    """Raised when history cannot be persisted even after pruning."""


class ImportFormatError(RpcMonitorError):
    """Raised when an imported history document is malformed."""


class TimeSeriesQueryError(RpcMonitorError):
    """Raised when the time-series backend rejects or fails a query."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status: int | None = status
