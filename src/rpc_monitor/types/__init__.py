"""Type definitions and protocols for rpc-monitor.

This package provides:
- Data models (immutable dataclasses)
- Protocol definitions (structural subtyping interfaces)
"""

from rpc_monitor.types.models import (
    Endpoint,
    EndpointMetrics,
    ErrorEntry,
    ErrorType,
    LatencyPoint,
    ProbeResult,
    ProbeStatus,
    Response,
    Snapshot,
    StatusCategory,
)
from rpc_monitor.types.protocols import (
    HTTPClient,
    Prober,
    SnapshotObserver,
    StorageBackend,
)

__all__ = [
    # Data models
    "Endpoint",
    "EndpointMetrics",
    "ErrorEntry",
    "ErrorType",
    "LatencyPoint",
    "ProbeResult",
    "ProbeStatus",
    "Response",
    "Snapshot",
    "StatusCategory",
    # Protocols
    "HTTPClient",
    "Prober",
    "SnapshotObserver",
    "StorageBackend",
]
