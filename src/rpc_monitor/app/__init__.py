"""Application layer: the monitor service and its HTTP API."""

from __future__ import annotations

from rpc_monitor.app.server import ApiServer, create_app
from rpc_monitor.app.service import MonitorService

__all__ = [
    "ApiServer",
    "MonitorService",
    "create_app",
]
