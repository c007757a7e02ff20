"""Shared utility modules.

This package provides:
- The aiohttp-backed HTTP client
- Logging configuration with cycle ID tracking
- Time range parsing for history queries
"""

from rpc_monitor.utils.http_client import AIOHTTPClient
from rpc_monitor.utils.time_range import (
    DEFAULT_TIME_RANGE_MS,
    is_valid_time_range,
    parse_time_range,
)

__all__ = [
    "AIOHTTPClient",
    "DEFAULT_TIME_RANGE_MS",
    "is_valid_time_range",
    "parse_time_range",
]
