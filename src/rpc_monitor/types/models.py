"""Data models for rpc-monitor.

This module defines the immutable dataclasses that flow between the probe
executor, the poll cycle coordinator, the history store, and the query
surface.
"""

from __future__ import annotations

import math
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum


class ProbeStatus(StrEnum):
    """Outcome of a single probe."""

    SUCCESS = "success"
    ERROR = "error"


class StatusCategory(StrEnum):
    """Derived per-cycle health category of an endpoint."""

    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


class ErrorType(StrEnum):
    """Kind of failure recorded in an endpoint error log."""

    TIMEOUT = "timeout"
    ERROR = "error"


@dataclass(slots=True, frozen=True)
class Endpoint:
    """Monitored RPC endpoint. Identity is the URL."""

    url: str
    name: str

    def to_dict(self) -> dict[str, str]:
        return {"url": self.url, "name": self.name}


@dataclass(slots=True, frozen=True)
class ProbeResult:
    """Normalized result of probing one endpoint once.

    Produced once per endpoint per cycle. ``raw`` keeps the decoded response
    envelope(s) or the exception text for diagnostics and is never part of
    the JSON form.
    """

    endpoint: Endpoint
    status: ProbeStatus
    response_time: float
    timestamp: datetime
    method: str
    block_height: int | None = None
    timeout: bool = False
    error: str | None = None
    raw: object | None = None

    @property
    def is_success(self) -> bool:
        return self.status is ProbeStatus.SUCCESS

    @property
    def is_failure(self) -> bool:
        """True when the result counts as an error for history purposes."""
        return self.status is not ProbeStatus.SUCCESS or self.timeout

    def to_dict(self) -> dict[str, object]:
        """Return the JSON form using the wire (camelCase) field names."""
        data: dict[str, object] = {
            "endpoint": self.endpoint.to_dict(),
            "status": self.status.value,
            "responseTime": self.response_time,
            "timestamp": self.timestamp.isoformat(),
            "method": self.method,
        }
        if self.block_height is not None:
            data["blockHeight"] = self.block_height
        if self.timeout:
            data["timeout"] = True
        if self.error is not None:
            data["error"] = self.error
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> ProbeResult:
        """Rebuild a result from its JSON form.

        Raises:
            KeyError: If a required field is missing
            ValueError: If a field has an invalid value
        """
        endpoint_data = data["endpoint"]
        if not isinstance(endpoint_data, Mapping):
            msg = "endpoint must be an object"
            raise ValueError(msg)
        url = str(endpoint_data["url"])  # pyright: ignore[reportUnknownArgumentType]  # JSON boundary
        name = str(endpoint_data.get("name") or url)  # pyright: ignore[reportUnknownArgumentType, reportUnknownMemberType]  # JSON boundary

        height = data.get("blockHeight")
        if height is not None and not isinstance(height, int):
            msg = f"blockHeight must be an integer, got: {height!r}"
            raise ValueError(msg)

        response_time = data.get("responseTime", 0.0)
        if not isinstance(response_time, int | float):
            msg = f"responseTime must be a number, got: {response_time!r}"
            raise ValueError(msg)

        timestamp = data.get("timestamp")
        error = data.get("error")
        return cls(
            endpoint=Endpoint(url=url, name=name),
            status=ProbeStatus(str(data["status"])),
            response_time=float(response_time),
            timestamp=datetime.fromisoformat(str(timestamp)) if timestamp else datetime.now().astimezone(),
            method=str(data.get("method", "")),
            block_height=height,
            timeout=bool(data.get("timeout", False)),
            error=str(error) if error is not None else None,
        )


@dataclass(slots=True, frozen=True)
class Snapshot:
    """Ranked probe results of one poll cycle, one per registered endpoint."""

    results: tuple[ProbeResult, ...]
    method: str
    taken_at: datetime

    def __iter__(self) -> Iterator[ProbeResult]:
        return iter(self.results)

    def __len__(self) -> int:
        return len(self.results)

    def to_list(self) -> list[dict[str, object]]:
        return [result.to_dict() for result in self.results]


@dataclass(slots=True, frozen=True)
class LatencyPoint:
    """One latency sample in an endpoint latency series."""

    time: datetime
    value: float
    error: bool


@dataclass(slots=True, frozen=True)
class ErrorEntry:
    """One failure recorded in an endpoint error log.

    ``details`` holds the decoded response body of the failed probe, if any.
    """

    timestamp: datetime
    error_type: ErrorType
    message: str
    response_time: float
    details: object | None = None


@dataclass(slots=True, frozen=True)
class EndpointMetrics:
    """Uptime and latency figures derived from a latency series window.

    ``avg_latency`` is ``math.inf`` when the window holds no successful
    sample.
    """

    avg_latency: float
    uptime: float
    data_points: int
    error_count: int

    @property
    def has_latency(self) -> bool:
        return not math.isinf(self.avg_latency)

    def to_dict(self) -> dict[str, object]:
        return {
            "avgLatency": self.avg_latency if self.has_latency else None,
            "uptime": self.uptime,
            "dataPoints": self.data_points,
            "errorCount": self.error_count,
        }


@dataclass(slots=True)
class Response:
    """HTTP response.

    Represents an HTTP response with status code, decoded JSON body (None
    when the body is not JSON), and headers.
    """

    status: int
    body: object | None
    headers: Mapping[str, str]

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300
