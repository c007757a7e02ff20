"""Client for historical queries against a Prometheus server.

History served from Prometheus comes from the gauges exported by
``PrometheusMetricsSink``; a range selector over one gauge for one endpoint
returns a matrix that ``process_historical_data`` turns into latency points.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping, Sequence
from datetime import UTC, datetime
from typing import Final

from rpc_monitor.core.exceptions import TimeSeriesQueryError
from rpc_monitor.types import HTTPClient, LatencyPoint

__all__ = [
    "DEFAULT_QUERY_TIMEOUT_SECONDS",
    "PrometheusQueryClient",
    "build_range_query",
    "process_historical_data",
]

DEFAULT_QUERY_TIMEOUT_SECONDS: Final[float] = 10.0

# Prometheus range durations, e.g. 15m, 1h, 7d, 1h30m
_RANGE_PATTERN: Final[re.Pattern[str]] = re.compile(r"^(\d+(ms|[smhdwy]))+$")


def _escape_label_value(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


def build_range_query(metric: str, endpoint: str, time_range: str) -> str:
    """Build a range-vector selector for one endpoint.

    Raises:
        ValueError: If the time range is not a Prometheus duration

    Examples:
        >>> build_range_query("polkadot_rpc_status", "https://rpc.example.org", "1h")
        'polkadot_rpc_status{endpoint="https://rpc.example.org"}[1h]'
    """
    if not _RANGE_PATTERN.fullmatch(time_range):
        msg = f"Invalid time range: {time_range!r}"
        raise ValueError(msg)
    return f'{metric}{{endpoint="{_escape_label_value(endpoint)}"}}[{time_range}]'


def _series_values(result: object) -> Sequence[object]:
    if not isinstance(result, Sequence) or isinstance(result, str) or not result:
        return []
    first = result[0]  # pyright: ignore[reportUnknownVariableType]  # JSON boundary
    if not isinstance(first, Mapping):
        return []
    values = first.get("values")  # pyright: ignore[reportUnknownMemberType, reportUnknownVariableType]  # JSON boundary
    if not isinstance(values, Sequence) or isinstance(values, str):
        return []
    return values  # pyright: ignore[reportUnknownVariableType]  # JSON boundary


def _sample(pair: object) -> tuple[float, float] | None:
    if not isinstance(pair, Sequence) or isinstance(pair, str) or len(pair) != 2:  # pyright: ignore[reportUnknownArgumentType]  # JSON boundary
        return None
    try:
        return float(pair[0]), float(pair[1])  # pyright: ignore[reportUnknownArgumentType]  # JSON boundary
    except (TypeError, ValueError):
        return None


def process_historical_data(latency_result: object, status_result: object) -> list[LatencyPoint]:
    """Merge a latency matrix and a status matrix into latency points.

    Only the first series of each matrix is used. A latency sample is an
    error when the status sample at the same timestamp is 0 or missing.

    Args:
        latency_result: ``data.result`` of a response-time range query
        status_result: ``data.result`` of a status range query

    Returns:
        Latency points in the order of the latency samples
    """
    statuses: dict[float, float] = {}
    for pair in _series_values(status_result):
        sample = _sample(pair)
        if sample is not None:
            statuses[sample[0]] = sample[1]

    points: list[LatencyPoint] = []
    for pair in _series_values(latency_result):
        sample = _sample(pair)
        if sample is None:
            continue
        timestamp, value = sample
        status = statuses.get(timestamp)
        points.append(
            LatencyPoint(
                time=datetime.fromtimestamp(timestamp, UTC),
                value=value,
                error=status is None or status == 0,
            )
        )
    return points


class PrometheusQueryClient:
    """Run instant queries with a range selector against Prometheus."""

    def __init__(
        self,
        client: HTTPClient,
        base_url: str,
        *,
        timeout_seconds: float = DEFAULT_QUERY_TIMEOUT_SECONDS,
    ) -> None:
        self._client: HTTPClient = client
        self.base_url: str = base_url.rstrip("/")
        self.timeout_seconds: float = timeout_seconds
        self._logger: logging.Logger = logging.getLogger(__name__)

    async def query(self, endpoint: str, metric: str, time_range: str = "1h") -> Mapping[str, object]:
        """Query one gauge of one endpoint over a time range.

        Args:
            endpoint: Endpoint URL label value
            metric: Gauge name
            time_range: Prometheus duration, e.g. ``15m`` or ``24h``

        Returns:
            The Prometheus response payload, unmodified

        Raises:
            ValueError: If the time range is invalid
            TimeSeriesQueryError: If the backend is unreachable or rejects the query
        """
        query = build_range_query(metric, endpoint, time_range)
        url = f"{self.base_url}/api/v1/query"

        try:
            response = await self._client.get(url, params={"query": query}, timeout=self.timeout_seconds)
        except TimeoutError as e:
            msg = f"Prometheus query timed out after {self.timeout_seconds}s"
            raise TimeSeriesQueryError(msg) from e
        except Exception as e:
            self._logger.exception("Prometheus query failed", extra={"query": query, "error": str(e)})
            msg = f"Prometheus query failed: {e}"
            raise TimeSeriesQueryError(msg) from e

        body = response.body
        if not response.ok or not isinstance(body, Mapping):
            msg = f"Prometheus returned HTTP {response.status}"
            raise TimeSeriesQueryError(msg, status=response.status)
        return body  # pyright: ignore[reportUnknownVariableType]  # JSON boundary

    async def latency_series(self, endpoint: str, namespace: str, time_range: str = "1h") -> list[LatencyPoint]:
        """Fetch an endpoint's latency series built from the exported gauges."""
        latency = await self.query(endpoint, f"{namespace}_response_time_ms", time_range)
        status = await self.query(endpoint, f"{namespace}_status", time_range)
        return process_historical_data(_result_of(latency), _result_of(status))


def _result_of(payload: Mapping[str, object]) -> object:
    data = payload.get("data")
    if isinstance(data, Mapping):
        return data.get("result")  # pyright: ignore[reportUnknownMemberType, reportUnknownVariableType]  # JSON boundary
    return None
