"""Bounded per-endpoint history with retention and derived metrics.

History is keyed first by probe method and then by endpoint URL, so
switching methods starts fresh series while the series of other methods
stay retrievable. Three structures are kept per key:

- a rolling status window of fixed capacity, seeded with ``unknown``
- a latency series capped by point count
- an error log capped by entry count

All of them evict oldest-first. Retention by wall-clock age is enforced
independently of the count caps; whichever binds first wins.
"""

from __future__ import annotations

import math
from collections import deque
from collections.abc import Callable, Iterable, Mapping, Sequence
from datetime import UTC, datetime, timedelta
from typing import Final

from rpc_monitor.types.models import EndpointMetrics, ErrorEntry, LatencyPoint, StatusCategory

__all__ = [
    "DEFAULT_RETENTION",
    "MAX_ERROR_ENTRIES",
    "MAX_LATENCY_POINTS",
    "STATUS_WINDOW_SIZE",
    "HistoryStore",
    "compute_endpoint_metrics",
]

STATUS_WINDOW_SIZE: Final[int] = 7
# ~24 hours at a 10 second cadence
MAX_LATENCY_POINTS: Final[int] = 8640
MAX_ERROR_ENTRIES: Final[int] = 500
DEFAULT_RETENTION: Final[timedelta] = timedelta(days=30)

type Clock = Callable[[], datetime]
type Keyed[T] = dict[str, dict[str, T]]


def _utc_now() -> datetime:
    return datetime.now(UTC)


def compute_endpoint_metrics(points: Sequence[LatencyPoint]) -> EndpointMetrics | None:
    """Derive uptime and average latency from a window of latency points.

    Args:
        points: Latency points inside the window

    Returns:
        Metrics for the window, or None when the window is empty

    Examples:
        >>> now = datetime.now(UTC)
        >>> metrics = compute_endpoint_metrics([
        ...     LatencyPoint(now, 100.0, False),
        ...     LatencyPoint(now, 200.0, False),
        ...     LatencyPoint(now, 500.0, True),
        ... ])
        >>> metrics.avg_latency
        150.0
    """
    if not points:
        return None

    successes = [point.value for point in points if not point.error]
    error_count = len(points) - len(successes)
    avg_latency = sum(successes) / len(successes) if successes else math.inf

    return EndpointMetrics(
        avg_latency=avg_latency,
        uptime=len(successes) / len(points) * 100.0,
        data_points=len(points),
        error_count=error_count,
    )


class HistoryStore:
    """In-memory history of status windows, latency series, and error logs."""

    def __init__(
        self,
        *,
        retention: timedelta = DEFAULT_RETENTION,
        status_window_size: int = STATUS_WINDOW_SIZE,
        max_latency_points: int = MAX_LATENCY_POINTS,
        max_error_entries: int = MAX_ERROR_ENTRIES,
        clock: Clock = _utc_now,
    ) -> None:
        """Initialize an empty history store.

        Args:
            retention: Maximum age of latency points and error entries
            status_window_size: Capacity of each rolling status window
            max_latency_points: Capacity of each latency series
            max_error_entries: Capacity of each error log
            clock: Source of the current time (timezone-aware)

        Raises:
            ValueError: If a capacity or the retention is not positive
        """
        if status_window_size < 1 or max_latency_points < 1 or max_error_entries < 1:
            msg = "History capacities must be at least 1"
            raise ValueError(msg)
        if retention <= timedelta(0):
            msg = "Retention must be positive"
            raise ValueError(msg)

        self._retention: timedelta = retention
        self._status_window_size: int = status_window_size
        self._max_latency_points: int = max_latency_points
        self._max_error_entries: int = max_error_entries
        self._clock: Clock = clock

        self._status: Keyed[deque[StatusCategory]] = {}
        self._latency: Keyed[deque[LatencyPoint]] = {}
        self._errors: Keyed[deque[ErrorEntry]] = {}

    @property
    def retention(self) -> timedelta:
        return self._retention

    @retention.setter
    def retention(self, value: timedelta) -> None:
        if value <= timedelta(0):
            msg = "Retention must be positive"
            raise ValueError(msg)
        self._retention = value

    def now(self) -> datetime:
        return self._clock()

    # Writers

    def push_status(self, method: str, url: str, category: StatusCategory) -> None:
        """Push a category onto the rolling window, evicting the oldest slot."""
        window = self._status.setdefault(method, {}).get(url)
        if window is None:
            window = self._new_status_window()
            self._status[method][url] = window
        window.append(category)

    def append_latency(self, method: str, url: str, point: LatencyPoint) -> None:
        series = self._latency.setdefault(method, {}).get(url)
        if series is None:
            series = deque(maxlen=self._max_latency_points)
            self._latency[method][url] = series
        series.append(point)
        self._drop_expired(series, lambda item: item.time)

    def append_error(self, method: str, url: str, entry: ErrorEntry) -> None:
        log = self._errors.setdefault(method, {}).get(url)
        if log is None:
            log = deque(maxlen=self._max_error_entries)
            self._errors[method][url] = log
        log.append(entry)
        self._drop_expired(log, lambda item: item.timestamp)

    def replace_status_window(self, method: str, url: str, categories: Iterable[StatusCategory]) -> None:
        window = self._new_status_window()
        window.extend(categories)
        self._status.setdefault(method, {})[url] = window

    def replace_latency_series(self, method: str, url: str, points: Iterable[LatencyPoint]) -> None:
        """Replace a latency series, restoring time order and dropping expired points."""
        series = deque(sorted(points, key=lambda point: point.time), maxlen=self._max_latency_points)
        self._drop_expired(series, lambda item: item.time)
        self._latency.setdefault(method, {})[url] = series

    def replace_error_log(self, method: str, url: str, entries: Iterable[ErrorEntry]) -> None:
        log = deque(sorted(entries, key=lambda entry: entry.timestamp), maxlen=self._max_error_entries)
        self._drop_expired(log, lambda item: item.timestamp)
        self._errors.setdefault(method, {})[url] = log

    def prune_older_than(self, cutoff: datetime) -> int:
        """Drop latency points and error entries recorded before ``cutoff``.

        Returns:
            Number of removed items across all methods and endpoints
        """
        removed = 0
        for by_url in self._latency.values():
            for series in by_url.values():
                removed += self._drop_before(series, cutoff, lambda item: item.time)
        for by_url in self._errors.values():
            for log in by_url.values():
                removed += self._drop_before(log, cutoff, lambda item: item.timestamp)
        return removed

    def prune_expired(self) -> int:
        return self.prune_older_than(self.now() - self._retention)

    def clear(self) -> None:
        self._status.clear()
        self._latency.clear()
        self._errors.clear()

    # Readers

    def status_window(self, method: str, url: str) -> tuple[StatusCategory, ...]:
        window = self._status.get(method, {}).get(url)
        if window is None:
            return tuple(self._new_status_window())
        return tuple(window)

    def latency_series(self, method: str, url: str, time_range_ms: float | None = None) -> list[LatencyPoint]:
        """Return an endpoint's latency points, oldest first.

        Args:
            method: Probe method the points were recorded under
            url: Endpoint URL
            time_range_ms: Only points at most this old, None for all
        """
        series = self._latency.get(method, {}).get(url)
        if not series:
            return []
        if time_range_ms is None:
            return list(series)
        cutoff = self.now() - timedelta(milliseconds=time_range_ms)
        return [point for point in series if point.time >= cutoff]

    def error_log(self, method: str, url: str, time_range_ms: float | None = None) -> list[ErrorEntry]:
        """Return an endpoint's error entries, newest first."""
        log = self._errors.get(method, {}).get(url)
        if not log:
            return []
        entries = list(log)
        if time_range_ms is not None:
            cutoff = self.now() - timedelta(milliseconds=time_range_ms)
            entries = [entry for entry in entries if entry.timestamp >= cutoff]
        return sorted(entries, key=lambda entry: entry.timestamp, reverse=True)

    def compute_metrics(self, method: str, time_range_ms: float) -> dict[str, EndpointMetrics]:
        """Derive metrics for every endpoint with points inside the window.

        Endpoints without points in the window are omitted.
        """
        metrics: dict[str, EndpointMetrics] = {}
        for url in self._latency.get(method, {}):
            endpoint_metrics = compute_endpoint_metrics(self.latency_series(method, url, time_range_ms))
            if endpoint_metrics is not None:
                metrics[url] = endpoint_metrics
        return metrics

    def methods(self) -> tuple[str, ...]:
        keys = dict.fromkeys([*self._status, *self._latency, *self._errors])
        return tuple(keys)

    def status_items(self) -> Mapping[str, Mapping[str, deque[StatusCategory]]]:
        return self._status

    def latency_items(self) -> Mapping[str, Mapping[str, deque[LatencyPoint]]]:
        return self._latency

    def error_items(self) -> Mapping[str, Mapping[str, deque[ErrorEntry]]]:
        return self._errors

    # Internals

    def _new_status_window(self) -> deque[StatusCategory]:
        return deque(
            [StatusCategory.UNKNOWN] * self._status_window_size,
            maxlen=self._status_window_size,
        )

    def _drop_expired[T](self, items: deque[T], time_of: Callable[[T], datetime]) -> None:
        self._drop_before(items, self.now() - self._retention, time_of)

    @staticmethod
    def _drop_before[T](items: deque[T], cutoff: datetime, time_of: Callable[[T], datetime]) -> int:
        # Items are appended in time order, so expired ones sit at the left
        removed = 0
        while items and time_of(items[0]) < cutoff:
            _ = items.popleft()
            removed += 1
        return removed
