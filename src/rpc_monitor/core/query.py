"""Read-only query surface over the live snapshot and recorded history."""

from __future__ import annotations

from collections.abc import Callable, Mapping

from rpc_monitor.core.aggregator import HistoryAggregator
from rpc_monitor.core.coordinator import PollCycleCoordinator
from rpc_monitor.core.document import HistoryDocument
from rpc_monitor.types import EndpointMetrics, ErrorEntry, LatencyPoint, Snapshot, StatusCategory

__all__ = ["QuerySurface"]


class QuerySurface:
    """Accessors shared by the route layer and any other consumer.

    Readers only ever see complete snapshots; history readers return copies,
    so callers cannot mutate the store.
    """

    def __init__(
        self,
        coordinator: PollCycleCoordinator,
        aggregator: HistoryAggregator,
        *,
        latest: Callable[[], Snapshot | None] | None = None,
    ) -> None:
        """Initialize the surface.

        Args:
            coordinator: Local poll cycle coordinator
            aggregator: History aggregator
            latest: Provider of the latest snapshot, defaults to the coordinator's
        """
        self.coordinator: PollCycleCoordinator = coordinator
        self.aggregator: HistoryAggregator = aggregator
        self._latest: Callable[[], Snapshot | None] = latest or coordinator.get_latest

    @property
    def current_method(self) -> str:
        return self.coordinator.method

    def get_latest(self) -> Snapshot | None:
        return self._latest()

    def get_history_series(self, method: str, url: str, time_range_ms: float | None = None) -> list[LatencyPoint]:
        """Latency points of an endpoint no older than ``time_range_ms``, oldest first."""
        return self.aggregator.history.latency_series(method, url, time_range_ms)

    def get_error_log(self, method: str, url: str, time_range_ms: float | None = None) -> list[ErrorEntry]:
        """Error entries of an endpoint no older than ``time_range_ms``, newest first."""
        return self.aggregator.history.error_log(method, url, time_range_ms)

    def get_status_history(self, method: str, url: str) -> tuple[StatusCategory, ...]:
        return self.aggregator.history.status_window(method, url)

    def compute_metrics(self, method: str, time_range_ms: float) -> dict[str, EndpointMetrics]:
        return self.aggregator.compute_metrics(method, time_range_ms)

    async def export_all(self) -> HistoryDocument:
        return await self.aggregator.export_all()

    async def import_all(self, blob: str | bytes | Mapping[str, object]) -> HistoryDocument:
        """Merge an exported document into history.

        Raises:
            ImportFormatError: If the document is malformed
            PersistenceError: If the merged history cannot be persisted
        """
        return await self.aggregator.import_all(blob)
