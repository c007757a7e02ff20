"""Monitor service owning every runtime component.

One MonitorService is constructed at process start from the validated
configuration and torn down on shutdown. It wires the endpoint registry,
probe executor, coordinator, aggregator, gauge exporter, remote status
source, and Prometheus query client together, and implements the
operator-facing operations: switching the probe method, toggling the data
source, and changing the refresh interval.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta

from rpc_monitor.core.aggregator import HistoryAggregator
from rpc_monitor.core.config import DataSource, MainConfig
from rpc_monitor.core.coordinator import PollCycleCoordinator
from rpc_monitor.core.exceptions import StorageError
from rpc_monitor.core.history import HistoryStore
from rpc_monitor.core.methods import DEFAULT_METHOD
from rpc_monitor.core.probe import ProbeExecutor
from rpc_monitor.core.query import QuerySurface
from rpc_monitor.core.registry import EndpointRegistry
from rpc_monitor.core.storage import JsonFileStore, MemoryStore
from rpc_monitor.sinks.metrics import PrometheusMetricsSink
from rpc_monitor.sinks.remote import RemoteStatusSource
from rpc_monitor.sinks.timeseries import PrometheusQueryClient
from rpc_monitor.types import HTTPClient, Prober, Snapshot, StorageBackend

__all__ = ["MonitorService"]


def _build_storage(config: MainConfig) -> StorageBackend:
    if config.history.storage_dir is None:
        return MemoryStore(quota_bytes=config.history.quota_bytes)
    return JsonFileStore(config.history.storage_dir, quota_bytes=config.history.quota_bytes)


class MonitorService:
    """Explicitly owned monitor instance shared by the route layer and the loop."""

    def __init__(
        self,
        config: MainConfig,
        client: HTTPClient,
        *,
        storage: StorageBackend | None = None,
        prober: Prober | None = None,
    ) -> None:
        """Build all components from configuration.

        Args:
            config: Validated application configuration
            client: Shared HTTP client used for probes and backend queries
            storage: Durable store override, defaults to the configured one
            prober: Probe executor override
        """
        self.config: MainConfig = config
        self.registry: EndpointRegistry = EndpointRegistry(config.to_endpoints())

        self.history: HistoryStore = HistoryStore(retention=timedelta(days=config.history.retention_days))
        self.aggregator: HistoryAggregator = HistoryAggregator(
            storage if storage is not None else _build_storage(config),
            history=self.history,
            namespace=config.history.namespace,
            persist_interval_seconds=config.history.persist_interval_seconds,
        )
        self.metrics: PrometheusMetricsSink = PrometheusMetricsSink(namespace=config.metrics.namespace)

        self.coordinator: PollCycleCoordinator = PollCycleCoordinator(
            self.registry,
            prober if prober is not None else ProbeExecutor(client),
            timeout_ms=config.monitor.timeout_ms,
            method=config.monitor.method,
            observers=(self.aggregator, self.metrics),
        )
        self.coordinator_interval_ms: float = config.monitor.interval_ms

        self.remote: RemoteStatusSource | None = None
        if config.monitor.remote_url:
            self.remote = RemoteStatusSource(
                client,
                config.monitor.remote_url,
                interval_ms=config.monitor.remote_poll_interval_ms,
                observers=(self.aggregator, self.metrics),
            )

        self.timeseries: PrometheusQueryClient = PrometheusQueryClient(client, config.metrics.prometheus_url)
        self.query: QuerySurface = QuerySurface(self.coordinator, self.aggregator, latest=self.get_latest)

        self._data_source: DataSource = config.monitor.data_source
        self._started: bool = False
        self._control_lock: asyncio.Lock = asyncio.Lock()
        self._logger: logging.Logger = logging.getLogger(__name__)

    @property
    def data_source(self) -> DataSource:
        return self._data_source

    @property
    def method(self) -> str:
        return self.coordinator.method

    @property
    def is_running(self) -> bool:
        return self._started

    def get_latest(self) -> Snapshot | None:
        if self._data_source is DataSource.REMOTE and self.remote is not None:
            return self.remote.get_latest()
        return self.coordinator.get_latest()

    async def start(self) -> None:
        """Load persisted history and start the active data source."""
        await self.aggregator.load()
        async with self._control_lock:
            self._started = True
            await self._start_source()
        self._logger.info(
            "Monitor service started",
            extra={"data_source": self._data_source.value, "method": self.method, "endpoints": len(self.registry)},
        )

    async def run_once(self) -> Snapshot:
        """Run a single local cycle and flush history."""
        await self.aggregator.load()
        snapshot = await self.coordinator.run_cycle()
        _ = await self.aggregator.persist(force=True)
        return snapshot

    async def shutdown(self) -> None:
        """Stop polling and flush history to durable storage."""
        async with self._control_lock:
            self._started = False
            await self.coordinator.stop()
            if self.remote is not None:
                await self.remote.stop()

        try:
            _ = await self.aggregator.persist(force=True)
        except StorageError as exc:
            self._logger.exception("Failed to flush history on shutdown", extra={"error": str(exc)})
        self._logger.info("Monitor service stopped")

    async def change_method(self, method: str) -> None:
        """Switch the probe method, forcing the local data source.

        History recorded under other methods is kept. Concurrent operator
        requests are applied one after another; the last one wins.
        """
        async with self._control_lock:
            if self._data_source is DataSource.REMOTE:
                self._data_source = DataSource.LOCAL
                if self.remote is not None:
                    await self.remote.stop()
                self._logger.info("Switched to local data source for method change")

            await self.coordinator.set_method(method)
            if self._started and not self.coordinator.is_running:
                await self.coordinator.start(self.coordinator_interval_ms)

    async def toggle_data_source(self) -> DataSource:
        """Switch between local polling and following the remote monitor.

        Following the remote monitor resets the probe method to the default.

        Raises:
            ValueError: If no remote URL is configured
        """
        async with self._control_lock:
            if self._data_source is DataSource.LOCAL:
                if self.remote is None:
                    msg = "Remote data source is not configured (monitor.remote_url)"
                    raise ValueError(msg)
                self._data_source = DataSource.REMOTE
                await self.coordinator.stop()
                if self.coordinator.method != DEFAULT_METHOD:
                    await self.coordinator.set_method(DEFAULT_METHOD)
            else:
                self._data_source = DataSource.LOCAL
                if self.remote is not None:
                    await self.remote.stop()

            if self._started:
                await self._start_source()
            self._logger.info("Data source toggled", extra={"data_source": self._data_source.value})
            return self._data_source

    async def update_refresh_interval(self, interval_ms: float) -> None:
        """Change the local poll interval; ignored while following a remote monitor.

        Raises:
            ValueError: If interval_ms is not positive
        """
        if interval_ms <= 0:
            msg = "interval_ms must be greater than zero"
            raise ValueError(msg)
        async with self._control_lock:
            self.coordinator_interval_ms = interval_ms
            if self._data_source is DataSource.LOCAL:
                await self.coordinator.set_interval(interval_ms)

    async def _start_source(self) -> None:
        if self._data_source is DataSource.REMOTE and self.remote is not None:
            await self.remote.start()
        else:
            await self.coordinator.start(self.coordinator_interval_ms)
