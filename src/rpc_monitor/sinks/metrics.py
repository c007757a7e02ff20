"""Prometheus gauge exporter fed by published snapshots.

Three gauges are set per endpoint on every snapshot, labeled with the
endpoint URL and display name:

- ``{namespace}_response_time_ms``: probe response time
- ``{namespace}_status``: 1 when the probe succeeded, 0 otherwise
- ``{namespace}_block_height``: reported height, only when the probe reported one

The registry also carries the default process and runtime collectors of
prometheus_client.
"""

from __future__ import annotations

import logging
from typing import Final, override

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    GCCollector,
    Gauge,
    PlatformCollector,
    ProcessCollector,
    generate_latest,
)

from rpc_monitor.types import Snapshot, SnapshotObserver

__all__ = ["CONTENT_TYPE", "DEFAULT_METRICS_NAMESPACE", "PrometheusMetricsSink"]

DEFAULT_METRICS_NAMESPACE: Final[str] = "polkadot_rpc"
CONTENT_TYPE: Final[str] = CONTENT_TYPE_LATEST

_LABELS: Final[tuple[str, str]] = ("endpoint", "name")


class PrometheusMetricsSink(SnapshotObserver):
    """Snapshot observer maintaining labeled gauges in its own registry."""

    def __init__(
        self,
        *,
        namespace: str = DEFAULT_METRICS_NAMESPACE,
        registry: CollectorRegistry | None = None,
        default_collectors: bool = True,
    ) -> None:
        """Create the gauges.

        Args:
            namespace: Prefix of the gauge names
            registry: Registry to register into, a private one if None
            default_collectors: Also register the default prometheus_client collectors
        """
        self.namespace: str = namespace
        self.registry: CollectorRegistry = registry if registry is not None else CollectorRegistry()
        if default_collectors:
            _ = ProcessCollector(registry=self.registry)
            _ = PlatformCollector(registry=self.registry)
            _ = GCCollector(registry=self.registry)

        self.block_height: Gauge = Gauge(
            f"{namespace}_block_height",
            "Block height reported by the RPC endpoint",
            _LABELS,
            registry=self.registry,
        )
        self.response_time: Gauge = Gauge(
            f"{namespace}_response_time_ms",
            "Response time in milliseconds of the RPC endpoint",
            _LABELS,
            registry=self.registry,
        )
        self.status: Gauge = Gauge(
            f"{namespace}_status",
            "Status of the RPC endpoint (1 = up, 0 = down)",
            _LABELS,
            registry=self.registry,
        )
        self._logger: logging.Logger = logging.getLogger(__name__)

    @override
    async def on_snapshot(self, snapshot: Snapshot) -> None:
        for result in snapshot:
            labels = {"endpoint": result.endpoint.url, "name": result.endpoint.name}
            self.response_time.labels(**labels).set(result.response_time)
            self.status.labels(**labels).set(1 if result.is_success else 0)
            if result.block_height is not None:
                self.block_height.labels(**labels).set(result.block_height)
        self._logger.debug("Updated gauges", extra={"endpoints": len(snapshot)})

    def render(self) -> bytes:
        """Render the registry in the Prometheus text exposition format."""
        return generate_latest(self.registry)
