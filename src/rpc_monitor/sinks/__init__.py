"""Collaborators outside the polling core.

This package provides:
- The Prometheus gauge exporter fed by snapshots
- The Prometheus query client for backend-served history
- The remote status source following another monitor
"""

from rpc_monitor.sinks.metrics import PrometheusMetricsSink
from rpc_monitor.sinks.remote import RemoteStatusError, RemoteStatusSource
from rpc_monitor.sinks.timeseries import PrometheusQueryClient, process_historical_data

__all__ = [
    "PrometheusMetricsSink",
    "PrometheusQueryClient",
    "RemoteStatusError",
    "RemoteStatusSource",
    "process_historical_data",
]
