"""rpc-monitor - Monitor blockchain JSON-RPC endpoints.

This package polls a set of JSON-RPC endpoints on a fixed cadence, ranks
them by reported block height and latency, keeps bounded per-endpoint
history, and exports the results as Prometheus gauges and an HTTP API.
"""

from rpc_monitor.__main__ import main

__all__ = ["main"]
