"""HTTP API served with aiohttp.web.

Routes:

- ``GET /api``: liveness message
- ``GET /api/status``: latest snapshot as a JSON array of probe results
- ``GET /api/history``: Prometheus range query for one endpoint gauge
- ``GET /api/history/series``: latency points for one endpoint merged from the
  response time and status gauges stored in Prometheus
- ``GET /metrics``: Prometheus exposition of the exported gauges
- ``GET /api/local/history``, ``/api/local/errors``, ``/api/local/metrics``,
  ``/api/local/status-history``: locally recorded history
- ``GET /api/local/export`` and ``POST /api/local/import``: history documents
- ``POST /api/method``, ``POST /api/data-source``, ``POST /api/refresh-interval``:
  operator controls
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Final

from aiohttp import web

from rpc_monitor.app.service import MonitorService
from rpc_monitor.core.exceptions import ImportFormatError, StorageError, TimeSeriesQueryError
from rpc_monitor.sinks.metrics import CONTENT_TYPE
from rpc_monitor.types import EndpointMetrics, ErrorEntry, LatencyPoint
from rpc_monitor.utils.time_range import DEFAULT_TIME_RANGE_MS, is_valid_time_range, parse_time_range

__all__ = ["SERVICE_KEY", "ApiServer", "create_app"]

SERVICE_KEY: Final[web.AppKey[MonitorService]] = web.AppKey("service", MonitorService)

API_MESSAGE: Final[str] = "Polkadot RPC Monitor API"
MAX_IMPORT_BYTES: Final[int] = 64 * 1024 * 1024

logger = logging.getLogger(__name__)


def _json_error(status: int, message: str) -> web.Response:
    return web.json_response({"error": message}, status=status)


def _point_to_dict(point: LatencyPoint) -> dict[str, object]:
    return {"time": point.time.isoformat(), "value": point.value, "error": point.error}


def _entry_to_dict(entry: ErrorEntry) -> dict[str, object]:
    data: dict[str, object] = {
        "timestamp": entry.timestamp.isoformat(),
        "errorType": entry.error_type.value,
        "message": entry.message,
        "responseTime": entry.response_time,
    }
    if entry.details is not None:
        data["details"] = entry.details
    return data


def _metrics_to_dict(metrics: Mapping[str, EndpointMetrics]) -> dict[str, object]:
    return {url: endpoint_metrics.to_dict() for url, endpoint_metrics in metrics.items()}


def _time_range_ms(request: web.Request) -> int:
    value = request.query.get("timeRange")
    if not value:
        return DEFAULT_TIME_RANGE_MS
    if not is_valid_time_range(value):
        raise web.HTTPBadRequest(
            text=json.dumps({"error": f"Invalid timeRange: {value}"}),
            content_type="application/json",
        )
    return parse_time_range(value)


async def _read_json(request: web.Request) -> object:
    try:
        return await request.json()  # pyright: ignore[reportAny]  # JSON boundary
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise web.HTTPBadRequest(
            text=json.dumps({"error": f"Request body is not valid JSON: {exc}"}),
            content_type="application/json",
        ) from exc


async def handle_index(_request: web.Request) -> web.Response:
    return web.json_response({"status": "ok", "message": API_MESSAGE})


async def handle_status(request: web.Request) -> web.Response:
    snapshot = request.app[SERVICE_KEY].get_latest()
    return web.json_response(snapshot.to_list() if snapshot is not None else [])


async def handle_metrics(request: web.Request) -> web.Response:
    body = request.app[SERVICE_KEY].metrics.render()
    return web.Response(body=body, headers={"Content-Type": CONTENT_TYPE})


async def handle_history(request: web.Request) -> web.Response:
    """Proxy a range query for one endpoint gauge to Prometheus."""
    service = request.app[SERVICE_KEY]
    namespace = service.config.metrics.namespace

    endpoint = request.query.get("endpoint")
    if not endpoint:
        return _json_error(400, "Endpoint parameter is required")

    metric = request.query.get("metric", f"{namespace}_block_height")
    allowed = {f"{namespace}_block_height", f"{namespace}_response_time_ms", f"{namespace}_status"}
    if metric not in allowed:
        return _json_error(400, f"Unknown metric: {metric}")

    time_range = request.query.get("timeRange", "1h")
    try:
        payload = await service.timeseries.query(endpoint, metric, time_range)
    except ValueError as exc:
        return _json_error(400, str(exc))
    except TimeSeriesQueryError as exc:
        logger.warning("Historical query failed", extra={"endpoint_url": endpoint, "error": str(exc)})
        return _json_error(502, "Failed to fetch historical data")
    return web.json_response(dict(payload))


async def handle_history_series(request: web.Request) -> web.Response:
    """Chart points for one endpoint, merged from the latency and status gauges."""
    service = request.app[SERVICE_KEY]
    endpoint = request.query.get("endpoint")
    if not endpoint:
        return _json_error(400, "Endpoint parameter is required")

    time_range = request.query.get("timeRange", "1h")
    try:
        points = await service.timeseries.latency_series(endpoint, service.config.metrics.namespace, time_range)
    except ValueError as exc:
        return _json_error(400, str(exc))
    except TimeSeriesQueryError as exc:
        logger.warning("Historical series query failed", extra={"endpoint_url": endpoint, "error": str(exc)})
        return _json_error(502, "Failed to fetch historical data")
    return web.json_response([_point_to_dict(point) for point in points])


async def handle_local_history(request: web.Request) -> web.Response:
    service = request.app[SERVICE_KEY]
    endpoint = request.query.get("endpoint")
    if not endpoint:
        return _json_error(400, "Endpoint parameter is required")
    method = request.query.get("method", service.method)
    points = service.query.get_history_series(method, endpoint, _time_range_ms(request))
    return web.json_response([_point_to_dict(point) for point in points])


async def handle_local_errors(request: web.Request) -> web.Response:
    service = request.app[SERVICE_KEY]
    endpoint = request.query.get("endpoint")
    if not endpoint:
        return _json_error(400, "Endpoint parameter is required")
    method = request.query.get("method", service.method)
    entries = service.query.get_error_log(method, endpoint, _time_range_ms(request))
    return web.json_response([_entry_to_dict(entry) for entry in entries])


async def handle_local_metrics(request: web.Request) -> web.Response:
    service = request.app[SERVICE_KEY]
    method = request.query.get("method", service.method)
    metrics = service.query.compute_metrics(method, _time_range_ms(request))
    return web.json_response(_metrics_to_dict(metrics))


async def handle_local_status_history(request: web.Request) -> web.Response:
    service = request.app[SERVICE_KEY]
    method = request.query.get("method", service.method)
    endpoint = request.query.get("endpoint")
    if endpoint:
        window = service.query.get_status_history(method, endpoint)
        return web.json_response([category.value for category in window])
    return web.json_response(
        {
            registered.url: [category.value for category in service.query.get_status_history(method, registered.url)]
            for registered in service.registry
        }
    )


async def handle_export(request: web.Request) -> web.Response:
    document = await request.app[SERVICE_KEY].query.export_all()
    return web.json_response(document.to_json_dict())


async def handle_import(request: web.Request) -> web.Response:
    service = request.app[SERVICE_KEY]
    body = await _read_json(request)
    if not isinstance(body, Mapping):
        return _json_error(400, "Import data must be a JSON object")

    try:
        document = await service.query.import_all(body)  # pyright: ignore[reportUnknownArgumentType]  # JSON boundary
    except ImportFormatError as exc:
        return _json_error(400, str(exc))
    except StorageError as exc:
        logger.exception("Failed to persist imported history", extra={"error": str(exc)})
        return _json_error(500, "Failed to persist imported history")

    return web.json_response(
        {
            "status": "ok",
            "version": document.version,
            "methods": sorted(document.history_data),
        }
    )


async def handle_set_method(request: web.Request) -> web.Response:
    service = request.app[SERVICE_KEY]
    body = await _read_json(request)
    method = body.get("method") if isinstance(body, Mapping) else None  # pyright: ignore[reportUnknownMemberType, reportUnknownVariableType]  # JSON boundary
    if not isinstance(method, str) or not method.strip():
        return _json_error(400, "Field 'method' is required")

    await service.change_method(method.strip())
    return web.json_response({"method": service.method, "dataSource": service.data_source.value})


async def handle_toggle_data_source(request: web.Request) -> web.Response:
    service = request.app[SERVICE_KEY]
    try:
        data_source = await service.toggle_data_source()
    except ValueError as exc:
        return _json_error(409, str(exc))
    return web.json_response({"dataSource": data_source.value, "method": service.method})


async def handle_refresh_interval(request: web.Request) -> web.Response:
    service = request.app[SERVICE_KEY]
    body = await _read_json(request)
    interval = body.get("intervalMs") if isinstance(body, Mapping) else None  # pyright: ignore[reportUnknownMemberType, reportUnknownVariableType]  # JSON boundary
    if isinstance(interval, bool) or not isinstance(interval, int | float) or interval <= 0:
        return _json_error(400, "Field 'intervalMs' must be a positive number")

    await service.update_refresh_interval(float(interval))
    return web.json_response({"intervalMs": service.coordinator_interval_ms})


def create_app(service: MonitorService) -> web.Application:
    """Build the aiohttp application bound to a monitor service."""
    app = web.Application(client_max_size=MAX_IMPORT_BYTES)
    app[SERVICE_KEY] = service
    _ = app.add_routes(
        [
            web.get("/api", handle_index),
            web.get("/api/status", handle_status),
            web.get("/api/history", handle_history),
            web.get("/api/history/series", handle_history_series),
            web.get("/metrics", handle_metrics),
            web.get("/api/local/history", handle_local_history),
            web.get("/api/local/errors", handle_local_errors),
            web.get("/api/local/metrics", handle_local_metrics),
            web.get("/api/local/status-history", handle_local_status_history),
            web.get("/api/local/export", handle_export),
            web.post("/api/local/import", handle_import),
            web.post("/api/method", handle_set_method),
            web.post("/api/data-source", handle_toggle_data_source),
            web.post("/api/refresh-interval", handle_refresh_interval),
        ]
    )
    return app


class ApiServer:
    """Run the HTTP API on a TCP site."""

    def __init__(self, service: MonitorService, *, host: str = "0.0.0.0", port: int = 3000) -> None:  # noqa: S104
        self.service: MonitorService = service
        self.host: str = host
        self.port: int = port
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None

    async def start(self) -> None:
        if self._runner is not None:
            return
        self._runner = web.AppRunner(create_app(self.service))
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, self.host, self.port)
        await self._site.start()
        logger.info("HTTP API listening", extra={"host": self.host, "port": self.port})

    async def stop(self) -> None:
        if self._site is not None:
            await self._site.stop()
            self._site = None
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
