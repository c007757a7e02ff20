"""Integration tests for the HTTP API routes.

The aiohttp application is served by aiohttp's test server around a real
MonitorService whose prober and outbound HTTP client are scripted.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from datetime import UTC, datetime

import pytest
from aiohttp import web
from aiohttp.test_utils import TestClient, TestServer

from rpc_monitor.app.server import create_app
from rpc_monitor.app.service import MonitorService
from rpc_monitor.core.config import MainConfig
from rpc_monitor.types import Response
from tests.fixtures.fakes import URL_A, URL_B, FakeHTTPClient, FakeProber, FixedClock, FlakyStore

pytestmark = pytest.mark.integration

PROMETHEUS = "http://prometheus.test:9090"
REMOTE = "https://peer.example.org"

type ApiClient = TestClient[web.Request, web.Application]


def _matrix(*values: list[object]) -> dict[str, object]:
    return {"status": "success", "data": {"resultType": "matrix", "result": [{"metric": {}, "values": list(values)}]}}


@pytest.fixture
def prober() -> FakeProber:
    return FakeProber({URL_A: 100, URL_B: 90}, failing=frozenset({URL_B}), clock=FixedClock(datetime.now(UTC)))


@pytest.fixture
def store() -> FlakyStore:
    return FlakyStore()


@pytest.fixture
def service(
    make_config: Callable[..., MainConfig], http_client: FakeHTTPClient, prober: FakeProber, store: FlakyStore
) -> MonitorService:
    config = make_config(
        monitor={"interval_ms": 60_000},
        metrics={"prometheus_url": PROMETHEUS},
    )
    return MonitorService(config, http_client, storage=store, prober=prober)


@pytest.fixture
async def client(service: MonitorService) -> AsyncIterator[ApiClient]:
    async with TestClient(TestServer(create_app(service))) as test_client:
        yield test_client
    await service.shutdown()


class TestStatusRoutes:
    """Test liveness, latest snapshot, and gauge exposition."""

    async def test_index(self, client: ApiClient) -> None:
        response = await client.get("/api")

        assert response.status == 200
        assert (await response.json())["status"] == "ok"

    async def test_status_empty_before_first_cycle(self, client: ApiClient) -> None:
        response = await client.get("/api/status")

        assert await response.json() == []

    async def test_status_after_cycle(self, client: ApiClient, service: MonitorService) -> None:
        _ = await service.run_once()

        body = await (await client.get("/api/status")).json()

        assert [item["endpoint"]["url"] for item in body] == [URL_A, URL_B]
        assert body[0]["blockHeight"] == 100
        assert body[1]["status"] == "error"
        assert "blockHeight" not in body[1]

    async def test_metrics_exposition(self, client: ApiClient, service: MonitorService) -> None:
        _ = await service.run_once()

        response = await client.get("/metrics")
        text = await response.text()

        assert response.status == 200
        assert response.headers["Content-Type"].startswith("text/plain")
        assert f'polkadot_rpc_block_height{{endpoint="{URL_A}",name="Alpha"}} 100.0' in text
        assert f'polkadot_rpc_status{{endpoint="{URL_B}",name="Bravo"}} 0.0' in text


class TestHistoryProxy:
    """Test the Prometheus range query route."""

    async def test_requires_endpoint(self, client: ApiClient) -> None:
        response = await client.get("/api/history")

        assert response.status == 400

    async def test_unknown_metric(self, client: ApiClient) -> None:
        response = await client.get("/api/history", params={"endpoint": URL_A, "metric": "node_cpu"})

        assert response.status == 400
        assert "Unknown metric" in (await response.json())["error"]

    async def test_invalid_range(self, client: ApiClient) -> None:
        response = await client.get("/api/history", params={"endpoint": URL_A, "timeRange": "forever"})

        assert response.status == 400

    async def test_passes_backend_payload(self, client: ApiClient, http_client: FakeHTTPClient) -> None:
        payload = {"status": "success", "data": {"resultType": "matrix", "result": []}}
        http_client.queue_get(f"{PROMETHEUS}/api/v1/query", Response(status=200, body=payload, headers={}))

        response = await client.get(
            "/api/history",
            params={"endpoint": URL_A, "metric": "polkadot_rpc_response_time_ms", "timeRange": "6h"},
        )

        assert response.status == 200
        assert await response.json() == payload
        assert http_client.gets[0][1] == {"query": f'polkadot_rpc_response_time_ms{{endpoint="{URL_A}"}}[6h]'}

    async def test_backend_failure_is_bad_gateway(self, client: ApiClient, http_client: FakeHTTPClient) -> None:
        http_client.queue_get(f"{PROMETHEUS}/api/v1/query", Response(status=500, body=None, headers={}))

        response = await client.get("/api/history", params={"endpoint": URL_A})

        assert response.status == 502


class TestHistorySeries:
    """Test chart points merged from the latency and status gauges."""

    async def test_merges_latency_with_status(self, client: ApiClient, http_client: FakeHTTPClient) -> None:
        latency = _matrix([1_700_000_000, "120"], [1_700_000_010, "130"])
        status = _matrix([1_700_000_000, "1"], [1_700_000_010, "0"])
        http_client.queue_get(
            f"{PROMETHEUS}/api/v1/query",
            Response(status=200, body=latency, headers={}),
            Response(status=200, body=status, headers={}),
        )

        response = await client.get("/api/history/series", params={"endpoint": URL_A, "timeRange": "15m"})
        body = await response.json()

        assert response.status == 200
        assert [(point["value"], point["error"]) for point in body] == [(120.0, False), (130.0, True)]
        assert [params["query"] for _, params, _ in http_client.gets if params is not None] == [
            f'polkadot_rpc_response_time_ms{{endpoint="{URL_A}"}}[15m]',
            f'polkadot_rpc_status{{endpoint="{URL_A}"}}[15m]',
        ]

    async def test_requires_endpoint(self, client: ApiClient) -> None:
        response = await client.get("/api/history/series")

        assert response.status == 400

    async def test_backend_failure_is_bad_gateway(self, client: ApiClient, http_client: FakeHTTPClient) -> None:
        http_client.queue_get(f"{PROMETHEUS}/api/v1/query", Response(status=503, body=None, headers={}))

        response = await client.get("/api/history/series", params={"endpoint": URL_A})

        assert response.status == 502


class TestLocalHistoryRoutes:
    """Test queries against the locally recorded history."""

    @pytest.fixture(autouse=True)
    async def two_cycles(self, service: MonitorService) -> None:
        _ = await service.run_once()
        _ = await service.run_once()

    async def test_history_series(self, client: ApiClient) -> None:
        body = await (await client.get("/api/local/history", params={"endpoint": URL_A, "timeRange": "1h"})).json()

        assert len(body) == 2
        assert body[0]["error"] is False
        assert set(body[0]) == {"time", "value", "error"}

    async def test_history_requires_endpoint(self, client: ApiClient) -> None:
        response = await client.get("/api/local/history")

        assert response.status == 400

    async def test_invalid_time_range(self, client: ApiClient) -> None:
        response = await client.get("/api/local/metrics", params={"timeRange": "2w"})

        assert response.status == 400
        assert "timeRange" in (await response.json())["error"]

    async def test_errors(self, client: ApiClient) -> None:
        body = await (await client.get("/api/local/errors", params={"endpoint": URL_B})).json()

        assert len(body) == 2
        assert body[0]["errorType"] == "error"
        assert body[0]["message"] == "HTTP error 503"

    async def test_errors_for_other_method_empty(self, client: ApiClient) -> None:
        response = await client.get("/api/local/errors", params={"endpoint": URL_B, "method": "eth_blockNumber"})

        assert await response.json() == []

    async def test_metrics(self, client: ApiClient) -> None:
        body = await (await client.get("/api/local/metrics")).json()

        assert body[URL_A]["uptime"] == 100
        assert body[URL_A]["dataPoints"] == 2
        assert body[URL_B]["uptime"] == 0
        assert body[URL_B]["avgLatency"] is None
        assert body[URL_B]["errorCount"] == 2

    async def test_status_history(self, client: ApiClient) -> None:
        everything = await (await client.get("/api/local/status-history")).json()
        single = await (await client.get("/api/local/status-history", params={"endpoint": URL_B})).json()

        assert set(everything) == {URL_A, URL_B}
        assert everything[URL_A][-2:] == ["success", "success"]
        assert single[-2:] == ["error", "error"]

    async def test_export_then_import(
        self, client: ApiClient, service: MonitorService, store: FlakyStore
    ) -> None:
        exported = await (await client.get("/api/local/export")).json()
        service.history.clear()
        writes_before = store.writes

        response = await client.post("/api/local/import", json=exported)

        assert response.status == 200
        assert await response.json() == {"status": "ok", "version": "1.0", "methods": ["chain_getBlock"]}
        assert len(service.history.latency_series("chain_getBlock", URL_A)) == 2
        assert store.writes == writes_before + 1

    @pytest.mark.parametrize(
        "body",
        [
            {"version": "1.0", "endpointHistory": {}},
            {"version": "9.0", "timestamp": "2026-01-01T00:00:00Z", "historyData": {}, "endpointHistory": {}},
        ],
    )
    async def test_import_malformed(self, client: ApiClient, body: dict[str, object]) -> None:
        response = await client.post("/api/local/import", json=body)

        assert response.status == 400

    async def test_import_requires_object(self, client: ApiClient) -> None:
        response = await client.post("/api/local/import", json=[1, 2])

        assert response.status == 400

    async def test_import_invalid_json(self, client: ApiClient) -> None:
        response = await client.post(
            "/api/local/import", data=b"{not json", headers={"Content-Type": "application/json"}
        )

        assert response.status == 400

    async def test_import_storage_failure(self, client: ApiClient, store: FlakyStore) -> None:
        exported = await (await client.get("/api/local/export")).json()
        store.failures = 2

        response = await client.post("/api/local/import", json=exported)

        assert response.status == 500


class TestOperatorRoutes:
    """Test method, data source, and refresh interval controls."""

    async def test_set_method(self, client: ApiClient, service: MonitorService) -> None:
        response = await client.post("/api/method", json={"method": " eth_blockNumber "})

        assert response.status == 200
        assert await response.json() == {"method": "eth_blockNumber", "dataSource": "local"}
        assert service.method == "eth_blockNumber"

    @pytest.mark.parametrize("body", [{}, {"method": ""}, {"method": 5}])
    async def test_set_method_requires_name(self, client: ApiClient, body: dict[str, object]) -> None:
        response = await client.post("/api/method", json=body)

        assert response.status == 400

    async def test_data_source_without_remote(self, client: ApiClient) -> None:
        response = await client.post("/api/data-source")

        assert response.status == 409

    async def test_data_source_toggles(
        self, make_config: Callable[..., MainConfig], http_client: FakeHTTPClient, prober: FakeProber
    ) -> None:
        http_client.queue_get(f"{REMOTE}/api/status", Response(status=200, body=[], headers={}))
        service = MonitorService(
            make_config(monitor={"remote_url": REMOTE}), http_client, storage=FlakyStore(), prober=prober
        )

        async with TestClient(TestServer(create_app(service))) as test_client:
            first = await (await test_client.post("/api/data-source")).json()
            second = await (await test_client.post("/api/data-source")).json()

        assert first == {"dataSource": "remote", "method": "chain_getBlock"}
        assert second == {"dataSource": "local", "method": "chain_getBlock"}

    async def test_refresh_interval(self, client: ApiClient, service: MonitorService) -> None:
        response = await client.post("/api/refresh-interval", json={"intervalMs": 2500})

        assert response.status == 200
        assert await response.json() == {"intervalMs": 2500}
        assert service.coordinator.interval_ms == 2500

    @pytest.mark.parametrize(
        "body", [{}, {"intervalMs": 0}, {"intervalMs": -5}, {"intervalMs": "fast"}, {"intervalMs": True}]
    )
    async def test_refresh_interval_invalid(self, client: ApiClient, body: dict[str, object]) -> None:
        response = await client.post("/api/refresh-interval", json=body)

        assert response.status == 400
