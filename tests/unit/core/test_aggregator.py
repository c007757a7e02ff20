"""Unit tests for the history aggregator.

Tests cover:
- Folding snapshots into status windows, latency series, and error logs
- Throttled persistence
- Capacity recovery by halving retention
- Loading, exporting, and importing history
"""

from __future__ import annotations

import json
import logging
from datetime import timedelta

import pytest

from rpc_monitor.core.aggregator import HistoryAggregator
from rpc_monitor.core.document import BlobKind, blob_key
from rpc_monitor.core.exceptions import ImportFormatError, PersistenceError
from rpc_monitor.core.history import HistoryStore
from rpc_monitor.core.storage import MemoryStore
from rpc_monitor.types import ErrorType, LatencyPoint, ProbeStatus, StatusCategory
from tests.fixtures.fakes import (
    NOW,
    URL_A,
    URL_B,
    URL_C,
    FakeMonotonic,
    FixedClock,
    FlakyStore,
    make_result,
    make_snapshot,
)

METHOD = "chain_getBlock"


@pytest.fixture
def store() -> FlakyStore:
    return FlakyStore()


@pytest.fixture
def aggregator(store: FlakyStore, history: HistoryStore, monotonic: FakeMonotonic) -> HistoryAggregator:
    return HistoryAggregator(store, history=history, namespace="test", monotonic=monotonic)


class TestIngest:
    """Test folding snapshots into history."""

    async def test_classifies_against_snapshot_maximum(self, aggregator: HistoryAggregator) -> None:
        snapshot = make_snapshot(
            make_result(URL_A, height=100),
            make_result(URL_B, height=97),
            make_result(URL_C, timeout=True, error="Request timed out after 5000ms", response_time=5000.0),
        )

        await aggregator.on_snapshot(snapshot)

        history = aggregator.history
        assert history.status_window(METHOD, URL_A)[-1] is StatusCategory.SUCCESS
        assert history.status_window(METHOD, URL_B)[-1] is StatusCategory.WARNING
        assert history.status_window(METHOD, URL_C)[-1] is StatusCategory.TIMEOUT

    async def test_latency_points_flag_failures(self, aggregator: HistoryAggregator) -> None:
        snapshot = make_snapshot(
            make_result(URL_A, response_time=42.0),
            make_result(URL_B, status=ProbeStatus.ERROR, error="HTTP error 502", response_time=7.0),
        )

        await aggregator.ingest(snapshot)

        assert aggregator.history.latency_series(METHOD, URL_A) == [LatencyPoint(NOW, 42.0, False)]
        assert aggregator.history.latency_series(METHOD, URL_B) == [LatencyPoint(NOW, 7.0, True)]

    async def test_error_entries(self, aggregator: HistoryAggregator) -> None:
        snapshot = make_snapshot(
            make_result(URL_A, timeout=True, error="Request timed out after 5000ms", response_time=5000.0),
            make_result(URL_B, status=ProbeStatus.ERROR, raw={"error": {"code": -32000}}),
        )

        await aggregator.ingest(snapshot)

        [timeout_entry] = aggregator.history.error_log(METHOD, URL_A)
        assert timeout_entry.error_type is ErrorType.TIMEOUT
        assert timeout_entry.message == "Request timed out after 5000ms"
        assert timeout_entry.response_time == 5000.0

        [error_entry] = aggregator.history.error_log(METHOD, URL_B)
        assert error_entry.error_type is ErrorType.ERROR
        assert error_entry.message == "Unknown error"
        assert error_entry.details == {"error": {"code": -32000}}

    async def test_successes_do_not_log_errors(self, aggregator: HistoryAggregator) -> None:
        await aggregator.ingest(make_snapshot(make_result(URL_A)))

        assert aggregator.history.error_log(METHOD, URL_A) == []

    async def test_history_is_keyed_by_result_method(self, aggregator: HistoryAggregator) -> None:
        await aggregator.ingest(make_snapshot(make_result(URL_A, method="eth_blockNumber"), method="eth_blockNumber"))

        assert aggregator.history.latency_series(METHOD, URL_A) == []
        assert len(aggregator.history.latency_series("eth_blockNumber", URL_A)) == 1

    async def test_points_stamped_at_ingest_time(self, aggregator: HistoryAggregator, clock: FixedClock) -> None:
        stale = make_result(URL_A, status=ProbeStatus.ERROR, error="HTTP error 502", timestamp=NOW - timedelta(hours=3))
        clock.advance(minutes=5)

        await aggregator.ingest(make_snapshot(stale))
        clock.advance(seconds=10)
        await aggregator.ingest(make_snapshot(stale))

        first, second = NOW + timedelta(minutes=5), NOW + timedelta(minutes=5, seconds=10)
        assert [point.time for point in aggregator.history.latency_series(METHOD, URL_A)] == [first, second]
        assert [entry.timestamp for entry in aggregator.history.error_log(METHOD, URL_A)] == [second, first]


class TestPersistence:
    """Test throttled and forced durable writes."""

    async def test_first_ingest_persists_immediately(self, aggregator: HistoryAggregator, store: FlakyStore) -> None:
        await aggregator.ingest(make_snapshot(make_result(URL_A)))

        assert store.writes == 1
        assert store.read(blob_key("test", BlobKind.LATENCY)) is not None
        assert store.read(blob_key("test", BlobKind.STATUS)) is not None
        assert store.read(blob_key("test", BlobKind.ERRORS)) is not None

    async def test_writes_throttled_within_interval(
        self, aggregator: HistoryAggregator, store: FlakyStore, monotonic: FakeMonotonic
    ) -> None:
        snapshot = make_snapshot(make_result(URL_A))
        await aggregator.ingest(snapshot)

        monotonic.advance(10)
        await aggregator.ingest(snapshot)
        assert store.writes == 1

        monotonic.advance(25)
        await aggregator.ingest(snapshot)
        assert store.writes == 2

    async def test_force_bypasses_throttle(self, aggregator: HistoryAggregator, store: FlakyStore) -> None:
        await aggregator.ingest(make_snapshot(make_result(URL_A)))

        assert await aggregator.persist() is False
        assert await aggregator.persist(force=True) is True
        assert store.writes == 2

    async def test_capacity_recovery_halves_retention(
        self, history: HistoryStore, monotonic: FakeMonotonic, caplog: pytest.LogCaptureFixture
    ) -> None:
        store = FlakyStore(failures=1)
        aggregator = HistoryAggregator(store, history=history, monotonic=monotonic)
        history.append_latency(METHOD, URL_A, LatencyPoint(NOW - timedelta(days=20), 10.0, False))
        history.append_latency(METHOD, URL_A, LatencyPoint(NOW - timedelta(days=1), 11.0, False))

        with caplog.at_level(logging.WARNING):
            assert await aggregator.persist(force=True) is True

        assert history.retention == timedelta(days=15)
        assert [point.value for point in history.latency_series(METHOD, URL_A)] == [11.0]
        assert store.attempts == 2
        assert store.writes == 1
        assert "halved history retention" in caplog.text

    async def test_second_capacity_failure_raises(self, history: HistoryStore, monotonic: FakeMonotonic) -> None:
        store = FlakyStore(failures=2)
        aggregator = HistoryAggregator(store, history=history, monotonic=monotonic)

        with pytest.raises(PersistenceError, match="even after pruning"):
            await aggregator.ingest(make_snapshot(make_result(URL_A)))

        # In-memory history is still updated
        assert len(history.latency_series(METHOD, URL_A)) == 1

    async def test_reduced_retention_stays_in_effect(
        self, history: HistoryStore, monotonic: FakeMonotonic, clock: FixedClock
    ) -> None:
        store = FlakyStore(failures=1)
        aggregator = HistoryAggregator(store, history=history, monotonic=monotonic)
        _ = await aggregator.persist(force=True)

        history.append_latency(METHOD, URL_A, LatencyPoint(NOW - timedelta(days=20), 1.0, False))

        assert history.retention == timedelta(days=15)
        assert history.latency_series(METHOD, URL_A) == []

    async def test_persistent_capacity_failure(self, clock: FixedClock, monotonic: FakeMonotonic) -> None:
        history = HistoryStore(retention=timedelta(days=30), clock=clock)
        store = FlakyStore(failures=10_000)
        aggregator = HistoryAggregator(store, history=history, monotonic=monotonic)
        reported = 0

        for _ in range(25):
            try:
                await aggregator.ingest(make_snapshot(make_result(URL_A)))
            except PersistenceError:
                reported += 1
            clock.advance(seconds=10)
            monotonic.advance(10)

        # One attempt and one retry every 30 seconds over 250 seconds
        assert reported == 9
        assert store.attempts == 18
        assert history.retention == timedelta(days=15)
        assert len(history.latency_series(METHOD, URL_A)) == 25


class TestLoadExportImport:
    """Test restoring, exporting, and importing history."""

    async def test_load_restores_persisted_history(
        self, aggregator: HistoryAggregator, store: FlakyStore, clock: FixedClock, monotonic: FakeMonotonic
    ) -> None:
        await aggregator.ingest(make_snapshot(make_result(URL_A, height=7)))

        fresh = HistoryAggregator(store, history=HistoryStore(clock=clock), namespace="test", monotonic=monotonic)
        await fresh.load()

        assert fresh.history.status_window(METHOD, URL_A)[-1] is StatusCategory.SUCCESS
        assert len(fresh.history.latency_series(METHOD, URL_A)) == 1

    async def test_load_prunes_expired_history(
        self, aggregator: HistoryAggregator, store: FlakyStore, clock: FixedClock, monotonic: FakeMonotonic
    ) -> None:
        await aggregator.ingest(make_snapshot(make_result(URL_A)))
        clock.advance(days=45)

        fresh = HistoryAggregator(store, history=HistoryStore(clock=clock), namespace="test", monotonic=monotonic)
        await fresh.load()

        assert fresh.history.latency_series(METHOD, URL_A) == []

    async def test_corrupt_store_starts_empty(self, clock: FixedClock, caplog: pytest.LogCaptureFixture) -> None:
        store = MemoryStore()
        store.write_many({blob_key("test", BlobKind.LATENCY): "{broken"})
        aggregator = HistoryAggregator(store, history=HistoryStore(clock=clock), namespace="test")

        with caplog.at_level(logging.WARNING):
            await aggregator.load()

        assert aggregator.history.methods() == ()
        assert "corrupt" in caplog.text

    async def test_export_then_import_into_fresh_aggregator(
        self, aggregator: HistoryAggregator, clock: FixedClock, monotonic: FakeMonotonic
    ) -> None:
        await aggregator.ingest(
            make_snapshot(make_result(URL_A), make_result(URL_B, status=ProbeStatus.ERROR, error="HTTP error 500"))
        )
        document = await aggregator.export_all()
        exported = json.dumps(document.to_json_dict())

        target_store = FlakyStore()
        target = HistoryAggregator(target_store, history=HistoryStore(clock=clock), monotonic=monotonic)
        imported = await target.import_all(exported)

        assert imported.version == "1.0"
        assert target.history.latency_series(METHOD, URL_A) == aggregator.history.latency_series(METHOD, URL_A)
        assert target.history.status_window(METHOD, URL_B) == aggregator.history.status_window(METHOD, URL_B)
        assert [entry.message for entry in target.history.error_log(METHOD, URL_B)] == ["HTTP error 500"]
        assert target_store.writes == 1

    async def test_malformed_import_leaves_history_untouched(
        self, aggregator: HistoryAggregator, store: FlakyStore
    ) -> None:
        await aggregator.ingest(make_snapshot(make_result(URL_A)))

        with pytest.raises(ImportFormatError):
            _ = await aggregator.import_all({"historyData": {}})

        assert len(aggregator.history.latency_series(METHOD, URL_A)) == 1
        assert store.writes == 1

    async def test_compute_metrics(self, aggregator: HistoryAggregator) -> None:
        await aggregator.ingest(make_snapshot(make_result(URL_A, response_time=30.0)))

        metrics = aggregator.compute_metrics(METHOD, 60_000)

        assert metrics[URL_A].avg_latency == 30.0
        assert metrics[URL_A].uptime == 100.0

    async def test_import_error_log_wire_names(self, aggregator: HistoryAggregator, store: FlakyStore) -> None:
        entry = {
            "timestamp": NOW.isoformat(),
            "errorType": "timeout",
            "message": "Request timed out after 5000ms",
            "responseTime": 5000,
            "details": {"code": -1, "data": ["busy"]},
        }
        document: dict[str, object] = {
            "version": "1.0",
            "timestamp": NOW.isoformat(),
            "historyData": {},
            "endpointHistory": {},
            "endpointErrors": {METHOD: {URL_A: [entry]}},
        }

        _ = await aggregator.import_all(document)

        [imported] = aggregator.history.error_log(METHOD, URL_A)
        assert imported.error_type is ErrorType.TIMEOUT
        assert imported.details == {"code": -1, "data": ["busy"]}
        persisted = json.loads(store.read(blob_key("test", BlobKind.ERRORS)) or "{}")
        assert persisted[METHOD][URL_A][0]["errorType"] == "timeout"
        assert persisted[METHOD][URL_A][0]["details"] == {"code": -1, "data": ["busy"]}
