"""History and metrics aggregator.

The aggregator observes published snapshots, classifies every result against
the snapshot's maximum height, and folds it into the history store. The
in-memory store is updated every cycle; the durable copy is written at most
once per persist interval.

When the durable store runs out of space, the retention window drops to half
of the configured window, history older than the new cutoff is pruned, and
the write is retried once. The reduced window stays in effect for the rest
of the run; repeated failures never shrink it further. A failed attempt
still counts against the persist interval.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Mapping
from datetime import timedelta
from typing import Final, override

from rpc_monitor.core.classifier import classify, max_observed_height
from rpc_monitor.core.document import (
    BlobKind,
    HistoryDocument,
    apply_document,
    blob_key,
    build_document,
    decode_blobs,
    encode_blobs,
    parse_document,
)
from rpc_monitor.core.exceptions import ImportFormatError, PersistenceError, StorageCapacityError
from rpc_monitor.core.history import HistoryStore
from rpc_monitor.types import (
    EndpointMetrics,
    ErrorEntry,
    ErrorType,
    LatencyPoint,
    ProbeResult,
    Snapshot,
    SnapshotObserver,
    StorageBackend,
)

__all__ = ["DEFAULT_NAMESPACE", "DEFAULT_PERSIST_INTERVAL_SECONDS", "HistoryAggregator"]

DEFAULT_NAMESPACE: Final[str] = "rpc-monitor"
DEFAULT_PERSIST_INTERVAL_SECONDS: Final[float] = 30.0
UNKNOWN_ERROR_MESSAGE: Final[str] = "Unknown error"

type MonotonicClock = Callable[[], float]


class HistoryAggregator(SnapshotObserver):
    """Fold snapshots into history and keep the durable copy current.

    Ingest, persist, export and import serialize on one lock, so an export
    never observes a half-applied snapshot.
    """

    def __init__(
        self,
        storage: StorageBackend,
        *,
        history: HistoryStore | None = None,
        namespace: str = DEFAULT_NAMESPACE,
        persist_interval_seconds: float = DEFAULT_PERSIST_INTERVAL_SECONDS,
        monotonic: MonotonicClock = time.monotonic,
    ) -> None:
        """Initialize the aggregator.

        Args:
            storage: Durable blob store
            history: History store to fold snapshots into (new empty store if None)
            namespace: Prefix of the persisted blob keys
            persist_interval_seconds: Minimum time between non-forced writes
            monotonic: Monotonic clock in seconds used for throttling
        """
        self.storage: StorageBackend = storage
        self.history: HistoryStore = history if history is not None else HistoryStore()
        self.namespace: str = namespace
        self.persist_interval_seconds: float = persist_interval_seconds

        self._monotonic: MonotonicClock = monotonic
        self._base_retention: timedelta = self.history.retention
        self._last_persist: float | None = None
        self._lock: asyncio.Lock = asyncio.Lock()
        self._logger: logging.Logger = logging.getLogger(__name__)

    @override
    async def on_snapshot(self, snapshot: Snapshot) -> None:
        await self.ingest(snapshot)

    async def ingest(self, snapshot: Snapshot) -> None:
        """Record every result of a snapshot, then persist (throttled).

        Raises:
            PersistenceError: If the durable write fails after capacity recovery
        """
        async with self._lock:
            max_height = max_observed_height(snapshot.results)
            for result in snapshot.results:
                self._record(result, max_height)
            _ = await self._persist_locked(force=False)

    async def persist(self, *, force: bool = False) -> bool:
        """Write the history to durable storage.

        Args:
            force: Write even if the persist interval has not elapsed

        Returns:
            True if a write happened, False if it was throttled

        Raises:
            PersistenceError: If the durable write fails after capacity recovery
        """
        async with self._lock:
            return await self._persist_locked(force=force)

    async def load(self) -> None:
        """Restore persisted history, pruned to the retention window.

        A corrupt store is logged and leaves the in-memory history empty.
        """
        async with self._lock:
            keys = {kind: blob_key(self.namespace, kind) for kind in BlobKind}
            blobs = await asyncio.to_thread(self._read_blobs, keys)
            try:
                decode_blobs(self.history, blobs)
            except ImportFormatError:
                self._logger.warning(
                    "Persisted history is corrupt, starting with empty history",
                    exc_info=True,
                    extra={"namespace": self.namespace},
                )
                self.history.clear()
                return

            removed = self.history.prune_expired()
            self._logger.info(
                "Loaded persisted history",
                extra={"methods": list(self.history.methods()), "pruned": removed},
            )

    def compute_metrics(self, method: str, time_range_ms: float) -> dict[str, EndpointMetrics]:
        return self.history.compute_metrics(method, time_range_ms)

    async def export_all(self) -> HistoryDocument:
        async with self._lock:
            return build_document(self.history, self.history.now())

    async def import_all(self, data: str | bytes | Mapping[str, object]) -> HistoryDocument:
        """Merge an export document into history and force a persist.

        Entries of the document replace same-keyed (method, url) entries;
        other keys are kept.

        Raises:
            ImportFormatError: If the document is malformed
            PersistenceError: If the durable write fails after capacity recovery
        """
        document = parse_document(data)
        async with self._lock:
            apply_document(self.history, document)
            _ = await self._persist_locked(force=True)
        self._logger.info(
            "Imported history",
            extra={"methods": sorted(document.history_data), "version": document.version},
        )
        return document

    def _record(self, result: ProbeResult, max_height: int) -> None:
        method = result.method
        url = result.endpoint.url
        # Ingest time, not probe time
        now = self.history.now()

        self.history.push_status(method, url, classify(result, max_height))
        self.history.append_latency(
            method,
            url,
            LatencyPoint(time=now, value=result.response_time, error=result.is_failure),
        )
        if result.is_failure:
            self.history.append_error(
                method,
                url,
                ErrorEntry(
                    timestamp=now,
                    error_type=ErrorType.TIMEOUT if result.timeout else ErrorType.ERROR,
                    message=result.error or UNKNOWN_ERROR_MESSAGE,
                    response_time=result.response_time,
                    details=result.raw,
                ),
            )

    async def _persist_locked(self, *, force: bool) -> bool:
        now = self._monotonic()
        if (
            not force
            and self._last_persist is not None
            and now - self._last_persist < self.persist_interval_seconds
        ):
            return False

        self._last_persist = now
        try:
            await self._write()
        except StorageCapacityError as first:
            self._recover_capacity(first)
            try:
                await self._write()
            except StorageCapacityError as second:
                msg = f"History does not fit in storage even after pruning: {second}"
                raise PersistenceError(msg) from second

        return True

    def _recover_capacity(self, error: StorageCapacityError) -> None:
        self.history.retention = min(self.history.retention, self._base_retention / 2)
        removed = self.history.prune_expired()
        self._logger.warning(
            "Storage full, halved history retention",
            extra={
                "retention_days": self.history.retention.total_seconds() / 86400,
                "pruned": removed,
                "required_bytes": error.required_bytes,
                "quota_bytes": error.quota_bytes,
            },
        )

    async def _write(self) -> None:
        blobs = {blob_key(self.namespace, kind): blob for kind, blob in encode_blobs(self.history).items()}
        await asyncio.to_thread(self.storage.write_many, blobs)

    def _read_blobs(self, keys: Mapping[BlobKind, str]) -> dict[BlobKind, str | None]:
        return {kind: self.storage.read(key) for kind, key in keys.items()}
