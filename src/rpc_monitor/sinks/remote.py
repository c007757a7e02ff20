"""Remote status source following another monitor's ``/api/status``.

In remote mode no endpoint is probed locally. The source fetches the peer's
latest results on a fixed cadence, rebuilds a snapshot from them, and feeds
it to the same observers the local coordinator would.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import replace
from datetime import UTC, datetime
from typing import Final

from rpc_monitor.core.methods import DEFAULT_METHOD
from rpc_monitor.core.ranking import rank_results
from rpc_monitor.types import HTTPClient, ProbeResult, Snapshot, SnapshotObserver

__all__ = ["DEFAULT_REMOTE_POLL_INTERVAL_MS", "RemoteStatusError", "RemoteStatusSource"]

DEFAULT_REMOTE_POLL_INTERVAL_MS: Final[int] = 5_000
DEFAULT_REMOTE_TIMEOUT_SECONDS: Final[float] = 10.0

type Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(UTC)


class RemoteStatusError(Exception):
    """Raised when the remote status payload cannot be fetched or decoded."""


class RemoteStatusSource:
    """Poll a remote monitor and publish its results as local snapshots."""

    def __init__(
        self,
        client: HTTPClient,
        base_url: str,
        *,
        interval_ms: float = DEFAULT_REMOTE_POLL_INTERVAL_MS,
        timeout_seconds: float = DEFAULT_REMOTE_TIMEOUT_SECONDS,
        observers: Iterable[SnapshotObserver] = (),
        clock: Clock = _utc_now,
    ) -> None:
        if interval_ms <= 0:
            msg = "interval_ms must be greater than zero"
            raise ValueError(msg)

        self._client: HTTPClient = client
        self.base_url: str = base_url.rstrip("/")
        self.interval_ms: float = interval_ms
        self.timeout_seconds: float = timeout_seconds

        self._observers: list[SnapshotObserver] = list(observers)
        self._clock: Clock = clock
        self._latest: Snapshot | None = None
        self._loop_task: asyncio.Task[None] | None = None
        self._logger: logging.Logger = logging.getLogger(__name__)

    @property
    def status_url(self) -> str:
        return f"{self.base_url}/api/status"

    @property
    def is_running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    def get_latest(self) -> Snapshot | None:
        return self._latest

    def add_observer(self, observer: SnapshotObserver) -> None:
        self._observers.append(observer)

    async def fetch(self) -> Snapshot:
        """Fetch the remote results once and publish them.

        Raises:
            RemoteStatusError: If the remote is unreachable or the payload is invalid
        """
        try:
            response = await self._client.get(self.status_url, timeout=self.timeout_seconds)
        except TimeoutError as e:
            msg = f"Remote status request timed out after {self.timeout_seconds}s"
            raise RemoteStatusError(msg) from e
        except Exception as e:
            msg = f"Remote status request failed: {e}"
            raise RemoteStatusError(msg) from e

        if not response.ok:
            msg = f"Remote status returned HTTP {response.status}"
            raise RemoteStatusError(msg)

        snapshot = self._to_snapshot(response.body)
        self._latest = snapshot
        for observer in tuple(self._observers):
            try:
                await observer.on_snapshot(snapshot)
            except Exception as exc:
                self._logger.exception(
                    "Snapshot observer failed",
                    extra={"observer": type(observer).__name__, "error": str(exc)},
                )
        return snapshot

    async def start(self) -> None:
        """Start polling, fetching immediately; replaces any running loop."""
        await self.stop()
        self._loop_task = asyncio.create_task(self._run_loop(), name="remote-status-loop")
        self._logger.info(
            "Remote polling started",
            extra={"remote_url": self.base_url, "interval_ms": self.interval_ms},
        )

    async def stop(self) -> None:
        task = self._loop_task
        if task is None:
            return
        self._loop_task = None
        _ = task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        self._logger.info("Remote polling stopped", extra={"remote_url": self.base_url})

    async def _run_loop(self) -> None:
        while True:
            try:
                _ = await self.fetch()
            except RemoteStatusError as exc:
                self._logger.warning("Remote status fetch failed", extra={"error": str(exc)})
            await asyncio.sleep(self.interval_ms / 1000.0)

    def _to_snapshot(self, body: object) -> Snapshot:
        if not isinstance(body, Sequence) or isinstance(body, str | bytes):
            msg = "Remote status payload must be a JSON array"
            raise RemoteStatusError(msg)

        results: list[ProbeResult] = []
        for item in body:  # pyright: ignore[reportUnknownVariableType]  # JSON boundary
            if not isinstance(item, Mapping):
                msg = "Remote status entries must be JSON objects"
                raise RemoteStatusError(msg)
            try:
                result = ProbeResult.from_dict(item)  # pyright: ignore[reportUnknownArgumentType]  # JSON boundary
            except (KeyError, ValueError) as e:
                msg = f"Invalid remote status entry: {e}"
                raise RemoteStatusError(msg) from e
            results.append(result if result.method else replace(result, method=DEFAULT_METHOD))

        method = results[0].method if results else DEFAULT_METHOD
        return Snapshot(results=rank_results(results), method=method, taken_at=self._clock())
