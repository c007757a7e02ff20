"""Poll cycle coordinator.

A poll cycle probes every registered endpoint concurrently, waits for all of
them, ranks the results, publishes the snapshot as the latest one, and then
hands it to each observer in registration order. A snapshot is only visible
once complete; consumers never see a partially filled cycle.

The periodic loop runs cycles on a fixed start-to-start cadence. A cycle
that outlasts the interval delays the next one; cycles never overlap.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable, Iterable, Sequence
from datetime import UTC, datetime
from uuid import uuid4

from rpc_monitor.core.methods import DEFAULT_METHOD
from rpc_monitor.core.ranking import rank_results
from rpc_monitor.core.registry import EndpointRegistry
from rpc_monitor.types import Endpoint, Prober, ProbeResult, Snapshot, SnapshotObserver
from rpc_monitor.utils.logging import reset_cycle_id, set_cycle_id

__all__ = ["DEFAULT_INTERVAL_MS", "LOOP_TASK_NAME", "PollCycleCoordinator"]

DEFAULT_INTERVAL_MS = 10_000
DEFAULT_TIMEOUT_MS = 5_000
LOOP_TASK_NAME = "poll-loop"

type Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(UTC)


class PollCycleCoordinator:
    """Run poll cycles once or periodically and fan snapshots out to observers."""

    def __init__(
        self,
        registry: EndpointRegistry,
        prober: Prober,
        *,
        timeout_ms: float = DEFAULT_TIMEOUT_MS,
        method: str = DEFAULT_METHOD,
        observers: Iterable[SnapshotObserver] = (),
        clock: Clock = _utc_now,
    ) -> None:
        if timeout_ms <= 0:
            msg = "timeout_ms must be greater than zero"
            raise ValueError(msg)

        self.registry: EndpointRegistry = registry
        self.prober: Prober = prober
        self.timeout_ms: float = timeout_ms

        self._method: str = method
        self._observers: list[SnapshotObserver] = list(observers)
        self._clock: Clock = clock
        self._interval_ms: float = DEFAULT_INTERVAL_MS
        self._latest: Snapshot | None = None
        self._cycle_lock: asyncio.Lock = asyncio.Lock()
        self._lifecycle_lock: asyncio.Lock = asyncio.Lock()
        self._loop_task: asyncio.Task[None] | None = None
        self._logger: logging.Logger = logging.getLogger(__name__)

    @property
    def method(self) -> str:
        return self._method

    @property
    def interval_ms(self) -> float:
        return self._interval_ms

    @property
    def latest(self) -> Snapshot | None:
        """Most recent complete snapshot, None before the first cycle completes."""
        return self._latest

    @property
    def is_running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def observers(self) -> Sequence[SnapshotObserver]:
        return tuple(self._observers)

    def get_latest(self) -> Snapshot | None:
        return self._latest

    def add_observer(self, observer: SnapshotObserver) -> None:
        self._observers.append(observer)

    def remove_observer(self, observer: SnapshotObserver) -> None:
        with contextlib.suppress(ValueError):
            self._observers.remove(observer)

    async def run_cycle(self, method: str | None = None) -> Snapshot:
        """Run one poll cycle.

        Args:
            method: Probe method for this cycle, defaults to the current method

        Returns:
            The ranked snapshot, already published and delivered to observers
        """
        cycle_method = method or self._method
        async with self._cycle_lock:
            token = set_cycle_id(uuid4().hex[:12])
            try:
                endpoints = self.registry.snapshot()
                results = await self._probe_all(endpoints, cycle_method)
                snapshot = Snapshot(
                    results=rank_results(results),
                    method=cycle_method,
                    taken_at=self._clock(),
                )
                self._latest = snapshot

                failures = sum(1 for result in results if result.is_failure)
                self._logger.info(
                    "Poll cycle complete",
                    extra={"method": cycle_method, "endpoints": len(results), "failures": failures},
                )

                await self._notify(snapshot)
                return snapshot
            finally:
                reset_cycle_id(token)

    async def start(self, interval_ms: float | None = None, method: str | None = None) -> None:
        """Start the periodic loop, replacing any running one.

        The first cycle runs immediately. Start, stop, and reconfiguration
        are serialized, so at most one loop exists at any time.

        Args:
            interval_ms: Start-to-start interval, defaults to the current interval
            method: Probe method, defaults to the current method

        Raises:
            ValueError: If interval_ms is not positive
        """
        if interval_ms is not None and interval_ms <= 0:
            msg = "interval_ms must be greater than zero"
            raise ValueError(msg)

        async with self._lifecycle_lock:
            if interval_ms is not None:
                self._interval_ms = interval_ms
            if method:
                self._method = method
            await self._restart_locked()

    async def stop(self) -> None:
        """Cancel the periodic loop and wait for it to finish."""
        async with self._lifecycle_lock:
            await self._stop_locked()

    async def set_method(self, method: str) -> None:
        """Switch the probe method; a running loop restarts with the same interval.

        History recorded under the previous method is left untouched.
        """
        async with self._lifecycle_lock:
            previous = self._method
            self._method = method
            self._logger.info("Probe method changed", extra={"previous_method": previous, "method": method})
            if self.is_running:
                await self._restart_locked()

    async def set_interval(self, interval_ms: float) -> None:
        """Change the refresh interval; a running loop restarts immediately."""
        if interval_ms <= 0:
            msg = "interval_ms must be greater than zero"
            raise ValueError(msg)
        async with self._lifecycle_lock:
            self._interval_ms = interval_ms
            if self.is_running:
                await self._restart_locked()

    async def _restart_locked(self) -> None:
        await self._stop_locked()
        self._loop_task = asyncio.create_task(self._run_loop(), name=LOOP_TASK_NAME)
        self._logger.info(
            "Polling started",
            extra={"method": self._method, "interval_ms": self._interval_ms, "endpoints": len(self.registry)},
        )

    async def _stop_locked(self) -> None:
        task = self._loop_task
        if task is None:
            return
        self._loop_task = None
        _ = task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        self._logger.info("Polling stopped", extra={"method": self._method})

    async def _run_loop(self) -> None:
        loop = asyncio.get_running_loop()
        while True:
            started = loop.time()
            try:
                _ = await self.run_cycle(self._method)
            except Exception:
                self._logger.exception("Poll cycle failed", extra={"method": self._method})
            elapsed = loop.time() - started
            await asyncio.sleep(max(0.0, self._interval_ms / 1000.0 - elapsed))

    async def _probe_all(self, endpoints: Sequence[Endpoint], method: str) -> list[ProbeResult]:
        if not endpoints:
            return []
        async with asyncio.TaskGroup() as task_group:
            tasks = [
                task_group.create_task(
                    self.prober.probe(endpoint, self.timeout_ms, method),
                    name=f"probe-{endpoint.url}",
                )
                for endpoint in endpoints
            ]
        return [task.result() for task in tasks]

    async def _notify(self, snapshot: Snapshot) -> None:
        for observer in tuple(self._observers):
            try:
                await observer.on_snapshot(snapshot)
            except Exception as exc:
                self._logger.exception(
                    "Snapshot observer failed",
                    extra={"observer": type(observer).__name__, "error": str(exc)},
                )
