"""Probe executor issuing timed JSON-RPC calls against one endpoint.

A probe is one JSON-RPC round-trip, or two chained round-trips for methods
with a follow-up call, run under a single deadline. Every outcome, including
transport failures, JSON-RPC error envelopes, unexpected response shapes,
and deadline expiry, is returned as a ProbeResult; ``probe`` never raises.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Callable, Mapping
from datetime import UTC, datetime

from rpc_monitor.core.methods import MethodVariant, ResponseShapeError, build_request, resolve_method
from rpc_monitor.types import Endpoint, HTTPClient, ProbeResult, ProbeStatus

__all__ = ["ProbeExecutor", "format_timeout_message"]

type Clock = Callable[[], datetime]

DEFAULT_TIMEOUT_MS = 5000


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _format_ms(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


def format_timeout_message(timeout_ms: float) -> str:
    """Error message of a result whose deadline expired."""
    return f"Request timed out after {_format_ms(timeout_ms)}ms"


class _ProbeFailure(Exception):
    """Internal signal for an HTTP or JSON-RPC level failure of one hop."""

    def __init__(self, message: str, *, raw: object | None = None) -> None:
        super().__init__(message)
        self.message: str = message
        self.raw: object | None = raw


def _rpc_error_message(error: object) -> str:
    if isinstance(error, Mapping):
        message = error.get("message")  # pyright: ignore[reportUnknownMemberType, reportUnknownVariableType]  # JSON boundary
        if message:
            return str(message)  # pyright: ignore[reportUnknownArgumentType]  # JSON boundary
    try:
        return json.dumps(error)
    except (TypeError, ValueError):
        return str(error)


class ProbeExecutor:
    """Issue probes through a shared HTTP client.

    Example:
        >>> async with AIOHTTPClient() as client:
        ...     executor = ProbeExecutor(client)
        ...     result = await executor.probe(endpoint, 5000, "chain_getBlock")
    """

    def __init__(self, client: HTTPClient, *, clock: Clock = _utc_now) -> None:
        self._client: HTTPClient = client
        self._clock: Clock = clock
        self._logger: logging.Logger = logging.getLogger(__name__)

    async def probe(
        self,
        endpoint: Endpoint,
        timeout_ms: float = DEFAULT_TIMEOUT_MS,
        method: str = "chain_getBlock",
    ) -> ProbeResult:
        """Probe one endpoint with the given method under one deadline.

        Args:
            endpoint: Endpoint to probe
            timeout_ms: Deadline for the whole probe, both hops included
            method: JSON-RPC method name selecting the probe variant

        Returns:
            Normalized probe result
        """
        variant = resolve_method(method)
        start = time.perf_counter()

        try:
            async with asyncio.timeout(timeout_ms / 1000.0):
                height, raw = await self._execute(endpoint.url, variant)
        except TimeoutError:
            self._logger.debug(
                "Probe timed out",
                extra={"endpoint_url": endpoint.url, "method": method, "timeout_ms": timeout_ms},
            )
            return self._error_result(
                endpoint,
                method,
                error=format_timeout_message(timeout_ms),
                response_time=float(timeout_ms),
                timeout=True,
            )
        except _ProbeFailure as failure:
            return self._error_result(
                endpoint,
                method,
                error=failure.message,
                response_time=self._elapsed_ms(start),
                raw=failure.raw,
            )
        except ResponseShapeError as exc:
            return self._error_result(
                endpoint,
                method,
                error=f"Unexpected response for {method}: {exc}",
                response_time=self._elapsed_ms(start),
            )
        except Exception as exc:
            # Transport failures: connection refused, DNS, malformed URL
            return self._error_result(
                endpoint,
                method,
                error=str(exc) or type(exc).__name__,
                response_time=self._elapsed_ms(start),
                raw=repr(exc),
            )

        return ProbeResult(
            endpoint=endpoint,
            status=ProbeStatus.SUCCESS,
            response_time=self._elapsed_ms(start),
            timestamp=self._clock(),
            method=method,
            block_height=height,
            raw=raw,
        )

    async def _execute(self, url: str, variant: MethodVariant) -> tuple[int | None, object]:
        result, envelope = await self._call(url, build_request(variant.name), second_hop=False, method=variant.name)

        if variant.follow_up is None:
            return variant.extract_height(result), envelope

        params = variant.follow_up.build_params(result)
        follow_result, follow_envelope = await self._call(
            url,
            build_request(variant.follow_up.method, params, request_id=2),
            second_hop=True,
            method=variant.name,
        )
        return variant.extract_height(follow_result), (envelope, follow_envelope)

    async def _call(
        self,
        url: str,
        payload: Mapping[str, object],
        *,
        second_hop: bool,
        method: str,
    ) -> tuple[object, Mapping[str, object]]:
        response = await self._client.post(url, payload)

        if not response.ok:
            suffix = " on second call" if second_hop else ""
            raise _ProbeFailure(f"HTTP error {response.status}{suffix}", raw=response.body)

        body = response.body
        if not isinstance(body, Mapping):
            msg = "response body is not a JSON-RPC object"
            raise ResponseShapeError(msg)
        envelope: Mapping[str, object] = body  # pyright: ignore[reportUnknownVariableType]  # JSON boundary

        error = envelope.get("error")
        if error is not None:
            message = _rpc_error_message(error)
            if second_hop:
                message = f"Second call error: {message}"
            raise _ProbeFailure(message, raw=envelope)

        if "result" not in envelope:
            msg = f"{method} response has no result field"
            raise ResponseShapeError(msg)
        return envelope["result"], envelope

    def _error_result(
        self,
        endpoint: Endpoint,
        method: str,
        *,
        error: str,
        response_time: float,
        timeout: bool = False,
        raw: object | None = None,
    ) -> ProbeResult:
        if not timeout:
            self._logger.debug(
                "Probe failed",
                extra={"endpoint_url": endpoint.url, "method": method, "error": error},
            )
        return ProbeResult(
            endpoint=endpoint,
            status=ProbeStatus.ERROR,
            response_time=response_time,
            timestamp=self._clock(),
            method=method,
            timeout=timeout,
            error=error,
            raw=raw,
        )

    @staticmethod
    def _elapsed_ms(start: float) -> float:
        return (time.perf_counter() - start) * 1000.0
