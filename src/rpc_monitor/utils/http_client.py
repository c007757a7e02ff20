"""HTTP client abstraction for JSON-RPC probes and backend queries.

This module provides the aiohttp-backed implementation of the HTTPClient
protocol. It owns one pooled session per client, decodes JSON bodies
leniently (any content type), and maps aiohttp's URL errors to ValueError.
Deadlines are normally enforced by the caller with ``asyncio.timeout`` so a
single deadline can span several requests.
"""

import asyncio
import json
import logging
from collections.abc import Mapping
from typing import Self

import aiohttp

from rpc_monitor.types.models import Response

_JSON_HEADERS = {"Content-Type": "application/json"}


class AIOHTTPClient:
    """Async HTTP client built on a shared aiohttp session.

    Example:
        >>> async with AIOHTTPClient() as client:
        ...     response = await client.post(
        ...         url="https://rpc.example.com",
        ...         payload={"jsonrpc": "2.0", "id": 1, "method": "chain_getBlock", "params": []},
        ...     )
    """

    def __init__(
        self,
        *,
        default_timeout_seconds: float | None = None,
        connection_limit: int = 100,
    ) -> None:
        """Initialize HTTP client.

        Args:
            default_timeout_seconds: Session-wide total timeout (default: none, callers set deadlines)
            connection_limit: Maximum simultaneous connections in the pool (default: 100)
        """
        self._default_timeout_seconds: float | None = default_timeout_seconds
        self._connection_limit: int = connection_limit
        self._session: aiohttp.ClientSession | None = None
        self._logger: logging.Logger = logging.getLogger(__name__)

    async def __aenter__(self) -> Self:
        """Open the pooled session.

        Returns:
            The client, ready for requests
        """
        timeout = aiohttp.ClientTimeout(total=self._default_timeout_seconds)
        connector = aiohttp.TCPConnector(limit=self._connection_limit)
        self._session = aiohttp.ClientSession(
            timeout=timeout,
            connector=connector,
            json_serialize=json.dumps,
        )
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        """Exit async context manager and cleanup resources."""
        if self._session is not None:
            await self._session.close()
            self._session = None

    def _require_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            msg = "HTTP client session not initialized. Use 'async with' context manager."
            raise RuntimeError(msg)
        return self._session

    async def post(
        self,
        url: str,
        payload: Mapping[str, object],
        *,
        timeout: float | None = None,
    ) -> Response:
        """Send HTTP POST request with a JSON body.

        Args:
            url: JSON-RPC endpoint or other target URL
            payload: JSON-RPC request object, sent as the JSON body
            timeout: Request timeout in seconds (keyword-only, None for no local deadline)

        Returns:
            HTTP response with status, decoded body, and headers

        Raises:
            TimeoutError: If the deadline expires before the body is read
            ValueError: If the URL cannot be parsed
            aiohttp.ClientError: On connection, DNS, or protocol failures
        """
        session = self._require_session()
        self._logger.debug("POST %s", url)

        try:
            async with asyncio.timeout(timeout):
                async with session.post(url, json=payload, headers=_JSON_HEADERS) as response:
                    return await self._read_response(response)
        except TimeoutError:
            self._logger.debug("POST to %s timed out", url)
            raise
        except aiohttp.InvalidURL as exc:
            self._logger.error("Cannot parse URL %s", url)
            raise ValueError(f"Malformed URL: {url}") from exc

    async def get(
        self,
        url: str,
        *,
        params: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> Response:
        """Send HTTP GET request.

        Args:
            url: Target URL for the GET request
            params: Query string parameters
            timeout: Request timeout in seconds (keyword-only)

        Returns:
            HTTP response with status, decoded body, and headers

        Raises:
            TimeoutError: If the deadline expires before the body is read
            ValueError: If the URL cannot be parsed
            aiohttp.ClientError: On connection, DNS, or protocol failures
        """
        session = self._require_session()
        self._logger.debug("GET %s", url)

        try:
            async with asyncio.timeout(timeout):
                async with session.get(url, params=params) as response:
                    return await self._read_response(response)
        except TimeoutError:
            self._logger.warning("GET to %s timed out after %ss", url, timeout)
            raise
        except aiohttp.InvalidURL as exc:
            self._logger.error("Cannot parse URL %s", url)
            raise ValueError(f"Malformed URL: {url}") from exc

    @staticmethod
    async def _read_response(response: aiohttp.ClientResponse) -> Response:
        # Undecodable bodies are reported as None; callers decide whether that is an error
        body: object | None
        try:
            body = await response.json(content_type=None)  # pyright: ignore[reportAny]  # aiohttp returns Any
        except ValueError:
            body = None
        return Response(
            status=response.status,
            body=body,
            headers=dict(response.headers),
        )
