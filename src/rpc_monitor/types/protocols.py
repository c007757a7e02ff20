"""Protocol definitions for component interfaces.

This module defines structural subtyping protocols that establish
contracts between the polling engine and its collaborators without
requiring inheritance.
"""

from collections.abc import Mapping
from typing import Protocol, runtime_checkable

from rpc_monitor.types.models import Endpoint, ProbeResult, Response, Snapshot


class HTTPClient(Protocol):
    """Protocol for HTTP client operations.

    Defines the interface used by the probe executor and by the remote
    collaborators (time-series backend, remote status source).
    """

    async def post(
        self,
        url: str,
        payload: Mapping[str, object],
        *,
        timeout: float | None = None,
    ) -> Response:
        """Send HTTP POST request with a JSON body.

        Args:
            url: Target URL for the POST request
            payload: Request body data
            timeout: Request timeout in seconds, None to rely on the caller's deadline

        Returns:
            HTTP response with status, body, and headers
        """
        ...

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
            timeout: Request timeout in seconds

        Returns:
            HTTP response with status, body, and headers
        """
        ...


@runtime_checkable
class SnapshotObserver(Protocol):
    """Receives every published snapshot, in registration order.

    The coordinator awaits each observer before the cycle completes, so an
    observer always sees a complete snapshot before the next cycle starts.
    """

    async def on_snapshot(self, snapshot: Snapshot) -> None: ...


class StorageBackend(Protocol):
    """Durable store of named JSON blobs.

    Implementations raise ``StorageCapacityError`` when a write does not fit.
    """

    def read(self, key: str) -> str | None:
        """Return the stored blob or None when absent."""
        ...

    def write_many(self, blobs: Mapping[str, str]) -> None:
        """Write several blobs as one operation."""
        ...

    def remove(self, key: str) -> None:
        """Delete a blob if present."""
        ...


class Prober(Protocol):
    """Protocol for probing one endpoint once.

    Implementations never raise for endpoint failures; every outcome is a
    ProbeResult.
    """

    async def probe(self, endpoint: Endpoint, timeout_ms: float, method: str) -> ProbeResult: ...
