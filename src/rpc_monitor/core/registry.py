"""Registry of monitored endpoints."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator

from rpc_monitor.types import Endpoint

__all__ = ["EndpointRegistry"]

logger = logging.getLogger(__name__)


class EndpointRegistry:
    """Append-only, URL-keyed list of monitored endpoints.

    Registration order is preserved. Registering a URL that is already known
    returns the existing endpoint unchanged.
    """

    def __init__(self, endpoints: Iterable[Endpoint] = ()) -> None:
        self._endpoints: dict[str, Endpoint] = {}
        for endpoint in endpoints:
            _ = self.add(endpoint.url, endpoint.name)

    def add(self, url: str, name: str = "") -> Endpoint:
        """Register an endpoint.

        Args:
            url: RPC URL, the endpoint identity
            name: Display name, defaults to the URL

        Returns:
            The registered endpoint

        Raises:
            ValueError: If the URL is empty
        """
        url = url.strip()
        if not url:
            msg = "Endpoint URL must not be empty"
            raise ValueError(msg)

        existing = self._endpoints.get(url)
        if existing is not None:
            return existing

        endpoint = Endpoint(url=url, name=name.strip() or url)
        self._endpoints[url] = endpoint
        logger.debug("Registered endpoint", extra={"endpoint_url": url, "endpoint_name": endpoint.name})
        return endpoint

    def get(self, url: str) -> Endpoint | None:
        return self._endpoints.get(url)

    def snapshot(self) -> tuple[Endpoint, ...]:
        """Return the endpoints registered at this instant, in registration order."""
        return tuple(self._endpoints.values())

    def __iter__(self) -> Iterator[Endpoint]:
        return iter(self.snapshot())

    def __len__(self) -> int:
        return len(self._endpoints)

    def __contains__(self, url: object) -> bool:
        return url in self._endpoints
