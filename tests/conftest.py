"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from collections.abc import Callable
from datetime import timedelta

import pytest

from rpc_monitor.core.config import MainConfig
from rpc_monitor.core.history import HistoryStore
from rpc_monitor.core.registry import EndpointRegistry
from tests.fixtures.fakes import URL_A, URL_B, URL_C, FakeHTTPClient, FakeMonotonic, FixedClock


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def monotonic() -> FakeMonotonic:
    return FakeMonotonic()


@pytest.fixture
def http_client() -> FakeHTTPClient:
    return FakeHTTPClient()


@pytest.fixture
def history(clock: FixedClock) -> HistoryStore:
    return HistoryStore(retention=timedelta(days=30), clock=clock)


@pytest.fixture
def registry() -> EndpointRegistry:
    registry = EndpointRegistry()
    _ = registry.add(URL_A, "Alpha")
    _ = registry.add(URL_B, "Bravo")
    _ = registry.add(URL_C, "Charlie")
    return registry


@pytest.fixture
def make_config() -> Callable[..., MainConfig]:
    """Build a validated MainConfig, overriding top-level sections."""

    def factory(**sections: object) -> MainConfig:
        data: dict[str, object] = {
            "endpoints": [
                {"url": URL_A, "name": "Alpha"},
                {"url": URL_B, "name": "Bravo"},
            ],
        }
        data.update(sections)
        return MainConfig.model_validate(data)

    return factory
