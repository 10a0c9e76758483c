"""
Fixtures shared by quota_gate tests.
"""

import pytest
from unittest.mock import MagicMock, AsyncMock
from prometheus_client import CollectorRegistry

from shared.config import QuotaGateConfig
from shared.metrics import GateMetrics
from shared.test_helpers import FakeClock, InMemoryCounterStore, AsyncInMemoryCounterStore


@pytest.fixture
def clock():
    """Manual nanosecond clock."""
    return FakeClock()


@pytest.fixture
def config():
    """Config without self-throttling or retry pauses."""
    return QuotaGateConfig(min_sync_interval_ns=0, script_retry_delay_seconds=0.0)


@pytest.fixture
def registry():
    """Isolated Prometheus registry."""
    return CollectorRegistry()


@pytest.fixture
def metrics(registry):
    """Gate metrics bound to the isolated registry."""
    return GateMetrics(registry)


@pytest.fixture
def store(clock):
    """In-memory counter store driven by the manual clock."""
    return InMemoryCounterStore(clock)


@pytest.fixture
def async_store(clock):
    """Async in-memory counter store driven by the manual clock."""
    return AsyncInMemoryCounterStore(clock)


@pytest.fixture
def mock_store():
    """Blocking store stub returning a fresh window count."""
    store = MagicMock()
    store.register_script.return_value = "sha-1"
    store.execute.return_value = 1
    store.script_exists.return_value = [True]
    return store


@pytest.fixture
def mock_async_store():
    """Async store stub returning a fresh window count."""
    store = MagicMock()
    store.register_script = AsyncMock(return_value="sha-1")
    store.execute = AsyncMock(return_value=1)
    store.script_exists = AsyncMock(return_value=[True])
    return store
