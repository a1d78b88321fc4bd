"""
Pytest configuration and shared fixtures.
"""

import asyncio
import os
from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import timedelta
from typing import Any

import pytest
import pytest_asyncio
from prometheus_client import CollectorRegistry

from fakes import InMemoryStore
from message_queue.config import Settings
from message_queue.db.repository import ItemRepository
from message_queue.observability.metrics import MetricsCollector
from message_queue.queue import MessageQueue

# Test database URL - use a separate test database
TEST_MONGODB_URL = os.getenv("TEST_MONGODB_URL", "mongodb://localhost:27017")
TEST_MONGODB_DATABASE = os.getenv("TEST_MONGODB_DATABASE", "message_queue_test")

PROCESSING_TIMEOUT = timedelta(seconds=30)


@pytest.fixture(scope="session")
def mongodb_url() -> str:
    """Get the test MongoDB URL."""
    return TEST_MONGODB_URL


@pytest.fixture
def store() -> InMemoryStore:
    """Create an empty in-memory store."""
    return InMemoryStore()


@pytest.fixture
def metrics() -> MetricsCollector:
    """Create a metrics collector on its own registry."""
    return MetricsCollector(registry=CollectorRegistry())


@pytest.fixture
def repo(store: InMemoryStore) -> ItemRepository:
    """Create a repository over the in-memory store."""
    return ItemRepository(store, processing_timeout=PROCESSING_TIMEOUT)


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings."""
    return Settings(
        mongodb_url=TEST_MONGODB_URL,
        mongodb_database=TEST_MONGODB_DATABASE,
        queue_polling_interval_ms=10,
        queue_processing_timeout_ms=1000,
        log_level="DEBUG",
        log_format="console",
    )


@pytest_asyncio.fixture
async def queue(
    store: InMemoryStore,
    metrics: MetricsCollector,
) -> AsyncGenerator[MessageQueue]:
    """Create a fast-polling queue over the in-memory store."""
    message_queue = MessageQueue(
        store,
        polling_interval_ms=10,
        processing_timeout_ms=int(PROCESSING_TIMEOUT.total_seconds() * 1000),
        max_concurrency=2,
        metrics=metrics,
    )

    yield message_queue

    await message_queue.close()


@pytest.fixture
def wait_for() -> Callable[..., Awaitable[None]]:
    """Wait until an (optionally async) condition holds."""

    async def _wait_for(condition: Callable[[], Any], timeout: float = 2.0) -> None:
        deadline = asyncio.get_running_loop().time() + timeout
        while True:
            result = condition()
            if asyncio.iscoroutine(result):
                result = await result
            if result:
                return
            if asyncio.get_running_loop().time() > deadline:
                raise AssertionError("Condition not met before timeout")
            await asyncio.sleep(0.01)

    return _wait_for


@pytest.fixture
def sample_message() -> dict[str, Any]:
    """Create a sample message payload."""
    return {"operation": "something", "account": "acct-1"}
