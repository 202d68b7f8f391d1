"""
Shared test fixtures for all tests.
Provides a temporary heartbeat buffer, an in-memory object store and payload helpers.
"""

import asyncio
from collections.abc import Callable, Iterator
from datetime import UTC, datetime

import pytest

from ingestion.device_heartbeat.core.models import DeviceHeartbeat
from ingestion.device_heartbeat.core.record_store import RecordStore


class InMemorySink:
    """Object store double: keeps the last body written under each key."""

    def __init__(self):
        self.objects: dict[str, bytes] = {}
        self.put_calls: list[str] = []
        self.failing_prefixes: set[str] = set()
        # When set, put() waits on release before storing anything
        self.started: asyncio.Event | None = None
        self.release: asyncio.Event | None = None

    def block_uploads(self) -> None:
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def put(self, key: str, body: bytes) -> bool:
        self.put_calls.append(key)
        if self.started is not None and self.release is not None:
            self.started.set()
            await self.release.wait()
        if any(key.startswith(prefix) for prefix in self.failing_prefixes):
            return False
        self.objects[key] = body
        return True


@pytest.fixture
def store(tmp_path) -> Iterator[RecordStore]:
    """A fresh heartbeat buffer in a temporary directory."""
    record_store = RecordStore(tmp_path / "buffer" / "heartbeats.db")
    yield record_store
    record_store.close()


@pytest.fixture
def memory_sink() -> InMemorySink:
    return InMemorySink()


@pytest.fixture
def make_heartbeat() -> Callable[..., DeviceHeartbeat]:
    """Build a heartbeat from an endpoint id and an ISO timestamp (UTC when naive)."""

    def _make(endpoint_id: int, client_time: str) -> DeviceHeartbeat:
        return DeviceHeartbeat(EndpointId=endpoint_id, ClientTime=client_time)

    return _make


@pytest.fixture
def clock_at() -> Callable[..., Callable[[], datetime]]:
    """Factory of frozen clocks: clock_at(2024, 5, 1, 11) always returns that UTC instant."""

    def _clock_at(*args) -> Callable[[], datetime]:
        moment = datetime(*args, tzinfo=UTC)
        return lambda: moment

    return _clock_at
