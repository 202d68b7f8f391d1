import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from botocore.exceptions import ClientError
from sqlalchemy.exc import OperationalError

from ingestion.device_heartbeat import main
from ingestion.device_heartbeat.core.errors import TransientIngestError
from ingestion.device_heartbeat.main import HeartbeatWorker
from ingestion.device_heartbeat.services.flush_coordinator import (
    FlushCoordinator,
    FlushReport,
    FlushStatus,
)
from ingestion.device_heartbeat.services.ingest_adapter import IngestAdapter
from ingestion.device_heartbeat.utils.sqs_consumer import QueueMessage

VALID = '{"EndpointId": %d, "ClientTime": "2024-05-01T09:10:00Z"}'


def _message(n: int, body: str | None = None) -> QueueMessage:
    return QueueMessage(
        body=body if body is not None else VALID % n,
        receipt_handle=f"rh-{n}",
        message_id=f"m-{n}",
    )


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def consumer() -> AsyncMock:
    consumer = AsyncMock()
    consumer.receive.return_value = []
    return consumer


@pytest.fixture
def coordinator() -> MagicMock:
    coordinator = MagicMock()
    coordinator.flush = AsyncMock(return_value=FlushReport(status=FlushStatus.COMPLETED))
    return coordinator


@pytest.fixture
def worker(consumer, coordinator, store) -> HeartbeatWorker:
    return HeartbeatWorker(
        consumer=consumer,
        adapter=IngestAdapter(store),
        coordinator=coordinator,
        flush_interval=3600,
        monotonic=FakeClock(),
    )


@pytest.mark.asyncio
async def test_only_buffered_messages_are_acknowledged(worker, consumer, store):
    consumer.receive.return_value = [
        _message(1),
        _message(2, body="{broken"),
        _message(3),
    ]

    buffered = await worker.drain_once()

    assert buffered == 2
    assert store.count() == 2
    acked = [call.args[0] for call in consumer.ack.await_args_list]
    assert acked == ["rh-1", "rh-3"]
    consumer.receive.assert_awaited_once_with(10, 20)


@pytest.mark.asyncio
async def test_message_is_not_acknowledged_when_append_fails(worker, consumer):
    consumer.receive.return_value = [_message(1)]
    worker.adapter.store = MagicMock()
    worker.adapter.store.append.side_effect = TransientIngestError("disk I/O error")

    buffered = await worker.drain_once()

    assert buffered == 0
    consumer.ack.assert_not_awaited()


@pytest.mark.asyncio
async def test_ack_failure_does_not_stop_the_batch(worker, consumer, store):
    consumer.receive.return_value = [_message(1), _message(2)]
    consumer.ack.side_effect = [
        ClientError({"Error": {"Code": "ReceiptHandleIsInvalid", "Message": "x"}}, "DeleteMessage"),
        None,
    ]

    buffered = await worker.drain_once()

    assert buffered == 2
    assert store.count() == 2
    assert consumer.ack.await_count == 2


@pytest.mark.asyncio
async def test_flush_runs_once_interval_elapsed(worker, coordinator):
    assert await worker.maybe_flush() is None

    worker.monotonic.now = 3599
    assert await worker.maybe_flush() is None
    coordinator.flush.assert_not_awaited()

    worker.monotonic.now = 3600
    report = await worker.maybe_flush()

    assert report.status == FlushStatus.COMPLETED
    assert worker.last_flush == 3600
    worker.monotonic.now = 3601
    assert await worker.maybe_flush() is None
    coordinator.flush.assert_awaited_once()


@pytest.mark.asyncio
async def test_shutdown_interrupts_long_poll(worker, consumer):
    async def never_returns(*args):
        await asyncio.Event().wait()

    consumer.receive.side_effect = never_returns
    asyncio.get_running_loop().call_later(0.05, worker.request_shutdown)

    buffered = await asyncio.wait_for(worker.drain_once(), timeout=5)

    assert buffered == 0
    consumer.ack.assert_not_awaited()


@pytest.mark.asyncio
async def test_run_stops_on_shutdown_and_flushes(worker, consumer, coordinator, store):
    batches = [[_message(1), _message(2)]]

    async def receive(*args):
        if batches:
            return batches.pop()
        worker.request_shutdown()
        return []

    consumer.receive.side_effect = receive

    await asyncio.wait_for(worker.run(), timeout=5)

    assert store.count() == 2
    assert worker.messages_buffered == 2
    coordinator.flush.assert_awaited_once()


@pytest.mark.asyncio
async def test_run_without_final_flush(worker, consumer, coordinator):
    worker.final_flush = False

    async def receive(*args):
        worker.request_shutdown()
        return []

    consumer.receive.side_effect = receive

    await asyncio.wait_for(worker.run(), timeout=5)

    coordinator.flush.assert_not_awaited()


@pytest.mark.asyncio
async def test_receive_errors_back_off_and_retry(worker, consumer, monkeypatch):
    monkeypatch.setattr(main, "RECEIVE_ERROR_BACKOFF_SECONDS", 0.01)
    calls = []

    async def receive(*args):
        calls.append(args)
        if len(calls) == 1:
            raise ClientError(
                {"Error": {"Code": "AWS.SimpleQueueService.NonExistentQueue", "Message": "x"}},
                "ReceiveMessage",
            )
        worker.request_shutdown()
        return []

    consumer.receive.side_effect = receive

    await asyncio.wait_for(worker.run(), timeout=5)

    assert len(calls) == 2


@pytest.mark.asyncio
async def test_out_of_range_timestamp_does_not_stop_the_batch(worker, consumer, store):
    consumer.receive.return_value = [
        _message(1, body='{"EndpointId": 1, "ClientTime": "9999-12-31T23:30:00-05:00"}'),
        _message(2),
    ]

    buffered = await worker.drain_once()

    assert buffered == 1
    assert store.count() == 1
    assert [call.args[0] for call in consumer.ack.await_args_list] == ["rh-2"]


@pytest.mark.asyncio
async def test_unreadable_buffer_during_flush_keeps_worker_running(
    consumer, store, memory_sink, clock_at
):
    clock = FakeClock()
    worker = HeartbeatWorker(
        consumer=consumer,
        adapter=IngestAdapter(store),
        coordinator=FlushCoordinator(store, memory_sink, clock=clock_at(2024, 5, 1, 11)),
        flush_interval=1,
        monotonic=clock,
    )
    clock.now = 5
    batches = [[_message(1)]]

    async def receive(*args):
        if batches:
            return batches.pop()
        worker.request_shutdown()
        return []

    consumer.receive.side_effect = receive
    locked = OperationalError("SELECT", {}, Exception("database is locked"))

    with patch.object(store, "select_before", side_effect=locked) as select_before:
        await asyncio.wait_for(worker.run(), timeout=5)

    assert consumer.receive.await_count == 2
    # Interval pass plus final pass, both aborted
    assert select_before.call_count == 2
    assert store.count() == 1
    assert memory_sink.put_calls == []
