import asyncio
import contextlib
import logging
import signal
import sys
import time
from collections.abc import Callable
from pathlib import Path

import click
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from core.logging_utils import setup_logging
from core.s3.async_s3 import AsyncS3
from core.s3.settings import S3Settings, get_s3_settings
from ingestion.device_heartbeat.config.settings import HeartbeatSettings, get_settings
from ingestion.device_heartbeat.core.errors import (
    StoreFatalError,
    TransientIngestError,
)
from ingestion.device_heartbeat.core.parquet_encoder import decode_parquet
from ingestion.device_heartbeat.core.record_store import RecordStore
from ingestion.device_heartbeat.services.blob_sink import S3BlobSink
from ingestion.device_heartbeat.services.flush_coordinator import (
    FlushCoordinator,
    FlushReport,
    FlushStatus,
)
from ingestion.device_heartbeat.services.ingest_adapter import IngestAdapter
from ingestion.device_heartbeat.utils.sqs_consumer import SqsConsumer

logger = logging.getLogger("device-heartbeat")
console = Console()

# Pause after a failed receive before polling again
RECEIVE_ERROR_BACKOFF_SECONDS = 5


class HeartbeatWorker:
    """
    Single cooperative loop: drain a batch of queue messages into the buffer,
    then run a consolidation pass whenever the flush interval has elapsed.
    """

    def __init__(
        self,
        consumer: SqsConsumer,
        adapter: IngestAdapter,
        coordinator: FlushCoordinator,
        flush_interval: float,
        max_messages: int = 10,
        wait_seconds: int = 20,
        final_flush: bool = True,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.consumer = consumer
        self.adapter = adapter
        self.coordinator = coordinator
        self.flush_interval = flush_interval
        self.max_messages = max_messages
        self.wait_seconds = wait_seconds
        self.final_flush = final_flush
        self.monotonic = monotonic
        self.shutdown_event = asyncio.Event()
        self.last_flush = monotonic()
        self.messages_buffered = 0

    def request_shutdown(self) -> None:
        if not self.shutdown_event.is_set():
            logger.info("Shutdown requested, stopping after the current message")
        self.shutdown_event.set()

    async def _receive_or_stop(self):
        """Long-poll the queue, giving up as soon as shutdown is requested."""
        receive_task = asyncio.create_task(
            self.consumer.receive(self.max_messages, self.wait_seconds)
        )
        stop_task = asyncio.create_task(self.shutdown_event.wait())
        done, _ = await asyncio.wait(
            {receive_task, stop_task}, return_when=asyncio.FIRST_COMPLETED
        )
        stop_task.cancel()
        if receive_task not in done:
            receive_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await receive_task
            return []
        return receive_task.result()

    async def drain_once(self) -> int:
        """Buffer one batch of messages, acknowledging each one only after it is stored."""
        messages = await self._receive_or_stop()
        buffered = 0

        for message in messages:
            if self.shutdown_event.is_set():
                break

            try:
                record_id = self.adapter.handle(message.body, message.message_id)
            except TransientIngestError as e:
                logger.warning(
                    f"Message {message.message_id} left on the queue for redelivery: {e!s}"
                )
                continue

            try:
                await self.consumer.ack(message.receipt_handle)
            except (ClientError, BotoCoreError) as e:
                # Already buffered: a redelivery only produces a duplicate row
                logger.error(
                    f"Unable to acknowledge message {message.message_id} (record {record_id}): {e!s}"
                )
            buffered += 1

        self.messages_buffered += buffered
        if buffered and self.messages_buffered % 1000 < buffered:
            logger.info(f"{self.messages_buffered} messages buffered since start")
        return buffered

    async def maybe_flush(self) -> FlushReport | None:
        if self.monotonic() - self.last_flush < self.flush_interval:
            return None
        report = await self.coordinator.flush()
        self.last_flush = self.monotonic()
        return report

    async def run(self) -> None:
        logger.info(
            f"Worker started (flush every {self.flush_interval}s, "
            f"batches of {self.max_messages}, long poll {self.wait_seconds}s)"
        )
        try:
            while not self.shutdown_event.is_set():
                try:
                    await self.drain_once()
                except (ClientError, BotoCoreError) as e:
                    logger.error(f"Error receiving messages: {e!s}")
                    with contextlib.suppress(TimeoutError):
                        await asyncio.wait_for(
                            self.shutdown_event.wait(),
                            timeout=RECEIVE_ERROR_BACKOFF_SECONDS,
                        )

                await self.maybe_flush()
        finally:
            if self.final_flush:
                logger.info("Final flush pass before exit...")
                await self.coordinator.flush()


def open_store(db_path: str) -> RecordStore:
    try:
        return RecordStore(db_path)
    except StoreFatalError as e:
        logger.critical(f"{e!s}")
        raise


def load_settings(**overrides) -> HeartbeatSettings:
    try:
        return get_settings(**overrides)
    except ValidationError as e:
        raise click.UsageError(f"Invalid configuration: {e}") from e


def load_s3_settings() -> S3Settings:
    try:
        return get_s3_settings()
    except ValidationError as e:
        raise click.UsageError(f"Invalid S3 configuration: {e}") from e


async def run_worker(
    settings: HeartbeatSettings, s3_settings: S3Settings, final_flush: bool
) -> None:
    """Build the worker from settings and run it until SIGINT/SIGTERM."""
    store = open_store(settings.DB_PATH)
    consumer = SqsConsumer(settings.SQS_QUEUE_URL, region_name=settings.AWS_REGION)
    sink = S3BlobSink(AsyncS3(settings=s3_settings))
    worker = HeartbeatWorker(
        consumer=consumer,
        adapter=IngestAdapter(store),
        coordinator=FlushCoordinator(store, sink, base_path=settings.S3_BASE_PATH),
        flush_interval=settings.FLUSH_INTERVAL_SECONDS,
        max_messages=settings.MAX_MESSAGES,
        wait_seconds=settings.WAIT_SECONDS,
        final_flush=final_flush,
    )

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, worker.request_shutdown)

    try:
        await worker.run()
    finally:
        logger.info("Closing queue and storage clients...")
        for close in (consumer.close, sink.close):
            try:
                await close()
            except (ClientError, BotoCoreError) as e:
                logger.error(f"Error during client cleanup: {e!s}")
        store.close()
        logger.info("Worker stopped")


async def run_single_flush(
    settings: HeartbeatSettings, s3_settings: S3Settings
) -> FlushReport:
    store = open_store(settings.DB_PATH)
    sink = S3BlobSink(AsyncS3(settings=s3_settings))
    try:
        return await FlushCoordinator(
            store, sink, base_path=settings.S3_BASE_PATH
        ).flush()
    finally:
        await sink.close()
        store.close()


@click.group()
@click.option(
    "--verbose",
    is_flag=True,
    default=False,
    help="Enable verbose (debug) logging",
)
def cli(verbose: bool):
    """
    Device heartbeat ingestion worker: SQS -> local buffer -> hourly Parquet on S3.
    """
    setup_logging(verbose=verbose)


@cli.command()
@click.option("--queue-url", type=str, help="SQS queue URL [env: HEARTBEAT_SQS_QUEUE_URL]")
@click.option(
    "--db-path", type=click.Path(dir_okay=False), help="Local buffer file [env: HEARTBEAT_DB_PATH]"
)
@click.option(
    "--flush-interval",
    type=click.IntRange(min=1),
    help="Seconds between consolidation passes [env: HEARTBEAT_FLUSH_INTERVAL_SECONDS]",
)
@click.option(
    "--final-flush/--no-final-flush",
    default=True,
    show_default=True,
    help="Run a last consolidation pass on shutdown",
)
def run(
    queue_url: str | None,
    db_path: str | None,
    flush_interval: int | None,
    final_flush: bool,
):
    """Consume heartbeats and upload hourly Parquet files."""
    settings = load_settings(
        SQS_QUEUE_URL=queue_url,
        DB_PATH=db_path,
        FLUSH_INTERVAL_SECONDS=flush_interval,
    )
    if not settings.SQS_QUEUE_URL:
        raise click.UsageError(
            "No queue configured: pass --queue-url or set HEARTBEAT_SQS_QUEUE_URL"
        )
    try:
        asyncio.run(run_worker(settings, load_s3_settings(), final_flush=final_flush))
    except StoreFatalError:
        sys.exit(1)


@cli.command()
@click.option("--db-path", type=click.Path(dir_okay=False), help="Local buffer file")
def flush(db_path: str | None):
    """Run a single consolidation pass and exit."""
    settings = load_settings(DB_PATH=db_path)
    try:
        report = asyncio.run(run_single_flush(settings, load_s3_settings()))
    except StoreFatalError:
        sys.exit(1)

    console.print(
        f"[bold]{report.status}[/bold]: {len(report.uploaded_keys)} uploaded, "
        f"{len(report.failed_groups)} failed, {report.records_deleted} records removed"
    )
    for key in report.uploaded_keys:
        console.print(f"  {key}")
    if report.error:
        console.print(f"  {report.error}", style="red", markup=False)
    if report.failed_groups or report.status == FlushStatus.FAILED:
        sys.exit(1)


@cli.command()
@click.option("--db-path", type=click.Path(dir_okay=False), help="Local buffer file")
def stats(db_path: str | None):
    """Show what is currently buffered."""
    settings = load_settings(DB_PATH=db_path)
    try:
        store = open_store(settings.DB_PATH)
    except StoreFatalError:
        sys.exit(1)
    try:
        oldest = store.oldest_client_time()
        console.print(f"Buffer:          {store.db_path}")
        console.print(f"Store uid:       {store.store_uid}")
        console.print(f"Records:         {store.count()}")
        console.print(f"Oldest record:   {oldest.isoformat() if oldest else '-'}")
    finally:
        store.close()


@cli.command()
@click.argument("source")
@click.option(
    "--from-s3", is_flag=True, default=False, help="Treat SOURCE as a key of the S3 bucket"
)
@click.option("--limit", type=int, default=20, show_default=True, help="Rows to display")
def inspect(source: str, from_s3: bool, limit: int):
    """Print the rows of an uploaded heartbeat Parquet file."""
    if from_s3:
        data = asyncio.run(_download(source, load_s3_settings()))
        if data is None:
            raise click.ClickException(f"No object found at key {source}")
    else:
        path = Path(source)
        if not path.is_file():
            raise click.ClickException(f"No file found at {source}")
        data = path.read_bytes()

    table = decode_parquet(data)
    view = Table(title=f"{source} ({table.num_rows} rows)")
    for name in table.column_names:
        view.add_column(name)
    for row in table.slice(0, limit).to_pylist():
        view.add_row(*(str(row[name]) for name in table.column_names))
    console.print(view)


async def _download(key: str, s3_settings: S3Settings) -> bytes | None:
    sink = S3BlobSink(AsyncS3(settings=s3_settings))
    try:
        return await sink.get(key)
    finally:
        await sink.close()


if __name__ == "__main__":
    cli()
