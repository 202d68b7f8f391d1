"""
Consolidation of the local buffer into hourly Parquet objects.

A pass snapshots every record older than its cutoff, groups them by the hour
of their own client_time and, group by group, encodes, uploads and only then
deletes them from the buffer. Groups are independent: a failing group keeps
its records for the next pass and does not stop the others.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum

from sqlalchemy.exc import SQLAlchemyError

from ingestion.device_heartbeat.core.errors import FlushGroupError
from ingestion.device_heartbeat.core.models import HeartbeatRecord, PartitionKey
from ingestion.device_heartbeat.core.parquet_encoder import encode_parquet
from ingestion.device_heartbeat.core.partitioner import (
    build_object_key,
    partition_records,
)
from ingestion.device_heartbeat.core.record_store import RecordStore
from ingestion.device_heartbeat.services.blob_sink import BlobSink

logger = logging.getLogger("flush-coordinator")


def utcnow() -> datetime:
    return datetime.now(UTC)


class FlushStatus(StrEnum):
    COMPLETED = "completed"
    BUSY = "busy"
    FAILED = "failed"


@dataclass
class FlushReport:
    status: FlushStatus
    cutoff: datetime | None = None
    groups_total: int = 0
    uploaded_keys: list[str] = field(default_factory=list)
    failed_groups: list[PartitionKey] = field(default_factory=list)
    records_deleted: int = 0
    error: str | None = None


class FlushCoordinator:
    def __init__(
        self,
        store: RecordStore,
        sink: BlobSink,
        base_path: str = "",
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.sink = sink
        self.base_path = base_path
        self.clock = clock
        # Single slot, only ever acquired when free
        self._token = asyncio.Semaphore(1)

    @property
    def is_flushing(self) -> bool:
        return self._token.locked()

    async def flush(self) -> FlushReport:
        """Run one consolidation pass unless another one is already running."""
        if self._token.locked():
            logger.info("Another flush pass is already running, skipping")
            return FlushReport(status=FlushStatus.BUSY)

        async with self._token:
            return await self._run_pass()

    async def _run_pass(self) -> FlushReport:
        cutoff = self.clock()
        try:
            records = self.store.select_before(cutoff)
        except SQLAlchemyError as e:
            # Nothing was uploaded or deleted, the next pass starts over
            logger.error(
                f"Flush pass at {cutoff.isoformat()} aborted, buffer unreadable: {e!s}"
            )
            return FlushReport(status=FlushStatus.FAILED, cutoff=cutoff, error=str(e))

        groups = partition_records(records)
        report = FlushReport(
            status=FlushStatus.COMPLETED, cutoff=cutoff, groups_total=len(groups)
        )

        if not groups:
            logger.info(f"Flush pass at {cutoff.isoformat()}: nothing to upload")
            return report

        logger.info(
            f"Flush pass at {cutoff.isoformat()}: {len(records)} records in {len(groups)} hourly groups"
        )

        for partition, group in groups.items():
            try:
                key, deleted = await self._flush_group(partition, group)
            except FlushGroupError as e:
                logger.error(
                    f"Group {partition.compact} ({len(group)} records) kept for next pass: {e!s}"
                )
                report.failed_groups.append(partition)
                continue

            report.uploaded_keys.append(key)
            report.records_deleted += deleted

        logger.info(
            f"Flush pass done: {len(report.uploaded_keys)} uploaded, "
            f"{len(report.failed_groups)} failed, {report.records_deleted} records removed"
        )
        return report

    async def _flush_group(
        self, partition: PartitionKey, group: list[HeartbeatRecord]
    ) -> tuple[str, int]:
        key = build_object_key(partition, group, self.store.store_uid, self.base_path)

        try:
            body = encode_parquet(group)
        except Exception as e:
            raise FlushGroupError(f"encoding failed: {e!s}", partition, key) from e

        try:
            uploaded = await self.sink.put(key, body)
        except Exception as e:
            raise FlushGroupError(f"upload raised: {e!s}", partition, key) from e
        if not uploaded:
            raise FlushGroupError(f"upload of {key} rejected", partition, key)

        # A crash past this point re-uploads the group under the same key on restart
        try:
            deleted = self.store.delete_batch(record.id for record in group)
        except Exception as e:
            raise FlushGroupError(
                f"uploaded to {key} but cleanup failed: {e!s}", partition, key
            ) from e

        if deleted != len(group):
            logger.warning(
                f"Group {partition.compact}: expected to delete {len(group)} records, removed {deleted}"
            )
        return key, deleted
