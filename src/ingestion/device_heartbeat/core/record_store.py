"""
Durable local buffer for device heartbeats.

Records are appended one by one as queue messages arrive and are only removed
once the partition group that contains them has been uploaded. The buffer is a
SQLite file accessed through SQLAlchemy; every public method holds an internal
lock so the ingest path and the flush path may run from different threads.
"""

import logging
import threading
import uuid
from collections.abc import Iterable
from datetime import UTC, datetime
from pathlib import Path

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError

from db_models.heartbeat_buffer import (
    BufferedHeartbeat,
    BufferMetadata,
    HeartbeatBufferBase,
    get_buffer_engine,
    get_buffer_sessionmaker,
)
from ingestion.device_heartbeat.core.errors import (
    StoreFatalError,
    TransientIngestError,
)
from ingestion.device_heartbeat.core.models import DeviceHeartbeat, HeartbeatRecord

logger = logging.getLogger("record-store")

STORE_UID_KEY = "store_uid"
# Stay well below SQLITE_MAX_VARIABLE_NUMBER on older builds
DELETE_CHUNK_SIZE = 500


def _to_db_time(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def _from_db_time(value: datetime) -> datetime:
    return value.replace(tzinfo=UTC)


class RecordStore:
    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path)
        self._lock = threading.RLock()
        try:
            self._engine = get_buffer_engine(self.db_path)
            HeartbeatBufferBase.metadata.create_all(self._engine)
            self._session_factory = get_buffer_sessionmaker(self._engine)
            self._store_uid = self._load_or_create_store_uid()
        except (OSError, SQLAlchemyError) as e:
            raise StoreFatalError(
                f"Unable to open heartbeat buffer at {self.db_path}: {e!s}"
            ) from e

        logger.info(
            f"Heartbeat buffer opened at {self.db_path} "
            f"(store uid {self._store_uid}, {self.count()} records buffered)"
        )

    def _load_or_create_store_uid(self) -> str:
        with self._session_factory() as session, session.begin():
            row = session.get(BufferMetadata, STORE_UID_KEY)
            if row is None:
                row = BufferMetadata(key=STORE_UID_KEY, value=uuid.uuid4().hex[:12])
                session.add(row)
            return row.value

    @property
    def store_uid(self) -> str:
        """Random identifier generated when the buffer file was created."""
        return self._store_uid

    def append(self, heartbeat: DeviceHeartbeat) -> int:
        """Insert one heartbeat and commit before returning its id."""
        row = BufferedHeartbeat(
            endpoint_id=heartbeat.endpoint_id,
            client_time=_to_db_time(heartbeat.client_time),
        )
        with self._lock:
            try:
                with self._session_factory() as session, session.begin():
                    session.add(row)
                    session.flush()
                    record_id = row.id
            except SQLAlchemyError as e:
                raise TransientIngestError(
                    f"Unable to buffer heartbeat of endpoint {heartbeat.endpoint_id}: {e!s}"
                ) from e

        logger.debug(f"Buffered heartbeat {record_id} of endpoint {heartbeat.endpoint_id}")
        return record_id

    def select_before(self, cutoff: datetime) -> list[HeartbeatRecord]:
        """Snapshot of every buffered record with client_time < cutoff, ordered by id."""
        stmt = (
            select(
                BufferedHeartbeat.id,
                BufferedHeartbeat.endpoint_id,
                BufferedHeartbeat.client_time,
            )
            .where(BufferedHeartbeat.client_time < _to_db_time(cutoff))
            .order_by(BufferedHeartbeat.id)
        )
        with self._lock, self._session_factory() as session:
            rows = session.execute(stmt).all()

        return [
            HeartbeatRecord(
                id=row.id,
                endpoint_id=row.endpoint_id,
                client_time=_from_db_time(row.client_time),
            )
            for row in rows
        ]

    def delete_batch(self, ids: Iterable[int]) -> int:
        """
        Delete the records with the given ids and return how many were removed.

        Ids that are no longer buffered are ignored.
        """
        id_list = sorted(set(ids))
        if not id_list:
            return 0

        deleted = 0
        with self._lock, self._session_factory() as session, session.begin():
            for i in range(0, len(id_list), DELETE_CHUNK_SIZE):
                chunk = id_list[i : i + DELETE_CHUNK_SIZE]
                result = session.execute(
                    delete(BufferedHeartbeat).where(BufferedHeartbeat.id.in_(chunk))
                )
                deleted += result.rowcount or 0

        logger.debug(f"Deleted {deleted}/{len(id_list)} buffered heartbeats")
        return deleted

    def count(self) -> int:
        with self._lock, self._session_factory() as session:
            return session.scalar(select(func.count(BufferedHeartbeat.id))) or 0

    def oldest_client_time(self) -> datetime | None:
        with self._lock, self._session_factory() as session:
            value = session.scalar(select(func.min(BufferedHeartbeat.client_time)))
        return _from_db_time(value) if value is not None else None

    def close(self) -> None:
        self._engine.dispose()
        logger.info(f"Heartbeat buffer at {self.db_path} closed")
