"""SQLAlchemy models for the local heartbeat buffer database."""

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from db_models.heartbeat_buffer.base import HeartbeatBufferBase


class BufferedHeartbeat(HeartbeatBufferBase):
    __tablename__ = "heartbeats"

    # AUTOINCREMENT keeps SQLite from reusing the id of a deleted row
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    endpoint_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    # Naive UTC, SQLite has no timezone-aware type
    client_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        Index("ix_heartbeats_client_time", "client_time"),
        {"sqlite_autoincrement": True},
    )


class BufferMetadata(HeartbeatBufferBase):
    __tablename__ = "buffer_metadata"

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    value: Mapped[str] = mapped_column(String(255), nullable=False)


__all__ = ["BufferMetadata", "BufferedHeartbeat"]
