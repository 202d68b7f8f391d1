from db_models.heartbeat_buffer.base import HeartbeatBufferBase
from db_models.heartbeat_buffer.models import BufferedHeartbeat, BufferMetadata
from db_models.heartbeat_buffer.session import (
    get_buffer_engine,
    get_buffer_sessionmaker,
)

__all__ = [
    "BufferMetadata",
    "BufferedHeartbeat",
    "HeartbeatBufferBase",
    "get_buffer_engine",
    "get_buffer_sessionmaker",
]
