from db_models.heartbeat_buffer import (
    BufferedHeartbeat,
    BufferMetadata,
    HeartbeatBufferBase,
)

__all__ = [
    "BufferMetadata",
    "BufferedHeartbeat",
    "HeartbeatBufferBase",
]
