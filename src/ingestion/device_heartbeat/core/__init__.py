"""
Core functionality of the device heartbeat worker: buffer, grouping and encoding.
"""

from .errors import (
    FlushGroupError,
    HeartbeatWorkerError,
    StoreFatalError,
    TransientIngestError,
)
from .models import DeviceHeartbeat, HeartbeatRecord, PartitionKey
from .parquet_encoder import decode_parquet, encode_parquet
from .partitioner import build_object_key, hour_partition_key, partition_records
from .record_store import RecordStore

__all__ = [
    "DeviceHeartbeat",
    "FlushGroupError",
    "HeartbeatRecord",
    "HeartbeatWorkerError",
    "PartitionKey",
    "RecordStore",
    "StoreFatalError",
    "TransientIngestError",
    "build_object_key",
    "decode_parquet",
    "encode_parquet",
    "hour_partition_key",
    "partition_records",
]
