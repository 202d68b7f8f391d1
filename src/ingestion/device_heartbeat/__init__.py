"""
Device Heartbeat Module

This module ingests device heartbeats from an SQS queue, buffers them in a
local SQLite file and periodically consolidates the buffer into hourly
Parquet files stored in S3.

Features:
- Long-polling SQS consumption, acknowledged only after durable buffering
- Crash-safe local buffer indexed on the producer timestamp
- Hour partitioning on the producer timestamp with one object per hour and pass
- Single-flight consolidation with per-group failure isolation
"""

__version__ = "1.0.0"
