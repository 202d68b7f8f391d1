"""Hour bucketing of buffered heartbeats and output key derivation."""

from collections.abc import Callable, Iterable, Sequence
from datetime import UTC, datetime

from ingestion.device_heartbeat.core.models import HeartbeatRecord, PartitionKey

OUTPUT_EXTENSION = "parquet"


def hour_partition_key(client_time: datetime) -> PartitionKey:
    """Calendar hour (UTC) of a producer timestamp."""
    if client_time.tzinfo is not None:
        client_time = client_time.astimezone(UTC)
    return PartitionKey(
        client_time.year, client_time.month, client_time.day, client_time.hour
    )


def partition_records(
    records: Iterable[HeartbeatRecord],
    key_func: Callable[[datetime], PartitionKey] = hour_partition_key,
) -> dict[PartitionKey, list[HeartbeatRecord]]:
    """
    Group records by the partition key of their own client_time.

    Every record lands in exactly one group, groups are never empty and keep
    the input order of their records.
    """
    groups: dict[PartitionKey, list[HeartbeatRecord]] = {}
    for record in records:
        groups.setdefault(key_func(record.client_time), []).append(record)
    return groups


def build_object_key(
    partition: PartitionKey,
    group: Sequence[HeartbeatRecord],
    store_uid: str,
    base_path: str = "",
) -> str:
    """
    Object key of one partition group.

    Layout: ``[base/]YYYY/MM/DD/HH/heartbeats_YYYYMMDDHH_<store uid>-<first id>.parquet``.
    The suffix uses the smallest record id of the group. A group retried after a
    failed upload, or after a crash between upload and delete, keeps the same
    key as long as its smallest id is unchanged, and then overwrites its earlier
    object with a superset of rows. A record of that hour held back by an earlier
    cutoff (producer clock ahead of the worker) may carry a smaller id; the
    retried group then gets a new key and the earlier object stays behind as a
    duplicate. Once a group is deleted, later records of the same hour carry
    larger ids and get a new object.
    """
    if not group:
        raise ValueError("Cannot derive an object key for an empty group")

    first_id = min(record.id for record in group)
    filename = (
        f"heartbeats_{partition.compact}_{store_uid}-{first_id:012d}.{OUTPUT_EXTENSION}"
    )
    key = f"{partition.prefix}/{filename}"
    base = base_path.strip("/")
    return f"{base}/{key}" if base else key
