"""Parquet encoding of one partition group."""

from collections.abc import Sequence
from io import BytesIO

import pyarrow as pa
import pyarrow.parquet as pq

from ingestion.device_heartbeat.core.models import HeartbeatRecord

HEARTBEAT_SCHEMA = pa.schema(
    [
        pa.field("device_id", pa.int64(), nullable=False),
        pa.field("heartbeat_time", pa.timestamp("us", tz="UTC"), nullable=False),
    ]
)


def encode_parquet(
    records: Sequence[HeartbeatRecord], compression: str = "snappy"
) -> bytes:
    """
    Serialize a group as a self-describing Parquet file.

    Columns are written in lockstep with the input order; the schema travels
    in the file footer so readers need no external definition.
    """
    if not records:
        raise ValueError("Cannot encode an empty heartbeat group")

    table = pa.Table.from_arrays(
        [
            pa.array([r.endpoint_id for r in records], type=pa.int64()),
            pa.array(
                [r.client_time for r in records], type=pa.timestamp("us", tz="UTC")
            ),
        ],
        schema=HEARTBEAT_SCHEMA,
    )

    out_buffer = BytesIO()
    pq.write_table(
        table,
        out_buffer,
        compression=compression,
        row_group_size=len(records),
    )
    return out_buffer.getvalue()


def decode_parquet(data: bytes) -> pa.Table:
    return pq.read_table(pa.BufferReader(data))
