"""
Error taxonomy of the heartbeat worker.

Only StoreFatalError is allowed to stop the process; the other errors are
scoped to one queue message or one partition group and are logged by the
caller before moving on.
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ingestion.device_heartbeat.core.models import PartitionKey


class HeartbeatWorkerError(Exception):
    """Base class for all worker errors."""


class StoreFatalError(HeartbeatWorkerError):
    """The local buffer cannot be opened or initialized."""


class TransientIngestError(HeartbeatWorkerError):
    """One inbound message could not be parsed or buffered; leave it unacknowledged."""

    def __init__(self, message: str, message_id: str | None = None):
        super().__init__(message)
        self.message_id = message_id


class FlushGroupError(HeartbeatWorkerError):
    """Encoding, upload or cleanup of one partition group failed; its records stay buffered."""

    def __init__(
        self,
        message: str,
        partition: "PartitionKey",
        key: str | None = None,
    ):
        super().__init__(message)
        self.partition = partition
        self.key = key
