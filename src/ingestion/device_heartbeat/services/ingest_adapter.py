import logging

from pydantic import ValidationError

from ingestion.device_heartbeat.core.errors import TransientIngestError
from ingestion.device_heartbeat.core.models import DeviceHeartbeat
from ingestion.device_heartbeat.core.record_store import RecordStore

logger = logging.getLogger("ingest-adapter")


class IngestAdapter:
    """Turns one queue payload into one buffered heartbeat."""

    def __init__(self, store: RecordStore):
        self.store = store

    def parse(self, payload: bytes | str, message_id: str | None = None) -> DeviceHeartbeat:
        try:
            return DeviceHeartbeat.model_validate_json(payload)
        except ValidationError as e:
            raise TransientIngestError(
                f"Invalid heartbeat payload: {e.errors()[0]['msg']}",
                message_id=message_id,
            ) from e
        except (ValueError, OverflowError) as e:
            raise TransientIngestError(
                f"Invalid heartbeat payload: {e!s}", message_id=message_id
            ) from e

    def handle(self, payload: bytes | str, message_id: str | None = None) -> int:
        """
        Parse and buffer one payload, returning the id of the new record.

        Raises TransientIngestError when the payload is malformed or cannot be
        buffered; the source message must then stay unacknowledged.
        """
        heartbeat = self.parse(payload, message_id=message_id)
        try:
            return self.store.append(heartbeat)
        except TransientIngestError as e:
            e.message_id = message_id
            raise
