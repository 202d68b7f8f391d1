from dataclasses import dataclass
from datetime import UTC, datetime
from typing import NamedTuple

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1


class DeviceHeartbeat(BaseModel):
    """Inbound heartbeat payload as published on the queue."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    endpoint_id: int = Field(
        validation_alias=AliasChoices(
            "EndpointId", "endpointId", "endpoint_id", "deviceId", "device_id"
        ),
        ge=INT64_MIN,
        le=INT64_MAX,
    )
    client_time: datetime = Field(
        validation_alias=AliasChoices("ClientTime", "clientTime", "client_time"),
    )

    @field_validator("endpoint_id", mode="before")
    @classmethod
    def reject_bool_and_float(cls, v):
        # pydantic lax mode would turn true into 1 and 12.0 into 12
        if isinstance(v, (bool, float)):
            raise ValueError("endpoint id must be an integer")
        return v

    @field_validator("client_time")
    @classmethod
    def normalize_to_utc(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=UTC)
        try:
            return v.astimezone(UTC)
        except OverflowError as e:
            raise ValueError("client time is out of range once converted to UTC") from e


@dataclass(frozen=True, slots=True)
class HeartbeatRecord:
    """One buffered heartbeat as read back from the record store."""

    id: int
    endpoint_id: int
    client_time: datetime


class PartitionKey(NamedTuple):
    year: int
    month: int
    day: int
    hour: int

    @property
    def compact(self) -> str:
        """YYYYMMDDHH representation used in object names."""
        return f"{self.year:04d}{self.month:02d}{self.day:02d}{self.hour:02d}"

    @property
    def prefix(self) -> str:
        return f"{self.year:04d}/{self.month:02d}/{self.day:02d}/{self.hour:02d}"
