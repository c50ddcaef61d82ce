"""Outbound subscriber payloads.

Every payload carries a ``type`` discriminator:

* ``aircraft-update`` full snapshot (ordered list plus summary)
* ``aircraft-data`` single incremental record
* ``connection`` upstream connectivity notification
* ``error`` human-readable failure notice
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import Field, TypeAdapter

from pysbs.models._base import SbsBaseModel, UtcDatetime
from pysbs.models.aircraft import AircraftRecord


def _utcnow() -> datetime:
    return datetime.now(UTC)


class PayloadType(StrEnum):
    SNAPSHOT = "aircraft-update"
    AIRCRAFT = "aircraft-data"
    CONNECTION = "connection"
    ERROR = "error"


class ConnectionStatus(StrEnum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class _Payload(SbsBaseModel):
    timestamp: UtcDatetime = Field(default_factory=_utcnow)

    def to_json(self) -> str:
        return json.dumps(self.to_wire(), separators=(",", ":"))


class AltitudeRange(SbsBaseModel):
    """Altitude summary over one snapshot."""

    min: int | None = None
    max: int | None = None
    with_altitude: int = 0
    total: int = 0


class SnapshotPayload(_Payload):
    type: Literal["aircraft-update"] = "aircraft-update"
    count: int = 0
    aircraft: tuple[AircraftRecord, ...] = ()
    altitude_range: AltitudeRange = Field(default_factory=AltitudeRange)

    def to_wire(self) -> dict[str, Any]:
        payload = super().to_wire()
        payload["aircraft"] = [record.to_projection(self.timestamp) for record in self.aircraft]
        return payload


class AircraftDataPayload(_Payload):
    type: Literal["aircraft-data"] = "aircraft-data"
    data: AircraftRecord
    raw: str | None = None

    def to_wire(self) -> dict[str, Any]:
        payload = super().to_wire()
        payload["data"] = self.data.to_projection(self.timestamp)
        return payload


class ConnectionPayload(_Payload):
    type: Literal["connection"] = "connection"
    status: ConnectionStatus
    message: str = ""


class ErrorPayload(_Payload):
    type: Literal["error"] = "error"
    message: str


FeedPayload = Annotated[
    SnapshotPayload | AircraftDataPayload | ConnectionPayload | ErrorPayload,
    Field(discriminator="type"),
]

_PAYLOAD_ADAPTER: TypeAdapter[FeedPayload] = TypeAdapter(FeedPayload)


def parse_payload(data: str | bytes | dict[str, Any]) -> FeedPayload:
    """Validate an inbound payload (JSON text or decoded dict).

    Raises
    ------
    pydantic.ValidationError
        The payload is malformed or carries an unknown ``type``.
    """
    if isinstance(data, (str, bytes)):
        return _PAYLOAD_ADAPTER.validate_json(data)
    return _PAYLOAD_ADAPTER.validate_python(data)
