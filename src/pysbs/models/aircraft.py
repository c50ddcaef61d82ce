"""Aircraft state record."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import Field, model_validator

from pysbs._constants import airline_for_callsign, country_for_icao
from pysbs.models._base import SbsBaseModel, UtcDatetime
from pysbs.models.message import TransmissionType


class AircraftRecord(SbsBaseModel):
    """Merged state for one aircraft.

    Instances are immutable; the state store replaces a record with an
    updated copy on every merge, so any record a consumer holds is a
    stable snapshot.

    Derived display fields (:attr:`airline`, :attr:`country`,
    :attr:`transmission_type_label`) are computed on access and never
    stored.

    Parameters
    ----------
    hex_ident : str
        ICAO 24-bit address, the primary key.
    callsign : str or None
        Last non-empty flight identification.
    latitude, longitude : float or None
        Last known position in degrees.
    altitude : int or None
        Barometric altitude in feet.
    ground_speed : int or None
        Knots.
    track : int or None
        Degrees, 0-359.
    vertical_rate : int or None
        ft/min.
    squawk : str or None
        Mode A code.
    category : int or None
        Emitter category.
    on_ground, alert, emergency, special_position_identifier : bool
        Status flags, ``False`` until reported.
    message_count : int
        Number of messages merged into this record.
    first_seen, last_update : datetime
        UTC timestamps.
    last_message_type : TransmissionType
        Sub-type of the most recent message.
    """

    hex_ident: str
    callsign: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    altitude: int | None = None
    ground_speed: int | None = None
    track: int | None = None
    vertical_rate: int | None = None
    squawk: str | None = None
    category: int | None = None
    on_ground: bool = False
    alert: bool = False
    emergency: bool = False
    special_position_identifier: bool = False
    message_count: int = Field(default=1, ge=1)
    first_seen: UtcDatetime
    last_update: UtcDatetime
    last_message_type: TransmissionType = TransmissionType.UNKNOWN

    @model_validator(mode="after")
    def _check_timestamps(self) -> AircraftRecord:
        if self.last_update < self.first_seen:
            raise ValueError("last_update must not precede first_seen")
        return self

    @property
    def id(self) -> str:
        return self.hex_ident

    @property
    def has_position(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    @property
    def airline(self) -> str:
        return airline_for_callsign(self.callsign)

    @property
    def country(self) -> str:
        return country_for_icao(self.hex_ident)

    @property
    def transmission_type_label(self) -> str:
        return self.last_message_type.label

    def age_seconds(self, now: datetime) -> float:
        """Seconds elapsed since the last merged message."""
        return (now - self.last_update).total_seconds()

    def merged_with(self, fields: dict[str, Any]) -> AircraftRecord:
        """Return a copy with every non-``None`` entry of *fields* applied.

        ``None`` values never erase existing data. The copy is
        re-validated so the record invariants keep holding.
        """
        patch = {key: value for key, value in fields.items() if value is not None}
        if not patch:
            return self
        data = self.model_dump()
        data.update(patch)
        return AircraftRecord.model_validate(data)

    def to_projection(self, now: datetime) -> dict[str, Any]:
        """Outbound JSON projection including the derived display fields."""
        payload = self.to_wire()
        payload["age"] = round(max(self.age_seconds(now), 0.0))
        payload["airline"] = self.airline
        payload["country"] = self.country
        payload["messageTypeLabel"] = self.transmission_type_label
        return payload
