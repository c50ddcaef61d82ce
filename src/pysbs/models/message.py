"""Parsed SBS-1 message model."""

from __future__ import annotations

import re

from pydantic import field_validator

from pysbs.models._base import SbsBaseModel, SbsEnum

_HEX_IDENT = re.compile(r"[0-9A-F]{6}")


class TransmissionType(SbsEnum):
    """BaseStation ``MSG`` transmission sub-type (field 2)."""

    UNKNOWN = -1
    ES_IDENTIFICATION = 1
    ES_SURFACE_POSITION = 2
    ES_AIRBORNE_POSITION = 3
    ES_AIRBORNE_VELOCITY = 4
    SURVEILLANCE_ALTITUDE = 5
    SURVEILLANCE_ID = 6
    AIR_TO_AIR = 7
    ALL_CALL_REPLY = 8

    @property
    def label(self) -> str:
        return _LABELS.get(self, f"Type {int(self)}")


_LABELS: dict[TransmissionType, str] = {
    TransmissionType.ES_IDENTIFICATION: "ES Identification and Category",
    TransmissionType.ES_SURFACE_POSITION: "ES Surface Position",
    TransmissionType.ES_AIRBORNE_POSITION: "ES Airborne Position",
    TransmissionType.ES_AIRBORNE_VELOCITY: "ES Airborne Velocity",
    TransmissionType.SURVEILLANCE_ALTITUDE: "Surveillance Alt",
    TransmissionType.SURVEILLANCE_ID: "Surveillance ID",
    TransmissionType.AIR_TO_AIR: "Air To Air",
    TransmissionType.ALL_CALL_REPLY: "All Call Reply",
}


class ParsedUpdate(SbsBaseModel):
    """Typed field set extracted from one ``MSG`` line.

    Only the fields meaningful for ``transmission_type`` are set; every
    other field is ``None``. A ``None`` never means zero.

    Parameters
    ----------
    hex_ident : str
        Six upper-case hex digits (ICAO 24-bit address).
    transmission_type : TransmissionType
        Sub-type code that selected the populated fields.
    callsign : str or None
        Flight identification, whitespace stripped.
    altitude : int or None
        Barometric altitude in feet.
    ground_speed : int or None
        Ground speed in knots.
    track : int or None
        Track over ground in degrees, 0-359.
    latitude, longitude : float or None
        Position in degrees; both set or both ``None``.
    vertical_rate : int or None
        Vertical rate in ft/min.
    squawk : str or None
        Mode A code.
    category : int or None
        Emitter category when supplied with an identification message.
    on_ground, alert, emergency, special_position_identifier : bool or None
        Status flags.
    """

    hex_ident: str
    transmission_type: TransmissionType
    callsign: str | None = None
    altitude: int | None = None
    ground_speed: int | None = None
    track: int | None = None
    latitude: float | None = None
    longitude: float | None = None
    vertical_rate: int | None = None
    squawk: str | None = None
    category: int | None = None
    on_ground: bool | None = None
    alert: bool | None = None
    emergency: bool | None = None
    special_position_identifier: bool | None = None

    @field_validator("hex_ident")
    @classmethod
    def _normalize_hex_ident(cls, value: str) -> str:
        ident = value.strip().upper()
        if not _HEX_IDENT.fullmatch(ident):
            raise ValueError(f"hex_ident must be six hex digits, got {value!r}")
        return ident

    def state_fields(self) -> dict[str, object]:
        """Return the populated state fields (identity and sub-type excluded)."""
        return self.model_dump(exclude={"hex_ident", "transmission_type"}, exclude_none=True)
