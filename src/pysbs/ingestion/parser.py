"""SBS-1 / BaseStation ``MSG`` line parser.

The parser is stateless: one text line in, a :class:`ParsedUpdate` or
``None`` (rejected) out. Rejection is not an error; callers simply skip
the line.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Sequence
from typing import Any

from pysbs._constants import (
    FIELD_ALERT,
    FIELD_ALTITUDE,
    FIELD_CALLSIGN,
    FIELD_EMERGENCY,
    FIELD_GROUND_SPEED,
    FIELD_HEX_IDENT,
    FIELD_LATITUDE,
    FIELD_LONGITUDE,
    FIELD_ON_GROUND,
    FIELD_SPI,
    FIELD_SQUAWK,
    FIELD_TRACK,
    FIELD_TRANSMISSION_TYPE,
    FIELD_VERTICAL_RATE,
    MESSAGE_TAG,
    MIN_FIELD_COUNT,
)
from pysbs.ingestion.normalize import in_range, parse_flag, safe_float, safe_int, safe_str, truncate_for_log
from pysbs.models.message import ParsedUpdate, TransmissionType

_logger = logging.getLogger(__name__)

_HEX_IDENT = re.compile(r"[0-9A-F]{6}")

_Extractor = Callable[[Sequence[str]], dict[str, Any]]


def _callsign(fields: Sequence[str]) -> dict[str, Any]:
    return {"callsign": safe_str(fields[FIELD_CALLSIGN])}


def _category(fields: Sequence[str]) -> dict[str, Any]:
    return {"category": safe_int(fields[FIELD_SQUAWK])}


def _altitude(fields: Sequence[str]) -> dict[str, Any]:
    return {"altitude": safe_int(fields[FIELD_ALTITUDE])}


def _velocity(fields: Sequence[str]) -> dict[str, Any]:
    track = safe_int(fields[FIELD_TRACK])
    return {
        "ground_speed": safe_int(fields[FIELD_GROUND_SPEED]),
        "track": track % 360 if track is not None else None,
    }


def _vertical_rate(fields: Sequence[str]) -> dict[str, Any]:
    return {"vertical_rate": safe_int(fields[FIELD_VERTICAL_RATE])}


def _position(fields: Sequence[str]) -> dict[str, Any]:
    lat = safe_float(fields[FIELD_LATITUDE])
    lon = safe_float(fields[FIELD_LONGITUDE])
    if not (in_range(lat, -90.0, 90.0) and in_range(lon, -180.0, 180.0)):
        return {}
    return {"latitude": lat, "longitude": lon}


def _squawk(fields: Sequence[str]) -> dict[str, Any]:
    return {"squawk": safe_str(fields[FIELD_SQUAWK])}


def _status_flags(fields: Sequence[str]) -> dict[str, Any]:
    return {
        "alert": parse_flag(fields[FIELD_ALERT]),
        "emergency": parse_flag(fields[FIELD_EMERGENCY]),
        "special_position_identifier": parse_flag(fields[FIELD_SPI]),
    }


def _ground_flag(fields: Sequence[str]) -> dict[str, Any]:
    return {"on_ground": parse_flag(fields[FIELD_ON_GROUND])}


def _surface(_fields: Sequence[str]) -> dict[str, Any]:
    return {"on_ground": True}


def _airborne(fields: Sequence[str]) -> dict[str, Any]:
    flag = parse_flag(fields[FIELD_ON_GROUND])
    return {"on_ground": flag if flag is not None else False}


# Which fields are meaningful for each transmission type.
_EXTRACTORS: dict[TransmissionType, tuple[_Extractor, ...]] = {
    TransmissionType.ES_IDENTIFICATION: (_callsign, _category),
    TransmissionType.ES_SURFACE_POSITION: (_velocity, _position, _surface),
    TransmissionType.ES_AIRBORNE_POSITION: (_altitude, _position, _status_flags, _airborne),
    TransmissionType.ES_AIRBORNE_VELOCITY: (_velocity, _vertical_rate),
    TransmissionType.SURVEILLANCE_ALTITUDE: (_altitude, _status_flags, _ground_flag),
    TransmissionType.SURVEILLANCE_ID: (_squawk, _status_flags, _ground_flag),
    TransmissionType.AIR_TO_AIR: (_altitude, _ground_flag),
    TransmissionType.ALL_CALL_REPLY: (_ground_flag,),
}


def _transmission_type(raw: str) -> TransmissionType | None:
    code = safe_int(raw)
    if code is None:
        return None
    transmission_type = TransmissionType(code)
    if transmission_type == TransmissionType.UNKNOWN:
        return None
    return transmission_type


def parse_line(line: str) -> ParsedUpdate | None:
    """Parse one BaseStation line.

    Returns ``None`` for anything that is not a structurally valid
    ``MSG`` line: wrong tag, fewer than 22 fields, a transmission type
    outside 1-8, or a missing/malformed hex identifier. Individual
    numeric fields that fail to parse are simply left unset.
    """
    text = line.strip()
    if not text:
        return None

    fields = text.split(",")
    if fields[0].strip() != MESSAGE_TAG or len(fields) < MIN_FIELD_COUNT:
        return None

    transmission_type = _transmission_type(fields[FIELD_TRANSMISSION_TYPE])
    if transmission_type is None:
        _logger.debug("Rejected MSG line with unknown transmission type: %s", truncate_for_log(text))
        return None

    hex_ident = fields[FIELD_HEX_IDENT].strip().upper()
    if not _HEX_IDENT.fullmatch(hex_ident):
        return None

    values: dict[str, Any] = {}
    for extract in _EXTRACTORS[transmission_type]:
        values.update(extract(fields))

    return ParsedUpdate(
        hex_ident=hex_ident,
        transmission_type=transmission_type,
        **values,
    )
