"""Deterministic visibility and ordering policy.

This module intentionally contains *no* line parsing. It decides which
records are fresh, how snapshots are ordered, and which records count as
trusted enough to surface to subscribers.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from enum import StrEnum

from pysbs._constants import UNKNOWN, airline_for_callsign
from pysbs.models.aircraft import AircraftRecord


class CallsignPolicy(StrEnum):
    """Which records a consumer-facing snapshot may surface.

    ``ANY`` surfaces everything the store holds. ``NON_EMPTY`` requires a
    callsign that is non-blank and differs from the hex identifier.
    ``AIRLINE`` additionally requires the callsign prefix to resolve to a
    known operator.
    """

    ANY = "any"
    NON_EMPTY = "non_empty"
    AIRLINE = "airline"


def is_expired(now: datetime, last_update: datetime, window: timedelta) -> bool:
    return now - last_update >= window


def altitude_sort_key(record: AircraftRecord) -> tuple[bool, int]:
    """Ascending altitude, records without altitude last."""
    if record.altitude is None:
        return (True, 0)
    return (False, record.altitude)


def has_trusted_callsign(record: AircraftRecord) -> bool:
    callsign = (record.callsign or "").strip()
    if not callsign:
        return False
    return callsign.upper() != record.hex_ident.upper()


def is_surfaced(record: AircraftRecord, policy: CallsignPolicy) -> bool:
    if policy == CallsignPolicy.ANY:
        return True
    if not has_trusted_callsign(record):
        return False
    if policy == CallsignPolicy.AIRLINE:
        return airline_for_callsign(record.callsign) != UNKNOWN
    return True
