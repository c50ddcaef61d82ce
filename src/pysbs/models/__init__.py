"""Data models for parsed messages, aircraft state and subscriber payloads."""

from pysbs.models._base import SbsBaseModel, SbsEnum, UtcDatetime
from pysbs.models.aircraft import AircraftRecord
from pysbs.models.message import ParsedUpdate, TransmissionType
from pysbs.models.payloads import (
    AircraftDataPayload,
    AltitudeRange,
    ConnectionPayload,
    ConnectionStatus,
    ErrorPayload,
    FeedPayload,
    PayloadType,
    SnapshotPayload,
    parse_payload,
)

__all__ = [
    "AircraftDataPayload",
    "AircraftRecord",
    "AltitudeRange",
    "ConnectionPayload",
    "ConnectionStatus",
    "ErrorPayload",
    "FeedPayload",
    "ParsedUpdate",
    "PayloadType",
    "SbsBaseModel",
    "SbsEnum",
    "SnapshotPayload",
    "TransmissionType",
    "UtcDatetime",
    "parse_payload",
]
