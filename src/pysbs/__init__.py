"""pysbs - Async real-time aircraft state aggregator for SBS-1/BaseStation feeds."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pysbs")
except PackageNotFoundError:
    __version__ = "0+local"
from pysbs.config import TrackerConfig
from pysbs.exceptions import SbsConfigError, SbsError, SbsSessionFailedError, SbsTransportError
from pysbs.ingestion.adapter import IngestionAdapter
from pysbs.ingestion.parser import parse_line
from pysbs.models import (
    AircraftDataPayload,
    AircraftRecord,
    AltitudeRange,
    ConnectionPayload,
    ConnectionStatus,
    ErrorPayload,
    FeedPayload,
    ParsedUpdate,
    PayloadType,
    SnapshotPayload,
    TransmissionType,
    parse_payload,
)
from pysbs.publisher import QueueSubscriber, SnapshotPublisher
from pysbs.server import FeedServer
from pysbs.session import ConnectionState, SubscriberSession, reconnect_delay
from pysbs.state.policy import CallsignPolicy
from pysbs.state.store import AircraftStore, TrustedAircraftView
from pysbs.tracker import AircraftTracker

__all__ = [
    "__version__",
    "AircraftDataPayload",
    "AircraftRecord",
    "AircraftStore",
    "AircraftTracker",
    "AltitudeRange",
    "CallsignPolicy",
    "ConnectionPayload",
    "ConnectionState",
    "ConnectionStatus",
    "ErrorPayload",
    "FeedPayload",
    "FeedServer",
    "IngestionAdapter",
    "ParsedUpdate",
    "PayloadType",
    "QueueSubscriber",
    "SbsConfigError",
    "SbsError",
    "SbsSessionFailedError",
    "SbsTransportError",
    "SnapshotPayload",
    "SnapshotPublisher",
    "SubscriberSession",
    "TrackerConfig",
    "TransmissionType",
    "TrustedAircraftView",
    "parse_line",
    "parse_payload",
    "reconnect_delay",
]
