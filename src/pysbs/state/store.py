"""Thread-safe in-memory aircraft state store.

This is the only component allowed to merge parsed updates. Consumers
only ever receive immutable :class:`AircraftRecord` copies.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from pysbs.ingestion.normalize import prune_patch
from pysbs.models.aircraft import AircraftRecord
from pysbs.models.message import ParsedUpdate
from pysbs.state.policy import CallsignPolicy, altitude_sort_key, is_expired, is_surfaced

_logger = logging.getLogger(__name__)

DEFAULT_EXPIRY_WINDOW = timedelta(seconds=30)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class AircraftStore:
    """In-memory table of aircraft records keyed by hex identifier.

    A single coarse lock guards the table. Every public operation holds it
    only for in-memory work; no I/O ever happens under the lock.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._aircraft: dict[str, AircraftRecord] = {}

    def now(self) -> datetime:
        return self._clock()

    def apply_update(self, update: ParsedUpdate) -> AircraftRecord:
        """Merge a parsed update and return the resulting record.

        Creates the record on first sight of an identifier. Only fields the
        update actually carries overwrite stored values.
        """
        now = self._clock()
        patch = prune_patch(update.state_fields())
        with self._lock:
            existing = self._aircraft.get(update.hex_ident)
            if existing is None:
                record = AircraftRecord(
                    hex_ident=update.hex_ident,
                    first_seen=now,
                    last_update=now,
                    message_count=1,
                    last_message_type=update.transmission_type,
                    **patch,
                )
            else:
                # A clock stepping backwards must not break last_update >= first_seen.
                stamp = max(now, existing.first_seen)
                patch.update(
                    message_count=existing.message_count + 1,
                    last_update=stamp,
                    last_message_type=update.transmission_type,
                )
                record = existing.merged_with(patch)
            self._aircraft[update.hex_ident] = record
        if existing is None:
            _logger.debug("New aircraft %s", update.hex_ident)
        return record

    def get(self, hex_ident: str) -> AircraftRecord | None:
        """Raw lookup that ignores expiry."""
        with self._lock:
            return self._aircraft.get(hex_ident.strip().upper())

    def snapshot(
        self,
        now: datetime | None = None,
        expiry_window: timedelta = DEFAULT_EXPIRY_WINDOW,
    ) -> list[AircraftRecord]:
        """Return fresh records ordered by ascending altitude.

        Records without an altitude sort after all others. Order among
        equal altitudes is unspecified.
        """
        if now is None:
            now = self._clock()
        with self._lock:
            records = list(self._aircraft.values())
        fresh = [record for record in records if not is_expired(now, record.last_update, expiry_window)]
        fresh.sort(key=altitude_sort_key)
        return fresh

    def sweep_expired(
        self,
        now: datetime | None = None,
        expiry_window: timedelta = DEFAULT_EXPIRY_WINDOW,
    ) -> int:
        """Delete expired records and return how many were removed."""
        if now is None:
            now = self._clock()
        with self._lock:
            expired = [
                hex_ident
                for hex_ident, record in self._aircraft.items()
                if is_expired(now, record.last_update, expiry_window)
            ]
            for hex_ident in expired:
                del self._aircraft[hex_ident]
        if expired:
            _logger.debug("Removed %d expired aircraft: %s", len(expired), ", ".join(expired))
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._aircraft.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._aircraft)

    def __contains__(self, hex_ident: object) -> bool:
        if not isinstance(hex_ident, str):
            return False
        return self.get(hex_ident) is not None


class TrustedAircraftView:
    """Consumer-facing view that hides records failing a callsign policy.

    Merging is untouched: untrusted records keep accumulating state in the
    underlying store and appear here as soon as they qualify.
    """

    def __init__(self, store: AircraftStore, policy: CallsignPolicy = CallsignPolicy.NON_EMPTY) -> None:
        self._store = store
        self._policy = policy

    @property
    def store(self) -> AircraftStore:
        return self._store

    @property
    def policy(self) -> CallsignPolicy:
        return self._policy

    def now(self) -> datetime:
        return self._store.now()

    def accepts(self, record: AircraftRecord) -> bool:
        return is_surfaced(record, self._policy)

    def snapshot(
        self,
        now: datetime | None = None,
        expiry_window: timedelta = DEFAULT_EXPIRY_WINDOW,
    ) -> list[AircraftRecord]:
        return [record for record in self._store.snapshot(now, expiry_window) if self.accepts(record)]
