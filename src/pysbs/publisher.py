"""Periodic snapshot publisher and non-blocking subscriber fan-out."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from datetime import datetime, timedelta
from typing import Protocol

from pysbs._periodic import PeriodicTask
from pysbs.exceptions import SbsConfigError
from pysbs.models.aircraft import AircraftRecord
from pysbs.models.payloads import AltitudeRange, FeedPayload, SnapshotPayload

_logger = logging.getLogger(__name__)

DEFAULT_PUBLISH_INTERVAL = 2.0
DEFAULT_EXPIRY_WINDOW = 30.0
SKIP_LOG_EVERY = 100


class SnapshotSource(Protocol):
    """Anything that can produce an ordered snapshot (store or filtered view)."""

    def now(self) -> datetime: ...

    def snapshot(self, now: datetime | None = None, expiry_window: timedelta = ...) -> list[AircraftRecord]: ...


class Subscriber(Protocol):
    """Receiving end of the fan-out.

    ``offer`` must never block: it either accepts the payload or returns
    ``False`` so the payload is skipped for this subscriber.
    """

    @property
    def closed(self) -> bool: ...

    def offer(self, payload: FeedPayload) -> bool: ...


class QueueSubscriber:
    """Subscriber backed by a bounded :class:`asyncio.Queue`.

    When the queue is full, new payloads are skipped and counted in
    :attr:`dropped`; the consumer keeps whatever it already buffered.
    """

    def __init__(self, maxsize: int = 16, *, name: str = "subscriber") -> None:
        if maxsize < 1:
            raise ValueError("maxsize must be at least 1")
        self.name = name
        self._queue: asyncio.Queue[FeedPayload] = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self.delivered = 0
        self.dropped = 0

    def __repr__(self) -> str:
        return f"QueueSubscriber({self.name!r})"

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        self._closed = True

    def qsize(self) -> int:
        return self._queue.qsize()

    def offer(self, payload: FeedPayload) -> bool:
        if self._closed:
            return False
        try:
            self._queue.put_nowait(payload)
        except asyncio.QueueFull:
            self.dropped += 1
            return False
        self.delivered += 1
        return True

    async def get(self) -> FeedPayload:
        return await self._queue.get()

    def get_nowait(self) -> FeedPayload:
        return self._queue.get_nowait()


def summarize_altitudes(records: Sequence[AircraftRecord]) -> AltitudeRange:
    altitudes = [record.altitude for record in records if record.altitude is not None]
    return AltitudeRange(
        min=min(altitudes) if altitudes else None,
        max=max(altitudes) if altitudes else None,
        with_altitude=len(altitudes),
        total=len(records),
    )


def build_snapshot_payload(records: Sequence[AircraftRecord], now: datetime) -> SnapshotPayload:
    """Build the immutable ``aircraft-update`` payload for one tick."""
    return SnapshotPayload(
        timestamp=now,
        count=len(records),
        aircraft=tuple(records),
        altitude_range=summarize_altitudes(records),
    )


class SnapshotPublisher:
    """Broadcast ordered snapshots to registered subscribers on a timer.

    Parameters
    ----------
    source : SnapshotSource
        Store or filtered view to read from.
    interval : float
        Seconds between ticks.
    expiry_window : float
        Records silent for this many seconds are left out. Must exceed
        ``interval`` so every record is published at least once while fresh.
    send_empty : bool
        Broadcast every empty snapshot. Off by default: only the first
        empty snapshot after a non-empty one is sent, so subscribers see
        the last aircraft disappear; later empty ticks send nothing.
    """

    def __init__(
        self,
        source: SnapshotSource,
        *,
        interval: float = DEFAULT_PUBLISH_INTERVAL,
        expiry_window: float = DEFAULT_EXPIRY_WINDOW,
        send_empty: bool = False,
    ) -> None:
        if interval <= 0:
            raise SbsConfigError("publish interval must be positive")
        if expiry_window <= interval:
            raise SbsConfigError(f"expiry window ({expiry_window}s) must exceed publish interval ({interval}s)")
        self._source = source
        self._interval = interval
        self._expiry_window = timedelta(seconds=expiry_window)
        self._send_empty = send_empty
        self._subscribers: list[Subscriber] = []
        self._timer = PeriodicTask(self.tick, interval, name="snapshot-publisher")
        self.ticks = 0
        self.last_payload: SnapshotPayload | None = None
        self._skips: dict[Subscriber, int] = {}

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def expiry_window(self) -> timedelta:
        return self._expiry_window

    @property
    def is_running(self) -> bool:
        return self._timer.is_running

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def register(self, subscriber: Subscriber) -> None:
        if subscriber not in self._subscribers:
            self._subscribers.append(subscriber)

    def unregister(self, subscriber: Subscriber) -> None:
        self._skips.pop(subscriber, None)
        if subscriber in self._subscribers:
            self._subscribers.remove(subscriber)

    def tick(self) -> SnapshotPayload | None:
        """Take one snapshot and broadcast it; return what was sent."""
        self.ticks += 1
        now = self._source.now()
        records = self._source.snapshot(now, self._expiry_window)
        if not records and not self._send_empty:
            previous = self.last_payload
            if previous is None or previous.count == 0:
                return None
        payload = build_snapshot_payload(records, now)
        self.last_payload = payload
        delivered = self.broadcast(payload)
        if records:
            altitudes = payload.altitude_range
            _logger.debug(
                "Sent %d aircraft to %d subscribers (alt %s-%s ft)",
                payload.count,
                delivered,
                altitudes.min,
                altitudes.max,
            )
        return payload

    def broadcast(self, payload: FeedPayload) -> int:
        """Offer *payload* to every subscriber; return how many accepted it."""
        delivered = 0
        for subscriber in list(self._subscribers):
            if subscriber.closed:
                self.unregister(subscriber)
                continue
            if subscriber.offer(payload):
                delivered += 1
                self._skips.pop(subscriber, None)
                continue
            skipped = self._skips.get(subscriber, 0) + 1
            self._skips[subscriber] = skipped
            if skipped == 1 or skipped % SKIP_LOG_EVERY == 0:
                _logger.warning(
                    "Subscriber %s is not keeping up; skipped %s (%d in a row)", subscriber, payload.type, skipped
                )
        return delivered

    def start(self) -> None:
        self._timer.start()

    async def stop(self) -> None:
        await self._timer.stop()
