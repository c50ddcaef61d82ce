from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from pysbs.config import TrackerConfig
from pysbs.exceptions import SbsTransportError
from pysbs.ingestion.parser import parse_line
from pysbs.ingestion.sources import IterableLineSource, MqttLineSource, TcpLineSource
from pysbs.models.payloads import AircraftDataPayload, ConnectionPayload, ConnectionStatus, ErrorPayload
from pysbs.state.policy import CallsignPolicy
from pysbs.state.store import AircraftStore
from pysbs.tracker import AircraftTracker, default_source_factory

POSITION = "MSG,3,1,1,ABC123,1,,,,,,,,,-6.2,106.8,,,0,0,0,0"
VELOCITY = "MSG,4,1,1,ABC123,1,,,,,,,450,270,,,-64,,,,,"
SQUAWK = "MSG,6,1,1,ABC123,1,,,,,,,,,,,,1200,0,0,0,0"


class _BrokenSource(IterableLineSource):
    async def next_line(self) -> str | bytes | None:
        line = await super().next_line()
        if line is None:
            raise SbsTransportError("reset by peer", endpoint=self.endpoint)
        return line


async def _wait_until_closed(tracker: AircraftTracker) -> None:
    async with asyncio.timeout(1.0):
        while tracker.adapter is None or not tracker.adapter.closed:
            await asyncio.sleep(0)


def _drain(subscriber) -> list:
    payloads = []
    while subscriber.qsize():
        payloads.append(subscriber.get_nowait())
    return payloads


def test_default_source_factory_follows_config() -> None:
    tcp = default_source_factory(TrackerConfig(tcp_host="radar.local", tcp_port=30003))()
    mqtt = default_source_factory(TrackerConfig(source="mqtt", mqtt_host="broker.local"))()

    assert isinstance(tcp, TcpLineSource)
    assert tcp.endpoint == "tcp://radar.local:30003"
    assert isinstance(mqtt, MqttLineSource)


@pytest.mark.asyncio
async def test_clean_stream_end_broadcasts_connectivity_and_incremental_updates() -> None:
    config = TrackerConfig(stream_retry_delay=0, push_incremental=True, callsign_policy=CallsignPolicy.ANY)
    tracker = AircraftTracker(config, source_factory=lambda: IterableLineSource([POSITION, VELOCITY, SQUAWK]))
    subscriber = tracker.subscribe(maxsize=32)

    async with tracker:
        await _wait_until_closed(tracker)
        assert not tracker.upstream_connected

    payloads = _drain(subscriber)
    assert [payload.type for payload in payloads] == [
        "connection",
        "aircraft-data",
        "aircraft-data",
        "aircraft-data",
        "connection",
    ]
    assert payloads[0].status is ConnectionStatus.CONNECTED
    assert payloads[-1].status is ConnectionStatus.DISCONNECTED
    last = payloads[-2]
    assert isinstance(last, AircraftDataPayload)
    assert last.raw == SQUAWK
    assert last.data.squawk == "1200"
    assert last.data.ground_speed == 450


@pytest.mark.asyncio
async def test_incremental_updates_respect_callsign_policy() -> None:
    config = TrackerConfig(stream_retry_delay=0, push_incremental=True)
    tracker = AircraftTracker(config, source_factory=lambda: IterableLineSource([POSITION, VELOCITY]))
    subscriber = tracker.subscribe(maxsize=32)

    async with tracker:
        await _wait_until_closed(tracker)

    assert [payload.type for payload in _drain(subscriber)] == ["connection", "connection"]
    assert tracker.store.get("ABC123").message_count == 2


@pytest.mark.asyncio
async def test_stream_failure_broadcasts_error_then_disconnected() -> None:
    config = TrackerConfig(stream_retry_delay=0)
    tracker = AircraftTracker(config, source_factory=lambda: _BrokenSource([POSITION], endpoint="radar"))
    subscriber = tracker.subscribe()

    async with tracker:
        await _wait_until_closed(tracker)

    payloads = _drain(subscriber)
    assert [payload.type for payload in payloads] == ["connection", "error", "connection"]
    assert isinstance(payloads[1], ErrorPayload)
    assert "reset by peer" in payloads[1].message
    assert isinstance(payloads[2], ConnectionPayload)
    assert payloads[2].status is ConnectionStatus.DISCONNECTED


@pytest.mark.asyncio
async def test_stream_reestablished_after_retry_delay() -> None:
    opened: list[int] = []

    def factory() -> IterableLineSource:
        opened.append(len(opened))
        return IterableLineSource([POSITION])

    tracker = AircraftTracker(TrackerConfig(stream_retry_delay=0.01), source_factory=factory)
    async with tracker:
        async with asyncio.timeout(1.0):
            while len(opened) < 3:
                await asyncio.sleep(0.005)

    assert tracker.store.get("ABC123").message_count >= 2


@pytest.mark.asyncio
async def test_new_subscriber_sees_current_connection_status() -> None:
    tracker = AircraftTracker(TrackerConfig(stream_retry_delay=0), source_factory=lambda: IterableLineSource([]))

    payload = tracker.connection_payload()

    assert payload.status is ConnectionStatus.DISCONNECTED
    subscriber = tracker.subscribe()
    tracker.unsubscribe(subscriber)
    assert subscriber.closed
    assert tracker.publisher.subscriber_count == 0


def test_sweep_uses_configured_expiry_window() -> None:
    now = datetime(2026, 1, 1, tzinfo=UTC)
    clock = {"now": now}
    store = AircraftStore(clock=lambda: clock["now"])
    tracker = AircraftTracker(TrackerConfig(expiry_window=10.0), store=store)
    store.apply_update(parse_line(POSITION))
    clock["now"] = now + timedelta(seconds=11)

    assert tracker.sweep() == 1
    assert len(store) == 0


class _ExplodingSource(IterableLineSource):
    async def next_line(self) -> str | bytes | None:
        raise ValueError("corrupt frame")


@pytest.mark.asyncio
async def test_unexpected_stream_error_reported_and_retried() -> None:
    attempts: list[int] = []

    def factory() -> IterableLineSource:
        attempts.append(len(attempts))
        if len(attempts) == 1:
            raise RuntimeError("resolver unavailable")
        if len(attempts) == 2:
            return _ExplodingSource([])
        return IterableLineSource([POSITION])

    tracker = AircraftTracker(TrackerConfig(stream_retry_delay=0.01), source_factory=factory)
    subscriber = tracker.subscribe(maxsize=64)
    async with tracker:
        async with asyncio.timeout(1.0):
            while "ABC123" not in tracker.store:
                await asyncio.sleep(0.005)

    errors = [payload for payload in _drain(subscriber) if isinstance(payload, ErrorPayload)]
    assert len(attempts) >= 3
    assert "corrupt frame" in errors[0].message
