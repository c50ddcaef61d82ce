"""End-to-end: BaseStation TCP feed -> tracker -> WebSocket -> subscriber session."""

from __future__ import annotations

import asyncio

import pytest

from pysbs import AircraftTracker, CallsignPolicy, FeedServer, SubscriberSession, TrackerConfig
from pysbs.session import ConnectionState

LINES = [
    "MSG,1,1,1,8A02F1,1,,,,,GIA404  ,,,,,,,,,,,",
    "MSG,3,1,1,8A02F1,1,,,,,,35000,,,-6.2,106.8,,,0,0,0,0",
    "MSG,4,1,1,8A02F1,1,,,,,,,450,270,,,-64,,,,,",
    "MSG,3,1,1,750123,1,,,,,,12000,,,2.7,101.7,,,0,0,0,0",
    "GARBAGE,not,a,real,message",
]


async def _serve_basestation(release: asyncio.Event) -> asyncio.Server:
    async def handle(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        writer.write("".join(f"{line}\r\n" for line in LINES).encode("ascii"))
        await writer.drain()
        await release.wait()
        writer.close()

    return await asyncio.start_server(handle, "127.0.0.1", 0)


async def _until(predicate, timeout: float = 3.0) -> None:
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.01)


@pytest.mark.asyncio
async def test_feed_reaches_websocket_subscriber() -> None:
    release = asyncio.Event()
    feed = await _serve_basestation(release)
    feed_port = feed.sockets[0].getsockname()[1]
    config = TrackerConfig(
        tcp_host="127.0.0.1",
        tcp_port=feed_port,
        publish_interval=0.05,
        expiry_window=30.0,
        callsign_policy=CallsignPolicy.ANY,
        stream_retry_delay=0,
    )

    try:
        async with AircraftTracker(config) as tracker, FeedServer(tracker, "127.0.0.1", 0) as server:
            async with SubscriberSession(f"ws://127.0.0.1:{server.port}/ws", backoff_base=0.05) as session:
                await session.wait_connected(timeout=3.0)
                await _until(lambda: len(session.aircraft) == 2)

                assert session.upstream_connected
                low, high = session.aircraft
                assert low.hex_ident == "750123"
                assert low.altitude == 12000
                assert high.hex_ident == "8A02F1"
                assert high.callsign == "GIA404"
                assert high.airline == "Garuda Indonesia"
                assert high.ground_speed == 450
                assert high.latitude == pytest.approx(-6.2)
                assert session.altitude_range.min == 12000
                assert session.altitude_range.max == 35000
                assert tracker.adapter.lines_rejected == 1

                release.set()
                await _until(lambda: not session.upstream_connected)
                assert session.state is ConnectionState.CONNECTED

            assert session.aircraft == ()
            await _until(lambda: server.client_count == 0)
    finally:
        release.set()
        feed.close()
        await feed.wait_closed()


@pytest.mark.asyncio
async def test_session_fails_when_server_unreachable() -> None:
    reserved = await asyncio.start_server(lambda r, w: None, "127.0.0.1", 0)
    port = reserved.sockets[0].getsockname()[1]
    reserved.close()
    await reserved.wait_closed()

    async with SubscriberSession(f"ws://127.0.0.1:{port}/ws", max_reconnect_attempts=2, backoff_base=0.01) as session:
        await session.wait_for_state(ConnectionState.FAILED, timeout=3.0)

        assert session.aircraft == ()
        assert session.attempts == 3
