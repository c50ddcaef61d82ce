"""Consumer-side subscriber session with exponential reconnect backoff."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Awaitable, Callable
from datetime import datetime
from enum import StrEnum
from typing import Any, Protocol

import aiohttp
from pydantic import ValidationError

from pysbs.config import TrackerConfig
from pysbs.exceptions import SbsSessionFailedError, SbsTransportError
from pysbs.ingestion.normalize import truncate_for_log
from pysbs.models.aircraft import AircraftRecord
from pysbs.models.payloads import (
    AircraftDataPayload,
    AltitudeRange,
    ConnectionPayload,
    ConnectionStatus,
    ErrorPayload,
    FeedPayload,
    SnapshotPayload,
    parse_payload,
)
from pysbs.state.policy import altitude_sort_key

_logger = logging.getLogger(__name__)

DEFAULT_MAX_RECONNECT_ATTEMPTS = 5
DEFAULT_BACKOFF_BASE = 1.0
DEFAULT_EXPIRY_WINDOW = 30.0


class ConnectionState(StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"
    FAILED = "failed"


def reconnect_delay(attempt: int, base: float = DEFAULT_BACKOFF_BASE) -> float:
    """Delay in seconds before reconnect attempt number *attempt* (1-based)."""
    return float(2**attempt) * base


class PayloadChannel(Protocol):
    """Open duplex channel delivering JSON text payloads.

    ``receive`` returns ``None`` once the peer has closed the channel.
    """

    async def receive(self) -> str | None: ...

    async def close(self) -> None: ...


Connector = Callable[[], Awaitable[PayloadChannel]]


class WebSocketChannel:
    """:class:`PayloadChannel` over an aiohttp client WebSocket."""

    def __init__(self, ws: aiohttp.ClientWebSocketResponse, *, endpoint: str = "") -> None:
        self._ws = ws
        self._endpoint = endpoint

    async def receive(self) -> str | None:
        while True:
            msg = await self._ws.receive()
            if msg.type == aiohttp.WSMsgType.TEXT:
                return str(msg.data)
            if msg.type == aiohttp.WSMsgType.BINARY:
                return bytes(msg.data).decode("utf-8", errors="replace")
            if msg.type == aiohttp.WSMsgType.ERROR:
                raise SbsTransportError(f"WebSocket error: {self._ws.exception()}", endpoint=self._endpoint)
            if msg.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSING, aiohttp.WSMsgType.CLOSED):
                return None

    async def close(self) -> None:
        await self._ws.close()


class SubscriberSession:
    """Subscribe to a feed server and keep a local view of the aircraft.

    State machine::

        disconnected -> connecting -> connected -> disconnected | failed
                                    \\-> error (error payload received)

    After every connection loss (or failed attempt) the attempt counter is
    incremented and the next attempt is scheduled ``2**attempt *
    backoff_base`` seconds later. Once the counter exceeds
    ``max_reconnect_attempts`` the session enters ``failed`` and stays
    there until :meth:`connect` is called explicitly.

    The local view is only exposed while a channel is open. A disconnected
    session reports no aircraft at all. Each record also expires locally
    once it has been silent for ``expiry_window`` seconds, counted from its
    age when the payload carrying it was sent.

    Parameters
    ----------
    url : str
        WebSocket URL of the feed server (used by the default connector).
    http_session : aiohttp.ClientSession or None
        Shared HTTP session. When omitted, one is created on first connect
        and closed by :meth:`close`.
    max_reconnect_attempts : int
        Reconnect attempts before giving up.
    backoff_base : float
        Backoff base in seconds.
    connector : Connector or None
        Replacement for the default WebSocket connector.
    on_change : callable or None
        Called with the session after every state or view change.
    expiry_window : float or None
        Local expiry in seconds; ``None`` keeps records until the next
        snapshot replaces them.
    clock : callable
        Monotonic clock used for local expiry.
    """

    def __init__(
        self,
        url: str = "",
        *,
        http_session: aiohttp.ClientSession | None = None,
        max_reconnect_attempts: int = DEFAULT_MAX_RECONNECT_ATTEMPTS,
        backoff_base: float = DEFAULT_BACKOFF_BASE,
        connector: Connector | None = None,
        on_change: Callable[[SubscriberSession], None] | None = None,
        expiry_window: float | None = DEFAULT_EXPIRY_WINDOW,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if connector is None and not url:
            raise ValueError("either url or connector is required")
        self._url = url
        self._http_session = http_session
        self._external_session = http_session is not None
        self._max_attempts = max_reconnect_attempts
        self._backoff_base = backoff_base
        self._connector: Connector = connector or self._connect_websocket
        self._on_change = on_change
        self._expiry_window = expiry_window
        self._clock = clock

        self._state = ConnectionState.DISCONNECTED
        self._state_changed = asyncio.Event()
        self._attempts = 0
        self._channel: PayloadChannel | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._aircraft: dict[str, AircraftRecord] = {}
        self._deadlines: dict[str, float] = {}

        self.altitude_range: AltitudeRange | None = None
        self.last_snapshot_at: datetime | None = None
        self.last_error: str | None = None
        self.upstream_connected = False
        self.payloads_received = 0

    async def __aenter__(self) -> SubscriberSession:
        await self.connect()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Public state
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def attempts(self) -> int:
        return self._attempts

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    @property
    def aircraft(self) -> tuple[AircraftRecord, ...]:
        """Ordered local view, or ``()`` when no channel is open."""
        if self._channel is None or self._state not in (ConnectionState.CONNECTED, ConnectionState.ERROR):
            return ()
        self._drop_expired()
        return tuple(sorted(self._aircraft.values(), key=altitude_sort_key))

    def get(self, hex_ident: str) -> AircraftRecord | None:
        if not self.aircraft:
            return None
        return self._aircraft.get(hex_ident.strip().upper())

    @classmethod
    def from_config(cls, url: str, config: TrackerConfig, **kwargs: Any) -> SubscriberSession:
        """Build a session using the reconnect and expiry settings of *config*."""
        kwargs.setdefault("max_reconnect_attempts", config.max_reconnect_attempts)
        kwargs.setdefault("backoff_base", config.backoff_base)
        kwargs.setdefault("expiry_window", config.expiry_window)
        return cls(url, **kwargs)

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the channel now, cancelling any pending reconnect.

        Calling this from ``failed`` resets the attempt counter. A failed
        attempt leaves the session ``disconnected`` with a reconnect
        scheduled (or ``failed`` past the cap); it does not raise.
        """
        self._cancel_reconnect()
        if self._state is ConnectionState.FAILED:
            self._attempts = 0
        if self._channel is not None:
            return
        await self._attempt()

    async def disconnect(self) -> None:
        """Close the channel, drop any pending reconnect and force ``disconnected``."""
        self._cancel_reconnect()
        reader = self._reader_task
        self._reader_task = None
        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reader
        await self._close_channel()
        self._clear_view()
        self._set_state(ConnectionState.DISCONNECTED)

    async def close(self) -> None:
        """Disconnect and release an owned HTTP session."""
        await self.disconnect()
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None

    async def wait_connected(self, timeout: float | None = None) -> None:
        """Wait until ``connected``.

        Raises
        ------
        SbsSessionFailedError
            The session reached the terminal ``failed`` state.
        TimeoutError
            *timeout* elapsed first.
        """
        async with asyncio.timeout(timeout):
            while True:
                if self._state is ConnectionState.CONNECTED:
                    return
                if self._state is ConnectionState.FAILED:
                    raise SbsSessionFailedError(
                        f"Gave up after {self._max_attempts} reconnect attempts: {self.last_error}"
                    )
                await self._state_changed.wait()

    async def wait_for_state(self, *states: ConnectionState, timeout: float | None = None) -> ConnectionState:
        async with asyncio.timeout(timeout):
            while self._state not in states:
                await self._state_changed.wait()
        return self._state

    async def _attempt(self) -> None:
        self._set_state(ConnectionState.CONNECTING)
        try:
            channel = await self._connector()
        except (SbsTransportError, aiohttp.ClientError, OSError, TimeoutError) as exc:
            self.last_error = str(exc) or type(exc).__name__
            _logger.warning("Connection to %s failed: %s", self._url or "feed", self.last_error)
            self._set_state(ConnectionState.DISCONNECTED)
            self._schedule_reconnect()
            return

        self._channel = channel
        self._attempts = 0
        self.last_error = None
        _logger.info("Connected to %s", self._url or "feed")
        self._set_state(ConnectionState.CONNECTED)
        self._reader_task = asyncio.get_running_loop().create_task(self._read_loop(channel), name="sbs-session-reader")

    async def _read_loop(self, channel: PayloadChannel) -> None:
        error: BaseException | None = None
        try:
            while True:
                text = await channel.receive()
                if text is None:
                    break
                self.handle_message(text)
        except (SbsTransportError, aiohttp.ClientError, OSError) as exc:
            error = exc

        if self._channel is not channel:
            return
        self._reader_task = None
        await self._close_channel()
        self._clear_view()
        if error is not None:
            self.last_error = str(error)
            _logger.warning("Connection to %s lost: %s", self._url or "feed", error)
        else:
            _logger.info("Connection to %s closed by peer", self._url or "feed")
        self._set_state(ConnectionState.DISCONNECTED)
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        self._attempts += 1
        if self._attempts > self._max_attempts:
            _logger.error("Giving up on %s after %d reconnect attempts", self._url or "feed", self._max_attempts)
            self._set_state(ConnectionState.FAILED)
            return
        delay = reconnect_delay(self._attempts, self._backoff_base)
        _logger.info("Reconnect attempt %d/%d in %.1fs", self._attempts, self._max_attempts, delay)
        self._reconnect_task = asyncio.get_running_loop().create_task(
            self._reconnect_after(delay), name="sbs-session-reconnect"
        )

    async def _reconnect_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        await self._attempt()

    def _cancel_reconnect(self) -> None:
        task = self._reconnect_task
        self._reconnect_task = None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _close_channel(self) -> None:
        channel = self._channel
        self._channel = None
        if channel is None:
            return
        try:
            await channel.close()
        except (SbsTransportError, aiohttp.ClientError, OSError) as exc:
            _logger.debug("Error closing channel: %s", exc)

    async def _connect_websocket(self) -> PayloadChannel:
        if self._http_session is None:
            self._http_session = aiohttp.ClientSession()
        ws = await self._http_session.ws_connect(self._url, heartbeat=30.0)
        return WebSocketChannel(ws, endpoint=self._url)

    def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        _logger.debug("Session state %s -> %s", self._state, state)
        self._state = state
        self._state_changed.set()
        self._state_changed = asyncio.Event()
        self._notify()

    def _notify(self) -> None:
        if self._on_change is None:
            return
        try:
            self._on_change(self)
        except Exception:
            _logger.exception("on_change callback failed")

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def handle_message(self, text: str) -> FeedPayload | None:
        """Validate and dispatch one inbound text payload."""
        try:
            payload = parse_payload(text)
        except ValidationError as exc:
            _logger.debug("Ignoring malformed payload %s: %s", truncate_for_log(text), exc.error_count())
            return None
        self.dispatch(payload)
        return payload

    def dispatch(self, payload: FeedPayload) -> None:
        self.payloads_received += 1
        if isinstance(payload, SnapshotPayload):
            self._aircraft = {record.hex_ident: record for record in payload.aircraft}
            self._deadlines = {
                record.hex_ident: self._deadline_for(record, payload.timestamp) for record in payload.aircraft
            }
            self.altitude_range = payload.altitude_range
            self.last_snapshot_at = payload.timestamp
            if self._state is ConnectionState.ERROR and self._channel is not None:
                self._set_state(ConnectionState.CONNECTED)
        elif isinstance(payload, AircraftDataPayload):
            self._merge(payload.data)
            self._deadlines[payload.data.hex_ident] = self._deadline_for(payload.data, payload.timestamp)
        elif isinstance(payload, ConnectionPayload):
            self.upstream_connected = payload.status is ConnectionStatus.CONNECTED
        elif isinstance(payload, ErrorPayload):
            self.last_error = payload.message
            _logger.warning("Feed reported error: %s", payload.message)
            self._set_state(ConnectionState.ERROR)
        self._notify()

    def _merge(self, incoming: AircraftRecord) -> None:
        existing = self._aircraft.get(incoming.hex_ident)
        if existing is None:
            self._aircraft[incoming.hex_ident] = incoming
            return
        fields = incoming.model_dump(exclude={"hex_ident", "first_seen"})
        if fields["last_update"] < existing.first_seen:
            fields.pop("last_update")
        self._aircraft[incoming.hex_ident] = existing.merged_with(fields)

    def _deadline_for(self, record: AircraftRecord, sent_at: datetime) -> float:
        if self._expiry_window is None:
            return float("inf")
        age = max(record.age_seconds(sent_at), 0.0)
        return self._clock() + self._expiry_window - age

    def _drop_expired(self) -> None:
        now = self._clock()
        expired = [hex_ident for hex_ident, deadline in self._deadlines.items() if deadline <= now]
        for hex_ident in expired:
            del self._deadlines[hex_ident]
            self._aircraft.pop(hex_ident, None)
        if expired:
            _logger.debug("Expired %d silent aircraft locally", len(expired))

    def _clear_view(self) -> None:
        self._aircraft.clear()
        self._deadlines.clear()
