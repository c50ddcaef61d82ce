"""Pluggable inbound line sources.

Every source satisfies :class:`LineSource`: ``open()`` establishes the
transport, ``next_line()`` returns one raw line or ``None`` at end of
stream, ``close()`` releases the transport. Transport failures surface
as :class:`pysbs.exceptions.SbsTransportError`.
"""

from __future__ import annotations

import asyncio
import collections
import logging
import secrets
from collections.abc import AsyncIterable, AsyncIterator, Iterable, Iterator
from typing import Any, Protocol, cast

import paho.mqtt.client as mqtt

from pysbs._constants import DEFAULT_TCP_PORT
from pysbs.exceptions import SbsTransportError
from pysbs.ingestion.lines import DEFAULT_MAX_LINE_LENGTH, LineSplitter

_logger = logging.getLogger(__name__)

RawLine = bytes | str


class LineSource(Protocol):
    """Structural interface consumed by the ingestion adapter."""

    @property
    def endpoint(self) -> str: ...

    async def open(self) -> None: ...

    async def next_line(self) -> RawLine | None: ...

    async def close(self) -> None: ...


class IterableLineSource:
    """Line source over an in-memory, file or async iterable.

    Used for replaying captures and for simulated feeds.
    """

    def __init__(self, lines: Iterable[RawLine] | AsyncIterable[RawLine], *, endpoint: str = "iterable") -> None:
        self._lines = lines
        self._endpoint = endpoint
        self._sync: Iterator[RawLine] | None = None
        self._async: AsyncIterator[RawLine] | None = None
        self._closed = False

    @property
    def endpoint(self) -> str:
        return self._endpoint

    async def open(self) -> None:
        if isinstance(self._lines, AsyncIterable):
            self._async = aiter(self._lines)
        else:
            self._sync = iter(self._lines)

    async def next_line(self) -> RawLine | None:
        if self._closed:
            return None
        if self._sync is None and self._async is None:
            await self.open()
        if self._async is not None:
            try:
                return await anext(self._async)
            except StopAsyncIteration:
                return None
        assert self._sync is not None  # noqa: S101
        return next(self._sync, None)

    async def close(self) -> None:
        self._closed = True


class StreamLineSource:
    """Line source over an :class:`asyncio.StreamReader` byte stream.

    Reads raw chunks and reassembles line boundaries with a
    :class:`LineSplitter`.
    """

    def __init__(
        self,
        reader: asyncio.StreamReader | None = None,
        writer: asyncio.StreamWriter | None = None,
        *,
        endpoint: str = "stream",
        chunk_size: int = 4096,
        max_line_length: int = DEFAULT_MAX_LINE_LENGTH,
    ) -> None:
        self._reader = reader
        self._writer = writer
        self._endpoint = endpoint
        self._chunk_size = chunk_size
        self._splitter = LineSplitter(max_line_length=max_line_length)
        self._pending: collections.deque[bytes] = collections.deque()
        self._eof = False

    @property
    def endpoint(self) -> str:
        return self._endpoint

    async def open(self) -> None:
        if self._reader is None:
            raise SbsTransportError("Stream source has no reader", endpoint=self._endpoint)

    async def next_line(self) -> bytes | None:
        if self._reader is None:
            await self.open()
        assert self._reader is not None  # noqa: S101
        while not self._pending:
            if self._eof:
                return None
            try:
                chunk = await self._reader.read(self._chunk_size)
            except (OSError, asyncio.IncompleteReadError) as exc:
                raise SbsTransportError(f"Read from {self._endpoint} failed: {exc}", endpoint=self._endpoint) from exc
            if not chunk:
                self._eof = True
                self._pending.extend(self._splitter.flush())
                continue
            self._pending.extend(self._splitter.feed(chunk))
        return self._pending.popleft()

    async def close(self) -> None:
        writer = self._writer
        self._writer = None
        if writer is None:
            return
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            _logger.debug("Error while closing %s", self._endpoint, exc_info=True)


class TcpLineSource(StreamLineSource):
    """BaseStation TCP feed (conventionally port 30003)."""

    def __init__(
        self,
        host: str,
        port: int = DEFAULT_TCP_PORT,
        *,
        connect_timeout: float = 10.0,
        chunk_size: int = 4096,
        max_line_length: int = DEFAULT_MAX_LINE_LENGTH,
    ) -> None:
        super().__init__(
            endpoint=f"tcp://{host}:{port}",
            chunk_size=chunk_size,
            max_line_length=max_line_length,
        )
        self._host = host
        self._port = port
        self._connect_timeout = connect_timeout

    async def open(self) -> None:
        if self._reader is not None:
            return
        _logger.debug("Connecting to %s", self.endpoint)
        try:
            self._reader, self._writer = await asyncio.wait_for(
                asyncio.open_connection(self._host, self._port),
                self._connect_timeout,
            )
        except (OSError, TimeoutError) as exc:
            raise SbsTransportError(f"Connection to {self.endpoint} failed: {exc}", endpoint=self.endpoint) from exc
        _logger.info("Connected to %s", self.endpoint)


class MqttLineSource:
    """Raw SBS lines published on an MQTT topic.

    A threaded paho-mqtt network loop receives messages and hands them to
    the asyncio loop with ``call_soon_threadsafe``. One MQTT message may
    carry one or many newline-separated lines. Broker-side reconnection is
    left to the owner: an unexpected disconnect ends the stream with
    :class:`SbsTransportError`.
    """

    def __init__(
        self,
        *,
        host: str,
        port: int = 1883,
        topic: str = "aircraft-data",
        username: str | None = None,
        password: str | None = None,
        tls: bool = False,
        keepalive: int = 60,
        client_id: str | None = None,
        max_pending: int = 10_000,
        max_line_length: int = DEFAULT_MAX_LINE_LENGTH,
        logger: logging.Logger | None = None,
    ) -> None:
        self._host = host
        self._port = port
        self._topic = topic
        self._username = username
        self._password = password
        self._tls = tls
        self._keepalive = keepalive
        self._client_id = client_id or f"pysbs-{secrets.token_hex(4)}"
        self._max_line_length = max_line_length
        self._logger = logger or _logger
        self._queue: asyncio.Queue[bytes | BaseException | None] = asyncio.Queue(maxsize=max_pending)
        self._loop: asyncio.AbstractEventLoop | None = None
        self._client: mqtt.Client | None = None
        self._running = False
        self._dropped = 0

    @property
    def endpoint(self) -> str:
        return f"mqtt://{self._host}:{self._port}/{self._topic}"

    @property
    def dropped(self) -> int:
        """Lines discarded because the pending queue was full."""
        return self._dropped

    async def open(self) -> None:
        if self._client is not None:
            return
        self._loop = asyncio.get_running_loop()
        client = self._build_client()
        try:
            await self._loop.run_in_executor(None, self._start, client)
        except OSError as exc:
            raise SbsTransportError(f"Connection to {self.endpoint} failed: {exc}", endpoint=self.endpoint) from exc
        self._client = client

    async def next_line(self) -> bytes | None:
        if self._client is None:
            await self.open()
        item = await self._queue.get()
        if isinstance(item, BaseException):
            raise item
        return item

    async def close(self) -> None:
        client = self._client
        self._client = None
        was_running = self._running
        self._running = False
        if client is not None:
            loop = self._loop or asyncio.get_running_loop()
            await loop.run_in_executor(None, self._stop, client, was_running)
        self._enqueue(None)

    def _build_client(self) -> mqtt.Client:
        client = mqtt.Client(
            callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
            client_id=self._client_id,
            protocol=mqtt.MQTTv311,
        )
        client.enable_logger(self._logger)
        if self._username:
            client.username_pw_set(self._username, self._password)
        if self._tls:
            client.tls_set()

        def on_connect(c: mqtt.Client, _userdata: Any, _flags: Any, reason_code: Any, _properties: Any) -> None:
            if reason_code.value != 0:
                self._logger.warning("MQTT connect to %s refused: %s", self.endpoint, reason_code)
                self._post(SbsTransportError(f"Broker refused connection: {reason_code}", endpoint=self.endpoint))
                return
            self._logger.info("Connected to %s", self.endpoint)
            c.subscribe(self._topic, qos=0)

        def on_message(_c: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
            splitter = LineSplitter(max_line_length=self._max_line_length)
            for line in [*splitter.feed(msg.payload), *splitter.flush()]:
                self._post(line)

        def on_disconnect(
            _c: mqtt.Client,
            _userdata: Any,
            _disconnect_flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if self._running:
                self._logger.warning("MQTT disconnected from %s: %s", self.endpoint, reason_code)
                self._post(SbsTransportError(f"Broker disconnected: {reason_code}", endpoint=self.endpoint))

        client.on_connect = on_connect
        client.on_message = on_message
        client.on_disconnect = on_disconnect
        return client

    def _start(self, client: mqtt.Client) -> None:
        client.connect(self._host, self._port, keepalive=self._keepalive)
        self._running = True
        client.loop_start()
        self._logger.debug("MQTT network loop started")

    def _stop(self, client: mqtt.Client, was_running: bool) -> None:
        try:
            if was_running:
                client.disconnect()
        finally:
            client.loop_stop()
            self._logger.debug("MQTT network loop stopped")

    def _post(self, item: bytes | BaseException) -> None:
        """Hand an item from the paho thread to the event loop."""
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._enqueue, item)

    def _enqueue(self, item: bytes | BaseException | None) -> None:
        try:
            self._queue.put_nowait(item)
        except asyncio.QueueFull:
            self._dropped += 1
            if self._dropped == 1 or self._dropped % 1000 == 0:
                self._logger.warning("MQTT line queue full, %d lines dropped so far", self._dropped)
