"""WebSocket fan-out server for tracker payloads."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import weakref

from aiohttp import WSMsgType, web

from pysbs.publisher import QueueSubscriber
from pysbs.tracker import AircraftTracker

_logger = logging.getLogger(__name__)


class FeedServer:
    """Serve tracker payloads to WebSocket clients.

    Every client gets its own bounded :class:`QueueSubscriber`; a slow
    client loses payloads instead of stalling the publisher. On connect a
    client receives the current upstream connection status, then every
    broadcast payload as JSON text. Both ``/`` and ``/ws`` accept upgrades.
    """

    def __init__(self, tracker: AircraftTracker, host: str = "0.0.0.0", port: int = 8080) -> None:
        self._tracker = tracker
        self._host = host
        self._port = port
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None
        self._sockets: weakref.WeakSet[web.WebSocketResponse] = weakref.WeakSet()
        self.app = web.Application()
        self.app.add_routes([web.get("/", self._handle_ws), web.get("/ws", self._handle_ws)])

    @property
    def port(self) -> int:
        """Bound port (resolves ``port=0`` once started)."""
        if self._runner is not None and self._runner.addresses:
            return int(self._runner.addresses[0][1])
        return self._port

    @property
    def client_count(self) -> int:
        return len(self._sockets)

    async def start(self) -> None:
        self._runner = web.AppRunner(self.app)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, self._host, self._port)
        await self._site.start()
        _logger.info("Feed server listening on ws://%s:%d", self._host, self.port)

    async def stop(self) -> None:
        for ws in list(self._sockets):
            with contextlib.suppress(ConnectionError, RuntimeError):
                await ws.close()
        if self._runner is not None:
            await self._runner.cleanup()
        self._runner = None
        self._site = None

    async def __aenter__(self) -> FeedServer:
        await self.start()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.stop()

    async def _handle_ws(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse(heartbeat=30.0)
        await ws.prepare(request)
        self._sockets.add(ws)
        peer = request.remote or "unknown"
        subscriber = self._tracker.subscribe(name=peer)
        subscriber.offer(self._tracker.connection_payload())
        _logger.info("Subscriber %s connected (%d total)", peer, self._tracker.publisher.subscriber_count)

        writer = asyncio.get_running_loop().create_task(self._pump(ws, subscriber), name=f"ws-writer-{peer}")
        try:
            async for msg in ws:
                if msg.type == WSMsgType.ERROR:
                    _logger.warning("Subscriber %s socket error: %s", peer, ws.exception())
                    break
        finally:
            self._tracker.unsubscribe(subscriber)
            writer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await writer
            self._sockets.discard(ws)
            _logger.info("Subscriber %s disconnected", peer)
        return ws

    async def _pump(self, ws: web.WebSocketResponse, subscriber: QueueSubscriber) -> None:
        while not ws.closed:
            payload = await subscriber.get()
            try:
                await ws.send_str(payload.to_json())
            except ConnectionError as exc:
                _logger.debug("Subscriber %s write failed: %s", subscriber.name, exc)
                subscriber.close()
                return
