"""High-level aircraft tracker wiring ingestion, state and publishing."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from datetime import timedelta
from typing import Any

from pysbs._periodic import PeriodicTask
from pysbs.config import TrackerConfig
from pysbs.ingestion.adapter import IngestionAdapter
from pysbs.ingestion.sources import LineSource, MqttLineSource, TcpLineSource
from pysbs.models.aircraft import AircraftRecord
from pysbs.models.message import ParsedUpdate
from pysbs.models.payloads import AircraftDataPayload, ConnectionPayload, ConnectionStatus, ErrorPayload
from pysbs.publisher import QueueSubscriber, SnapshotPublisher
from pysbs.state.store import AircraftStore, TrustedAircraftView

_logger = logging.getLogger(__name__)

SourceFactory = Callable[[], LineSource]


def default_source_factory(config: TrackerConfig) -> SourceFactory:
    """Build the line source factory selected by ``config.source``."""
    if config.source == "mqtt":
        return lambda: MqttLineSource(
            host=config.mqtt_host,
            port=config.mqtt_port,
            topic=config.mqtt_topic,
            username=config.mqtt_username,
            password=config.mqtt_password,
            tls=config.mqtt_tls,
            keepalive=config.mqtt_keepalive,
        )
    return lambda: TcpLineSource(config.tcp_host, config.tcp_port)


def _is_significant(record: AircraftRecord) -> bool:
    return record.has_position or record.ground_speed is not None or record.altitude is not None


class AircraftTracker:
    """Own the store and run ingestion, expiry sweeping and publishing.

    Usage::

        async with AircraftTracker(TrackerConfig.from_env()) as tracker:
            subscriber = tracker.subscribe()
            payload = await subscriber.get()

    The tracker is the owner the ingestion adapter reports closure to: it
    broadcasts the connectivity change and, unless
    ``config.stream_retry_delay`` is zero, re-establishes the stream after
    that delay.
    """

    def __init__(
        self,
        config: TrackerConfig | None = None,
        *,
        source_factory: SourceFactory | None = None,
        store: AircraftStore | None = None,
    ) -> None:
        self._config = (config or TrackerConfig()).validate()
        self._source_factory = source_factory or default_source_factory(self._config)
        self._store = store if store is not None else AircraftStore()
        self._view = TrustedAircraftView(self._store, self._config.callsign_policy)
        self._publisher = SnapshotPublisher(
            self._view,
            interval=self._config.publish_interval,
            expiry_window=self._config.expiry_window,
            send_empty=self._config.send_empty_snapshots,
        )
        self._sweeper = PeriodicTask(self.sweep, self._config.expiry_window, name="expiry-sweeper")
        self._ingest_task: asyncio.Task[None] | None = None
        self._adapter: IngestionAdapter | None = None
        self._upstream_connected = False
        self._stopping = False

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> AircraftTracker:
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.stop()

    async def start(self) -> None:
        self._stopping = False
        self._publisher.start()
        self._sweeper.start()
        if self._ingest_task is None or self._ingest_task.done():
            self._ingest_task = asyncio.get_running_loop().create_task(self._ingest_forever(), name="sbs-ingest")

    async def stop(self) -> None:
        self._stopping = True
        task = self._ingest_task
        self._ingest_task = None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        await self._sweeper.stop()
        await self._publisher.stop()

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def config(self) -> TrackerConfig:
        return self._config

    @property
    def store(self) -> AircraftStore:
        return self._store

    @property
    def view(self) -> TrustedAircraftView:
        return self._view

    @property
    def publisher(self) -> SnapshotPublisher:
        return self._publisher

    @property
    def adapter(self) -> IngestionAdapter | None:
        return self._adapter

    @property
    def upstream_connected(self) -> bool:
        return self._upstream_connected

    def connection_payload(self) -> ConnectionPayload:
        """Current upstream connectivity as a payload (sent to new subscribers)."""
        status = ConnectionStatus.CONNECTED if self._upstream_connected else ConnectionStatus.DISCONNECTED
        return ConnectionPayload(status=status, message=f"Upstream feed {status.value}")

    # ------------------------------------------------------------------
    # Subscribers
    # ------------------------------------------------------------------

    def subscribe(self, maxsize: int | None = None, *, name: str = "subscriber") -> QueueSubscriber:
        subscriber = QueueSubscriber(maxsize or self._config.subscriber_queue_size, name=name)
        self._publisher.register(subscriber)
        return subscriber

    def unsubscribe(self, subscriber: QueueSubscriber) -> None:
        subscriber.close()
        self._publisher.unregister(subscriber)

    # ------------------------------------------------------------------
    # Periodic work
    # ------------------------------------------------------------------

    def sweep(self) -> int:
        removed = self._store.sweep_expired(expiry_window=timedelta(seconds=self._config.expiry_window))
        if removed:
            _logger.info("Swept %d expired aircraft, %d tracked", removed, len(self._store))
        return removed

    # ------------------------------------------------------------------
    # Ingestion ownership
    # ------------------------------------------------------------------

    async def run_once(self, source: LineSource) -> BaseException | None:
        """Drain a single source to completion; return its closing error."""
        self._adapter = IngestionAdapter(
            source,
            self._store,
            on_opened=self._on_stream_opened,
            on_update=self._on_update if self._config.push_incremental else None,
            on_closed=self._on_stream_closed,
        )
        return await self._adapter.run()

    async def _ingest_forever(self) -> None:
        while not self._stopping:
            try:
                await self.run_once(self._source_factory())
            except Exception:
                _logger.exception("Inbound stream setup failed")
                self._upstream_connected = False
            delay = self._config.stream_retry_delay
            if self._stopping or delay <= 0:
                return
            _logger.info("Re-establishing inbound stream in %.1fs", delay)
            await asyncio.sleep(delay)

    def _on_stream_opened(self, source: LineSource) -> None:
        self._upstream_connected = True
        self._publisher.broadcast(
            ConnectionPayload(status=ConnectionStatus.CONNECTED, message=f"Connected to {source.endpoint}")
        )

    def _on_stream_closed(self, error: BaseException | None) -> None:
        was_connected = self._upstream_connected
        self._upstream_connected = False
        if error is not None:
            self._publisher.broadcast(ErrorPayload(message=f"Inbound stream failed: {error}"))
        if was_connected or error is None:
            self._publisher.broadcast(
                ConnectionPayload(status=ConnectionStatus.DISCONNECTED, message="Inbound stream closed")
            )

    def _on_update(self, record: AircraftRecord, _update: ParsedUpdate, raw: str) -> None:
        if not _is_significant(record) or not self._view.accepts(record):
            return
        self._publisher.broadcast(AircraftDataPayload(data=record, raw=raw))
