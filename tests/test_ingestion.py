from __future__ import annotations

import asyncio

import paho.mqtt.client as mqtt
import pytest

from pysbs.exceptions import SbsTransportError
from pysbs.ingestion.adapter import IngestionAdapter
from pysbs.ingestion.lines import LineSplitter
from pysbs.ingestion.normalize import parse_flag, prune_patch, safe_float, safe_int, truncate_for_log
from pysbs.ingestion.sources import IterableLineSource, MqttLineSource, StreamLineSource
from pysbs.state.store import AircraftStore

POSITION = "MSG,3,1,1,ABC123,1,,,,,,,,,-6.2,106.8,,,0,0,0,0"
VELOCITY = "MSG,4,1,1,ABC123,1,,,,,,,450,270,,,-64,,,,,"


class TestNormalization:
    def test_numbers_degrade_to_none(self) -> None:
        assert safe_float(" 1.5 ") == 1.5
        assert safe_float("") is None
        assert safe_float("nan") is None
        assert safe_int("12.9") == 12
        assert safe_int("abc") is None

    @pytest.mark.parametrize(("raw", "expected"), [("1", True), ("-1", True), ("0", False), ("", None), ("x", None)])
    def test_parse_flag(self, raw: str, expected: bool | None) -> None:
        assert parse_flag(raw) is expected

    def test_prune_patch_drops_blank_values(self) -> None:
        assert prune_patch({"a": None, "b": " ", "c": 0, "d": False}) == {"c": 0, "d": False}

    def test_truncate_for_log(self) -> None:
        assert truncate_for_log(b"MSG") == "MSG"
        assert truncate_for_log("x" * 200, max_length=10).startswith("x" * 10)


class TestLineSplitter:
    def test_reassembles_lines_across_chunks(self) -> None:
        splitter = LineSplitter()

        assert splitter.feed(b"MSG,3,1") == []
        assert splitter.feed(b",1\r\nMSG,4") == [b"MSG,3,1,1"]
        assert splitter.pending == 5
        assert splitter.feed(b"\n\n\r\nMSG,8\n") == [b"MSG,4", b"MSG,8"]
        assert splitter.flush() == []

    def test_flush_returns_unterminated_tail(self) -> None:
        splitter = LineSplitter()
        splitter.feed(b"MSG,1,tail")

        assert splitter.flush() == [b"MSG,1,tail"]
        assert splitter.pending == 0

    def test_oversized_lines_discarded(self) -> None:
        splitter = LineSplitter(max_line_length=8)

        assert splitter.feed(b"0123456789\nok\n") == [b"ok"]
        assert splitter.feed(b"0123456789") == []
        assert splitter.pending == 0


class _FailingSource(IterableLineSource):
    def __init__(self, lines: list[str]) -> None:
        super().__init__(lines, endpoint="failing")
        self.closed_calls = 0

    async def next_line(self) -> str | bytes | None:
        line = await super().next_line()
        if line is None:
            raise SbsTransportError("connection reset", endpoint=self.endpoint)
        return line

    async def close(self) -> None:
        self.closed_calls += 1
        await super().close()


class TestIngestionAdapter:
    @pytest.mark.asyncio
    async def test_merges_lines_and_skips_garbage(self) -> None:
        store = AircraftStore()
        closed: list[BaseException | None] = []
        source = IterableLineSource([POSITION, "GARBAGE,not,a,real,message", b"\xff\xfe", VELOCITY.encode()])
        adapter = IngestionAdapter(source, store, on_closed=closed.append)

        error = await adapter.run()

        assert error is None
        assert closed == [None]
        assert adapter.lines_read == 4
        assert adapter.lines_rejected == 2
        assert adapter.updates_applied == 2
        record = store.get("ABC123")
        assert record is not None
        assert record.message_count == 2
        assert record.ground_speed == 450

    @pytest.mark.asyncio
    async def test_transport_failure_reported_once_and_source_closed(self) -> None:
        store = AircraftStore()
        closed: list[BaseException | None] = []
        opened: list[str] = []
        source = _FailingSource([POSITION])
        adapter = IngestionAdapter(
            source,
            store,
            on_opened=lambda src: opened.append(src.endpoint),
            on_closed=closed.append,
        )

        error = await adapter.run()

        assert isinstance(error, SbsTransportError)
        assert opened == ["failing"]
        assert closed == [error]
        assert source.closed_calls == 1
        assert adapter.closed
        assert "ABC123" in store

    @pytest.mark.asyncio
    async def test_update_callback_receives_stripped_raw_line(self) -> None:
        store = AircraftStore()
        seen: list[tuple[str, int, str]] = []
        adapter = IngestionAdapter(
            IterableLineSource([POSITION + "\r\n"]),
            store,
            on_update=lambda record, update, raw: seen.append((record.hex_ident, int(update.transmission_type), raw)),
        )

        await adapter.run()

        assert seen == [("ABC123", 3, POSITION)]

    @pytest.mark.asyncio
    async def test_async_iterable_source(self) -> None:
        async def lines():
            yield POSITION
            await asyncio.sleep(0)
            yield VELOCITY

        store = AircraftStore()
        await IngestionAdapter(IterableLineSource(lines()), store).run()

        assert store.get("ABC123").message_count == 2


class TestStreamLineSource:
    @pytest.mark.asyncio
    async def test_reads_fragmented_stream(self) -> None:
        reader = asyncio.StreamReader()
        reader.feed_data(POSITION[:20].encode())
        reader.feed_data((POSITION[20:] + "\r\n" + VELOCITY[:5]).encode())
        reader.feed_data((VELOCITY[5:] + "\n").encode())
        reader.feed_eof()
        store = AircraftStore()

        adapter = IngestionAdapter(StreamLineSource(reader, chunk_size=16), store)
        error = await adapter.run()

        assert error is None
        assert adapter.updates_applied == 2
        assert store.get("ABC123").vertical_rate == -64

    @pytest.mark.asyncio
    async def test_missing_reader_fails_open(self) -> None:
        closed: list[BaseException | None] = []
        adapter = IngestionAdapter(StreamLineSource(endpoint="nowhere"), AircraftStore(), on_closed=closed.append)

        error = await adapter.run()

        assert isinstance(error, SbsTransportError)
        assert error.endpoint == "nowhere"
        assert closed == [error]


class TestMqttLineSource:
    @pytest.mark.asyncio
    async def test_messages_split_into_lines_and_disconnect_ends_stream(self, monkeypatch: pytest.MonkeyPatch) -> None:
        source = MqttLineSource(host="broker.local", topic="sbs/raw")
        stopped: list[bool] = []

        def fake_start(_client: mqtt.Client) -> None:
            source._running = True

        monkeypatch.setattr(source, "_start", fake_start)
        monkeypatch.setattr(source, "_stop", lambda _client, was_running: stopped.append(was_running))

        await source.open()
        client = source._client
        message = mqtt.MQTTMessage(topic=b"sbs/raw")
        message.payload = f"{POSITION}\r\n{VELOCITY}".encode()
        client.on_message(client, None, message)
        client.on_disconnect(client, None, None, "keepalive timeout", None)

        assert await source.next_line() == POSITION.encode()
        assert await source.next_line() == VELOCITY.encode()
        with pytest.raises(SbsTransportError):
            await source.next_line()

        await source.close()
        assert stopped == [True]
        assert source.endpoint == "mqtt://broker.local:1883/sbs/raw"

    @pytest.mark.asyncio
    async def test_full_queue_counts_dropped_lines(self) -> None:
        source = MqttLineSource(host="broker.local", max_pending=1)

        source._enqueue(b"MSG,8")
        source._enqueue(b"MSG,8")

        assert source.dropped == 1


@pytest.mark.asyncio
async def test_callback_failure_reported_as_closing_error() -> None:
    closed: list[BaseException | None] = []

    def explode(*_args: object) -> None:
        raise RuntimeError("subscriber bug")

    adapter = IngestionAdapter(
        IterableLineSource([POSITION, VELOCITY]), AircraftStore(), on_update=explode, on_closed=closed.append
    )

    error = await adapter.run()

    assert isinstance(error, RuntimeError)
    assert closed == [error]
    assert adapter.lines_read == 1
