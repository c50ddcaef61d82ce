from __future__ import annotations

import threading
from datetime import UTC, datetime, timedelta

import pytest
from pydantic import ValidationError

from pysbs.ingestion.parser import parse_line
from pysbs.models.message import ParsedUpdate, TransmissionType
from pysbs.state.policy import CallsignPolicy, altitude_sort_key
from pysbs.state.store import AircraftStore, TrustedAircraftView


class _Clock:
    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def _update(hex_ident: str = "ABC123", transmission_type: int = 3, **fields: object) -> ParsedUpdate:
    return ParsedUpdate(hex_ident=hex_ident, transmission_type=TransmissionType(transmission_type), **fields)


def test_position_then_velocity_merge() -> None:
    store = AircraftStore()

    store.apply_update(parse_line("MSG,3,1,1,ABC123,1,,,,,,,,,-6.2,106.8,,,0,0,0,0"))
    record = store.apply_update(parse_line("MSG,4,1,1,ABC123,1,,,,,,,450,270,,,-64,,,,,"))

    assert record.latitude == pytest.approx(-6.2)
    assert record.longitude == pytest.approx(106.8)
    assert record.ground_speed == 450
    assert record.track == 270
    assert record.vertical_rate == -64
    assert record.message_count == 2
    assert record.last_message_type == TransmissionType.ES_AIRBORNE_VELOCITY
    assert store.get("ABC123") == record


def test_partial_update_does_not_erase_existing_fields() -> None:
    store = AircraftStore()

    store.apply_update(_update(transmission_type=1, callsign="GIA123"))
    store.apply_update(_update(transmission_type=5, altitude=35000))
    record = store.apply_update(_update(transmission_type=8, on_ground=False))

    assert record.callsign == "GIA123"
    assert record.altitude == 35000
    assert record.message_count == 3


def test_reapplying_same_update_only_advances_count_and_time() -> None:
    clock = _Clock()
    store = AircraftStore(clock=clock)
    update = _update(altitude=12000, latitude=1.5, longitude=2.5, on_ground=False)

    first = store.apply_update(update)
    clock.advance(1)
    second = store.apply_update(update)

    assert second.model_dump(exclude={"message_count", "last_update"}) == first.model_dump(
        exclude={"message_count", "last_update"}
    )
    assert second.message_count == first.message_count + 1
    assert second.last_update > first.last_update
    assert second.first_seen == first.first_seen


def test_returned_records_are_immutable_copies() -> None:
    store = AircraftStore()
    before = store.apply_update(_update(altitude=1000))

    store.apply_update(_update(altitude=2000))

    assert before.altitude == 1000
    assert store.get("ABC123").altitude == 2000
    with pytest.raises(ValidationError):
        before.altitude = 5  # type: ignore[misc]


def test_first_seen_never_after_last_update_when_clock_steps_back() -> None:
    clock = _Clock()
    store = AircraftStore(clock=clock)
    store.apply_update(_update())

    clock.advance(-10)
    record = store.apply_update(_update(altitude=100))

    assert record.last_update >= record.first_seen


def test_expired_record_excluded_from_snapshot_but_still_gettable() -> None:
    clock = _Clock()
    store = AircraftStore(clock=clock)
    store.apply_update(_update(altitude=5000))

    clock.advance(31)

    assert store.snapshot(expiry_window=timedelta(seconds=30)) == []
    assert store.get("ABC123") is not None
    assert "abc123" in store


def test_expiry_boundary_is_inclusive() -> None:
    clock = _Clock()
    store = AircraftStore(clock=clock)
    store.apply_update(_update())

    clock.advance(29.999)
    assert len(store.snapshot(expiry_window=timedelta(seconds=30))) == 1
    clock.advance(0.001)
    assert store.snapshot(expiry_window=timedelta(seconds=30)) == []


def test_snapshot_sorted_by_altitude_with_missing_last() -> None:
    store = AircraftStore()
    store.apply_update(_update("AAAAAA", altitude=30000))
    store.apply_update(_update("BBBBBB", transmission_type=1, callsign="NOALT"))
    store.apply_update(_update("CCCCCC", altitude=1000))
    store.apply_update(_update("DDDDDD", altitude=15000))

    idents = [record.hex_ident for record in store.snapshot()]

    assert idents == ["CCCCCC", "DDDDDD", "AAAAAA", "BBBBBB"]


def test_sweep_removes_only_expired_records() -> None:
    clock = _Clock()
    store = AircraftStore(clock=clock)
    store.apply_update(_update("AAAAAA"))
    clock.advance(20)
    store.apply_update(_update("BBBBBB"))
    clock.advance(15)

    removed = store.sweep_expired(expiry_window=timedelta(seconds=30))

    assert removed == 1
    assert store.get("AAAAAA") is None
    assert store.get("BBBBBB") is not None
    assert len(store) == 1


def test_record_reappears_as_new_after_sweep() -> None:
    clock = _Clock()
    store = AircraftStore(clock=clock)
    store.apply_update(_update(altitude=100))
    store.apply_update(_update(altitude=200))
    clock.advance(60)
    store.sweep_expired()

    record = store.apply_update(_update())

    assert record.message_count == 1
    assert record.altitude is None
    assert record.first_seen == clock.now


def test_trusted_view_hides_records_without_callsign() -> None:
    store = AircraftStore()
    store.apply_update(_update("AAAAAA", altitude=1000))
    store.apply_update(_update("BBBBBB", transmission_type=1, callsign="GIA404"))
    store.apply_update(_update("CCCCCC", transmission_type=1, callsign="CCCCCC"))

    view = TrustedAircraftView(store)

    assert [record.hex_ident for record in view.snapshot()] == ["BBBBBB"]
    assert len(store.snapshot()) == 3


def test_untrusted_record_surfaces_once_callsign_arrives() -> None:
    store = AircraftStore()
    view = TrustedAircraftView(store, CallsignPolicy.NON_EMPTY)
    store.apply_update(_update(altitude=1000))
    assert view.snapshot() == []

    store.apply_update(_update(transmission_type=1, callsign="LNI610"))

    (record,) = view.snapshot()
    assert record.altitude == 1000
    assert record.callsign == "LNI610"


def test_airline_policy_requires_known_operator() -> None:
    store = AircraftStore()
    store.apply_update(_update("AAAAAA", transmission_type=1, callsign="GIA123"))
    store.apply_update(_update("BBBBBB", transmission_type=1, callsign="N12345"))

    airline = TrustedAircraftView(store, CallsignPolicy.AIRLINE)
    anything = TrustedAircraftView(store, CallsignPolicy.ANY)

    assert [record.hex_ident for record in airline.snapshot()] == ["AAAAAA"]
    assert len(anything.snapshot()) == 2


def test_concurrent_apply_snapshot_and_sweep() -> None:
    store = AircraftStore()
    applies = 2000
    window = timedelta(hours=1)
    writers_done = threading.Event()
    errors: list[Exception] = []
    unsorted: list[list[str]] = []

    def writer(hex_ident: str) -> None:
        try:
            for n in range(applies):
                store.apply_update(_update(hex_ident, 5, altitude=(n * 37) % 40000))
        except Exception as exc:
            errors.append(exc)

    def reader() -> None:
        try:
            while not writers_done.is_set():
                records = store.snapshot(expiry_window=window)
                keys = [altitude_sort_key(record) for record in records]
                if keys != sorted(keys):
                    unsorted.append([record.hex_ident for record in records])
        except Exception as exc:
            errors.append(exc)

    def sweeper() -> None:
        try:
            while not writers_done.is_set():
                store.sweep_expired(expiry_window=window)
        except Exception as exc:
            errors.append(exc)

    writers = [threading.Thread(target=writer, args=(hex_ident,)) for hex_ident in ("ABC123", "DEF456", "0A0B0C")]
    others = [threading.Thread(target=reader), threading.Thread(target=reader), threading.Thread(target=sweeper)]
    for thread in others + writers:
        thread.start()
    for thread in writers:
        thread.join(timeout=30)
    writers_done.set()
    for thread in others:
        thread.join(timeout=30)

    assert errors == []
    assert unsorted == []
    assert len(store) == 3
    assert all(store.get(hex_ident).message_count == applies for hex_ident in ("ABC123", "DEF456", "0A0B0C"))
