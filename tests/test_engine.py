"""Tests for the bake engine (session rules, derived fields, sensor fallback)."""

from datetime import datetime, timedelta
from unittest.mock import Mock

import pytest

from conftest import full_assessment, make_event, write_bake

from sourdough.engine import BakeEngine
from sourdough.errors import (
    SensorError,
    SessionAlreadyOpenError,
    UnknownEventKindError,
    ValidationError,
)
from sourdough.sensor import AmbientSensor


def make_sensor(reading=None, error=None):
    sensor = Mock(spec=AmbientSensor)
    sensor.enabled = True
    if error is not None:
        sensor.read_fahrenheit.side_effect = error
    else:
        sensor.read_fahrenheit.return_value = reading
    return sensor


def test_start_session(engine):
    event = engine.start_session(temp_f=70.0)
    assert event.kind == "starter-out"
    assert event.ambient_temp_f == 70.0
    assert engine.has_current_bake()


def test_start_session_twice_fails(engine):
    engine.start_session()
    with pytest.raises(SessionAlreadyOpenError):
        engine.start_session()
    assert len(engine.current_bake().events) == 1


def test_start_after_complete_opens_new_bake(engine):
    engine.start_session()
    engine.complete(full_assessment())
    assert not engine.has_current_bake()

    engine.start_session()
    assert engine.has_current_bake()
    assert len(engine.list_bakes()) == 2


def test_sensor_reading_fills_kitchen_temp(store):
    engine = BakeEngine(store, make_sensor(reading=71.5))
    assert engine.start_session().ambient_temp_f == 71.5
    assert engine.log_event("fed").ambient_temp_f == 71.5


def test_explicit_temp_wins_over_sensor(store):
    sensor = make_sensor(reading=71.5)
    engine = BakeEngine(store, sensor)
    assert engine.start_session(temp_f=68.0).ambient_temp_f == 68.0
    sensor.read_fahrenheit.assert_not_called()


def test_sensor_failure_degrades_gracefully(store):
    """A failing sensor never blocks logging."""
    engine = BakeEngine(store, make_sensor(error=SensorError("timeout")))
    event = engine.start_session()
    assert event.ambient_temp_f is None
    assert engine.log_event("mixed").kind == "mixed"


def test_sensor_nonpositive_reading_ignored(store):
    engine = BakeEngine(store, make_sensor(reading=0.0))
    assert engine.start_session().ambient_temp_f is None


def test_log_unknown_kind(engine):
    engine.start_session()
    with pytest.raises(UnknownEventKindError):
        engine.log_event("bake-complete")


def test_log_event_validates_before_append(engine):
    engine.start_session()
    with pytest.raises(ValidationError):
        engine.log_event("fed", dough_temp_f=5000)
    assert len(engine.current_bake().events) == 1


def test_log_temperature_routes_reading(engine):
    engine.start_session()
    assert engine.log_temperature(72, "kitchen").ambient_temp_f == 72
    assert engine.log_temperature(78, "dough").dough_temp_f == 78
    oven = engine.log_temperature(475, "oven")
    assert oven.oven_temp_f == 475
    assert oven.ambient_temp_f is None

    with pytest.raises(ValidationError):
        engine.log_temperature(72, "fridge")


def test_log_note(engine):
    engine.start_session()
    event = engine.log_note("  windowpane passed  ", dough_temp_f=77)
    assert event.note == "windowpane passed"
    assert event.dough_temp_f == 77


def test_log_note_requires_content(engine):
    engine.start_session()
    with pytest.raises(ValidationError):
        engine.log_note("   ")


def test_log_note_with_image(engine, store):
    engine.start_session()
    event = engine.log_note("", image=b"jpegbytes", content_type="image/jpeg")

    assert event.note is None
    assert event.image_ref.endswith(".jpg")
    identity = engine.current_bake().identity
    assert engine.image_path(identity, event.image_ref).read_bytes() == b"jpegbytes"


class TickingClock(datetime):
    """datetime whose now() moves one second forward on every call."""

    ticks = 0

    @classmethod
    def now(cls, tz=None):
        cls.ticks += 1
        return datetime(2025, 10, 1, 8, 0, 0) + timedelta(seconds=cls.ticks)


def test_photo_note_without_open_bake_keeps_image_with_its_bake(engine, store, monkeypatch):
    """The photo and its note land in the same bake even as the clock moves."""
    monkeypatch.setattr("sourdough.events.datetime", TickingClock)

    event = engine.log_note("crumb shot", image=b"\xff\xd8jpeg", content_type="image/jpeg")

    bake = engine.current_bake()
    assert [e.image_ref for e in bake.events] == [event.image_ref]
    assert store.image_path(bake.identity, event.image_ref).read_bytes() == b"\xff\xd8jpeg"
    assert [p.name for p in store.images_dir.iterdir()] == [bake.filename]


def test_log_note_rejects_non_image(engine, store):
    engine.start_session()
    with pytest.raises(ValidationError):
        engine.log_note("doc", image=b"%PDF", content_type="application/pdf")
    assert not store.images_dir.exists()


def test_log_note_bad_temp_writes_no_image(engine, store):
    engine.start_session()
    with pytest.raises(ValidationError):
        engine.log_note("hot", dough_temp_f=9999, image=b"x", content_type="image/png")
    assert not store.images_dir.exists()


def test_complete_requires_full_assessment(engine):
    engine.start_session()
    with pytest.raises(ValidationError):
        engine.complete({"score": 9})
    with pytest.raises(ValidationError):
        engine.complete(full_assessment(crumb_quality=12))
    assert engine.has_current_bake()


def test_concrete_bake_scenario(engine):
    """starter-out, fed, fold, fold, loaf-complete."""
    engine.start_session()
    engine.log_event("fed")
    assert engine.log_event("fold").fold_count == 1
    assert engine.log_event("fold").fold_count == 2

    current = engine.current_bake()
    assert [e.kind for e in current.events] == ["starter-out", "fed", "fold", "fold"]
    identity = current.identity

    engine.complete(full_assessment(score=9))

    after = engine.current_bake()
    assert after.events == []
    assert after.assessment.score == 9
    assert engine.list_bakes().count(identity) == 1

    finished = engine.bake(identity)
    assert len(finished.events) == 5
    assert finished.assessment.score == 9


def test_auto_log_without_bake(store):
    sensor = make_sensor(reading=70.0)
    engine = BakeEngine(store, sensor)
    assert engine.auto_log_temperature() is None
    sensor.read_fahrenheit.assert_not_called()


def test_auto_log_with_open_bake(store):
    engine = BakeEngine(store, make_sensor(reading=69.8))
    engine.start_session(temp_f=70.0)

    event = engine.auto_log_temperature()
    assert event.kind == "temperature"
    assert event.ambient_temp_f == 69.8
    assert len(engine.current_bake().events) == 2


def test_auto_log_sensor_failure(store):
    engine = BakeEngine(store, make_sensor(error=SensorError("down")))
    engine.start_session(temp_f=70.0)
    assert engine.auto_log_temperature() is None
    assert len(engine.current_bake().events) == 1


def test_auto_log_disabled_sensor(engine):
    engine.start_session()
    assert engine.auto_log_temperature() is None


def test_display_bake_falls_back_to_latest(engine, store):
    write_bake(
        store.data_dir, "2025-10-01_08-00-00",
        [make_event("starter-out"), make_event("loaf-complete", 600)],
    )
    bake = engine.display_bake()
    assert len(bake.events) == 2
    assert bake.identity == "2025-10-01_08-00-00"

    engine.start_session()
    assert len(engine.display_bake().events) == 1


def test_summaries(engine, store):
    write_bake(
        store.data_dir, "2025-09-01_08-00-00",
        [make_event("starter-out"), make_event("loaf-complete", 600, extra={"assessment": {"score": 6}})],
    )
    write_bake(store.data_dir, "2025-09-02_08-00-00", [])
    write_bake(
        store.data_dir, "2025-09-03_08-00-00",
        [make_event("starter-out"), make_event("loaf-complete", 600)],
    )

    summaries = engine.summaries()
    assert [s.date for s in summaries] == ["2025-09-03_08-00-00", "2025-09-01_08-00-00"]
    assert summaries[1].assessment.score == 6
    assert all(s.completed for s in summaries)

    assert len(engine.summaries(limit=1)) == 1
