"""Tests for event/assessment models and event validation."""

import json

import pytest

from conftest import make_event

from sourdough.errors import UnknownEventKindError, ValidationError
from sourdough.models import (
    EVENT_KINDS,
    MILESTONE_KINDS,
    Assessment,
    Bake,
    BakeSummary,
    Event,
    celsius_from_fahrenheit,
    fahrenheit_from_celsius,
    validate_event,
)


def test_event_serializes_with_wire_keys():
    """Stored lines use the established JSON keys and omit empty fields."""
    event = make_event("starter-out", ambient_temp_f=72.5)
    data = json.loads(event.to_json_line())

    assert data["event"] == "starter-out"
    assert data["temp_f"] == 72.5
    assert "timestamp" in data
    assert "note" not in data
    assert "data" not in data


def test_event_parses_legacy_line():
    """A line written by older versions loads with field aliases."""
    line = {
        "timestamp": "2025-10-01T08:00:00-07:00",
        "event": "note",
        "note": "smells sour",
        "image": "01JABCDEF.jpg",
        "dough_temp_f": 76,
    }
    event = Event.model_validate(line)

    assert event.kind == "note"
    assert event.note == "smells sour"
    assert event.image_ref == "01JABCDEF.jpg"
    assert event.dough_temp_f == 76.0


def test_event_accepts_nanosecond_timestamps():
    """Older logs carry nine fractional digits; microseconds are kept."""
    event = Event.model_validate({"timestamp": "2025-10-07T19:06:02.123456789-07:00", "event": "fed"})
    assert event.timestamp.microsecond == 123456
    assert event.timestamp.utcoffset().total_seconds() == -7 * 3600


def test_event_empty_strings_are_absent():
    event = Event(kind="note", note="", image_ref="")
    assert event.note is None
    assert event.image_ref is None


def test_event_is_frozen():
    event = make_event("fed")
    with pytest.raises(ValueError):
        event.note = "changed"
    updated = event.with_fields(note="changed")
    assert updated.note == "changed"
    assert event.note is None


def test_milestone_kinds_exclude_temperature_and_note():
    assert "temperature" not in MILESTONE_KINDS
    assert "note" not in MILESTONE_KINDS
    assert "loaf-complete" in MILESTONE_KINDS
    assert len(EVENT_KINDS) == 15


def test_temperature_conversion():
    assert fahrenheit_from_celsius(100) == 212
    assert celsius_from_fahrenheit(32) == 0


# ─────────────────────────────────────────────────────────────────────────────
# Assessment
# ─────────────────────────────────────────────────────────────────────────────


def test_assessment_normalizes_short_proof_levels():
    assert Assessment(proof_level="under").proof_level == "underproofed"
    assert Assessment(proof_level="Over").proof_level == "overproofed"
    assert Assessment(proof_level="good").proof_level == "good"


def test_assessment_rejects_out_of_range_scores():
    with pytest.raises(ValueError):
        Assessment(score=11)
    with pytest.raises(ValueError):
        Assessment(crumb_quality=0)


def test_assessment_blank_notes_dropped():
    assert Assessment(score=5, notes="  ").to_dict() == {"score": 5}


# ─────────────────────────────────────────────────────────────────────────────
# Bake views
# ─────────────────────────────────────────────────────────────────────────────


def test_bake_identity_strips_prefix():
    bake = Bake(date="2025-10-01", filename="bake_2025-10-01_08-00-00")
    assert bake.identity == "2025-10-01_08-00-00"


def test_bake_completion_follows_last_event():
    bake = Bake(date="x", events=[make_event("starter-out"), make_event("loaf-complete", 60)])
    assert bake.is_completed
    assert not Bake(date="x", events=[make_event("starter-out")]).is_completed
    assert not Bake(date="x").is_completed


def test_oven_readings_include_legacy_temp_f():
    """Older logs kept oven temperatures in temp_f."""
    bake = Bake(
        date="x",
        events=[
            make_event("temperature", 0, ambient_temp_f=70),
            make_event("oven-in", 10, ambient_temp_f=500),
            make_event("temperature", 20, ambient_temp_f=480),
            make_event("remove-lid", 30, oven_temp_f=450),
            make_event("oven-out", 50),
            make_event("temperature", 60, ambient_temp_f=71),
        ],
    )
    temps = [t for _, t in bake.oven_readings()]
    assert temps == [500, 480, 450]


def test_summary_from_bake():
    bake = Bake(
        date="x",
        events=[make_event("starter-out"), make_event("loaf-complete", 600)],
        assessment=Assessment(score=7),
    )
    summary = BakeSummary.from_bake("2025-10-01_08-00-00", bake)

    assert summary.date == "2025-10-01_08-00-00"
    assert summary.event_count == 2
    assert summary.completed
    assert summary.end_time == bake.events[-1].timestamp
    assert summary.to_dict()["assessment"] == {"score": 7}


# ─────────────────────────────────────────────────────────────────────────────
# validate_event
# ─────────────────────────────────────────────────────────────────────────────


def test_validate_rejects_unknown_kind():
    with pytest.raises(UnknownEventKindError):
        validate_event(make_event("bake-complete"))


def test_validate_temperature_range():
    validate_event(make_event("temperature", ambient_temp_f=72))
    with pytest.raises(ValidationError):
        validate_event(make_event("temperature", ambient_temp_f=900))
    with pytest.raises(ValidationError):
        validate_event(make_event("fed", dough_temp_f=-100))


def test_validate_fold_count_only_on_fold():
    validate_event(make_event("fold", fold_count=2))
    with pytest.raises(ValidationError):
        validate_event(make_event("fed", fold_count=1))
    with pytest.raises(ValidationError):
        validate_event(make_event("fold", fold_count=0))


def test_validate_note_needs_text_or_image():
    validate_event(make_event("note", note="hi"))
    validate_event(make_event("note", image_ref="a.jpg"))
    with pytest.raises(ValidationError):
        validate_event(make_event("note"))


def test_validate_temperature_needs_reading():
    with pytest.raises(ValidationError):
        validate_event(make_event("temperature"))


def test_validate_assessment_only_on_terminal_and_complete():
    full = {"proof_level": "good", "crumb_quality": 8, "browning": "good", "score": 9}
    validate_event(make_event("loaf-complete", extra={"assessment": full}))

    with pytest.raises(ValidationError):
        validate_event(make_event("fed", extra={"assessment": full}))
    with pytest.raises(ValidationError, match="score"):
        validate_event(make_event("loaf-complete", extra={"assessment": {"proof_level": "good", "crumb_quality": 8, "browning": "good"}}))
