"""Core data models for the bake logger.

Uses Pydantic v2 for validation. Field aliases keep the on-disk JSON keys
compatible with existing bake logs.
"""

import re
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .constants import BAKE_FILE_PREFIX, MAX_RATING, MAX_TEMP_F, MIN_RATING, MIN_TEMP_F
from .errors import UnknownEventKindError, ValidationError


def local_now() -> datetime:
    """Get current timestamp in the local timezone."""
    return datetime.now().astimezone()


def fahrenheit_from_celsius(celsius: float) -> float:
    return celsius * 9 / 5 + 32


def celsius_from_fahrenheit(fahrenheit: float) -> float:
    return (fahrenheit - 32) * 5 / 9


EventKind = Literal[
    "starter-out",
    "fed",
    "levain-ready",
    "mixed",
    "knead",
    "fold",
    "shaped",
    "fridge-in",
    "fridge-out",
    "oven-in",
    "remove-lid",
    "oven-out",
    "loaf-complete",  # terminal, carries the assessment
    "temperature",
    "note",
]

EVENT_KINDS: tuple[str, ...] = EventKind.__args__  # type: ignore[attr-defined]

# Kinds that can be logged through the generic milestone route
MILESTONE_KINDS = tuple(k for k in EVENT_KINDS if k not in ("temperature", "note"))

TERMINAL_KIND = "loaf-complete"

_EXTRA_FRACTION_DIGITS = re.compile(r"(\.\d{6})\d+")


class Event(BaseModel):
    """One immutable, timestamped occurrence within a bake.

    `kind` is kept as a plain string so that replay never drops a stored
    line because of its kind; `validate_event` checks it before appending.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    timestamp: datetime = Field(default_factory=local_now)
    kind: str = Field(alias="event")
    ambient_temp_f: float | None = Field(default=None, alias="temp_f")
    dough_temp_f: float | None = None
    oven_temp_f: float | None = None
    fold_count: int | None = None
    note: str | None = None
    image_ref: str | None = Field(default=None, alias="image")
    extra: dict[str, Any] | None = Field(default=None, alias="data")

    @field_validator("timestamp", mode="before")
    @classmethod
    def _truncate_to_microseconds(cls, value):
        # older logs carry up to nine fractional digits
        if isinstance(value, str):
            return _EXTRA_FRACTION_DIGITS.sub(r"\1", value, count=1)
        return value

    @field_validator("note", "image_ref", mode="before")
    @classmethod
    def _empty_string_is_absent(cls, value):
        return value or None

    @property
    def is_terminal(self) -> bool:
        return self.kind == TERMINAL_KIND

    def with_fields(self, **updates: Any) -> "Event":
        """Return a copy with the given fields replaced."""
        return self.model_copy(update=updates)

    def to_json_line(self) -> str:
        """Serialize to the single-line JSON form stored in bake files."""
        return self.model_dump_json(by_alias=True, exclude_none=True)

    def to_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


ProofLevel = Literal["underproofed", "good", "overproofed"]
BrowningLevel = Literal["none", "slight", "good", "over"]

_PROOF_ALIASES = {"under": "underproofed", "over": "overproofed"}


class Assessment(BaseModel):
    """Post-bake evaluation attached to the terminal event.

    Fields are optional so that partial assessments in older logs still
    load; `validate_event` requires the full set for new completions.
    """

    proof_level: ProofLevel | None = None
    crumb_quality: int | None = Field(default=None, ge=MIN_RATING, le=MAX_RATING)
    browning: BrowningLevel | None = None
    score: int | None = Field(default=None, ge=MIN_RATING, le=MAX_RATING)
    notes: str | None = None

    @field_validator("proof_level", mode="before")
    @classmethod
    def _normalize_proof_level(cls, value):
        if isinstance(value, str):
            value = value.strip().lower()
            return _PROOF_ALIASES.get(value, value) or None
        return value

    @field_validator("browning", "notes", mode="before")
    @classmethod
    def _blank_is_absent(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    def to_dict(self) -> dict:
        return self.model_dump(mode="json", exclude_none=True)


class Bake(BaseModel):
    """A replayed baking session. Never stored directly."""

    date: str
    filename: str = ""
    events: list[Event] = Field(default_factory=list)
    assessment: Assessment | None = None

    @property
    def identity(self) -> str:
        """Bake key used in listings and URLs (filename without prefix)."""
        if self.filename.startswith(BAKE_FILE_PREFIX):
            return self.filename[len(BAKE_FILE_PREFIX):]
        return self.filename or self.date

    @property
    def last_event(self) -> Event | None:
        return self.events[-1] if self.events else None

    @property
    def is_completed(self) -> bool:
        return bool(self.events) and self.events[-1].is_terminal

    def oven_readings(self) -> list[tuple[datetime, float]]:
        """Oven temperatures over the bake.

        Logs written before `oven_temp_f` existed stored oven readings in
        `temp_f`: on `oven-in`/`remove-lid` events, and on `temperature`
        events once the loaf was in the oven. Those are read as oven
        temperatures here.
        """
        readings = []
        in_oven = False
        for event in self.events:
            if event.kind == "oven-in":
                in_oven = True
            elif event.kind == "oven-out":
                in_oven = False

            if event.oven_temp_f is not None:
                readings.append((event.timestamp, event.oven_temp_f))
            elif event.ambient_temp_f is not None and (
                event.kind in ("oven-in", "remove-lid")
                or (in_oven and event.kind == "temperature")
            ):
                readings.append((event.timestamp, event.ambient_temp_f))
        return readings

    def to_dict(self) -> dict:
        data = {
            "date": self.date,
            "filename": self.filename,
            "events": [e.to_dict() for e in self.events],
        }
        if self.assessment is not None:
            data["assessment"] = self.assessment.to_dict()
        return data


class BakeSummary(BaseModel):
    """Compact description of one bake for history listings."""

    date: str
    start_time: datetime
    end_time: datetime | None = None
    event_count: int
    completed: bool = False
    assessment: Assessment | None = None

    @classmethod
    def from_bake(cls, identity: str, bake: Bake) -> "BakeSummary":
        first, last = bake.events[0], bake.events[-1]
        return cls(
            date=identity,
            start_time=first.timestamp,
            end_time=last.timestamp if last.is_terminal else None,
            event_count=len(bake.events),
            completed=last.is_terminal,
            assessment=bake.assessment,
        )

    def to_dict(self) -> dict:
        return self.model_dump(mode="json", exclude_none=True)


def _check_temp(name: str, value: float | None) -> None:
    if value is not None and not (MIN_TEMP_F <= value <= MAX_TEMP_F):
        raise ValidationError(
            f"{name} {value:.1f}°F is outside {MIN_TEMP_F:.0f}..{MAX_TEMP_F:.0f}°F"
        )


def validate_event(event: Event) -> None:
    """Enforce kind-specific invariants before an event is appended.

    Raises:
        UnknownEventKindError: kind is not in the closed enumeration
        ValidationError: any other invariant is violated
    """
    if event.kind not in EVENT_KINDS:
        raise UnknownEventKindError(f"Invalid event type: {event.kind}")

    _check_temp("Temperature", event.ambient_temp_f)
    _check_temp("Dough temperature", event.dough_temp_f)
    _check_temp("Oven temperature", event.oven_temp_f)

    if event.fold_count is not None:
        if event.kind != "fold":
            raise ValidationError("fold_count is only allowed on fold events")
        if event.fold_count < 1:
            raise ValidationError("fold_count must be positive")

    if event.kind == "note" and not (event.note or event.image_ref):
        raise ValidationError("Note cannot be empty")

    if event.kind == "temperature" and all(
        t is None for t in (event.ambient_temp_f, event.dough_temp_f, event.oven_temp_f)
    ):
        raise ValidationError("Temperature value required")

    if event.extra and "assessment" in event.extra:
        if not event.is_terminal:
            raise ValidationError("Only loaf-complete events carry an assessment")
        try:
            assessment = Assessment.model_validate(event.extra["assessment"])
        except ValueError as e:
            raise ValidationError(f"Invalid assessment: {e}") from e
        missing = [
            name
            for name in ("proof_level", "crumb_quality", "browning", "score")
            if getattr(assessment, name) is None
        ]
        if missing:
            raise ValidationError(f"Assessment missing: {', '.join(missing)}")
