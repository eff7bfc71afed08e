"""Bake engine - turns start/log/complete requests into stored events."""

import logging
import threading
from pathlib import Path
from typing import Any

from .errors import (
    SensorError,
    SessionAlreadyOpenError,
    SourdoughError,
    UnknownEventKindError,
    ValidationError,
)
from .events import BakeStore
from .models import (
    EVENT_KINDS,
    Assessment,
    Bake,
    BakeSummary,
    Event,
    validate_event,
)
from .sensor import AmbientSensor

logger = logging.getLogger(__name__)

TEMPERATURE_READINGS = ("kitchen", "dough", "oven")


class BakeEngine:
    """Main entry point for bake operations.

    Validates input, fills in derived fields (fold counts, auto-fetched
    kitchen temperature) and forwards events to the store. Reads go straight
    through to the store's replayed views.

    Thread-safety: the store serializes file access. The engine adds a lock
    around decisions that read the log and then append (session start, fold
    numbering) so two requests cannot act on the same stale view.
    """

    def __init__(self, store: BakeStore, sensor: AmbientSensor | None = None):
        self.store = store
        self.sensor = sensor or AmbientSensor()
        self._decision_lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings) -> "BakeEngine":
        """Build an engine (store + sensor) from a Settings instance."""
        sensor = AmbientSensor(
            base_url=settings.sensor_url,
            token=settings.sensor_token,
            entity_id=settings.sensor_entity,
            timeout=settings.sensor_timeout,
        )
        return cls(BakeStore(settings.data_dir), sensor)

    # --- Helpers ---

    def _ambient_reading(self) -> float | None:
        """Kitchen temperature from the sensor, or None if unavailable.

        Sensor failures are logged and never fail the caller.
        """
        if not self.sensor.enabled:
            return None
        try:
            temp = self.sensor.read_fahrenheit()
        except SensorError as e:
            logger.warning(f"Failed to fetch sensor temp: {e}")
            return None
        if temp is None or temp <= 0:
            logger.warning(f"Ignoring invalid sensor temperature: {temp}")
            return None
        logger.info(f"Auto-fetched kitchen temp from sensor: {temp:.1f}°F")
        return temp

    def _emit(self, event: Event) -> Event:
        """Validate and append. Single mutation point for new events."""
        validate_event(event)
        self.store.append(event)
        logger.info(f"Logged {event.kind} event")
        return event

    def next_fold_count(self) -> int:
        """Fold number for a new fold, derived from the last event."""
        last = self.store.last_event()
        if last is not None and last.kind == "fold" and last.fold_count is not None:
            return last.fold_count + 1
        return 1

    # --- Writes ---

    def start_session(self, temp_f: float | None = None) -> Event:
        """Begin a new bake with a starter-out event.

        Raises:
            SessionAlreadyOpenError: a bake is already in progress
        """
        with self._decision_lock:
            if self.store.has_current_bake():
                raise SessionAlreadyOpenError("Loaf already started")
            if temp_f is None:
                temp_f = self._ambient_reading()
            return self._emit(Event(kind="starter-out", ambient_temp_f=temp_f))

    def log_event(
        self,
        kind: str,
        ambient_temp_f: float | None = None,
        dough_temp_f: float | None = None,
        oven_temp_f: float | None = None,
        note: str | None = None,
        assessment: Assessment | dict[str, Any] | None = None,
    ) -> Event:
        """Log a milestone event.

        Args:
            kind: Event kind (must be in the closed enumeration)
            ambient_temp_f: Kitchen temperature; auto-fetched if omitted
            dough_temp_f: Dough temperature
            oven_temp_f: Oven temperature
            note: Free text
            assessment: Only for loaf-complete

        Returns:
            The stored event.

        Raises:
            UnknownEventKindError: kind is not recognized
            ValidationError: the event violates a kind-specific rule
        """
        if kind not in EVENT_KINDS:
            raise UnknownEventKindError(f"Invalid event type: {kind}")

        extra = None
        if assessment is not None:
            if isinstance(assessment, dict):
                try:
                    assessment = Assessment.model_validate(assessment)
                except ValueError as e:
                    raise ValidationError(f"Invalid assessment: {e}") from e
            extra = {"assessment": assessment.to_dict()}

        if ambient_temp_f is None and kind != "temperature":
            ambient_temp_f = self._ambient_reading()

        with self._decision_lock:
            event = Event(
                kind=kind,
                ambient_temp_f=ambient_temp_f,
                dough_temp_f=dough_temp_f,
                oven_temp_f=oven_temp_f,
                note=note,
                extra=extra,
            )
            if kind == "fold":
                event = event.with_fields(fold_count=self.next_fold_count())
            return self._emit(event)

    def log_temperature(self, value_f: float, reading: str = "kitchen") -> Event:
        """Log a standalone temperature reading.

        Args:
            value_f: Reading in Fahrenheit
            reading: "kitchen", "dough" (dough or loaf internal) or "oven"
        """
        if reading not in TEMPERATURE_READINGS:
            raise ValidationError(f"Unknown temperature type: {reading}")
        field = {"kitchen": "ambient_temp_f", "dough": "dough_temp_f", "oven": "oven_temp_f"}[reading]
        return self._emit(Event(kind="temperature", **{field: value_f}))

    def log_note(
        self,
        note: str | None,
        dough_temp_f: float | None = None,
        image: bytes | None = None,
        content_type: str | None = None,
    ) -> Event:
        """Log a note, optionally with a photo.

        Raises:
            ValidationError: empty note without an image, or a non-image upload
        """
        note = (note or "").strip() or None
        if not image:
            image = None
        if note is None and image is None:
            raise ValidationError("Please enter a note or attach an image")
        if image is not None and not (content_type or "").lower().startswith("image/"):
            raise ValidationError("Please select an image file")

        event = Event(
            kind="note",
            note=note,
            dough_temp_f=dough_temp_f,
            ambient_temp_f=self._ambient_reading(),
        )
        if image is None:
            return self._emit(event)

        # Check the rest of the event before anything is written to disk
        validate_event(event.with_fields(image_ref="pending"))
        event = self.store.append_with_image(event, image, content_type)
        logger.info(f"Logged {event.kind} event with photo {event.image_ref}")
        return event

    def complete(self, assessment: Assessment | dict[str, Any]) -> Event:
        """Close the current bake with a loaf-complete event and assessment."""
        return self.log_event("loaf-complete", assessment=assessment)

    def delete_bake(self, identity: str) -> Path:
        return self.store.delete_bake(identity)

    def delete_event(self, index: int, timestamp: str) -> Event:
        return self.store.delete_event(index, timestamp)

    def auto_log_temperature(self) -> Event | None:
        """One tick of the scheduled kitchen temperature log.

        Logs only while a bake is open and the sensor returns a reading.
        Never raises for sensor or storage trouble; problems are logged.
        """
        try:
            if not self.store.has_current_bake():
                return None
        except SourdoughError as e:
            logger.warning(f"Failed to check for active bake: {e}")
            return None

        temp = self._ambient_reading()
        if temp is None:
            return None

        try:
            event = self._emit(Event(kind="temperature", ambient_temp_f=temp))
        except SourdoughError as e:
            logger.error(f"Failed to save auto-logged temperature: {e}")
            return None

        logger.info(f"Auto-logged kitchen temperature: {temp:.1f}°F")
        return event

    # --- Reads ---

    def has_current_bake(self) -> bool:
        return self.store.has_current_bake()

    def current_bake(self) -> Bake:
        return self.store.read_current_bake()

    def bake(self, identity: str) -> Bake:
        return self.store.read_bake(identity)

    def list_bakes(self) -> list[str]:
        return self.store.list_bakes()

    def image_path(self, identity: str, filename: str) -> Path:
        return self.store.image_path(identity, filename)

    def display_bake(self) -> Bake:
        """Current bake, or the most recent listed bake if none is in progress."""
        bake = self.store.read_current_bake()
        if bake.events and not bake.is_completed:
            return bake

        identities = self.store.list_bakes()
        if identities:
            return self.store.read_bake(identities[0])
        return bake

    def summaries(self, limit: int | None = None) -> list[BakeSummary]:
        """History summaries, most recent first. Empty bakes are skipped."""
        result = []
        for identity in self.store.list_bakes():
            bake = self.store.read_bake(identity)
            if not bake.events:
                continue
            result.append(BakeSummary.from_bake(identity, bake))
            if limit is not None and len(result) >= limit:
                break
        return result
