"""Bake reconstruction from event logs.

Replays a bake file line by line to rebuild the ordered event list, and
applies the reconciliation rules that decide which events make up the
current bake.
"""

import json
import logging
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from .constants import BAKE_FILE_SUFFIX
from .errors import StorageError
from .models import Assessment, Bake, Event

logger = logging.getLogger(__name__)


def parse_line(line: str) -> Event:
    """Parse one stored line into an Event.

    Stored lines must carry their own timestamp; the model's "now" default
    is for new events only.

    Raises:
        ValueError: the line is not a valid event
    """
    data = json.loads(line)
    if not isinstance(data, dict) or "timestamp" not in data:
        raise ValueError("event line has no timestamp")
    return Event.model_validate(data)


def replay_lines(lines, tolerant: bool = True, source: str = "") -> list[Event]:
    """Rebuild the ordered event list from stored lines.

    Args:
        lines: Iterable of raw lines (one JSON object each)
        tolerant: If True, skip malformed lines. If False, raise on the first.
        source: Name used in log messages

    Returns:
        Events in append order.
    """
    events = []
    skipped = 0

    for lineno, line in enumerate(lines, start=1):
        line = line.strip()
        if not line:
            continue
        try:
            events.append(parse_line(line))
        except (json.JSONDecodeError, PydanticValidationError, TypeError, ValueError) as e:
            if not tolerant:
                raise ValueError(f"Malformed event at {source}:{lineno}: {e}") from e
            skipped += 1
            logger.debug(f"Skipping malformed line {source}:{lineno}: {e}")

    if skipped:
        logger.debug(f"Replayed {len(events)} events from {source}, skipped {skipped} lines")

    return events


def replay_file(path: Path, tolerant: bool = True) -> list[Event]:
    """Replay a bake file. A missing file replays to an empty list.

    Raises:
        StorageError: the file exists but cannot be read, or (strict mode)
            contains a malformed line
    """
    try:
        with open(path, encoding="utf-8", errors="replace") as f:
            return replay_lines(f, tolerant=tolerant, source=path.name)
    except FileNotFoundError:
        return []
    except ValueError as e:
        raise StorageError(str(e), path=path, operation="parse") from e
    except OSError as e:
        raise StorageError(f"Error reading bake file {path}: {e}", path=path, operation="read") from e


def extract_assessment(event: Event | None) -> Assessment | None:
    """Pull the assessment payload off a terminal event, if it has one."""
    if event is None or not event.is_terminal or not event.extra:
        return None
    data = event.extra.get("assessment")
    if data is None:
        return None
    try:
        return Assessment.model_validate(data)
    except PydanticValidationError as e:
        logger.warning(f"Ignoring unreadable assessment on {event.timestamp}: {e}")
        return None


def last_terminal_index(events: list[Event]) -> int:
    """Index of the last loaf-complete event, or -1."""
    for i in range(len(events) - 1, -1, -1):
        if events[i].is_terminal:
            return i
    return -1


def ends_completed(events: list[Event]) -> bool:
    """A file is closed only if its last event is loaf-complete."""
    return bool(events) and events[-1].is_terminal


def stem_of(path: Path) -> str:
    """Bake filename without the .jsonl extension."""
    name = path.name
    return name[: -len(BAKE_FILE_SUFFIX)] if name.endswith(BAKE_FILE_SUFFIX) else path.stem


def reconcile_current(events: list[Event], path: Path, today: str) -> Bake:
    """Build the current bake from a replayed file.

    A file may hold a finished session followed by a new one. Only events
    after the last loaf-complete belong to the current bake. When the file
    ends with loaf-complete the current bake is empty, but the finished
    bake's assessment is still reported.
    """
    idx = last_terminal_index(events)

    if idx >= 0 and idx == len(events) - 1:
        return Bake(date=today, events=[], assessment=extract_assessment(events[-1]))

    if idx >= 0:
        events = events[idx + 1:]

    date = events[0].timestamp.strftime("%Y-%m-%d") if events else today
    return Bake(date=date, filename=stem_of(path), events=events)


def materialize_bake(events: list[Event], path: Path, identity: str) -> Bake:
    """Build a historical bake from a full replay, without trimming."""
    return Bake(
        date=identity,
        filename=stem_of(path),
        events=events,
        assessment=extract_assessment(events[-1]) if events else None,
    )
