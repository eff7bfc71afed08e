"""Shared test fixtures and helpers for sourdough tests."""

import os
import tempfile
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from sourdough.engine import BakeEngine
from sourdough.events import BakeStore
from sourdough.models import Event
from sourdough.sensor import AmbientSensor
from sourdough.server import BakeHTTPServer

# Fixed zone so timestamps in files are stable across machines
PDT = timezone(timedelta(hours=-7))


# --- Fixtures ---


@pytest.fixture
def temp_data_dir():
    """Provide a temporary data directory, cleaned up after the test."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def store(temp_data_dir):
    """Provide an empty BakeStore."""
    return BakeStore(temp_data_dir)


@pytest.fixture
def engine(store):
    """Provide a BakeEngine with the sensor disabled."""
    return BakeEngine(store, AmbientSensor())


@pytest.fixture
def server_url(engine):
    """Run a BakeHTTPServer on a free port for the duration of a test.

    Yields the base URL.
    """
    httpd = BakeHTTPServer(("127.0.0.1", 0), engine)
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{httpd.server_address[1]}"
    httpd.shutdown()
    httpd.server_close()
    thread.join(timeout=5)


# --- Helper Functions (not fixtures) ---


def make_event(kind: str, minutes: int = 0, **fields) -> Event:
    """Helper to create an event at a fixed base time plus `minutes`.

    Args:
        kind: Event kind (e.g. "starter-out", "fold")
        minutes: Offset from 2025-10-01 08:00 PDT
        **fields: Any other Event fields

    Returns:
        An Event instance for testing.
    """
    ts = datetime(2025, 10, 1, 8, 0, tzinfo=PDT) + timedelta(minutes=minutes)
    return Event(kind=kind, timestamp=ts, **fields)


def write_bake(data_dir: Path, identity: str, lines: list, mtime: float | None = None) -> Path:
    """Write a bake file directly, bypassing the store.

    Args:
        data_dir: Store directory
        identity: Bake identity (file is bake_<identity>.jsonl)
        lines: Events or raw strings, one per line
        mtime: Optional modification time (seconds since epoch)

    Returns:
        Path of the written file.
    """
    path = data_dir / f"bake_{identity}.jsonl"
    with open(path, "w", encoding="utf-8") as f:
        for line in lines:
            f.write((line.to_json_line() if isinstance(line, Event) else line) + "\n")
    if mtime is not None:
        os.utime(path, (mtime, mtime))
    return path


def full_assessment(**overrides) -> dict:
    """A complete assessment payload."""
    data = {"proof_level": "good", "crumb_quality": 8, "browning": "good", "score": 9}
    data.update(overrides)
    return data
