"""Append-only bake log store backed by JSONL files.

One file per bake session. The event log is the source of truth: the
current bake, fold counts and assessments are all derived by replaying it.
The store keeps no pointer to the open session; it re-derives the current
file from disk on every call, so a restart needs no recovery step.
"""

from __future__ import annotations

import logging
import os
import re
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path

from ulid import ULID

from .constants import (
    BAKE_FILE_PREFIX,
    BAKE_FILE_SUFFIX,
    DATE_FORMAT,
    DEFAULT_IMAGE_EXTENSION,
    IMAGE_EXTENSIONS,
    IMAGES_DIR_NAME,
    NEW_BAKE_KEY_FORMAT,
    TRASH_DIR_NAME,
)
from .errors import BakeNotFoundError, InvalidEventError, StorageError
from .models import Bake, Event
from .state import ends_completed, materialize_bake, reconcile_current, replay_file, stem_of

logger = logging.getLogger(__name__)

_IDENTITY_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]*$")
_IMAGE_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


class RWLock:
    """Reader/writer lock. Writers are preferred; not reentrant."""

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self):
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self):
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


def bake_filename(identity: str) -> str:
    return f"{BAKE_FILE_PREFIX}{identity}{BAKE_FILE_SUFFIX}"


def identity_of(filename: str) -> str | None:
    """Extract the bake identity from a filename, or None if not a bake file."""
    if filename.startswith(BAKE_FILE_PREFIX) and filename.endswith(BAKE_FILE_SUFFIX):
        return filename[len(BAKE_FILE_PREFIX): -len(BAKE_FILE_SUFFIX)]
    return None


class BakeStore:
    """Directory of per-bake JSONL logs.

    Thread-safety: one store instance is shared by all request threads and
    the auto-log task. The whole directory is one critical section: reads
    take the shared side of the lock, writes the exclusive side. Public
    methods take the lock; `_`-prefixed helpers assume it is held.
    """

    def __init__(self, data_dir: Path):
        """Initialize the store, creating the data directory.

        Args:
            data_dir: Directory holding bake_*.jsonl files

        Raises:
            StorageError: the directory cannot be created
        """
        self.data_dir = Path(data_dir)
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(
                f"failed to create data directory: {e}", path=self.data_dir, operation="mkdir"
            ) from e
        self.trash_dir = self.data_dir / TRASH_DIR_NAME
        self.images_dir = self.data_dir / IMAGES_DIR_NAME
        self._lock = RWLock()

    # --- Path helpers ---

    def bake_path(self, identity: str) -> Path | None:
        """Path for a bake identity, or None if the identity is not a safe name."""
        if not _IDENTITY_PATTERN.match(identity):
            return None
        return self.data_dir / bake_filename(identity)

    def _bake_files(self) -> list[tuple[Path, int]]:
        """All bake files with their mtimes. Unstattable files are skipped."""
        files = []
        for entry in os.scandir(self.data_dir):
            if identity_of(entry.name) is None:
                continue
            try:
                if not entry.is_file():
                    continue
                files.append((Path(entry.path), entry.stat().st_mtime_ns))
            except OSError:
                continue
        return files

    def _resolve_current(self) -> tuple[Path, tuple[Path, list[Event]] | None]:
        """Resolve the file that represents the current bake.

        Scans bake files from most to least recently modified and returns the
        first one that does not end with loaf-complete. A file that cannot be
        read counts as not completed. If every file is closed, returns a new
        (not yet created) timestamped path. Sessions therefore stay current
        across midnight until explicitly completed.

        Returns:
            (current path, (path, events) of the most recently modified
            closed file seen before it, or None)
        """
        try:
            files = self._bake_files()
        except OSError as e:
            logger.warning(f"Cannot list {self.data_dir}, falling back to today's file: {e}")
            return self.data_dir / bake_filename(datetime.now().strftime(DATE_FORMAT)), None

        files.sort(key=lambda f: (f[1], f[0].name), reverse=True)

        last_closed = None
        for path, _mtime in files:
            try:
                events = replay_file(path)
            except StorageError as e:
                # Unknown completion state; keep it current so callers hit the error
                logger.warning(f"Cannot read bake file {path.name}, treating it as open: {e}")
                return path, last_closed
            if not ends_completed(events):
                return path, last_closed
            if last_closed is None:
                last_closed = (path, events)

        # Second precision; step forward past a name a just-closed bake
        # already took within the same second.
        now = datetime.now()
        candidate = self.data_dir / bake_filename(now.strftime(NEW_BAKE_KEY_FORMAT))
        while candidate.exists():
            now += timedelta(seconds=1)
            candidate = self.data_dir / bake_filename(now.strftime(NEW_BAKE_KEY_FORMAT))
        return candidate, last_closed

    def _current_bake_file(self) -> Path:
        return self._resolve_current()[0]

    def current_bake_file(self) -> Path:
        """Path of the current bake file (may not exist yet)."""
        with self._lock.read():
            return self._current_bake_file()

    # --- Writes ---

    def append(self, event: Event | None) -> Path:
        """Append an event to the current bake file.

        Resolution and write happen under one exclusive lock, so concurrent
        appends cannot both decide to open a new file, and lines never
        interleave.

        Args:
            event: Event to append. None only creates the file.

        Returns:
            Path of the file written.
        """
        with self._lock.write():
            path = self._current_bake_file()
            created = not path.exists()
            try:
                with open(path, "a", encoding="utf-8") as f:
                    if event is not None:
                        f.write(event.to_json_line() + "\n")
                        f.flush()
            except OSError as e:
                raise StorageError(f"failed to write event to {path.name}: {e}", path=path, operation="append") from e

        if created:
            logger.info(f"Started new bake file {path.name}")
        return path

    def delete_bake(self, identity: str) -> Path:
        """Move a bake file into trash/, keeping its content.

        Returns:
            The path inside trash/.

        Raises:
            BakeNotFoundError: no such bake
            StorageError: the move failed
        """
        with self._lock.write():
            src = self.bake_path(identity)
            if src is None or not src.is_file():
                raise BakeNotFoundError(f"bake not found: {identity}", path=src, operation="delete")

            dst = self.trash_dir / src.name
            try:
                self.trash_dir.mkdir(parents=True, exist_ok=True)
                os.replace(src, dst)
            except OSError as e:
                raise StorageError(f"failed to move bake to trash: {e}", path=src, operation="delete") from e

        logger.info(f"Moved {src.name} to {TRASH_DIR_NAME}/")
        return dst

    def delete_event(self, index: int, timestamp: str) -> Event:
        """Remove one event from the current bake file.

        The timestamp must match the event at `index` so that a stale view
        cannot delete the wrong event. The file is rewritten through a temp
        file and renamed into place.

        Args:
            index: Position of the event in the file
            timestamp: ISO timestamp of that event as the caller saw it

        Returns:
            The removed event.

        Raises:
            InvalidEventError: index out of range or timestamp mismatch
            StorageError: the file is unreadable, malformed or cannot be rewritten
        """
        with self._lock.write():
            path = self._current_bake_file()
            events = replay_file(path, tolerant=False)

            if index < 0 or index >= len(events):
                raise InvalidEventError(f"invalid event index: {index}", path=path, operation="delete_event")

            try:
                expected = datetime.fromisoformat(timestamp.strip().replace("Z", "+00:00"))
            except ValueError as e:
                raise InvalidEventError(
                    f"invalid timestamp: {timestamp}", path=path, operation="delete_event"
                ) from e
            if events[index].timestamp != expected:
                raise InvalidEventError(
                    "timestamp mismatch - event may have changed", path=path, operation="delete_event"
                )

            removed = events.pop(index)
            tmp_path = path.with_name(path.name + ".tmp")
            try:
                with open(tmp_path, "w", encoding="utf-8") as f:
                    for event in events:
                        f.write(event.to_json_line() + "\n")
                os.replace(tmp_path, path)
            except OSError as e:
                tmp_path.unlink(missing_ok=True)
                raise StorageError(f"failed to rewrite bake file: {e}", path=path, operation="delete_event") from e

        logger.info(f"Deleted {removed.kind} event #{index} from {path.name}")
        return removed

    def _write_image(self, bake_path: Path, data: bytes, content_type: str | None) -> Path:
        """Write a photo into images/<bake file stem>/ under a ULID name.

        ULIDs are derived from the millisecond timestamp, so names sort by
        upload time.
        """
        ext = IMAGE_EXTENSIONS.get((content_type or "").split(";")[0].strip().lower(), DEFAULT_IMAGE_EXTENSION)
        path = self.images_dir / stem_of(bake_path) / f"{ULID()}{ext}"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as e:
            raise StorageError(f"failed to write image data: {e}", path=path, operation="save_image") from e
        logger.debug(f"Saved image {path.parent.name}/{path.name} ({len(data)} bytes)")
        return path

    def save_image(self, data: bytes, content_type: str | None = None) -> str:
        """Store a photo for the current bake.

        Returns:
            The generated filename (what a note event references).
        """
        with self._lock.write():
            return self._write_image(self._current_bake_file(), data, content_type).name

    def append_with_image(self, event: Event, data: bytes, content_type: str | None = None) -> Event:
        """Store a photo and append the event that references it.

        The bake file is resolved once for both writes, so the photo and its
        note always belong to the same bake.

        Returns:
            The appended event, with `image_ref` set to the stored filename.
        """
        with self._lock.write():
            path = self._current_bake_file()
            created = not path.exists()
            image_path = self._write_image(path, data, content_type)
            event = event.with_fields(image_ref=image_path.name)
            try:
                with open(path, "a", encoding="utf-8") as f:
                    f.write(event.to_json_line() + "\n")
                    f.flush()
            except OSError as e:
                image_path.unlink(missing_ok=True)
                raise StorageError(f"failed to write event to {path.name}: {e}", path=path, operation="append") from e

        if created:
            logger.info(f"Started new bake file {path.name}")
        return event

    # --- Reads ---

    def read_current_bake(self) -> Bake:
        """Read the current bake, reconciled to the open session."""
        with self._lock.read():
            return self._read_current_bake()

    def _read_current_bake(self) -> Bake:
        today = datetime.now().strftime(DATE_FORMAT)
        path, last_closed = self._resolve_current()
        if not path.exists():
            if last_closed is not None:
                # Nothing open: report the just-finished bake's assessment
                return reconcile_current(last_closed[1], last_closed[0], today)
            return Bake(date=today, events=[])
        return reconcile_current(replay_file(path), path, today)

    def has_current_bake(self) -> bool:
        """True if a started, not yet completed bake exists."""
        with self._lock.read():
            bake = self._read_current_bake()
        return bool(bake.events) and not any(e.is_terminal for e in bake.events)

    def last_event(self) -> Event | None:
        """Most recent event of the current bake."""
        with self._lock.read():
            return self._read_current_bake().last_event

    def read_bake(self, identity: str) -> Bake:
        """Read a bake by identity in full. Unknown identities give an empty bake."""
        with self._lock.read():
            path = self.bake_path(identity)
            if path is None or not path.exists():
                return Bake(date=identity, events=[])
            return materialize_bake(replay_file(path), path, identity)

    def list_bakes(self) -> list[str]:
        """Identities of all bake files, most recent first. No replay."""
        with self._lock.read():
            try:
                names = [entry.name for entry in os.scandir(self.data_dir) if entry.is_file()]
            except OSError as e:
                raise StorageError(
                    f"failed to read data directory: {e}", path=self.data_dir, operation="list"
                ) from e
        identities = [i for i in (identity_of(n) for n in names) if i is not None]
        return sorted(identities, reverse=True)

    def image_path(self, identity: str, filename: str) -> Path:
        """Full path of a stored image.

        Raises:
            BakeNotFoundError: identity or filename is not a safe name
        """
        if not _IDENTITY_PATTERN.match(identity) or not _IMAGE_NAME_PATTERN.match(filename):
            raise BakeNotFoundError(f"image not found: {identity}/{filename}", operation="image_path")
        return self.images_dir / f"{BAKE_FILE_PREFIX}{identity}" / filename
