"""Exception hierarchy for the bake logger."""

from pathlib import Path


class SourdoughError(Exception):
    """Base class for all bake logger errors."""


class StorageError(SourdoughError):
    """An I/O operation on the bake directory failed."""

    def __init__(self, message: str, path: Path | None = None, operation: str = ""):
        self.path = path
        self.operation = operation
        super().__init__(message)


class BakeNotFoundError(StorageError):
    """A bake explicitly addressed by identity has no file."""


class InvalidEventError(StorageError):
    """An event index or timestamp does not match the stored log."""


class ValidationError(SourdoughError):
    """Input rejected before it reaches the store."""


class UnknownEventKindError(ValidationError):
    """Event kind is not part of the closed enumeration."""


class SessionAlreadyOpenError(SourdoughError):
    """A bake is already in progress."""


class SensorError(SourdoughError):
    """The ambient temperature sensor could not be read."""
