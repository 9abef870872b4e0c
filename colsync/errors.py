"""Error taxonomy for collection load / save / watch operations."""
from __future__ import annotations

from pathlib import Path


class CollectionSyncError(Exception):
    """Base class for failures surfaced by the sync facade."""


class PathSafetyError(CollectionSyncError):
    """Raised when the path safety gate rejects a path. No I/O was attempted."""

    def __init__(self, path: str | Path):
        self.path = str(path)
        super().__init__("Access denied: Path is outside allowed directories")


class SchemaValidationError(CollectionSyncError, ValueError):
    """Raised when a parsed file does not match the structure for its role."""

    def __init__(self, path: str | Path, role: str, detail: str):
        self.path = str(path)
        self.role = role
        self.detail = detail
        super().__init__(f"Invalid {role} file {path}: {detail}")


class FilesystemError(CollectionSyncError):
    """Raised for I/O failures: missing files, permission problems and the like."""


class PartialLoadWarning(UserWarning):
    """A non-root file failed to parse and was skipped during a load."""

    def __init__(self, path: str | Path, reason: str):
        self.path = str(path)
        self.reason = reason
        super().__init__(f"Skipped {path}: {reason}")
