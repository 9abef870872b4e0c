"""Last-observed modification times for collection files, used for conflict detection."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Optional, Union

PathLike = Union[str, Path]


def file_mtime_ms(path: PathLike) -> float:
    """Modification time of ``path`` in milliseconds. Raises OSError if it cannot be stat'ed."""
    return os.stat(path).st_mtime_ns / 1_000_000


class ModificationTracker:
    """Absolute path -> last observed mtime (ms).

    Entries live until ``forget`` (delete events) or ``clear`` (teardown).
    """

    def __init__(self) -> None:
        self._mod_times: dict[str, float] = {}

    @staticmethod
    def _key(path: PathLike) -> str:
        return os.path.realpath(str(path))

    def record(self, path: PathLike, mtime: float) -> None:
        self._mod_times[self._key(path)] = float(mtime)

    def record_current(self, path: PathLike) -> float:
        """Stat ``path`` and record its mtime. Returns the recorded value."""
        mtime = file_mtime_ms(path)
        self.record(path, mtime)
        return mtime

    def get(self, path: PathLike) -> Optional[float]:
        return self._mod_times.get(self._key(path))

    def forget(self, path: PathLike) -> None:
        self._mod_times.pop(self._key(path), None)

    def clear(self) -> None:
        self._mod_times.clear()

    def __contains__(self, path: object) -> bool:
        if not isinstance(path, (str, Path)):
            return False
        return self._key(path) in self._mod_times

    def __len__(self) -> int:
        return len(self._mod_times)
