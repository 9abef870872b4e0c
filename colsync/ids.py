"""Ephemeral identifiers for in-memory collection entities.

Identifiers are unique for the lifetime of the process only. They are never
written to disk, and reloading a directory always yields a fresh set.
"""
from __future__ import annotations

import itertools
import time
import uuid

_counter = itertools.count(1)


def generate_id() -> str:
    """Return a new process-unique identifier, e.g. ``1760000000000-1-3f9a2c1be``."""
    return f"{int(time.time() * 1000)}-{next(_counter)}-{uuid.uuid4().hex[:9]}"
