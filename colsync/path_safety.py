"""Default path safety gate consulted before any collection directory is touched."""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Callable, Iterable, Optional, Union

from colsync import config

logger = logging.getLogger("colsync.path_safety")

PathLike = Union[str, Path]
PathPredicate = Callable[[PathLike], bool]

BLOCKED_PREFIXES = (
    "/etc",
    "/usr",
    "/bin",
    "/sbin",
    "/var",
    "/root",
    "/System",
    "/Library",
    "/Applications",
    "C:\\Windows",
    "C:\\Program Files",
    "C:\\Program Files (x86)",
)


def _is_under(path: Path, root: Path) -> bool:
    try:
        path.resolve(strict=False).relative_to(root.resolve(strict=False))
        return True
    except ValueError:
        return False


def _has_prefix(path: Path, prefix: str) -> bool:
    text = str(path).lower()
    prefix = prefix.lower()
    return text == prefix or text.startswith(prefix.rstrip("/\\") + os.sep)


class PathSafetyGate:
    """Callable predicate: ``gate(path) -> bool``.

    A path is safe when it is absolute, carries no ``..`` or ``~`` segments,
    lies under one of the allowed roots (when any are configured) and does not
    fall inside a blocked system prefix. An allowed root that itself sits inside
    a blocked prefix (a home directory under ``/root``, a temp dir under
    ``/var``) re-allows that subtree.
    """

    def __init__(
        self,
        allowed_roots: Optional[Iterable[PathLike]] = None,
        blocked_prefixes: Iterable[str] = BLOCKED_PREFIXES,
    ):
        roots = config.ALLOWED_ROOTS if allowed_roots is None else allowed_roots
        self.allowed_roots = [Path(root).expanduser() for root in roots]
        self.blocked_prefixes = tuple(blocked_prefixes)

    def __call__(self, path: PathLike) -> bool:
        return self.is_path_safe(path)

    def is_path_safe(self, path: PathLike) -> bool:
        raw = str(path or "")
        if not raw:
            return False
        candidate = Path(raw)
        if any(part == ".." or part.startswith("~") for part in candidate.parts):
            return False
        if not candidate.is_absolute():
            return False

        try:
            normalized = Path(os.path.normpath(raw))
            roots = [root for root in self.allowed_roots if _is_under(normalized, root)]
            if self.allowed_roots and not roots:
                return False
            for prefix in self.blocked_prefixes:
                resolved = normalized.resolve(strict=False)
                if not (_has_prefix(normalized, prefix) or _has_prefix(resolved, prefix)):
                    continue
                if any(_has_prefix(root.resolve(strict=False), prefix) or _has_prefix(root, prefix) for root in roots):
                    continue
                return False
        except (OSError, RuntimeError) as exc:
            logger.warning(f"Path safety check failed for {raw}: {exc}")
            return False
        return True
