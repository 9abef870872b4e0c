"""colsync configuration."""
import os
import tempfile
from pathlib import Path


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_paths(name: str, default: list[Path]) -> list[Path]:
    value = os.getenv(name)
    if value is None:
        return default
    return [Path(part).expanduser() for part in value.split(os.pathsep) if part.strip()]


# Project root (one level up from colsync/)
PROJECT_ROOT = Path(__file__).resolve().parent.parent

# Path safety: collections may only live under these roots
ALLOWED_ROOTS = _env_paths(
    "COLSYNC_ALLOWED_ROOTS",
    [Path.home(), Path(tempfile.gettempdir())],
)

# Watcher tuning (milliseconds): changes are delivered once a path has been
# quiet for WATCH_STABILITY_MS, and never grouped for longer than WATCH_DEBOUNCE_MS
WATCH_STABILITY_MS = _env_int("COLSYNC_WATCH_STABILITY_MS", 300)
WATCH_DEBOUNCE_MS = _env_int("COLSYNC_WATCH_DEBOUNCE_MS", 1600)

# Refresh tracked mtimes for files written by save so our own writes are not reported as conflicts
SAVE_REFRESHES_TRACKER = _env_bool("COLSYNC_SAVE_REFRESHES_TRACKER", True)

# Registered file collections
REGISTRY_PATH = Path(os.getenv("COLSYNC_REGISTRY_PATH", str(PROJECT_ROOT / "file_collections.json")))

# Per-subscriber buffer for pushed file change events
EVENT_QUEUE_SIZE = _env_int("COLSYNC_EVENT_QUEUE_SIZE", 256)

# Observability
OTEL_ENABLED = _env_bool("COLSYNC_OTEL_ENABLED", False)
OTEL_ENDPOINT = os.getenv("COLSYNC_OTEL_ENDPOINT", "http://localhost:4318")
OTEL_SERVICE_NAME = os.getenv("COLSYNC_OTEL_SERVICE_NAME", "colsync")
PROM_PORT = _env_int("COLSYNC_PROM_PORT", 9464)

# Server settings
HOST = os.getenv("COLSYNC_HOST", "127.0.0.1")
PORT = int(os.getenv("COLSYNC_PORT", "8000"))

# CORS
FRONTEND_ORIGIN = os.getenv("COLSYNC_FRONTEND_ORIGIN", "http://localhost:3000")
