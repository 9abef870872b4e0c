"""Registry of file-backed collections: where each lives, its sync state, and open conflicts."""
from __future__ import annotations

import json
import logging
import os
import time
from pathlib import Path
from typing import Optional

from colsync.models import ConflictInfo, FileChangeEvent, FileCollectionInfo

logger = logging.getLogger("colsync.registry")


def _now_ms() -> float:
    return time.time() * 1000


def _same_or_under(path: str, directory: str) -> bool:
    path = os.path.realpath(path)
    directory = os.path.realpath(directory)
    return path == directory or path.startswith(directory.rstrip(os.sep) + os.sep)


class FileCollectionRegistry:
    """Tracks file collections by collection id.

    Registrations and the default directory are persisted to ``storage_path``
    as JSON (pass ``None`` to keep everything in memory). Conflicts are
    in-memory only.
    """

    def __init__(self, storage_path: Optional[Path]):
        self.storage_path = storage_path
        self._collections: dict[str, FileCollectionInfo] = {}
        self._conflicts: list[ConflictInfo] = []
        self._default_directory: Optional[str] = None
        self._load()

    def _load(self):
        """Load registrations from JSON storage."""
        if not self.storage_path or not self.storage_path.exists():
            return

        try:
            content = self.storage_path.read_text()
            if not content.strip():
                return
            data = json.loads(content)
            self._default_directory = data.get("defaultDirectory")
            for c_data in data.get("fileCollections", []):
                try:
                    info = FileCollectionInfo(**c_data)
                    # Sessions do not survive a restart.
                    info.isWatching = False
                    self._collections[info.collectionId] = info
                except Exception as e:
                    logger.error(f"Failed to load file collection entry: {e}")
        except Exception as e:
            logger.error(f"Failed to load file collections file: {e}")

    def _save(self):
        """Save registrations to JSON storage."""
        if not self.storage_path:
            return
        data = {
            "defaultDirectory": self._default_directory,
            "fileCollections": [c.model_dump() for c in self._collections.values()],
        }
        try:
            self.storage_path.write_text(json.dumps(data, indent=2))
        except OSError as e:
            # In-memory state stays authoritative for this process.
            logger.error(f"Failed to save file collections file {self.storage_path}: {e}")

    # ── Registrations ──────────────────────────────────────────────

    def register(self, collection_id: str, directory_path: str) -> FileCollectionInfo:
        """Register a collection; any older registration of the same directory is replaced."""
        stale = [
            cid for cid, info in self._collections.items()
            if cid != collection_id
            and os.path.realpath(info.directoryPath) == os.path.realpath(str(directory_path))
        ]
        for cid in stale:
            self._drop(cid)

        info = FileCollectionInfo(
            collectionId=collection_id,
            directoryPath=str(directory_path),
            syncState="synced",
            lastSynced=_now_ms(),
            isWatching=False,
        )
        self._collections[collection_id] = info
        self._save()
        logger.info(f"Registered file collection {collection_id} at {directory_path}")
        return info

    def unregister(self, collection_id: str) -> None:
        if self._drop(collection_id):
            self._save()

    def _drop(self, collection_id: str) -> bool:
        self._conflicts = [c for c in self._conflicts if c.collectionId != collection_id]
        return self._collections.pop(collection_id, None) is not None

    def get(self, collection_id: str) -> Optional[FileCollectionInfo]:
        return self._collections.get(collection_id)

    def is_file_collection(self, collection_id: str) -> bool:
        return collection_id in self._collections

    def list_collections(self) -> list[FileCollectionInfo]:
        return list(self._collections.values())

    def find_by_path(self, path: str) -> Optional[FileCollectionInfo]:
        """The registered collection whose directory is ``path`` or contains it."""
        for info in self._collections.values():
            if _same_or_under(path, info.directoryPath):
                return info
        return None

    def update_sync_state(self, collection_id: str, sync_state: str, error: Optional[str] = None) -> None:
        info = self._collections.get(collection_id)
        if not info:
            return
        info.syncState = sync_state
        info.error = error
        self._save()

    def mark_synced(self, collection_id: str) -> None:
        info = self._collections.get(collection_id)
        if not info:
            return
        info.syncState = "synced"
        info.lastSynced = _now_ms()
        info.error = None
        self._save()

    def set_watching(self, collection_id: str, is_watching: bool) -> None:
        info = self._collections.get(collection_id)
        if not info:
            return
        info.isWatching = is_watching
        self._save()

    @property
    def default_directory(self) -> Optional[str]:
        return self._default_directory

    def set_default_directory(self, directory: Optional[str]) -> None:
        self._default_directory = directory
        self._save()

    # ── Conflicts ──────────────────────────────────────────────────

    def add_conflict(self, conflict: ConflictInfo) -> None:
        """Record a conflict, replacing any open one for the same collection and file."""
        self._conflicts = [
            c for c in self._conflicts
            if not (c.collectionId == conflict.collectionId and c.filePath == conflict.filePath)
        ]
        self._conflicts.append(conflict)

    def remove_conflict(self, collection_id: str, file_path: Optional[str] = None) -> None:
        self._conflicts = [
            c for c in self._conflicts
            if not (c.collectionId == collection_id and (file_path is None or c.filePath == file_path))
        ]

    def clear_conflicts(self, collection_id: str) -> None:
        self.remove_conflict(collection_id)

    def list_conflicts(self, collection_id: Optional[str] = None) -> list[ConflictInfo]:
        if collection_id is None:
            return list(self._conflicts)
        return [c for c in self._conflicts if c.collectionId == collection_id]

    # ── Watch events ───────────────────────────────────────────────

    def apply_event(self, event: FileChangeEvent) -> None:
        """Fold a watcher event into the owning collection's state.

        modified → conflict (the file changed under us); added / deleted →
        modified (the tree on disk no longer matches memory).
        """
        info = self.find_by_path(event.path) or self.find_by_path(event.directoryPath)
        if not info:
            return

        if event.type == "modified":
            self.add_conflict(
                ConflictInfo(
                    collectionId=info.collectionId,
                    itemName=os.path.basename(event.path) or "Unknown",
                    filePath=event.path,
                    localModified=info.lastSynced,
                    externalModified=event.lastModified or _now_ms(),
                    message="File was modified externally",
                )
            )
            self.update_sync_state(info.collectionId, "conflict")
        elif info.syncState != "conflict":
            self.update_sync_state(info.collectionId, "modified")
