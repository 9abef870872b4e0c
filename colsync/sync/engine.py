"""Collection sync facade: load, save, watch and inspect file-backed collections.

Every public coroutine returns a structured result. Failures are logged and
reported through ``success=False`` plus a readable ``error``; nothing raises
across this boundary.
"""
from __future__ import annotations

import logging
import os
import time
from pathlib import Path
from typing import Any, Callable, Optional, Union

from colsync import config
from colsync.collection_registry import FileCollectionRegistry
from colsync.errors import PartialLoadWarning, PathSafetyError
from colsync.models import (
    CollectionTree,
    FileChangeEvent,
    FileInfo,
    LoadResult,
    OperationResult,
)
from colsync.observability import (
    record_collection_operation,
    record_parser_failure,
    start_span,
)
from colsync.parsers.collection_files import load_collection, save_collection
from colsync.path_safety import PathSafetyGate
from colsync.services.file_manager import reveal_in_file_manager
from colsync.sync.file_watcher import WatchSessionManager
from colsync.sync.mod_tracker import ModificationTracker, file_mtime_ms
from colsync.sync.notifications import EventBroadcaster, NotifySink

logger = logging.getLogger("colsync.sync")

PathLike = Union[str, Path]


def _elapsed_ms(started: float) -> float:
    return (time.monotonic() - started) * 1000


class CollectionSync:
    """Composes the serializer, tracker and watcher behind one async surface.

    All collaborators are injectable; independent instances share no state.
    """

    def __init__(
        self,
        *,
        is_path_safe: Optional[Callable[[PathLike], bool]] = None,
        tracker: Optional[ModificationTracker] = None,
        watcher: Optional[WatchSessionManager] = None,
        notify: Optional[NotifySink] = None,
        reveal: Optional[Callable[[PathLike], None]] = None,
        registry: Optional[FileCollectionRegistry] = None,
        save_refreshes_tracker: Optional[bool] = None,
    ):
        self.is_path_safe = is_path_safe or PathSafetyGate()
        self.tracker = tracker or ModificationTracker()
        self.watcher = watcher or WatchSessionManager(self.tracker, is_path_safe=self.is_path_safe)
        self.notify = notify or EventBroadcaster()
        self.reveal = reveal or reveal_in_file_manager
        self.registry = registry or FileCollectionRegistry(None)
        self.save_refreshes_tracker = (
            config.SAVE_REFRESHES_TRACKER if save_refreshes_tracker is None else save_refreshes_tracker
        )

    # ── Core operations ────────────────────────────────────────────

    async def load_collection_from_directory(self, directory_path: PathLike) -> LoadResult:
        started = time.monotonic()
        warnings: list[PartialLoadWarning] = []
        with start_span("collection.load", {"collection.directory": str(directory_path)}):
            try:
                tree = load_collection(
                    directory_path,
                    self.tracker,
                    is_path_safe=self.is_path_safe,
                    warnings=warnings,
                )
            except Exception as e:
                logger.error(f"Failed to load collection from {directory_path}: {e}")
                record_collection_operation("load", "error", _elapsed_ms(started))
                return LoadResult(success=False, error=str(e))

        record_parser_failure("request", len(warnings))
        record_collection_operation("load", "success", _elapsed_ms(started))
        logger.info(
            f"Loaded collection '{tree.name}' from {directory_path}"
            + (f" ({len(warnings)} file(s) skipped)" if warnings else "")
        )
        return LoadResult(success=True, collection=tree, warnings=[str(w) for w in warnings])

    async def save_collection_to_directory(
        self,
        collection: Union[CollectionTree, dict[str, Any]],
        directory_path: PathLike,
    ) -> OperationResult:
        started = time.monotonic()
        collection_id = None
        with start_span("collection.save", {"collection.directory": str(directory_path)}):
            try:
                tree = collection if isinstance(collection, CollectionTree) else CollectionTree.model_validate(collection)
                collection_id = tree.id
                save_collection(
                    tree,
                    directory_path,
                    self.tracker if self.save_refreshes_tracker else None,
                    is_path_safe=self.is_path_safe,
                )
            except Exception as e:
                logger.error(f"Failed to save collection to {directory_path}: {e}")
                record_collection_operation("save", "error", _elapsed_ms(started))
                if collection_id:
                    self.registry.update_sync_state(collection_id, "error", str(e))
                return OperationResult(success=False, error=str(e))

        self.registry.mark_synced(tree.id)
        record_collection_operation("save", "success", _elapsed_ms(started))
        return OperationResult(success=True)

    async def watch_collection_directory(self, directory_path: PathLike) -> OperationResult:
        try:
            await self.watcher.watch(directory_path, self._deliver)
        except Exception as e:
            logger.error(f"Failed to watch {directory_path}: {e}")
            record_collection_operation("watch", "error")
            return OperationResult(success=False, error=str(e))
        record_collection_operation("watch", "success")
        return OperationResult(success=True)

    async def unwatch_collection_directory(self, directory_path: PathLike) -> OperationResult:
        try:
            await self.watcher.unwatch(directory_path)
        except Exception as e:
            logger.error(f"Error while unwatching {directory_path}: {e}")
        return OperationResult(success=True)

    async def get_file_info(self, path: PathLike) -> FileInfo:
        """Existence, mtime (ms) and size of ``path``, for conflict prompts."""
        try:
            if not self.is_path_safe(path) or not os.path.exists(path):
                return FileInfo(exists=False)
            stats = os.stat(path)
            return FileInfo(exists=True, lastModified=file_mtime_ms(path), size=stats.st_size)
        except Exception as e:
            logger.warning(f"Could not stat {path}: {e}")
            return FileInfo(exists=False)

    async def open_in_file_manager(self, path: PathLike) -> OperationResult:
        try:
            if not self.is_path_safe(path):
                raise PathSafetyError(path)
            self.reveal(path)
        except Exception as e:
            logger.error(f"Failed to open {path} in file manager: {e}")
            return OperationResult(success=False, error=str(e))
        return OperationResult(success=True)

    async def teardown(self) -> None:
        """Close every watch session and clear tracked modification times."""
        try:
            await self.watcher.teardown_all()
        except Exception as e:
            logger.error(f"Error tearing down watch sessions: {e}")

    # ── File collection workflows ──────────────────────────────────

    async def open_collection(self, directory_path: PathLike) -> LoadResult:
        """Load a directory, register it as a file collection and start watching it."""
        result = await self.load_collection_from_directory(directory_path)
        if not result.success or result.collection is None:
            return result

        collection_id = result.collection.id
        self.registry.register(collection_id, str(directory_path))
        watched = await self.watch_collection_directory(directory_path)
        if watched.success:
            self.registry.set_watching(collection_id, True)
        else:
            result.warnings.append(f"Watching {directory_path} failed: {watched.error}")
        return result

    async def export_collection(
        self,
        collection: Union[CollectionTree, dict[str, Any]],
        directory_path: PathLike,
    ) -> OperationResult:
        """Write an in-memory collection to a new directory and start tracking it there."""
        try:
            tree = collection if isinstance(collection, CollectionTree) else CollectionTree.model_validate(collection)
        except Exception as e:
            return OperationResult(success=False, error=str(e))

        saved = await self.save_collection_to_directory(tree, directory_path)
        if not saved.success:
            return saved

        self.registry.register(tree.id, str(directory_path))
        watched = await self.watch_collection_directory(directory_path)
        if watched.success:
            self.registry.set_watching(tree.id, True)
        return OperationResult(success=True)

    async def sync_collection(self, collection: Union[CollectionTree, dict[str, Any]]) -> OperationResult:
        """Save a registered collection back to its own directory."""
        try:
            tree = collection if isinstance(collection, CollectionTree) else CollectionTree.model_validate(collection)
        except Exception as e:
            return OperationResult(success=False, error=str(e))

        info = self.registry.get(tree.id)
        if not info:
            return OperationResult(success=False, error="Not a file collection")

        self.registry.update_sync_state(tree.id, "loading")
        return await self.save_collection_to_directory(tree, info.directoryPath)

    # ── Event delivery ─────────────────────────────────────────────

    def _deliver(self, event: FileChangeEvent) -> None:
        try:
            self.registry.apply_event(event)
        except Exception as e:
            logger.error(f"Failed to record {event.type} event for {event.path}: {e}")
        self.notify(event)
