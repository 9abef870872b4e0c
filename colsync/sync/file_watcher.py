"""Collection directory watcher using watchfiles.

One background subscription per watched directory. Raw changes are coalesced
per path, classified against the modification tracker and pushed to a
notification sink as FileChangeEvent objects.
"""
from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import Any, Callable, Optional, Union

from watchfiles import Change, DefaultFilter, awatch

from colsync import config
from colsync.errors import FilesystemError, PathSafetyError
from colsync.models import FileChangeEvent
from colsync.observability import record_watch_event
from colsync.sync.mod_tracker import ModificationTracker, file_mtime_ms
from colsync.sync.notifications import NotifySink

logger = logging.getLogger("colsync.watcher")

PathLike = Union[str, Path]


class CollectionWatchFilter(DefaultFilter):
    """watchfiles' default ignores plus any dotfile or dot-directory under the root."""

    def __init__(self, root: PathLike):
        super().__init__()
        self._root = os.path.realpath(str(root))

    def __call__(self, change: Change, path: str) -> bool:
        real = os.path.realpath(path)
        try:
            parts = Path(real).relative_to(self._root).parts
        except ValueError:
            parts = Path(path).parts
        if any(part.startswith(".") for part in parts):
            return False
        return super().__call__(change, path)


class WatchSession:
    """A running subscription for one directory."""

    def __init__(self, directory: str, task: asyncio.Task, stop_event: asyncio.Event):
        self.directory = directory
        self.task = task
        self.stop_event = stop_event

    @property
    def is_running(self) -> bool:
        return not self.task.done()

    async def stop(self) -> None:
        self.stop_event.set()
        self.task.cancel()
        try:
            await self.task
        except asyncio.CancelledError:
            pass


class WatchSessionManager:
    """Owns the directory -> WatchSession registry.

    Uses `watchfiles` (Rust-accelerated). ``awatch_fn`` can be swapped for a
    fake in tests; it is called like ``watchfiles.awatch``.
    """

    def __init__(
        self,
        tracker: ModificationTracker,
        *,
        is_path_safe: Optional[Callable[[PathLike], bool]] = None,
        awatch_fn: Callable[..., Any] = awatch,
        stability_ms: Optional[int] = None,
        debounce_ms: Optional[int] = None,
    ):
        self.tracker = tracker
        self._is_path_safe = is_path_safe
        self._awatch = awatch_fn
        self._stability_ms = config.WATCH_STABILITY_MS if stability_ms is None else stability_ms
        self._debounce_ms = config.WATCH_DEBOUNCE_MS if debounce_ms is None else debounce_ms
        self._sessions: dict[str, WatchSession] = {}

    @staticmethod
    def _key(directory_path: PathLike) -> str:
        return os.path.realpath(str(directory_path))

    async def watch(self, directory_path: PathLike, notify: NotifySink) -> None:
        """Start watching ``directory_path``, replacing any existing session for it."""
        directory = os.path.abspath(str(directory_path))
        if self._is_path_safe is not None and not self._is_path_safe(directory):
            raise PathSafetyError(directory)

        # An existing session survives a failed re-watch.
        if not os.path.isdir(directory):
            raise FilesystemError(f"Directory does not exist: {directory}")

        key = self._key(directory)
        existing = self._sessions.pop(key, None)
        if existing:
            await existing.stop()
            logger.info(f"Replaced existing watch session for {directory}")

        stop_event = asyncio.Event()
        task = asyncio.create_task(
            self._watch_loop(directory, notify, stop_event),
            name=f"colsync-watch:{directory}",
        )
        self._sessions[key] = WatchSession(directory, task, stop_event)
        logger.info(f"Watching collection directory {directory}")

    async def unwatch(self, directory_path: PathLike) -> None:
        """Stop watching ``directory_path``. A no-op if it is not watched."""
        session = self._sessions.pop(self._key(directory_path), None)
        if session:
            await session.stop()
            logger.info(f"Stopped watching {session.directory}")

    async def teardown_all(self) -> None:
        """Stop every session and forget all tracked modification times."""
        sessions = list(self._sessions.values())
        self._sessions.clear()
        for session in sessions:
            await session.stop()
        self.tracker.clear()
        logger.info(f"Watch sessions torn down ({len(sessions)} stopped)")

    def is_watching(self, directory_path: PathLike) -> bool:
        session = self._sessions.get(self._key(directory_path))
        return bool(session and session.is_running)

    @property
    def watched_directories(self) -> list[str]:
        return [session.directory for session in self._sessions.values()]

    async def _watch_loop(self, directory: str, notify: NotifySink, stop_event: asyncio.Event) -> None:
        """Main watching loop for one directory."""
        try:
            async for changes in self._awatch(
                directory,
                watch_filter=CollectionWatchFilter(directory),
                debounce=self._debounce_ms,
                step=self._stability_ms,
                stop_event=stop_event,
                ignore_permission_denied=True,
            ):
                try:
                    self.dispatch_changes(changes, directory, notify)
                except Exception as e:
                    logger.error(f"Error handling file changes in {directory}: {e}")
        except asyncio.CancelledError:
            logger.debug(f"Watch task for {directory} cancelled")
        except Exception as e:
            logger.error(f"File watcher error for {directory}: {e}")

    def dispatch_changes(
        self,
        changes: set[tuple[Change, str]],
        directory: str,
        notify: NotifySink,
    ) -> list[FileChangeEvent]:
        """Coalesce one batch of raw changes to at most one event per path and classify it.

        A path that no longer exists is a delete, unless it was also created
        within the batch, in which case nobody ever saw it. An add for a path
        the tracker already knows is an atomic-rename save and is handled as a
        change; any other add is an add. Directories only produce deletes.
        """
        by_path: dict[str, set[Change]] = {}
        for change_type, path_str in changes:
            by_path.setdefault(path_str, set()).add(change_type)

        events: list[FileChangeEvent] = []
        for path_str, kinds in by_path.items():
            event: Optional[FileChangeEvent]
            if not os.path.exists(path_str):
                if Change.deleted not in kinds:
                    continue
                if Change.added in kinds and path_str not in self.tracker:
                    logger.debug(f"Ignoring short-lived file {path_str}")
                    continue
                event = self.handle_unlink(path_str, directory, notify)
            elif os.path.isdir(path_str):
                continue
            elif Change.added in kinds and path_str not in self.tracker:
                event = self.handle_add(path_str, directory, notify)
            else:
                event = self.handle_change(path_str, directory, notify)
            if event is not None:
                events.append(event)
        return events

    def handle_change(self, path: str, directory: str, notify: NotifySink) -> Optional[FileChangeEvent]:
        """Report ``path`` as modified only if its mtime moved past the tracked one."""
        try:
            current = file_mtime_ms(path)
        except OSError as e:
            logger.error(f"Could not stat changed file {path}: {e}")
            return None

        previous = self.tracker.get(path)
        event = None
        if previous is not None and current > previous:
            event = FileChangeEvent(type="modified", path=path, directoryPath=directory, lastModified=current)
            self._emit(notify, event)
        self.tracker.record(path, current)
        return event

    def handle_add(self, path: str, directory: str, notify: NotifySink) -> FileChangeEvent:
        event = FileChangeEvent(type="added", path=path, directoryPath=directory)
        self._emit(notify, event)
        try:
            self.tracker.record_current(path)
        except OSError as e:
            logger.warning(f"Could not stat added file {path}: {e}")
        return event

    def handle_unlink(self, path: str, directory: str, notify: NotifySink) -> FileChangeEvent:
        event = FileChangeEvent(type="deleted", path=path, directoryPath=directory)
        self._emit(notify, event)
        self.tracker.forget(path)
        return event

    def _emit(self, notify: NotifySink, event: FileChangeEvent) -> None:
        record_watch_event(event.type)
        try:
            notify(event)
        except Exception as e:
            logger.error(f"Notification sink failed for {event.type} {event.path}: {e}")
