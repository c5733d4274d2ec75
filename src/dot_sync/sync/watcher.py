"""Debounced watcher for tracked configuration files.

Raw filesystem events come from :func:`watchfiles.awatch` on the parent
directories of the watched files and are handled on the event loop, which
is the only owner of the timer table and the pending set.  Every event for a
watched path restarts that path's timer; when a timer expires the file is
either uploaded through the engine (auto-sync) or announced through the
notification sink.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Iterable
from pathlib import Path

from watchfiles import awatch

from dot_sync.models import SyncDirection, TrackedFile
from dot_sync.notify import (
    LogNotifier,
    NotificationSink,
    notify_file_changed,
    notify_sync_failed,
)
from dot_sync.storage.errors import StorageError
from dot_sync.sync.engine import ReconciliationEngine

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE = 5.0
IGNORED_SUFFIXES = (".swp", ".swx", ".tmp", ".temp", "~")


class ChangeWatcher:
    """Watches tracked files and re-enters the engine after quiet periods.

    Args:
        engine: Engine used for auto-sync uploads.
        debounce: Seconds without further events before a change fires.
        auto_sync: Upload changed files instead of only notifying.
        notifier: Sink for change notifications.
    """

    def __init__(
        self,
        engine: ReconciliationEngine,
        *,
        debounce: float = DEFAULT_DEBOUNCE,
        auto_sync: bool = False,
        notifier: NotificationSink | None = None,
    ) -> None:
        self._engine = engine
        self._debounce = debounce
        self._auto_sync = auto_sync
        self._notifier = notifier or LogNotifier()

        self._files: dict[Path, TrackedFile] = {}
        self._timers: dict[Path, asyncio.TimerHandle] = {}
        self._tasks: set[asyncio.Task[None]] = set()
        self._watch_task: asyncio.Task[None] | None = None
        self._stop_event = asyncio.Event()

    @property
    def pending(self) -> frozenset[Path]:
        """Paths with a change waiting for its debounce window to pass."""
        return frozenset(self._timers)

    @property
    def watched(self) -> frozenset[Path]:
        return frozenset(self._files)

    @property
    def is_running(self) -> bool:
        return self._watch_task is not None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, files: Iterable[TrackedFile], *, listen: bool = True) -> None:
        """(Re)start watching *files*.

        Any previous timers, trigger tasks and filesystem subscription are
        cancelled first.  Directories are not watched.

        Args:
            files: Tracked files to watch.
            listen: Subscribe to filesystem events.  With ``False`` only
                :meth:`handle_changes` feeds the watcher.
        """
        await self.stop()
        self._files = {
            Path(f.path).absolute(): f for f in files if not f.is_directory
        }
        if not listen or not self._files:
            return

        parents = sorted({str(path.parent) for path in self._files if path.parent.is_dir()})
        self._stop_event = asyncio.Event()
        self._watch_task = asyncio.create_task(self._watch_loop(parents))
        logger.info(
            "Watching %d file(s) under %d parent directories", len(self._files), len(parents)
        )

    async def stop(self) -> None:
        """Cancel every timer, trigger task and the filesystem subscription."""
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()

        for task in list(self._tasks):
            task.cancel()
        for task in list(self._tasks):
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._tasks.clear()

        if self._watch_task is not None:
            self._stop_event.set()
            self._watch_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._watch_task
            self._watch_task = None

    async def _watch_loop(self, parents: list[str]) -> None:
        async for changes in awatch(
            *parents,
            stop_event=self._stop_event,
            recursive=False,
            watch_filter=None,
        ):
            self.handle_changes(path for _, path in changes)

    async def __aenter__(self) -> ChangeWatcher:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.stop()

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def handle_changes(self, paths: Iterable[str | Path]) -> None:
        """Restart the debounce timer of every watched path in *paths*.

        Must be called from the event loop thread.
        """
        loop = asyncio.get_running_loop()
        for raw in paths:
            path = Path(raw).absolute()
            if path.name.endswith(IGNORED_SUFFIXES):
                continue
            if path not in self._files:
                continue
            previous = self._timers.pop(path, None)
            if previous is not None:
                previous.cancel()
            self._timers[path] = loop.call_later(self._debounce, self._fire, path)
            logger.debug("Change on %s; firing in %.1fs", path, self._debounce)

    def _fire(self, path: Path) -> None:
        self._timers.pop(path, None)
        file = self._files.get(path)
        if file is None:
            return
        if not self._auto_sync:
            notify_file_changed(self._notifier, file.filename)
            return
        if not file.is_safe:
            logger.warning("Not auto-syncing %s: file contains credentials", path)
            return
        task = asyncio.get_running_loop().create_task(self._upload(file))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _upload(self, file: TrackedFile) -> None:
        try:
            operations = await self._engine.sync([file], SyncDirection.UPLOAD)
        except StorageError as exc:
            logger.error("Auto-sync of %s failed: %s", file.filename, exc)
            notify_sync_failed(self._notifier, str(exc))
            return
        except Exception as exc:
            logger.exception("Auto-sync of %s failed unexpectedly", file.filename)
            notify_sync_failed(self._notifier, str(exc))
            return
        for operation in operations:
            logger.info("Auto-sync of %s: %s", file.filename, operation.status)
