"""Reconciliation engine: classifies drift and executes transfers.

Coordinates one storage backend and the fingerprint catalog: lists the
remote side, classifies each tracked file, uploads or downloads on request
and applies explicit conflict resolutions.  Conflicts are never resolved
automatically.

Engine state (the status table, the syncing flag, the last sync time and the
operation log) has a single writer.  Passes are serialized by an
``asyncio.Lock`` and each table is replaced wholesale when a pass finishes,
so readers only ever observe the result of a completed pass.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import tempfile
from collections.abc import Callable, Iterable
from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, ConfigDict

from dot_sync.models import (
    ConfigCategory,
    ConflictResolution,
    Operation,
    OperationStatus,
    SyncDirection,
    SyncState,
    SyncStatus,
    TrackedFile,
)
from dot_sync.notify import (
    LogNotifier,
    NotificationSink,
    notify_conflicts_detected,
    notify_sync_completed,
    notify_sync_failed,
)
from dot_sync.storage.base import StorageBackend
from dot_sync.storage.errors import (
    ContainsCredentialsError,
    FileNotFoundOnRemoteError,
    NetworkError,
    StorageError,
    UploadFailedError,
)
from dot_sync.storage.models import RemoteObject
from dot_sync.sync.catalog import FingerprintCatalog
from dot_sync.sync.conflict import classify_file

logger = logging.getLogger(__name__)

BACKUP_SUFFIX = ".backup"
MAX_OPERATION_HISTORY = 500


# ------------------------------------------------------------------
# Snapshot model
# ------------------------------------------------------------------


class EngineSnapshot(BaseModel):
    """Read-only view of engine state, published after every pass."""

    model_config = ConfigDict(frozen=True)

    statuses: tuple[SyncStatus, ...] = ()
    operations: tuple[Operation, ...] = ()
    is_syncing: bool = False
    last_sync_at: datetime | None = None

    @property
    def conflicts(self) -> list[SyncStatus]:
        return [s for s in self.statuses if s.state is SyncState.CONFLICT]


Subscriber = Callable[[EngineSnapshot], None]
MergeHandler = Callable[[TrackedFile], None]


# ------------------------------------------------------------------
# Engine
# ------------------------------------------------------------------


class ReconciliationEngine:
    """Classifies and reconciles tracked files against one backend.

    Args:
        backend: The active storage backend.
        catalog: Catalog used to re-fingerprint files and to re-check
            safety before upload.
        request_timeout: Upper bound in seconds for each backend call made
            on behalf of one file.  Defaults to the backend's timeout.
        merge_handler: Called with the file when a conflict is resolved with
            ``MERGE``; typically opens an external editor.
        notifier: Sink for user-facing summaries.
    """

    def __init__(
        self,
        backend: StorageBackend,
        catalog: FingerprintCatalog | None = None,
        *,
        request_timeout: float | None = None,
        merge_handler: MergeHandler | None = None,
        notifier: NotificationSink | None = None,
    ) -> None:
        self._backend = backend
        self._catalog = catalog or FingerprintCatalog()
        self._timeout = request_timeout or backend.config.timeout
        self._merge_handler = merge_handler
        self._notifier = notifier or LogNotifier()
        self._lock = asyncio.Lock()
        self._subscribers: list[Subscriber] = []

        self._statuses: tuple[SyncStatus, ...] = ()
        self._operations: tuple[Operation, ...] = ()
        self._is_syncing = False
        self._last_sync_at: datetime | None = None

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------

    @property
    def backend(self) -> StorageBackend:
        return self._backend

    @property
    def catalog(self) -> FingerprintCatalog:
        return self._catalog

    @property
    def statuses(self) -> tuple[SyncStatus, ...]:
        return self._statuses

    @property
    def operations(self) -> tuple[Operation, ...]:
        return tuple(op.model_copy() for op in self._operations)

    @property
    def is_syncing(self) -> bool:
        return self._is_syncing

    @property
    def last_sync_at(self) -> datetime | None:
        return self._last_sync_at

    def snapshot(self) -> EngineSnapshot:
        return EngineSnapshot(
            statuses=self._statuses,
            operations=self.operations,
            is_syncing=self._is_syncing,
            last_sync_at=self._last_sync_at,
        )

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register *callback* to receive a snapshot after every pass.

        Returns:
            A function that removes the subscription.
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _publish(self) -> None:
        snapshot = self.snapshot()
        for callback in list(self._subscribers):
            try:
                callback(snapshot)
            except Exception:
                logger.exception("Engine subscriber %r failed", callback)

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    async def analyze(self, files: Iterable[TrackedFile]) -> list[SyncStatus]:
        """Classify every safe file against one remote listing.

        Replaces the status table with the result.

        Raises:
            StorageError: If the backend is not configured, rejects the
                credentials, or the listing fails.
        """
        async with self._lock:
            statuses = await self._classify(list(files))
            self._statuses = tuple(statuses)
        self._publish()
        return statuses

    async def _classify(self, files: list[TrackedFile]) -> list[SyncStatus]:
        safe = self._safe_files(files)
        listing = await self._list_remote()

        remote = {obj.path: obj for obj in listing}
        statuses = [
            classify_file(
                file,
                remote.get(self._backend.remote_key(file)),
                exists=Path(file.path).exists(),
            )
            for file in safe
        ]
        logger.info(
            "Analyzed %d file(s) against %s: %d remote object(s)",
            len(statuses),
            self._backend.name,
            len(listing),
        )
        return statuses

    async def discover_remote(
        self, root: str | Path, known: Iterable[TrackedFile] = ()
    ) -> list[TrackedFile]:
        """Describe remote objects that have no local counterpart in *known*.

        Each object's ``category/filename`` key is mapped back to a local
        path through the catalog's patterns, so a fresh machine can pull
        its configuration before any file exists locally.  Keys that match
        no pattern are ignored.
        """
        root = Path(root).expanduser()
        known_keys = {self._backend.remote_key(f) for f in known}
        prefix = self._backend.list_prefix
        listing = await self._list_remote()

        discovered: list[TrackedFile] = []
        for obj in listing:
            if obj.path in known_keys or not obj.path.startswith(prefix):
                continue
            category_name, _, filename = obj.path[len(prefix) :].partition("/")
            try:
                category = ConfigCategory(category_name)
            except ValueError:
                continue
            local = self._catalog.resolve(root, category, filename)
            if local is None:
                logger.debug("No local pattern for remote object %s", obj.path)
                continue
            discovered.append(
                self._catalog.placeholder(root, local, category, obj.last_modified, obj.size)
            )
        return discovered

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------

    async def sync(
        self,
        files: Iterable[TrackedFile],
        direction: SyncDirection = SyncDirection.UPLOAD,
    ) -> list[Operation]:
        """Transfer each safe file in *direction*, one file at a time.

        Per-file failures are recorded on that file's ``Operation`` and never
        stop the batch.  The same file set is reclassified afterwards, even
        when some transfers failed.

        Returns:
            One terminal ``Operation`` per safe file, in input order.
        """
        files = list(files)
        async with self._lock:
            self._is_syncing = True
            self._publish()
            operations: list[Operation] = []
            try:
                for file in self._safe_files(files):
                    operation = Operation(file=file, direction=direction)
                    operations.append(operation)
                    await self._execute(operation)
                self._statuses = tuple(await self._reclassify(files))
            finally:
                self._operations = (self._operations + tuple(operations))[
                    -MAX_OPERATION_HISTORY:
                ]
                self._is_syncing = False
                self._last_sync_at = datetime.now(timezone.utc)
        self._publish()
        self._report(operations)
        return operations

    async def _execute(self, operation: Operation) -> None:
        file = operation.file
        operation.status = OperationStatus.IN_PROGRESS
        if operation.direction is SyncDirection.SKIP:
            operation.status = OperationStatus.SKIPPED
            return
        if file.is_directory:
            operation.status = OperationStatus.SKIPPED
            operation.error = "Directories are not transferred"
            logger.info("Skipping directory %s", file.path)
            return

        try:
            if operation.direction is SyncDirection.UPLOAD:
                await asyncio.wait_for(self._upload(file), self._timeout)
            else:
                # Only the fetch is timed; once bytes arrive the write runs to completion.
                data, remote = await asyncio.wait_for(self._fetch(file), self._timeout)
                await asyncio.to_thread(write_local, Path(file.path), data, remote.last_modified)
        except TimeoutError:
            operation.status = OperationStatus.FAILED
            operation.error = f"Timed out after {self._timeout:.0f}s"
            logger.error("%s of %s timed out", operation.direction, file.path)
        except (StorageError, OSError) as exc:
            operation.status = OperationStatus.FAILED
            operation.error = str(exc)
            logger.error("%s of %s failed: %s", operation.direction, file.path, exc)
        except Exception as exc:
            operation.status = OperationStatus.FAILED
            operation.error = f"Unexpected error: {exc}"
            logger.exception("%s of %s failed unexpectedly", operation.direction, file.path)
        else:
            operation.status = OperationStatus.COMPLETED
            logger.info("%s of %s completed", operation.direction, file.path)

    async def _upload(self, file: TrackedFile) -> None:
        current = await asyncio.to_thread(self._catalog.refresh, file)
        if current is None:
            raise UploadFailedError(f"{file.path} no longer exists")
        if not current.is_safe:
            raise ContainsCredentialsError(file.path)
        data = await asyncio.to_thread(Path(current.path).read_bytes)
        await self._backend.upload(current, data)

    async def _fetch(self, file: TrackedFile) -> tuple[bytes, RemoteObject]:
        remote = await self._backend.get_metadata(file)
        if remote is None:
            raise FileNotFoundOnRemoteError(self._backend.remote_key(file))
        data = await self._backend.download(file)
        return data, remote

    async def _reclassify(self, files: list[TrackedFile]) -> list[SyncStatus]:
        refreshed = [(await asyncio.to_thread(self._catalog.refresh, f)) or f for f in files]
        try:
            return await self._classify(refreshed)
        except StorageError as exc:
            logger.error("Could not reclassify after sync: %s", exc)
            return [
                SyncStatus(file=f, state=SyncState.ERROR, error=str(exc))
                for f in self._safe_files(refreshed)
            ]

    # ------------------------------------------------------------------
    # Conflict resolution
    # ------------------------------------------------------------------

    async def resolve_conflict(
        self, file: TrackedFile, resolution: ConflictResolution
    ) -> Operation | None:
        """Apply an explicit resolution for *file*.

        ``USE_LOCAL`` uploads, ``USE_REMOTE`` downloads, ``SKIP`` does
        nothing and ``MERGE`` hands the file to the merge handler and takes
        no further action.

        Returns:
            The transfer ``Operation``, or ``None`` when nothing was moved.
        """
        if resolution is ConflictResolution.USE_LOCAL:
            operations = await self.sync([file], SyncDirection.UPLOAD)
        elif resolution is ConflictResolution.USE_REMOTE:
            operations = await self.sync([file], SyncDirection.DOWNLOAD)
        elif resolution is ConflictResolution.MERGE:
            if self._merge_handler is None:
                logger.warning("No merge handler configured; leaving %s unresolved", file.path)
            else:
                self._merge_handler(file)
            return None
        else:
            logger.info("Skipping conflict resolution for %s", file.path)
            return None
        return operations[0] if operations else None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _list_remote(self) -> list[RemoteObject]:
        try:
            return await asyncio.wait_for(self._backend.list_files(), self._timeout)
        except TimeoutError as exc:
            raise NetworkError(f"listing {self._backend.name} timed out", exc) from exc

    @staticmethod
    def _safe_files(files: Iterable[TrackedFile]) -> list[TrackedFile]:
        safe: list[TrackedFile] = []
        for file in files:
            if file.is_safe:
                safe.append(file)
            else:
                logger.warning("Skipping %s: file contains credentials", file.path)
        return safe

    def _report(self, operations: list[Operation]) -> None:
        completed = sum(1 for op in operations if op.status is OperationStatus.COMPLETED)
        failed = [op for op in operations if op.status is OperationStatus.FAILED]
        if failed:
            notify_sync_failed(
                self._notifier,
                f"{len(failed)} of {len(operations)} file(s) failed: "
                + ", ".join(op.file.filename for op in failed),
            )
        elif completed:
            notify_sync_completed(self._notifier, completed)
        conflicts = [s for s in self._statuses if s.state is SyncState.CONFLICT]
        if conflicts:
            notify_conflicts_detected(self._notifier, len(conflicts))


def write_local(path: Path, data: bytes, mtime: datetime | None = None) -> None:
    """Replace *path* with *data* atomically, keeping a ``.backup`` copy.

    An existing file is copied to ``<name>.backup`` first.  The new bytes
    are written to a temporary file in the same directory and renamed over
    the target, so readers never see a partial file.  When *mtime* is
    given it becomes the file's modification time.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.exists():
        shutil.copy2(path, path.with_name(path.name + BACKUP_SUFFIX))
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
        if path.exists():
            shutil.copymode(path, tmp)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise
    if mtime is not None:
        stamp = mtime.timestamp()
        os.utime(path, (stamp, stamp))
