"""Local ubiquity-store backend (iCloud Drive style).

Objects are plain files inside a container directory that a platform daemon
syncs in the background.  Every read, write and delete runs inside a scoped
exclusive coordination lock so our access never interleaves with another
writer in this process or with any other process that honours the same
advisory lock file.  Evicted files appear as ``.{name}.icloud`` placeholders
until the daemon materializes them again; downloads wait for that.
"""

from __future__ import annotations

import asyncio
import fcntl
import hashlib
import logging
import os
import shutil
import tempfile
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

import httpx

from dot_sync.models import TrackedFile
from dot_sync.storage.base import StorageBackend
from dot_sync.storage.errors import (
    AuthenticationFailedError,
    DownloadFailedError,
    FileNotFoundOnRemoteError,
    NetworkError,
    NotConfiguredError,
    UploadFailedError,
)
from dot_sync.storage.models import BackendConfig, BackendType, Credentials, RemoteObject

logger = logging.getLogger(__name__)

LOCK_FILENAME = ".dot-sync.lock"
PROBE_FILENAME = ".dot-sync-test"
PLACEHOLDER_SUFFIX = ".icloud"
DEFAULT_CONTAINER = Path.home() / "Library" / "Mobile Documents" / "com~apple~CloudDocs"
CLOUD_DOCS_STATE = Path.home() / "Library" / "Application Support" / "CloudDocs"

_process_locks: dict[Path, threading.Lock] = {}
_process_locks_guard = threading.Lock()


def default_identity_token() -> str | None:
    """Return a token identifying the signed-in cloud account, if any.

    The sync daemon keeps its state directory only while an account is
    signed in; its device/inode pair is stable for that session.
    """
    try:
        stat = CLOUD_DOCS_STATE.stat()
    except OSError:
        return None
    return f"{stat.st_dev}:{stat.st_ino}"


def _placeholder_for(path: Path) -> Path:
    return path.with_name(f".{path.name}{PLACEHOLDER_SUFFIX}")


class UbiquityStoreBackend(StorageBackend):
    """Backend over a locally synced container directory.

    Args:
        config: ``container_path`` selects the container directory.
        identity_token: Callable returning the active account token or
            ``None`` when no account is signed in.
        materialize_timeout: Seconds a download waits for an evicted file.
        poll_interval: Seconds between materialization checks.
    """

    backend_type = BackendType.UBIQUITY

    def __init__(
        self,
        config: BackendConfig,
        credentials: Credentials | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
        identity_token: Callable[[], str | None] = default_identity_token,
        materialize_timeout: float = 30.0,
        poll_interval: float = 0.5,
    ) -> None:
        super().__init__(config, credentials, http_client=http_client)
        self._identity_token = identity_token
        self._materialize_timeout = materialize_timeout
        self._poll_interval = poll_interval

    @property
    def container(self) -> Path:
        return (self.config.container_path or DEFAULT_CONTAINER).expanduser()

    @property
    def is_configured(self) -> bool:
        return self.container.is_dir()

    def _container(self) -> Path:
        if not self.is_configured:
            raise NotConfiguredError(f"Ubiquity container {self.container} does not exist")
        return self.container

    def _target(self, file: TrackedFile) -> Path:
        return self._container() / self.remote_key(file)

    # ------------------------------------------------------------------
    # Coordinated access
    # ------------------------------------------------------------------

    @contextmanager
    def coordinated(self) -> Iterator[None]:
        """Hold exclusive access to the container for the duration of the block.

        Combines a per-container process lock with an ``flock`` on the
        container's lock file.  Both are released on every exit path.
        """
        container = self._container()
        with _process_locks_guard:
            lock = _process_locks.setdefault(container.resolve(), threading.Lock())
        with lock:
            with open(container / LOCK_FILENAME, "a+b") as handle:
                fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
                try:
                    yield
                finally:
                    fcntl.flock(handle.fileno(), fcntl.LOCK_UN)

    def _write(self, target: Path, data: bytes, mtime: float | None) -> None:
        with self.coordinated():
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "wb") as handle:
                    handle.write(data)
                    handle.flush()
                    os.fsync(handle.fileno())
                os.replace(tmp, target)
            except BaseException:
                Path(tmp).unlink(missing_ok=True)
                raise
            if mtime is not None:
                os.utime(target, (mtime, mtime))

    def _read(self, target: Path) -> bytes | None:
        with self.coordinated():
            if not target.exists():
                return None
            return target.read_bytes()

    def _remove(self, target: Path) -> None:
        with self.coordinated():
            target.unlink(missing_ok=True)
            _placeholder_for(target).unlink(missing_ok=True)

    def _stat(self, target: Path, key: str) -> RemoteObject | None:
        with self.coordinated():
            if target.is_file():
                stat = target.stat()
                return RemoteObject(
                    path=key,
                    size=stat.st_size,
                    last_modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                    checksum=hashlib.sha256(target.read_bytes()).hexdigest(),
                )
            placeholder = _placeholder_for(target)
            if placeholder.exists():
                stat = placeholder.stat()
                return RemoteObject(
                    path=key,
                    size=0,
                    last_modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                )
            return None

    def _walk(self) -> list[RemoteObject]:
        container = self._container()
        configs = container / self.list_prefix
        if not configs.is_dir():
            return []
        objects: list[RemoteObject] = []
        with self.coordinated():
            for path in sorted(configs.rglob("*")):
                if not path.is_file():
                    continue
                name = path.name
                if name.startswith(".") and name.endswith(PLACEHOLDER_SUFFIX):
                    real = path.with_name(name[1 : -len(PLACEHOLDER_SUFFIX)])
                    if real.exists():
                        continue
                    stat = path.stat()
                    objects.append(
                        RemoteObject(
                            path=real.relative_to(container).as_posix(),
                            size=0,
                            last_modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                        )
                    )
                    continue
                if name.endswith(".tmp") and name.startswith("."):
                    continue
                stat = path.stat()
                objects.append(
                    RemoteObject(
                        path=path.relative_to(container).as_posix(),
                        size=stat.st_size,
                        last_modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                        checksum=hashlib.sha256(path.read_bytes()).hexdigest(),
                    )
                )
        return objects

    # ------------------------------------------------------------------
    # Contract
    # ------------------------------------------------------------------

    async def upload(self, file: TrackedFile, data: bytes) -> None:
        target = self._target(file)
        mtime = file.last_modified.timestamp()
        try:
            await asyncio.to_thread(self._write, target, data, mtime)
        except OSError as exc:
            raise UploadFailedError(f"writing {target}: {exc}") from exc
        logger.info("Stored %s in ubiquity container at %s", file.filename, target)

    async def download(self, file: TrackedFile) -> bytes:
        target = self._target(file)
        key = self.remote_key(file)
        if not target.exists():
            if not _placeholder_for(target).exists():
                raise FileNotFoundOnRemoteError(key)
            await self._materialize(target)
        try:
            data = await asyncio.to_thread(self._read, target)
        except OSError as exc:
            raise DownloadFailedError(f"reading {target}: {exc}") from exc
        if data is None:
            raise FileNotFoundOnRemoteError(key)
        return data

    async def list_files(self) -> list[RemoteObject]:
        container = self._container()
        try:
            return await asyncio.to_thread(self._walk)
        except OSError as exc:
            raise NetworkError(f"listing {container}: {exc}", exc) from exc

    async def delete(self, file: TrackedFile) -> None:
        target = self._target(file)
        try:
            await asyncio.to_thread(self._remove, target)
        except OSError as exc:
            raise NetworkError(f"removing {target}: {exc}", exc) from exc

    async def get_metadata(self, file: TrackedFile) -> RemoteObject | None:
        target = self._target(file)
        try:
            return await asyncio.to_thread(self._stat, target, self.remote_key(file))
        except OSError as exc:
            raise NetworkError(f"reading metadata of {target}: {exc}", exc) from exc

    async def test_connection(self) -> bool:
        container = self._container()
        if self._identity_token() is None:
            raise AuthenticationFailedError("No cloud account is signed in")
        probe = container / PROBE_FILENAME
        try:
            try:
                await asyncio.to_thread(self._write, probe, b"test", None)
            finally:
                await asyncio.to_thread(self._remove, probe)
        except OSError as exc:
            raise NetworkError(f"container {container} is not writable: {exc}", exc) from exc
        return True

    # ------------------------------------------------------------------
    # Materialization
    # ------------------------------------------------------------------

    async def _materialize(self, target: Path) -> None:
        """Ask the daemon to download an evicted file and wait for it."""
        brctl = shutil.which("brctl")
        if brctl is not None:
            proc = await asyncio.create_subprocess_exec(
                brctl,
                "download",
                str(target),
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
            await proc.wait()

        logger.info("Waiting for %s to materialize", target.name)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._materialize_timeout
        while not target.exists():
            if loop.time() >= deadline:
                raise DownloadFailedError(
                    f"{target.name} was not materialized within {self._materialize_timeout:.0f}s"
                )
            await asyncio.sleep(self._poll_interval)
