"""Wiring shared by the CLI and the MCP server.

Builds the catalog, backend, engine and state store from :class:`Settings`
and applies the active profile to scans.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path

import httpx

from dot_sync.config import Settings
from dot_sync.models import SyncState, SyncStatus, TrackedFile
from dot_sync.notify import LogNotifier, NotificationSink
from dot_sync.secrets import EnvSecretStore, SecretStore, load_credentials
from dot_sync.storage import StorageBackend, create_backend
from dot_sync.sync.catalog import FingerprintCatalog
from dot_sync.sync.engine import EngineSnapshot, MergeHandler, ReconciliationEngine
from dot_sync.sync.profiles import SyncProfile, get_profile
from dot_sync.sync.state import StateStore

logger = logging.getLogger(__name__)

PUSHABLE_STATES = frozenset({SyncState.LOCAL_NEWER, SyncState.NOT_ON_REMOTE})
PULLABLE_STATES = frozenset({SyncState.REMOTE_NEWER, SyncState.NOT_ON_LOCAL})


def active_profile(settings: Settings, state: StateStore) -> SyncProfile | None:
    """The profile named in settings, else the persisted one, else none."""
    name = settings.profile or state.active_profile
    return get_profile(name) if name else None


def scan_files(
    settings: Settings,
    catalog: FingerprintCatalog | None = None,
    state: StateStore | None = None,
) -> list[TrackedFile]:
    """Scan the configured root and apply the active profile."""
    catalog = catalog or FingerprintCatalog()
    state = state or StateStore(settings.state_file)
    files = catalog.scan(settings.root)
    profile = active_profile(settings, state)
    if profile is not None:
        files = profile.filter(files)
        logger.info("Profile %s selected %d file(s)", profile.name, len(files))
    return files


def select_files(files: Iterable[TrackedFile], names: Iterable[str]) -> list[TrackedFile]:
    """Pick files by relative path, filename or absolute path.

    Raises:
        KeyError: If a name matches no file.
    """
    files = list(files)
    selected: list[TrackedFile] = []
    missing: list[str] = []
    for name in names:
        match = next(
            (f for f in files if name in (f.relative_path, f.filename, f.path)),
            None,
        )
        if match is None:
            missing.append(name)
        elif match not in selected:
            selected.append(match)
    if missing:
        raise KeyError(f"Not a tracked file: {', '.join(missing)}")
    return selected


def files_in_states(
    statuses: Iterable[SyncStatus], states: Iterable[SyncState]
) -> list[TrackedFile]:
    wanted = frozenset(states)
    return [s.file for s in statuses if s.state in wanted]


class Application:
    """Everything a command needs to talk to the active backend.

    Args:
        settings: Validated settings.
        secret_store: Source of backend credentials.
        notifier: Sink for user-facing notifications.
        merge_handler: Handler for ``merge`` conflict resolutions.
        http_client: Optional shared HTTP client for network backends.

    Raises:
        ValueError: If the settings are invalid.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        secret_store: SecretStore | None = None,
        notifier: NotificationSink | None = None,
        merge_handler: MergeHandler | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        settings.validate()
        self.settings = settings
        self.root = Path(settings.root).expanduser()
        self.notifier = notifier or LogNotifier()
        self.catalog = FingerprintCatalog()
        self.state = StateStore(settings.state_file)
        self.backend: StorageBackend = create_backend(
            settings.backend_config(),
            load_credentials(secret_store or EnvSecretStore()),
            http_client=http_client,
        )
        self.engine = ReconciliationEngine(
            self.backend,
            self.catalog,
            request_timeout=settings.request_timeout,
            merge_handler=merge_handler,
            notifier=self.notifier,
        )
        self.engine.subscribe(self._record_sync)

    def scan(self) -> list[TrackedFile]:
        return scan_files(self.settings, self.catalog, self.state)

    def _record_sync(self, snapshot: EngineSnapshot) -> None:
        last = snapshot.last_sync_at
        if last is not None and last != self.state.last_sync_at:
            self.state.record_sync(last)

    async def aclose(self) -> None:
        await self.backend.aclose()

    async def __aenter__(self) -> Application:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()
