"""Core data model shared by the catalog, the storage backends and the engine.

``TrackedFile`` instances are produced by a catalog scan and are immutable
until the next scan.  ``SyncStatus`` and ``Operation`` are produced by the
reconciliation engine.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class ConfigCategory(StrEnum):
    """Category of a configuration file.

    The value is the lower-cased name used in remote keys.
    """

    SHELL = "shell"
    GIT = "git"
    EDITOR = "editor"
    CLOUD = "cloud"
    DOCKER = "docker"
    LANGUAGE = "language"
    CLAUDE = "claude"
    CUSTOM = "custom"
    DOCUMENTATION = "documentation"
    UNKNOWN = "unknown"


class SyncPriority(StrEnum):
    """Sync priority tier, ordered critical > high > medium > low."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Sort key: 0 for critical up to 3 for low."""
        return _PRIORITY_ORDER.index(self)


_PRIORITY_ORDER = [
    SyncPriority.CRITICAL,
    SyncPriority.HIGH,
    SyncPriority.MEDIUM,
    SyncPriority.LOW,
]


class TrackedFile(BaseModel):
    """A configuration file discovered by a catalog scan."""

    model_config = ConfigDict(frozen=True)

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    path: str
    relative_path: str
    filename: str
    category: ConfigCategory
    size: int = 0
    last_modified: datetime
    checksum: str = ""
    is_safe: bool = True
    priority: SyncPriority = SyncPriority.LOW
    is_directory: bool = False


class SyncState(StrEnum):
    """Drift classification for one tracked file."""

    SYNCED = "synced"
    LOCAL_NEWER = "local_newer"
    REMOTE_NEWER = "remote_newer"
    CONFLICT = "conflict"
    NOT_ON_REMOTE = "not_on_remote"
    NOT_ON_LOCAL = "not_on_local"
    ERROR = "error"


class SyncStatus(BaseModel):
    """Status snapshot for one tracked file, recomputed on every pass."""

    model_config = ConfigDict(frozen=True)

    file: TrackedFile
    local_version: datetime | None = None
    remote_version: datetime | None = None
    state: SyncState
    error: str | None = None


class SyncDirection(StrEnum):
    """Direction of a transfer."""

    UPLOAD = "upload"
    DOWNLOAD = "download"
    SKIP = "skip"


class OperationStatus(StrEnum):
    """Lifecycle of a scheduled transfer."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in {
            OperationStatus.COMPLETED,
            OperationStatus.FAILED,
            OperationStatus.SKIPPED,
        }


class Operation(BaseModel):
    """A single scheduled transfer of one file."""

    file: TrackedFile
    direction: SyncDirection
    status: OperationStatus = OperationStatus.PENDING
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    error: str | None = None


class ConflictResolution(StrEnum):
    """User choice for resolving a conflicting file."""

    USE_LOCAL = "use_local"
    USE_REMOTE = "use_remote"
    MERGE = "merge"
    SKIP = "skip"
