"""Pydantic models for MCP tool outputs."""

from __future__ import annotations

from pydantic import BaseModel, Field

from dot_sync.models import Operation, SyncStatus, TrackedFile


class TrackedFileResponse(BaseModel):
    """One tracked configuration file."""

    relative_path: str
    filename: str
    category: str
    priority: str
    size: int
    last_modified: str
    is_safe: bool
    is_directory: bool = False

    @classmethod
    def from_file(cls, file: TrackedFile) -> TrackedFileResponse:
        return cls(
            relative_path=file.relative_path,
            filename=file.filename,
            category=file.category.value,
            priority=file.priority.value,
            size=file.size,
            last_modified=file.last_modified.isoformat(),
            is_safe=file.is_safe,
            is_directory=file.is_directory,
        )


class SyncStatusEntryResponse(BaseModel):
    """Single entry in a sync status response."""

    relative_path: str
    category: str
    status: str  # synced | local_newer | remote_newer | conflict | not_on_remote | ...
    local_version: str | None = None
    remote_version: str | None = None
    error: str | None = None

    @classmethod
    def from_status(cls, status: SyncStatus) -> SyncStatusEntryResponse:
        return cls(
            relative_path=status.file.relative_path,
            category=status.file.category.value,
            status=status.state.value,
            local_version=status.local_version.isoformat() if status.local_version else None,
            remote_version=status.remote_version.isoformat() if status.remote_version else None,
            error=status.error,
        )


class OperationResponse(BaseModel):
    """Outcome of one transfer."""

    relative_path: str
    direction: str
    status: str
    error: str | None = None

    @classmethod
    def from_operation(cls, operation: Operation) -> OperationResponse:
        return cls(
            relative_path=operation.file.relative_path,
            direction=operation.direction.value,
            status=operation.status.value,
            error=operation.error,
        )


class SyncResultResponse(BaseModel):
    """Response from a sync or resolve call."""

    success: bool
    message: str
    operations: list[OperationResponse] = Field(default_factory=list)
    statuses: list[SyncStatusEntryResponse] = Field(default_factory=list)
