"""MCP tools for scanning, checking status, syncing and resolving conflicts."""

from __future__ import annotations

from typing import Any

from mcp.server.fastmcp import FastMCP

from dot_sync.app import (
    PULLABLE_STATES,
    PUSHABLE_STATES,
    Application,
    files_in_states,
    select_files,
)
from dot_sync.models import ConflictResolution, OperationStatus, SyncDirection
from dot_sync.storage.errors import StorageError
from dot_sync.tools.schemas import (
    OperationResponse,
    SyncResultResponse,
    SyncStatusEntryResponse,
    TrackedFileResponse,
)


def register_sync_tools(mcp: FastMCP, app: Application) -> None:
    """Register scan, status, sync, resolve and connection tools with the MCP server."""

    @mcp.tool()
    def scan_configs() -> list[dict[str, Any]]:
        """List the configuration files tracked under the configured root.

        The active profile is applied.  Files flagged ``is_safe: false``
        contain credentials and are never synced.
        """
        return [TrackedFileResponse.from_file(f).model_dump() for f in app.scan()]

    @mcp.tool()
    async def get_sync_status(local_path: str | None = None) -> list[dict[str, Any]]:
        """Compare tracked files with the storage backend.

        If local_path is provided, checks status for that file only.

        Args:
            local_path: Optional relative path or filename of one file.
        """
        files = app.scan()
        if local_path is not None:
            files = select_files(files, [local_path])
        statuses = await app.engine.analyze(files)
        return [SyncStatusEntryResponse.from_status(s).model_dump() for s in statuses]

    @mcp.tool()
    async def sync_files(
        direction: str = "upload",
        local_paths: list[str] | None = None,
    ) -> dict[str, Any]:
        """Upload or download tracked files.

        Without local_paths, uploads every file that is newer locally or
        missing remotely (direction "upload"), or downloads every file that
        is newer remotely or missing locally (direction "download").
        Conflicting files are never included automatically.

        Args:
            direction: "upload" or "download".
            local_paths: Optional relative paths or filenames to transfer.
        """
        try:
            sync_direction = SyncDirection(direction)
        except ValueError:
            return SyncResultResponse(
                success=False, message=f"Unknown direction: {direction}"
            ).model_dump()

        files = app.scan()
        if local_paths:
            selected = select_files(files, local_paths)
        else:
            statuses = await app.engine.analyze(files)
            states = PUSHABLE_STATES if sync_direction is SyncDirection.UPLOAD else PULLABLE_STATES
            selected = files_in_states(statuses, states)
            if sync_direction is SyncDirection.DOWNLOAD:
                selected += await app.engine.discover_remote(app.root, files)

        if not selected:
            return SyncResultResponse(success=True, message="Nothing to sync").model_dump()

        operations = await app.engine.sync(selected, sync_direction)
        failed = [op for op in operations if op.status is OperationStatus.FAILED]
        return SyncResultResponse(
            success=not failed,
            message=f"{len(operations) - len(failed)} of {len(operations)} file(s) transferred",
            operations=[OperationResponse.from_operation(op) for op in operations],
            statuses=[SyncStatusEntryResponse.from_status(s) for s in app.engine.statuses],
        ).model_dump()

    @mcp.tool()
    async def resolve_conflict(local_path: str, resolution: str) -> dict[str, Any]:
        """Resolve a conflicting file explicitly.

        Args:
            local_path: Relative path or filename of the conflicting file.
            resolution: "use_local" uploads, "use_remote" downloads,
                "skip" leaves both sides alone, "merge" must be done by hand.
        """
        try:
            choice = ConflictResolution(resolution)
        except ValueError:
            return SyncResultResponse(
                success=False, message=f"Unknown resolution: {resolution}"
            ).model_dump()

        (file,) = select_files(app.scan(), [local_path])
        operation = await app.engine.resolve_conflict(file, choice)
        if operation is None:
            message = (
                f"Merge {file.relative_path} manually, then resolve with use_local"
                if choice is ConflictResolution.MERGE
                else f"Left {file.relative_path} unresolved"
            )
            return SyncResultResponse(success=True, message=message).model_dump()
        return SyncResultResponse(
            success=operation.status is OperationStatus.COMPLETED,
            message=operation.error or f"{file.relative_path}: {operation.status.value}",
            operations=[OperationResponse.from_operation(operation)],
        ).model_dump()

    @mcp.tool()
    async def test_connection() -> dict[str, Any]:
        """Check that the configured backend is reachable with the stored credentials."""
        try:
            await app.backend.test_connection()
        except StorageError as exc:
            return {"success": False, "backend": app.backend.name, "message": str(exc)}
        return {"success": True, "backend": app.backend.name, "message": "Connection OK"}
