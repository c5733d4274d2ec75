"""Drift classification for a tracked file.

Compares the local and remote fingerprints of one file and classifies the
difference.  Classification is a pure function of the two timestamps and
the two checksums; it never touches the filesystem or the network.
"""

from __future__ import annotations

from datetime import datetime

from dot_sync.models import SyncState, SyncStatus, TrackedFile
from dot_sync.storage.models import RemoteObject


def _whole_seconds(value: datetime) -> int:
    return int(value.timestamp())


def classify(
    local_mtime: datetime | None,
    remote_mtime: datetime | None,
    local_checksum: str | None = None,
    remote_checksum: str | None = None,
) -> SyncState:
    """Classify drift between a local file and its remote copy.

    Timestamps are compared at whole-second precision because most
    backends truncate modification times to seconds.

    Args:
        local_mtime: Local modification time, ``None`` if the file is gone.
        remote_mtime: Remote modification time, ``None`` if not stored.
        local_checksum: Local SHA-256, if known.
        remote_checksum: Remote SHA-256, if the backend reports one.

    Returns:
        The ``SyncState`` for the pair:

        - ``ERROR`` -- neither side has the file.
        - ``NOT_ON_REMOTE`` -- nothing is stored remotely.
        - ``NOT_ON_LOCAL`` -- stored remotely but missing locally.
        - ``LOCAL_NEWER`` / ``REMOTE_NEWER`` -- one side is newer.
        - ``CONFLICT`` -- same second, both checksums known and different.
        - ``SYNCED`` -- same second and no checksum disagreement.
    """
    if local_mtime is None and remote_mtime is None:
        return SyncState.ERROR
    if remote_mtime is None:
        return SyncState.NOT_ON_REMOTE
    if local_mtime is None:
        return SyncState.NOT_ON_LOCAL

    local_ts = _whole_seconds(local_mtime)
    remote_ts = _whole_seconds(remote_mtime)
    if local_ts > remote_ts:
        return SyncState.LOCAL_NEWER
    if local_ts < remote_ts:
        return SyncState.REMOTE_NEWER
    if local_checksum and remote_checksum and local_checksum != remote_checksum:
        return SyncState.CONFLICT
    return SyncState.SYNCED


def classify_file(file: TrackedFile, remote: RemoteObject | None, *, exists: bool) -> SyncStatus:
    """Build the ``SyncStatus`` for *file* given its remote object.

    Args:
        file: The tracked file as last fingerprinted.
        remote: The matching remote object, or ``None``.
        exists: Whether the local file currently exists.
    """
    local_mtime = file.last_modified if exists else None
    remote_mtime = remote.last_modified if remote is not None else None
    state = classify(
        local_mtime,
        remote_mtime,
        file.checksum or None,
        remote.checksum if remote is not None else None,
    )
    return SyncStatus(
        file=file,
        local_version=local_mtime,
        remote_version=remote_mtime,
        state=state,
        error="File is missing both locally and remotely" if state is SyncState.ERROR else None,
    )
