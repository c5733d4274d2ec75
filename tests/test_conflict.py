"""Tests for drift classification."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from dot_sync.models import ConfigCategory, SyncState, TrackedFile
from dot_sync.storage.models import RemoteObject
from dot_sync.sync.conflict import classify, classify_file

T0 = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class TestClassify:
    def test_missing_remote_is_not_on_remote(self) -> None:
        assert classify(T0, None, "abc", None) is SyncState.NOT_ON_REMOTE

    def test_missing_local_is_not_on_local(self) -> None:
        assert classify(None, T0, None, "abc") is SyncState.NOT_ON_LOCAL

    def test_missing_both_is_error(self) -> None:
        assert classify(None, None) is SyncState.ERROR

    @pytest.mark.parametrize("checksums", [("abc", "abc"), ("abc", "def"), (None, None)])
    def test_local_strictly_newer(self, checksums: tuple[str | None, str | None]) -> None:
        later = T0 + timedelta(seconds=1)
        assert classify(later, T0, *checksums) is SyncState.LOCAL_NEWER

    def test_remote_strictly_newer(self) -> None:
        assert classify(T0, T0 + timedelta(seconds=5), "abc", "def") is SyncState.REMOTE_NEWER

    def test_equal_times_different_checksums_conflict(self) -> None:
        assert classify(T0, T0, "abc123", "def456") is SyncState.CONFLICT

    def test_equal_times_same_checksum_synced(self) -> None:
        assert classify(T0, T0, "abc123", "abc123") is SyncState.SYNCED

    def test_equal_times_without_remote_checksum_synced(self) -> None:
        assert classify(T0, T0, "abc123", None) is SyncState.SYNCED

    def test_sub_second_difference_is_ignored(self) -> None:
        local = T0 + timedelta(milliseconds=400)
        assert classify(local, T0, "a", "a") is SyncState.SYNCED

    def test_timezones_compare_by_instant(self) -> None:
        other_zone = T0.astimezone(timezone(timedelta(hours=-5)))
        assert classify(T0, other_zone, "a", "a") is SyncState.SYNCED

    def test_repeatable(self) -> None:
        results = {classify(T0, T0, "abc", "def") for _ in range(10)}
        assert results == {SyncState.CONFLICT}


class TestClassifyFile:
    def _file(self, checksum: str = "abc") -> TrackedFile:
        return TrackedFile(
            path=str(Path("/home/user/.zshrc")),
            relative_path=".zshrc",
            filename=".zshrc",
            category=ConfigCategory.SHELL,
            last_modified=T0,
            checksum=checksum,
        )

    def test_status_carries_versions(self) -> None:
        remote = RemoteObject(
            path="dot-sync/configs/shell/.zshrc", last_modified=T0, checksum="abc"
        )
        status = classify_file(self._file(), remote, exists=True)
        assert status.state is SyncState.SYNCED
        assert status.local_version == T0
        assert status.remote_version == T0
        assert status.error is None

    def test_deleted_local_file(self) -> None:
        remote = RemoteObject(path="k", last_modified=T0)
        status = classify_file(self._file(), remote, exists=False)
        assert status.state is SyncState.NOT_ON_LOCAL
        assert status.local_version is None

    def test_gone_everywhere_reports_error(self) -> None:
        status = classify_file(self._file(), None, exists=False)
        assert status.state is SyncState.ERROR
        assert status.error

    def test_empty_local_checksum_never_conflicts(self) -> None:
        remote = RemoteObject(path="k", last_modified=T0, checksum="def")
        status = classify_file(self._file(checksum=""), remote, exists=True)
        assert status.state is SyncState.SYNCED
