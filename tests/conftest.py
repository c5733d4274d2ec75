"""Shared test fixtures for dot-sync."""

from __future__ import annotations

import os
from datetime import datetime, timezone
from pathlib import Path

import pytest

from dot_sync.models import ConfigCategory, TrackedFile
from dot_sync.storage.models import BackendConfig, BackendType
from dot_sync.storage.ubiquity import UbiquityStoreBackend
from dot_sync.sync.catalog import FingerprintCatalog, priority_for, sha256_file


class RecordingNotifier:
    """Notification sink that keeps every message in memory."""

    def __init__(self) -> None:
        self.messages: list[tuple[str, str]] = []

    def notify(self, title: str, body: str) -> None:
        self.messages.append((title, body))


def write_file(path: Path, content: str, mtime: float | None = None) -> Path:
    """Write *content* to *path*, optionally pinning its modification time."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    if mtime is not None:
        os.utime(path, (mtime, mtime))
    return path


def tracked(
    path: Path,
    root: Path,
    category: ConfigCategory = ConfigCategory.SHELL,
    *,
    is_safe: bool = True,
) -> TrackedFile:
    """Describe an existing file the way a scan would."""
    stat = path.stat()
    return TrackedFile(
        path=str(path),
        relative_path=path.relative_to(root).as_posix(),
        filename=path.name,
        category=category,
        size=stat.st_size,
        last_modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
        checksum=sha256_file(path),
        is_safe=is_safe,
        priority=priority_for(path.name, category),
    )


@pytest.fixture
def home(tmp_path: Path) -> Path:
    """A scan root with a couple of ordinary dotfiles."""
    root = tmp_path / "home"
    write_file(root / ".zshrc", "alias ll='ls -la'\nexport EDITOR=vim\n", mtime=1_700_000_000)
    write_file(root / ".gitconfig", "[user]\n\tname = Test User\n", mtime=1_700_000_100)
    return root


@pytest.fixture
def container(tmp_path: Path) -> Path:
    path = tmp_path / "CloudDocs"
    path.mkdir()
    return path


@pytest.fixture
def ubiquity(container: Path) -> UbiquityStoreBackend:
    """A local ubiquity-store backend over a temporary container."""
    config = BackendConfig(
        backend_type=BackendType.UBIQUITY,
        name="test",
        container_path=container,
        timeout=5.0,
    )
    return UbiquityStoreBackend(
        config,
        identity_token=lambda: "1:2",
        materialize_timeout=0.2,
        poll_interval=0.01,
    )


@pytest.fixture
def catalog() -> FingerprintCatalog:
    return FingerprintCatalog()
