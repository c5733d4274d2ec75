"""Fingerprint catalog: discovers tracked configuration files under a root.

A scan walks a fixed pattern table rather than the whole home directory.
Each hit is fingerprinted (size, modification time, SHA-256), given a
category and a priority, and checked for safety.  Scanning only reads.
"""

from __future__ import annotations

import hashlib
import logging
from datetime import datetime, timezone
from pathlib import Path

from dot_sync.models import ConfigCategory, SyncPriority, TrackedFile
from dot_sync.sync.safety import SafetyGate

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------
# Pattern tables
# ------------------------------------------------------------------

DEFAULT_PATTERNS: dict[ConfigCategory, list[str]] = {
    ConfigCategory.SHELL: [
        ".zshrc",
        ".bashrc",
        ".bash_profile",
        ".profile",
        ".zprofile",
        ".p10k.zsh",
        ".fzf.bash",
        ".fzf.zsh",
    ],
    ConfigCategory.GIT: [".gitconfig", ".gitignore_global"],
    ConfigCategory.EDITOR: [
        ".vimrc",
        ".vim/",
        ".emacs",
        ".emacs.d/",
        ".ideavimrc",
        ".config/Code/User/settings.json",
        ".vscode/settings.json",
    ],
    ConfigCategory.CLOUD: [".aws/config", ".azure/config", ".config/gcloud/"],
    ConfigCategory.DOCKER: [".docker/config.json", ".dockerignore"],
    ConfigCategory.LANGUAGE: [".npmrc", ".gemrc", ".pypirc", ".cargo/config"],
    ConfigCategory.CLAUDE: [
        ".claude/CLAUDE.md",
        ".claude/settings.json",
        ".claude/preferences.md",
    ],
    ConfigCategory.DOCUMENTATION: [
        ".aws_cheatsheet.md",
        ".azure_cheatsheet.md",
        ".gcp_cheatsheet.md",
        ".zsh_cheatsheet.md",
        ".omz_plugin_recommendations.md",
    ],
}

PREFERENCES_DIR = "Library/Preferences"

DEFAULT_PREFERENCES: dict[ConfigCategory, list[str]] = {
    ConfigCategory.SHELL: ["com.apple.Terminal.plist", "com.googlecode.iterm2.plist"],
    ConfigCategory.EDITOR: ["com.microsoft.VSCode.plist", "com.sublimetext.3.plist"],
}

EXCLUDE_PATTERNS: list[str] = [
    "id_rsa",
    "id_dsa",
    "id_ecdsa",
    "id_ed25519",
    "credentials",
    "password",
    "secret",
    "token",
    "_history",
    ".lesshst",
    ".viminfo",
    "cache/",
    "Cache/",
    ".DS_Store",
    ".CFUserTextEncoding",
    "_sessions/",
    ".claude/history.jsonl",
    ".swp",
    ".tmp",
    ".temp",
]

CRITICAL_FILES = frozenset({".zshrc", ".bashrc", ".bash_profile", ".gitconfig", ".vimrc"})
HIGH_PRIORITY_MARKERS = ("Terminal.plist", "iterm2.plist")
HIGH_PRIORITY_CATEGORIES = frozenset(
    {ConfigCategory.SHELL, ConfigCategory.GIT, ConfigCategory.CLAUDE}
)
MEDIUM_PRIORITY_CATEGORIES = frozenset(
    {ConfigCategory.EDITOR, ConfigCategory.CLOUD, ConfigCategory.DOCKER}
)


def sha256_file(path: str | Path) -> str:
    """Hex SHA-256 digest of the full file contents."""
    return hashlib.sha256(Path(path).read_bytes()).hexdigest()


def priority_for(filename: str, category: ConfigCategory) -> SyncPriority:
    """Assign a priority; the first matching rule wins."""
    if filename in CRITICAL_FILES:
        return SyncPriority.CRITICAL
    if any(marker in filename for marker in HIGH_PRIORITY_MARKERS):
        return SyncPriority.HIGH
    if category in HIGH_PRIORITY_CATEGORIES:
        return SyncPriority.HIGH
    if category in MEDIUM_PRIORITY_CATEGORIES:
        return SyncPriority.MEDIUM
    return SyncPriority.LOW


class FingerprintCatalog:
    """Scans a root directory for known configuration files.

    Args:
        patterns: Category to path fragments relative to the scan root.
            A trailing ``/`` marks a directory entry.
        preferences: Category to application preference file names, looked
            up under ``<root>/Library/Preferences``.
        exclude_patterns: Substrings that make a file unsafe when found in
            its filename or path.
        gate: Content scanner; a default :class:`SafetyGate` if omitted.
    """

    def __init__(
        self,
        patterns: dict[ConfigCategory, list[str]] | None = None,
        preferences: dict[ConfigCategory, list[str]] | None = None,
        exclude_patterns: list[str] | None = None,
        gate: SafetyGate | None = None,
    ) -> None:
        self._patterns = DEFAULT_PATTERNS if patterns is None else patterns
        self._preferences = DEFAULT_PREFERENCES if preferences is None else preferences
        self._exclude = EXCLUDE_PATTERNS if exclude_patterns is None else exclude_patterns
        self._gate = gate or SafetyGate()

    @property
    def gate(self) -> SafetyGate:
        return self._gate

    # ------------------------------------------------------------------
    # Scanning
    # ------------------------------------------------------------------

    def scan(self, root: str | Path) -> list[TrackedFile]:
        """Fingerprint every configured pattern that exists under *root*.

        Args:
            root: Directory the patterns are relative to, usually ``$HOME``.

        Returns:
            Tracked files sorted by priority rank, then category.
        """
        root = Path(root).expanduser()
        found: list[TrackedFile] = []
        seen: set[Path] = set()

        candidates: list[tuple[Path, ConfigCategory]] = []
        for category, fragments in self._patterns.items():
            for fragment in fragments:
                candidates.append((root / fragment.rstrip("/"), category))
        for category, names in self._preferences.items():
            for name in names:
                candidates.append((root / PREFERENCES_DIR / name, category))

        for path, category in candidates:
            if path in seen or not path.exists():
                continue
            seen.add(path)
            try:
                found.append(self._fingerprint(path, root, category))
            except OSError as exc:
                logger.warning("Skipping %s: %s", path, exc)

        found.sort(key=lambda f: (f.priority.rank, f.category.value))
        logger.info("Scanned %s: %d tracked file(s)", root, len(found))
        return found

    def refresh(self, file: TrackedFile) -> TrackedFile | None:
        """Re-fingerprint *file*, keeping its id and category.

        Returns:
            The updated file, or ``None`` if it no longer exists.
        """
        path = Path(file.path)
        if not path.exists():
            return None
        try:
            updated = self._describe(path, file.relative_path, file.category)
        except OSError as exc:
            logger.warning("Could not refresh %s: %s", path, exc)
            return None
        return file.model_copy(update=updated)

    def resolve(self, root: str | Path, category: ConfigCategory, filename: str) -> Path | None:
        """Map a remote ``category/filename`` back to its local path, if any pattern matches."""
        root = Path(root).expanduser()
        for fragment in self._patterns.get(category, []):
            fragment = fragment.rstrip("/")
            if Path(fragment).name == filename:
                return root / fragment
        for name in self._preferences.get(category, []):
            if name == filename:
                return root / PREFERENCES_DIR / name
        return None

    def placeholder(
        self,
        root: str | Path,
        path: Path,
        category: ConfigCategory,
        last_modified: datetime,
        size: int = 0,
    ) -> TrackedFile:
        """Describe a file known only from the remote side.

        The checksum is empty because no local content exists yet.
        """
        try:
            relative = path.relative_to(Path(root).expanduser()).as_posix()
        except ValueError:
            relative = path.as_posix()
        return TrackedFile(
            path=str(path),
            relative_path=relative,
            filename=path.name,
            category=category,
            size=size,
            last_modified=last_modified,
            is_safe=not self.is_excluded(relative),
            priority=priority_for(path.name, category),
        )

    def is_excluded(self, path: str | Path) -> bool:
        """Whether *path* matches an exclude pattern by filename or path.

        Pass the path relative to the scan root so that directories above
        the root never influence the result.  Directory paths should carry a
        trailing ``/`` so directory patterns such as ``cache/`` match.
        """
        text = str(path)
        name = Path(text).name
        return any(pattern in name or pattern in text for pattern in self._exclude)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _fingerprint(self, path: Path, root: Path, category: ConfigCategory) -> TrackedFile:
        try:
            relative = path.relative_to(root).as_posix()
        except ValueError:
            relative = path.as_posix()
        return TrackedFile(
            path=str(path), relative_path=relative, **self._describe(path, relative, category)
        )

    def _describe(
        self, path: Path, relative: str, category: ConfigCategory
    ) -> dict[str, object]:
        stat = path.stat()
        is_directory = path.is_dir()
        excluded = self.is_excluded(f"{relative}/" if is_directory else relative)
        safe = not excluded and not self._gate.contains_secret(path)
        if not safe:
            logger.warning("%s is not safe to sync and will be skipped", path)
        return {
            "filename": path.name,
            "category": category,
            "size": stat.st_size,
            "last_modified": datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
            "checksum": "" if is_directory else sha256_file(path),
            "is_safe": safe,
            "priority": priority_for(path.name, category),
            "is_directory": is_directory,
        }
