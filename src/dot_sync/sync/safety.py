"""Credential scanner gating which files may ever leave the machine.

Decisions are based on file content only; filename-based exclusion is a
separate, earlier check in the catalog.

Known limitation: files larger than :data:`MAX_SCAN_BYTES` are not scanned
and are reported as safe.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

MAX_SCAN_BYTES = 1_000_000

TEXT_EXTENSIONS = frozenset(
    {
        "", "txt", "md", "json", "xml", "plist", "yml", "yaml", "conf", "config",
        "cfg", "ini", "sh", "bash", "zsh", "vim", "rc", "profile",
    }
)

# Ordered; the first match wins.
CREDENTIAL_PATTERNS: list[tuple[str, str]] = [
    ("stripe-live-secret", r"sk_live_[a-zA-Z0-9]{24,}"),
    ("stripe-test-secret", r"sk_test_[a-zA-Z0-9]{24,}"),
    ("stripe-live-publishable", r"pk_live_[a-zA-Z0-9]{24,}"),
    ("aws-access-key", r"AKIA[0-9A-Z]{16}"),
    ("generic-api-key", r"api[_-]?key[\"']?\s*[:=]\s*[\"'][a-zA-Z0-9]{20,}"),
    ("bearer-token", r"Bearer\s+[a-zA-Z0-9\-._~+/]+=*"),
    ("generic-token", r"token[\"']?\s*[:=]\s*[\"'][a-zA-Z0-9]{20,}"),
    ("jwt", r"eyJ[a-zA-Z0-9_-]*\.eyJ[a-zA-Z0-9_-]*\."),
    ("password-assignment", r"password[\"']?\s*[:=]\s*[\"'][^\"'\s]{8,}"),
    ("private-key-header", r"BEGIN [A-Z]+ PRIVATE KEY"),
    ("rsa-private-key", r"BEGIN RSA PRIVATE KEY"),
    ("openssh-private-key", r"BEGIN OPENSSH PRIVATE KEY"),
    ("oauth-client-secret", r"client_secret[\"']?\s*[:=]\s*[\"'][^\"']+"),
    ("service-account", r"service_account"),
]


@dataclass(frozen=True)
class SecretFinding:
    """One credential-pattern match, truncated for display."""

    pattern: str
    excerpt: str
    line: int


class SafetyGate:
    """Pattern-based secret detector."""

    def __init__(self, patterns: list[tuple[str, str]] | None = None) -> None:
        self._patterns = [
            (name, re.compile(pattern, re.IGNORECASE))
            for name, pattern in (patterns or CREDENTIAL_PATTERNS)
        ]

    @staticmethod
    def is_text_file(path: Path) -> bool:
        ext = path.suffix.lower().lstrip(".")
        return ext in TEXT_EXTENSIONS or path.name.startswith(".")

    def _read_scannable(self, path: Path) -> str | None:
        """Return the text to scan, or ``None`` when the file is skipped."""
        if not path.is_file():
            return None
        if not self.is_text_file(path):
            return None
        size = path.stat().st_size
        if size > MAX_SCAN_BYTES:
            logger.debug("Not scanning %s: %d bytes exceeds scan limit", path, size)
            return None
        try:
            return path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            logger.debug("Not scanning %s: %s", path, exc)
            return None

    def contains_secret_text(self, text: str) -> bool:
        return any(regex.search(text) for _, regex in self._patterns)

    def contains_secret(self, path: str | Path) -> bool:
        """Return ``True`` if the file's content matches any credential pattern.

        Directories, binary files, files over the scan limit and files that
        are not valid UTF-8 are reported as safe.
        """
        text = self._read_scannable(Path(path))
        if text is None:
            return False
        return self.contains_secret_text(text)

    def find_secrets(self, path: str | Path) -> list[SecretFinding]:
        """Report every credential match in a file, for audit output."""
        text = self._read_scannable(Path(path))
        if text is None:
            return []
        findings: list[SecretFinding] = []
        for name, regex in self._patterns:
            for match in regex.finditer(text):
                excerpt = match.group(0)
                if len(excerpt) > 20:
                    excerpt = excerpt[:20] + "..."
                findings.append(
                    SecretFinding(
                        pattern=name,
                        excerpt=excerpt,
                        line=text.count("\n", 0, match.start()) + 1,
                    )
                )
        return findings


_GIT_CREDENTIAL_SECTION = re.compile(
    r"^\[credential[^\]]*\][^\n]*\n(?:[ \t]+[^\n]*(?:\n|$)|[ \t]*(?:\n|$))*",
    re.MULTILINE,
)
_DOCKER_AUTH = re.compile(r"\"auth\"\s*:\s*\"[^\"]+\"")
_AWS_KEY_LINES = re.compile(
    r"^[ \t]*aws_(?:access_key_id|secret_access_key|session_token)\s*=.*(?:\n|$)",
    re.MULTILINE,
)


def sanitize(text: str) -> str:
    """Strip credentials from config text for local preview or export.

    Removes ``[credential ...]`` sections from git config, masks docker
    registry ``"auth"`` values and drops AWS key lines.  Never applied to
    uploaded content.
    """
    sanitized = _GIT_CREDENTIAL_SECTION.sub("", text)
    sanitized = _DOCKER_AUTH.sub('"auth": "REMOVED"', sanitized)
    sanitized = _AWS_KEY_LINES.sub("", sanitized)
    return sanitized
