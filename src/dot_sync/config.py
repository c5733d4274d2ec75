from __future__ import annotations

import os
from pathlib import Path

from dot_sync.storage.models import BackendConfig, BackendType


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Settings:
    """Application settings loaded from environment variables."""

    def __init__(self) -> None:
        self.root: str = os.environ.get("DOTSYNC_ROOT", str(Path.home()))
        self.backend: str = os.environ.get("DOTSYNC_BACKEND", "")
        self.bucket: str = os.environ.get("DOTSYNC_BUCKET", "")
        self.region: str = os.environ.get("DOTSYNC_REGION", "us-east-1")
        self.endpoint: str = os.environ.get("DOTSYNC_ENDPOINT", "")
        self.account: str = os.environ.get("DOTSYNC_AZURE_ACCOUNT", "")
        self.folder_path: str = os.environ.get("DOTSYNC_FOLDER", "dot-sync")
        self.container_path: str = os.environ.get("DOTSYNC_CONTAINER", "")
        self.state_file: str = os.environ.get(
            "DOTSYNC_STATE_FILE", str(Path.home() / ".dot-sync" / "state.json")
        )
        self.profile: str = os.environ.get("DOTSYNC_PROFILE", "")
        self.debounce_seconds: float = float(os.environ.get("DOTSYNC_DEBOUNCE", "5.0"))
        self.request_timeout: float = float(os.environ.get("DOTSYNC_TIMEOUT", "30.0"))
        self.auto_sync: bool = _env_bool("DOTSYNC_AUTO_SYNC")
        self.log_level: str = os.environ.get("DOTSYNC_LOG_LEVEL", "WARNING")

    def validate(self) -> None:
        if not self.backend:
            raise ValueError("DOTSYNC_BACKEND environment variable is required")
        try:
            backend_type = BackendType(self.backend)
        except ValueError:
            choices = ", ".join(t.value for t in BackendType)
            raise ValueError(
                f"Unknown DOTSYNC_BACKEND {self.backend!r}; expected one of: {choices}"
            ) from None
        if backend_type is not BackendType.UBIQUITY and not self.bucket:
            raise ValueError("DOTSYNC_BUCKET environment variable is required")
        if self.debounce_seconds <= 0:
            raise ValueError("DOTSYNC_DEBOUNCE must be a positive number of seconds")
        if self.request_timeout <= 0:
            raise ValueError("DOTSYNC_TIMEOUT must be a positive number of seconds")

    def backend_config(self) -> BackendConfig:
        """Build the active backend configuration. Call ``validate`` first."""
        return BackendConfig(
            backend_type=BackendType(self.backend),
            name=self.backend,
            bucket=self.bucket,
            region=self.region or None,
            endpoint=self.endpoint or None,
            account=self.account or None,
            folder_path=self.folder_path,
            container_path=Path(self.container_path).expanduser() if self.container_path else None,
            timeout=self.request_timeout,
        )


settings = Settings()
