"""Configuration and wire-level models for the storage backends."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field


class BackendType(StrEnum):
    """Supported storage backends. Exactly one is active at a time."""

    S3 = "s3"
    S3_COMPATIBLE = "s3_compatible"
    AZURE = "azure"
    GCS = "gcs"
    UBIQUITY = "ubiquity"


class BackendConfig(BaseModel):
    """Non-secret configuration for the active backend.

    ``bucket`` is the S3 bucket, Azure container or GCS bucket.
    ``folder_path`` is the root folder every remote key starts with.
    """

    backend_type: BackendType
    name: str = ""
    bucket: str = ""
    region: str | None = None
    endpoint: str | None = None
    account: str | None = None
    folder_path: str = "dot-sync"
    container_path: Path | None = None
    timeout: float = 30.0

    @property
    def display_name(self) -> str:
        return f"{self.name or self.bucket} ({self.backend_type.value})"


class Credentials(BaseModel):
    """Secret material for a backend, loaded from a secret store."""

    access_key_id: str | None = None
    secret_access_key: str | None = Field(default=None, repr=False)
    tenant_id: str | None = None
    client_id: str | None = None
    client_secret: str | None = Field(default=None, repr=False)
    project_id: str | None = None
    service_account_key: str | None = Field(default=None, repr=False)


class RemoteObject(BaseModel):
    """Metadata for one object as reported by a backend listing.

    ``checksum`` is the SHA-256 hex digest when the backend can report one.
    """

    model_config = ConfigDict(frozen=True)

    path: str
    size: int = 0
    last_modified: datetime
    checksum: str | None = None
