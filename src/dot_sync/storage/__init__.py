"""Storage backends: where tracked config files are kept remotely.

The variant set is closed.  A new backend is added by writing a
:class:`StorageBackend` subclass and registering it in ``_BACKENDS``.
"""

from __future__ import annotations

import httpx

from dot_sync.storage.azure import AzureBlobBackend
from dot_sync.storage.base import StorageBackend, remote_key
from dot_sync.storage.errors import (
    AuthenticationFailedError,
    ContainsCredentialsError,
    DownloadFailedError,
    FileNotFoundOnRemoteError,
    InvalidCredentialsError,
    NetworkError,
    NotConfiguredError,
    StorageError,
    UploadFailedError,
)
from dot_sync.storage.gcs import GCSBackend
from dot_sync.storage.models import BackendConfig, BackendType, Credentials, RemoteObject
from dot_sync.storage.s3 import S3Backend, S3CompatibleBackend
from dot_sync.storage.ubiquity import UbiquityStoreBackend

_BACKENDS: dict[BackendType, type[StorageBackend]] = {
    BackendType.S3: S3Backend,
    BackendType.S3_COMPATIBLE: S3CompatibleBackend,
    BackendType.AZURE: AzureBlobBackend,
    BackendType.GCS: GCSBackend,
    BackendType.UBIQUITY: UbiquityStoreBackend,
}


def create_backend(
    config: BackendConfig,
    credentials: Credentials | None = None,
    *,
    http_client: httpx.AsyncClient | None = None,
) -> StorageBackend:
    """Instantiate the backend for ``config.backend_type``.

    Raises:
        ValueError: If the backend type is not supported.
    """
    factory = _BACKENDS.get(config.backend_type)
    if factory is None:
        raise ValueError(f"Unsupported backend: {config.backend_type}")
    return factory(config, credentials, http_client=http_client)


__all__ = [
    "AuthenticationFailedError",
    "AzureBlobBackend",
    "BackendConfig",
    "BackendType",
    "ContainsCredentialsError",
    "Credentials",
    "DownloadFailedError",
    "FileNotFoundOnRemoteError",
    "GCSBackend",
    "InvalidCredentialsError",
    "NetworkError",
    "NotConfiguredError",
    "RemoteObject",
    "S3Backend",
    "S3CompatibleBackend",
    "StorageBackend",
    "StorageError",
    "UbiquityStoreBackend",
    "UploadFailedError",
    "create_backend",
    "remote_key",
]
