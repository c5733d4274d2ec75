"""Storage backend contract.

Every backend exposes the same asynchronous operations and derives remote
keys the same way::

    {folder_path}/configs/{category}/{filename}

e.g. ``dot-sync/configs/shell/.zshrc``.  The engine relies on this key
layout to match listings against tracked files, so no backend may deviate
from it.

Network backends also store two pieces of custom object metadata on upload:
the SHA-256 of the content (``sha256``) and the local modification time in
epoch seconds (``mtime``).  Listings report ``mtime`` as the object's
``last_modified`` when present, so a freshly uploaded file compares equal to
its local copy instead of looking newer.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import ClassVar

import httpx

from dot_sync.models import TrackedFile
from dot_sync.storage.errors import (
    AuthenticationFailedError,
    NetworkError,
    NotConfiguredError,
)
from dot_sync.storage.models import BackendConfig, BackendType, Credentials, RemoteObject

logger = logging.getLogger(__name__)


def remote_key(folder_path: str, file: TrackedFile) -> str:
    """Build the backend-relative key for *file*."""
    folder = folder_path.strip("/")
    return f"{folder}/configs/{file.category.value.lower()}/{file.filename}"


CHECKSUM_META = "sha256"
MTIME_META = "mtime"


def mtime_meta(file: TrackedFile) -> str:
    """Encode the local modification time for the ``mtime`` metadata entry."""
    return str(int(file.last_modified.timestamp()))


def parse_mtime_meta(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (ValueError, OverflowError, OSError):
        return None


def parse_http_date(value: str | None) -> datetime | None:
    """Parse an RFC 1123 ``Last-Modified`` header value."""
    if not value:
        return None
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_iso_date(value: str | None) -> datetime | None:
    """Parse an ISO-8601 / RFC 3339 timestamp such as ``2024-01-02T03:04:05.000Z``."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class StorageBackend(ABC):
    """Abstract storage backend.

    Subclasses implement exactly the operations below.  Network backends
    share one ``httpx.AsyncClient``; pass *http_client* to reuse an
    existing client (the backend then does not close it).

    Args:
        config: Non-secret backend configuration.
        credentials: Secret material, or ``None`` when not configured.
        http_client: Optional shared HTTP client.
    """

    backend_type: ClassVar[BackendType]

    def __init__(
        self,
        config: BackendConfig,
        credentials: Credentials | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config
        self.credentials = credentials or Credentials()
        self._http = http_client
        self._owns_http = http_client is None

    @property
    def name(self) -> str:
        return self.config.display_name

    def remote_key(self, file: TrackedFile) -> str:
        return remote_key(self.config.folder_path, file)

    @property
    def list_prefix(self) -> str:
        return f"{self.config.folder_path.strip('/')}/configs/"

    # ------------------------------------------------------------------
    # Contract
    # ------------------------------------------------------------------

    @property
    @abstractmethod
    def is_configured(self) -> bool:
        """Whether all required configuration and credentials are present."""

    @abstractmethod
    async def upload(self, file: TrackedFile, data: bytes) -> None:
        """Store *data* under the key for *file*."""

    @abstractmethod
    async def download(self, file: TrackedFile) -> bytes:
        """Fetch the stored bytes for *file*.

        Raises:
            FileNotFoundOnRemoteError: If the key does not exist.
        """

    @abstractmethod
    async def list_files(self) -> list[RemoteObject]:
        """List every object under ``{folder_path}/configs/``."""

    @abstractmethod
    async def delete(self, file: TrackedFile) -> None:
        """Delete the object for *file*. Missing objects are not an error."""

    @abstractmethod
    async def get_metadata(self, file: TrackedFile) -> RemoteObject | None:
        """Return metadata for *file*, or ``None`` if it is not stored."""

    @abstractmethod
    async def test_connection(self) -> bool:
        """Verify credentials and reachability."""

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_configured(self) -> None:
        if not self.is_configured:
            raise NotConfiguredError(f"{self.name} is not configured")

    @property
    def http(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self.config.timeout)
        return self._http

    async def _send(self, method: str, url: str, **kwargs: object) -> httpx.Response:
        """Send a request, mapping transport failures to ``NetworkError``."""
        try:
            response = await self.http.request(method, url, **kwargs)  # type: ignore[arg-type]
        except httpx.TimeoutException as exc:
            raise NetworkError(f"{method} {url} timed out", exc) from exc
        except httpx.HTTPError as exc:
            raise NetworkError(f"{method} {url} failed: {exc}", exc) from exc
        logger.debug("%s %s -> %d", method, url, response.status_code)
        if response.status_code in (401, 403):
            raise AuthenticationFailedError(
                f"{self.name} rejected {method} {url} with HTTP {response.status_code}"
            )
        return response

    async def aclose(self) -> None:
        """Close the HTTP client if this backend created it."""
        if self._http is not None and self._owns_http:
            await self._http.aclose()
            self._http = None

    async def __aenter__(self) -> StorageBackend:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()
