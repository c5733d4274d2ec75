"""Azure Blob Storage backend.

Authenticates with an Azure AD service principal (client-credentials grant)
and talks to the Blob REST API with a fixed service version.  Blobs live at
``https://{account}.blob.core.windows.net/{container}/{key}``; the account
defaults to the container name when not configured separately.
"""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from datetime import datetime, timezone
from urllib.parse import quote

import httpx

from dot_sync.models import TrackedFile
from dot_sync.storage.auth import fetch_azure_token
from dot_sync.storage.base import (
    CHECKSUM_META,
    MTIME_META,
    StorageBackend,
    mtime_meta,
    parse_http_date,
    parse_mtime_meta,
)
from dot_sync.storage.errors import (
    DownloadFailedError,
    FileNotFoundOnRemoteError,
    NetworkError,
    UploadFailedError,
)
from dot_sync.storage.models import BackendType, RemoteObject
from dot_sync.storage.signer import sha256_hex

logger = logging.getLogger(__name__)

API_VERSION = "2021-08-06"


def parse_list_response(body: str | bytes) -> tuple[list[RemoteObject], str | None]:
    """Parse an ``EnumerationResults`` document into remote objects.

    Returns the objects and the ``NextMarker`` for the following page, if
    any.  The SHA-256 and local modification time are read from the
    ``sha256`` and ``mtime`` blob metadata written on upload.

    Raises:
        NetworkError: If the body is not well-formed XML.
    """
    try:
        root = ET.fromstring(body)
    except ET.ParseError as exc:
        raise NetworkError(f"malformed blob listing: {exc}", exc) from exc

    objects: list[RemoteObject] = []
    for blob in root.iter("Blob"):
        name = blob.findtext("Name")
        if not name:
            continue
        props = blob.find("Properties")
        size = props.findtext("Content-Length") if props is not None else None
        modified = props.findtext("Last-Modified") if props is not None else None
        checksum = blob.findtext(f"Metadata/{CHECKSUM_META}")
        mtime = parse_mtime_meta(blob.findtext(f"Metadata/{MTIME_META}"))
        objects.append(
            RemoteObject(
                path=name,
                size=int(size) if size else 0,
                last_modified=mtime
                or parse_http_date(modified)
                or datetime.now(timezone.utc),
                checksum=checksum or None,
            )
        )
    next_marker = root.findtext("NextMarker") or None
    return objects, next_marker


class AzureBlobBackend(StorageBackend):
    """Azure Blob Storage backend using bearer tokens."""

    backend_type = BackendType.AZURE

    @property
    def is_configured(self) -> bool:
        creds = self.credentials
        return bool(
            self.config.bucket and creds.tenant_id and creds.client_id and creds.client_secret
        )

    @property
    def account(self) -> str:
        return self.config.account or self.config.bucket

    @property
    def container_url(self) -> str:
        base = self.config.endpoint or f"https://{self.account}.blob.core.windows.net"
        return f"{base.rstrip('/')}/{self.config.bucket}"

    def _blob_url(self, key: str) -> str:
        return f"{self.container_url}/{quote(key, safe='/')}"

    async def _headers(self, **extra: str) -> dict[str, str]:
        token = await fetch_azure_token(
            self.http,
            tenant_id=self.credentials.tenant_id,
            client_id=self.credentials.client_id,
            client_secret=self.credentials.client_secret,
        )
        return {"Authorization": f"Bearer {token}", "x-ms-version": API_VERSION, **extra}

    # ------------------------------------------------------------------
    # Contract
    # ------------------------------------------------------------------

    async def upload(self, file: TrackedFile, data: bytes) -> None:
        self._require_configured()
        key = self.remote_key(file)
        headers = await self._headers(
            **{
                "x-ms-blob-type": "BlockBlob",
                f"x-ms-meta-{CHECKSUM_META}": sha256_hex(data),
                f"x-ms-meta-{MTIME_META}": mtime_meta(file),
                "Content-Type": "application/octet-stream",
            }
        )
        response = await self._send("PUT", self._blob_url(key), content=data, headers=headers)
        if not response.is_success:
            raise UploadFailedError(
                f"PUT {key} returned HTTP {response.status_code}", response.status_code
            )
        logger.info("Uploaded %s to azure://%s/%s", file.filename, self.config.bucket, key)

    async def download(self, file: TrackedFile) -> bytes:
        self._require_configured()
        key = self.remote_key(file)
        response = await self._send("GET", self._blob_url(key), headers=await self._headers())
        if response.status_code == 404:
            raise FileNotFoundOnRemoteError(key)
        if not response.is_success:
            raise DownloadFailedError(
                f"GET {key} returned HTTP {response.status_code}", response.status_code
            )
        return response.content

    async def list_files(self) -> list[RemoteObject]:
        self._require_configured()
        headers = await self._headers()
        objects: list[RemoteObject] = []
        marker: str | None = None
        while True:
            params = {
                "restype": "container",
                "comp": "list",
                "prefix": self.list_prefix,
                "include": "metadata",
            }
            if marker:
                params["marker"] = marker
            response = await self._send("GET", self.container_url, params=params, headers=headers)
            if not response.is_success:
                raise NetworkError(
                    f"listing container {self.config.bucket} returned HTTP {response.status_code}"
                )
            page, marker = parse_list_response(response.content)
            objects.extend(page)
            if marker is None:
                break
        return objects

    async def delete(self, file: TrackedFile) -> None:
        self._require_configured()
        key = self.remote_key(file)
        response = await self._send("DELETE", self._blob_url(key), headers=await self._headers())
        if not (response.is_success or response.status_code == 404):
            raise NetworkError(f"DELETE {key} returned HTTP {response.status_code}")

    async def get_metadata(self, file: TrackedFile) -> RemoteObject | None:
        self._require_configured()
        key = self.remote_key(file)
        response = await self._send("HEAD", self._blob_url(key), headers=await self._headers())
        if response.status_code == 404:
            return None
        if not response.is_success:
            raise NetworkError(f"HEAD {key} returned HTTP {response.status_code}")
        return _object_from_headers(key, response)

    async def test_connection(self) -> bool:
        self._require_configured()
        response = await self._send(
            "GET",
            self.container_url,
            params={"restype": "container", "comp": "list", "maxresults": "1"},
            headers=await self._headers(),
        )
        if not response.is_success:
            raise NetworkError(
                f"listing container {self.config.bucket} returned HTTP {response.status_code}"
            )
        return True


def _object_from_headers(key: str, response: httpx.Response) -> RemoteObject:
    return RemoteObject(
        path=key,
        size=int(response.headers.get("content-length", "0")),
        last_modified=parse_mtime_meta(response.headers.get(f"x-ms-meta-{MTIME_META}"))
        or parse_http_date(response.headers.get("last-modified"))
        or datetime.now(timezone.utc),
        checksum=response.headers.get(f"x-ms-meta-{CHECKSUM_META}"),
    )
