"""Google Cloud Storage backend using the JSON API.

Authentication exchanges a service-account key for a bearer token through a
signed JWT assertion (see :mod:`dot_sync.storage.auth`).  Uploads use the
multipart upload endpoint so the file's SHA-256 and modification time
travel as custom object metadata.  GCS itself only reports MD5/CRC32C, which
cannot be compared with the catalog's SHA-256 fingerprints.
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any
from urllib.parse import quote

from dot_sync.models import TrackedFile
from dot_sync.storage.auth import ServiceAccountKey, fetch_service_account_token
from dot_sync.storage.base import (
    CHECKSUM_META,
    MTIME_META,
    StorageBackend,
    mtime_meta,
    parse_iso_date,
    parse_mtime_meta,
)
from dot_sync.storage.errors import (
    DownloadFailedError,
    FileNotFoundOnRemoteError,
    InvalidCredentialsError,
    NetworkError,
    UploadFailedError,
)
from dot_sync.storage.models import BackendType, RemoteObject
from dot_sync.storage.signer import sha256_hex

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "https://storage.googleapis.com"


def object_from_resource(item: dict[str, Any]) -> RemoteObject | None:
    """Convert a JSON API object resource; ``None`` if required fields are missing."""
    name = item.get("name")
    updated = parse_iso_date(item.get("updated"))
    if not name or updated is None:
        return None
    try:
        size = int(item.get("size", 0))
    except (TypeError, ValueError):
        size = 0
    metadata = item.get("metadata") or {}
    return RemoteObject(
        path=name,
        size=size,
        last_modified=parse_mtime_meta(metadata.get(MTIME_META)) or updated,
        checksum=metadata.get(CHECKSUM_META),
    )


class GCSBackend(StorageBackend):
    """GCS backend authenticated with a service-account key."""

    backend_type = BackendType.GCS

    @property
    def is_configured(self) -> bool:
        return bool(
            self.config.bucket
            and self.credentials.project_id
            and self.credentials.service_account_key
        )

    @property
    def endpoint(self) -> str:
        return (self.config.endpoint or DEFAULT_ENDPOINT).rstrip("/")

    @property
    def _objects_url(self) -> str:
        return f"{self.endpoint}/storage/v1/b/{quote(self.config.bucket, safe='')}/o"

    def _object_url(self, key: str) -> str:
        return f"{self._objects_url}/{quote(key, safe='')}"

    async def _auth_headers(self) -> dict[str, str]:
        raw_key = self.credentials.service_account_key
        if not raw_key:
            raise InvalidCredentialsError("GCS requires a service account key")
        key = ServiceAccountKey.from_json(raw_key)
        token = await fetch_service_account_token(self.http, key)
        return {"Authorization": f"Bearer {token}"}

    # ------------------------------------------------------------------
    # Contract
    # ------------------------------------------------------------------

    async def upload(self, file: TrackedFile, data: bytes) -> None:
        self._require_configured()
        key = self.remote_key(file)
        boundary = f"dot-sync-{uuid.uuid4().hex}"
        metadata = {
            "name": key,
            "metadata": {CHECKSUM_META: sha256_hex(data), MTIME_META: mtime_meta(file)},
        }
        body = b"".join(
            [
                f"--{boundary}\r\n".encode(),
                b"Content-Type: application/json; charset=UTF-8\r\n\r\n",
                json.dumps(metadata).encode("utf-8"),
                f"\r\n--{boundary}\r\n".encode(),
                b"Content-Type: application/octet-stream\r\n\r\n",
                data,
                f"\r\n--{boundary}--\r\n".encode(),
            ]
        )
        headers = await self._auth_headers()
        headers["Content-Type"] = f"multipart/related; boundary={boundary}"
        url = f"{self.endpoint}/upload/storage/v1/b/{quote(self.config.bucket, safe='')}/o"
        response = await self._send(
            "POST", url, params={"uploadType": "multipart"}, content=body, headers=headers
        )
        if not response.is_success:
            raise UploadFailedError(
                f"upload of {key} returned HTTP {response.status_code}", response.status_code
            )
        logger.info("Uploaded %s to gs://%s/%s", file.filename, self.config.bucket, key)

    async def download(self, file: TrackedFile) -> bytes:
        self._require_configured()
        key = self.remote_key(file)
        response = await self._send(
            "GET",
            self._object_url(key),
            params={"alt": "media"},
            headers=await self._auth_headers(),
        )
        if response.status_code == 404:
            raise FileNotFoundOnRemoteError(key)
        if not response.is_success:
            raise DownloadFailedError(
                f"GET {key} returned HTTP {response.status_code}", response.status_code
            )
        return response.content

    async def list_files(self) -> list[RemoteObject]:
        self._require_configured()
        headers = await self._auth_headers()
        objects: list[RemoteObject] = []
        page_token: str | None = None
        while True:
            params = {"prefix": self.list_prefix}
            if page_token:
                params["pageToken"] = page_token
            response = await self._send("GET", self._objects_url, params=params, headers=headers)
            if not response.is_success:
                raise NetworkError(
                    f"listing gs://{self.config.bucket} returned HTTP {response.status_code}"
                )
            try:
                payload = response.json()
            except ValueError as exc:
                raise NetworkError("object listing is not JSON", exc) from exc
            for item in payload.get("items", []):
                remote = object_from_resource(item)
                if remote is not None:
                    objects.append(remote)
            page_token = payload.get("nextPageToken")
            if not page_token:
                break
        return objects

    async def delete(self, file: TrackedFile) -> None:
        self._require_configured()
        key = self.remote_key(file)
        response = await self._send(
            "DELETE", self._object_url(key), headers=await self._auth_headers()
        )
        if not (response.is_success or response.status_code == 404):
            raise NetworkError(f"DELETE {key} returned HTTP {response.status_code}")

    async def get_metadata(self, file: TrackedFile) -> RemoteObject | None:
        self._require_configured()
        key = self.remote_key(file)
        response = await self._send(
            "GET", self._object_url(key), headers=await self._auth_headers()
        )
        if response.status_code == 404:
            return None
        if not response.is_success:
            raise NetworkError(f"GET {key} metadata returned HTTP {response.status_code}")
        try:
            payload = response.json()
        except ValueError as exc:
            raise NetworkError(f"GET {key} metadata is not JSON", exc) from exc
        remote = object_from_resource(payload)
        if remote is None:
            return RemoteObject(path=key, last_modified=datetime.now(timezone.utc))
        return remote

    async def test_connection(self) -> bool:
        self._require_configured()
        response = await self._send(
            "GET",
            self._objects_url,
            params={"prefix": self.list_prefix, "maxResults": "1"},
            headers=await self._auth_headers(),
        )
        if not response.is_success:
            raise NetworkError(
                f"listing gs://{self.config.bucket} returned HTTP {response.status_code}"
            )
        return True
