"""S3 and S3-compatible storage backend.

Uses path-style addressing (``{endpoint}/{bucket}/{key}``) so the same code
works against AWS and S3-compatible services (MinIO, R2, Wasabi, ...).
Every request is signed with :func:`dot_sync.storage.signer.sign_request`.
"""

from __future__ import annotations

import asyncio
import logging
import re
from datetime import datetime, timezone
from urllib.parse import quote, urlsplit

import httpx

from dot_sync.models import TrackedFile
from dot_sync.storage.base import (
    CHECKSUM_META,
    MTIME_META,
    StorageBackend,
    mtime_meta,
    parse_http_date,
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
from dot_sync.storage.signer import canonical_query, canonical_uri, sha256_hex, sign_request

logger = logging.getLogger(__name__)

DEFAULT_REGION = "us-east-1"
CHECKSUM_HEADER = f"x-amz-meta-{CHECKSUM_META}"
MTIME_HEADER = f"x-amz-meta-{MTIME_META}"
MAX_CONCURRENT_HEADS = 8

_CONTENTS_RE = re.compile(r"<Contents>(.*?)</Contents>", re.DOTALL)
_KEY_RE = re.compile(r"<Key>(.*?)</Key>", re.DOTALL)
_SIZE_RE = re.compile(r"<Size>(\d+)</Size>")
_MODIFIED_RE = re.compile(r"<LastModified>(.*?)</LastModified>")
_TRUNCATED_RE = re.compile(r"<IsTruncated>\s*true\s*</IsTruncated>", re.IGNORECASE)
_NEXT_TOKEN_RE = re.compile(r"<NextContinuationToken>(.*?)</NextContinuationToken>", re.DOTALL)

_XML_UNESCAPE = {"&amp;": "&", "&lt;": "<", "&gt;": ">", "&quot;": '"', "&apos;": "'"}


def _xml_text(value: str) -> str:
    for entity, char in _XML_UNESCAPE.items():
        value = value.replace(entity, char)
    return value


def parse_list_response(body: str) -> tuple[list[RemoteObject], str | None]:
    """Extract key, size and last-modified from a ListObjectsV2 response.

    Returns the objects and the continuation token when the listing is
    truncated.  ListObjectsV2 carries no user metadata, so ``checksum`` is
    ``None`` and ``last_modified`` is the upload time; :meth:`S3Backend.list_files`
    fills both in from a HEAD per object.
    """
    objects: list[RemoteObject] = []
    for block in _CONTENTS_RE.findall(body):
        key = _KEY_RE.search(block)
        if key is None:
            continue
        size = _SIZE_RE.search(block)
        modified = _MODIFIED_RE.search(block)
        last_modified = parse_iso_date(modified.group(1)) if modified else None
        objects.append(
            RemoteObject(
                path=_xml_text(key.group(1)),
                size=int(size.group(1)) if size else 0,
                last_modified=last_modified or datetime.now(timezone.utc),
            )
        )

    next_token: str | None = None
    if _TRUNCATED_RE.search(body):
        match = _NEXT_TOKEN_RE.search(body)
        next_token = _xml_text(match.group(1)) if match else None
    return objects, next_token


class S3Backend(StorageBackend):
    """AWS S3 / S3-compatible backend signed with SigV4."""

    backend_type = BackendType.S3
    service = "s3"

    @property
    def is_configured(self) -> bool:
        return bool(
            self.config.bucket
            and self.credentials.access_key_id
            and self.credentials.secret_access_key
        )

    @property
    def region(self) -> str:
        return self.config.region or DEFAULT_REGION

    @property
    def endpoint(self) -> str:
        endpoint = self.config.endpoint or f"https://s3.{self.region}.amazonaws.com"
        return endpoint.rstrip("/")

    # ------------------------------------------------------------------
    # Contract
    # ------------------------------------------------------------------

    async def upload(self, file: TrackedFile, data: bytes) -> None:
        self._require_configured()
        key = self.remote_key(file)
        response = await self._signed(
            "PUT",
            key,
            body=data,
            headers={
                "content-type": "application/octet-stream",
                CHECKSUM_HEADER: sha256_hex(data),
                MTIME_HEADER: mtime_meta(file),
            },
        )
        if not response.is_success:
            raise UploadFailedError(
                f"PUT {key} returned HTTP {response.status_code}", response.status_code
            )
        logger.info("Uploaded %s to s3://%s/%s", file.filename, self.config.bucket, key)

    async def download(self, file: TrackedFile) -> bytes:
        self._require_configured()
        key = self.remote_key(file)
        response = await self._signed("GET", key)
        if response.status_code == 404:
            raise FileNotFoundOnRemoteError(key)
        if not response.is_success:
            raise DownloadFailedError(
                f"GET {key} returned HTTP {response.status_code}", response.status_code
            )
        return response.content

    async def list_files(self) -> list[RemoteObject]:
        self._require_configured()
        objects: list[RemoteObject] = []
        token: str | None = None
        while True:
            query = {"list-type": "2", "prefix": self.list_prefix}
            if token:
                query["continuation-token"] = token
            response = await self._signed("GET", "", query=query)
            if not response.is_success:
                raise NetworkError(
                    f"listing s3://{self.config.bucket} returned HTTP {response.status_code}"
                )
            page, token = parse_list_response(response.text)
            objects.extend(page)
            if token is None:
                break

        semaphore = asyncio.Semaphore(MAX_CONCURRENT_HEADS)

        async def enrich(listed: RemoteObject) -> RemoteObject:
            async with semaphore:
                head = await self._head(listed.path)
            return head or listed

        return list(await asyncio.gather(*(enrich(obj) for obj in objects)))

    async def delete(self, file: TrackedFile) -> None:
        self._require_configured()
        key = self.remote_key(file)
        response = await self._signed("DELETE", key)
        if not (response.is_success or response.status_code == 404):
            raise NetworkError(f"DELETE {key} returned HTTP {response.status_code}")

    async def get_metadata(self, file: TrackedFile) -> RemoteObject | None:
        self._require_configured()
        return await self._head(self.remote_key(file))

    async def test_connection(self) -> bool:
        self._require_configured()
        response = await self._signed(
            "GET", "", query={"list-type": "2", "prefix": self.list_prefix, "max-keys": "1"}
        )
        if not response.is_success:
            raise NetworkError(
                f"listing s3://{self.config.bucket} returned HTTP {response.status_code}"
            )
        return True

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _head(self, key: str) -> RemoteObject | None:
        response = await self._signed("HEAD", key)
        if response.status_code == 404:
            return None
        if not response.is_success:
            raise NetworkError(f"HEAD {key} returned HTTP {response.status_code}")
        headers = response.headers
        return RemoteObject(
            path=key,
            size=int(headers.get("content-length", "0")),
            last_modified=parse_mtime_meta(headers.get(MTIME_HEADER))
            or parse_http_date(headers.get("last-modified"))
            or datetime.now(timezone.utc),
            checksum=headers.get(CHECKSUM_HEADER),
        )

    def _path(self, key: str) -> str:
        base = urlsplit(self.endpoint).path.rstrip("/")
        return f"{base}/{self.config.bucket}/{key}"

    async def _signed(
        self,
        method: str,
        key: str,
        *,
        query: dict[str, str] | None = None,
        body: bytes = b"",
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        access_key = self.credentials.access_key_id
        secret_key = self.credentials.secret_access_key
        if not access_key or not secret_key:
            raise InvalidCredentialsError("S3 requires an access key id and secret access key")

        path = self._path(key)
        raw_query = "&".join(
            f"{quote(name, safe='')}={quote(value, safe='')}"
            for name, value in (query or {}).items()
        )
        request_headers = {"host": urlsplit(self.endpoint).netloc, **(headers or {})}
        signed = sign_request(
            method=method,
            path=path,
            query=raw_query,
            headers=request_headers,
            body=body,
            access_key=access_key,
            secret_key=secret_key,
            region=self.region,
            service=self.service,
            timestamp=datetime.now(timezone.utc),
        )

        origin = urlsplit(self.endpoint)
        url = f"{origin.scheme}://{origin.netloc}{canonical_uri(path)}"
        encoded_query = canonical_query(raw_query)
        if encoded_query:
            url = f"{url}?{encoded_query}"
        return await self._send(method, url, content=body or None, headers=signed)


class S3CompatibleBackend(S3Backend):
    """S3 protocol against a custom endpoint."""

    backend_type = BackendType.S3_COMPATIBLE

    @property
    def is_configured(self) -> bool:
        return super().is_configured and bool(self.config.endpoint)
