"""Wire-level tests for the S3 backend against an in-memory fake service."""

from __future__ import annotations

import hashlib
from datetime import datetime, timezone
from urllib.parse import unquote

import httpx
import pytest

from dot_sync.models import ConfigCategory, TrackedFile
from dot_sync.storage.errors import (
    AuthenticationFailedError,
    FileNotFoundOnRemoteError,
    NotConfiguredError,
)
from dot_sync.storage.models import BackendConfig, BackendType, Credentials
from dot_sync.storage.s3 import S3Backend, S3CompatibleBackend, parse_list_response

MTIME = datetime(2025, 3, 1, 8, 30, 0, tzinfo=timezone.utc)


def _file(
    filename: str = ".zshrc", category: ConfigCategory = ConfigCategory.SHELL
) -> TrackedFile:
    return TrackedFile(
        path=f"/home/user/{filename}",
        relative_path=filename,
        filename=filename,
        category=category,
        last_modified=MTIME,
    )


class FakeS3:
    """Just enough of the S3 REST API for the backend's requests."""

    def __init__(
        self, bucket: str = "configs", page_size: int = 1000, status: int | None = None
    ) -> None:
        self.bucket = bucket
        self.page_size = page_size
        self.status = status
        self.objects: dict[str, tuple[bytes, dict[str, str]]] = {}
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.status is not None:
            return httpx.Response(self.status)
        prefix = f"/{self.bucket}/"
        path = unquote(request.url.path)
        assert path.startswith(prefix)
        key = path[len(prefix) :]
        if request.method == "GET" and not key:
            return self._list(request)
        if request.method == "PUT":
            meta = {k: v for k, v in request.headers.items() if k.startswith("x-amz-meta-")}
            self.objects[key] = (request.content, meta)
            return httpx.Response(200)
        if key not in self.objects:
            return httpx.Response(404)
        data, meta = self.objects[key]
        headers = {
            "content-length": str(len(data)),
            "last-modified": "Wed, 05 Mar 2025 10:00:00 GMT",
            **meta,
        }
        if request.method == "HEAD":
            return httpx.Response(200, headers=headers)
        if request.method == "DELETE":
            del self.objects[key]
            return httpx.Response(204)
        return httpx.Response(200, content=data)

    def _list(self, request: httpx.Request) -> httpx.Response:
        prefix = request.url.params.get("prefix", "")
        keys = sorted(k for k in self.objects if k.startswith(prefix))
        start = int(request.url.params.get("continuation-token", "0"))
        page = keys[start : start + self.page_size]
        truncated = start + self.page_size < len(keys)
        contents = "".join(
            f"<Contents><Key>{k}</Key><Size>{len(self.objects[k][0])}</Size>"
            "<LastModified>2025-03-05T10:00:00.000Z</LastModified></Contents>"
            for k in page
        )
        token = (
            f"<NextContinuationToken>{start + self.page_size}</NextContinuationToken>"
            if truncated
            else ""
        )
        body = (
            '<?xml version="1.0" encoding="UTF-8"?><ListBucketResult>'
            f"<IsTruncated>{'true' if truncated else 'false'}</IsTruncated>"
            f"{contents}{token}</ListBucketResult>"
        )
        return httpx.Response(200, text=body)


def _backend(fake: FakeS3, **config: object) -> S3Backend:
    settings: dict[str, object] = {"backend_type": BackendType.S3, "bucket": fake.bucket}
    settings.update(config)
    return S3Backend(
        BackendConfig(**settings),  # type: ignore[arg-type]
        Credentials(access_key_id="AKIDEXAMPLE", secret_access_key="secret"),
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(fake)),
    )


class TestRequests:
    async def test_upload_is_signed_and_carries_metadata(self) -> None:
        fake = FakeS3()
        await _backend(fake).upload(_file(), b"alias ll='ls -la'\n")

        (request,) = fake.requests
        assert request.method == "PUT"
        assert request.url.host == "s3.us-east-1.amazonaws.com"
        assert request.url.path == "/configs/dot-sync/configs/shell/.zshrc"
        assert request.headers["authorization"].startswith(
            "AWS4-HMAC-SHA256 Credential=AKIDEXAMPLE/"
        )
        assert "/us-east-1/s3/aws4_request" in request.headers["authorization"]
        digest = hashlib.sha256(b"alias ll='ls -la'\n").hexdigest()
        assert request.headers["x-amz-content-sha256"] == digest
        assert request.headers["x-amz-meta-sha256"] == digest
        assert request.headers["x-amz-meta-mtime"] == str(int(MTIME.timestamp()))

    async def test_custom_endpoint_and_region(self) -> None:
        fake = FakeS3()
        backend = _backend(fake, endpoint="https://minio.local:9000/", region="eu-west-1")
        await backend.upload(_file(), b"x")
        (request,) = fake.requests
        assert str(request.url).startswith("https://minio.local:9000/configs/dot-sync/")
        assert "/eu-west-1/s3/aws4_request" in request.headers["authorization"]

    async def test_round_trip(self) -> None:
        fake = FakeS3()
        backend = _backend(fake)
        await backend.upload(_file(), b"content")
        assert await backend.download(_file()) == b"content"

    async def test_download_missing(self) -> None:
        with pytest.raises(FileNotFoundOnRemoteError):
            await _backend(FakeS3()).download(_file())

    async def test_forbidden_is_authentication_failure(self) -> None:
        with pytest.raises(AuthenticationFailedError):
            await _backend(FakeS3(status=403)).download(_file())

    async def test_delete_missing_is_not_an_error(self) -> None:
        fake = FakeS3()
        await _backend(fake).delete(_file())
        assert fake.requests[0].method == "DELETE"

    async def test_missing_credentials(self) -> None:
        backend = S3Backend(BackendConfig(backend_type=BackendType.S3, bucket="configs"))
        assert not backend.is_configured
        with pytest.raises(NotConfiguredError):
            await backend.list_files()

    async def test_compatible_variant_shares_protocol(self) -> None:
        fake = FakeS3()
        backend = S3CompatibleBackend(
            BackendConfig(
                backend_type=BackendType.S3_COMPATIBLE,
                bucket="configs",
                endpoint="https://r2.example.com",
            ),
            Credentials(access_key_id="a", secret_access_key="b"),
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(fake)),
        )
        assert await backend.test_connection()
        assert fake.requests[0].url.params["max-keys"] == "1"

    async def test_compatible_variant_needs_endpoint(self) -> None:
        backend = S3CompatibleBackend(
            BackendConfig(backend_type=BackendType.S3_COMPATIBLE, bucket="configs"),
            Credentials(access_key_id="a", secret_access_key="b"),
        )
        assert not backend.is_configured
        with pytest.raises(NotConfiguredError):
            await backend.test_connection()


class TestListing:
    async def test_reports_uploaded_mtime_and_checksum(self) -> None:
        fake = FakeS3()
        backend = _backend(fake)
        await backend.upload(_file(), b"content")
        await backend.upload(_file(".gitconfig", ConfigCategory.GIT), b"[user]")

        objects = {obj.path: obj for obj in await backend.list_files()}

        zshrc = objects["dot-sync/configs/shell/.zshrc"]
        assert zshrc.last_modified == MTIME
        assert zshrc.checksum == hashlib.sha256(b"content").hexdigest()
        assert zshrc.size == len(b"content")
        assert set(objects) == {
            "dot-sync/configs/shell/.zshrc",
            "dot-sync/configs/git/.gitconfig",
        }

    async def test_follows_continuation_tokens(self) -> None:
        fake = FakeS3(page_size=2)
        backend = _backend(fake)
        for name in (".bashrc", ".profile", ".zprofile", ".zshrc", ".p10k.zsh"):
            await backend.upload(_file(name), name.encode())
        fake.requests.clear()

        objects = await backend.list_files()

        assert len(objects) == 5
        lists = [r for r in fake.requests if r.method == "GET"]
        assert len(lists) == 3
        assert [r.url.params.get("continuation-token") for r in lists] == [None, "2", "4"]
        assert all(r.url.params["prefix"] == "dot-sync/configs/" for r in lists)

    async def test_objects_without_metadata_fall_back_to_headers(self) -> None:
        fake = FakeS3()
        fake.objects["dot-sync/configs/shell/.zshrc"] = (b"legacy", {})
        (obj,) = await _backend(fake).list_files()
        assert obj.checksum is None
        assert obj.last_modified == datetime(2025, 3, 5, 10, 0, tzinfo=timezone.utc)

    async def test_get_metadata_missing(self) -> None:
        assert await _backend(FakeS3()).get_metadata(_file()) is None


class TestParseListResponse:
    def test_unescapes_keys_and_reads_token(self) -> None:
        body = (
            "<ListBucketResult><IsTruncated>true</IsTruncated>"
            "<Contents><Key>dot-sync/configs/custom/a&amp;b</Key><Size>3</Size>"
            "<LastModified>2025-01-02T03:04:05.000Z</LastModified></Contents>"
            "<NextContinuationToken>tok/1=</NextContinuationToken></ListBucketResult>"
        )
        (obj,), token = parse_list_response(body)
        assert obj.path == "dot-sync/configs/custom/a&b"
        assert obj.size == 3
        assert obj.last_modified == datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        assert token == "tok/1="

    def test_untruncated_has_no_token(self) -> None:
        body = "<ListBucketResult><IsTruncated>false</IsTruncated></ListBucketResult>"
        assert parse_list_response(body) == ([], None)
