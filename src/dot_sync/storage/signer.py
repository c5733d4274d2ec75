"""AWS Signature Version 4 request signing.

Implements the header-based variant of SigV4 used by S3 and S3-compatible
services.  Signing is deterministic: the same method, path, query, headers,
body, keys, region, service and timestamp always produce the same
signature, so the output can be checked bit-for-bit against the published
AWS test vectors.
"""

from __future__ import annotations

import hashlib
import hmac
from collections.abc import Mapping
from datetime import datetime, timezone
from urllib.parse import quote, unquote

ALGORITHM = "AWS4-HMAC-SHA256"
TERMINATOR = "aws4_request"
AMZ_DATE_FORMAT = "%Y%m%dT%H%M%SZ"
EMPTY_SHA256 = hashlib.sha256(b"").hexdigest()


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def _hmac(key: bytes, message: str) -> bytes:
    return hmac.new(key, message.encode("utf-8"), hashlib.sha256).digest()


def derive_signing_key(secret_key: str, date: str, region: str, service: str) -> bytes:
    """Derive the SigV4 signing key.

    Four chained HMAC-SHA256 steps seeded with ``"AWS4" + secret_key``,
    folding in the ``YYYYMMDD`` date, the region, the service name and the
    fixed ``aws4_request`` terminator.
    """
    k_date = _hmac(f"AWS4{secret_key}".encode("utf-8"), date)
    k_region = _hmac(k_date, region)
    k_service = _hmac(k_region, service)
    return _hmac(k_service, TERMINATOR)


def canonical_uri(path: str) -> str:
    """URI-encode each path segment once, keeping ``/`` separators."""
    if not path:
        return "/"
    return quote(path, safe="/-_.~")


def canonical_query(query: str) -> str:
    """Sort and re-encode a raw query string.

    Parameters are decoded first so already-encoded input normalizes to
    the same canonical form.
    """
    if not query:
        return ""
    pairs: list[tuple[str, str]] = []
    for part in query.split("&"):
        if not part:
            continue
        name, _, value = part.partition("=")
        pairs.append(
            (quote(unquote(name), safe="-_.~"), quote(unquote(value), safe="-_.~"))
        )
    pairs.sort()
    return "&".join(f"{name}={value}" for name, value in pairs)


def _canonical_headers(headers: Mapping[str, str]) -> tuple[str, str]:
    normalized: dict[str, str] = {}
    for name, value in headers.items():
        normalized[name.strip().lower()] = " ".join(str(value).split())
    names = sorted(normalized)
    block = "".join(f"{name}:{normalized[name]}\n" for name in names)
    return block, ";".join(names)


def canonical_request(
    method: str,
    path: str,
    query: str,
    headers: Mapping[str, str],
    payload_hash: str,
) -> str:
    """Build the canonical request string.

    Returns the six newline-joined components: method, canonical URI,
    canonical query, canonical header block (each line ``name:value\\n``),
    signed header names joined by ``;`` and the payload hash.
    """
    header_block, signed_headers = _canonical_headers(headers)
    return "\n".join(
        [
            method.upper(),
            canonical_uri(path),
            canonical_query(query),
            header_block,
            signed_headers,
            payload_hash,
        ]
    )


def credential_scope(date: str, region: str, service: str) -> str:
    return f"{date}/{region}/{service}/{TERMINATOR}"


def string_to_sign(amz_date: str, scope: str, canonical: str) -> str:
    return "\n".join([ALGORITHM, amz_date, scope, sha256_hex(canonical.encode("utf-8"))])


def sign_request(
    *,
    method: str,
    path: str,
    query: str,
    headers: Mapping[str, str],
    body: bytes,
    access_key: str,
    secret_key: str,
    region: str,
    service: str,
    timestamp: datetime,
) -> dict[str, str]:
    """Sign a request and return the headers to send with it.

    Args:
        method: HTTP method.
        path: Request path, unencoded (e.g. ``/bucket/key``).
        query: Raw query string without the leading ``?``.
        headers: Headers to sign. ``host`` must be included.
        body: Request payload.
        access_key: AWS access key id.
        secret_key: AWS secret access key.
        region: Signing region, e.g. ``us-east-1``.
        service: Service name, e.g. ``s3``.
        timestamp: Request time. Naive values are treated as UTC.

    Returns:
        The input headers plus ``x-amz-date``, ``x-amz-content-sha256``
        and ``Authorization``.
    """
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    timestamp = timestamp.astimezone(timezone.utc)
    amz_date = timestamp.strftime(AMZ_DATE_FORMAT)
    date = timestamp.strftime("%Y%m%d")
    payload_hash = sha256_hex(body)

    to_sign = {
        name: value
        for name, value in headers.items()
        if name.lower() not in {"authorization", "x-amz-date", "x-amz-content-sha256"}
    }
    to_sign["x-amz-date"] = amz_date
    to_sign["x-amz-content-sha256"] = payload_hash

    canonical = canonical_request(method, path, query, to_sign, payload_hash)
    scope = credential_scope(date, region, service)
    key = derive_signing_key(secret_key, date, region, service)
    signature = hmac.new(
        key, string_to_sign(amz_date, scope, canonical).encode("utf-8"), hashlib.sha256
    ).hexdigest()

    _, signed_headers = _canonical_headers(to_sign)
    signed = dict(to_sign)
    signed["Authorization"] = (
        f"{ALGORITHM} Credential={access_key}/{scope}, "
        f"SignedHeaders={signed_headers}, Signature={signature}"
    )
    return signed
