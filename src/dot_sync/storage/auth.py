"""Bearer-token acquisition for the Azure and GCS backends.

Azure uses the OAuth2 client-credentials grant against the tenant token
endpoint.  GCS exchanges a service-account key for an access token by
posting an RS256-signed JWT assertion (RFC 7523).  Tokens are fetched per
call and are not cached beyond it.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any

import httpx
import jwt

from dot_sync.storage.errors import (
    AuthenticationFailedError,
    InvalidCredentialsError,
    NetworkError,
)

logger = logging.getLogger(__name__)

AZURE_AUTHORITY = "https://login.microsoftonline.com"
AZURE_STORAGE_SCOPE = "https://storage.azure.com/.default"

GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"
GCS_SCOPE = "https://www.googleapis.com/auth/devstorage.read_write"
JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"
ASSERTION_LIFETIME = 3600


@dataclass(frozen=True)
class ServiceAccountKey:
    """The fields of a Google service-account JSON key that signing needs."""

    client_email: str
    private_key: str
    private_key_id: str | None = None
    token_uri: str = GOOGLE_TOKEN_URI

    @classmethod
    def from_json(cls, raw: str) -> ServiceAccountKey:
        """Parse a service-account key file.

        Raises:
            InvalidCredentialsError: If the JSON is malformed or lacks
                ``client_email`` / ``private_key``.
        """
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise InvalidCredentialsError(f"Service account key is not valid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise InvalidCredentialsError("Service account key must be a JSON object")
        client_email = data.get("client_email")
        private_key = data.get("private_key")
        if not client_email or not private_key:
            raise InvalidCredentialsError(
                "Service account key must contain client_email and private_key"
            )
        return cls(
            client_email=client_email,
            private_key=private_key,
            private_key_id=data.get("private_key_id"),
            token_uri=data.get("token_uri") or GOOGLE_TOKEN_URI,
        )


def build_service_account_assertion(
    key: ServiceAccountKey,
    *,
    scope: str = GCS_SCOPE,
    now: int | None = None,
) -> str:
    """Create the signed JWT assertion for a service-account token request.

    Args:
        key: Parsed service-account key.
        scope: OAuth scope to request.
        now: Issue time in epoch seconds; defaults to the current time.

    Returns:
        A compact RS256 JWT.

    Raises:
        InvalidCredentialsError: If the private key cannot be loaded.
    """
    issued_at = int(time.time()) if now is None else now
    claims = {
        "iss": key.client_email,
        "scope": scope,
        "aud": key.token_uri,
        "iat": issued_at,
        "exp": issued_at + ASSERTION_LIFETIME,
    }
    headers = {"kid": key.private_key_id} if key.private_key_id else None
    try:
        return jwt.encode(claims, key.private_key, algorithm="RS256", headers=headers)
    except (ValueError, TypeError, jwt.PyJWTError) as exc:
        raise InvalidCredentialsError(f"Cannot sign with service account key: {exc}") from exc


def _extract_token(response: httpx.Response, provider: str) -> str:
    if not response.is_success:
        logger.warning("%s token endpoint returned HTTP %d", provider, response.status_code)
        raise AuthenticationFailedError(
            f"{provider} token request failed with HTTP {response.status_code}"
        )
    try:
        payload: Any = response.json()
    except ValueError as exc:
        raise AuthenticationFailedError(f"{provider} token response is not JSON") from exc
    token = payload.get("access_token") if isinstance(payload, dict) else None
    if not token:
        raise AuthenticationFailedError(f"{provider} token response has no access_token")
    return str(token)


async def _post_form(
    client: httpx.AsyncClient, url: str, form: dict[str, str], provider: str
) -> httpx.Response:
    try:
        return await client.post(url, data=form)
    except httpx.HTTPError as exc:
        raise NetworkError(f"{provider} token request failed: {exc}", exc) from exc


async def fetch_azure_token(
    client: httpx.AsyncClient,
    *,
    tenant_id: str | None,
    client_id: str | None,
    client_secret: str | None,
    authority: str = AZURE_AUTHORITY,
    scope: str = AZURE_STORAGE_SCOPE,
) -> str:
    """Acquire an Azure AD access token via the client-credentials grant.

    Raises:
        InvalidCredentialsError: If any of the three credentials is missing.
        AuthenticationFailedError: If the token endpoint rejects the request.
        NetworkError: On transport failure.
    """
    if not tenant_id or not client_id or not client_secret:
        raise InvalidCredentialsError(
            "Azure requires tenant_id, client_id and client_secret"
        )
    url = f"{authority.rstrip('/')}/{tenant_id}/oauth2/v2.0/token"
    response = await _post_form(
        client,
        url,
        {
            "grant_type": "client_credentials",
            "client_id": client_id,
            "client_secret": client_secret,
            "scope": scope,
        },
        "Azure",
    )
    return _extract_token(response, "Azure")


async def fetch_service_account_token(
    client: httpx.AsyncClient,
    key: ServiceAccountKey,
    *,
    scope: str = GCS_SCOPE,
) -> str:
    """Exchange a service-account key for a Google OAuth2 access token.

    Raises:
        InvalidCredentialsError: If the key cannot sign the assertion.
        AuthenticationFailedError: If the token endpoint rejects it.
        NetworkError: On transport failure.
    """
    assertion = build_service_account_assertion(key, scope=scope)
    response = await _post_form(
        client,
        key.token_uri,
        {"grant_type": JWT_BEARER_GRANT, "assertion": assertion},
        "Google",
    )
    return _extract_token(response, "Google")
