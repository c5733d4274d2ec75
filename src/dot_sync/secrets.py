"""Secret store for backend credentials.

Credentials are looked up by name.  ``EnvSecretStore`` maps a name such as
``secret_access_key`` to the ``DOTSYNC_SECRET_ACCESS_KEY`` environment
variable; other stores can be plugged in by implementing ``SecretStore``.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Protocol

from dot_sync.storage.models import Credentials

CREDENTIAL_NAMES = (
    "access_key_id",
    "secret_access_key",
    "tenant_id",
    "client_id",
    "client_secret",
    "project_id",
    "service_account_key",
)


class SecretStore(Protocol):
    """Opaque get/set of named secrets."""

    def get(self, name: str) -> str | None: ...

    def set(self, name: str, value: str) -> None: ...


class EnvSecretStore:
    """Reads secrets from ``DOTSYNC_<NAME>`` environment variables.

    ``set`` only affects the current process environment.
    """

    PREFIX = "DOTSYNC_"

    def _var(self, name: str) -> str:
        return f"{self.PREFIX}{name.upper()}"

    def get(self, name: str) -> str | None:
        return os.environ.get(self._var(name)) or None

    def set(self, name: str, value: str) -> None:
        os.environ[self._var(name)] = value


class MemorySecretStore:
    """In-memory secret store."""

    def __init__(self, values: dict[str, str] | None = None) -> None:
        self._values = dict(values or {})

    def get(self, name: str) -> str | None:
        return self._values.get(name)

    def set(self, name: str, value: str) -> None:
        self._values[name] = value


def load_credentials(store: SecretStore) -> Credentials:
    """Assemble backend credentials from *store*.

    ``service_account_key`` may hold either the key JSON itself or a path
    to a key file; a path is read and replaced by its contents.
    """
    values = {name: store.get(name) for name in CREDENTIAL_NAMES}
    key = values["service_account_key"]
    if key and not key.lstrip().startswith("{"):
        path = Path(key).expanduser()
        if path.is_file():
            values["service_account_key"] = path.read_text(encoding="utf-8")
    return Credentials(**values)
