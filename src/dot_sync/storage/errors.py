"""Error taxonomy shared by every storage backend."""

from __future__ import annotations


class StorageError(Exception):
    """Base class for all storage backend failures."""


class NotConfiguredError(StorageError):
    """The backend is missing required configuration or credentials."""

    def __init__(self, message: str = "Cloud storage not configured") -> None:
        super().__init__(message)


class AuthenticationFailedError(StorageError):
    """The backend rejected the supplied credentials or token."""

    def __init__(self, message: str = "Authentication failed - check credentials") -> None:
        super().__init__(message)


class InvalidCredentialsError(StorageError):
    """Credentials are present but malformed or incomplete."""

    def __init__(self, message: str = "Invalid credentials") -> None:
        super().__init__(message)


class NetworkError(StorageError):
    """A transport-level failure or an unexpected response."""

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        super().__init__(f"Network error: {message}")
        self.cause = cause


class FileNotFoundOnRemoteError(StorageError):
    """The requested key does not exist on the backend."""

    def __init__(self, key: str) -> None:
        super().__init__(f"File not found: {key}")
        self.key = key


class UploadFailedError(StorageError):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(f"Upload failed: {message}")
        self.status_code = status_code


class DownloadFailedError(StorageError):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(f"Download failed: {message}")
        self.status_code = status_code


class ContainsCredentialsError(StorageError):
    """The safety gate rejected a file at upload time."""

    def __init__(self, path: str) -> None:
        super().__init__(f"Refusing to upload {path}: file contains credentials")
        self.path = path
