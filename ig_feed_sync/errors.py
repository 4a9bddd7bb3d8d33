from __future__ import annotations

from typing import Any, Mapping


class ConfigError(RuntimeError):
    """Raised when configuration is missing or invalid."""


class StorageError(RuntimeError):
    """Raised when reading or writing local state in SQLite fails."""


class StoreError(RuntimeError):
    """Raised when a store Admin API request fails at the transport or GraphQL level."""


class AuthExpired(RuntimeError):
    """Raised when the linked account's access token has expired."""


class RemoteAPIError(RuntimeError):
    """Raised when the Instagram Graph API returns an error envelope or cannot be reached."""

    def __init__(self, message: str, *, payload: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.payload: dict[str, Any] = dict(payload or {})


class MediaTransferError(RuntimeError):
    """Raised inside the media transfer service; never escapes it."""
