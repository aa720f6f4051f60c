"""Exception types raised by KV OAuth.

Callers branch on these: ``SessionNotFoundError`` means the user has to
sign in again, ``StorageError`` means the backing store is down.
"""

from __future__ import annotations


class KvOAuthError(Exception):
    """Base class for all KV OAuth errors."""


class MissingCookieError(KvOAuthError):
    """Raised when a required session cookie is absent from the request."""

    def __init__(self, cookie_name: str) -> None:
        self.cookie_name = cookie_name
        super().__init__(f"Cookie '{cookie_name}' not found")


class SessionNotFoundError(KvOAuthError):
    """Raised when a session identifier does not resolve in the store.

    Expired, already consumed and forged identifiers all raise this
    same error with the same message.
    """

    def __init__(self, kind: str = "OAuth") -> None:
        self.kind = kind
        super().__init__(f"{kind} session not found")


class ProtocolError(KvOAuthError):
    """Raised by the authorization code grant client.

    Attributes:
        error: OAuth error code from the provider, if any
        error_description: Human readable description from the provider
        error_uri: Link to provider documentation for the error
    """

    def __init__(
        self,
        message: str,
        error: str | None = None,
        error_description: str | None = None,
        error_uri: str | None = None,
    ) -> None:
        self.error = error
        self.error_description = error_description
        self.error_uri = error_uri
        super().__init__(message)


class StorageError(KvOAuthError):
    """Raised when the key-value store is unavailable or its data is unreadable."""


class MissingConfigError(KvOAuthError):
    """Raised when a required configuration value is absent."""

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f'"{key}" environment variable must be set')
