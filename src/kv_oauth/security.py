"""Random identifiers, state comparison and log scrubbing."""

from __future__ import annotations

import hmac
import secrets
from typing import Any

# 256 bits of entropy for state values and session identifiers
TOKEN_BYTES = 32

MASK = "***"

# Token endpoint and session fields that must never reach a log line
SENSITIVE_FIELDS = frozenset(
    {
        "access_token",
        "refresh_token",
        "id_token",
        "code",
        "code_verifier",
        "client_secret",
        "password",
        "authorization",
        "cookie",
    }
)


def generate_secure_token(nbytes: int = TOKEN_BYTES) -> str:
    """Return a URL-safe random string suitable for cookies and query strings.

    Used for OAuth ``state`` values and for OAuth and site session ids.

    Args:
        nbytes: Number of random bytes

    Returns:
        Unpadded URL-safe base64 text
    """
    return secrets.token_urlsafe(nbytes)


def constant_time_equals(a: str | None, b: str | None) -> bool:
    """Compare two strings without leaking where they differ.

    Two missing values compare equal; a missing and a present value do not.
    """
    if a is None or b is None:
        return a is b
    return hmac.compare_digest(a.encode(), b.encode())


def redact(value: str | None) -> str:
    """Stand-in for a secret in log output."""
    return MASK if value else "<empty>"


def _is_sensitive(key: str, fields: frozenset[str]) -> bool:
    key = key.lower()
    return key in fields or key.endswith("_token") or "secret" in key


def mask_sensitive_data(
    data: dict[str, Any], sensitive_fields: frozenset[str] | None = None
) -> dict[str, Any]:
    """Copy ``data`` with secret-looking values replaced by ``***``.

    Nested mappings and lists of mappings are scrubbed too.

    Args:
        data: Mapping to scrub, typically a token endpoint response
        sensitive_fields: Exact field names to mask in addition to any
            ``*_token`` or ``*secret*`` field

    Returns:
        Scrubbed copy; the input is not modified
    """
    fields = SENSITIVE_FIELDS if sensitive_fields is None else sensitive_fields

    def scrub(value: Any) -> Any:
        if isinstance(value, dict):
            return mask_sensitive_data(value, fields)
        if isinstance(value, list):
            return [scrub(item) for item in value]
        return value

    return {
        key: MASK if _is_sensitive(str(key), fields) else scrub(value)
        for key, value in data.items()
    }
