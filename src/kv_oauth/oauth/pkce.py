"""PKCE (Proof Key for Code Exchange), RFC 7636.

Only the S256 challenge method is produced.
"""

from __future__ import annotations

import base64
import hashlib
import secrets
from dataclasses import dataclass

CODE_CHALLENGE_METHOD = "S256"

# RFC 7636 section 4.1: 43 to 128 characters
MIN_VERIFIER_BYTES = 32
MAX_VERIFIER_BYTES = 96


@dataclass(frozen=True)
class PKCEPair:
    """Code verifier kept server-side and the challenge sent to the provider."""

    code_verifier: str
    code_challenge: str
    method: str = CODE_CHALLENGE_METHOD


def generate_code_verifier(nbytes: int = MIN_VERIFIER_BYTES) -> str:
    """Generate a URL-safe code verifier.

    Args:
        nbytes: Number of random bytes

    Returns:
        Code verifier string of 43-128 characters

    Raises:
        ValueError: If nbytes falls outside the range RFC 7636 allows
    """
    if not MIN_VERIFIER_BYTES <= nbytes <= MAX_VERIFIER_BYTES:
        msg = f"nbytes must be between {MIN_VERIFIER_BYTES} and {MAX_VERIFIER_BYTES}"
        raise ValueError(msg)

    return secrets.token_urlsafe(nbytes)


def generate_code_challenge(verifier: str) -> str:
    """Compute BASE64URL(SHA256(verifier)) without padding."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def create_pkce_pair(nbytes: int = MIN_VERIFIER_BYTES) -> PKCEPair:
    """Create a new verifier/challenge pair."""
    verifier = generate_code_verifier(nbytes)
    return PKCEPair(code_verifier=verifier, code_challenge=generate_code_challenge(verifier))
