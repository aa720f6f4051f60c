"""OAuth 2.0 Authorization Code grant client with PKCE."""

from kv_oauth.oauth.client import AuthorizationCodeGrant, AuthorizationUri, Tokens
from kv_oauth.oauth.pkce import PKCEPair, generate_code_challenge, generate_code_verifier

__all__ = [
    "AuthorizationCodeGrant",
    "AuthorizationUri",
    "PKCEPair",
    "Tokens",
    "generate_code_challenge",
    "generate_code_verifier",
]
