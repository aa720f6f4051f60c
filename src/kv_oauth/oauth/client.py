"""OAuth 2.0 Authorization Code grant client with PKCE.

The session layer treats this as a black box: it asks for an
authorization URI, and later hands the full callback URL back for the
token exchange.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any
from urllib.parse import parse_qs, urlencode, urlsplit

import httpx

from kv_oauth.errors import ProtocolError
from kv_oauth.logging_config import get_logger
from kv_oauth.oauth.pkce import create_pkce_pair
from kv_oauth.security import constant_time_equals, mask_sensitive_data

if TYPE_CHECKING:
    from kv_oauth.config import OAuthConfig

logger = get_logger(__name__)

DEFAULT_TIMEOUT = 30.0

# Access tokens this close to expiry are refreshed on read
TOKEN_REFRESH_BUFFER = timedelta(seconds=5)


@dataclass
class Tokens:
    """OAuth 2.0 token response.

    Expiry is kept as an absolute timestamp so that stored tokens do not
    drift; ``expires_in`` is derived from it.
    """

    access_token: str
    token_type: str = "Bearer"
    expires_at: datetime | None = None
    refresh_token: str | None = None
    scope: str | None = None

    @property
    def expires_in(self) -> int | None:
        """Seconds until the access token expires, if the provider said."""
        if self.expires_at is None:
            return None
        return max(0, int((self.expires_at - datetime.now(UTC)).total_seconds()))

    @property
    def is_expired(self) -> bool:
        if self.expires_at is None:
            return False
        return datetime.now(UTC) >= self.expires_at

    def needs_refresh(self, buffer: timedelta = TOKEN_REFRESH_BUFFER) -> bool:
        """Check whether the access token is within ``buffer`` of expiry."""
        if self.expires_at is None:
            return False
        return datetime.now(UTC) >= (self.expires_at - buffer)

    @classmethod
    def from_token_response(cls, response: dict[str, Any]) -> Tokens:
        """Validate a token endpoint response body.

        Args:
            response: Parsed JSON body

        Returns:
            Tokens instance

        Raises:
            ProtocolError: If a required field is missing or mistyped
        """
        access_token = response.get("access_token")
        if not isinstance(access_token, str) or not access_token:
            raise ProtocolError("Invalid token response: missing access_token")

        token_type = response.get("token_type")
        if not isinstance(token_type, str) or not token_type:
            raise ProtocolError("Invalid token response: missing token_type")

        expires_in = response.get("expires_in")
        expires_at: datetime | None = None
        if expires_in is not None:
            if isinstance(expires_in, bool) or not isinstance(expires_in, int | float | str):
                raise ProtocolError("Invalid token response: expires_in is not a number")
            try:
                expires_at = datetime.now(UTC) + timedelta(seconds=float(expires_in))
            except (ValueError, OverflowError):
                raise ProtocolError(
                    "Invalid token response: expires_in is not a number"
                ) from None

        refresh_token = response.get("refresh_token")
        if refresh_token is not None and not isinstance(refresh_token, str):
            raise ProtocolError("Invalid token response: refresh_token is not a string")

        scope = response.get("scope")
        if isinstance(scope, list):
            scope = " ".join(str(item) for item in scope)
        elif scope is not None and not isinstance(scope, str):
            raise ProtocolError("Invalid token response: scope is not a string")

        return cls(
            access_token=access_token,
            token_type=token_type,
            expires_at=expires_at,
            refresh_token=refresh_token,
            scope=scope,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize for the key-value store."""
        return {
            "access_token": self.access_token,
            "token_type": self.token_type,
            "expires_at": self.expires_at.timestamp() if self.expires_at else None,
            "refresh_token": self.refresh_token,
            "scope": self.scope,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Tokens:
        """Deserialize a stored token record."""
        expires_at_val = data.get("expires_at")
        return cls(
            access_token=str(data["access_token"]),
            token_type=str(data.get("token_type") or "Bearer"),
            expires_at=(
                datetime.fromtimestamp(float(expires_at_val), tz=UTC)
                if expires_at_val is not None
                else None
            ),
            refresh_token=data.get("refresh_token"),
            scope=data.get("scope"),
        )


@dataclass(frozen=True)
class AuthorizationUri:
    """Authorization URI plus the PKCE verifier that must be kept for the callback."""

    uri: str
    code_verifier: str


class AuthorizationCodeGrant:
    """Authorization Code grant against a single provider."""

    def __init__(
        self,
        config: OAuthConfig,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the grant client.

        Args:
            config: Provider configuration
            http_client: Optional shared HTTP client; one is created lazily otherwise
        """
        self.config = config
        self._http_client = http_client
        self._owns_client = http_client is None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=DEFAULT_TIMEOUT)
        return self._http_client

    async def close(self) -> None:
        """Close HTTP client if we own it."""
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    def get_authorization_uri(self, state: str, scope: str | None = None) -> AuthorizationUri:
        """Build the provider authorization URI with PKCE parameters.

        Args:
            state: Anti-CSRF state value
            scope: Scope override; defaults to the configured scope

        Returns:
            AuthorizationUri with the URI and the PKCE code verifier
        """
        pkce = create_pkce_pair()

        params: dict[str, str] = {
            "response_type": "code",
            "client_id": self.config.client_id,
        }
        if self.config.redirect_uri:
            params["redirect_uri"] = self.config.redirect_uri
        scope = scope or self.config.scope
        if scope:
            params["scope"] = scope
        params["state"] = state
        params["code_challenge"] = pkce.code_challenge
        params["code_challenge_method"] = pkce.method

        separator = "&" if "?" in self.config.authorization_endpoint_uri else "?"
        uri = f"{self.config.authorization_endpoint_uri}{separator}{urlencode(params)}"
        logger.debug("Created authorization URI for client %s", self.config.client_id)

        return AuthorizationUri(uri=uri, code_verifier=pkce.code_verifier)

    def _validate_callback(self, callback_url: str, state: str) -> str:
        """Check the callback query and return the authorization code."""
        query = parse_qs(urlsplit(callback_url).query)

        def param(name: str) -> str | None:
            values = query.get(name)
            return values[0] if values else None

        error = param("error")
        if error:
            raise ProtocolError(
                f"Authorization server returned an error: {error}",
                error=error,
                error_description=param("error_description"),
                error_uri=param("error_uri"),
            )

        returned_state = param("state")
        if returned_state is None:
            raise ProtocolError("Missing state in callback URL")
        if not constant_time_equals(returned_state, state):
            raise ProtocolError("State mismatch in callback URL")

        code = param("code")
        if not code:
            raise ProtocolError("Missing code in callback URL")
        return code

    async def _request_tokens(self, data: dict[str, str], action: str) -> dict[str, Any]:
        """POST to the token endpoint and return the parsed body."""
        client = await self._get_client()

        data["client_id"] = self.config.client_id
        if self.config.client_secret:
            data["client_secret"] = self.config.client_secret.get_secret_value()

        try:
            response = await client.post(
                self.config.token_uri,
                data=data,
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            logger.error("%s request error: %s", action, e)
            raise ProtocolError(f"{action} request error: {e}") from e

        try:
            body = response.json()
        except ValueError:
            body = None

        if response.is_error:
            logger.error(
                "%s failed: %s %s",
                action,
                response.status_code,
                response.reason_phrase,
            )
            if isinstance(body, dict) and isinstance(body.get("error"), str):
                raise ProtocolError(
                    f"{action} failed: {body['error']}",
                    error=body["error"],
                    error_description=body.get("error_description"),
                    error_uri=body.get("error_uri"),
                )
            raise ProtocolError(f"{action} failed: {response.status_code}")

        if not isinstance(body, dict):
            raise ProtocolError(f"{action} failed: response body is not a JSON object")
        logger.debug("%s response: %s", action, mask_sensitive_data(body))
        return body

    async def get_token(self, callback_url: str, state: str, code_verifier: str) -> Tokens:
        """Exchange the authorization code in ``callback_url`` for tokens.

        Args:
            callback_url: Full URL of the callback request
            state: State value stored at sign-in
            code_verifier: PKCE verifier stored at sign-in

        Returns:
            Tokens issued by the provider

        Raises:
            ProtocolError: On state mismatch, provider error, network
                failure or a malformed token response
        """
        code = self._validate_callback(callback_url, state)

        data = {
            "grant_type": "authorization_code",
            "code": code,
            "code_verifier": code_verifier,
        }
        if self.config.redirect_uri:
            data["redirect_uri"] = self.config.redirect_uri

        logger.debug("Exchanging authorization code for tokens")
        token_data = await self._request_tokens(data, "Token exchange")
        tokens = Tokens.from_token_response(token_data)
        logger.info("Exchanged code for tokens (scope: %s)", tokens.scope or "N/A")
        return tokens

    async def refresh(self, refresh_token: str) -> Tokens:
        """Use a refresh token to obtain a new access token.

        Args:
            refresh_token: The refresh token

        Returns:
            New Tokens; the old refresh token is kept if none was returned

        Raises:
            ProtocolError: If the refresh fails
        """
        logger.debug("Refreshing access token")
        token_data = await self._request_tokens(
            {"grant_type": "refresh_token", "refresh_token": refresh_token},
            "Token refresh",
        )
        if "refresh_token" not in token_data:
            token_data["refresh_token"] = refresh_token

        tokens = Tokens.from_token_response(token_data)
        logger.info("Refreshed access token")
        return tokens
