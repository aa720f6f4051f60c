"""Typed session records layered on the shared key-value store.

Two record families live in separate key namespaces: short-lived OAuth
sessions that carry the state and PKCE verifier across the provider
redirect, and site sessions whose presence means "signed in".
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from kv_oauth.config import DEFAULT_OAUTH_SESSION_TTL, DEFAULT_SITE_SESSION_TTL
from kv_oauth.errors import SessionNotFoundError, StorageError
from kv_oauth.logging_config import get_logger, short_id
from kv_oauth.oauth.client import Tokens
from kv_oauth.security import generate_secure_token

if TYPE_CHECKING:
    from types import TracebackType

    from kv_oauth.store.kv import KeyValueStore

logger = get_logger(__name__)

OAUTH_SESSIONS_PREFIX = "oauth_sessions"
SITE_SESSIONS_PREFIX = "site_sessions"


@dataclass(frozen=True)
class OAuthSession:
    """Correlates a sign-in attempt with its callback.

    Attributes:
        state: Anti-CSRF state sent to the provider
        code_verifier: PKCE secret matching the challenge sent to the provider
        success_url: Where to send the browser after the callback
    """

    state: str
    code_verifier: str
    success_url: str = "/"

    def to_dict(self) -> dict[str, str]:
        return {
            "state": self.state,
            "code_verifier": self.code_verifier,
            "success_url": self.success_url,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OAuthSession:
        return cls(
            state=str(data["state"]),
            code_verifier=str(data["code_verifier"]),
            success_url=str(data.get("success_url") or "/"),
        )


@dataclass
class SiteSession:
    """Authenticated browser session.

    Attributes:
        tokens: Tokens issued at the end of the callback
        data: Application data returned by the caller's session data getter
        created_at: Session creation timestamp
    """

    tokens: Tokens | None = None
    data: Any = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        return {
            "tokens": self.tokens.to_dict() if self.tokens else None,
            "data": self.data,
            "created_at": self.created_at.timestamp(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SiteSession:
        tokens = data.get("tokens")
        created_at = data.get("created_at")
        return cls(
            tokens=Tokens.from_dict(tokens) if tokens else None,
            data=data.get("data"),
            created_at=(
                datetime.fromtimestamp(float(created_at), tz=UTC)
                if created_at is not None
                else datetime.now(UTC)
            ),
        )


class SessionRecordStore:
    """Typed façade over the shared key-value store.

    Does not own a private copy of the store: ``open`` and ``close``
    delegate to the injected instance, which should be opened once per
    process.
    """

    def __init__(
        self,
        kv: KeyValueStore,
        oauth_session_ttl: float = DEFAULT_OAUTH_SESSION_TTL,
        site_session_ttl: float = DEFAULT_SITE_SESSION_TTL,
    ) -> None:
        """Initialize the record store.

        Args:
            kv: Shared key-value store
            oauth_session_ttl: Default OAuth session lifetime in seconds
            site_session_ttl: Default site session lifetime in seconds
        """
        self.kv = kv
        self.oauth_session_ttl = oauth_session_ttl
        self.site_session_ttl = site_session_ttl

    async def open(self) -> None:
        await self.kv.open()

    async def close(self) -> None:
        await self.kv.close()

    async def __aenter__(self) -> SessionRecordStore:
        await self.open()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    # OAuth sessions

    async def create_oauth_session(
        self,
        state: str,
        code_verifier: str,
        success_url: str,
        ttl: float | None = None,
    ) -> str:
        """Store a new OAuth session.

        Args:
            state: OAuth state parameter
            code_verifier: PKCE code verifier
            success_url: Post-callback redirect target
            ttl: Lifetime in seconds; defaults to the store's OAuth session TTL

        Returns:
            New OAuth session identifier
        """
        session_id = generate_secure_token()
        record = OAuthSession(state=state, code_verifier=code_verifier, success_url=success_url)
        await self.kv.set(
            (OAUTH_SESSIONS_PREFIX, session_id),
            record.to_dict(),
            ttl=ttl if ttl is not None else self.oauth_session_ttl,
        )
        logger.debug("Created OAuth session %s", short_id(session_id))
        return session_id

    async def consume_oauth_session(self, session_id: str) -> OAuthSession:
        """Atomically fetch and delete an OAuth session.

        Args:
            session_id: OAuth session identifier from the cookie

        Returns:
            The stored OAuthSession

        Raises:
            SessionNotFoundError: If the session is missing, expired or
                already consumed
        """
        data = await self.kv.get_and_delete((OAUTH_SESSIONS_PREFIX, session_id))
        if data is None:
            logger.warning("OAuth session %s not found", short_id(session_id))
            raise SessionNotFoundError("OAuth")
        try:
            return OAuthSession.from_dict(data)
        except (KeyError, TypeError) as e:
            raise StorageError(f"Malformed OAuth session record: {e}") from e

    # Site sessions

    async def create_site_session(
        self,
        payload: SiteSession | None = None,
        ttl: float | None = None,
    ) -> str:
        """Store a new site session.

        Args:
            payload: Session contents; an empty session if omitted
            ttl: Lifetime in seconds; defaults to the store's site session TTL

        Returns:
            New site session identifier
        """
        session_id = generate_secure_token()
        await self.set_site_session(session_id, payload or SiteSession(), ttl)
        logger.debug("Created site session %s", short_id(session_id))
        return session_id

    async def set_site_session(
        self,
        session_id: str,
        payload: SiteSession,
        ttl: float | None = None,
    ) -> None:
        """Write a site session record under an existing identifier."""
        await self.kv.set(
            (SITE_SESSIONS_PREFIX, session_id),
            payload.to_dict(),
            ttl=ttl if ttl is not None else self.site_session_ttl,
        )

    async def get_site_session(self, session_id: str) -> SiteSession | None:
        """Retrieve a site session.

        Args:
            session_id: Site session identifier from the cookie

        Returns:
            SiteSession if live, None if missing or expired
        """
        data = await self.kv.get((SITE_SESSIONS_PREFIX, session_id))
        if data is None:
            return None
        try:
            return SiteSession.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            raise StorageError(f"Malformed site session record: {e}") from e

    async def delete_site_session(self, session_id: str) -> None:
        """Delete a site session. Missing sessions are ignored."""
        await self.kv.delete((SITE_SESSIONS_PREFIX, session_id))
        logger.debug("Deleted site session %s", short_id(session_id))

    # Maintenance

    async def clear(self) -> int:
        """Delete every OAuth and site session.

        Returns:
            Number of records deleted
        """
        count = 0
        for prefix in (OAUTH_SESSIONS_PREFIX, SITE_SESSIONS_PREFIX):
            keys = [key async for key, _ in self.kv.list((prefix,))]
            for key in keys:
                await self.kv.delete(key)
            count += len(keys)

        logger.info("Cleared %d session records", count)
        return count
