"""Tests for typed session records."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from kv_oauth.errors import SessionNotFoundError, StorageError
from kv_oauth.oauth.client import Tokens
from kv_oauth.store.kv import InMemoryKeyValueStore
from kv_oauth.store.sessions import (
    OAUTH_SESSIONS_PREFIX,
    SITE_SESSIONS_PREFIX,
    OAuthSession,
    SessionRecordStore,
    SiteSession,
)


def create_test_tokens() -> Tokens:
    """Create Tokens for testing."""
    return Tokens(
        access_token="test-access-token",
        refresh_token="test-refresh-token",
        expires_at=datetime.now(UTC) + timedelta(hours=1),
        token_type="Bearer",
        scope="read write",
    )


class TestOAuthSessions:
    """Tests for OAuth session records."""

    @pytest.mark.asyncio
    async def test_create_and_consume(self, sessions: SessionRecordStore) -> None:
        """Test consuming returns exactly what was stored."""
        session_id = await sessions.create_oauth_session("state-1", "verifier-1", "/dashboard")

        session = await sessions.consume_oauth_session(session_id)

        assert session == OAuthSession(
            state="state-1", code_verifier="verifier-1", success_url="/dashboard"
        )

    @pytest.mark.asyncio
    async def test_consume_twice(self, sessions: SessionRecordStore) -> None:
        """Test a consumed OAuth session cannot be consumed again."""
        session_id = await sessions.create_oauth_session("state", "verifier", "/")
        await sessions.consume_oauth_session(session_id)

        with pytest.raises(SessionNotFoundError, match="OAuth session not found"):
            await sessions.consume_oauth_session(session_id)

    @pytest.mark.asyncio
    async def test_consume_unknown(self, sessions: SessionRecordStore) -> None:
        """Test consuming an unknown id raises."""
        with pytest.raises(SessionNotFoundError):
            await sessions.consume_oauth_session("nonexistent")

    @pytest.mark.asyncio
    async def test_expires_after_ttl(self, sessions: SessionRecordStore, clock) -> None:
        """Test an OAuth session is readable before its TTL and gone after."""
        session_id = await sessions.create_oauth_session("state", "verifier", "/", ttl=600)
        clock.advance(599)
        other_id = await sessions.create_oauth_session("state", "verifier", "/", ttl=600)

        clock.advance(1)

        with pytest.raises(SessionNotFoundError):
            await sessions.consume_oauth_session(session_id)
        assert (await sessions.consume_oauth_session(other_id)).state == "state"

    @pytest.mark.asyncio
    async def test_default_ttl(self, kv: InMemoryKeyValueStore, clock) -> None:
        """Test the store-wide OAuth TTL is applied when none is given."""
        sessions = SessionRecordStore(kv, oauth_session_ttl=5)
        session_id = await sessions.create_oauth_session("state", "verifier", "/")

        clock.advance(5)

        with pytest.raises(SessionNotFoundError):
            await sessions.consume_oauth_session(session_id)

    @pytest.mark.asyncio
    async def test_unique_ids(self, sessions: SessionRecordStore) -> None:
        """Test every OAuth session gets a fresh id."""
        ids = {await sessions.create_oauth_session("s", "v", "/") for _ in range(50)}
        assert len(ids) == 50

    @pytest.mark.asyncio
    async def test_malformed_record(self, kv: InMemoryKeyValueStore) -> None:
        """Test a corrupt record surfaces as StorageError."""
        await kv.set((OAUTH_SESSIONS_PREFIX, "bad"), {"state": "s"})
        sessions = SessionRecordStore(kv)

        with pytest.raises(StorageError, match="Malformed OAuth session"):
            await sessions.consume_oauth_session("bad")


class TestSiteSessions:
    """Tests for site session records."""

    @pytest.mark.asyncio
    async def test_create_and_get(self, sessions: SessionRecordStore) -> None:
        """Test storing and retrieving a site session."""
        tokens = create_test_tokens()
        session_id = await sessions.create_site_session(
            SiteSession(tokens=tokens, data={"login": "octocat"})
        )

        session = await sessions.get_site_session(session_id)

        assert session is not None
        assert session.tokens is not None
        assert session.tokens.access_token == tokens.access_token
        assert session.tokens.refresh_token == tokens.refresh_token
        assert session.data == {"login": "octocat"}

    @pytest.mark.asyncio
    async def test_create_empty(self, sessions: SessionRecordStore) -> None:
        """Test a site session without payload."""
        session_id = await sessions.create_site_session()
        session = await sessions.get_site_session(session_id)

        assert session is not None
        assert session.tokens is None
        assert session.data is None

    @pytest.mark.asyncio
    async def test_get_missing(self, sessions: SessionRecordStore) -> None:
        """Test missing site sessions read as None."""
        assert await sessions.get_site_session("nonexistent") is None

    @pytest.mark.asyncio
    async def test_delete(self, sessions: SessionRecordStore) -> None:
        """Test deleting a site session, twice."""
        session_id = await sessions.create_site_session()
        await sessions.delete_site_session(session_id)
        await sessions.delete_site_session(session_id)

        assert await sessions.get_site_session(session_id) is None

    @pytest.mark.asyncio
    async def test_expires_after_ttl(self, sessions: SessionRecordStore, clock) -> None:
        """Test a site session disappears after its TTL."""
        session_id = await sessions.create_site_session(ttl=60)

        clock.advance(59)
        assert await sessions.get_site_session(session_id) is not None

        clock.advance(1)
        assert await sessions.get_site_session(session_id) is None

    @pytest.mark.asyncio
    async def test_set_overwrites(self, sessions: SessionRecordStore) -> None:
        """Test set_site_session replaces the record."""
        session_id = await sessions.create_site_session(SiteSession(data=1))
        await sessions.set_site_session(session_id, SiteSession(data=2))

        session = await sessions.get_site_session(session_id)
        assert session is not None
        assert session.data == 2


class TestNamespaces:
    """Tests for record namespacing and maintenance."""

    @pytest.mark.asyncio
    async def test_namespaces_are_disjoint(
        self, sessions: SessionRecordStore, kv: InMemoryKeyValueStore
    ) -> None:
        """Test an OAuth id never resolves as a site session and vice versa."""
        oauth_id = await sessions.create_oauth_session("s", "v", "/")
        site_id = await sessions.create_site_session()

        assert await kv.get((SITE_SESSIONS_PREFIX, oauth_id)) is None
        assert await sessions.get_site_session(oauth_id) is None
        with pytest.raises(SessionNotFoundError):
            await sessions.consume_oauth_session(site_id)

    @pytest.mark.asyncio
    async def test_clear(self, sessions: SessionRecordStore, kv: InMemoryKeyValueStore) -> None:
        """Test clear removes both record families and nothing else."""
        await sessions.create_oauth_session("s", "v", "/")
        await sessions.create_site_session()
        await sessions.create_site_session()
        await kv.set(("other", "1"), "keep")

        assert await sessions.clear() == 3
        assert len(kv) == 1
        assert await kv.get(("other", "1")) == "keep"


class TestRecordSerialization:
    """Tests for record (de)serialization."""

    def test_site_session_round_trip_keeps_expiry(self) -> None:
        """Test token expiry survives storage as an absolute timestamp."""
        tokens = create_test_tokens()
        restored = SiteSession.from_dict(SiteSession(tokens=tokens).to_dict())

        assert restored.tokens is not None
        assert restored.tokens.expires_at is not None
        assert tokens.expires_at is not None
        assert abs((restored.tokens.expires_at - tokens.expires_at).total_seconds()) < 0.001

    def test_oauth_session_default_success_url(self) -> None:
        """Test a missing success URL falls back to the root path."""
        session = OAuthSession.from_dict({"state": "s", "code_verifier": "v"})
        assert session.success_url == "/"
