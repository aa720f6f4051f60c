"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from urllib.parse import urlsplit

import pytest
import pytest_asyncio
from starlette.requests import Request

from kv_oauth.config import Config, Environment, LogLevel, OAuthConfig
from kv_oauth.flow import AuthorizationFlowController
from kv_oauth.store.kv import InMemoryKeyValueStore
from kv_oauth.store.sessions import SessionRecordStore

TOKEN_URI = "https://auth.example.com/token"
AUTHORIZATION_URI = "https://auth.example.com/authorize"
REDIRECT_URI = "http://x.com/callback"

RequestFactory = Callable[..., Request]


class FakeClock:
    """Manually advanced clock for TTL tests."""

    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def build_request(
    url: str,
    headers: dict[str, str] | None = None,
    cookies: dict[str, str] | None = None,
) -> Request:
    """Build a GET request for ``url`` as an ASGI server would."""
    parts = urlsplit(url)
    default_port = 443 if parts.scheme == "https" else 80
    raw_headers = [(b"host", parts.netloc.encode())]
    for name, value in (headers or {}).items():
        raw_headers.append((name.lower().encode(), value.encode()))
    if cookies:
        cookie_header = "; ".join(f"{name}={value}" for name, value in cookies.items())
        raw_headers.append((b"cookie", cookie_header.encode()))

    scope = {
        "type": "http",
        "method": "GET",
        "scheme": parts.scheme,
        "server": (parts.hostname, parts.port or default_port),
        "path": parts.path or "/",
        "root_path": "",
        "query_string": parts.query.encode(),
        "headers": raw_headers,
    }
    return Request(scope)


@pytest.fixture
def make_request() -> RequestFactory:
    """Factory for Starlette requests."""
    return build_request


@pytest.fixture
def default_config() -> Config:
    """Create a default configuration for testing."""
    return Config()


@pytest.fixture
def dev_config() -> Config:
    """Create a development configuration for testing."""
    return Config(
        app_name="Test KV OAuth",
        log_level=LogLevel.DEBUG,
        environment=Environment.DEV,
        host="127.0.0.1",
        port=8080,
    )


@pytest.fixture
def app_config() -> Config:
    """Create a configuration with a generic OAuth provider for testing."""
    return Config(
        app_name="OAuth Test App",
        oauth_authorization_url=AUTHORIZATION_URI,
        oauth_token_url=TOKEN_URI,
        oauth_client_id="test-client-id",
        oauth_client_secret="test-client-secret",
        oauth_redirect_uri=REDIRECT_URI,
        oauth_scope="read write",
    )


@pytest.fixture
def oauth_config() -> OAuthConfig:
    """Create a provider configuration for testing."""
    return OAuthConfig(
        client_id="test-client",
        client_secret="test-secret",
        authorization_endpoint_uri=AUTHORIZATION_URI,
        token_uri=TOKEN_URI,
        redirect_uri=REDIRECT_URI,
        scope="read write",
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def kv(clock: FakeClock) -> InMemoryKeyValueStore:
    """In-memory store driven by the fake clock."""
    return InMemoryKeyValueStore(clock=clock)


@pytest.fixture
def sessions(kv: InMemoryKeyValueStore) -> SessionRecordStore:
    return SessionRecordStore(kv)


@pytest_asyncio.fixture
async def controller(
    sessions: SessionRecordStore,
) -> AsyncIterator[AuthorizationFlowController]:
    """Flow controller over the in-memory store."""
    flow_controller = AuthorizationFlowController(sessions)
    yield flow_controller
    await flow_controller.close()
