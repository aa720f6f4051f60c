"""Sign-in, callback and sign-out orchestration.

A sign-in attempt moves INITIATED -> PENDING_CALLBACK -> COMPLETED and a
site session moves SIGNED_IN -> SIGNED_OUT. Nothing is retried: any
failure aborts the attempt and the caller decides whether to start a
new sign-in.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any
from urllib.parse import urlencode, urlsplit

import httpx

from kv_oauth.cookies import (
    OAUTH_COOKIE_NAME,
    SITE_COOKIE_NAME,
    CookieOptions,
    apply_cookie,
    build_delete_cookie,
    build_set_cookie,
    cookie_name,
    is_https,
    read_session_id,
    resolve_cookie_name,
)
from kv_oauth.errors import MissingCookieError, ProtocolError
from kv_oauth.logging_config import get_logger, short_id
from kv_oauth.oauth.client import DEFAULT_TIMEOUT, AuthorizationCodeGrant, Tokens
from kv_oauth.redirects import redirect, resolve_success_url
from kv_oauth.security import generate_secure_token
from kv_oauth.store.sessions import SiteSession

if TYPE_CHECKING:
    from starlette.requests import Request
    from starlette.responses import Response

    from kv_oauth.config import OAuthConfig
    from kv_oauth.store.sessions import SessionRecordStore

logger = get_logger(__name__)

SessionDataGetter = Callable[[Tokens], Awaitable[Any]]
GrantFactory = Callable[["OAuthConfig", httpx.AsyncClient], AuthorizationCodeGrant]


class FlowState(str, Enum):
    """States of one sign-in attempt."""

    INITIATED = "initiated"
    PENDING_CALLBACK = "pending_callback"
    COMPLETED = "completed"


class SessionState(str, Enum):
    """States of a site session."""

    SIGNED_IN = "signed_in"
    SIGNED_OUT = "signed_out"


@dataclass(frozen=True)
class SignInOptions:
    """Options for :meth:`AuthorizationFlowController.sign_in`.

    Attributes:
        url_params: Extra parameters appended to the authorization URI
        scope: Scope override for this sign-in
    """

    url_params: Mapping[str, str] | None = None
    scope: str | None = None


@dataclass(frozen=True)
class CallbackOptions:
    """Options for :meth:`AuthorizationFlowController.handle_callback`.

    Attributes:
        cookie_options: Site cookie overrides; must match those used to
            read and delete the cookie
        session_data_getter: Coroutine turning the issued tokens into
            application data stored with the site session
    """

    cookie_options: CookieOptions | None = None
    session_data_getter: SessionDataGetter | None = None


@dataclass(frozen=True)
class SignOutOptions:
    """Options for :meth:`AuthorizationFlowController.sign_out`."""

    cookie_options: CookieOptions | None = None


@dataclass(frozen=True)
class GetSessionOptions:
    """Options for reading the site session from a request."""

    cookie_name: str | None = None


@dataclass
class CallbackResult:
    """Outcome of a completed callback."""

    response: Response
    session_id: str
    tokens: Tokens


def _default_grant_factory(
    oauth_config: OAuthConfig, http_client: httpx.AsyncClient
) -> AuthorizationCodeGrant:
    return AuthorizationCodeGrant(oauth_config, http_client=http_client)


def append_url_params(uri: str, params: Mapping[str, str] | None) -> str:
    """Append query parameters to ``uri`` without touching existing ones."""
    if not params:
        return uri
    separator = "&" if urlsplit(uri).query else "?"
    return f"{uri}{separator}{urlencode(list(params.items()))}"


class AuthorizationFlowController:
    """Drives the Authorization Code flow on top of a SessionRecordStore."""

    def __init__(
        self,
        sessions: SessionRecordStore,
        http_client: httpx.AsyncClient | None = None,
        grant_factory: GrantFactory | None = None,
    ) -> None:
        """Initialize the controller.

        Args:
            sessions: Session record store over the shared key-value store
            http_client: Optional HTTP client for token endpoint calls
            grant_factory: Builds the grant client for a provider config
        """
        self.sessions = sessions
        self._http_client = http_client
        self._owns_client = http_client is None
        self._grant_factory = grant_factory or _default_grant_factory

    def _grant(self, oauth_config: OAuthConfig) -> AuthorizationCodeGrant:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=DEFAULT_TIMEOUT)
        return self._grant_factory(oauth_config, self._http_client)

    async def close(self) -> None:
        """Close the HTTP client if we own it."""
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def sign_in(
        self,
        request: Request,
        oauth_config: OAuthConfig,
        options: SignInOptions | None = None,
    ) -> Response:
        """Start a sign-in and redirect the browser to the provider.

        Writes one OAuth session record and sets the OAuth cookie. The
        success URL is resolved from this request, not the callback.

        Args:
            request: Incoming sign-in request
            oauth_config: Provider configuration
            options: Extra URL parameters and scope override

        Returns:
            302 response to the authorization URI
        """
        options = options or SignInOptions()

        state = generate_secure_token()
        authorization = self._grant(oauth_config).get_authorization_uri(
            state, scope=options.scope
        )
        uri = append_url_params(authorization.uri, options.url_params)

        success_url = resolve_success_url(request)
        ttl = self.sessions.oauth_session_ttl
        oauth_session_id = await self.sessions.create_oauth_session(
            state, authorization.code_verifier, success_url, ttl=ttl
        )

        response = redirect(uri)
        apply_cookie(
            response,
            build_set_cookie(
                OAUTH_COOKIE_NAME,
                oauth_session_id,
                is_https(str(request.url)),
                max_age=int(ttl),
            ),
        )
        logger.info(
            "Sign-in %s for OAuth session %s",
            FlowState.PENDING_CALLBACK.value,
            short_id(oauth_session_id),
        )
        return response

    async def handle_callback(
        self,
        request: Request,
        oauth_config: OAuthConfig,
        options: CallbackOptions | None = None,
    ) -> CallbackResult:
        """Complete a sign-in from the provider's callback request.

        The OAuth session is consumed before the token exchange and is
        not restored if the exchange fails, so a failed callback always
        needs a fresh sign-in.

        Args:
            request: Callback request; its URL must match the redirect URI
            oauth_config: Provider configuration
            options: Site cookie overrides and session data getter

        Returns:
            CallbackResult with the redirect response, site session id and tokens

        Raises:
            MissingCookieError: If the OAuth cookie is absent
            SessionNotFoundError: If the OAuth session is expired, consumed or unknown
            ProtocolError: If the token exchange fails
            StorageError: If the store is unavailable
        """
        options = options or CallbackOptions()
        request_url = str(request.url)
        secure = is_https(request_url)

        oauth_session_id = read_session_id(request, OAUTH_COOKIE_NAME)
        if oauth_session_id is None:
            raise MissingCookieError(cookie_name(OAUTH_COOKIE_NAME, secure))

        oauth_session = await self.sessions.consume_oauth_session(oauth_session_id)

        tokens = await self._grant(oauth_config).get_token(
            request_url,
            state=oauth_session.state,
            code_verifier=oauth_session.code_verifier,
        )

        data = None
        if options.session_data_getter is not None:
            data = await options.session_data_getter(tokens)

        cookie_options = options.cookie_options or CookieOptions()
        max_age = (
            cookie_options.max_age
            if cookie_options.max_age is not None
            else int(self.sessions.site_session_ttl)
        )
        # the response exists before the site session is written
        response = redirect(oauth_session.success_url)
        session_id = await self.sessions.create_site_session(
            SiteSession(tokens=tokens, data=data), ttl=max_age
        )
        apply_cookie(
            response,
            build_set_cookie(
                SITE_COOKIE_NAME,
                session_id,
                secure,
                max_age=max_age,
                overrides=cookie_options,
            ),
        )
        logger.info(
            "Sign-in %s: OAuth session %s -> site session %s",
            FlowState.COMPLETED.value,
            short_id(oauth_session_id),
            short_id(session_id),
        )
        return CallbackResult(response=response, session_id=session_id, tokens=tokens)

    async def sign_out(
        self,
        request: Request,
        options: SignOutOptions | None = None,
    ) -> Response:
        """Delete the site session and expire its cookie.

        Without a site cookie this is a plain redirect and the store is
        not touched.
        """
        cookie_options = (options or SignOutOptions()).cookie_options
        secure = is_https(str(request.url))
        response = redirect(resolve_success_url(request))

        session_id = read_session_id(
            request,
            SITE_COOKIE_NAME,
            name=resolve_cookie_name(SITE_COOKIE_NAME, secure, cookie_options),
        )
        if session_id is None:
            return response

        await self.sessions.delete_site_session(session_id)
        apply_cookie(
            response,
            build_delete_cookie(SITE_COOKIE_NAME, secure, cookie_options),
        )
        logger.info("Site session %s %s", short_id(session_id), SessionState.SIGNED_OUT.value)
        return response

    async def _live_session(
        self, request: Request, options: GetSessionOptions | None
    ) -> tuple[str, SiteSession] | None:
        options = options or GetSessionOptions()
        session_id = read_session_id(request, SITE_COOKIE_NAME, name=options.cookie_name)
        if session_id is None:
            return None
        session = await self.sessions.get_site_session(session_id)
        if session is None:
            logger.debug("Stale site cookie %s", short_id(session_id))
            return None
        return session_id, session

    async def get_session_id(
        self,
        request: Request,
        options: GetSessionOptions | None = None,
    ) -> str | None:
        """Return the site session id if the request is signed in.

        A cookie whose record has expired or been deleted yields None.
        """
        live = await self._live_session(request, options)
        return live[0] if live else None

    async def get_session_data(
        self,
        request: Request,
        options: GetSessionOptions | None = None,
    ) -> Any | None:
        """Return the application data stored with the request's site session."""
        live = await self._live_session(request, options)
        return live[1].data if live else None

    async def get_session_access_token(
        self,
        session_id: str,
        oauth_config: OAuthConfig,
    ) -> str | None:
        """Return a usable access token for a site session.

        Tokens close to expiry are refreshed and written back. None means
        the client has to sign in again.

        Raises:
            ProtocolError: If the refresh fails for a reason other than
                an expired refresh token
        """
        session = await self.sessions.get_site_session(session_id)
        if session is None or session.tokens is None:
            return None

        tokens = session.tokens
        if tokens.refresh_token is None or not tokens.needs_refresh():
            return tokens.access_token

        try:
            new_tokens = await self._grant(oauth_config).refresh(tokens.refresh_token)
        except ProtocolError as e:
            if e.error == "invalid_grant":
                logger.info("Refresh token rejected for site session %s", short_id(session_id))
                return None
            raise

        session.tokens = new_tokens
        age = (datetime.now(UTC) - session.created_at).total_seconds()
        remaining = max(1.0, self.sessions.site_session_ttl - age)
        await self.sessions.set_site_session(session_id, session, ttl=remaining)
        return new_tokens.access_token


class OAuthHelpers:
    """Controller operations bound to one provider and one set of cookie options."""

    def __init__(
        self,
        controller: AuthorizationFlowController,
        oauth_config: OAuthConfig,
        cookie_options: CookieOptions | None = None,
    ) -> None:
        self.controller = controller
        self.oauth_config = oauth_config
        self.cookie_options = cookie_options

    async def sign_in(self, request: Request, options: SignInOptions | None = None) -> Response:
        return await self.controller.sign_in(request, self.oauth_config, options)

    async def handle_callback(
        self,
        request: Request,
        session_data_getter: SessionDataGetter | None = None,
    ) -> CallbackResult:
        return await self.controller.handle_callback(
            request,
            self.oauth_config,
            CallbackOptions(
                cookie_options=self.cookie_options,
                session_data_getter=session_data_getter,
            ),
        )

    async def sign_out(self, request: Request) -> Response:
        return await self.controller.sign_out(
            request, SignOutOptions(cookie_options=self.cookie_options)
        )

    def _session_options(self) -> GetSessionOptions:
        options = self.cookie_options
        if options is None or not (options.name or options.domain):
            return GetSessionOptions()
        # name and domain overrides never depend on the request scheme
        return GetSessionOptions(
            cookie_name=resolve_cookie_name(SITE_COOKIE_NAME, False, options)
        )

    async def get_session_id(self, request: Request) -> str | None:
        return await self.controller.get_session_id(request, self._session_options())

    async def get_session_data(self, request: Request) -> Any | None:
        return await self.controller.get_session_data(request, self._session_options())

    async def get_session_access_token(self, session_id: str) -> str | None:
        return await self.controller.get_session_access_token(session_id, self.oauth_config)


def create_helpers(
    controller: AuthorizationFlowController,
    oauth_config: OAuthConfig,
    cookie_options: CookieOptions | None = None,
) -> OAuthHelpers:
    """Bind the controller to a provider configuration and cookie options."""
    return OAuthHelpers(controller, oauth_config, cookie_options)
