"""Starlette application exposing the sign-in flow over HTTP.

Routes:
    /signin    redirect to the provider
    /callback  complete the sign-in and set the site cookie
    /signout   delete the site session
    /          report whether the request is signed in
    /health    liveness check
"""

from __future__ import annotations

import contextlib
from typing import TYPE_CHECKING

from starlette.applications import Starlette
from starlette.responses import JSONResponse
from starlette.routing import Route

from kv_oauth.cookies import CookieOptions
from kv_oauth.errors import MissingCookieError, ProtocolError, SessionNotFoundError, StorageError
from kv_oauth.flow import AuthorizationFlowController, create_helpers
from kv_oauth.logging_config import get_logger
from kv_oauth.store.kv import create_kv_store
from kv_oauth.store.sessions import SessionRecordStore

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from starlette.requests import Request
    from starlette.responses import Response

    from kv_oauth.config import Config, OAuthConfig
    from kv_oauth.store.kv import KeyValueStore

logger = get_logger(__name__)


def _cookie_options(config: Config) -> CookieOptions | None:
    if not (config.cookie_name or config.cookie_domain or config.cookie_path):
        return None
    return CookieOptions(
        name=config.cookie_name,
        domain=config.cookie_domain,
        path=config.cookie_path,
    )


async def _client_error(request: Request, exc: Exception) -> Response:
    logger.warning("%s %s rejected: %s", request.method, request.url.path, exc)
    body: dict[str, str] = {"error": str(exc)}
    if isinstance(exc, ProtocolError) and exc.error:
        body["oauth_error"] = exc.error
    return JSONResponse(body, status_code=400)


async def _storage_error(request: Request, exc: Exception) -> Response:
    logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse({"error": "Session store unavailable"}, status_code=503)


def create_app(
    config: Config,
    store: KeyValueStore | None = None,
    oauth_config: OAuthConfig | None = None,
) -> Starlette:
    """Create the Starlette application.

    Args:
        config: Application configuration
        store: Key-value store; built from ``config`` if omitted
        oauth_config: Provider configuration; built from ``config`` if omitted

    Returns:
        Configured Starlette application

    Raises:
        MissingConfigError: If no provider configuration can be built
    """
    kv = store if store is not None else create_kv_store(config)
    oauth_config = oauth_config or config.oauth_config()

    sessions = SessionRecordStore(
        kv,
        oauth_session_ttl=config.oauth_session_ttl,
        site_session_ttl=config.site_session_ttl,
    )
    controller = AuthorizationFlowController(sessions)
    helpers = create_helpers(controller, oauth_config, _cookie_options(config))

    async def signin(request: Request) -> Response:
        return await helpers.sign_in(request)

    async def callback(request: Request) -> Response:
        result = await helpers.handle_callback(request)
        return result.response

    async def signout(request: Request) -> Response:
        return await helpers.sign_out(request)

    async def index(request: Request) -> JSONResponse:
        session_id = await helpers.get_session_id(request)
        return JSONResponse({"signed_in": session_id is not None})

    async def health_check(request: Request) -> JSONResponse:
        """Health check endpoint."""
        return JSONResponse({
            "status": "ok",
            "app_name": config.app_name,
            "environment": config.environment.value,
        })

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        await sessions.open()
        logger.info("Session store opened (%s)", config.store_backend.value)
        try:
            yield
        finally:
            await controller.close()
            await sessions.close()
            logger.info("Session store closed")

    routes = [
        Route("/signin", signin, methods=["GET"]),
        Route("/callback", callback, methods=["GET"]),
        Route("/signout", signout, methods=["GET"]),
        Route("/", index, methods=["GET"]),
        Route("/health", health_check, methods=["GET"]),
    ]

    app = Starlette(
        routes=routes,
        exception_handlers={
            MissingCookieError: _client_error,
            SessionNotFoundError: _client_error,
            ProtocolError: _client_error,
            StorageError: _storage_error,
        },
        lifespan=lifespan,
    )
    app.state.sessions = sessions
    app.state.controller = controller
    return app


async def run_app(app: Starlette, host: str, port: int, log_level: str = "info") -> None:
    """Run the application using uvicorn.

    Args:
        app: Starlette ASGI application
        host: Host to bind to
        port: Port to bind to
        log_level: uvicorn log level
    """
    import uvicorn

    logger.info("Starting KV OAuth on %s:%d", host, port)

    server_config = uvicorn.Config(
        app=app,
        host=host,
        port=port,
        log_level=log_level,
    )
    server = uvicorn.Server(server_config)
    await server.serve()
