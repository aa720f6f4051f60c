"""Mapping between request cookies and session identifiers.

Cookie security attributes are decided from the request URL scheme
only. ``X-Forwarded-Proto`` and similar headers are never consulted.

See https://web.dev/first-party-cookie-recipes/#the-good-first-party-cookie-recipe
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Literal
from urllib.parse import urlsplit

from kv_oauth.config import DEFAULT_OAUTH_SESSION_TTL, DEFAULT_SITE_SESSION_TTL

if TYPE_CHECKING:
    from starlette.requests import Request
    from starlette.responses import Response

OAUTH_COOKIE_NAME = "oauth-session"
SITE_COOKIE_NAME = "site-session"

SECURE_PREFIX = "__Host-"

COOKIE_PATH = "/"
COOKIE_SAME_SITE: Literal["lax"] = "lax"

OAUTH_COOKIE_MAX_AGE = DEFAULT_OAUTH_SESSION_TTL
SITE_COOKIE_MAX_AGE = DEFAULT_SITE_SESSION_TTL

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


@dataclass(frozen=True)
class Cookie:
    """A cookie to be written with one ``Set-Cookie`` header."""

    name: str
    value: str
    path: str = COOKIE_PATH
    domain: str | None = None
    max_age: int | None = None
    expires: datetime | None = None
    secure: bool = False
    http_only: bool = True
    same_site: Literal["lax", "strict", "none"] = COOKIE_SAME_SITE


@dataclass(frozen=True)
class CookieOptions:
    """Caller overrides for the site cookie.

    Overrides always win over the computed defaults. The same options
    must be used when setting, reading and deleting a cookie, otherwise
    the browser will not match them up.

    Browsers reject ``__Host-`` cookies that carry a ``Domain``, so a
    ``domain`` override without a ``name`` uses the unprefixed base name
    on HTTPS too. The ``Secure`` flag still follows the request scheme.
    """

    name: str | None = None
    domain: str | None = None
    path: str | None = None
    max_age: int | None = None


def is_https(url: str) -> bool:
    """Check whether a URL is of a secure (HTTPS) origin."""
    return urlsplit(url).scheme == "https"


def cookie_name(base: str, is_secure_origin: bool) -> str:
    """Prefix ``base`` with ``__Host-`` for secure origins."""
    return SECURE_PREFIX + base if is_secure_origin else base


def resolve_cookie_name(
    base: str, is_secure_origin: bool, overrides: CookieOptions | None = None
) -> str:
    """Name a cookie the way :func:`build_set_cookie` will write it."""
    if overrides is not None:
        if overrides.name:
            return overrides.name
        if overrides.domain:
            return base
    return cookie_name(base, is_secure_origin)


def read_session_id(request: Request, base: str, name: str | None = None) -> str | None:
    """Read a session identifier from the request's cookies.

    Args:
        request: Incoming request
        base: Unprefixed cookie name
        name: Explicit cookie name overriding the computed one

    Returns:
        Cookie value, or None if the cookie is absent or empty
    """
    name = name or cookie_name(base, is_https(str(request.url)))
    return request.cookies.get(name) or None


def build_set_cookie(
    base: str,
    value: str,
    is_secure_origin: bool,
    max_age: int | None = None,
    overrides: CookieOptions | None = None,
) -> Cookie:
    """Build a session cookie.

    Args:
        base: Unprefixed cookie name
        value: Session identifier
        is_secure_origin: Whether the request came over HTTPS
        max_age: Lifetime in seconds
        overrides: Caller overrides (name, domain, path, max_age)

    Returns:
        Cookie with ``Path=/``, ``HttpOnly`` and ``SameSite=Lax`` unless overridden
    """
    overrides = overrides or CookieOptions()
    return Cookie(
        name=resolve_cookie_name(base, is_secure_origin, overrides),
        value=value,
        path=overrides.path or COOKIE_PATH,
        domain=overrides.domain,
        max_age=overrides.max_age if overrides.max_age is not None else max_age,
        secure=is_secure_origin,
        http_only=True,
        same_site=COOKIE_SAME_SITE,
    )


def build_delete_cookie(
    base: str,
    is_secure_origin: bool,
    overrides: CookieOptions | None = None,
) -> Cookie:
    """Build a cookie that expires the one set by :func:`build_set_cookie`.

    Name, path and domain match the set-time attributes.
    """
    overrides = overrides or CookieOptions()
    return Cookie(
        name=resolve_cookie_name(base, is_secure_origin, overrides),
        value="",
        path=overrides.path or COOKIE_PATH,
        domain=overrides.domain,
        max_age=0,
        expires=EPOCH,
        secure=is_secure_origin,
        http_only=True,
        same_site=COOKIE_SAME_SITE,
    )


def apply_cookie(response: Response, cookie: Cookie) -> None:
    """Append a ``Set-Cookie`` header for ``cookie`` to the response."""
    response.set_cookie(
        key=cookie.name,
        value=cookie.value,
        max_age=cookie.max_age,
        expires=cookie.expires,
        path=cookie.path,
        domain=cookie.domain,
        secure=cookie.secure,
        httponly=cookie.http_only,
        samesite=cookie.same_site,
    )
