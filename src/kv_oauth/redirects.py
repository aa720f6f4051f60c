"""Redirect responses and the success URL policy."""

from __future__ import annotations

from typing import TYPE_CHECKING
from urllib.parse import quote, urlsplit

from starlette.responses import Response

if TYPE_CHECKING:
    from starlette.requests import Request

SUCCESS_URL_PARAM = "success_url"
DEFAULT_SUCCESS_URL = "/"

LOCATION_SAFE_CHARS = ":/%#?=@[]!$&'()*+,;~"


def redirect(location: str, status_code: int = 302) -> Response:
    """Build a redirect response.

    Relative locations are kept relative. Anything outside the URL
    character set is percent-encoded as ``RedirectResponse`` does, so CR
    and LF become ``%0D`` and ``%0A`` and non-ASCII text is UTF-8 escaped.

    Args:
        location: Relative path or absolute URL
        status_code: Redirect status

    Returns:
        Empty response with a ``Location`` header
    """
    return Response(
        status_code=status_code,
        headers={"location": quote(location, safe=LOCATION_SAFE_CHARS)},
    )


def _origin(url: str) -> tuple[str, str] | None:
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        return None
    return parts.scheme.lower(), parts.netloc.lower()


def resolve_success_url(request: Request) -> str:
    """Decide where to send the browser after sign-in or sign-out.

    Precedence: the ``success_url`` query parameter, then the
    ``Referer`` header when it has the request's own origin, then ``"/"``.
    A referer from a foreign origin is never used.
    """
    success_url = request.query_params.get(SUCCESS_URL_PARAM)
    if success_url is not None:
        return success_url

    referer = request.headers.get("referer")
    if referer is not None:
        try:
            referer_origin = _origin(referer)
        except ValueError:
            referer_origin = None
        if referer_origin is not None and referer_origin == _origin(str(request.url)):
            return referer

    return DEFAULT_SUCCESS_URL
