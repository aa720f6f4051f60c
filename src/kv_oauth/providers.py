"""Pre-defined OAuth configurations for well-known providers.

Each constructor reads the client credentials from
``<PROVIDER>_CLIENT_ID`` and ``<PROVIDER>_CLIENT_SECRET``.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass

from kv_oauth.config import OAuthConfig, get_required_env

Scope = str | Sequence[str] | None


@dataclass(frozen=True)
class ProviderEndpoints:
    """Where a provider lives and which environment variables name its client."""

    env_prefix: str
    authorization_endpoint_uri: str
    token_uri: str


def _okta_endpoints() -> ProviderEndpoints:
    base_url = f"https://{get_required_env('OKTA_DOMAIN')}/oauth2"
    return ProviderEndpoints("OKTA", f"{base_url}/v1/authorize", f"{base_url}/v1/token")


_ENDPOINTS: dict[str, Callable[[], ProviderEndpoints]] = {
    "github": lambda: ProviderEndpoints(
        "GITHUB",
        "https://github.com/login/oauth/authorize",
        "https://github.com/login/oauth/access_token",
    ),
    "gitlab": lambda: ProviderEndpoints(
        "GITLAB",
        "https://gitlab.com/oauth/authorize",
        "https://gitlab.com/oauth/token",
    ),
    "google": lambda: ProviderEndpoints(
        "GOOGLE",
        "https://accounts.google.com/o/oauth2/v2/auth",
        "https://oauth2.googleapis.com/token",
    ),
    "discord": lambda: ProviderEndpoints(
        "DISCORD",
        "https://discord.com/oauth2/authorize",
        "https://discord.com/api/oauth2/token",
    ),
    "okta": _okta_endpoints,
}

PROVIDER_NAMES = tuple(sorted(_ENDPOINTS))


def _join_scope(scope: Scope) -> str | None:
    if scope is None or isinstance(scope, str):
        return scope
    return " ".join(scope)


def get_provider_endpoints(name: str) -> ProviderEndpoints:
    """Return the endpoints of a named provider.

    Raises:
        ValueError: If the provider is unknown
        MissingConfigError: If the provider needs an unset environment
            variable to locate its endpoints (Okta)
    """
    try:
        factory = _ENDPOINTS[name.lower()]
    except KeyError:
        msg = f"Unknown OAuth provider: {name} (expected one of: {', '.join(PROVIDER_NAMES)})"
        raise ValueError(msg) from None
    return factory()


def get_provider_config(
    name: str,
    redirect_uri: str | None = None,
    scope: Scope = None,
) -> OAuthConfig:
    """Look up a provider by name and build its configuration.

    Args:
        name: Provider name, case-insensitive
        redirect_uri: Registered callback URI
        scope: Default scopes

    Returns:
        OAuthConfig for the provider

    Raises:
        ValueError: If the provider is unknown
        MissingConfigError: If a provider environment variable is not set
    """
    endpoints = get_provider_endpoints(name)
    return OAuthConfig(
        client_id=get_required_env(f"{endpoints.env_prefix}_CLIENT_ID"),
        client_secret=get_required_env(f"{endpoints.env_prefix}_CLIENT_SECRET"),
        authorization_endpoint_uri=endpoints.authorization_endpoint_uri,
        token_uri=endpoints.token_uri,
        redirect_uri=redirect_uri,
        scope=_join_scope(scope),
    )


def create_github_oauth_config(
    redirect_uri: str | None = None, scope: Scope = None
) -> OAuthConfig:
    """GitHub OAuth App configuration.

    See https://docs.github.com/en/apps/oauth-apps/building-oauth-apps/authorizing-oauth-apps
    """
    return get_provider_config("github", redirect_uri, scope)


def create_gitlab_oauth_config(
    redirect_uri: str | None = None, scope: Scope = None
) -> OAuthConfig:
    """GitLab.com OAuth application configuration."""
    return get_provider_config("gitlab", redirect_uri, scope)


def create_google_oauth_config(
    redirect_uri: str | None = None, scope: Scope = None
) -> OAuthConfig:
    """Google OAuth 2.0 configuration.

    Google requires both a redirect URI and at least one scope.
    """
    return get_provider_config("google", redirect_uri, scope)


def create_discord_oauth_config(
    redirect_uri: str | None = None, scope: Scope = None
) -> OAuthConfig:
    return get_provider_config("discord", redirect_uri, scope)


def create_okta_oauth_config(
    redirect_uri: str | None = None, scope: Scope = None
) -> OAuthConfig:
    """Okta configuration for the org given by ``OKTA_DOMAIN``."""
    return get_provider_config("okta", redirect_uri, scope)
