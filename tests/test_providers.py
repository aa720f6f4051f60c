"""Tests for pre-defined provider configurations."""

from __future__ import annotations

import pytest

from kv_oauth.errors import MissingConfigError
from kv_oauth.providers import (
    PROVIDER_NAMES,
    create_discord_oauth_config,
    create_github_oauth_config,
    create_gitlab_oauth_config,
    create_google_oauth_config,
    create_okta_oauth_config,
    get_provider_config,
)


@pytest.fixture
def provider_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Set credentials for every provider."""
    for name in PROVIDER_NAMES:
        monkeypatch.setenv(f"{name.upper()}_CLIENT_ID", f"{name}-id")
        monkeypatch.setenv(f"{name.upper()}_CLIENT_SECRET", f"{name}-secret")
    monkeypatch.setenv("OKTA_DOMAIN", "example.okta.com")


@pytest.mark.usefixtures("provider_env")
class TestProviderConstructors:
    """Tests for the per-provider constructors."""

    def test_github(self) -> None:
        """Test GitHub endpoints and credentials."""
        config = create_github_oauth_config()

        assert config.client_id == "github-id"
        assert config.client_secret is not None
        assert config.client_secret.get_secret_value() == "github-secret"
        assert config.authorization_endpoint_uri == "https://github.com/login/oauth/authorize"
        assert config.token_uri == "https://github.com/login/oauth/access_token"
        assert config.redirect_uri is None

    def test_gitlab(self) -> None:
        config = create_gitlab_oauth_config("https://x.com/callback", ["read_user", "openid"])

        assert config.token_uri == "https://gitlab.com/oauth/token"
        assert config.redirect_uri == "https://x.com/callback"
        assert config.scope == "read_user openid"

    def test_google(self) -> None:
        config = create_google_oauth_config("https://x.com/callback", "openid email")

        assert config.authorization_endpoint_uri == "https://accounts.google.com/o/oauth2/v2/auth"
        assert config.token_uri == "https://oauth2.googleapis.com/token"
        assert config.scope == "openid email"

    def test_discord(self) -> None:
        config = create_discord_oauth_config("https://x.com/callback", "identify")
        assert config.token_uri == "https://discord.com/api/oauth2/token"

    def test_okta_uses_domain(self) -> None:
        """Test Okta endpoints are built from OKTA_DOMAIN."""
        config = create_okta_oauth_config("https://x.com/callback", "openid")

        assert config.authorization_endpoint_uri == (
            "https://example.okta.com/oauth2/v1/authorize"
        )
        assert config.token_uri == "https://example.okta.com/oauth2/v1/token"


class TestGetProviderConfig:
    """Tests for lookup by name."""

    @pytest.mark.usefixtures("provider_env")
    def test_case_insensitive(self) -> None:
        """Test provider names are case-insensitive."""
        assert get_provider_config("GitHub").client_id == "github-id"

    def test_unknown_provider(self) -> None:
        """Test unknown names list the known providers."""
        with pytest.raises(ValueError, match="Unknown OAuth provider: nope"):
            get_provider_config("nope")

    def test_missing_credentials(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test a missing client id names the variable."""
        monkeypatch.delenv("DISCORD_CLIENT_ID", raising=False)

        with pytest.raises(MissingConfigError, match="DISCORD_CLIENT_ID"):
            create_discord_oauth_config()

    def test_okta_requires_domain(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test Okta cannot be located without its domain."""
        monkeypatch.delenv("OKTA_DOMAIN", raising=False)

        with pytest.raises(MissingConfigError, match="OKTA_DOMAIN"):
            create_okta_oauth_config()
