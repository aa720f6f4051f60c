"""Configuration management for KV OAuth.

Provides configuration loading from environment variables, .env files,
and optional configuration files with proper precedence handling, plus
the ``OAuthConfig`` model consumed by the authorization code grant client.
"""

from __future__ import annotations

import contextlib
import os
from enum import Enum
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator

from kv_oauth.errors import MissingConfigError
from kv_oauth.logging_config import get_logger
from kv_oauth.security import redact

logger = get_logger(__name__)

ENV_PREFIX = "KV_OAUTH_"

# A maximum authorization code lifetime of 10 minutes is recommended
# (RFC 6749 section 4.1.2); OAuth sessions and their cookie live as long.
DEFAULT_OAUTH_SESSION_TTL = 10 * 60

# 90 days
DEFAULT_SITE_SESSION_TTL = 7776000


class ConfigError(Exception):
    """Raised when configuration validation fails."""


class LogLevel(str, Enum):
    """Supported log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class Environment(str, Enum):
    """Deployment environments."""

    LOCAL = "local"
    DEV = "dev"
    STAGE = "stage"
    PROD = "prod"


class StoreBackend(str, Enum):
    """Key-value store backends."""

    MEMORY = "memory"
    FILE = "file"
    REDIS = "redis"


class OAuthConfig(BaseModel):
    """Client configuration for one OAuth 2.0 provider."""

    client_id: str = Field(min_length=1, description="OAuth client identifier")
    client_secret: SecretStr | None = Field(default=None, description="OAuth client secret")
    authorization_endpoint_uri: str = Field(description="Provider authorization endpoint")
    token_uri: str = Field(description="Provider token endpoint")
    redirect_uri: str | None = Field(default=None, description="Registered callback URI")
    scope: str | None = Field(default=None, description="Default scopes (space-separated)")

    model_config = {"frozen": True}

    @field_validator("scope", mode="before")
    @classmethod
    def join_scope_list(cls, v: Any) -> Any:
        """Accept a list of scopes as well as a space-separated string."""
        if isinstance(v, list | tuple):
            return " ".join(str(item) for item in v)
        return v


class Config(BaseModel):
    """Main configuration model for KV OAuth.

    Configuration can be loaded from:
    - Environment variables with KV_OAUTH_ prefix
    - Optional .env file in project root
    - Optional configuration file passed via CLI
    """

    # Core settings
    app_name: str = Field(default="KV OAuth", description="Application name")
    log_level: LogLevel = Field(default=LogLevel.INFO, description="Logging level")
    environment: Environment = Field(
        default=Environment.LOCAL, description="Deployment environment"
    )

    # Server settings
    host: str = Field(default="127.0.0.1", description="Server bind host")
    port: int = Field(default=8000, ge=1, le=65535, description="Server bind port")

    # Key-value store
    store_backend: StoreBackend = Field(
        default=StoreBackend.MEMORY, description="Key-value store backend"
    )
    store_path: str | None = Field(default=None, description="Path for the file backend")
    store_encryption_key: SecretStr | None = Field(
        default=None, description="Fernet key for the file backend"
    )
    redis_url: str | None = Field(default=None, description="URL for the redis backend")

    # Session lifetimes and cookie overrides
    oauth_session_ttl: int = Field(
        default=DEFAULT_OAUTH_SESSION_TTL, ge=1, description="OAuth session TTL in seconds"
    )
    site_session_ttl: int = Field(
        default=DEFAULT_SITE_SESSION_TTL, ge=1, description="Site session TTL in seconds"
    )
    cookie_name: str | None = Field(default=None, description="Site cookie name override")
    cookie_domain: str | None = Field(default=None, description="Site cookie domain")
    cookie_path: str | None = Field(default=None, description="Site cookie path override")

    # OAuth provider
    oauth_provider: str | None = Field(
        default=None, description="Named provider (github, gitlab, google, ...)"
    )
    oauth_authorization_url: str | None = Field(
        default=None, description="OAuth authorization endpoint URL"
    )
    oauth_token_url: str | None = Field(default=None, description="OAuth token endpoint URL")
    oauth_client_id: str | None = Field(default=None, description="OAuth client identifier")
    oauth_client_secret: SecretStr | None = Field(
        default=None, description="OAuth client secret"
    )
    oauth_redirect_uri: str | None = Field(
        default=None, description="OAuth callback/redirect URI"
    )
    oauth_scope: str | None = Field(default=None, description="OAuth scopes (space-separated)")

    model_config = {
        "extra": "ignore",
        "validate_assignment": True,
    }

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: Any) -> Any:
        """Normalize log level to uppercase."""
        if isinstance(v, str):
            return v.upper()
        return v

    @field_validator("environment", "store_backend", "oauth_provider", mode="before")
    @classmethod
    def normalize_lowercase(cls, v: Any) -> Any:
        """Normalize enum-like strings to lowercase."""
        if isinstance(v, str):
            return v.lower()
        return v

    @model_validator(mode="after")
    def validate_store(self) -> Config:
        """Validate key-value store configuration."""
        if self.store_backend == StoreBackend.FILE:
            missing = [
                name
                for name, value in (
                    ("store_path", self.store_path),
                    ("store_encryption_key", self.store_encryption_key),
                )
                if not value
            ]
            if missing:
                msg = f"file store backend is missing required fields: {', '.join(missing)}"
                raise ValueError(msg)
        if self.store_backend == StoreBackend.REDIS and not self.redis_url:
            msg = "redis_url is required when store_backend is redis"
            raise ValueError(msg)
        return self

    def oauth_config(self) -> OAuthConfig:
        """Build the provider configuration.

        A named ``oauth_provider`` takes its endpoints from
        :mod:`kv_oauth.providers` and its credentials from the provider's
        environment variables unless ``oauth_client_id`` is set here.

        Returns:
            OAuthConfig for the grant client

        Raises:
            MissingConfigError: If a required value is absent
        """
        secret = (
            self.oauth_client_secret.get_secret_value() if self.oauth_client_secret else None
        )

        if self.oauth_provider:
            from kv_oauth.providers import get_provider_config, get_provider_endpoints

            if not self.oauth_client_id:
                return get_provider_config(
                    self.oauth_provider,
                    redirect_uri=self.oauth_redirect_uri,
                    scope=self.oauth_scope,
                )
            endpoints = get_provider_endpoints(self.oauth_provider)
            return OAuthConfig(
                client_id=self.oauth_client_id,
                client_secret=secret,
                authorization_endpoint_uri=endpoints.authorization_endpoint_uri,
                token_uri=endpoints.token_uri,
                redirect_uri=self.oauth_redirect_uri,
                scope=self.oauth_scope,
            )

        required_fields = [
            ("oauth_authorization_url", self.oauth_authorization_url),
            ("oauth_token_url", self.oauth_token_url),
            ("oauth_client_id", self.oauth_client_id),
        ]
        for name, value in required_fields:
            if not value:
                raise MissingConfigError(f"{ENV_PREFIX}{name.upper()}")

        return OAuthConfig(
            client_id=self.oauth_client_id or "",
            client_secret=secret,
            authorization_endpoint_uri=self.oauth_authorization_url or "",
            token_uri=self.oauth_token_url or "",
            redirect_uri=self.oauth_redirect_uri,
            scope=self.oauth_scope,
        )


def get_required_env(key: str) -> str:
    """Return an environment variable, failing if it is not set.

    Args:
        key: Environment variable name

    Returns:
        The variable's value

    Raises:
        MissingConfigError: If the variable is not set
    """
    value = os.environ.get(key)
    if value is None:
        raise MissingConfigError(key)
    return value


_INT_FIELDS = frozenset({"port", "oauth_session_ttl", "site_session_ttl"})

_SECRET_KEYS = frozenset({"oauth_client_secret", "store_encryption_key", "redis_url"})


def _env_overrides() -> dict[str, Any]:
    """Collect ``KV_OAUTH_<FIELD>`` variables for every known field."""
    found: dict[str, Any] = {}
    for name in Config.model_fields:
        raw = os.environ.get(ENV_PREFIX + name.upper())
        if raw is None:
            continue
        value: Any = raw
        if name in _INT_FIELDS:
            # left as text so validation reports the bad value
            with contextlib.suppress(ValueError):
                value = int(raw)
        found[name] = value
    return found


def _parse_json(text: str) -> Any:
    import json

    return json.loads(text)


def _parse_yaml(text: str) -> Any:
    import yaml

    return yaml.safe_load(text)


_FILE_PARSERS = {
    ".json": _parse_json,
    ".yaml": _parse_yaml,
    ".yml": _parse_yaml,
}


def _file_settings(path: str | Path) -> dict[str, Any]:
    """Read a JSON or YAML settings file into a dict."""
    path = Path(path)
    parser = _FILE_PARSERS.get(path.suffix.lower())
    if parser is None:
        msg = f"Unsupported configuration file format: {path.suffix.lower()}"
        raise ConfigError(msg)
    try:
        text = path.read_text()
    except FileNotFoundError:
        msg = f"Configuration file not found: {path}"
        raise ConfigError(msg) from None

    data = parser(text) or {}
    if not isinstance(data, dict):
        msg = f"Configuration file must contain a mapping: {path}"
        raise ConfigError(msg)
    return data


def _loggable(key: str, value: Any) -> str:
    if key in _SECRET_KEYS:
        return redact(str(value) if value else None)
    return str(value)


def load_config(
    path: str | Path | None = None,
    cli_args: dict[str, Any] | None = None,
) -> Config:
    """Load and validate configuration.

    Later sources win: model defaults, then the settings file, then
    ``KV_OAUTH_`` environment variables (a ``.env`` file is read first),
    then non-``None`` CLI overrides.

    Args:
        path: Optional JSON or YAML settings file
        cli_args: Optional CLI overrides

    Returns:
        Validated Config instance

    Raises:
        ConfigError: If a source cannot be read or validation fails
    """
    load_dotenv()

    settings: dict[str, Any] = {}
    if path:
        logger.debug("Reading settings file %s", path)
        settings.update(_file_settings(path))

    layers = (
        ("environment", _env_overrides()),
        ("CLI", {k: v for k, v in (cli_args or {}).items() if v is not None}),
    )
    for source, values in layers:
        for key, value in values.items():
            logger.debug("Config %s from %s: %s", key, source, _loggable(key, value))
        settings.update(values)

    try:
        return Config(**settings)
    except ValueError as e:
        msg = f"Configuration validation failed: {e}"
        raise ConfigError(msg) from e
