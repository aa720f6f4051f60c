"""KV OAuth.

Server-side OAuth 2.0 Authorization Code sign-in with PKCE, keeping all
session state in a key-value store and only opaque identifiers in cookies.
"""

__version__ = "0.1.0"

from kv_oauth.config import Config, ConfigError, OAuthConfig, load_config
from kv_oauth.cookies import CookieOptions
from kv_oauth.errors import (
    KvOAuthError,
    MissingConfigError,
    MissingCookieError,
    ProtocolError,
    SessionNotFoundError,
    StorageError,
)
from kv_oauth.flow import (
    AuthorizationFlowController,
    CallbackOptions,
    CallbackResult,
    OAuthHelpers,
    SignInOptions,
    SignOutOptions,
    create_helpers,
)
from kv_oauth.store.kv import KeyValueStore, create_kv_store
from kv_oauth.store.sessions import SessionRecordStore

__all__ = [
    "AuthorizationFlowController",
    "CallbackOptions",
    "CallbackResult",
    "Config",
    "ConfigError",
    "CookieOptions",
    "KeyValueStore",
    "KvOAuthError",
    "MissingConfigError",
    "MissingCookieError",
    "OAuthConfig",
    "OAuthHelpers",
    "ProtocolError",
    "SessionNotFoundError",
    "SessionRecordStore",
    "SignInOptions",
    "SignOutOptions",
    "StorageError",
    "__version__",
    "create_helpers",
    "create_kv_store",
    "load_config",
]
