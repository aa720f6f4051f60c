"""Key-value store backends and the session records kept in them."""

from kv_oauth.store.kv import (
    EncryptedFileKeyValueStore,
    InMemoryKeyValueStore,
    KeyValueStore,
    RedisKeyValueStore,
    create_kv_store,
)
from kv_oauth.store.sessions import OAuthSession, SessionRecordStore, SiteSession

__all__ = [
    "EncryptedFileKeyValueStore",
    "InMemoryKeyValueStore",
    "KeyValueStore",
    "OAuthSession",
    "RedisKeyValueStore",
    "SessionRecordStore",
    "SiteSession",
    "create_kv_store",
]
