"""Key-value store backends.

Every backend stores JSON-serializable values under composite keys
(namespace segment + identifier), expires entries natively, and offers
an atomic ``get_and_delete``. One store instance is opened at process
start and shared by all requests.
"""

from __future__ import annotations

import asyncio
import json
import os
import tempfile
import time
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

from cryptography.fernet import Fernet, InvalidToken

from kv_oauth.errors import StorageError
from kv_oauth.logging_config import get_logger

if TYPE_CHECKING:
    from types import TracebackType

    from redis.asyncio import Redis

    from kv_oauth.config import Config

logger = get_logger(__name__)

Key = tuple[str, ...]


def _dumps(value: Any) -> str:
    try:
        return json.dumps(value, separators=(",", ":"))
    except (TypeError, ValueError) as e:
        raise StorageError(f"Value is not JSON-serializable: {e}") from e


def _matches(key: Key, prefix: Key) -> bool:
    return key[: len(prefix)] == prefix


class KeyValueStore(ABC):
    """Abstract key-value store.

    Backends must make ``get_and_delete`` a single atomic step: two
    concurrent callers for the same key never both see the value.
    """

    async def open(self) -> None:
        """Acquire backend resources. Called once at process start."""

    async def close(self) -> None:
        """Release backend resources. Called once at shutdown."""

    async def __aenter__(self) -> KeyValueStore:
        await self.open()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    @abstractmethod
    async def get(self, key: Key) -> Any | None:
        """Return the value for ``key``, or None if missing or expired."""

    @abstractmethod
    async def set(self, key: Key, value: Any, ttl: float | None = None) -> None:
        """Store ``value`` under ``key``.

        Args:
            key: Composite key
            value: JSON-serializable value
            ttl: Seconds until the entry expires; None keeps it forever
        """

    @abstractmethod
    async def delete(self, key: Key) -> None:
        """Delete ``key``. Deleting a missing key is not an error."""

    @abstractmethod
    async def get_and_delete(self, key: Key) -> Any | None:
        """Atomically return and remove the value for ``key``."""

    @abstractmethod
    def list(self, prefix: Key) -> AsyncIterator[tuple[Key, Any]]:
        """Iterate over live entries whose key starts with ``prefix``."""


@dataclass
class _Entry:
    payload: str
    expires_at: float | None

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at


class InMemoryKeyValueStore(KeyValueStore):
    """In-memory store.

    Entries are lost on restart. Suitable for development, tests and
    single-process deployments.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        """Initialize in-memory store.

        Args:
            clock: Monotonic time source in seconds, injectable for tests
        """
        self._entries: dict[Key, _Entry] = {}
        self._clock = clock
        self._lock = asyncio.Lock()

    def _live(self, key: Key) -> _Entry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            del self._entries[key]
            return None
        return entry

    async def get(self, key: Key) -> Any | None:
        async with self._lock:
            entry = self._live(key)
            return json.loads(entry.payload) if entry else None

    async def set(self, key: Key, value: Any, ttl: float | None = None) -> None:
        payload = _dumps(value)
        async with self._lock:
            expires_at = self._clock() + ttl if ttl is not None else None
            self._entries[key] = _Entry(payload, expires_at)

    async def delete(self, key: Key) -> None:
        async with self._lock:
            self._entries.pop(key, None)

    async def get_and_delete(self, key: Key) -> Any | None:
        async with self._lock:
            entry = self._live(key)
            if entry is None:
                return None
            del self._entries[key]
            return json.loads(entry.payload)

    async def list(self, prefix: Key) -> AsyncIterator[tuple[Key, Any]]:
        async with self._lock:
            now = self._clock()
            snapshot = [
                (key, entry.payload)
                for key, entry in self._entries.items()
                if _matches(key, prefix) and not entry.is_expired(now)
            ]
        for key, payload in snapshot:
            yield key, json.loads(payload)

    def __len__(self) -> int:
        return len(self._entries)


class EncryptedFileKeyValueStore(KeyValueStore):
    """Encrypted file-based store.

    The whole map is encrypted with Fernet and rewritten atomically on
    every mutation. Expiry timestamps are wall-clock so they survive
    restarts.
    """

    def __init__(
        self,
        encryption_key: str,
        file_path: str | Path,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize encrypted file store.

        Args:
            encryption_key: Fernet-compatible encryption key
            file_path: Path to the storage file
            clock: Wall-clock time source in seconds

        Raises:
            StorageError: If encryption key is invalid
        """
        try:
            self._fernet = Fernet(encryption_key.encode())
        except (ValueError, TypeError) as e:
            raise StorageError(f"Invalid encryption key: {e}") from e

        self._file_path = Path(file_path)
        self._clock = clock
        self._lock = asyncio.Lock()
        self._data: dict[str, dict[str, Any]] = {}
        self._loaded = False

    @staticmethod
    def _encode_key(key: Key) -> str:
        return json.dumps(list(key))

    @staticmethod
    def _decode_key(raw: str) -> Key:
        return tuple(json.loads(raw))

    async def open(self) -> None:
        async with self._lock:
            await self._load()

    async def close(self) -> None:
        async with self._lock:
            self._data = {}
            self._loaded = False

    async def _load(self) -> None:
        """Load and decrypt data from file."""
        if self._loaded:
            return

        if not self._file_path.exists():
            self._data = {}
            self._loaded = True
            return

        try:
            encrypted_data = self._file_path.read_bytes()
            decrypted_data = self._fernet.decrypt(encrypted_data)
            self._data = json.loads(decrypted_data.decode())
        except InvalidToken:
            logger.error("Failed to decrypt store file - wrong key?")
            raise StorageError("Failed to decrypt store file") from None
        except json.JSONDecodeError as e:
            logger.error("Failed to parse store file: %s", e)
            raise StorageError(f"Failed to parse store file: {e}") from e
        except OSError as e:
            raise StorageError(f"Failed to read store file: {e}") from e

        self._loaded = True
        logger.debug("Loaded %d entries from %s", len(self._data), self._file_path)

    async def _save(self) -> None:
        """Encrypt and save data to file atomically."""
        encrypted_data = self._fernet.encrypt(json.dumps(self._data).encode())

        try:
            dir_path = self._file_path.parent
            dir_path.mkdir(parents=True, exist_ok=True)

            fd, temp_path_str = tempfile.mkstemp(dir=dir_path)
            temp_path = Path(temp_path_str)
            try:
                with os.fdopen(fd, "wb") as fh:
                    fh.write(encrypted_data)
                temp_path.replace(self._file_path)
            except OSError:
                temp_path.unlink(missing_ok=True)
                raise
        except OSError as e:
            raise StorageError(f"Failed to write store file: {e}") from e

    def _purge_expired(self) -> bool:
        now = self._clock()
        expired = [
            raw
            for raw, record in self._data.items()
            if record.get("expires_at") is not None and now >= record["expires_at"]
        ]
        for raw in expired:
            del self._data[raw]
        return bool(expired)

    async def get(self, key: Key) -> Any | None:
        async with self._lock:
            await self._load()
            if self._purge_expired():
                await self._save()
            record = self._data.get(self._encode_key(key))
            return record["value"] if record else None

    async def set(self, key: Key, value: Any, ttl: float | None = None) -> None:
        _dumps(value)
        async with self._lock:
            await self._load()
            self._purge_expired()
            self._data[self._encode_key(key)] = {
                "value": value,
                "expires_at": self._clock() + ttl if ttl is not None else None,
            }
            await self._save()

    async def delete(self, key: Key) -> None:
        async with self._lock:
            await self._load()
            if self._data.pop(self._encode_key(key), None) is not None:
                await self._save()

    async def get_and_delete(self, key: Key) -> Any | None:
        async with self._lock:
            await self._load()
            purged = self._purge_expired()
            record = self._data.pop(self._encode_key(key), None)
            if record is not None or purged:
                await self._save()
            return record["value"] if record else None

    async def list(self, prefix: Key) -> AsyncIterator[tuple[Key, Any]]:
        async with self._lock:
            await self._load()
            self._purge_expired()
            snapshot = [
                (self._decode_key(raw), record["value"]) for raw, record in self._data.items()
            ]
        for key, value in snapshot:
            if _matches(key, prefix):
                yield key, value


@contextmanager
def _redis_errors(action: str) -> Iterator[None]:
    from redis.exceptions import RedisError

    try:
        yield
    except RedisError as e:
        logger.error("Redis %s failed: %s", action, e)
        raise StorageError(f"Redis {action} failed: {e}") from e


class RedisKeyValueStore(KeyValueStore):
    """Redis-backed store.

    TTLs use Redis key expiry and ``get_and_delete`` maps to ``GETDEL``,
    which is atomic on the server.
    """

    def __init__(
        self,
        url: str | None = None,
        namespace: str = "kv_oauth",
        client: Redis | None = None,
    ) -> None:
        """Initialize the Redis store.

        Args:
            url: Redis connection URL, used when no client is passed
            namespace: Prefix for every Redis key
            client: Optional pre-built ``redis.asyncio.Redis`` client
        """
        if url is None and client is None:
            msg = "Either url or client is required"
            raise ValueError(msg)
        self._url = url
        self._namespace = namespace
        self._client = client
        self._owns_client = client is None

    def _redis_key(self, key: Key) -> str:
        return ":".join((self._namespace, *key))

    def _parse_key(self, raw: str) -> Key:
        return tuple(raw.split(":"))[1:]

    def _require_client(self) -> Redis:
        if self._client is None:
            raise StorageError("Redis store is not open")
        return self._client

    async def open(self) -> None:
        if self._client is None:
            import redis.asyncio

            self._client = redis.asyncio.from_url(self._url or "", decode_responses=True)
        with _redis_errors("ping"):
            await self._client.ping()
        logger.info("Connected to Redis store")

    async def close(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def get(self, key: Key) -> Any | None:
        with _redis_errors("get"):
            raw = await self._require_client().get(self._redis_key(key))
        return json.loads(raw) if raw is not None else None

    async def set(self, key: Key, value: Any, ttl: float | None = None) -> None:
        payload = _dumps(value)
        px = max(1, int(ttl * 1000)) if ttl is not None else None
        with _redis_errors("set"):
            await self._require_client().set(self._redis_key(key), payload, px=px)

    async def delete(self, key: Key) -> None:
        with _redis_errors("delete"):
            await self._require_client().delete(self._redis_key(key))

    async def get_and_delete(self, key: Key) -> Any | None:
        with _redis_errors("getdel"):
            raw = await self._require_client().getdel(self._redis_key(key))
        return json.loads(raw) if raw is not None else None

    async def list(self, prefix: Key) -> AsyncIterator[tuple[Key, Any]]:
        client = self._require_client()
        pattern = self._redis_key(prefix) + ":*"
        with _redis_errors("scan"):
            raw_keys = [raw async for raw in client.scan_iter(match=pattern)]
        for raw in raw_keys:
            with _redis_errors("get"):
                value = await client.get(raw)
            if value is not None:
                yield self._parse_key(raw), json.loads(value)


def create_kv_store(config: Config) -> KeyValueStore:
    """Create the configured key-value store.

    Args:
        config: Application configuration

    Returns:
        Unopened KeyValueStore instance
    """
    from kv_oauth.config import StoreBackend

    if config.store_backend == StoreBackend.FILE:
        key = config.store_encryption_key.get_secret_value() if config.store_encryption_key else ""
        return EncryptedFileKeyValueStore(key, config.store_path or "")
    if config.store_backend == StoreBackend.REDIS:
        return RedisKeyValueStore(config.redis_url)
    return InMemoryKeyValueStore()
