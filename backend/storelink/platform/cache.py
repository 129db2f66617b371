"""
Shared TTL key-value store.

Provides:
- RedisClient: process-wide Redis connection with graceful degradation
- TTLStore implementations used for short-lived shared state (OAuth state)

When REDIS_URL is not configured the in-process MemoryTTLStore is used.
That store is NOT shared across service instances and is lost on restart,
so it is only suitable for development, tests and single-instance deploys.
"""

import logging
import os
import time
from threading import Lock
from typing import Dict, Optional, Tuple

import redis

logger = logging.getLogger(__name__)


class RedisClient:
    """
    Redis client wrapper with connection pooling and fallback.

    Provides graceful degradation when Redis is unavailable.
    """

    _instance: Optional["RedisClient"] = None
    _lock = Lock()

    def __new__(cls):
        """Singleton pattern."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self._redis = None
        self._available = False
        self._connect()
        self._initialized = True

    @classmethod
    def reset(cls) -> None:
        """Forget the singleton so the next access reconnects (tests)."""
        with cls._lock:
            cls._instance = None

    def _connect(self) -> None:
        """Connect to Redis if configured."""
        redis_url = os.getenv("REDIS_URL")
        if not redis_url:
            logger.info("REDIS_URL not configured - shared state store disabled")
            return

        try:
            self._redis = redis.from_url(
                redis_url,
                decode_responses=True,
                socket_timeout=5.0,
                socket_connect_timeout=5.0,
            )
            self._redis.ping()
            self._available = True
            logger.info("Redis connection established for shared state store")
        except redis.RedisError as e:
            logger.warning(f"Redis connection failed: {e} - shared state store disabled")

    @property
    def available(self) -> bool:
        """Check if Redis is available."""
        return self._available and self._redis is not None

    @property
    def connection(self) -> Optional["redis.Redis"]:
        return self._redis if self.available else None


class TTLStore:
    """Minimal key-value contract with per-key expiry."""

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        raise NotImplementedError

    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def take(self, key: str) -> Optional[str]:
        """Atomically read and delete a key."""
        raise NotImplementedError

    def purge_expired(self) -> int:
        """Drop expired entries. Returns how many were removed."""
        return 0


class RedisTTLStore(TTLStore):
    """TTL store backed by Redis. Expiry is enforced by Redis itself."""

    def __init__(self, connection: "redis.Redis", prefix: str = ""):
        self._redis = connection
        self._prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._redis.setex(self._key(key), ttl_seconds, value)

    def get(self, key: str) -> Optional[str]:
        return self._redis.get(self._key(key))

    def take(self, key: str) -> Optional[str]:
        pipe = self._redis.pipeline(transaction=True)
        pipe.get(self._key(key))
        pipe.delete(self._key(key))
        value, _ = pipe.execute()
        return value


class MemoryTTLStore(TTLStore):
    """Process-local TTL store. Expired entries are dropped lazily."""

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._entries: Dict[str, Tuple[str, float]] = {}
        self._lock = Lock()

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        with self._lock:
            self._entries[key] = (value, self._clock() + ttl_seconds)

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at <= self._clock():
                del self._entries[key]
                return None
            return value

    def take(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._entries.pop(key, None)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at <= self._clock():
            return None
        return value

    def purge_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [k for k, (_, exp) in self._entries.items() if exp <= now]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)


def get_ttl_store(prefix: str) -> TTLStore:
    """
    Get the shared TTL store for a key namespace.

    Uses Redis when available, otherwise falls back to an in-process store.
    """
    client = RedisClient()
    if client.available:
        return RedisTTLStore(client.connection, prefix=prefix)

    logger.warning(
        "Using in-process TTL store, state is not shared across instances",
        extra={"prefix": prefix},
    )
    return MemoryTTLStore()
