"""
Tests for the shared TTL store.
"""

from unittest.mock import MagicMock, patch

import pytest

from storelink.platform.cache import (
    MemoryTTLStore,
    RedisClient,
    RedisTTLStore,
    get_ttl_store,
)


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return MemoryTTLStore(clock=clock)


@pytest.fixture(autouse=True)
def reset_redis_singleton():
    RedisClient.reset()
    yield
    RedisClient.reset()


class TestMemoryTTLStore:

    def test_get_before_expiry(self, store):
        store.set("k", "v", 10)
        assert store.get("k") == "v"

    def test_get_after_expiry(self, store, clock):
        store.set("k", "v", 10)
        clock.now += 10
        assert store.get("k") is None
        assert len(store) == 0

    def test_take_is_single_use(self, store):
        store.set("k", "v", 10)
        assert store.take("k") == "v"
        assert store.take("k") is None

    def test_take_expired_returns_none(self, store, clock):
        store.set("k", "v", 10)
        clock.now += 11
        assert store.take("k") is None

    def test_purge_expired(self, store, clock):
        store.set("old", "v", 5)
        store.set("new", "v", 50)
        clock.now += 6

        assert store.purge_expired() == 1
        assert store.get("new") == "v"


class TestRedisTTLStore:

    def test_set_uses_prefixed_setex(self):
        connection = MagicMock()
        store = RedisTTLStore(connection, prefix="oauth_state:")

        store.set("abc", "payload", 660)

        connection.setex.assert_called_once_with("oauth_state:abc", 660, "payload")

    def test_take_reads_and_deletes_atomically(self):
        connection = MagicMock()
        pipe = connection.pipeline.return_value
        pipe.execute.return_value = ["payload", 1]
        store = RedisTTLStore(connection, prefix="p:")

        assert store.take("abc") == "payload"
        connection.pipeline.assert_called_once_with(transaction=True)
        pipe.get.assert_called_once_with("p:abc")
        pipe.delete.assert_called_once_with("p:abc")


class TestGetTTLStore:

    def test_memory_fallback_without_redis_url(self, monkeypatch):
        monkeypatch.delenv("REDIS_URL", raising=False)
        assert isinstance(get_ttl_store("x:"), MemoryTTLStore)
        assert RedisClient().available is False

    def test_redis_used_when_reachable(self, monkeypatch):
        monkeypatch.setenv("REDIS_URL", "redis://localhost:6379/0")
        fake = MagicMock()
        with patch("storelink.platform.cache.redis.from_url", return_value=fake):
            ttl_store = get_ttl_store("x:")

        fake.ping.assert_called_once()
        assert isinstance(ttl_store, RedisTTLStore)
