"""
Tests for OAuthStateIssuer.

Tests cover:
- Issue/consume round trip and single-use guarantee
- Expiry with a precise error inside the retention window
- Non-destructive peek used by callback classification
- Opportunistic purge of expired entries
"""

import pytest

from storelink.platform.cache import MemoryTTLStore
from storelink.services.errors import ExpiredStateError, InvalidStateError
from storelink.services.oauth_state import (
    EXPIRED_STATE_RETENTION_SECONDS,
    STATE_TTL_SECONDS,
    OAuthStateIssuer,
)


class FakeClock:
    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def issuer(clock):
    # Both the issuer and the store read the same clock
    return OAuthStateIssuer(MemoryTTLStore(clock=clock), clock=clock)


class TestIssue:

    def test_token_is_64_hex_chars(self, issuer):
        token = issuer.issue("tenant-1")
        assert len(token) == 64
        int(token, 16)

    def test_tokens_are_unique(self, issuer):
        assert issuer.issue("tenant-1") != issuer.issue("tenant-1")

    def test_requires_tenant(self, issuer):
        with pytest.raises(ValueError):
            issuer.issue("")

    def test_issue_purges_expired_entries(self, issuer, clock):
        issuer.issue("tenant-1")
        clock.now += STATE_TTL_SECONDS + EXPIRED_STATE_RETENTION_SECONDS + 1

        issuer.issue("tenant-2")

        assert len(issuer._store) == 1


class TestConsume:

    def test_roundtrip(self, issuer):
        token = issuer.issue("tenant-1")
        assert issuer.consume(token) == "tenant-1"

    def test_second_consume_fails(self, issuer):
        token = issuer.issue("tenant-1")
        issuer.consume(token)

        with pytest.raises(InvalidStateError):
            issuer.consume(token)

    def test_unknown_token(self, issuer):
        with pytest.raises(InvalidStateError) as exc_info:
            issuer.consume("f" * 64)
        assert exc_info.value.reason == "invalid_state"

    def test_missing_token(self, issuer):
        with pytest.raises(InvalidStateError):
            issuer.consume(None)

    def test_expired_token_reports_expiry(self, issuer, clock):
        token = issuer.issue("tenant-1")
        clock.now += STATE_TTL_SECONDS + 1

        with pytest.raises(ExpiredStateError) as exc_info:
            issuer.consume(token)
        assert exc_info.value.reason == "expired_state"

    def test_expired_token_is_also_single_use(self, issuer, clock):
        token = issuer.issue("tenant-1")
        clock.now += STATE_TTL_SECONDS + 1
        with pytest.raises(ExpiredStateError):
            issuer.consume(token)

        with pytest.raises(InvalidStateError) as exc_info:
            issuer.consume(token)
        assert not isinstance(exc_info.value, ExpiredStateError)

    def test_valid_until_ttl_boundary(self, issuer, clock):
        token = issuer.issue("tenant-1")
        clock.now += STATE_TTL_SECONDS - 1
        assert issuer.consume(token) == "tenant-1"

    def test_unreadable_record_is_invalid(self, issuer):
        issuer._store.set("garbage", "{not json", 60)
        with pytest.raises(InvalidStateError):
            issuer.consume("garbage")


class TestPeekValid:

    def test_peek_does_not_consume(self, issuer):
        token = issuer.issue("tenant-1")

        assert issuer.peek_valid(token) is True
        assert issuer.peek_valid(token) is True
        assert issuer.consume(token) == "tenant-1"
        assert issuer.peek_valid(token) is False

    def test_peek_expired(self, issuer, clock):
        token = issuer.issue("tenant-1")
        clock.now += STATE_TTL_SECONDS
        assert issuer.peek_valid(token) is False

    def test_peek_missing(self, issuer):
        assert issuer.peek_valid(None) is False
        assert issuer.peek_valid("") is False
