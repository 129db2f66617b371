"""
OAuth state issuer (CSRF protection for provider authorization flows).

A state token binds one authorization flow to the tenant that started it.
Tokens are single-use and expire after STATE_TTL_SECONDS. Entries live in
the shared TTL store so any service instance can validate a callback,
whichever instance issued the state.

Usage:
    issuer = OAuthStateIssuer.from_env()
    state = issuer.issue(tenant_id)

    # Callback classification must not consume the state
    if issuer.peek_valid(state):
        tenant_id = issuer.consume(state)
"""

import json
import logging
import secrets
from datetime import datetime, timezone
from typing import Optional

from storelink.platform.cache import TTLStore, get_ttl_store
from storelink.services.errors import ExpiredStateError, InvalidStateError

logger = logging.getLogger(__name__)

STATE_TTL_SECONDS = 600
STATE_TOKEN_BYTES = 32
STATE_KEY_PREFIX = "oauth_state:"

# Expired entries are retained briefly so a late callback gets a precise error
EXPIRED_STATE_RETENTION_SECONDS = 60


class OAuthStateIssuer:
    """Issues, validates and consumes single-use OAuth state tokens."""

    def __init__(self, store: TTLStore, ttl_seconds: int = STATE_TTL_SECONDS, clock=None):
        self._store = store
        self.ttl_seconds = ttl_seconds
        self._clock = clock or (lambda: datetime.now(timezone.utc).timestamp())

    @classmethod
    def from_env(cls) -> "OAuthStateIssuer":
        """Build an issuer on the shared TTL store (Redis when REDIS_URL is set)."""
        return cls(get_ttl_store(STATE_KEY_PREFIX))

    def issue(self, tenant_id: str) -> str:
        """
        Create a state token bound to tenant_id.

        Expired entries are purged opportunistically on each issuance.

        Returns:
            64-character hex token
        """
        if not tenant_id:
            raise ValueError("tenant_id is required")

        purged = self._store.purge_expired()
        if purged:
            logger.debug("Purged expired OAuth states", extra={"count": purged})

        token = secrets.token_hex(STATE_TOKEN_BYTES)
        issued_at = self._clock()
        record = {
            "tenant_id": tenant_id,
            "issued_at": issued_at,
            "expires_at": issued_at + self.ttl_seconds,
        }
        self._store.set(
            token,
            json.dumps(record),
            self.ttl_seconds + EXPIRED_STATE_RETENTION_SECONDS,
        )

        logger.info("Issued OAuth state", extra={"tenant_id": tenant_id})
        return token

    def _decode(self, raw: Optional[str]) -> Optional[dict]:
        if raw is None:
            return None
        try:
            record = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("Discarding unreadable OAuth state record")
            return None
        if not isinstance(record, dict) or not record.get("tenant_id"):
            return None
        return record

    def _is_expired(self, record: dict) -> bool:
        return float(record.get("expires_at", 0)) <= self._clock()

    def consume(self, token: Optional[str]) -> str:
        """
        Validate and delete a state token in one step.

        Returns:
            The tenant_id the state was issued for

        Raises:
            InvalidStateError: Token missing, unknown or already used
            ExpiredStateError: Token existed but is past its TTL
        """
        if not token:
            raise InvalidStateError("OAuth state missing")

        record = self._decode(self._store.take(token))
        if record is None:
            raise InvalidStateError("OAuth state not found or already used")

        if self._is_expired(record):
            raise ExpiredStateError("OAuth state has expired")

        return record["tenant_id"]

    def peek_valid(self, token: Optional[str]) -> bool:
        """Non-destructive check used to classify a callback before consuming."""
        if not token:
            return False
        record = self._decode(self._store.get(token))
        return record is not None and not self._is_expired(record)
