"""
Access token lifecycle for connected stores.

Handles:
- Hot path: a token with more than REFRESH_BUFFER left is returned with no
  network I/O
- Refresh: new token pair is encrypted and flushed BEFORE it is returned
- Failure: the store is marked token_expired and the error propagates

SECURITY:
- Tokens are NEVER logged
- Undecryptable credentials are treated as absent

Retries are not attempted here. The caller's own schedule (the next sync or
request) decides when to try again.

Usage:
    manager = TokenLifecycleManager(db_session=db, providers=registry)
    access_token = await manager.ensure_valid_access_token(store)
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.orm import Session

from storelink.integrations.common.exceptions import ProviderError
from storelink.integrations.common.models import TokenSet
from storelink.integrations.registry import ProviderRegistry
from storelink.models.store import Store, StorePlatform, StoreStatus
from storelink.platform.secrets import decrypt_secret_safe, encrypt_secret
from storelink.services.errors import ReauthorizationRequiredError

logger = logging.getLogger(__name__)

# Tokens expiring within this window are refreshed before use
REFRESH_BUFFER = timedelta(minutes=5)


def token_set_for(store: Store) -> Optional[TokenSet]:
    """
    Rebuild the plaintext TokenSet stored on a row.

    Returns None when there is no usable access token. Rows written before
    encryption was introduced are read as plaintext.
    """
    access_token = decrypt_secret_safe(store.access_token_encrypted, allow_legacy=True)
    if not access_token:
        return None
    return TokenSet(
        access_token=access_token,
        refresh_token=decrypt_secret_safe(store.refresh_token_encrypted, allow_legacy=True),
        secondary_auth_token=decrypt_secret_safe(
            store.authorization_token_encrypted, allow_legacy=True
        ),
    )


class TokenLifecycleManager:
    """Returns a usable access token for a store, refreshing when needed."""

    def __init__(
        self,
        db_session: Session,
        providers: ProviderRegistry,
        refresh_buffer: timedelta = REFRESH_BUFFER,
    ):
        self.db = db_session
        self.providers = providers
        self.refresh_buffer = refresh_buffer

    def _mark_expired(self, store: Store, error: str) -> None:
        store.status = StoreStatus.TOKEN_EXPIRED
        store.record_error(error)
        self.db.flush()

    async def ensure_valid_access_token(self, store: Store) -> str:
        """
        Return a plaintext access token valid for at least the refresh buffer.

        Raises:
            ReauthorizationRequiredError: No token, or no refresh path
            ProviderError: The refresh call failed (store already marked
                token_expired)
        """
        access_token = decrypt_secret_safe(store.access_token_encrypted, allow_legacy=True)

        if access_token and not store.token_expires_within(self.refresh_buffer):
            return access_token

        if not store.supports_refresh:
            if access_token:
                return access_token
            raise ReauthorizationRequiredError(
                "API key missing, reconnect the store",
                store_id=store.id,
            )

        refresh_token = decrypt_secret_safe(store.refresh_token_encrypted, allow_legacy=True)
        if not refresh_token or not refresh_token.strip():
            logger.warning(
                "Store has no refresh token, reauthorization required",
                extra={"store_id": store.id, "platform": store.platform.value},
            )
            self._mark_expired(store, "No refresh token available")
            raise ReauthorizationRequiredError(
                "Store must be reconnected",
                store_id=store.id,
            )

        return await self._refresh(store, refresh_token)

    async def _refresh(self, store: Store, refresh_token: str) -> str:
        adapter = self.providers.get(store.platform)

        try:
            tokens = await adapter.refresh(refresh_token)
        except ProviderError as e:
            logger.error(
                "Token refresh failed",
                extra={
                    "store_id": store.id,
                    "platform": store.platform.value,
                    "status_code": e.status_code,
                    "retryable": e.retryable,
                },
            )
            self._mark_expired(store, f"Token refresh failed: {e.message}")
            raise

        now = datetime.now(timezone.utc)
        store.access_token_encrypted = encrypt_secret(tokens.access_token)
        if tokens.refresh_token:
            store.refresh_token_encrypted = encrypt_secret(tokens.refresh_token)
        if store.platform == StorePlatform.ZID:
            # Only keep a secondary token this refresh confirmed
            store.authorization_token_encrypted = encrypt_secret(tokens.secondary_auth_token)
        store.token_expires_at = tokens.expires_at(now)
        store.last_token_refresh_at = now
        if store.status == StoreStatus.TOKEN_EXPIRED:
            store.status = StoreStatus.ACTIVE
        store.reset_errors()

        self.db.flush()

        logger.info(
            "Store token refreshed",
            extra={
                "store_id": store.id,
                "platform": store.platform.value,
                "expires_at": store.token_expires_at.isoformat() if store.token_expires_at else None,
            },
        )
        return tokens.access_token
