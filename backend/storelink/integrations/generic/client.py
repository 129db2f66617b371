"""
Adapter for "other" platforms connected with a raw API key.

There is no OAuth flow and no refresh mechanism. The key is validated by a
single GET against the merchant-supplied API base URL, sending it both as a
bearer token and as X-API-Key since platforms differ on which they expect.
"""

import logging
from typing import Any, Dict, Optional
from urllib.parse import urlparse

from storelink.integrations.common.client import ProviderTokenAdapter
from storelink.integrations.common.exceptions import ProviderError
from storelink.integrations.common.models import StoreProfile, TokenSet
from storelink.models.store import StorePlatform

logger = logging.getLogger(__name__)

VALIDATION_TIMEOUT_SECONDS = 15.0

# Token lifetimes assigned to API-key connections
API_KEY_TTL_WITH_SECRET_DAYS = 365
API_KEY_TTL_WITHOUT_SECRET_DAYS = 30


class GenericApiClient(ProviderTokenAdapter):
    """Validates and reads store info from a generic REST API."""

    provider = "other"
    platform = StorePlatform.OTHER
    supports_refresh = False

    def __init__(self, api_base_url: str, timeout: float = VALIDATION_TIMEOUT_SECONDS, **kwargs):
        api_base_url = (api_base_url or "").strip().rstrip("/")
        parsed = urlparse(api_base_url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"Invalid API base URL: {api_base_url!r}")
        super().__init__(timeout=timeout, **kwargs)
        self.api_base_url = api_base_url

    def authorization_url_for_state(self, state: Optional[str]) -> str:
        raise ProviderError(
            "API-key platforms have no authorization page",
            code="unsupported",
            provider=self.provider,
        )

    async def exchange_code(self, code: str) -> TokenSet:
        raise ProviderError(
            "API-key platforms have no authorization code flow",
            code="unsupported",
            provider=self.provider,
        )

    async def refresh(self, refresh_token: str) -> TokenSet:
        raise ProviderError(
            "API-key platforms have no refresh mechanism",
            code="unsupported",
            provider=self.provider,
        )

    async def fetch_store_profile(self, tokens: TokenSet) -> StoreProfile:
        """
        Validate the key against the base URL and extract whatever store
        info the response exposes.

        Raises:
            ProviderAuthError: The key was rejected (401/403)
            ProviderNotFoundError: The base URL does not exist (404)
            ProviderConnectionError: Unreachable or timed out
        """
        body = await self._request(
            "GET",
            self.api_base_url,
            headers={
                "Authorization": f"Bearer {tokens.access_token}",
                "X-API-Key": tokens.access_token,
            },
        )
        logger.info("Generic platform API key validated", extra={"api_host": urlparse(self.api_base_url).netloc})
        return extract_store_info(body)


def extract_store_info(body: Dict[str, Any]) -> StoreProfile:
    """Pull id/name/url out of the common REST envelope shapes."""
    source: Any = body
    for key in ("data", "store", "shop", "result"):
        if isinstance(body.get(key), dict):
            source = body[key]
            break

    store_id = source.get("id") or source.get("store_id")
    return StoreProfile(
        merchant_id=str(store_id) if store_id else "",
        name=source.get("name") or source.get("store_name") or source.get("shop_name") or source.get("title"),
        domain=source.get("url") or source.get("domain") or source.get("shop_url") or source.get("website"),
        email=source.get("email"),
        raw=body,
    )
