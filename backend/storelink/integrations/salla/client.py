"""
Salla OAuth and Admin API adapter.

Handles:
- Authorization URL construction (offline_access scope)
- Authorization code exchange and refresh (form-encoded token endpoint)
- Store profile fetch from the Admin API
- Order/product/customer totals for explicit syncs

Documentation: https://docs.salla.dev/
"""

import logging
import os
from typing import Any, Dict, Optional

from storelink.integrations.common.client import ProviderTokenAdapter, gather_totals
from storelink.integrations.common.exceptions import (
    ProviderError,
    ProviderDataIncomplete,
    TokenExchangeError,
)
from storelink.integrations.common.models import ResourceTotals, StoreProfile, TokenSet
from storelink.models.store import StorePlatform

logger = logging.getLogger(__name__)

SALLA_AUTHORIZE_URL = "https://accounts.salla.sa/oauth2/authorize"
SALLA_TOKEN_URL = "https://accounts.salla.sa/oauth2/token"
SALLA_API_URL = "https://api.salla.dev/admin/v2"
SALLA_SCOPE = "offline_access"


class SallaClient(ProviderTokenAdapter):
    """
    Async adapter for Salla's OAuth server and Admin API.

    SECURITY: client secret and tokens must never be logged.
    """

    provider = "salla"
    platform = StorePlatform.SALLA
    supports_refresh = True

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        api_base_url: str = SALLA_API_URL,
        **kwargs,
    ):
        if not client_id or not client_secret:
            raise ValueError("Salla client_id and client_secret are required")
        super().__init__(**kwargs)
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.api_base_url = api_base_url.rstrip("/")

    @classmethod
    def from_env(cls) -> "SallaClient":
        """
        Build a client from SALLA_* environment variables.

        Raises:
            ValueError: If a required variable is missing
        """
        client_id = os.getenv("SALLA_CLIENT_ID")
        client_secret = os.getenv("SALLA_CLIENT_SECRET")
        redirect_uri = os.getenv("SALLA_OAUTH_CALLBACK_URL")

        if not client_id:
            raise ValueError("SALLA_CLIENT_ID environment variable is required")
        if not client_secret:
            raise ValueError("SALLA_CLIENT_SECRET environment variable is required")
        if not redirect_uri:
            raise ValueError("SALLA_OAUTH_CALLBACK_URL environment variable is required")

        return cls(client_id, client_secret, redirect_uri)

    def authorization_url_for_state(self, state: Optional[str]) -> str:
        return self._with_query(SALLA_AUTHORIZE_URL, {
            "client_id": self.client_id,
            "response_type": "code",
            "redirect_uri": self.redirect_uri,
            "scope": SALLA_SCOPE,
            "state": state,
        })

    def _auth_headers(self, tokens: TokenSet) -> Dict[str, str]:
        return {"Authorization": f"Bearer {tokens.access_token}"}

    async def _token_request(self, form: Dict[str, str], operation: str) -> TokenSet:
        payload = {
            **form,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
        }
        try:
            data = await self._request("POST", SALLA_TOKEN_URL, data=payload)
        except ProviderError as e:
            if e.retryable:
                raise
            raise TokenExchangeError(
                f"Salla {operation} failed: {e.status_code}",
                status_code=e.status_code,
                response=e.response,
                provider=self.provider,
            )

        if not data.get("access_token"):
            raise TokenExchangeError(
                f"Salla {operation} response missing access_token",
                provider=self.provider,
            )

        logger.info("Salla token %s successful", operation)

        return TokenSet(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_in_seconds=data.get("expires_in"),
            token_type=data.get("token_type", "bearer"),
            scope=data.get("scope"),
        )

    async def exchange_code(self, code: str) -> TokenSet:
        """
        Exchange OAuth authorization code for access and refresh tokens.

        Raises:
            TokenExchangeError: If Salla rejects the code
            TransientProviderError: On network errors and 5xx
        """
        return await self._token_request(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self.redirect_uri,
                "scope": SALLA_SCOPE,
            },
            "exchange",
        )

    async def refresh(self, refresh_token: str) -> TokenSet:
        """Refresh an access token. Salla rotates the refresh token on every use."""
        return await self._token_request(
            {"grant_type": "refresh_token", "refresh_token": refresh_token},
            "refresh",
        )

    async def fetch_store_profile(self, tokens: TokenSet) -> StoreProfile:
        """
        Fetch merchant store info from GET /store/info.

        Raises:
            ProviderDataIncomplete: If the response carries no store id
        """
        body = await self._request(
            "GET",
            f"{self.api_base_url}/store/info",
            headers=self._auth_headers(tokens),
        )
        data = body.get("data") or {}

        if not data.get("id"):
            raise ProviderDataIncomplete(
                "Salla store info response has no store id",
                missing_fields=["id"],
                provider=self.provider,
            )

        return normalize_salla_store(data)

    async def _listing_total(self, tokens: TokenSet, resource: str) -> Optional[int]:
        body = await self._request(
            "GET",
            f"{self.api_base_url}/{resource}",
            headers=self._auth_headers(tokens),
            params={"page": 1, "per_page": 1},
        )
        total = (body.get("pagination") or {}).get("total")
        return total if isinstance(total, int) else None

    async def fetch_resource_totals(self, tokens: TokenSet) -> ResourceTotals:
        return await gather_totals(
            {
                "orders": self._listing_total(tokens, "orders"),
                "products": self._listing_total(tokens, "products"),
                "customers": self._listing_total(tokens, "customers"),
            },
            provider=self.provider,
        )


def normalize_salla_store(data: Dict[str, Any]) -> StoreProfile:
    """Map a Salla store/info payload onto StoreProfile."""
    currency = data.get("currency")
    if isinstance(currency, dict):
        currency = currency.get("code")

    plan = data.get("plan")
    if isinstance(plan, dict):
        plan = plan.get("name")

    return StoreProfile(
        merchant_id=str(data["id"]),
        name=data.get("name"),
        email=data.get("email"),
        phone=data.get("mobile") or data.get("phone"),
        domain=data.get("domain") or data.get("url"),
        logo=data.get("avatar") or data.get("logo"),
        plan=plan,
        currency=currency or "SAR",
        locale=data.get("language") or data.get("locale") or "ar",
        raw=data,
    )
