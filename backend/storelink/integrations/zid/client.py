"""
Zid OAuth and Manager API adapter.

Zid issues two cooperating credentials:
- access_token: the manager token, sent as X-Manager-Token
- authorization: a bearer token required by most manager endpoints

The token endpoint does not always return ``authorization``. Callers then
obtain it out of band with fetch_secondary_auth_token(), and fall back to
primary-token-only headers while it is unavailable.

Documentation: https://docs.zid.sa/
"""

import logging
import os
from typing import Dict, List, Optional

from storelink.integrations.common.client import ProviderTokenAdapter, gather_totals
from storelink.integrations.common.exceptions import (
    ProviderError,
    ProviderAuthError,
    ProviderDataIncomplete,
    TokenExchangeError,
    TransientProviderError,
)
from storelink.integrations.common.models import ResourceTotals, StoreProfile, TokenSet
from storelink.integrations.zid.models import WebhookSubscription, normalize_zid_store
from storelink.integrations.zid.profile_attempts import (
    PROFILE_ATTEMPTS,
    ProfileAttempt,
    dual_token_headers,
    manager_token_headers,
)
from storelink.models.store import StorePlatform

logger = logging.getLogger(__name__)

ZID_AUTHORIZE_URL = "https://oauth.zid.sa/oauth/authorize"
ZID_TOKEN_URL = "https://oauth.zid.sa/oauth/token"
ZID_API_URL = "https://api.zid.sa/v1"
ZID_SCOPE = "offline_access"


class ZidClient(ProviderTokenAdapter):
    """
    Async adapter for Zid's OAuth server and Manager API.

    SECURITY: client secret and both tokens must never be logged.
    """

    provider = "zid"
    platform = StorePlatform.ZID
    supports_refresh = True

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        api_base_url: str = ZID_API_URL,
        attempts: tuple = PROFILE_ATTEMPTS,
        **kwargs,
    ):
        if not client_id or not client_secret:
            raise ValueError("Zid client_id and client_secret are required")
        super().__init__(**kwargs)
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.api_base_url = api_base_url.rstrip("/")
        self.attempts = attempts

    @classmethod
    def from_env(cls) -> "ZidClient":
        """
        Build a client from ZID_* environment variables.

        Raises:
            ValueError: If a required variable is missing
        """
        client_id = os.getenv("ZID_CLIENT_ID")
        client_secret = os.getenv("ZID_CLIENT_SECRET")
        redirect_uri = os.getenv("ZID_OAUTH_CALLBACK_URL")

        if not client_id:
            raise ValueError("ZID_CLIENT_ID environment variable is required")
        if not client_secret:
            raise ValueError("ZID_CLIENT_SECRET environment variable is required")
        if not redirect_uri:
            raise ValueError("ZID_OAUTH_CALLBACK_URL environment variable is required")

        return cls(client_id, client_secret, redirect_uri)

    @property
    def app_id(self) -> str:
        """Subscriber id Zid associates with this application's webhooks."""
        return self.client_id

    def authorization_url_for_state(self, state: Optional[str]) -> str:
        return self._with_query(ZID_AUTHORIZE_URL, {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": ZID_SCOPE,
            "state": state,
        })

    # =========================================================================
    # Tokens
    # =========================================================================

    async def _token_request(self, body: Dict[str, str], operation: str) -> TokenSet:
        payload = {
            **body,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "redirect_uri": self.redirect_uri,
        }
        try:
            data = await self._request("POST", ZID_TOKEN_URL, json=payload)
        except ProviderError as e:
            if e.retryable:
                raise
            raise TokenExchangeError(
                f"Zid {operation} failed: {e.status_code}",
                status_code=e.status_code,
                response=e.response,
                provider=self.provider,
            )

        if not data.get("access_token"):
            raise TokenExchangeError(
                f"Zid {operation} response missing access_token",
                provider=self.provider,
            )

        secondary = data.get("authorization") or None
        logger.info(
            "Zid token %s successful",
            operation,
            extra={"has_secondary_token": bool(secondary)},
        )

        return TokenSet(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_in_seconds=data.get("expires_in"),
            secondary_auth_token=secondary,
            token_type=data.get("token_type", "bearer"),
        )

    async def exchange_code(self, code: str) -> TokenSet:
        """
        Exchange OAuth authorization code for tokens.

        The returned TokenSet has secondary_auth_token=None when Zid omitted
        the ``authorization`` field.
        """
        return await self._token_request(
            {"grant_type": "authorization_code", "code": code},
            "exchange",
        )

    async def refresh(self, refresh_token: str) -> TokenSet:
        return await self._token_request(
            {"grant_type": "refresh_token", "refresh_token": refresh_token},
            "refresh",
        )

    # =========================================================================
    # Profile
    # =========================================================================

    async def _run_attempt(self, attempt: ProfileAttempt, tokens: TokenSet) -> Optional[StoreProfile]:
        headers = attempt.build_headers(tokens)
        if headers is None:
            logger.debug("Zid profile attempt not applicable", extra={"attempt": attempt.name})
            return None

        body = await self._request("GET", f"{self.api_base_url}{attempt.path}", headers=headers)
        profile = normalize_zid_store(body)
        if not profile.merchant_id:
            raise ProviderDataIncomplete(
                f"Zid {attempt.path} response has no store id",
                missing_fields=["id"],
                provider=self.provider,
            )
        return profile

    async def fetch_store_profile(self, tokens: TokenSet) -> StoreProfile:
        """
        Try each profile attempt in order and return the first success.

        Every failure is logged with the attempt name and status code.

        Raises:
            ProviderAuthError: If every applicable attempt was rejected
            TransientProviderError: If no attempt succeeded and one failed transiently
            ProviderError: Otherwise, when all attempts failed
        """
        failures: List[ProviderError] = []

        for attempt in self.attempts:
            try:
                profile = await self._run_attempt(attempt, tokens)
            except ProviderError as e:
                logger.warning(
                    "Zid profile attempt failed",
                    extra={
                        "attempt": attempt.name,
                        "status_code": e.status_code,
                        "error_type": type(e).__name__,
                    },
                )
                failures.append(e)
                continue

            if profile is None:
                continue

            logger.info(
                "Zid profile attempt succeeded",
                extra={"attempt": attempt.name, "merchant_id": profile.merchant_id},
            )
            if not profile.secondary_auth_token and tokens.secondary_auth_token:
                profile.secondary_auth_token = tokens.secondary_auth_token
            return profile

        if failures and all(isinstance(e, ProviderAuthError) for e in failures):
            raise failures[-1]
        for failure in failures:
            if isinstance(failure, TransientProviderError):
                raise failure
        raise ProviderError(
            f"All {len(self.attempts)} Zid profile attempts failed",
            code="profile_attempts_exhausted",
            provider=self.provider,
        )

    async def fetch_secondary_auth_token(self, tokens: TokenSet) -> Optional[str]:
        """
        Look up the ``authorization`` token the token endpoint omitted.

        Returns None when no profile endpoint exposes it.
        """
        profile = await self.fetch_store_profile(tokens)
        return profile.secondary_auth_token

    # =========================================================================
    # Manager API helpers
    # =========================================================================

    def manager_headers(self, tokens: TokenSet) -> Dict[str, str]:
        """Dual-token headers when possible, primary-token-only otherwise."""
        return dual_token_headers(tokens) or manager_token_headers(tokens)

    async def _listing_total(self, tokens: TokenSet, resource: str) -> Optional[int]:
        body = await self._request(
            "GET",
            f"{self.api_base_url}/managers/store/{resource}",
            headers=self.manager_headers(tokens),
            params={"page": 1, "per_page": 1},
        )
        total = (body.get("pagination") or {}).get("total")
        if total is None:
            total = body.get("total")
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

    # =========================================================================
    # Webhooks
    # =========================================================================

    async def list_webhooks(self, tokens: TokenSet) -> List[WebhookSubscription]:
        body = await self._request(
            "GET",
            f"{self.api_base_url}/managers/webhooks",
            headers=self.manager_headers(tokens),
        )
        items = body.get("webhooks")
        if items is None:
            items = body.get("data") or []
        return [WebhookSubscription.from_dict(item) for item in items if isinstance(item, dict)]

    async def create_webhook(
        self,
        tokens: TokenSet,
        event: str,
        target_url: str,
        app_id: str,
    ) -> WebhookSubscription:
        body = await self._request(
            "POST",
            f"{self.api_base_url}/managers/webhooks",
            headers=self.manager_headers(tokens),
            json={
                "event": event,
                "target_url": target_url,
                "original_id": app_id,
                "subscriber": app_id,
                "conditions": {},
            },
        )
        data = body.get("webhook") or body.get("data") or body
        subscription = WebhookSubscription.from_dict(data)
        if not subscription.event:
            subscription.event = event
        if not subscription.target_url:
            subscription.target_url = target_url
        return subscription

    async def delete_app_webhooks(self, tokens: TokenSet, app_id: str) -> None:
        """
        Delete every subscription owned by app_id.

        Raises:
            ProviderNotFoundError: When there is nothing to delete
        """
        await self._request(
            "DELETE",
            f"{self.api_base_url}/managers/webhooks",
            headers=self.manager_headers(tokens),
            params={"subscriber": app_id},
        )
