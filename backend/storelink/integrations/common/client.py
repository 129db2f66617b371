"""
Shared HTTP plumbing and the capability interface every provider adapter
implements.

All outbound provider calls go through ProviderHttpClient._request, which
applies an explicit timeout and maps HTTP outcomes onto the provider
exception hierarchy. Timeouts surface as ProviderConnectionError, a
TransientProviderError, never as an authorization failure.
"""

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx

from storelink.integrations.common.exceptions import (
    ProviderError,
    ProviderAuthError,
    ProviderNotFoundError,
    ProviderRateLimitError,
    ProviderConnectionError,
    TransientProviderError,
)
from storelink.integrations.common.models import ResourceTotals, StoreProfile, TokenSet
from storelink.platform.secrets import redact_secrets

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = float(os.getenv("PROVIDER_HTTP_TIMEOUT_SECONDS", "10"))
DEFAULT_CONNECT_TIMEOUT_SECONDS = 5.0


class ProviderHttpClient:
    """
    Thin async HTTP wrapper with provider-aware error mapping.

    SECURITY: request headers carry bearer tokens and are never logged.
    """

    provider = "provider"

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT_SECONDS,
    ):
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=min(connect_timeout, timeout)),
            headers={"Accept": "application/json"},
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _request(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        json: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """
        Make an HTTP request to a provider API.

        Returns:
            Response JSON as a dictionary ({} for empty bodies)

        Raises:
            ProviderError: On API errors, see module docstring for mapping
        """
        kwargs: Dict[str, Any] = {"headers": headers, "json": json, "data": data, "params": params}
        if timeout is not None:
            kwargs["timeout"] = timeout

        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            logger.error(
                "Provider API timeout",
                extra={"provider": self.provider, "url": url, "error": str(e)},
            )
            raise ProviderConnectionError(f"Request timeout: {e}", provider=self.provider)
        except httpx.RequestError as e:
            logger.error(
                "Provider API connection error",
                extra={"provider": self.provider, "url": url, "error": str(e)},
            )
            raise ProviderConnectionError(f"Connection error: {e}", provider=self.provider)

        status_code = response.status_code

        if status_code in (401, 403):
            logger.warning(
                "Provider API rejected credentials",
                extra={"provider": self.provider, "status_code": status_code, "url": url},
            )
            raise ProviderAuthError(
                status_code=status_code,
                response=_safe_json(response),
                provider=self.provider,
            )

        if status_code == 404:
            raise ProviderNotFoundError(
                message=f"Resource not found: {url}",
                response=_safe_json(response),
                provider=self.provider,
            )

        if status_code == 429:
            retry_after = response.headers.get("Retry-After")
            logger.warning(
                "Provider API rate limited",
                extra={"provider": self.provider, "url": url, "retry_after": retry_after},
            )
            raise ProviderRateLimitError(
                retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None,
                provider=self.provider,
            )

        if status_code >= 400:
            error_body = _safe_json(response)
            logger.error(
                "Provider API error",
                extra={
                    "provider": self.provider,
                    "status_code": status_code,
                    "url": url,
                    "response": str(redact_secrets(error_body))[:500],
                },
            )
            error_cls = TransientProviderError if status_code >= 500 else ProviderError
            raise error_cls(
                message=f"Provider API error: {status_code}",
                status_code=status_code,
                response=error_body,
                provider=self.provider,
            )

        if status_code == 204 or not response.content:
            return {}

        body = _safe_json(response)
        if not isinstance(body, dict):
            return {"data": body}
        return body


def _safe_json(response: httpx.Response) -> Dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, (dict, list)) else {}


class ProviderTokenAdapter(ProviderHttpClient, ABC):
    """
    Capability interface for one provider's OAuth and profile APIs.

    Implementations normalize divergent provider response shapes into
    TokenSet and StoreProfile.
    """

    platform = None
    supports_refresh = True

    @abstractmethod
    def authorization_url_for_state(self, state: Optional[str]) -> str:
        """Provider authorization page URL. A None state omits the parameter."""

    @staticmethod
    def _with_query(base_url: str, params: Dict[str, Any]) -> str:
        return f"{base_url}?{urlencode({k: v for k, v in params.items() if v is not None})}"

    @abstractmethod
    async def exchange_code(self, code: str) -> TokenSet:
        """Exchange an authorization code for tokens."""

    @abstractmethod
    async def refresh(self, refresh_token: str) -> TokenSet:
        """Obtain a new token pair from a refresh token."""

    @abstractmethod
    async def fetch_store_profile(self, tokens: TokenSet) -> StoreProfile:
        """Fetch and normalize the merchant's store profile."""

    async def fetch_resource_totals(self, tokens: TokenSet) -> ResourceTotals:
        """Order/product/customer totals. Providers without list APIs return empties."""
        return ResourceTotals()


async def gather_totals(fetchers: Dict[str, Any], provider: str) -> ResourceTotals:
    """
    Await per-resource total coroutines concurrently, tolerating failures.

    An auth failure on any resource is re-raised since it means the token
    itself is no longer usable.
    """
    names = list(fetchers.keys())
    results = await asyncio.gather(*fetchers.values(), return_exceptions=True)

    totals = ResourceTotals()
    for name, result in zip(names, results):
        if isinstance(result, ProviderAuthError):
            raise result
        if isinstance(result, BaseException):
            logger.warning(
                "Failed to fetch resource total",
                extra={"provider": provider, "resource": name, "error": str(result)},
            )
            totals.errors[name] = str(result)
            continue
        if isinstance(result, int):
            setattr(totals, name, result)
        else:
            logger.warning(
                "Resource listing missing pagination total",
                extra={"provider": provider, "resource": name},
            )
    return totals
