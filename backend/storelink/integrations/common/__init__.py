"""
Provider-independent adapter interface, normalized models and exceptions.
"""

from storelink.integrations.common.client import (
    ProviderHttpClient,
    ProviderTokenAdapter,
    gather_totals,
)
from storelink.integrations.common.exceptions import (
    ProviderError,
    ProviderAuthError,
    ProviderNotFoundError,
    ProviderRateLimitError,
    ProviderConnectionError,
    TransientProviderError,
    TokenExchangeError,
    ProviderDataIncomplete,
)
from storelink.integrations.common.models import TokenSet, StoreProfile, ResourceTotals

__all__ = [
    # Client
    "ProviderHttpClient",
    "ProviderTokenAdapter",
    "gather_totals",
    # Exceptions
    "ProviderError",
    "ProviderAuthError",
    "ProviderNotFoundError",
    "ProviderRateLimitError",
    "ProviderConnectionError",
    "TransientProviderError",
    "TokenExchangeError",
    "ProviderDataIncomplete",
    # Models
    "TokenSet",
    "StoreProfile",
    "ResourceTotals",
]
