"""
Generic API-key platform integration.
"""

from storelink.integrations.generic.client import (
    GenericApiClient,
    extract_store_info,
    API_KEY_TTL_WITH_SECRET_DAYS,
    API_KEY_TTL_WITHOUT_SECRET_DAYS,
)

__all__ = [
    "GenericApiClient",
    "extract_store_info",
    "API_KEY_TTL_WITH_SECRET_DAYS",
    "API_KEY_TTL_WITHOUT_SECRET_DAYS",
]
