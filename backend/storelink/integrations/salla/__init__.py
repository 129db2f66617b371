"""
Salla integration: OAuth token adapter and Admin API profile access.
"""

from storelink.integrations.salla.client import (
    SallaClient,
    SALLA_AUTHORIZE_URL,
    SALLA_TOKEN_URL,
    SALLA_API_URL,
    normalize_salla_store,
)

__all__ = [
    "SallaClient",
    "SALLA_AUTHORIZE_URL",
    "SALLA_TOKEN_URL",
    "SALLA_API_URL",
    "normalize_salla_store",
]
