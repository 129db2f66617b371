"""
Zid integration: OAuth token adapter, profile attempts and webhook API.
"""

from storelink.integrations.zid.client import (
    ZidClient,
    ZID_AUTHORIZE_URL,
    ZID_TOKEN_URL,
    ZID_API_URL,
)
from storelink.integrations.zid.models import WebhookSubscription, normalize_zid_store
from storelink.integrations.zid.profile_attempts import PROFILE_ATTEMPTS, ProfileAttempt

__all__ = [
    # Client
    "ZidClient",
    "ZID_AUTHORIZE_URL",
    "ZID_TOKEN_URL",
    "ZID_API_URL",
    # Models
    "WebhookSubscription",
    "normalize_zid_store",
    # Attempts
    "PROFILE_ATTEMPTS",
    "ProfileAttempt",
]
