"""
Database models for tenants, stores and inbound webhook history.
"""

from storelink.models.base import TimestampMixin, SoftDeleteMixin, generate_uuid
from storelink.models.tenant import Tenant, TenantStatus
from storelink.models.user import User
from storelink.models.store import Store, StorePlatform, StoreStatus
from storelink.models.webhook_event import WebhookEvent, MERCHANT_HINT_KEY

__all__ = [
    "TimestampMixin",
    "SoftDeleteMixin",
    "generate_uuid",
    "Tenant",
    "TenantStatus",
    "User",
    "Store",
    "StorePlatform",
    "StoreStatus",
    "WebhookEvent",
    "MERCHANT_HINT_KEY",
]
