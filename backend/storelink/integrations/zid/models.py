"""
Data models for Zid API responses.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from storelink.integrations.common.models import StoreProfile


@dataclass
class WebhookSubscription:
    """A provider-held webhook subscription."""

    event: str
    target_url: str
    active: bool = True
    subscription_id: Optional[str] = None
    subscriber: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WebhookSubscription":
        active = data.get("active")
        if active is None:
            active = data.get("is_active", True)
        return cls(
            event=data.get("event", ""),
            target_url=data.get("target_url") or data.get("url") or "",
            active=bool(active),
            subscription_id=str(data["id"]) if data.get("id") is not None else None,
            subscriber=data.get("subscriber"),
            raw=data,
        )


def normalize_zid_store(data: Dict[str, Any], authorization: Optional[str] = None) -> StoreProfile:
    """
    Map a Zid manager/account or store/info payload onto StoreProfile.

    Zid responds with the store either nested under ``store`` or at the top
    level, and field names drift between endpoints.
    """
    user = data.get("user") if isinstance(data.get("user"), dict) else {}
    store = data.get("store") or user.get("store") or data
    if not isinstance(store, dict):
        store = data

    store_id = store.get("id")
    store_uuid = store.get("uuid")
    merchant_id = str(store_id) if store_id is not None else store_uuid

    currency = store.get("currency")
    if isinstance(currency, dict):
        currency = currency.get("code")

    subscription = store.get("subscription")
    plan = subscription.get("package_code") if isinstance(subscription, dict) else None

    return StoreProfile(
        merchant_id=merchant_id or "",
        uuid=store_uuid or (str(store_id) if store_id is not None else None),
        name=store.get("name") or store.get("title"),
        email=store.get("email") or user.get("email") or "",
        phone=store.get("mobile") or store.get("phone") or user.get("mobile") or "",
        domain=store.get("url") or store.get("domain") or "",
        logo=store.get("logo") or store.get("image"),
        plan=plan,
        currency=currency or "SAR",
        locale=store.get("language") or "ar",
        secondary_auth_token=authorization or data.get("authorization") or user.get("authorization"),
        raw=data,
    )
