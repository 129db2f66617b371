"""
Request/response schemas for the store connection API.

Credentials never appear in any response model.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from storelink.integrations.zid import WebhookSubscription
from storelink.models.store import Store
from storelink.services.webhook_subscription_manager import RegistrationResult


class AuthorizationUrlResponse(BaseModel):
    url: str


class ApiKeyConnectRequest(BaseModel):
    api_base_url: str = Field(..., min_length=1, max_length=500)
    api_key: str = Field(..., min_length=1)
    api_secret: Optional[str] = None
    name: Optional[str] = Field(None, max_length=255)


class StoreResponse(BaseModel):
    """Public projection of a Store."""

    id: str
    platform: str
    status: str
    name: str
    merchant_id: Optional[str] = None
    store_email: Optional[str] = None
    store_phone: Optional[str] = None
    store_domain: Optional[str] = None
    store_logo: Optional[str] = None
    store_plan: Optional[str] = None
    store_currency: Optional[str] = None
    store_locale: Optional[str] = None
    api_key_hint: Optional[str] = None
    orders_count: Optional[int] = None
    products_count: Optional[int] = None
    customers_count: Optional[int] = None
    token_expires_at: Optional[datetime] = None
    last_synced_at: Optional[datetime] = None
    consecutive_errors: int = 0
    last_error: Optional[str] = None
    subscribed_events: Optional[List[str]] = None
    settings: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None


class StoreListResponse(BaseModel):
    stores: List[StoreResponse]
    total: int


class StoreStatisticsResponse(BaseModel):
    total: int
    by_status: Dict[str, int]
    by_platform: Dict[str, int]


class StoreSettingsUpdate(BaseModel):
    settings: Dict[str, Any]


class WebhookSubscriptionResponse(BaseModel):
    event: str
    target_url: str
    active: bool
    subscription_id: Optional[str] = None


class WebhookListResponse(BaseModel):
    subscriptions: List[WebhookSubscriptionResponse]
    total: int


class WebhookRegistrationResponse(BaseModel):
    registered: List[str]
    failed: List[str]
    inactive: List[str]


class DisconnectResponse(BaseModel):
    id: str
    status: str


def store_to_response(store: Store) -> StoreResponse:
    return StoreResponse(
        id=store.id,
        platform=store.platform.value,
        status=store.status.value,
        name=store.name,
        merchant_id=store.merchant_id,
        store_email=store.store_email,
        store_phone=store.store_phone,
        store_domain=store.store_domain,
        store_logo=store.store_logo,
        store_plan=store.store_plan,
        store_currency=store.store_currency,
        store_locale=store.store_locale,
        api_key_hint=store.api_key_hint,
        orders_count=store.orders_count,
        products_count=store.products_count,
        customers_count=store.customers_count,
        token_expires_at=store.token_expires_at,
        last_synced_at=store.last_synced_at,
        consecutive_errors=store.consecutive_errors or 0,
        last_error=store.last_error,
        subscribed_events=store.subscribed_events,
        settings=store.settings or {},
        created_at=store.created_at,
    )


def stores_to_response(stores: List[Store]) -> StoreListResponse:
    return StoreListResponse(stores=[store_to_response(s) for s in stores], total=len(stores))


def subscriptions_to_response(subscriptions: List[WebhookSubscription]) -> WebhookListResponse:
    items = [
        WebhookSubscriptionResponse(
            event=s.event,
            target_url=s.target_url,
            active=s.active,
            subscription_id=s.subscription_id,
        )
        for s in subscriptions
    ]
    return WebhookListResponse(subscriptions=items, total=len(items))


def registration_to_response(result: RegistrationResult) -> WebhookRegistrationResponse:
    return WebhookRegistrationResponse(**result.to_dict())
