"""
Store model linking an external merchant account to a tenant.

CRITICAL DESIGN DECISIONS:
- One row per (platform, provider-native id) among non-deleted rows
- tenant_id is nullable until ownership is resolved, and is never silently
  re-pointed to a different tenant
- access/refresh/authorization tokens are encrypted at rest
- Rows are soft-deleted only, so identity survives disconnects and uninstalls
- Aggregate counts are written by explicit sync only
"""

import enum
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import (
    Column, String, Text, Integer, DateTime, Enum, Index, JSON, text
)

from storelink.db_base import Base
from storelink.models.base import (
    TimestampMixin, SoftDeleteMixin, enum_values, generate_uuid
)


class StorePlatform(str, enum.Enum):
    """External e-commerce platform a store is connected through."""
    SALLA = "salla"
    ZID = "zid"
    OTHER = "other"


class StoreStatus(str, enum.Enum):
    """Store connection health."""
    PENDING = "pending"
    ACTIVE = "active"
    DISCONNECTED = "disconnected"
    TOKEN_EXPIRED = "token_expired"
    SUSPENDED = "suspended"
    UNINSTALLED = "uninstalled"


class Store(Base, TimestampMixin, SoftDeleteMixin):
    """
    A tenant's connection to one merchant account on one platform.

    SECURITY:
    - *_encrypted columns hold cipher output, decrypt only right before use
    - tenant_id comes from the JWT or from an ownership resolution, NEVER
      from request input
    """

    __tablename__ = "stores"

    id = Column(
        String(36),
        primary_key=True,
        default=generate_uuid,
        comment="UUID primary key"
    )

    tenant_id = Column(
        String(36),
        nullable=True,
        index=True,
        comment="Owning tenant, NULL until ownership is resolved"
    )

    platform = Column(
        Enum(StorePlatform, name="store_platform", values_callable=enum_values),
        nullable=False,
        comment="Provider this store is connected through"
    )

    name = Column(String(255), nullable=False, comment="Display name")

    status = Column(
        Enum(StoreStatus, name="store_status", values_callable=enum_values),
        nullable=False,
        default=StoreStatus.PENDING,
        index=True,
        comment="Connection health"
    )

    # Provider-native identifiers
    salla_merchant_id = Column(
        String(64),
        nullable=True,
        index=True,
        comment="Salla merchant id"
    )
    zid_store_id = Column(
        String(64),
        nullable=True,
        index=True,
        comment="Zid store id"
    )
    zid_store_uuid = Column(
        String(64),
        nullable=True,
        comment="Zid store uuid, fallback lookup key"
    )
    other_store_id = Column(
        String(255),
        nullable=True,
        comment="Identifier reported by a generic API-key platform"
    )
    api_base_url = Column(
        String(500),
        nullable=True,
        comment="Base URL for generic API-key platforms"
    )
    api_key_hint = Column(
        String(16),
        nullable=True,
        comment="Masked API key shown in the dashboard"
    )

    # Credentials (encrypted at rest)
    access_token_encrypted = Column(Text, nullable=True)
    refresh_token_encrypted = Column(Text, nullable=True)
    authorization_token_encrypted = Column(
        Text,
        nullable=True,
        comment="Zid secondary authorization token"
    )
    api_secret_encrypted = Column(
        Text,
        nullable=True,
        comment="Generic platform API secret"
    )
    token_expires_at = Column(DateTime(timezone=True), nullable=True)
    last_token_refresh_at = Column(DateTime(timezone=True), nullable=True)

    # Health
    consecutive_errors = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    last_error_at = Column(DateTime(timezone=True), nullable=True)

    # Denormalized provider profile, refreshed by sync
    store_email = Column(String(255), nullable=True)
    store_phone = Column(String(50), nullable=True)
    store_domain = Column(String(500), nullable=True)
    store_logo = Column(String(1000), nullable=True)
    store_plan = Column(String(100), nullable=True)
    store_currency = Column(String(10), nullable=True)
    store_locale = Column(String(10), nullable=True)

    # Cached aggregates, populated only by explicit sync
    orders_count = Column(Integer, nullable=True)
    products_count = Column(Integer, nullable=True)
    customers_count = Column(Integer, nullable=True)
    last_synced_at = Column(DateTime(timezone=True), nullable=True)

    subscribed_events = Column(JSON, nullable=True)
    settings = Column(JSON, nullable=True)

    __table_args__ = (
        Index("ix_stores_tenant_platform", "tenant_id", "platform"),
        Index(
            "uq_stores_salla_merchant_live",
            "platform",
            "salla_merchant_id",
            unique=True,
            postgresql_where=text("deleted_at IS NULL"),
            sqlite_where=text("deleted_at IS NULL"),
        ),
        Index(
            "uq_stores_zid_store_live",
            "platform",
            "zid_store_id",
            unique=True,
            postgresql_where=text("deleted_at IS NULL"),
            sqlite_where=text("deleted_at IS NULL"),
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<Store(id={self.id}, platform={self.platform}, "
            f"merchant_id={self.merchant_id}, tenant_id={self.tenant_id})>"
        )

    @property
    def merchant_id(self) -> Optional[str]:
        """Provider-native identifier for this store's platform."""
        if self.platform == StorePlatform.SALLA:
            return self.salla_merchant_id
        if self.platform == StorePlatform.ZID:
            return self.zid_store_id
        return self.other_store_id

    def set_merchant_id(self, merchant_id: Optional[str]) -> None:
        if self.platform == StorePlatform.SALLA:
            self.salla_merchant_id = merchant_id
        elif self.platform == StorePlatform.ZID:
            self.zid_store_id = merchant_id
        else:
            self.other_store_id = merchant_id

    @property
    def is_active(self) -> bool:
        return self.status == StoreStatus.ACTIVE and not self.is_deleted

    @property
    def supports_refresh(self) -> bool:
        """API-key connections have no refresh mechanism."""
        return self.platform != StorePlatform.OTHER

    def token_expires_within(self, buffer: timedelta) -> bool:
        """True when the access token is missing an expiry or expires inside buffer."""
        if self.token_expires_at is None:
            return True
        expires_at = self.token_expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return expires_at - datetime.now(timezone.utc) < buffer

    def clear_credentials(self) -> None:
        self.access_token_encrypted = None
        self.refresh_token_encrypted = None
        self.authorization_token_encrypted = None
        self.api_secret_encrypted = None
        self.token_expires_at = None

    def record_error(self, message: str) -> None:
        self.last_error = message[:1000]
        self.last_error_at = datetime.now(timezone.utc)
        self.consecutive_errors = (self.consecutive_errors or 0) + 1

    def reset_errors(self) -> None:
        self.consecutive_errors = 0
        self.last_error = None
        self.last_error_at = None
