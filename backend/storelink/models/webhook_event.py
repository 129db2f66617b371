"""
WebhookEvent model: append-only log of inbound provider webhooks.

Read by the store identity resolver to recover a lost store-to-tenant
mapping from historical traffic.
"""

from sqlalchemy import Column, String, DateTime, Index, JSON, Enum, func

from storelink.db_base import Base
from storelink.models.base import enum_values, generate_uuid
from storelink.models.store import StorePlatform

# Payload key carrying the merchant id the event was received for
MERCHANT_HINT_KEY = "_merchant"


class WebhookEvent(Base):
    """One inbound webhook delivery."""

    __tablename__ = "webhook_events"

    id = Column(
        String(36),
        primary_key=True,
        default=generate_uuid,
        comment="Primary key (UUID)"
    )

    source = Column(
        Enum(StorePlatform, name="webhook_source", values_callable=enum_values),
        nullable=False,
        index=True,
        comment="Provider that sent the webhook"
    )

    tenant_id = Column(
        String(36),
        nullable=True,
        index=True,
        comment="Tenant the event was attributed to, NULL if unresolved"
    )

    event_type = Column(
        String(255),
        nullable=False,
        comment="Provider event name (e.g. order.created)"
    )

    external_event_id = Column(
        String(255),
        nullable=True,
        comment="Provider delivery id, when supplied"
    )

    payload = Column(JSON, nullable=True, comment="Raw payload plus _merchant hint")

    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        comment="When the webhook was received"
    )

    __table_args__ = (
        Index("idx_webhook_events_source_tenant", "source", "tenant_id"),
        Index("idx_webhook_events_created", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<WebhookEvent(id={self.id}, source={self.source}, event_type={self.event_type})>"

    @property
    def merchant_hint(self):
        return (self.payload or {}).get(MERCHANT_HINT_KEY)
