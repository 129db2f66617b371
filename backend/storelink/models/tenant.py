"""
Tenant model for the multi-tenant onboarding platform.

Tenant is the paying account boundary. Tenant.id is the tenant_id referenced
by stores, users and inbound webhook events.

SECURITY: tenant_id on authenticated routes is ONLY extracted from the JWT,
never from client input.
"""

import enum

from sqlalchemy import Column, String, Enum, Index

from storelink.db_base import Base
from storelink.models.base import TimestampMixin, SoftDeleteMixin, generate_uuid


class TenantStatus(str, enum.Enum):
    """Tenant lifecycle status."""
    ACTIVE = "active"
    SUSPENDED = "suspended"


class Tenant(Base, TimestampMixin, SoftDeleteMixin):
    """Account boundary that owns zero or more stores."""

    __tablename__ = "tenants"

    id = Column(
        String(36),
        primary_key=True,
        default=generate_uuid,
        comment="Primary key - this IS the tenant_id used across all models"
    )

    name = Column(
        String(255),
        nullable=False,
        comment="Display name of the tenant"
    )

    email = Column(
        String(255),
        nullable=True,
        index=True,
        comment="Primary contact email, used to match storefront installs"
    )

    phone = Column(
        String(50),
        nullable=True,
        comment="Primary contact phone"
    )

    status = Column(
        Enum(TenantStatus, name="tenant_status", create_constraint=True),
        nullable=False,
        default=TenantStatus.ACTIVE,
        index=True,
        comment="Tenant lifecycle status"
    )

    __table_args__ = (
        Index("ix_tenants_email_deleted", "email", "deleted_at"),
    )

    def __repr__(self) -> str:
        return f"<Tenant(id={self.id}, name={self.name}, status={self.status})>"

    @property
    def is_active(self) -> bool:
        """Check if tenant is live and not suspended."""
        return self.status == TenantStatus.ACTIVE and not self.is_deleted
