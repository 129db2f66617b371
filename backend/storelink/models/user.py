"""
User model for merchants registered through a storefront install.
"""

from sqlalchemy import Column, String, Index

from storelink.db_base import Base
from storelink.models.base import TimestampMixin, generate_uuid


class User(Base, TimestampMixin):
    """A login belonging to a tenant."""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    tenant_id = Column(
        String(36),
        nullable=False,
        index=True,
        comment="Owning tenant"
    )
    email = Column(
        String(255),
        nullable=False,
        unique=True,
        comment="Login email (lower-cased)"
    )
    name = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    auth_provider = Column(
        String(50),
        nullable=True,
        comment="Platform the user was provisioned from (salla, zid)"
    )

    __table_args__ = (
        Index("ix_users_tenant_email", "tenant_id", "email"),
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, tenant_id={self.tenant_id})>"
