"""
Tenant directory: lookup and creation of tenant accounts.
"""

import logging
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from storelink.integrations.common.models import StoreProfile
from storelink.models.tenant import Tenant, TenantStatus

logger = logging.getLogger(__name__)


class TenantDirectory:
    """Reads and creates Tenant rows. Soft-deleted tenants are invisible."""

    def __init__(self, db_session: Session):
        self.db = db_session

    def find_tenant(self, tenant_id: Optional[str]) -> Optional[Tenant]:
        if not tenant_id:
            return None
        stmt = (
            select(Tenant)
            .where(Tenant.id == tenant_id)
            .where(Tenant.deleted_at.is_(None))
        )
        return self.db.execute(stmt).scalars().first()

    def find_by_email(self, email: Optional[str]) -> Optional[Tenant]:
        if not email:
            return None
        stmt = (
            select(Tenant)
            .where(func.lower(Tenant.email) == email.strip().lower())
            .where(Tenant.deleted_at.is_(None))
            .order_by(Tenant.created_at.asc())
        )
        return self.db.execute(stmt).scalars().first()

    def create_tenant(self, profile: StoreProfile) -> Tenant:
        tenant = Tenant(
            name=profile.name or f"Store {profile.merchant_id}",
            email=(profile.email or "").strip().lower() or None,
            phone=profile.phone or None,
            status=TenantStatus.ACTIVE,
        )
        self.db.add(tenant)
        self.db.flush()

        logger.info("Created tenant from store install", extra={"tenant_id": tenant.id})
        return tenant
