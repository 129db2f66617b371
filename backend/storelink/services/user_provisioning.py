"""
Auto-registration of merchants who install the app from a storefront.

Message delivery (email, WhatsApp) is delegated to the notifier callable;
this service only guarantees a User row exists for the store's tenant.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from storelink.integrations.common.models import StoreProfile
from storelink.models.store import Store
from storelink.models.user import User

logger = logging.getLogger(__name__)

Notifier = Callable[[User, Store, StoreProfile], None]


@dataclass
class ProvisionResult:
    user_id: str
    is_new_user: bool


def log_welcome_notification(user: User, store: Store, profile: StoreProfile) -> None:
    """Default notifier: records that a welcome message is due."""
    logger.info(
        "Welcome notification requested",
        extra={"user_id": user.id, "tenant_id": user.tenant_id, "store_id": store.id},
    )


class UserProvisioningService:
    """Finds or creates the merchant's user account."""

    def __init__(self, db_session: Session, notifier: Optional[Notifier] = None):
        self.db = db_session
        self.notifier = notifier or log_welcome_notification

    def find_user_by_email(self, email: Optional[str]) -> Optional[User]:
        if not email:
            return None
        stmt = select(User).where(func.lower(User.email) == email.strip().lower())
        return self.db.execute(stmt).scalars().first()

    def provision_user_and_notify(self, profile: StoreProfile, store: Store) -> ProvisionResult:
        """
        Ensure a user exists for the store owner and send the welcome message.

        Raises:
            ValueError: If the profile has no email or the store has no tenant
        """
        if not profile.email:
            raise ValueError("Cannot provision a user without an email")
        if not store.tenant_id:
            raise ValueError("Cannot provision a user for a store without a tenant")

        existing = self.find_user_by_email(profile.email)
        if existing is not None:
            return ProvisionResult(user_id=existing.id, is_new_user=False)

        user = User(
            tenant_id=store.tenant_id,
            email=profile.email.strip().lower(),
            name=profile.name,
            phone=profile.phone or None,
            auth_provider=store.platform.value,
        )
        self.db.add(user)
        self.db.flush()

        logger.info(
            "Provisioned user from store install",
            extra={"user_id": user.id, "tenant_id": store.tenant_id, "store_id": store.id},
        )

        self.notifier(user, store, profile)
        return ProvisionResult(user_id=user.id, is_new_user=True)
