"""
Store identity resolution: provider merchant id -> Store -> owning tenant.

Handles:
- Lookup by (platform, merchant id), restoring soft-deleted rows
- Auto-recovery of a lost store-to-tenant mapping from webhook history
- Ownership-checked connect (create or update in place)

SECURITY:
- A store that belongs to one tenant is NEVER re-pointed to another tenant
  by this service; connect raises OwnershipConflictError instead
- Auto-recovery refuses to guess: zero or several candidate tenants means
  no recovery
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import desc, func, select
from sqlalchemy.orm import Session

from storelink.integrations.common.models import StoreProfile, TokenSet
from storelink.models.store import Store, StorePlatform, StoreStatus
from storelink.models.webhook_event import MERCHANT_HINT_KEY, WebhookEvent
from storelink.platform.secrets import encrypt_secret
from storelink.services.errors import AmbiguousRecoveryError, OwnershipConflictError
from storelink.services.tenant_directory import TenantDirectory

logger = logging.getLogger(__name__)

# Upper bound on distinct tenants pulled from webhook history
RECOVERY_CANDIDATE_LIMIT = 5

PLATFORM_LABELS = {
    StorePlatform.SALLA: "Salla",
    StorePlatform.ZID: "Zid",
    StorePlatform.OTHER: "Custom",
}


def placeholder_store_name(platform: StorePlatform, merchant_id: str) -> str:
    return f"{PLATFORM_LABELS[platform]} store #{merchant_id}"


class StoreIdentityResolver:
    """Maps provider-native identifiers to Store rows and their tenants."""

    def __init__(self, db_session: Session, tenants: Optional[TenantDirectory] = None):
        self.db = db_session
        self.tenants = tenants or TenantDirectory(db_session)

    # =========================================================================
    # Lookup
    # =========================================================================

    @staticmethod
    def _merchant_column(platform: StorePlatform):
        if platform == StorePlatform.SALLA:
            return Store.salla_merchant_id
        if platform == StorePlatform.ZID:
            return Store.zid_store_id
        return Store.other_store_id

    def find_store(
        self,
        platform: StorePlatform,
        merchant_id: str,
        include_deleted: bool = False,
    ) -> Optional[Store]:
        """
        Find the store for (platform, merchant_id).

        A live row always wins. With include_deleted, the most recently
        deleted row is returned when no live row exists.
        """
        column = self._merchant_column(platform)
        stmt = (
            select(Store)
            .where(Store.platform == platform)
            .where(column == str(merchant_id))
            .where(Store.deleted_at.is_(None))
        )
        store = self.db.execute(stmt).scalars().first()
        if store is not None or not include_deleted:
            return store

        stmt = (
            select(Store)
            .where(Store.platform == platform)
            .where(column == str(merchant_id))
            .where(Store.deleted_at.is_not(None))
            .order_by(desc(Store.deleted_at))
        )
        return self.db.execute(stmt).scalars().first()

    def find_by_zid_uuid(self, store_uuid: str) -> Optional[Store]:
        """Fallback lookup for Zid events that carry only the store uuid."""
        stmt = (
            select(Store)
            .where(Store.platform == StorePlatform.ZID)
            .where(Store.zid_store_uuid == store_uuid)
            .order_by(Store.deleted_at.is_not(None))
        )
        return self.db.execute(stmt).scalars().first()

    def resolve_by_merchant_id(
        self,
        platform: StorePlatform,
        merchant_id: str,
    ) -> Optional[Store]:
        """
        Resolve the store an inbound provider event belongs to.

        1. Live store -> returned as-is
        2. Soft-deleted store -> restored (deleted_at cleared, status active)
        3. No store -> auto-recovery from webhook history

        Returns:
            Store, or None when nothing matches and recovery is not possible
        """
        if not merchant_id:
            return None
        merchant_id = str(merchant_id)

        store = self.find_store(platform, merchant_id, include_deleted=True)

        if store is not None and store.is_deleted:
            logger.warning(
                "Restoring soft-deleted store for inbound provider event",
                extra={
                    "store_id": store.id,
                    "platform": platform.value,
                    "merchant_id": merchant_id,
                },
            )
            store.restore()
            store.status = StoreStatus.ACTIVE
            self.db.flush()

        if store is not None:
            return store

        logger.warning(
            "Merchant not found in stores, attempting auto-recovery",
            extra={"platform": platform.value, "merchant_id": merchant_id},
        )
        try:
            return self.recover_from_webhook_history(platform, merchant_id)
        except AmbiguousRecoveryError as e:
            logger.error(
                "Auto-recovery refused: ambiguous ownership",
                extra={
                    "platform": platform.value,
                    "merchant_id": merchant_id,
                    "candidate_count": len(e.tenant_ids),
                },
            )
            return None

    # =========================================================================
    # Auto-recovery
    # =========================================================================

    def _candidate_tenant_ids(
        self,
        platform: StorePlatform,
        merchant_id: Optional[str],
    ) -> List[str]:
        stmt = (
            select(WebhookEvent.tenant_id)
            .where(WebhookEvent.source == platform)
            .where(WebhookEvent.tenant_id.is_not(None))
        )
        if merchant_id is not None:
            stmt = stmt.where(
                WebhookEvent.payload[MERCHANT_HINT_KEY].as_string() == merchant_id
            )
        stmt = (
            stmt.group_by(WebhookEvent.tenant_id)
            .order_by(desc(func.max(WebhookEvent.created_at)))
            .limit(RECOVERY_CANDIDATE_LIMIT)
        )
        return [row[0] for row in self.db.execute(stmt).all()]

    def recover_from_webhook_history(
        self,
        platform: StorePlatform,
        merchant_id: str,
    ) -> Optional[Store]:
        """
        Rebuild a lost store-to-tenant mapping from inbound webhook records.

        Events hinting at this merchant are preferred; when none exist, all
        of the platform's attributed events are considered.

        Returns:
            The repaired or newly created (pending) store, or None when no
            single live tenant can be identified

        Raises:
            AmbiguousRecoveryError: More than one candidate tenant
        """
        tenant_ids = self._candidate_tenant_ids(platform, merchant_id)
        if not tenant_ids:
            tenant_ids = self._candidate_tenant_ids(platform, None)

        if not tenant_ids:
            logger.warning(
                "Auto-recovery found no webhook history",
                extra={"platform": platform.value, "merchant_id": merchant_id},
            )
            return None

        if len(tenant_ids) > 1:
            raise AmbiguousRecoveryError(
                f"{len(tenant_ids)} tenants referenced in webhook history",
                tenant_ids=tenant_ids,
            )

        tenant = self.tenants.find_tenant(tenant_ids[0])
        if tenant is None:
            logger.warning(
                "Auto-recovery candidate tenant no longer exists",
                extra={"platform": platform.value, "tenant_id": tenant_ids[0]},
            )
            return None

        stmt = (
            select(Store)
            .where(Store.tenant_id == tenant.id)
            .where(Store.platform == platform)
            .where(Store.deleted_at.is_(None))
            .order_by(desc(Store.updated_at))
        )
        store = self.db.execute(stmt).scalars().first()

        if store is not None:
            previous = store.merchant_id
            store.set_merchant_id(merchant_id)
            action = "relinked"
            logger.warning(
                "Auto-recovery re-pointed tenant store to merchant",
                extra={
                    "store_id": store.id,
                    "tenant_id": tenant.id,
                    "previous_merchant_id": previous,
                    "merchant_id": merchant_id,
                },
            )
        else:
            store = Store(
                tenant_id=tenant.id,
                platform=platform,
                name=f"{placeholder_store_name(platform, merchant_id)} (auto-recovered)",
                status=StoreStatus.PENDING,
                consecutive_errors=0,
            )
            store.set_merchant_id(merchant_id)
            self.db.add(store)
            action = "created"

        self.db.flush()

        logger.info(
            "store.auto_recovered",
            extra={
                "store_id": store.id,
                "tenant_id": tenant.id,
                "platform": platform.value,
                "merchant_id": merchant_id,
                "action": action,
            },
        )
        return store

    # =========================================================================
    # Connect
    # =========================================================================

    def connect(
        self,
        tenant_id: str,
        platform: StorePlatform,
        tokens: TokenSet,
        profile: StoreProfile,
    ) -> Store:
        """
        Attach a freshly authorized merchant account to tenant_id.

        - Store owned by a different tenant -> OwnershipConflictError, the
          existing row is left untouched
        - Store owned by tenant_id (or unowned) -> updated in place
        - No store -> created

        Raises:
            OwnershipConflictError: merchant id belongs to another tenant
        """
        if not tenant_id:
            raise ValueError("tenant_id is required")
        if not profile.merchant_id:
            raise ValueError("profile.merchant_id is required")

        store = self.find_store(platform, profile.merchant_id, include_deleted=True)
        if store is None and platform == StorePlatform.ZID and profile.uuid:
            store = self.find_by_zid_uuid(profile.uuid)

        if store is not None and store.tenant_id and store.tenant_id != tenant_id:
            logger.warning(
                "Store ownership conflict on connect",
                extra={
                    "store_id": store.id,
                    "platform": platform.value,
                    "merchant_id": profile.merchant_id,
                    "requesting_tenant_id": tenant_id,
                },
            )
            raise OwnershipConflictError(
                "This store is already connected to another account",
                store_id=store.id,
            )

        is_new = store is None
        if is_new:
            store = Store(platform=platform, consecutive_errors=0)
            store.set_merchant_id(profile.merchant_id)
            self.db.add(store)
        elif store.merchant_id != profile.merchant_id:
            # Matched by Zid uuid under an older store id
            logger.info(
                "Zid store matched by uuid, updating store id",
                extra={"store_id": store.id, "merchant_id": profile.merchant_id},
            )
            store.set_merchant_id(profile.merchant_id)

        if not store.tenant_id:
            store.tenant_id = tenant_id

        self._apply_tokens(store, tokens)
        self.apply_profile(store, profile)
        store.restore()
        store.status = StoreStatus.ACTIVE
        store.reset_errors()

        self.db.flush()

        logger.info(
            "store.connected",
            extra={
                "store_id": store.id,
                "tenant_id": tenant_id,
                "platform": platform.value,
                "merchant_id": profile.merchant_id,
                "is_new": is_new,
            },
        )
        return store

    @staticmethod
    def _apply_tokens(store: Store, tokens: TokenSet) -> None:
        now = datetime.now(timezone.utc)
        store.access_token_encrypted = encrypt_secret(tokens.access_token)
        store.refresh_token_encrypted = encrypt_secret(tokens.refresh_token)
        store.token_expires_at = tokens.expires_at(now)
        store.last_token_refresh_at = now

        if store.platform == StorePlatform.ZID:
            # Only keep a secondary token the provider just confirmed
            store.authorization_token_encrypted = encrypt_secret(tokens.secondary_auth_token)

    @staticmethod
    def apply_profile(store: Store, profile: StoreProfile) -> None:
        if profile.missing_fields():
            logger.warning(
                "Store profile incomplete, persisting placeholders",
                extra={
                    "store_id": store.id,
                    "platform": store.platform.value,
                    "missing_fields": profile.missing_fields(),
                },
            )

        store.name = (
            profile.name
            or store.name
            or placeholder_store_name(store.platform, profile.merchant_id)
        )
        store.store_email = profile.email or store.store_email
        store.store_phone = profile.phone or store.store_phone
        store.store_domain = profile.domain or store.store_domain
        store.store_logo = profile.logo or store.store_logo
        store.store_plan = profile.plan or store.store_plan
        store.store_currency = profile.currency or store.store_currency
        store.store_locale = profile.locale or store.store_locale
        if store.platform == StorePlatform.ZID and profile.uuid:
            store.zid_store_uuid = profile.uuid
