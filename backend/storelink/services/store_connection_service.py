"""
Store connection orchestration.

Handles:
- Authorization URL generation for a tenant
- OAuth callbacks for both the dashboard flow (valid state) and the
  storefront install flow (no state, tenant resolved from the store)
- API-key connections for generic platforms
- Tenant store listing, statistics and settings (database reads only)
- Explicit sync, disconnect and uninstall
- Zid webhook (re)registration and secondary-token enrichment, deferred to
  the background work queue

SECURITY:
- tenant_id comes from the JWT or the consumed OAuth state, NEVER from
  query parameters
- Tokens are NEVER logged

Usage:
    service = StoreConnectionService(db, providers, state_issuer, work_queue)
    redirect_url = await service.handle_callback(StorePlatform.SALLA, code, state, None)
"""

import logging
import os
from datetime import datetime, timezone
from typing import Any, Callable, ContextManager, Dict, List, Optional
from urllib.parse import urlencode, urlparse

from sqlalchemy import desc, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from storelink.config.webhook_events import get_webhook_events_loader
from storelink.integrations.common.client import ProviderTokenAdapter
from storelink.integrations.common.exceptions import (
    ProviderError,
    ProviderAuthError,
    ProviderNotFoundError,
)
from storelink.integrations.common.models import StoreProfile, TokenSet
from storelink.integrations.generic import (
    GenericApiClient,
    API_KEY_TTL_WITH_SECRET_DAYS,
    API_KEY_TTL_WITHOUT_SECRET_DAYS,
)
from storelink.integrations.registry import ProviderRegistry
from storelink.integrations.zid import WebhookSubscription
from storelink.models.store import Store, StorePlatform, StoreStatus
from storelink.platform.secrets import encrypt_secret, mask_secret
from storelink.services.errors import (
    InvalidApiCredentialsError,
    OwnershipConflictError,
    ReauthorizationRequiredError,
    StoreLifecycleError,
    StoreNotFoundError,
    UnsupportedPlatformError,
)
from storelink.services.oauth_state import OAuthStateIssuer
from storelink.services.store_identity_resolver import StoreIdentityResolver
from storelink.services.tenant_directory import TenantDirectory
from storelink.services.token_manager import TokenLifecycleManager, token_set_for
from storelink.services.user_provisioning import UserProvisioningService
from storelink.services.webhook_subscription_manager import (
    RegistrationResult,
    WebhookSubscriptionManager,
)
from storelink.workers.enrichment_queue import BackgroundWorkQueue

logger = logging.getLogger(__name__)

DEFAULT_FRONTEND_URL = "https://rafeq.ai"
STORES_PAGE_PATH = "/dashboard/stores"

SessionFactory = Callable[[], ContextManager[Session]]


def _default_session_factory() -> ContextManager[Session]:
    from storelink.database.session import session_scope
    return session_scope()


class StoreConnectionService:
    """Connects, syncs and disconnects stores on behalf of tenants."""

    def __init__(
        self,
        db_session: Session,
        providers: ProviderRegistry,
        state_issuer: OAuthStateIssuer,
        work_queue: Optional[BackgroundWorkQueue] = None,
        session_factory: Optional[SessionFactory] = None,
        webhook_manager_factory: Optional[Callable[..., WebhookSubscriptionManager]] = None,
        frontend_url: Optional[str] = None,
        api_base_url: Optional[str] = None,
    ):
        self.db = db_session
        self.providers = providers
        self.state_issuer = state_issuer
        self.work_queue = work_queue
        self._session_factory = session_factory or _default_session_factory
        self._webhook_manager_factory = webhook_manager_factory or WebhookSubscriptionManager
        self.frontend_url = (frontend_url or os.getenv("FRONTEND_URL") or DEFAULT_FRONTEND_URL).rstrip("/")
        self.api_base_url = (api_base_url or os.getenv("API_BASE_URL") or "").rstrip("/")

        self.resolver = StoreIdentityResolver(db_session)
        self.tenants = TenantDirectory(db_session)
        self.users = UserProvisioningService(db_session)
        self.tokens = TokenLifecycleManager(db_session, providers)

    # =========================================================================
    # Authorization
    # =========================================================================

    def _oauth_adapter(self, platform: StorePlatform) -> ProviderTokenAdapter:
        if platform == StorePlatform.OTHER:
            raise UnsupportedPlatformError("API-key platforms have no OAuth flow")
        return self.providers.get(platform)

    def build_authorization_url(self, platform: StorePlatform, tenant_id: str) -> str:
        """Authorization URL carrying a fresh state bound to tenant_id."""
        adapter = self._oauth_adapter(platform)
        state = self.state_issuer.issue(tenant_id)
        logger.info(
            "Generated store authorization URL",
            extra={"tenant_id": tenant_id, "platform": platform.value},
        )
        return adapter.authorization_url_for_state(state)

    def build_install_url(self, platform: StorePlatform) -> str:
        """Stateless authorization URL for installs started from a storefront."""
        return self._oauth_adapter(platform).authorization_url_for_state(None)

    # =========================================================================
    # OAuth callback
    # =========================================================================

    def _redirect(self, **params) -> str:
        return f"{self.frontend_url}{STORES_PAGE_PATH}?{urlencode(params)}"

    async def handle_callback(
        self,
        platform: StorePlatform,
        code: Optional[str],
        state: Optional[str],
        error: Optional[str],
    ) -> str:
        """
        Complete an OAuth callback and return the frontend redirect URL.

        A state that is valid right now selects the dashboard flow. Anything
        else is treated as a storefront install, where ownership comes from
        an existing store or the merchant's email.
        """
        if error:
            logger.warning(
                "Provider returned OAuth error",
                extra={"platform": platform.value, "error": error},
            )
            return self._redirect(status="error", reason=error)

        if not code:
            return self._redirect(status="error", reason="missing_code")

        try:
            if self.state_issuer.peek_valid(state):
                tenant_id = self.state_issuer.consume(state)
                store, tokens = await self._connect_authorized(platform, code, tenant_id)
            else:
                if state:
                    logger.info(
                        "Callback state unknown or expired, treating as storefront install",
                        extra={"platform": platform.value},
                    )
                store, tokens = await self._connect_install(platform, code)
        except OwnershipConflictError as e:
            self.db.rollback()
            return self._redirect(status="error", reason=e.reason)
        except StoreLifecycleError as e:
            self.db.rollback()
            logger.warning(
                "Store connection refused",
                extra={"platform": platform.value, "reason": e.reason, "error": e.message},
            )
            return self._redirect(status="error", reason=e.reason)
        except (ProviderError, ValueError, SQLAlchemyError) as e:
            self.db.rollback()
            logger.error(
                "Store connection failed",
                extra={
                    "platform": platform.value,
                    "error_type": type(e).__name__,
                    "error": str(e),
                },
            )
            return self._redirect(status="error", reason="connection_failed")

        # Background jobs open their own sessions and must see the store
        self.db.commit()

        if platform == StorePlatform.ZID:
            self._schedule_zid_followups(store, tokens)

        return self._redirect(status="success", store_id=store.id)

    async def _exchange_and_profile(self, platform: StorePlatform, code: str):
        adapter = self._oauth_adapter(platform)
        tokens = await adapter.exchange_code(code)
        profile = await adapter.fetch_store_profile(tokens)
        if platform == StorePlatform.ZID and not tokens.secondary_auth_token:
            # A profile endpoint that just returned the secondary token confirms it
            tokens.secondary_auth_token = profile.secondary_auth_token or None
        return tokens, profile

    async def _connect_authorized(self, platform: StorePlatform, code: str, tenant_id: str):
        tokens, profile = await self._exchange_and_profile(platform, code)
        store = self.resolver.connect(tenant_id, platform, tokens, profile)
        return store, tokens

    async def _connect_install(self, platform: StorePlatform, code: str):
        tokens, profile = await self._exchange_and_profile(platform, code)

        existing = self.resolver.find_store(platform, profile.merchant_id, include_deleted=True)
        if existing is not None and existing.tenant_id:
            tenant_id = existing.tenant_id
        else:
            tenant = self.tenants.find_by_email(profile.email) or self.tenants.create_tenant(profile)
            tenant_id = tenant.id

        store = self.resolver.connect(tenant_id, platform, tokens, profile)
        self._provision_owner(profile, store)
        return store, tokens

    def _provision_owner(self, profile: StoreProfile, store: Store) -> None:
        """User auto-registration. Failures never block the install."""
        try:
            with self.db.begin_nested():
                result = self.users.provision_user_and_notify(profile, store)
        except (ValueError, SQLAlchemyError) as e:
            logger.warning(
                "User auto-registration skipped",
                extra={"store_id": store.id, "error": str(e)},
            )
            return

        logger.info(
            "Store owner provisioned",
            extra={
                "store_id": store.id,
                "user_id": result.user_id,
                "is_new_user": result.is_new_user,
            },
        )

    # =========================================================================
    # Zid background follow-ups
    # =========================================================================

    def _schedule_zid_followups(self, store: Store, tokens: TokenSet) -> None:
        if self.work_queue is None:
            logger.warning(
                "No background queue configured, skipping Zid follow-ups",
                extra={"store_id": store.id},
            )
            return

        store_id = store.id
        context = {"store_id": store_id, "platform": StorePlatform.ZID.value}

        if not tokens.secondary_auth_token:
            self.work_queue.enqueue(
                "zid.enrich_secondary_token",
                lambda: self._enrich_secondary_token(store_id),
                context,
            )
        self.work_queue.enqueue(
            "zid.register_webhooks",
            lambda: self._register_webhooks_job(store_id),
            context,
        )

    async def _enrich_secondary_token(self, store_id: str) -> Optional[str]:
        zid = self.providers.get_zid()
        with self._session_factory() as db:
            store = db.get(Store, store_id)
            if store is None:
                logger.warning("Store vanished before enrichment", extra={"store_id": store_id})
                return None

            tokens = token_set_for(store)
            if tokens is None:
                logger.warning("Store has no access token to enrich", extra={"store_id": store_id})
                return None

            secondary = await zid.fetch_secondary_auth_token(tokens)
            if secondary:
                store.authorization_token_encrypted = encrypt_secret(secondary)
                logger.info("Zid secondary token enriched", extra={"store_id": store_id})
            else:
                store.authorization_token_encrypted = None
                logger.warning(
                    "Zid secondary token unavailable, using primary token only",
                    extra={"store_id": store_id},
                )
            db.flush()
            return secondary

    async def _register_webhooks_job(self, store_id: str) -> None:
        with self._session_factory() as db:
            store = db.get(Store, store_id)
            if store is None:
                logger.warning("Store vanished before webhook registration", extra={"store_id": store_id})
                return
            await self._register_webhooks(db, store)

    def webhook_target_url(self, platform: StorePlatform) -> str:
        if not self.api_base_url:
            raise ValueError("API_BASE_URL environment variable is required for webhooks")
        return f"{self.api_base_url}{get_webhook_events_loader().get_target_path(platform.value)}"

    async def _register_webhooks(self, db: Session, store: Store) -> RegistrationResult:
        zid = self.providers.get_zid()
        await TokenLifecycleManager(db, self.providers).ensure_valid_access_token(store)
        tokens = token_set_for(store)

        manager = self._webhook_manager_factory(zid)
        result = await manager.register(tokens, self.webhook_target_url(store.platform), zid.app_id)

        store.subscribed_events = list(result.registered)
        db.flush()

        if result.failed:
            logger.warning(
                "Webhook registration incomplete",
                extra={"store_id": store.id, "failed_events": result.failed},
            )
        return result

    # =========================================================================
    # Tenant-scoped operations
    # =========================================================================

    def get_store(self, tenant_id: str, store_id: str) -> Store:
        """
        Raises:
            StoreNotFoundError: Missing, deleted, or owned by another tenant
        """
        stmt = (
            select(Store)
            .where(Store.id == store_id)
            .where(Store.tenant_id == tenant_id)
            .where(Store.deleted_at.is_(None))
        )
        store = self.db.execute(stmt).scalars().first()
        if store is None:
            raise StoreNotFoundError(f"Store {store_id} not found")
        return store

    def list_stores(self, tenant_id: str) -> List[Store]:
        """
        Live stores for a tenant, newest first.

        Reads cached profile and count columns only. Providers are never
        called from here; counts change only through sync_store().
        """
        stmt = (
            select(Store)
            .where(Store.tenant_id == tenant_id)
            .where(Store.deleted_at.is_(None))
            .order_by(desc(Store.created_at), Store.id)
        )
        return list(self.db.execute(stmt).scalars().all())

    def get_statistics(self, tenant_id: str) -> Dict[str, Any]:
        """Store counts per status and per platform for a tenant."""
        stmt = (
            select(Store.status, Store.platform, func.count(Store.id))
            .where(Store.tenant_id == tenant_id)
            .where(Store.deleted_at.is_(None))
            .group_by(Store.status, Store.platform)
        )

        by_status: Dict[str, int] = {}
        by_platform: Dict[str, int] = {}
        total = 0
        for store_status, platform, count in self.db.execute(stmt).all():
            by_status[store_status.value] = by_status.get(store_status.value, 0) + count
            by_platform[platform.value] = by_platform.get(platform.value, 0) + count
            total += count

        return {"total": total, "by_status": by_status, "by_platform": by_platform}

    def update_settings(self, tenant_id: str, store_id: str, settings: Dict[str, Any]) -> Store:
        """Shallow-merge settings into the store's existing settings."""
        store = self.get_store(tenant_id, store_id)
        # New dict so the JSON column registers the change
        store.settings = {**(store.settings or {}), **settings}
        self.db.flush()

        logger.info(
            "Store settings updated",
            extra={"tenant_id": tenant_id, "store_id": store.id, "keys": sorted(settings)},
        )
        return store

    def _require_zid(self, store: Store) -> None:
        if store.platform != StorePlatform.ZID:
            raise UnsupportedPlatformError(
                f"Webhook management is not available for {store.platform.value}"
            )

    async def reregister_webhooks(self, tenant_id: str, store_id: str) -> RegistrationResult:
        """Run the delete-then-recreate protocol inline for one store."""
        store = self.get_store(tenant_id, store_id)
        self._require_zid(store)
        return await self._register_webhooks(self.db, store)

    async def list_webhooks(self, tenant_id: str, store_id: str) -> List[WebhookSubscription]:
        store = self.get_store(tenant_id, store_id)
        self._require_zid(store)
        await self.tokens.ensure_valid_access_token(store)
        manager = self._webhook_manager_factory(self.providers.get_zid())
        return await manager.list(token_set_for(store))

    async def connect_api_key(
        self,
        tenant_id: str,
        api_base_url: str,
        api_key: str,
        api_secret: Optional[str] = None,
        name: Optional[str] = None,
    ) -> Store:
        """
        Connect a generic platform by validating an API key against its base URL.

        Raises:
            ValueError: Malformed base URL or empty key
            InvalidApiCredentialsError: Key rejected, or URL does not exist
            OwnershipConflictError: Store already belongs to another tenant
            ProviderError: Platform unreachable or erroring
        """
        if not api_key or not api_key.strip():
            raise ValueError("api_key is required")
        api_key = api_key.strip()

        async with GenericApiClient(api_base_url) as client:
            try:
                profile = await client.fetch_store_profile(TokenSet(access_token=api_key))
            except ProviderAuthError:
                raise InvalidApiCredentialsError("API key was rejected by the platform")
            except ProviderNotFoundError:
                raise InvalidApiCredentialsError(
                    "API URL not found, check the base URL",
                    reason="invalid_api_url",
                )
            base_url = client.api_base_url

        if not profile.merchant_id:
            profile.merchant_id = urlparse(base_url).netloc
        if name:
            profile.name = name

        ttl_days = API_KEY_TTL_WITH_SECRET_DAYS if api_secret else API_KEY_TTL_WITHOUT_SECRET_DAYS
        tokens = TokenSet(access_token=api_key, expires_in_seconds=ttl_days * 86400)

        store = self.resolver.connect(tenant_id, StorePlatform.OTHER, tokens, profile)
        store.api_base_url = base_url
        store.api_secret_encrypted = encrypt_secret(api_secret)
        store.api_key_hint = mask_secret(api_key)[-8:]
        self.db.flush()

        logger.info(
            "Generic store connected by API key",
            extra={
                "tenant_id": tenant_id,
                "store_id": store.id,
                "api_host": urlparse(base_url).netloc,
                "has_secret": bool(api_secret),
            },
        )
        return store

    async def sync_store(self, tenant_id: str, store_id: str) -> Store:
        """
        Refresh profile fields and aggregate counts from the provider.

        Individual count failures are tolerated. A provider auth rejection
        marks the store token_expired.

        Raises:
            StoreNotFoundError: Unknown store
            ReauthorizationRequiredError: Token unusable and not refreshable
        """
        store = self.get_store(tenant_id, store_id)
        await self.tokens.ensure_valid_access_token(store)
        tokens = token_set_for(store)

        if store.platform == StorePlatform.OTHER:
            async with self.providers.generic_for(store) as adapter:
                await self._pull_store_data(store, adapter, tokens)
        else:
            await self._pull_store_data(store, self.providers.get(store.platform), tokens)

        store.last_synced_at = datetime.now(timezone.utc)
        store.reset_errors()
        if store.status == StoreStatus.TOKEN_EXPIRED:
            store.status = StoreStatus.ACTIVE
        self.db.flush()

        logger.info(
            "Store synced",
            extra={
                "tenant_id": tenant_id,
                "store_id": store.id,
                "orders_count": store.orders_count,
                "products_count": store.products_count,
                "customers_count": store.customers_count,
            },
        )
        return store

    async def _pull_store_data(
        self,
        store: Store,
        adapter: ProviderTokenAdapter,
        tokens: TokenSet,
    ) -> None:
        try:
            try:
                profile = await adapter.fetch_store_profile(tokens)
            except ProviderAuthError:
                raise
            except ProviderError as e:
                logger.warning(
                    "Profile refresh failed during sync",
                    extra={"store_id": store.id, "status_code": e.status_code},
                )
            else:
                if profile.merchant_id and profile.merchant_id != store.merchant_id:
                    logger.warning(
                        "Provider reported a different merchant id during sync",
                        extra={"store_id": store.id, "reported_merchant_id": profile.merchant_id},
                    )
                self.resolver.apply_profile(store, profile)

            totals = await adapter.fetch_resource_totals(tokens)
        except ProviderAuthError as e:
            store.status = StoreStatus.TOKEN_EXPIRED
            store.record_error(f"Provider rejected token during sync: {e.status_code}")
            self.db.flush()
            raise ReauthorizationRequiredError(
                "Provider rejected the store token, reconnect the store",
                store_id=store.id,
            )

        if totals.orders is not None:
            store.orders_count = totals.orders
        if totals.products is not None:
            store.products_count = totals.products
        if totals.customers is not None:
            store.customers_count = totals.customers

    def disconnect_store(self, tenant_id: str, store_id: str) -> Store:
        """Drop credentials but keep the row so identity survives."""
        store = self.get_store(tenant_id, store_id)
        store.status = StoreStatus.DISCONNECTED
        store.clear_credentials()
        self.db.flush()

        logger.info(
            "Store disconnected",
            extra={"tenant_id": tenant_id, "store_id": store.id, "platform": store.platform.value},
        )
        return store

    def mark_uninstalled(self, platform: StorePlatform, merchant_id: str) -> Optional[Store]:
        """Provider reported the app was uninstalled from this merchant."""
        store = self.resolver.find_store(platform, merchant_id)
        if store is None:
            logger.warning(
                "Uninstall for unknown merchant",
                extra={"platform": platform.value, "merchant_id": merchant_id},
            )
            return None

        store.status = StoreStatus.UNINSTALLED
        store.clear_credentials()
        store.subscribed_events = None
        self.db.flush()

        logger.info(
            "Store uninstalled",
            extra={"store_id": store.id, "platform": platform.value, "merchant_id": merchant_id},
        )
        return store
