"""
Store connection API routes.

Provides:
- GET  /api/stores - Stores of the caller's tenant (cached counts, no provider calls)
- GET  /api/stores/statistics - Store counts per status and platform
- GET  /api/stores/{store_id} - One store
- PUT  /api/stores/{store_id}/settings - Merge store settings
- GET  /api/stores/{platform}/authorize - Authorization URL for the tenant
- GET  /api/stores/{platform}/callback - OAuth callback (public, redirects)
- GET  /api/stores/zid/install - Storefront install entry point (redirects)
- POST /api/stores/connect/api-key - Connect a generic platform by API key
- POST /api/stores/{store_id}/sync - Refresh profile and counts
- POST /api/stores/{store_id}/disconnect - Drop credentials, keep the store
- POST /api/stores/{store_id}/webhooks/reregister - Rebuild Zid subscriptions
- GET  /api/stores/{store_id}/webhooks - Current Zid subscriptions

SECURITY: Every route except the callback and install entry points requires
a valid tenant JWT. The callback derives the tenant from the OAuth state or
from the store itself.
"""

import logging
from typing import NoReturn, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import RedirectResponse

from storelink.api.dependencies import get_connection_service
from storelink.api.schemas.stores import (
    ApiKeyConnectRequest,
    AuthorizationUrlResponse,
    DisconnectResponse,
    StoreListResponse,
    StoreResponse,
    StoreSettingsUpdate,
    StoreStatisticsResponse,
    WebhookListResponse,
    WebhookRegistrationResponse,
    registration_to_response,
    store_to_response,
    stores_to_response,
    subscriptions_to_response,
)
from storelink.integrations.common.exceptions import ProviderError
from storelink.models.store import StorePlatform
from storelink.platform.tenant_context import TenantContext, get_tenant_context
from storelink.services.errors import (
    InvalidApiCredentialsError,
    OwnershipConflictError,
    ReauthorizationRequiredError,
    StoreLifecycleError,
    StoreNotFoundError,
    UnsupportedPlatformError,
)
from storelink.services.store_connection_service import StoreConnectionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/stores", tags=["stores"])

OAUTH_PLATFORMS = {StorePlatform.SALLA.value, StorePlatform.ZID.value}


def _parse_oauth_platform(platform: str) -> StorePlatform:
    if platform not in OAUTH_PLATFORMS:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown OAuth platform: {platform}",
        )
    return StorePlatform(platform)


def _raise_http(e: Exception) -> NoReturn:
    """Map domain and provider failures onto HTTP errors."""
    if isinstance(e, StoreNotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    if isinstance(e, OwnershipConflictError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message)
    if isinstance(e, ReauthorizationRequiredError):
        raise HTTPException(
            status_code=status.HTTP_428_PRECONDITION_REQUIRED,
            detail={"reason": e.reason, "message": e.message, "store_id": e.store_id},
        )
    if isinstance(e, (InvalidApiCredentialsError, UnsupportedPlatformError)):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"reason": e.reason, "message": e.message},
        )
    if isinstance(e, StoreLifecycleError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
    if isinstance(e, ProviderError):
        logger.error(
            "Provider call failed",
            extra={"provider": e.provider, "status_code": e.status_code, "retryable": e.retryable},
        )
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE if e.retryable else status.HTTP_502_BAD_GATEWAY,
            detail="Store platform request failed",
        )
    if isinstance(e, ValueError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    raise e


# =============================================================================
# OAuth
# =============================================================================

@router.get("/zid/install")
async def zid_install(
    service: StoreConnectionService = Depends(get_connection_service),
):
    """Entry point the Zid app market opens when a merchant installs the app."""
    try:
        url = service.build_install_url(StorePlatform.ZID)
    except StoreLifecycleError as e:
        _raise_http(e)
    return RedirectResponse(url=url, status_code=status.HTTP_302_FOUND)


@router.get("/{platform}/authorize", response_model=AuthorizationUrlResponse)
async def authorize(
    platform: str,
    tenant_ctx: TenantContext = Depends(get_tenant_context),
    service: StoreConnectionService = Depends(get_connection_service),
):
    """
    Authorization URL for connecting a store to the caller's tenant.

    SECURITY: State token binds the flow to tenant_ctx.tenant_id.
    """
    store_platform = _parse_oauth_platform(platform)
    try:
        url = service.build_authorization_url(store_platform, tenant_ctx.tenant_id)
    except StoreLifecycleError as e:
        _raise_http(e)
    return AuthorizationUrlResponse(url=url)


@router.get("/{platform}/callback")
async def oauth_callback(
    platform: str,
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    service: StoreConnectionService = Depends(get_connection_service),
):
    """
    Provider redirect target. Always answers with a redirect to the
    dashboard carrying status=success|error.
    """
    store_platform = _parse_oauth_platform(platform)
    redirect_url = await service.handle_callback(store_platform, code, state, error)
    return RedirectResponse(url=redirect_url, status_code=status.HTTP_302_FOUND)


# =============================================================================
# Tenant-scoped store reads (database only, no provider calls)
# =============================================================================

@router.get("", response_model=StoreListResponse)
async def list_stores(
    tenant_ctx: TenantContext = Depends(get_tenant_context),
    service: StoreConnectionService = Depends(get_connection_service),
):
    """Stores connected to the caller's tenant with their cached counts."""
    return stores_to_response(service.list_stores(tenant_ctx.tenant_id))


@router.get("/statistics", response_model=StoreStatisticsResponse)
async def store_statistics(
    tenant_ctx: TenantContext = Depends(get_tenant_context),
    service: StoreConnectionService = Depends(get_connection_service),
):
    return StoreStatisticsResponse(**service.get_statistics(tenant_ctx.tenant_id))


@router.get("/{store_id}", response_model=StoreResponse)
async def get_store(
    store_id: str,
    tenant_ctx: TenantContext = Depends(get_tenant_context),
    service: StoreConnectionService = Depends(get_connection_service),
):
    try:
        store = service.get_store(tenant_ctx.tenant_id, store_id)
    except StoreLifecycleError as e:
        _raise_http(e)
    return store_to_response(store)


@router.put("/{store_id}/settings", response_model=StoreResponse)
async def update_store_settings(
    store_id: str,
    body: StoreSettingsUpdate,
    tenant_ctx: TenantContext = Depends(get_tenant_context),
    service: StoreConnectionService = Depends(get_connection_service),
):
    try:
        store = service.update_settings(tenant_ctx.tenant_id, store_id, body.settings)
    except StoreLifecycleError as e:
        _raise_http(e)
    return store_to_response(store)


# =============================================================================
# Tenant-scoped store operations
# =============================================================================

@router.post("/connect/api-key", response_model=StoreResponse)
async def connect_api_key(
    body: ApiKeyConnectRequest,
    tenant_ctx: TenantContext = Depends(get_tenant_context),
    service: StoreConnectionService = Depends(get_connection_service),
):
    try:
        store = await service.connect_api_key(
            tenant_id=tenant_ctx.tenant_id,
            api_base_url=body.api_base_url,
            api_key=body.api_key,
            api_secret=body.api_secret,
            name=body.name,
        )
    except (StoreLifecycleError, ProviderError, ValueError) as e:
        _raise_http(e)
    return store_to_response(store)


@router.post("/{store_id}/sync", response_model=StoreResponse)
async def sync_store(
    store_id: str,
    tenant_ctx: TenantContext = Depends(get_tenant_context),
    service: StoreConnectionService = Depends(get_connection_service),
):
    try:
        store = await service.sync_store(tenant_ctx.tenant_id, store_id)
    except ReauthorizationRequiredError as e:
        # Persist the token_expired status before answering
        service.db.commit()
        _raise_http(e)
    except ProviderError as e:
        service.db.commit()
        _raise_http(e)
    except (StoreLifecycleError, ValueError) as e:
        _raise_http(e)
    return store_to_response(store)


@router.post("/{store_id}/disconnect", response_model=DisconnectResponse)
async def disconnect_store(
    store_id: str,
    tenant_ctx: TenantContext = Depends(get_tenant_context),
    service: StoreConnectionService = Depends(get_connection_service),
):
    try:
        store = service.disconnect_store(tenant_ctx.tenant_id, store_id)
    except StoreLifecycleError as e:
        _raise_http(e)
    return DisconnectResponse(id=store.id, status=store.status.value)


@router.post("/{store_id}/webhooks/reregister", response_model=WebhookRegistrationResponse)
async def reregister_webhooks(
    store_id: str,
    tenant_ctx: TenantContext = Depends(get_tenant_context),
    service: StoreConnectionService = Depends(get_connection_service),
):
    try:
        result = await service.reregister_webhooks(tenant_ctx.tenant_id, store_id)
    except (StoreLifecycleError, ProviderError, ValueError) as e:
        service.db.commit()
        _raise_http(e)
    return registration_to_response(result)


@router.get("/{store_id}/webhooks", response_model=WebhookListResponse)
async def list_webhooks(
    store_id: str,
    tenant_ctx: TenantContext = Depends(get_tenant_context),
    service: StoreConnectionService = Depends(get_connection_service),
):
    try:
        subscriptions = await service.list_webhooks(tenant_ctx.tenant_id, store_id)
    except (StoreLifecycleError, ProviderError, ValueError) as e:
        service.db.commit()
        _raise_http(e)
    return subscriptions_to_response(subscriptions)
