"""
Tests for the hand-off from a fresh connection to the token manager.

A token obtained by a code exchange (or an API-key validation) must be served
straight back by ensure_valid_access_token, with no refresh call.
"""

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from storelink.integrations.common.models import StoreProfile
from storelink.integrations.generic import GenericApiClient
from storelink.integrations.registry import ProviderRegistry
from storelink.integrations.salla import SallaClient
from storelink.integrations.zid import ZidClient
from storelink.models import StorePlatform, StoreStatus
from storelink.platform.cache import MemoryTTLStore
from storelink.services.oauth_state import OAuthStateIssuer
from storelink.services.store_connection_service import StoreConnectionService
from storelink.services.store_identity_resolver import StoreIdentityResolver
from storelink.services.token_manager import TokenLifecycleManager

TOKEN_RESPONSES = {
    StorePlatform.SALLA: {
        "access_token": "ory_at_salla_issued",
        "refresh_token": "ory_rt_salla_issued",
        "expires_in": 1209600,
    },
    StorePlatform.ZID: {
        "access_token": "zid-manager-issued",
        "refresh_token": "zid-refresh-issued",
        "authorization": "zid-auth-issued",
        "expires_in": 31536000,
    },
}

API_KEY = "generic-key-0042"


def _oauth_adapter(platform):
    if platform == StorePlatform.SALLA:
        return SallaClient("salla-id", "salla-secret", "https://api.app.test/api/stores/salla/callback")
    return ZidClient("zid-id", "zid-secret", "https://api.app.test/api/stores/zid/callback")


async def _connect_oauth(db_session, tenant_id, platform):
    adapter = _oauth_adapter(platform)
    with patch.object(adapter._client, "request", new_callable=AsyncMock) as mock_request:
        mock_request.return_value = httpx.Response(
            200,
            json=TOKEN_RESPONSES[platform],
            request=httpx.Request("POST", "https://oauth.test/token"),
        )
        tokens = await adapter.exchange_code("code-1")

    store = StoreIdentityResolver(db_session).connect(
        tenant_id,
        platform,
        tokens,
        StoreProfile(merchant_id="700100", name="Handoff Shop"),
    )
    return store, adapter, TOKEN_RESPONSES[platform]["access_token"]


async def _connect_api_key(db_session, tenant_id):
    service = StoreConnectionService(
        db_session,
        ProviderRegistry(),
        OAuthStateIssuer(MemoryTTLStore()),
        frontend_url="https://app.test",
        api_base_url="https://api.app.test",
    )
    with patch.object(GenericApiClient, "_request", new_callable=AsyncMock) as mock_request:
        mock_request.return_value = {"data": {"id": "gen-700", "name": "Generic Shop"}}
        store = await service.connect_api_key(tenant_id, "https://shop.example.com/api", API_KEY)
    return store, None, API_KEY


class TestExchangeThenEnsureValid:
    """A just-issued token is returned as-is by the token manager."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "platform",
        [StorePlatform.SALLA, StorePlatform.ZID, StorePlatform.OTHER],
    )
    async def test_issued_token_returned_without_refresh(self, db_session, make_tenant, platform):
        tenant = make_tenant()
        if platform == StorePlatform.OTHER:
            store, adapter, issued = await _connect_api_key(db_session, tenant.id)
            registry = ProviderRegistry()
        else:
            store, adapter, issued = await _connect_oauth(db_session, tenant.id, platform)
            registry = ProviderRegistry({platform: adapter})

        manager = TokenLifecycleManager(db_session, registry)
        refresh_owner = adapter if adapter is not None else GenericApiClient

        with patch.object(refresh_owner, "refresh", new_callable=AsyncMock) as mock_refresh:
            token = await manager.ensure_valid_access_token(store)

        assert token == issued
        assert store.status == StoreStatus.ACTIVE
        mock_refresh.assert_not_awaited()

        if adapter is not None:
            await adapter.close()
