"""
Unit tests for the Zid token adapter.

Tests cover:
- Code exchange with and without the secondary authorization token
- Ordered profile lookup attempts and their failure classification
- Secondary token lookup
- Webhook subscription API calls
"""

from unittest.mock import AsyncMock, patch
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from storelink.integrations.common.exceptions import (
    ProviderAuthError,
    ProviderError,
    ProviderNotFoundError,
    TokenExchangeError,
    TransientProviderError,
)
from storelink.integrations.common.models import TokenSet
from storelink.integrations.zid import (
    PROFILE_ATTEMPTS,
    ZidClient,
    ZID_API_URL,
    ZID_AUTHORIZE_URL,
    ZID_TOKEN_URL,
    normalize_zid_store,
)
from storelink.integrations.zid.profile_attempts import dual_token_headers, manager_token_headers


@pytest.fixture
def client():
    return ZidClient("zid-client-id", "zid-client-secret", "https://api.app.test/api/stores/zid/callback")


@pytest.fixture
def primary_only():
    return TokenSet(access_token="manager-token", refresh_token="zid-refresh")


@pytest.fixture
def dual():
    return TokenSet(
        access_token="manager-token",
        refresh_token="zid-refresh",
        secondary_auth_token="auth-token",
    )


def _response(status_code, json=None, method="GET"):
    kwargs = {"request": httpx.Request(method, ZID_API_URL)}
    if json is not None:
        kwargs["json"] = json
    return httpx.Response(status_code, **kwargs)


ACCOUNT_BODY = {
    "user": {
        "email": "owner@zid.test",
        "store": {
            "id": 98765,
            "uuid": "5f1c-uuid",
            "title": "Zid Demo",
            "url": "https://demo.zid.store",
            "currency": {"code": "SAR"},
        },
    },
}


class TestZidAuthorizationUrl:
    """Tests for authorization URL construction."""

    def test_authorization_url_requests_offline_access(self, client):
        url = client.authorization_url_for_state("state-token-1")

        params = parse_qs(urlparse(url).query)
        assert url.startswith(ZID_AUTHORIZE_URL)
        assert params["client_id"] == ["zid-client-id"]
        assert params["response_type"] == ["code"]
        assert params["scope"] == ["offline_access"]
        assert params["state"] == ["state-token-1"]

    def test_install_url_keeps_scope_without_state(self, client):
        url = client.authorization_url_for_state(None)

        assert "state=" not in url
        assert "scope=offline_access" in url


class TestZidTokenExchange:
    """Tests for the token endpoint."""

    @pytest.mark.asyncio
    async def test_exchange_with_authorization_field(self, client):
        with patch.object(client._client, "request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = _response(200, json={
                "access_token": "manager-token",
                "refresh_token": "zid-refresh",
                "authorization": "auth-token",
                "expires_in": 31536000,
            }, method="POST")

            tokens = await client.exchange_code("code-1")

        assert tokens.secondary_auth_token == "auth-token"
        assert tokens.expires_in_seconds == 31536000
        args, kwargs = mock_request.call_args
        assert args == ("POST", ZID_TOKEN_URL)
        assert kwargs["json"]["grant_type"] == "authorization_code"
        assert kwargs["json"]["redirect_uri"].endswith("/zid/callback")

    @pytest.mark.asyncio
    async def test_exchange_without_authorization_field(self, client):
        with patch.object(client._client, "request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = _response(200, json={
                "access_token": "manager-token",
                "refresh_token": "zid-refresh",
                "authorization": "",
            }, method="POST")

            tokens = await client.exchange_code("code-1")

        assert tokens.access_token == "manager-token"
        assert tokens.secondary_auth_token is None

    @pytest.mark.asyncio
    async def test_rejected_refresh_raises_token_exchange_error(self, client):
        with patch.object(client._client, "request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = _response(401, json={"message": "invalid"}, method="POST")

            with pytest.raises(TokenExchangeError):
                await client.refresh("stale-refresh")

    def test_token_set_repr_hides_values(self, dual):
        rendered = repr(dual)
        assert "manager-token" not in rendered
        assert "auth-token" not in rendered
        assert "has_secondary_auth_token=True" in rendered


class TestZidProfileAttempts:
    """Tests for ordered profile lookup attempts."""

    def test_dual_token_attempt_skipped_without_secondary(self, primary_only):
        assert dual_token_headers(primary_only) is None

    def test_manager_token_headers_use_primary_twice(self, primary_only):
        headers = manager_token_headers(primary_only)
        assert headers["Authorization"] == "Bearer manager-token"
        assert headers["X-Manager-Token"] == "manager-token"

    @pytest.mark.asyncio
    async def test_first_applicable_attempt_wins(self, client, dual):
        with patch.object(client._client, "request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = _response(200, json=ACCOUNT_BODY)

            profile = await client.fetch_store_profile(dual)

        assert mock_request.call_count == 1
        assert mock_request.call_args.args[1] == f"{ZID_API_URL}/managers/account"
        headers = mock_request.call_args.kwargs["headers"]
        assert headers["Authorization"] == "Bearer auth-token"
        assert headers["X-Manager-Token"] == "manager-token"
        assert profile.merchant_id == "98765"
        assert profile.uuid == "5f1c-uuid"
        assert profile.name == "Zid Demo"
        assert profile.email == "owner@zid.test"
        assert profile.secondary_auth_token == "auth-token"

    @pytest.mark.asyncio
    async def test_falls_through_to_later_attempt(self, client, primary_only):
        calls = []

        async def fake_request(method, url, **kwargs):
            calls.append((url, kwargs["headers"]))
            if url.endswith("/managers/account"):
                return _response(403, json={})
            return _response(200, json={"store": {"id": 55, "name": "Fallback"}})

        with patch.object(client._client, "request", side_effect=fake_request):
            profile = await client.fetch_store_profile(primary_only)

        # account_dual_token is not applicable without the secondary token
        assert [url for url, _ in calls] == [
            f"{ZID_API_URL}/managers/account",
            f"{ZID_API_URL}/managers/store/info",
        ]
        assert profile.merchant_id == "55"
        assert profile.secondary_auth_token is None

    @pytest.mark.asyncio
    async def test_all_attempts_rejected_raises_auth_error(self, client, dual):
        with patch.object(client._client, "request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = _response(401, json={})

            with pytest.raises(ProviderAuthError):
                await client.fetch_store_profile(dual)

        assert mock_request.call_count == len(PROFILE_ATTEMPTS)

    @pytest.mark.asyncio
    async def test_transient_failure_reported_as_transient(self, client, dual):
        responses = iter([_response(401, json={}), _response(503, json={})] + [_response(404, json={})] * 3)

        async def fake_request(method, url, **kwargs):
            return next(responses)

        with patch.object(client._client, "request", side_effect=fake_request):
            with pytest.raises(TransientProviderError):
                await client.fetch_store_profile(dual)

    @pytest.mark.asyncio
    async def test_body_without_store_id_tries_next_attempt(self, client, dual):
        responses = iter([
            _response(200, json={"user": {"email": "x@y.z"}}),
            _response(200, json=ACCOUNT_BODY),
        ])

        async def fake_request(method, url, **kwargs):
            return next(responses)

        with patch.object(client._client, "request", side_effect=fake_request):
            profile = await client.fetch_store_profile(dual)

        assert profile.merchant_id == "98765"

    @pytest.mark.asyncio
    async def test_fetch_secondary_auth_token_from_profile(self, client, primary_only):
        body = dict(ACCOUNT_BODY, authorization="discovered-auth")
        with patch.object(client._client, "request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = _response(200, json=body)

            secondary = await client.fetch_secondary_auth_token(primary_only)

        assert secondary == "discovered-auth"

    def test_normalize_uses_uuid_when_id_missing(self):
        profile = normalize_zid_store({"store": {"uuid": "only-uuid", "name": "U"}})
        assert profile.merchant_id == "only-uuid"
        assert profile.uuid == "only-uuid"


class TestZidWebhooks:
    """Tests for webhook subscription endpoints."""

    @pytest.mark.asyncio
    async def test_create_webhook_payload(self, client, dual):
        with patch.object(client._client, "request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = _response(201, json={"webhook": {
                "id": 11,
                "event": "order.create",
                "target_url": "https://api.app.test/api/webhooks/zid",
                "active": True,
            }}, method="POST")

            subscription = await client.create_webhook(
                dual, "order.create", "https://api.app.test/api/webhooks/zid", client.app_id
            )

        assert subscription.subscription_id == "11"
        assert subscription.active is True
        body = mock_request.call_args.kwargs["json"]
        assert body["event"] == "order.create"
        assert body["subscriber"] == "zid-client-id"
        assert body["original_id"] == "zid-client-id"

    @pytest.mark.asyncio
    async def test_list_webhooks_reports_inactive(self, client, dual):
        with patch.object(client._client, "request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = _response(200, json={"webhooks": [
                {"id": 1, "event": "order.create", "target_url": "https://t", "active": True},
                {"id": 2, "event": "customer.create", "target_url": "https://t", "is_active": False},
            ]})

            subscriptions = await client.list_webhooks(dual)

        assert [s.event for s in subscriptions] == ["order.create", "customer.create"]
        assert [s.active for s in subscriptions] == [True, False]

    @pytest.mark.asyncio
    async def test_delete_app_webhooks_not_found(self, client, dual):
        with patch.object(client._client, "request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = _response(404, json={}, method="DELETE")

            with pytest.raises(ProviderNotFoundError):
                await client.delete_app_webhooks(dual, client.app_id)

        assert mock_request.call_args.kwargs["params"] == {"subscriber": "zid-client-id"}

    @pytest.mark.asyncio
    async def test_manager_headers_fall_back_to_primary_only(self, client, primary_only):
        with patch.object(client._client, "request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = _response(200, json={"webhooks": []})

            await client.list_webhooks(primary_only)

        headers = mock_request.call_args.kwargs["headers"]
        assert headers["Authorization"] == "Bearer manager-token"
        assert headers["X-Manager-Token"] == "manager-token"

    @pytest.mark.asyncio
    async def test_unexpected_client_error_is_not_retryable(self, client, dual):
        with patch.object(client._client, "request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = _response(422, json={"message": "bad event"}, method="POST")

            with pytest.raises(ProviderError) as exc_info:
                await client.create_webhook(dual, "bogus", "https://t", client.app_id)

        assert exc_info.value.retryable is False
