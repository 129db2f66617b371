"""
Tests for WebhookSubscriptionManager.

Tests cover:
- Delete-then-recreate ordering with settle delay
- 404 on delete treated as nothing to clean
- Retry with exponential backoff for transient failures
- Failed and inactive subscriptions reported, not raised
"""

from unittest.mock import AsyncMock, MagicMock, call

import pytest

from storelink.config.webhook_events import WebhookEventsLoader
from storelink.integrations.common.exceptions import (
    ProviderAuthError,
    ProviderError,
    ProviderNotFoundError,
    ProviderRateLimitError,
    TransientProviderError,
)
from storelink.integrations.common.models import TokenSet
from storelink.integrations.zid import WebhookSubscription
from storelink.services.webhook_subscription_manager import (
    RegistrationResult,
    WebhookSubscriptionManager,
)

TARGET = "https://api.app.test/api/webhooks/zid"
APP_ID = "zid-client-id"


def _subscription(event, active=True):
    return WebhookSubscription(event=event, target_url=TARGET, active=active, subscription_id=f"id-{event}")


@pytest.fixture
def tokens():
    return TokenSet(access_token="manager-token", secondary_auth_token="auth-token")


@pytest.fixture
def zid_client():
    client = MagicMock()
    client.provider = "zid"
    client.delete_app_webhooks = AsyncMock(return_value=None)
    client.create_webhook = AsyncMock(side_effect=lambda tokens, event, target_url, app_id: _subscription(event))
    client.list_webhooks = AsyncMock(return_value=[])
    return client


@pytest.fixture
def sleep():
    return AsyncMock()


@pytest.fixture
def make_manager(zid_client, sleep):
    def _make(events=("order.create", "customer.create"), **kwargs):
        kwargs.setdefault("settle_delay_seconds", 2)
        return WebhookSubscriptionManager(zid_client, events=list(events), sleep=sleep, **kwargs)
    return _make


@pytest.fixture(autouse=True)
def reset_loader():
    WebhookEventsLoader.reset()
    yield
    WebhookEventsLoader.reset()


class TestRegister:

    @pytest.mark.asyncio
    async def test_deletes_then_waits_then_creates(self, make_manager, zid_client, sleep, tokens):
        order = []
        zid_client.delete_app_webhooks.side_effect = lambda *a: order.append("delete")
        sleep.side_effect = lambda delay: order.append(f"sleep:{delay}")

        def create(tokens, event, target_url, app_id):
            order.append(f"create:{event}")
            return _subscription(event)

        zid_client.create_webhook.side_effect = create

        result = await make_manager().register(tokens, TARGET, APP_ID)

        assert order == ["delete", "sleep:2", "create:order.create", "create:customer.create"]
        assert result.registered == ["order.create", "customer.create"]
        assert result.is_complete
        zid_client.delete_app_webhooks.assert_awaited_once_with(tokens, APP_ID)
        zid_client.create_webhook.assert_has_awaits([
            call(tokens, "order.create", TARGET, APP_ID),
            call(tokens, "customer.create", TARGET, APP_ID),
        ])

    @pytest.mark.asyncio
    async def test_delete_not_found_still_creates(self, make_manager, zid_client, tokens):
        zid_client.delete_app_webhooks.side_effect = ProviderNotFoundError("nothing to delete")

        result = await make_manager().register(tokens, TARGET, APP_ID)

        assert result.registered == ["order.create", "customer.create"]

    @pytest.mark.asyncio
    async def test_delete_auth_failure_raises(self, make_manager, zid_client, tokens):
        zid_client.delete_app_webhooks.side_effect = ProviderAuthError()

        with pytest.raises(ProviderAuthError):
            await make_manager().register(tokens, TARGET, APP_ID)

        zid_client.create_webhook.assert_not_called()

    @pytest.mark.asyncio
    async def test_zero_settle_delay_skips_sleep(self, make_manager, sleep, tokens):
        await make_manager(settle_delay_seconds=0).register(tokens, TARGET, APP_ID)

        sleep.assert_not_called()

    @pytest.mark.asyncio
    async def test_second_run_converges_on_same_set(self, make_manager, tokens):
        manager = make_manager()

        first = await manager.register(tokens, TARGET, APP_ID)
        second = await manager.register(tokens, TARGET, APP_ID)

        assert first.to_dict() == second.to_dict()


class TestRetries:

    @pytest.mark.asyncio
    async def test_transient_failure_retried_with_backoff(self, make_manager, zid_client, sleep, tokens):
        attempts = {"count": 0}

        def flaky(tokens, event, target_url, app_id):
            attempts["count"] += 1
            if attempts["count"] <= 2:
                raise TransientProviderError("Provider API error: 502", status_code=502)
            return _subscription(event)

        zid_client.create_webhook.side_effect = flaky
        manager = make_manager(
            events=["order.create"],
            settle_delay_seconds=0,
            base_delay_seconds=0.5,
        )

        result = await manager.register(tokens, TARGET, APP_ID)

        assert result.registered == ["order.create"]
        assert [c.args[0] for c in sleep.await_args_list] == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_retries_exhausted_reports_failure(self, make_manager, zid_client, sleep, tokens):
        def create(tokens, event, target_url, app_id):
            if event == "order.create":
                raise TransientProviderError("down", status_code=503)
            return _subscription(event)

        zid_client.create_webhook.side_effect = create
        manager = make_manager(settle_delay_seconds=0, max_retries=2)

        result = await manager.register(tokens, TARGET, APP_ID)

        assert result.failed == ["order.create"]
        assert result.registered == ["customer.create"]
        assert not result.is_complete
        assert sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_permanent_failure_not_retried(self, make_manager, zid_client, sleep, tokens):
        zid_client.create_webhook.side_effect = ProviderError("bad event", status_code=422)

        result = await make_manager(settle_delay_seconds=0).register(tokens, TARGET, APP_ID)

        assert result.failed == ["order.create", "customer.create"]
        assert result.registered == []
        sleep.assert_not_called()

    @pytest.mark.asyncio
    async def test_rate_limit_respects_retry_after(self, make_manager, zid_client, sleep, tokens):
        responses = iter([ProviderRateLimitError(retry_after=3), _subscription("order.create")])

        def create(tokens, event, target_url, app_id):
            item = next(responses)
            if isinstance(item, Exception):
                raise item
            return item

        zid_client.create_webhook.side_effect = create

        await make_manager(events=["order.create"], settle_delay_seconds=0).register(tokens, TARGET, APP_ID)

        sleep.assert_awaited_once_with(3.0)

    def test_backoff_is_capped(self, make_manager):
        manager = make_manager(base_delay_seconds=1.0, max_delay_seconds=5.0)

        assert manager._calculate_backoff_delay(0) == 1.0
        assert manager._calculate_backoff_delay(2) == 4.0
        assert manager._calculate_backoff_delay(5) == 5.0


class TestInactiveSubscriptions:

    @pytest.mark.asyncio
    async def test_inactive_subscription_logged_and_reported(
        self, make_manager, zid_client, tokens, caplog
    ):
        zid_client.create_webhook.side_effect = (
            lambda tokens, event, target_url, app_id: _subscription(event, active=event != "customer.create")
        )

        with caplog.at_level("WARNING"):
            result = await make_manager().register(tokens, TARGET, APP_ID)

        assert result.registered == ["order.create", "customer.create"]
        assert result.inactive == ["customer.create"]
        assert any("reported inactive" in r.getMessage() for r in caplog.records)


class TestConfiguredEvents:

    def test_defaults_come_from_config(self, zid_client, monkeypatch):
        monkeypatch.delenv("WEBHOOK_SETTLE_DELAY_SECONDS", raising=False)
        manager = WebhookSubscriptionManager(zid_client)

        assert "order.create" in manager.events
        assert "app.market.application.uninstall" in manager.events
        assert manager.settle_delay_seconds == 2.0

    def test_settle_delay_env_override(self, zid_client, monkeypatch):
        monkeypatch.setenv("WEBHOOK_SETTLE_DELAY_SECONDS", "0")
        manager = WebhookSubscriptionManager(zid_client)

        assert manager.settle_delay_seconds == 0.0

    @pytest.mark.asyncio
    async def test_list_delegates_to_client(self, make_manager, zid_client, tokens):
        zid_client.list_webhooks.return_value = [_subscription("order.create", active=False)]

        subscriptions = await make_manager().list(tokens)

        assert subscriptions[0].active is False


def test_registration_result_to_dict():
    result = RegistrationResult(registered=["a"], failed=["b"], inactive=[])
    assert result.to_dict() == {"registered": ["a"], "failed": ["b"], "inactive": []}
