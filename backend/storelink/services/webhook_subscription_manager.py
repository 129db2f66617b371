"""
Webhook subscription management for Zid stores.

Zid has no update endpoint for subscriptions, and silently disables
subscriptions whose deliveries previously failed. Registration therefore:

1. Deletes every subscription owned by the application (404 = nothing to
   clean, treated as success)
2. Waits a settle delay for Zid's eventual consistency
3. Recreates each required event, retrying transient failures with
   exponential backoff

Running register() again always converges on the same, fully active set.

Registration failures are reported, never raised past the caller that asked
for them: a merchant must be able to use the product even when webhook
registration fails.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional

from storelink.config.webhook_events import get_webhook_events_loader
from storelink.integrations.common.exceptions import (
    ProviderError,
    ProviderNotFoundError,
    ProviderRateLimitError,
)
from storelink.integrations.common.models import TokenSet
from storelink.integrations.zid import WebhookSubscription, ZidClient

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 2
DEFAULT_BASE_DELAY_SECONDS = 0.5
DEFAULT_MAX_DELAY_SECONDS = 5.0


@dataclass
class RegistrationResult:
    """Per-event outcome of a register() call."""
    registered: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    inactive: List[str] = field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        return not self.failed

    def to_dict(self) -> dict:
        return {
            "registered": self.registered,
            "failed": self.failed,
            "inactive": self.inactive,
        }


class WebhookSubscriptionManager:
    """Delete-then-recreate registration of the required Zid event set."""

    def __init__(
        self,
        client: ZidClient,
        events: Optional[List[str]] = None,
        settle_delay_seconds: Optional[float] = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        base_delay_seconds: float = DEFAULT_BASE_DELAY_SECONDS,
        max_delay_seconds: float = DEFAULT_MAX_DELAY_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        loader = get_webhook_events_loader()
        self.client = client
        self.events = events if events is not None else loader.get_required_events(client.provider)
        self.settle_delay_seconds = (
            settle_delay_seconds
            if settle_delay_seconds is not None
            else loader.get_settle_delay_seconds()
        )
        self.max_retries = max_retries
        self.base_delay_seconds = base_delay_seconds
        self.max_delay_seconds = max_delay_seconds
        self._sleep = sleep

    def _calculate_backoff_delay(self, attempt: int) -> float:
        delay = self.base_delay_seconds * (2 ** attempt)
        return min(delay, self.max_delay_seconds)

    async def _delete_existing(self, tokens: TokenSet, app_id: str) -> None:
        try:
            await self.client.delete_app_webhooks(tokens, app_id)
            logger.info("Deleted existing Zid webhooks", extra={"app_id": app_id})
        except ProviderNotFoundError:
            logger.info("No existing Zid webhooks to delete", extra={"app_id": app_id})

    async def _create_with_retry(
        self,
        tokens: TokenSet,
        event: str,
        target_url: str,
        app_id: str,
    ) -> WebhookSubscription:
        attempt = 0
        while True:
            try:
                return await self.client.create_webhook(tokens, event, target_url, app_id)
            except ProviderError as e:
                if not e.retryable or attempt >= self.max_retries:
                    raise
                delay = self._calculate_backoff_delay(attempt)
                if isinstance(e, ProviderRateLimitError) and e.retry_after:
                    delay = max(delay, float(e.retry_after))
                logger.info(
                    "Retrying webhook creation after delay",
                    extra={
                        "event": event,
                        "delay_seconds": delay,
                        "next_attempt": attempt + 2,
                    },
                )
                await self._sleep(delay)
                attempt += 1

    async def register(
        self,
        tokens: TokenSet,
        target_url: str,
        app_id: str,
    ) -> RegistrationResult:
        """
        Replace the application's subscriptions with the required event set.

        Raises:
            ProviderError: Only when the initial delete fails for a reason
                other than 404 (nothing has been created at that point)
        """
        await self._delete_existing(tokens, app_id)

        if self.settle_delay_seconds > 0:
            await self._sleep(self.settle_delay_seconds)

        result = RegistrationResult()
        for event in self.events:
            try:
                subscription = await self._create_with_retry(tokens, event, target_url, app_id)
            except ProviderError as e:
                logger.error(
                    "Webhook subscription failed",
                    extra={
                        "event": event,
                        "status_code": e.status_code,
                        "error": e.message,
                    },
                )
                result.failed.append(event)
                continue

            result.registered.append(event)
            if not subscription.active:
                logger.warning(
                    "Webhook subscription created but reported inactive",
                    extra={"event": event, "subscription_id": subscription.subscription_id},
                )
                result.inactive.append(event)

        logger.info(
            "Webhook registration finished",
            extra={
                "app_id": app_id,
                "registered_count": len(result.registered),
                "failed_count": len(result.failed),
                "inactive_count": len(result.inactive),
            },
        )
        return result

    async def list(self, tokens: TokenSet) -> List[WebhookSubscription]:
        """Current subscriptions, for post-registration checks and ops."""
        return await self.client.list_webhooks(tokens)
