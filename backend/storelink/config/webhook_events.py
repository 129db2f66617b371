"""
Webhook event-set configuration loader.

Loads the per-provider required event sets from
storelink/config/webhook_events.yml.

Consumers:
  - WebhookSubscriptionManager: events to (re)create on registration
  - StoreConnectionService: webhook target path per provider

Usage:
    from storelink.config.webhook_events import get_webhook_events_loader

    loader = get_webhook_events_loader()
    events = loader.get_required_events("zid")
"""

import logging
import os
from pathlib import Path
from threading import Lock
from typing import Any, Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)

_DEFAULT_CONFIG: Dict[str, Any] = {
    "version": 1,
    "settle_delay_seconds": 2,
    "providers": {
        "zid": {
            "target_path": "/api/webhooks/zid",
            "events": [
                "order.create",
                "order.status.update",
                "order.payment_status.update",
                "customer.create",
                "customer.update",
                "abandoned_cart.created",
                "app.market.application.uninstall",
            ],
        },
    },
}


class WebhookEventsLoader:
    """Thread-safe singleton loader for webhook_events.yml."""

    _instance: Optional["WebhookEventsLoader"] = None
    _lock = Lock()

    def __new__(cls, config_path: Optional[str] = None):
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self, config_path: Optional[str] = None):
        if self._initialized:
            return

        self._config_path = config_path
        self._raw: Dict[str, Any] = {}
        self._load_lock = Lock()

        self._load()
        self._initialized = True

    @classmethod
    def reset(cls) -> None:
        with cls._lock:
            cls._instance = None

    def _resolve_path(self) -> Path:
        if self._config_path:
            return Path(self._config_path)
        return Path(__file__).parent / "webhook_events.yml"

    def _load(self) -> None:
        with self._load_lock:
            path = self._resolve_path()
            try:
                with open(path, "r") as f:
                    self._raw = yaml.safe_load(f) or {}
                logger.info(
                    "Loaded webhook event config from %s: providers=%s",
                    path,
                    list(self._raw.get("providers", {}).keys()),
                )
            except FileNotFoundError:
                logger.warning("%s not found, using built-in webhook event set", path)
                self._raw = _DEFAULT_CONFIG

    def reload(self) -> None:
        """Re-read the YAML from disk."""
        self._load()

    def _provider(self, provider: str) -> Dict[str, Any]:
        providers = self._raw.get("providers") or _DEFAULT_CONFIG["providers"]
        return providers.get(provider) or {}

    def get_required_events(self, provider: str) -> List[str]:
        """Ordered, de-duplicated event names for a provider ([] if unknown)."""
        events = self._provider(provider).get("events") or []
        return list(dict.fromkeys(str(e) for e in events))

    def get_target_path(self, provider: str) -> str:
        return self._provider(provider).get("target_path") or f"/api/webhooks/{provider}"

    def get_settle_delay_seconds(self) -> float:
        env_value = os.getenv("WEBHOOK_SETTLE_DELAY_SECONDS")
        if env_value:
            return float(env_value)
        return float(self._raw.get("settle_delay_seconds", _DEFAULT_CONFIG["settle_delay_seconds"]))


def get_webhook_events_loader() -> WebhookEventsLoader:
    return WebhookEventsLoader()
