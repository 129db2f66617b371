"""
Provider adapter registry.

OAuth adapters (Salla, Zid) are long-lived and shared across requests.
Generic API-key adapters are bound to a merchant-supplied base URL, so a
fresh one is built per call and must be closed by the caller.
"""

import logging
from typing import Dict, List, Optional

from storelink.integrations.common.client import ProviderTokenAdapter
from storelink.integrations.generic import GenericApiClient
from storelink.integrations.salla import SallaClient
from storelink.integrations.zid import ZidClient
from storelink.models.store import Store, StorePlatform
from storelink.services.errors import UnsupportedPlatformError

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Looks up the token adapter for a platform."""

    def __init__(self, adapters: Optional[Dict[StorePlatform, ProviderTokenAdapter]] = None):
        self._adapters: Dict[StorePlatform, ProviderTokenAdapter] = dict(adapters or {})

    @classmethod
    def from_env(cls) -> "ProviderRegistry":
        """
        Build adapters for every OAuth provider whose credentials are set.

        A provider with missing configuration is skipped with a warning so
        the remaining providers stay usable.
        """
        adapters: Dict[StorePlatform, ProviderTokenAdapter] = {}
        for platform, adapter_cls in (
            (StorePlatform.SALLA, SallaClient),
            (StorePlatform.ZID, ZidClient),
        ):
            try:
                adapters[platform] = adapter_cls.from_env()
            except ValueError as e:
                logger.warning(
                    "Provider disabled: %s",
                    e,
                    extra={"platform": platform.value},
                )
        return cls(adapters)

    def configured_platforms(self) -> List[str]:
        return sorted(p.value for p in self._adapters)

    def register(self, adapter: ProviderTokenAdapter) -> None:
        self._adapters[adapter.platform] = adapter

    def get(self, platform: StorePlatform) -> ProviderTokenAdapter:
        """
        Raises:
            UnsupportedPlatformError: No shared adapter for this platform
        """
        adapter = self._adapters.get(platform)
        if adapter is None:
            raise UnsupportedPlatformError(f"{platform.value} is not configured")
        return adapter

    def get_zid(self) -> ZidClient:
        adapter = self.get(StorePlatform.ZID)
        if not isinstance(adapter, ZidClient):
            raise UnsupportedPlatformError("zid adapter is not a ZidClient")
        return adapter

    def generic_for(self, store: Store) -> GenericApiClient:
        """New adapter bound to the store's base URL. Caller closes it."""
        return GenericApiClient(store.api_base_url)

    async def close(self) -> None:
        for adapter in self._adapters.values():
            await adapter.close()
