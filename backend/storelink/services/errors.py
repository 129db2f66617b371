"""
Store lifecycle error taxonomy.

Each error carries a short machine-readable ``reason`` that OAuth callback
redirects surface to the frontend as ``status=error&reason=<reason>``.
"""

from typing import Optional


class StoreLifecycleError(Exception):
    """Base exception for store credential and identity failures."""

    reason = "connection_failed"

    def __init__(self, message: str, reason: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if reason:
            self.reason = reason


class InvalidStateError(StoreLifecycleError):
    """OAuth state is missing, unknown, or already used."""

    reason = "invalid_state"


class ExpiredStateError(InvalidStateError):
    """OAuth state exists but is past its TTL."""

    reason = "expired_state"


class OwnershipConflictError(StoreLifecycleError):
    """The merchant id already belongs to a different tenant."""

    reason = "store_owned_by_another_account"

    def __init__(self, message: str, store_id: Optional[str] = None):
        super().__init__(message)
        self.store_id = store_id


class ReauthorizationRequiredError(StoreLifecycleError):
    """No usable token or refresh path, the merchant must reconnect."""

    reason = "reauthorization_required"

    def __init__(self, message: str, store_id: Optional[str] = None):
        super().__init__(message)
        self.store_id = store_id


class AmbiguousRecoveryError(StoreLifecycleError):
    """Auto-recovery found more than one candidate tenant."""

    reason = "ambiguous_recovery"

    def __init__(self, message: str, tenant_ids: Optional[list] = None):
        super().__init__(message)
        self.tenant_ids = tenant_ids or []


class StoreNotFoundError(StoreLifecycleError):
    """Store does not exist or is not visible to the tenant."""

    reason = "store_not_found"


class UnsupportedPlatformError(StoreLifecycleError):
    """Operation is not available for this platform."""

    reason = "unsupported_platform"


class InvalidApiCredentialsError(StoreLifecycleError):
    """An API-key connection was rejected by the platform."""

    reason = "invalid_api_key"
