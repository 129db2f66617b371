"""
Store credential and identity services.

Service classes are imported from their modules directly; only the error
taxonomy is re-exported here since adapters and routes share it.
"""

from storelink.services.errors import (
    StoreLifecycleError,
    InvalidStateError,
    ExpiredStateError,
    OwnershipConflictError,
    ReauthorizationRequiredError,
    AmbiguousRecoveryError,
    StoreNotFoundError,
    UnsupportedPlatformError,
    InvalidApiCredentialsError,
)

__all__ = [
    "StoreLifecycleError",
    "InvalidStateError",
    "ExpiredStateError",
    "OwnershipConflictError",
    "ReauthorizationRequiredError",
    "AmbiguousRecoveryError",
    "StoreNotFoundError",
    "UnsupportedPlatformError",
    "InvalidApiCredentialsError",
]
