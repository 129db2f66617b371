"""
Normalized shapes shared by all provider adapters.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional


@dataclass
class TokenSet:
    """Credentials returned by a code exchange or a refresh."""

    access_token: str
    refresh_token: Optional[str] = None
    expires_in_seconds: Optional[int] = None
    secondary_auth_token: Optional[str] = None
    token_type: str = "bearer"
    scope: Optional[str] = None

    def expires_at(self, now: Optional[datetime] = None) -> Optional[datetime]:
        if self.expires_in_seconds is None:
            return None
        now = now or datetime.now(timezone.utc)
        return now + timedelta(seconds=int(self.expires_in_seconds))

    def __repr__(self) -> str:
        # Never render token values
        return (
            f"TokenSet(expires_in_seconds={self.expires_in_seconds}, "
            f"has_refresh_token={bool(self.refresh_token)}, "
            f"has_secondary_auth_token={bool(self.secondary_auth_token)})"
        )


@dataclass
class StoreProfile:
    """Merchant store profile normalized across providers."""

    merchant_id: str
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    domain: Optional[str] = None
    logo: Optional[str] = None
    plan: Optional[str] = None
    currency: Optional[str] = None
    locale: Optional[str] = None
    uuid: Optional[str] = None
    secondary_auth_token: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    REQUIRED_FIELDS = ("name", "email")

    def missing_fields(self) -> List[str]:
        return [name for name in self.REQUIRED_FIELDS if not getattr(self, name)]

    @property
    def is_complete(self) -> bool:
        return not self.missing_fields()


@dataclass
class ResourceTotals:
    """Aggregate counts gathered during an explicit sync."""

    orders: Optional[int] = None
    products: Optional[int] = None
    customers: Optional[int] = None
    errors: Dict[str, str] = field(default_factory=dict)
