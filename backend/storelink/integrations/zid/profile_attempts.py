"""
Ordered profile attempt strategies for Zid.

Zid serves store profile data from more than one manager endpoint, and the
header combination each accepts depends on whether the secondary
authorization token is available. Each strategy is a named pure function
that builds request headers from a TokenSet, or returns None when it does
not apply. Strategies are tried in order and the first success wins.
"""

from dataclasses import dataclass
from typing import Callable, Dict, Optional

from storelink.integrations.common.models import TokenSet

Headers = Dict[str, str]


@dataclass(frozen=True)
class ProfileAttempt:
    name: str
    path: str
    build_headers: Callable[[TokenSet], Optional[Headers]]


def dual_token_headers(tokens: TokenSet) -> Optional[Headers]:
    """Manager API with both cooperating tokens."""
    if not tokens.secondary_auth_token:
        return None
    return {
        "Authorization": f"Bearer {tokens.secondary_auth_token}",
        "X-Manager-Token": tokens.access_token,
        "Accept-Language": "ar",
    }


def manager_bearer_headers(tokens: TokenSet) -> Optional[Headers]:
    """Primary token only, used as bearer."""
    return {
        "Authorization": f"Bearer {tokens.access_token}",
        "Accept-Language": "ar",
    }


def manager_token_headers(tokens: TokenSet) -> Optional[Headers]:
    """Primary token as bearer and as manager token."""
    return {
        "Authorization": f"Bearer {tokens.access_token}",
        "X-Manager-Token": tokens.access_token,
        "Accept-Language": "ar",
    }


def access_token_headers(tokens: TokenSet) -> Optional[Headers]:
    """Product API family header set."""
    headers = {"Access-Token": tokens.access_token, "Accept-Language": "ar"}
    if tokens.secondary_auth_token:
        headers["Authorization"] = f"Bearer {tokens.secondary_auth_token}"
    return headers


PROFILE_ATTEMPTS = (
    ProfileAttempt("account_dual_token", "/managers/account", dual_token_headers),
    ProfileAttempt("account_manager_bearer", "/managers/account", manager_bearer_headers),
    ProfileAttempt("store_info_dual_token", "/managers/store/info", dual_token_headers),
    ProfileAttempt("store_info_manager_token", "/managers/store/info", manager_token_headers),
    ProfileAttempt("store_info_access_token", "/managers/store/info", access_token_headers),
)
