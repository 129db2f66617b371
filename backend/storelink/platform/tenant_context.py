"""
Tenant context for authenticated store-management routes.

CRITICAL SECURITY REQUIREMENTS:
- tenant_id is ALWAYS extracted from the JWT (tenant_id, falling back to
  org_id), NEVER from request body/query
- Requests without a valid token return 401, tokens without a tenant 403
- Tokens are HS256-signed with JWT_SECRET
"""

import os
import logging
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jwt.exceptions import ExpiredSignatureError, InvalidTokenError

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"

_bearer = HTTPBearer(auto_error=False)


class TenantContext:
    """Immutable tenant context extracted from a verified JWT."""

    def __init__(self, tenant_id: str, user_id: Optional[str] = None, roles: Optional[list] = None):
        if not tenant_id:
            raise ValueError("tenant_id cannot be empty")
        self.tenant_id = tenant_id
        self.user_id = user_id
        self.roles = roles or []

    def __repr__(self) -> str:
        return f"TenantContext(tenant_id={self.tenant_id}, user_id={self.user_id})"

    @classmethod
    def from_claims(cls, claims: dict) -> "TenantContext":
        tenant_id = claims.get("tenant_id") or claims.get("org_id")
        return cls(
            tenant_id=tenant_id,
            user_id=claims.get("sub"),
            roles=claims.get("roles") or [],
        )


def _get_jwt_secret() -> str:
    secret = os.getenv("JWT_SECRET")
    if not secret:
        raise ValueError("JWT_SECRET environment variable is required")
    return secret


def decode_token(token: str) -> dict:
    """
    Verify signature and expiry.

    Raises:
        InvalidTokenError: On any verification failure
        ValueError: If JWT_SECRET is not configured
    """
    return jwt.decode(token, _get_jwt_secret(), algorithms=[JWT_ALGORITHM])


def get_tenant_context(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
) -> TenantContext:
    """
    FastAPI dependency returning the caller's tenant context.

    Usage:
        @router.post("/api/stores/{store_id}/sync")
        async def sync(ctx: TenantContext = Depends(get_tenant_context)):
            ...
    """
    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authentication token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        claims = decode_token(credentials.credentials)
    except ValueError:
        logger.error("JWT_SECRET not configured, rejecting authenticated request")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Authentication not configured",
        )
    except ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token expired",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except InvalidTokenError as e:
        logger.warning("Invalid JWT", extra={"error": str(e)})
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        return TenantContext.from_claims(claims)
    except ValueError:
        logger.warning("JWT has no tenant claim", extra={"user_id": claims.get("sub")})
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Tenant context not available",
        )
