"""
Platform-level modules for tenant isolation and credential security.

- tenant_context: JWT tenant extraction for authenticated routes
- secrets: Credential cipher and log redaction
- cache: Shared TTL store (Redis, with in-process fallback)
"""

from storelink.platform.tenant_context import (
    TenantContext,
    get_tenant_context,
)

from storelink.platform.secrets import (
    CredentialCipher,
    EncryptionError,
    SecretRedactingFilter,
    encrypt_secret,
    decrypt_secret,
    decrypt_secret_safe,
    is_encrypted,
    redact_secrets,
    mask_secret,
)

from storelink.platform.cache import (
    RedisClient,
    TTLStore,
    MemoryTTLStore,
    RedisTTLStore,
    get_ttl_store,
)

__all__ = [
    # Tenant context
    "TenantContext",
    "get_tenant_context",
    # Secrets
    "CredentialCipher",
    "EncryptionError",
    "SecretRedactingFilter",
    "encrypt_secret",
    "decrypt_secret",
    "decrypt_secret_safe",
    "is_encrypted",
    "redact_secrets",
    "mask_secret",
    # Cache
    "RedisClient",
    "TTLStore",
    "MemoryTTLStore",
    "RedisTTLStore",
    "get_ttl_store",
]
