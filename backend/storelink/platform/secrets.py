"""
Credential cipher and secret hygiene for stored provider tokens.

CRITICAL SECURITY REQUIREMENTS:
- NEVER store provider tokens in plaintext in DB, logs, or frontend
- All token encrypt/decrypt operations MUST use this module
- Any variable name containing token/secret/key MUST be redacted from logs
- The key comes from process configuration only, never from request input

Ciphertext format is AES-256-GCM rendered as three hex fields:

    <iv>:<auth tag>:<ciphertext>

Values that do not have that shape are legacy plaintext tokens written before
encryption was introduced. decrypt_secret() passes them through unchanged so
existing stores keep working during the migration window; is_encrypted()
tells the two apart.

Usage:
    from storelink.platform.secrets import encrypt_secret, decrypt_secret_safe

    store.access_token_encrypted = encrypt_secret(access_token)
    access_token = decrypt_secret_safe(store.access_token_encrypted, allow_legacy=True)
"""

import hashlib
import logging
import os
import re
import secrets
from typing import Any, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

logger = logging.getLogger(__name__)

IV_LENGTH = 16
AUTH_TAG_LENGTH = 16
KEY_LENGTH = 32

_HEX_FIELD = re.compile(r"^[0-9a-fA-F]+$")

# Patterns for detecting secrets in logs
SECRET_PATTERNS = [
    re.compile(r"(api[_-]?key)", re.IGNORECASE),
    re.compile(r"(api[_-]?secret)", re.IGNORECASE),
    re.compile(r"(access[_-]?token)", re.IGNORECASE),
    re.compile(r"(refresh[_-]?token)", re.IGNORECASE),
    re.compile(r"(authorization)", re.IGNORECASE),
    re.compile(r"(manager[_-]?token)", re.IGNORECASE),
    re.compile(r"(password)", re.IGNORECASE),
    re.compile(r"(client[_-]?secret)", re.IGNORECASE),
    re.compile(r"(encryption[_-]?key)", re.IGNORECASE),
    re.compile(r"(app[_-]?secret)", re.IGNORECASE),
    re.compile(r"(jwt[_-]?secret)", re.IGNORECASE),
    re.compile(r"(webhook[_-]?secret)", re.IGNORECASE),
    re.compile(r"(database[_-]?url)", re.IGNORECASE),
    re.compile(r"(credentials)", re.IGNORECASE),
]

# Common secret value patterns to redact
SECRET_VALUE_PATTERNS = [
    re.compile(r"(Bearer\s+[a-zA-Z0-9._~+/=-]+)"),
    re.compile(r"(ory_at_[a-zA-Z0-9._-]{16,})"),  # Salla access tokens
    re.compile(r"(ory_rt_[a-zA-Z0-9._-]{16,})"),  # Salla refresh tokens
    re.compile(r"(eyJ[a-zA-Z0-9_-]{10,}\.[a-zA-Z0-9_-]{10,}\.[a-zA-Z0-9_-]+)"),  # JWTs
]

REDACTED_VALUE = "[REDACTED]"


class EncryptionError(Exception):
    """Raised when encryption/decryption operations fail."""
    pass


class CredentialCipher:
    """
    Authenticated symmetric cipher for provider credentials.

    The key is resolved lazily from STORE_ENCRYPTION_KEY (64 hex characters).
    Outside production a key derived from APP_SECRET is used instead, with a
    warning, so local environments work without extra setup.
    """

    def __init__(self, key: Optional[bytes] = None):
        if key is not None and len(key) != KEY_LENGTH:
            raise EncryptionError(f"Cipher key must be {KEY_LENGTH} bytes")
        self._key = key

    def _get_key(self) -> bytes:
        if self._key is None:
            self._key = self._load_key()
        return self._key

    @staticmethod
    def _load_key() -> bytes:
        key_hex = os.getenv("STORE_ENCRYPTION_KEY")

        if not key_hex:
            if os.getenv("ENV", "development") == "production":
                raise EncryptionError("STORE_ENCRYPTION_KEY is required in production")
            logger.warning(
                "STORE_ENCRYPTION_KEY not set, deriving development key from APP_SECRET"
            )
            app_secret = os.getenv("APP_SECRET", "dev-fallback-secret")
            return hashlib.sha256(app_secret.encode("utf-8")).digest()

        if len(key_hex) != KEY_LENGTH * 2:
            raise EncryptionError(
                f"STORE_ENCRYPTION_KEY must be exactly {KEY_LENGTH * 2} hex characters"
            )

        try:
            return bytes.fromhex(key_hex)
        except ValueError as e:
            raise EncryptionError(f"STORE_ENCRYPTION_KEY is not valid hex: {e}")

    def encrypt(self, plaintext: Optional[str]) -> Optional[str]:
        """
        Encrypt a token for storage.

        Args:
            plaintext: The token to encrypt

        Returns:
            "iv:tag:data" hex string, or None for an empty input
        """
        if not plaintext:
            return None

        iv = secrets.token_bytes(IV_LENGTH)
        sealed = AESGCM(self._get_key()).encrypt(iv, plaintext.encode("utf-8"), None)
        data, tag = sealed[:-AUTH_TAG_LENGTH], sealed[-AUTH_TAG_LENGTH:]
        return f"{iv.hex()}:{tag.hex()}:{data.hex()}"

    def decrypt(self, ciphertext: Optional[str]) -> Optional[str]:
        """
        Decrypt a stored token.

        Legacy plaintext (anything not shaped like cipher output) is returned
        unchanged.

        Raises:
            EncryptionError: If the value is shaped like cipher output but
                fails authentication (tampered data or wrong key)
        """
        if not ciphertext:
            return None

        if not is_encrypted(ciphertext):
            return ciphertext

        iv_hex, tag_hex, data_hex = ciphertext.split(":")
        iv = bytes.fromhex(iv_hex)
        tag = bytes.fromhex(tag_hex)
        data = bytes.fromhex(data_hex)

        try:
            plaintext = AESGCM(self._get_key()).decrypt(iv, data + tag, None)
        except InvalidTag:
            raise EncryptionError("Invalid ciphertext or wrong encryption key")

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise EncryptionError(f"Decrypted value is not valid UTF-8: {e}")

    def decrypt_safe(
        self,
        ciphertext: Optional[str],
        allow_legacy: bool = False,
    ) -> Optional[str]:
        """
        Decrypt without ever raising.

        Returns None for malformed input, failed authentication, a broken key
        configuration, and (unless allow_legacy is set) legacy plaintext.
        """
        if not ciphertext or not isinstance(ciphertext, str):
            return None

        if not is_encrypted(ciphertext):
            return ciphertext if allow_legacy else None

        try:
            return self.decrypt(ciphertext)
        except (EncryptionError, ValueError) as e:
            logger.warning(
                "Credential decryption failed, treating token as absent",
                extra={"error_type": type(e).__name__},
            )
            return None


# Singleton instance
_cipher = CredentialCipher()


def reset_cipher() -> None:
    """Drop the cached key so the next call re-reads configuration."""
    global _cipher
    _cipher = CredentialCipher()


def encrypt_secret(plaintext: Optional[str]) -> Optional[str]:
    """Encrypt a token for storage. Empty input returns None."""
    return _cipher.encrypt(plaintext)


def decrypt_secret(ciphertext: Optional[str]) -> Optional[str]:
    """Decrypt a stored token, raising EncryptionError on tampered data."""
    return _cipher.decrypt(ciphertext)


def decrypt_secret_safe(
    ciphertext: Optional[str],
    allow_legacy: bool = False,
) -> Optional[str]:
    """Decrypt a stored token, returning None instead of raising."""
    return _cipher.decrypt_safe(ciphertext, allow_legacy=allow_legacy)


def is_encrypted(value: Optional[str]) -> bool:
    """
    Check whether a value has the cipher output shape.

    Used to tell legacy plaintext tokens apart from encrypted ones.
    """
    if not value or not isinstance(value, str):
        return False

    parts = value.split(":")
    if len(parts) != 3:
        return False

    iv_hex, tag_hex, data_hex = parts
    if len(iv_hex) != IV_LENGTH * 2 or len(tag_hex) != AUTH_TAG_LENGTH * 2:
        return False
    if not data_hex or len(data_hex) % 2:
        return False

    return all(_HEX_FIELD.match(part) for part in parts)


def is_secret_key(key: str) -> bool:
    """
    Check if a dictionary key likely contains a secret.

    Args:
        key: The key name to check

    Returns:
        True if the key name suggests it contains a secret
    """
    return any(pattern.search(key) for pattern in SECRET_PATTERNS)


def redact_value(value: Any) -> Any:
    """Redact secret patterns from a string value."""
    if not isinstance(value, str):
        return value

    result = value
    for pattern in SECRET_VALUE_PATTERNS:
        result = pattern.sub(REDACTED_VALUE, result)

    return result


def redact_secrets(data: Any, _depth: int = 0) -> Any:
    """
    Recursively redact secrets from a data structure.

    Use this before logging provider responses, which often echo tokens.

    Usage:
        logger.error("Token exchange failed", extra={"response": redact_secrets(body)})
    """
    # Prevent infinite recursion
    if _depth > 10:
        return data

    if isinstance(data, dict):
        result = {}
        for key, value in data.items():
            if isinstance(key, str) and is_secret_key(key):
                result[key] = REDACTED_VALUE
            else:
                result[key] = redact_secrets(value, _depth + 1)
        return result

    if isinstance(data, list):
        return [redact_secrets(item, _depth + 1) for item in data]

    if isinstance(data, str):
        return redact_value(data)

    return data


def mask_secret(secret: Optional[str], visible_chars: int = 4) -> str:
    """
    Mask a secret showing only the last few characters.

    Returns:
        Masked string like "****abcd"
    """
    if not secret or len(secret) <= visible_chars:
        return "*" * max(len(secret) if secret else 0, 4)

    return "*" * (len(secret) - visible_chars) + secret[-visible_chars:]


class SecretRedactingFilter(logging.Filter):
    """
    Logging filter that redacts secrets from log records.

    Usage:
        handler.addFilter(SecretRedactingFilter())
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = redact_value(record.msg)

        if record.args:
            if isinstance(record.args, dict):
                record.args = redact_secrets(record.args)
            elif isinstance(record.args, tuple):
                record.args = tuple(
                    redact_value(arg) if isinstance(arg, str) else arg
                    for arg in record.args
                )

        for key in list(record.__dict__.keys()):
            if is_secret_key(key):
                setattr(record, key, REDACTED_VALUE)

        return True


def validate_encryption_configured() -> bool:
    """Check if a production encryption key is configured."""
    return bool(os.getenv("STORE_ENCRYPTION_KEY"))
