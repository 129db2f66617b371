"""
Tests for the credential cipher and log redaction.

Tests cover:
- Encrypt/decrypt with AES-256-GCM
- Tamper and wrong-key detection
- Legacy plaintext handling
- Key configuration validation
- Secret redaction in structures and log records
"""

import logging

import pytest

from storelink.platform.secrets import (
    CredentialCipher,
    EncryptionError,
    REDACTED_VALUE,
    SecretRedactingFilter,
    decrypt_secret,
    decrypt_secret_safe,
    encrypt_secret,
    is_encrypted,
    mask_secret,
    redact_secrets,
    reset_cipher,
)


@pytest.fixture
def cipher():
    return CredentialCipher(bytes(range(32)))


@pytest.fixture
def fresh_cipher():
    """Re-read STORE_ENCRYPTION_KEY before and after the test."""
    reset_cipher()
    yield
    reset_cipher()


class TestCredentialCipher:
    """Tests for CredentialCipher."""

    def test_roundtrip(self, cipher):
        ciphertext = cipher.encrypt("ory_at_secret_value")
        assert ciphertext != "ory_at_secret_value"
        assert cipher.decrypt(ciphertext) == "ory_at_secret_value"

    def test_ciphertext_format(self, cipher):
        iv_hex, tag_hex, data_hex = cipher.encrypt("token").split(":")
        assert len(iv_hex) == 32
        assert len(tag_hex) == 32
        assert len(data_hex) == len("token") * 2

    def test_fresh_iv_per_encryption(self, cipher):
        assert cipher.encrypt("same") != cipher.encrypt("same")

    def test_empty_input_encrypts_to_none(self, cipher):
        assert cipher.encrypt("") is None
        assert cipher.encrypt(None) is None
        assert cipher.decrypt(None) is None

    def test_tampered_ciphertext_raises(self, cipher):
        iv_hex, tag_hex, data_hex = cipher.encrypt("token-value").split(":")
        flipped = format(int(data_hex[:2], 16) ^ 0x01, "02x") + data_hex[2:]

        with pytest.raises(EncryptionError):
            cipher.decrypt(f"{iv_hex}:{tag_hex}:{flipped}")

    def test_wrong_key_raises(self, cipher):
        ciphertext = cipher.encrypt("token-value")
        other = CredentialCipher(bytes(32))

        with pytest.raises(EncryptionError):
            other.decrypt(ciphertext)

    def test_legacy_plaintext_passes_through_decrypt(self, cipher):
        assert cipher.decrypt("plain-legacy-token") == "plain-legacy-token"

    def test_decrypt_safe_never_raises(self, cipher):
        ciphertext = cipher.encrypt("token-value")
        iv_hex, tag_hex, data_hex = ciphertext.split(":")

        assert cipher.decrypt_safe(f"{iv_hex}:{'0' * 32}:{data_hex}") is None
        assert cipher.decrypt_safe("not:valid") is None
        assert cipher.decrypt_safe(12345) is None
        assert cipher.decrypt_safe("") is None

    def test_decrypt_safe_legacy_opt_in(self, cipher):
        assert cipher.decrypt_safe("plain-legacy-token") is None
        assert cipher.decrypt_safe("plain-legacy-token", allow_legacy=True) == "plain-legacy-token"

    def test_rejects_short_key(self):
        with pytest.raises(EncryptionError):
            CredentialCipher(b"short")


class TestKeyConfiguration:
    """Tests for STORE_ENCRYPTION_KEY handling."""

    def test_module_roundtrip_with_env_key(self, fresh_cipher, monkeypatch):
        monkeypatch.setenv("STORE_ENCRYPTION_KEY", "ab" * 32)
        reset_cipher()

        assert decrypt_secret(encrypt_secret("value")) == "value"

    def test_wrong_length_key_rejected(self, fresh_cipher, monkeypatch):
        monkeypatch.setenv("STORE_ENCRYPTION_KEY", "abcd")
        reset_cipher()

        with pytest.raises(EncryptionError, match="64 hex characters"):
            encrypt_secret("value")

    def test_non_hex_key_rejected(self, fresh_cipher, monkeypatch):
        monkeypatch.setenv("STORE_ENCRYPTION_KEY", "zz" * 32)
        reset_cipher()

        with pytest.raises(EncryptionError, match="not valid hex"):
            encrypt_secret("value")

    def test_missing_key_in_production_fails(self, fresh_cipher, monkeypatch):
        monkeypatch.delenv("STORE_ENCRYPTION_KEY", raising=False)
        monkeypatch.setenv("ENV", "production")
        reset_cipher()

        with pytest.raises(EncryptionError, match="required in production"):
            encrypt_secret("value")

    def test_missing_key_in_development_derives_one(self, fresh_cipher, monkeypatch):
        monkeypatch.delenv("STORE_ENCRYPTION_KEY", raising=False)
        monkeypatch.setenv("ENV", "development")
        reset_cipher()

        assert decrypt_secret_safe(encrypt_secret("value")) == "value"


class TestIsEncrypted:

    def test_cipher_output_detected(self, cipher):
        assert is_encrypted(cipher.encrypt("token")) is True

    @pytest.mark.parametrize("value", [
        None,
        "",
        "plain-token",
        "a:b:c",
        "00" * 16 + ":" + "00" * 16 + ":",
        "00" * 16 + ":" + "00" * 16 + ":abc",
    ])
    def test_non_cipher_values(self, value):
        assert is_encrypted(value) is False


@pytest.mark.security
class TestRedaction:
    """Tests for secret redaction helpers."""

    def test_redact_nested_secret_keys(self):
        data = {
            "access_token": "ory_at_abcdefghijklmnop",
            "store": {"name": "Shop", "refresh_token": "r"},
            "items": [{"client_secret": "s"}],
        }

        result = redact_secrets(data)

        assert result["access_token"] == REDACTED_VALUE
        assert result["store"]["name"] == "Shop"
        assert result["store"]["refresh_token"] == REDACTED_VALUE
        assert result["items"][0]["client_secret"] == REDACTED_VALUE

    def test_redact_bearer_values(self):
        assert "abc.def" not in redact_secrets("header was Bearer abc.def")

    def test_mask_secret(self):
        assert mask_secret("sk_live_1234567890") == "**************7890"
        assert mask_secret("abc") == "****"
        assert mask_secret(None) == "****"

    def test_logging_filter_redacts_message_and_extra(self):
        record = logging.LogRecord(
            name="test",
            level=logging.INFO,
            pathname=__file__,
            lineno=1,
            msg="Calling with Bearer secret-token-value",
            args=None,
            exc_info=None,
        )
        record.access_token = "should-not-appear"

        assert SecretRedactingFilter().filter(record) is True
        assert "secret-token-value" not in record.msg
        assert record.access_token == REDACTED_VALUE
