"""Tests for credential encryption at rest."""

import base64

import pytest

from ats_sync_core.exceptions import EncryptionError
from ats_sync_core.utils.crypto_utils import (
    IV_LENGTH,
    SALT_LENGTH,
    TAG_LENGTH,
    decrypt,
    decrypt_object,
    encrypt,
    encrypt_object,
)


class TestEncrypt:
    def test_decrypt_restores_plaintext(self):
        token = encrypt("hs-access-token")
        assert token != "hs-access-token"
        assert decrypt(token) == "hs-access-token"

    def test_each_encryption_uses_fresh_salt_and_iv(self):
        assert encrypt("same value") != encrypt("same value")

    def test_stored_layout(self):
        """salt | iv | tag | ciphertext, base64 encoded."""
        raw = base64.b64decode(encrypt("abc"))
        assert len(raw) == SALT_LENGTH + IV_LENGTH + TAG_LENGTH + len("abc")

    def test_explicit_secret_overrides_configuration(self):
        token = encrypt("value", secret="another-secret")
        assert decrypt(token, secret="another-secret") == "value"


class TestDecryptFailures:
    """Every way decryption can fail surfaces as EncryptionError."""

    def test_wrong_key(self):
        token = encrypt("value", secret="key-one")
        with pytest.raises(EncryptionError) as exc_info:
            decrypt(token, secret="key-two")
        assert exc_info.value.message == "Decryption failed: authentication tag mismatch"

    def test_tampered_ciphertext(self):
        raw = bytearray(base64.b64decode(encrypt("value")))
        raw[-1] ^= 0x01
        with pytest.raises(EncryptionError):
            decrypt(base64.b64encode(bytes(raw)).decode("ascii"))

    def test_truncated_value(self):
        with pytest.raises(EncryptionError, match="too short"):
            decrypt(base64.b64encode(b"short").decode("ascii"))

    def test_not_base64(self):
        with pytest.raises(EncryptionError):
            decrypt("not base64 at all!")


class TestMissingKey:
    def test_encrypt_without_key(self, test_config):
        test_config.security.encryption_key = None
        with pytest.raises(EncryptionError) as exc_info:
            encrypt("value")
        assert exc_info.value.message == "ENCRYPTION_KEY environment variable is not set"

    def test_decrypt_without_key(self, test_config):
        token = encrypt("value")
        test_config.security.encryption_key = None
        with pytest.raises(EncryptionError):
            decrypt(token)


class TestObjects:
    def test_credential_set(self):
        credentials = {"access_token": "a", "refresh_token": "r", "expires_at": None}
        assert decrypt_object(encrypt_object(credentials)) == credentials

    def test_non_json_plaintext(self):
        with pytest.raises(EncryptionError):
            decrypt_object(encrypt("{not json"))
