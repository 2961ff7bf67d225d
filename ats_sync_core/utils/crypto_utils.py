"""
Encryption at rest for provider credentials.

Values are encrypted with AES-256-GCM using a key derived from the
process-wide ``ENCRYPTION_KEY`` passphrase with PBKDF2-SHA512 and a random
per-value salt. The stored form is base64(salt | iv | tag | ciphertext).
"""

import base64
import os
from typing import Any, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ..config import get_config
from ..exceptions import EncryptionError
from .json_utils import dumps, loads

IV_LENGTH = 16
SALT_LENGTH = 64
TAG_LENGTH = 16
KEY_LENGTH = 32
PBKDF2_ITERATIONS = 100000


def get_encryption_secret() -> str:
    """Return the configured passphrase or raise if none is set."""
    secret = get_config().security.encryption_key
    if not secret:
        raise EncryptionError("ENCRYPTION_KEY environment variable is not set")
    return secret


def _derive_key(secret: str, salt: bytes) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA512(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=PBKDF2_ITERATIONS,
    )
    return kdf.derive(secret.encode("utf-8"))


def encrypt(plaintext: str, secret: Optional[str] = None) -> str:
    """
    Encrypt a string.

    Args:
        plaintext: Value to encrypt
        secret: Passphrase override, defaults to the configured ENCRYPTION_KEY

    Returns:
        Base64 text holding salt, iv, tag and ciphertext

    Raises:
        EncryptionError: If the key is missing or encryption fails
    """
    secret = secret or get_encryption_secret()
    try:
        salt = os.urandom(SALT_LENGTH)
        iv = os.urandom(IV_LENGTH)
        key = _derive_key(secret, salt)
        sealed = AESGCM(key).encrypt(iv, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return base64.b64encode(salt + iv + tag + ciphertext).decode("ascii")
    except Exception as e:
        raise EncryptionError(f"Encryption failed: {e}", cause=e) from e


def decrypt(token: str, secret: Optional[str] = None) -> str:
    """
    Decrypt a value produced by encrypt().

    Raises:
        EncryptionError: If the key is missing, the data is malformed or was
            tampered with, or the key does not match
    """
    secret = secret or get_encryption_secret()
    try:
        raw = base64.b64decode(token.encode("ascii"), validate=True)
        header = SALT_LENGTH + IV_LENGTH + TAG_LENGTH
        if len(raw) < header:
            raise ValueError("ciphertext is too short")

        salt = raw[:SALT_LENGTH]
        iv = raw[SALT_LENGTH : SALT_LENGTH + IV_LENGTH]
        tag = raw[SALT_LENGTH + IV_LENGTH : header]
        ciphertext = raw[header:]

        key = _derive_key(secret, salt)
        return AESGCM(key).decrypt(iv, ciphertext + tag, None).decode("utf-8")
    except InvalidTag as e:
        raise EncryptionError("Decryption failed: authentication tag mismatch", cause=e) from e
    except Exception as e:
        raise EncryptionError(f"Decryption failed: {e}", cause=e) from e


def encrypt_object(value: Any, secret: Optional[str] = None) -> str:
    """Serialize a value as JSON and encrypt it."""
    return encrypt(dumps(value), secret)


def decrypt_object(token: str, secret: Optional[str] = None) -> Any:
    """Decrypt a value produced by encrypt_object() and parse the JSON."""
    plaintext = decrypt(token, secret)
    try:
        return loads(plaintext)
    except ValueError as e:
        raise EncryptionError(f"Decryption failed: {e}", cause=e) from e
