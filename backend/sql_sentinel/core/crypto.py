"""
Encryption utilities for stored database credentials
"""
from cryptography.fernet import Fernet, InvalidToken
from functools import lru_cache
from typing import Optional
import base64
import binascii
import hashlib
import os

from sql_sentinel.config import settings
from sql_sentinel.core.exceptions import CredentialDecryptionError


def get_or_create_encryption_key(key_file: str) -> bytes:
    """Get or create encryption key for sensitive data."""
    if os.path.exists(key_file):
        with open(key_file, "rb") as f:
            return f.read().strip()

    # Generate new key
    key = Fernet.generate_key()
    directory = os.path.dirname(key_file)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(key_file, "wb") as f:
        f.write(key)

    return key


def derive_key(secret: str) -> bytes:
    """
    Turn a configured secret into a Fernet key.

    A valid Fernet key is used as is; any other passphrase is stretched
    with SHA-256.
    """
    candidate = secret.encode()
    try:
        if len(base64.urlsafe_b64decode(candidate)) == 32:
            return candidate
    except (binascii.Error, ValueError):
        pass
    return base64.urlsafe_b64encode(hashlib.sha256(candidate).digest())


class CredentialCipher:
    """Encrypts and decrypts database passwords."""

    def __init__(self, key: bytes):
        self._fernet = Fernet(key)

    @classmethod
    def from_secret(cls, secret: str) -> "CredentialCipher":
        return cls(derive_key(secret))

    def encrypt(self, value: str) -> str:
        """Encrypt a string value."""
        if value is None:
            raise ValueError("Cannot encrypt an empty credential")
        encrypted = self._fernet.encrypt(value.encode())
        return base64.b64encode(encrypted).decode()

    def decrypt(self, encrypted_value: str) -> str:
        """
        Decrypt an encrypted string value.

        Raises:
            CredentialDecryptionError: If the value is malformed or was
                encrypted with a different key
        """
        if not encrypted_value:
            raise CredentialDecryptionError("No encrypted credential stored")
        try:
            decoded = base64.b64decode(encrypted_value.encode(), validate=True)
            return self._fernet.decrypt(decoded).decode()
        except (InvalidToken, binascii.Error, ValueError) as e:
            raise CredentialDecryptionError("Failed to decrypt stored credential") from e


@lru_cache()
def get_cipher() -> CredentialCipher:
    """Process-wide cipher built from settings."""
    if settings.ENCRYPTION_KEY:
        return CredentialCipher.from_secret(settings.ENCRYPTION_KEY)
    return CredentialCipher(get_or_create_encryption_key(settings.ENCRYPTION_KEY_FILE))


def encrypt_value(value: str) -> str:
    """Encrypt a string value with the process-wide cipher."""
    return get_cipher().encrypt(value)


def decrypt_value(encrypted_value: Optional[str]) -> str:
    """Decrypt a string value with the process-wide cipher."""
    return get_cipher().decrypt(encrypted_value)
