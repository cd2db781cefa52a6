"""
Credential encryption for stored IMAP passwords and provider tokens.

Uses Fernet (AES-128-CBC with HMAC) keyed by ENCRYPTION_KEY.
"""

from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from app.config import get_settings
from app.errors import DecryptionError


class CredentialCipher:
    """Encrypts and decrypts account credentials."""

    def __init__(self, key: Optional[str] = None):
        key = key or get_settings().ENCRYPTION_KEY
        if not key:
            raise DecryptionError("ENCRYPTION_KEY is not configured")
        try:
            self._cipher = Fernet(key.encode("utf-8") if isinstance(key, str) else key)
        except (ValueError, TypeError) as e:
            raise DecryptionError(f"Invalid ENCRYPTION_KEY: {e}") from e

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a string and return the token as text."""
        return self._cipher.encrypt(plaintext.encode("utf-8")).decode("utf-8")

    def decrypt(self, ciphertext: Optional[str]) -> str:
        """
        Decrypt a stored credential.

        Raises:
            DecryptionError: If the ciphertext is missing, corrupted, or was
                encrypted with another key.
        """
        if not ciphertext:
            raise DecryptionError("No stored credential to decrypt")
        try:
            return self._cipher.decrypt(ciphertext.encode("utf-8")).decode("utf-8")
        except (InvalidToken, ValueError) as e:
            raise DecryptionError("Failed to decrypt credential") from e


def generate_key() -> str:
    """Create a new ENCRYPTION_KEY value."""
    return Fernet.generate_key().decode("utf-8")
