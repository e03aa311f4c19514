"""
Field encryption for sensitive submission data.

Uses Fernet (symmetric, authenticated) for reversible encryption and a
salted HMAC-SHA256 digest for lookup hashes, so encrypted identifiers can
still be matched without decrypting every row.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from typing import Any

from cryptography.fernet import Fernet, InvalidToken

from src.core.config import settings

logger = logging.getLogger(__name__)


class EncryptionService:
    """
    Encrypts, decrypts and hashes individual field values.

    Attributes:
        fernet: Fernet instance built from the configured key
        hash_salt: Salt mixed into lookup hashes
    """

    def __init__(self, key: str, hash_salt: str = "") -> None:
        """
        Args:
            key: URL-safe base64-encoded 32-byte Fernet key

        Raises:
            ValueError: If the key is not a valid Fernet key
        """
        try:
            self.fernet = Fernet(key.encode())
        except (ValueError, TypeError) as e:
            raise ValueError(f"Encryption key must be a valid Fernet key. Error: {e}") from e
        self.hash_salt = (hash_salt or key).encode()

    def encrypt(self, value: str) -> str:
        return self.fernet.encrypt(value.encode("utf-8")).decode("ascii")

    def decrypt(self, token: str) -> str | None:
        """Decrypt a token, returning None when it is not valid for this key."""
        try:
            return self.fernet.decrypt(token.encode("ascii")).decode("utf-8")
        except (InvalidToken, ValueError):
            logger.warning("Could not decrypt value with the configured key")
            return None

    def hash(self, value: str) -> str:
        return hmac.new(self.hash_salt, value.encode("utf-8"), hashlib.sha256).hexdigest()

    def decrypt_field(self, row: Any, field: str) -> str:
        """
        Read ``<field>_encrypted`` from a row, falling back to the plain column.

        Returns an empty string when neither holds a value.
        """
        encrypted = getattr(row, f"{field}_encrypted", None)
        if encrypted:
            plain = self.decrypt(encrypted)
            if plain is not None:
                return plain
        return getattr(row, field, None) or ""


def get_encryption_service() -> EncryptionService | None:
    """Build the service from settings; None when no key is configured."""
    if not settings.ENCRYPTION_KEY:
        return None
    return EncryptionService(settings.ENCRYPTION_KEY, settings.HASH_SALT)
