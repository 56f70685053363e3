"""Credential encryption utilities.

Provides Fernet encryption for bank API keys, secrets and cached provider
tokens stored at rest.
"""

from __future__ import annotations

import logging
import os

from cryptography.fernet import Fernet, InvalidToken

from app.config import settings

_ENCRYPTION_KEY_ENV = "CREDENTIAL_ENCRYPTION_KEY"
_logger = logging.getLogger(__name__)
_encryption_warning_logged = False


def get_encryption_key() -> bytes | None:
    """Get the Fernet encryption key.

    The process environment wins over the value captured in settings at import
    time so a rotated key can be picked up by a restarted worker.

    Returns:
        Fernet key bytes if set, None otherwise
    """
    global _encryption_warning_logged

    key_str = os.environ.get(_ENCRYPTION_KEY_ENV) or settings.credential_encryption_key
    if not key_str:
        if not _encryption_warning_logged:
            _logger.warning(
                "CREDENTIAL_ENCRYPTION_KEY not configured. "
                "Bank credentials will be stored unencrypted."
            )
            _encryption_warning_logged = True
        return None
    return key_str.encode("ascii")


def generate_encryption_key() -> str:
    """Generate a new Fernet key for the CREDENTIAL_ENCRYPTION_KEY env var."""
    return Fernet.generate_key().decode("ascii")


def is_encrypted(value: str | None) -> bool:
    if not value:
        return False
    return value.startswith(("enc:", "plain:"))


def encrypt_credential(value: str | None) -> str | None:
    """Encrypt a credential for storage at rest.

    Without a configured key the value is stored with a ``plain:`` prefix so
    it can be encrypted later without guessing its format.
    """
    if not value:
        return value
    if is_encrypted(value):
        return value

    encryption_key = get_encryption_key()
    if not encryption_key:
        return f"plain:{value}"

    fernet = Fernet(encryption_key)
    encrypted = fernet.encrypt(value.encode("utf-8"))
    return f"enc:{encrypted.decode('ascii')}"


def decrypt_credential(value: str | None) -> str | None:
    """Decrypt a stored credential.

    Handles encrypted (enc:), plain (plain:), and legacy (no prefix) formats.

    Raises:
        ValueError: If decryption fails
    """
    if not value:
        return value

    if value.startswith("plain:"):
        return value[6:]

    if value.startswith("enc:"):
        encryption_key = get_encryption_key()
        if not encryption_key:
            raise ValueError(
                "Encrypted credential found but CREDENTIAL_ENCRYPTION_KEY not set"
            )
        fernet = Fernet(encryption_key)
        try:
            decrypted = fernet.decrypt(value[4:].encode("ascii"))
        except InvalidToken as e:
            raise ValueError("Failed to decrypt credential: invalid token") from e
        return decrypted.decode("utf-8")

    return value

