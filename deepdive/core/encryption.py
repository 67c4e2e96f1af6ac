"""Encryption utilities for provider credentials stored in the database."""

from __future__ import annotations

import base64

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from deepdive.core.config import settings


def _get_encryption_key() -> bytes:
    """Derive a Fernet key from auth_secret with PBKDF2."""
    # Salt derived from the app name so it is stable across restarts
    salt = settings.app_name.encode()[:16].ljust(16, b"\0")

    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt,
        iterations=100_000,
    )
    return base64.urlsafe_b64encode(kdf.derive(settings.auth_secret.encode()))


def _get_fernet() -> Fernet:
    return Fernet(_get_encryption_key())


def encrypt_api_key(plaintext_key: str) -> str:
    """Encrypt a provider API key for storage."""
    return _get_fernet().encrypt(plaintext_key.encode()).decode()


def decrypt_api_key(encrypted_key: str) -> str | None:
    """
    Decrypt a stored provider API key.

    Returns:
        Decrypted API key, or None if the ciphertext is invalid
    """
    try:
        return _get_fernet().decrypt(encrypted_key.encode()).decode()
    except (InvalidToken, ValueError):
        return None


def get_key_hint(api_key: str) -> str:
    """Hint like "sk-...abc1" for logs and admin listings."""
    if len(api_key) <= 8:
        return "*" * len(api_key)
    return f"{api_key[:4]}...{api_key[-4:]}"
