"""Encryption utilities for provider credentials."""

import json
from typing import Any

from cryptography.fernet import Fernet
from ledgersync.config import get_settings


def get_cipher() -> Fernet:
    """Get Fernet cipher instance using the encryption key from settings."""
    settings = get_settings()
    return Fernet(settings.encryption_key.encode())


def encrypt_token(token: str) -> str:
    """Encrypt a token (e.g., a SimpleFin access URL).

    Args:
        token: Plain text token to encrypt

    Returns:
        Encrypted token as a string
    """
    cipher = get_cipher()
    encrypted = cipher.encrypt(token.encode())
    return encrypted.decode()


def decrypt_token(encrypted_token: str) -> str:
    """Decrypt an encrypted token.

    Args:
        encrypted_token: Encrypted token string

    Returns:
        Decrypted plain text token
    """
    cipher = get_cipher()
    decrypted = cipher.decrypt(encrypted_token.encode())
    return decrypted.decode()


def encrypt_payload(payload: dict[str, Any]) -> str:
    """Encrypt a credential document.

    Empty values are dropped before serialization so that a refreshed
    payload never stores blank tokens.
    """
    cleaned = {k: v for k, v in payload.items() if v not in (None, "")}
    return encrypt_token(json.dumps(cleaned, default=str))


def decrypt_payload(encrypted_payload: str) -> dict[str, Any]:
    """Decrypt a credential document produced by encrypt_payload."""
    return json.loads(decrypt_token(encrypted_payload))
