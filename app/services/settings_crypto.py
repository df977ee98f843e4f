"""Encrypt/decrypt secrets stored in the database (webhook secrets)."""

from __future__ import annotations

import os

from cryptography.fernet import Fernet, InvalidToken

_PREFIX = "enc:"


def _key() -> bytes:
    key = os.getenv("SECRETS_ENCRYPTION_KEY")
    if not key:
        raise RuntimeError("Secrets encryption key not configured")
    return key.encode()


def _fernet() -> Fernet:
    try:
        return Fernet(_key())
    except ValueError as exc:
        raise RuntimeError("Invalid secrets encryption key") from exc


def encrypt_value(value: str) -> str:
    token = _fernet().encrypt(value.encode("utf-8")).decode("utf-8")
    return f"{_PREFIX}{token}"


def decrypt_value(value: str) -> str:
    """Decrypt an ``enc:``-prefixed value; legacy plaintext passes through."""
    if not value.startswith(_PREFIX):
        return value
    token = value[len(_PREFIX) :]
    try:
        return _fernet().decrypt(token.encode("utf-8")).decode("utf-8")
    except InvalidToken as exc:
        raise RuntimeError("Stored secret cannot be decrypted with the configured key") from exc
