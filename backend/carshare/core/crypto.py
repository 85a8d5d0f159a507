"""Reversible encryption for sensitive fields (license plates, phones, bank accounts)."""

from __future__ import annotations

import base64
import hashlib
import logging
import os
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .config import settings

logger = logging.getLogger(__name__)

_AES_KEY: Optional[bytes] = None
_AES_KEY_SOURCE: Optional[str] = None

_TOKEN_PREFIX = "v1:"
_NONCE_LEN = 12
_DEV_KEY_SEED = b"carshare-development-field-key"


def validate_field_encryption_key(key: str | None) -> None:
    """Raise RuntimeError when the configured encryption key is unusable."""

    if not key:
        raise RuntimeError("FIELD_ENCRYPTION_KEY must be configured when running in production.")

    try:
        decoded = base64.urlsafe_b64decode(key.encode("utf-8"))
    except ValueError as exc:
        raise RuntimeError("FIELD_ENCRYPTION_KEY is invalid (not urlsafe base64).") from exc

    if len(decoded) != 32:
        raise RuntimeError("FIELD_ENCRYPTION_KEY must decode to 32 bytes.")


def _decoded_key() -> bytes:
    """Return the AES key, deriving a fixed development key when unset."""

    global _AES_KEY, _AES_KEY_SOURCE

    key = settings.field_encryption_key
    source = key or "__dev__"
    if _AES_KEY is not None and _AES_KEY_SOURCE == source:
        return _AES_KEY

    if key:
        validate_field_encryption_key(key)
        key_bytes = base64.urlsafe_b64decode(key.encode("utf-8"))
    else:
        if settings.is_production:
            raise RuntimeError("FIELD_ENCRYPTION_KEY must be configured when running in production.")
        logger.warning("FIELD_ENCRYPTION_KEY not set; using development key")
        key_bytes = hashlib.sha256(_DEV_KEY_SEED).digest()

    _AES_KEY = key_bytes
    _AES_KEY_SOURCE = source
    return key_bytes


def _b64u_encode(data: bytes) -> str:
    """Encode bytes to urlsafe base64 without newlines."""

    return base64.urlsafe_b64encode(data).decode("utf-8")


def _b64u_decode(payload: str) -> bytes:
    """Decode urlsafe base64 string, tolerating missing padding."""

    padding_len = (-len(payload)) % 4
    padded = payload + ("=" * padding_len)
    return base64.urlsafe_b64decode(padded.encode("utf-8"))


def encrypt_field(plain: Optional[str]) -> Optional[str]:
    """Encrypt a sensitive value with AES-GCM; ``None`` and empty pass through."""

    if plain is None or plain == "":
        return plain

    cipher = AESGCM(_decoded_key())
    nonce = os.urandom(_NONCE_LEN)
    ciphertext = cipher.encrypt(nonce, plain.encode("utf-8"), associated_data=None)
    return f"{_TOKEN_PREFIX}{_b64u_encode(nonce + ciphertext)}"


def decrypt_field(token: Optional[str]) -> Optional[str]:
    """Decrypt a value produced by ``encrypt_field``.

    Values without the version prefix are returned unchanged (legacy
    plaintext rows).
    """

    if token is None or token == "":
        return token
    if not token.startswith(_TOKEN_PREFIX):
        return token

    try:
        payload = _b64u_decode(token[len(_TOKEN_PREFIX) :])
    except ValueError as exc:
        raise ValueError("Unable to decode encrypted field") from exc

    if len(payload) <= _NONCE_LEN:
        raise ValueError("Malformed encrypted field")

    nonce = payload[:_NONCE_LEN]
    ciphertext = payload[_NONCE_LEN:]
    try:
        decrypted = AESGCM(_decoded_key()).decrypt(nonce, ciphertext, associated_data=None)
    except InvalidTag as exc:
        raise ValueError("Unable to decrypt field; wrong key or tampered value") from exc
    return decrypted.decode("utf-8")
