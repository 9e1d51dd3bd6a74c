"""Authenticated encryption for stored provider credentials.

AES-256-GCM with a fresh 96-bit nonce per call and a 128-bit tag. The
encoded blob is ``base64(nonce || tag || ciphertext)``. Decryption fails
loudly on a wrong key, any altered byte, or a truncated blob; it never
returns corrupted plaintext.

The key is a hex-encoded 32-byte value supplied out-of-band via the
``ENCRYPTION_KEY`` environment variable (or passed explicitly).
"""

from __future__ import annotations

import base64
import binascii
import os
import secrets

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

KEY_ENV_VAR = "ENCRYPTION_KEY"
KEY_LENGTH = 32
NONCE_LENGTH = 12
TAG_LENGTH = 16
MIN_BLOB_LENGTH = NONCE_LENGTH + TAG_LENGTH


class EncryptionError(Exception):
    """Base class for encryption failures."""


class EncryptionConfigError(EncryptionError):
    """The encryption key is missing or malformed."""


class DecryptionError(EncryptionError):
    """The blob could not be authenticated or decoded."""


def _load_key(key: str | None) -> bytes:
    hex_key = key or os.environ.get(KEY_ENV_VAR, "")
    if not hex_key:
        msg = (
            f"{KEY_ENV_VAR} environment variable is required. "
            "Set it to a hex-encoded 32-byte value."
        )
        raise EncryptionConfigError(msg)
    try:
        raw = bytes.fromhex(hex_key)
    except ValueError as e:
        raise EncryptionConfigError(f"{KEY_ENV_VAR} is not valid hex") from e
    if len(raw) != KEY_LENGTH:
        msg = f"{KEY_ENV_VAR} must decode to {KEY_LENGTH} bytes, got {len(raw)}"
        raise EncryptionConfigError(msg)
    return raw


def encrypt(plaintext: str, key: str | None = None) -> str:
    """Encrypt *plaintext*, returning a base64 blob of nonce, tag, and ciphertext."""
    aead = AESGCM(_load_key(key))
    nonce = secrets.token_bytes(NONCE_LENGTH)
    # AESGCM appends the tag to the ciphertext; repack as nonce || tag || ciphertext.
    sealed = aead.encrypt(nonce, plaintext.encode("utf-8"), None)
    ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
    return base64.b64encode(nonce + tag + ciphertext).decode("ascii")


def decrypt(blob: str, key: str | None = None) -> str:
    """Decrypt a blob produced by :func:`encrypt`.

    Raises DecryptionError if the blob is malformed, truncated, tampered
    with, or was sealed under a different key.
    """
    aead = AESGCM(_load_key(key))
    try:
        packed = base64.b64decode(blob, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecryptionError("Encrypted value is not valid base64") from e

    if len(packed) < MIN_BLOB_LENGTH:
        raise DecryptionError(
            f"Encrypted value is truncated ({len(packed)} bytes, need at least {MIN_BLOB_LENGTH})"
        )

    nonce = packed[:NONCE_LENGTH]
    tag = packed[NONCE_LENGTH:MIN_BLOB_LENGTH]
    ciphertext = packed[MIN_BLOB_LENGTH:]
    try:
        plaintext = aead.decrypt(nonce, ciphertext + tag, None)
    except InvalidTag as e:
        raise DecryptionError("Encrypted value failed authentication") from e

    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as e:
        raise DecryptionError("Decrypted value is not valid UTF-8") from e


def generate_key() -> str:
    """Return a fresh hex-encoded key suitable for ``ENCRYPTION_KEY``."""
    return secrets.token_hex(KEY_LENGTH)
