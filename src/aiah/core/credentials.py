"""Per-user provider credentials.

Keys are checked against the provider before they are stored, kept only in
encrypted form, and reported back to their owner as a four-character hint.
``unlock_key`` is the single way to recover plaintext and is only called
by the AI orchestrator.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from pydantic import BaseModel

from aiah.ai import provider
from aiah.core import encryption
from aiah.core.errors import CredentialRejected, NotFoundError, ValidationFailed

if TYPE_CHECKING:
    from aiah.db.models import UserApiKeyRow
    from aiah.db.repository import Repository

logger = logging.getLogger(__name__)

HINT_LENGTH = 4
MIN_KEY_LENGTH = 20
MAX_KEY_LENGTH = 256


class ApiKeyInfo(BaseModel):
    """What an owner may see about a stored key."""

    id: str
    provider: str
    key_hint: str
    is_valid: bool
    created_at: datetime | None = None
    last_used_at: datetime | None = None
    last_error: str | None = None
    last_error_at: datetime | None = None


def key_hint(raw_key: str) -> str:
    return "..." + raw_key[-HINT_LENGTH:]


def check_key_format(provider_name: str, raw_key: str) -> str:
    """Light format check; returns the stripped key or raises CredentialRejected."""
    prefix = provider.KEY_PREFIXES.get(provider_name)
    if prefix is None:
        raise ValidationFailed(f"Unsupported provider: {provider_name}")
    raw_key = raw_key.strip()
    if not raw_key.startswith(prefix):
        raise CredentialRejected(f"Invalid key format: expected a key starting with {prefix}")
    if not MIN_KEY_LENGTH <= len(raw_key) <= MAX_KEY_LENGTH:
        raise CredentialRejected("Invalid key format: unexpected length")
    return raw_key


async def save_api_key(
    repo: Repository,
    user_id: str,
    provider_name: str,
    raw_key: str,
    *,
    encryption_key: str | None = None,
    timeout: float = provider.DEFAULT_TIMEOUT_SECONDS,
) -> str:
    """Validate, encrypt, and store a key, replacing any prior one.

    Returns the display hint. The raw key is never returned or logged.
    """
    if await repo.get_user(user_id) is None:
        raise NotFoundError("User not found")

    raw_key = check_key_format(provider_name, raw_key)

    try:
        await provider.validate_key(raw_key, timeout)
    except provider.KeyValidationError as e:
        raise CredentialRejected(e.reason) from e

    blob = encryption.encrypt(raw_key, encryption_key)
    hint = key_hint(raw_key)
    await repo.replace_api_key(user_id, provider_name, blob, hint)
    logger.info("api_key_saved user=%s provider=%s hint=%s", user_id, provider_name, hint)
    return hint


async def delete_api_key(repo: Repository, user_id: str, key_id: str) -> None:
    row = await repo.get_api_key(key_id)
    # Someone else's key reads as missing.
    if row is None or row.user_id != user_id:
        raise NotFoundError("API key not found")
    await repo.delete_api_key(row)
    logger.info("api_key_deleted user=%s provider=%s", user_id, row.provider)


def to_info(row: UserApiKeyRow) -> ApiKeyInfo:
    return ApiKeyInfo(
        id=row.id,
        provider=row.provider,
        key_hint=row.key_hint,
        is_valid=row.is_valid,
        created_at=row.created_at,
        last_used_at=row.last_used_at,
        last_error=row.last_error,
        last_error_at=row.last_error_at,
    )


async def list_api_keys(repo: Repository, user_id: str) -> list[ApiKeyInfo]:
    return [to_info(row) for row in await repo.get_api_keys_for_user(user_id)]


async def has_valid_key(
    repo: Repository, user_id: str, provider_name: str = provider.PROVIDER_NAME
) -> bool:
    row = await repo.get_api_key_for_user(user_id, provider_name)
    return row is not None and row.is_valid


async def mark_key_invalid(repo: Repository, key_id: str, reason: str) -> None:
    if await repo.mark_api_key_invalid(key_id, reason) is not None:
        logger.warning("api_key_invalidated key=%s reason=%s", key_id, reason)


async def mark_key_used(repo: Repository, key_id: str) -> None:
    await repo.mark_api_key_used(key_id)


async def unlock_key(
    repo: Repository,
    user_id: str,
    provider_name: str = provider.PROVIDER_NAME,
    *,
    encryption_key: str | None = None,
) -> tuple[str, str] | None:
    """Return ``(key_id, plaintext)`` for the user's valid key, or None.

    Raises encryption.DecryptionError if the stored blob does not
    authenticate and EncryptionConfigError if the server key is missing;
    the caller decides how to degrade.
    """
    row = await repo.get_api_key_for_user(user_id, provider_name)
    if row is None or not row.is_valid:
        return None
    return row.id, encryption.decrypt(row.encrypted_key, encryption_key)
