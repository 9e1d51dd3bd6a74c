"""API key endpoints. Raw keys go in; only hints come back out."""

from __future__ import annotations

from fastapi import APIRouter
from pydantic import BaseModel

from aiah.ai.provider import PROVIDER_NAME
from aiah.api.deps import RepoDep, SettingsDep
from aiah.core import credentials

router = APIRouter(prefix="/api/users/{user_id}/keys", tags=["keys"])


class SaveKeyRequest(BaseModel):
    api_key: str
    provider: str = PROVIDER_NAME


@router.get("")
async def list_keys(user_id: str, repo: RepoDep) -> dict:
    keys = await credentials.list_api_keys(repo, user_id)
    return {"data": [k.model_dump() for k in keys]}


@router.post("")
async def save_key(
    user_id: str, body: SaveKeyRequest, repo: RepoDep, settings: SettingsDep
) -> dict:
    """Validate the key with the provider, then store it encrypted."""
    hint = await credentials.save_api_key(
        repo,
        user_id,
        body.provider,
        body.api_key,
        encryption_key=settings.encryption_key or None,
        timeout=settings.aiah_provider_timeout_seconds,
    )
    return {"data": {"provider": body.provider, "key_hint": hint}}


@router.delete("/{key_id}")
async def delete_key(user_id: str, key_id: str, repo: RepoDep) -> dict:
    await credentials.delete_api_key(repo, user_id, key_id)
    return {"data": {"deleted": key_id}}
