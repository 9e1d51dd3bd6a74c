"""Persona endpoints: discovery and custom persona management."""

from __future__ import annotations

from fastapi import APIRouter
from pydantic import BaseModel

from aiah.api.deps import RepoDep
from aiah.core import custom_personas

router = APIRouter(prefix="/api/personas", tags=["personas"])


class CreatePersonaRequest(BaseModel):
    creator_id: str
    name: str
    personality: str
    instructions: str
    temperature: float = 0.7
    emoji: str = ""
    is_public: bool = False


class UpdatePersonaRequest(BaseModel):
    user_id: str
    name: str | None = None
    personality: str | None = None
    instructions: str | None = None
    temperature: float | None = None
    emoji: str | None = None
    is_public: bool | None = None


@router.get("")
async def list_personas(repo: RepoDep) -> dict:
    """Built-in personas plus public custom ones."""
    personas = await custom_personas.list_available_personas(repo)
    return {"data": [p.model_dump() for p in personas]}


@router.get("/mine/{user_id}")
async def list_my_personas(user_id: str, repo: RepoDep) -> dict:
    personas = await custom_personas.list_my_personas(repo, user_id)
    return {"data": [p.model_dump() for p in personas]}


@router.post("")
async def create_persona(body: CreatePersonaRequest, repo: RepoDep) -> dict:
    row = await custom_personas.create_persona(
        repo,
        body.creator_id,
        name=body.name,
        personality=body.personality,
        instructions=body.instructions,
        temperature=body.temperature,
        emoji=body.emoji,
        is_public=body.is_public,
    )
    return {"data": custom_personas.summarize_row(row).model_dump()}


@router.patch("/{persona_row_id}")
async def update_persona(persona_row_id: str, body: UpdatePersonaRequest, repo: RepoDep) -> dict:
    row = await custom_personas.update_persona(
        repo,
        persona_row_id,
        body.user_id,
        **body.model_dump(exclude={"user_id"}, exclude_none=True),
    )
    return {"data": custom_personas.summarize_row(row).model_dump()}


@router.delete("/{persona_row_id}")
async def delete_persona(persona_row_id: str, user_id: str, repo: RepoDep) -> dict:
    await custom_personas.delete_persona(repo, persona_row_id, user_id)
    return {"data": {"deleted": persona_row_id}}
