"""User API endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter
from pydantic import BaseModel

from aiah.api.deps import RepoDep
from aiah.core.errors import NotFoundError
from aiah.core.games import create_guest_user

if TYPE_CHECKING:
    from aiah.db.models import UserRow

router = APIRouter(prefix="/api/users", tags=["users"])


class CreateUserRequest(BaseModel):
    username: str


def _user_data(user: UserRow) -> dict:
    return {
        "id": user.id,
        "username": user.username,
        "games_played": user.games_played,
        "games_won": user.games_won,
    }


@router.post("")
async def create_user(body: CreateUserRequest, repo: RepoDep) -> dict:
    """Create a guest user."""
    user = await create_guest_user(repo, body.username)
    return {"data": _user_data(user)}


@router.get("/{user_id}")
async def get_user(user_id: str, repo: RepoDep) -> dict:
    user = await repo.get_user(user_id)
    if user is None:
        raise NotFoundError("User not found")
    return {"data": _user_data(user)}
