"""Game API endpoints: lobbies, seats, and starting play."""

from __future__ import annotations

from fastapi import APIRouter
from pydantic import BaseModel

from aiah.api.deps import RepoDep, RuntimeDep
from aiah.core import game_loop, games
from aiah.core.errors import NotFoundError

router = APIRouter(prefix="/api/games", tags=["games"])


class CreateGameRequest(BaseModel):
    host_id: str
    game_mode: str = "classic"
    max_players: int = 6
    points_to_win: int = 7


class JoinGameRequest(BaseModel):
    user_id: str
    game_id: str | None = None
    invite_code: str | None = None


class AddAIPlayerRequest(BaseModel):
    persona_id: str
    requester_id: str | None = None


class StartGameRequest(BaseModel):
    requester_id: str | None = None


@router.get("")
async def list_lobbies(repo: RepoDep) -> dict:
    """List games waiting for players."""
    lobbies = await games.list_lobbies(repo)
    return {"data": [lobby.model_dump() for lobby in lobbies]}


@router.post("")
async def create_game(body: CreateGameRequest, repo: RepoDep) -> dict:
    game = await games.create_game(
        repo,
        body.host_id,
        game_mode=body.game_mode,
        max_players=body.max_players,
        points_to_win=body.points_to_win,
    )
    return {"data": games.game_view(game).model_dump()}


@router.post("/join")
async def join_game(body: JoinGameRequest, repo: RepoDep) -> dict:
    """Join by game id or by invite code."""
    player = await games.join_game(
        repo, body.user_id, game_id=body.game_id, invite_code=body.invite_code
    )
    return {"data": {"player_id": player.id, "game_id": player.game_id, "seat": player.seat}}


@router.get("/invite/{code}")
async def get_game_by_invite_code(code: str, repo: RepoDep) -> dict:
    game = await games.get_game_by_invite_code(repo, code)
    if game is None:
        raise NotFoundError("No game with that invite code")
    return {"data": games.game_view(game).model_dump()}


@router.get("/{game_id}")
async def get_game_state(game_id: str, repo: RepoDep) -> dict:
    """Game, seats (hand sizes only), and the current round."""
    state = await games.get_game_state(repo, game_id)
    return {"data": state.model_dump()}


@router.post("/{game_id}/ai-players")
async def add_ai_player(game_id: str, body: AddAIPlayerRequest, repo: RepoDep) -> dict:
    player = await games.add_ai_player(
        repo, game_id, body.persona_id, requester_id=body.requester_id
    )
    return {
        "data": {
            "player_id": player.id,
            "persona_id": player.ai_persona_id,
            "seat": player.seat,
        }
    }


@router.post("/{game_id}/start")
async def start_game(game_id: str, body: StartGameRequest, runtime: RuntimeDep) -> dict:
    """Start the game; AI players begin answering in the background."""
    round_view = await game_loop.start_game(runtime, game_id, requester_id=body.requester_id)
    return {"data": round_view.model_dump()}


@router.post("/{game_id}/next-round")
async def start_next_round(game_id: str, runtime: RuntimeDep) -> dict:
    round_view = await game_loop.start_next_round(runtime, game_id)
    return {"data": round_view.model_dump()}
