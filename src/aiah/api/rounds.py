"""Round API endpoints: hands, submissions, and judging."""

from __future__ import annotations

from fastapi import APIRouter
from pydantic import BaseModel

from aiah.api.deps import RepoDep, RuntimeDep
from aiah.core import game_loop, games

router = APIRouter(prefix="/api", tags=["rounds"])


class SubmitCardRequest(BaseModel):
    player_id: str
    card_id: str | None = None
    text: str | None = None


class SelectWinnerRequest(BaseModel):
    winner_player_id: str
    judge_player_id: str | None = None


@router.get("/players/{player_id}/hand")
async def get_hand(player_id: str, repo: RepoDep) -> dict:
    cards = await games.get_hand(repo, player_id)
    return {"data": [c.model_dump() for c in cards]}


@router.get("/rounds/{round_id}")
async def get_round(round_id: str, repo: RepoDep) -> dict:
    view = await games.get_round_view(repo, round_id)
    return {"data": view.model_dump()}


@router.get("/rounds/{round_id}/submissions")
async def list_submissions(round_id: str, repo: RepoDep) -> dict:
    submissions = await games.get_submissions(repo, round_id)
    return {"data": [s.model_dump() for s in submissions]}


@router.post("/rounds/{round_id}/submissions")
async def submit_card(round_id: str, body: SubmitCardRequest, runtime: RuntimeDep) -> dict:
    """Submit a card from hand or free text. The last expected card starts judging."""
    submission = await game_loop.submit_card(
        runtime, round_id, body.player_id, card_id=body.card_id, text=body.text
    )
    return {"data": submission.model_dump()}


@router.post("/rounds/{round_id}/judging")
async def move_to_judging(round_id: str, runtime: RuntimeDep) -> dict:
    view = await game_loop.move_to_judging(runtime, round_id)
    return {"data": view.model_dump()}


@router.post("/rounds/{round_id}/winner")
async def select_winner(round_id: str, body: SelectWinnerRequest, runtime: RuntimeDep) -> dict:
    view = await game_loop.select_winner(
        runtime, round_id, body.winner_player_id, judge_player_id=body.judge_player_id
    )
    return {"data": view.model_dump()}
