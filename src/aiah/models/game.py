"""Game, round, and submission models exposed across the API boundary.

Rows live in ``aiah.db.models``; these are the read-only views the
lifecycle layer hands to callers.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

GameStatus = Literal["lobby", "playing", "finished"]
RoundStatus = Literal["submitting", "judging", "complete"]
CardType = Literal["prompt", "response"]

# Rounds only ever move forward.
ROUND_TRANSITIONS: dict[str, frozenset[str]] = {
    "submitting": frozenset({"judging"}),
    "judging": frozenset({"complete"}),
    "complete": frozenset(),
}

GAME_TRANSITIONS: dict[str, frozenset[str]] = {
    "lobby": frozenset({"playing"}),
    "playing": frozenset({"finished"}),
    "finished": frozenset(),
}


class Card(BaseModel):
    id: str
    type: CardType
    text: str


class PlayerView(BaseModel):
    """A seat at the table. Hands are private and reported only as a count."""

    id: str
    game_id: str
    user_id: str | None = None
    username: str | None = None
    ai_persona_id: str | None = None
    is_ai: bool = False
    score: int = Field(default=0, ge=0)
    is_judge: bool = False
    seat: int = 0
    hand_size: int = 0


class GameView(BaseModel):
    id: str
    status: GameStatus
    game_mode: str
    max_players: int
    points_to_win: int
    current_round: int
    host_id: str
    invite_code: str


class RoundView(BaseModel):
    id: str
    game_id: str
    round_number: int
    prompt: Card | None = None
    judge_player_id: str
    winner_player_id: str | None = None
    status: RoundStatus


class SubmissionView(BaseModel):
    id: str
    round_id: str
    player_id: str
    card_id: str | None = None
    text: str | None = None
    is_ai_generated: bool = False


class GameState(BaseModel):
    """Everything a client needs to render the table."""

    game: GameView
    players: list[PlayerView] = Field(default_factory=list)
    current_round: RoundView | None = None


class LobbySummary(BaseModel):
    game: GameView
    player_count: int
