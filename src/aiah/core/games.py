"""Game lifecycle: users, lobbies, seats, dealing, and opening rounds.

These are the transactional halves of the public game operations. The game
loop wraps them with a session and schedules background work after commit.
"""

from __future__ import annotations

import logging
import random
from typing import TYPE_CHECKING

from aiah.core.credentials import has_valid_key
from aiah.core.custom_personas import ensure_seatable
from aiah.core.errors import NotFoundError, PermissionDenied, StateConflict, ValidationFailed
from aiah.models.constants import (
    HAND_SIZE,
    INVITE_CODE_ALPHABET,
    INVITE_CODE_LENGTH,
    MAX_AI_PLAYERS_PER_GAME,
    MAX_AI_PLAYERS_WITH_OWN_KEY,
    MAX_GAME_MODE_LENGTH,
    MAX_MAX_PLAYERS,
    MAX_POINTS_TO_WIN,
    MAX_USERNAME_LENGTH,
    MIN_MAX_PLAYERS,
    MIN_PLAYERS_TO_START,
    MIN_POINTS_TO_WIN,
)
from aiah.models.game import (
    Card,
    GameState,
    GameView,
    LobbySummary,
    PlayerView,
    RoundView,
    SubmissionView,
)

if TYPE_CHECKING:
    from aiah.db.models import GamePlayerRow, GameRow, RoundRow, UserRow
    from aiah.db.repository import Repository

logger = logging.getLogger(__name__)

INVITE_CODE_ATTEMPTS = 5


# --- Users ---


async def create_guest_user(repo: Repository, username: str) -> UserRow:
    username = username.strip()
    if not 1 <= len(username) <= MAX_USERNAME_LENGTH:
        raise ValidationFailed(f"Username must be 1-{MAX_USERNAME_LENGTH} characters")
    return await repo.create_user(username=username, email="")


async def _require_user(repo: Repository, user_id: str) -> UserRow:
    user = await repo.get_user(user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


async def _require_game(repo: Repository, game_id: str) -> GameRow:
    game = await repo.get_game(game_id)
    if game is None:
        raise NotFoundError("Game not found")
    return game


# --- Lobby ---


def generate_invite_code(rng: random.Random | None = None) -> str:
    rng = rng or random.SystemRandom()
    return "".join(rng.choice(INVITE_CODE_ALPHABET) for _ in range(INVITE_CODE_LENGTH))


def normalize_invite_code(code: str) -> str:
    code = code.strip().upper()
    if len(code) != INVITE_CODE_LENGTH or any(c not in INVITE_CODE_ALPHABET for c in code):
        raise ValidationFailed("Invalid invite code")
    return code


async def _unused_invite_code(repo: Repository, rng: random.Random | None) -> str:
    code = generate_invite_code(rng)
    for _ in range(INVITE_CODE_ATTEMPTS - 1):
        if not await repo.invite_code_in_use(code):
            break
        code = generate_invite_code(rng)
    # Codes are collision-tolerant: lookups prefer the open lobby.
    return code


async def create_game(
    repo: Repository,
    host_id: str,
    *,
    game_mode: str = "classic",
    max_players: int = 6,
    points_to_win: int = 7,
    rng: random.Random | None = None,
) -> GameRow:
    """Create a lobby and seat the host at seat 0."""
    await _require_user(repo, host_id)

    game_mode = game_mode.strip()
    if not 1 <= len(game_mode) <= MAX_GAME_MODE_LENGTH:
        raise ValidationFailed(f"Game mode must be 1-{MAX_GAME_MODE_LENGTH} characters")
    if not MIN_MAX_PLAYERS <= max_players <= MAX_MAX_PLAYERS:
        raise ValidationFailed(
            f"Max players must be between {MIN_MAX_PLAYERS} and {MAX_MAX_PLAYERS}"
        )
    if not MIN_POINTS_TO_WIN <= points_to_win <= MAX_POINTS_TO_WIN:
        raise ValidationFailed(
            f"Points to win must be between {MIN_POINTS_TO_WIN} and {MAX_POINTS_TO_WIN}"
        )

    game = await repo.create_game(
        host_id=host_id,
        game_mode=game_mode,
        max_players=max_players,
        points_to_win=points_to_win,
        invite_code=await _unused_invite_code(repo, rng),
    )
    await repo.add_player(game.id, seat=0, user_id=host_id)
    logger.info("game_created game=%s host=%s code=%s", game.id, host_id, game.invite_code)
    return game


async def get_game_by_invite_code(repo: Repository, code: str) -> GameRow | None:
    """Resolve an invite code, preferring an open lobby over older games."""
    games = await repo.get_games_by_invite_code(normalize_invite_code(code))
    return games[0] if games else None


async def _open_seat(repo: Repository, game: GameRow) -> int:
    if game.status != "lobby":
        raise StateConflict("Game has already started")
    players = await repo.get_players(game.id)
    if len(players) >= game.max_players:
        raise StateConflict("Game is full")
    return max((p.seat for p in players), default=-1) + 1


async def join_game(
    repo: Repository,
    user_id: str,
    *,
    game_id: str | None = None,
    invite_code: str | None = None,
) -> GamePlayerRow:
    """Seat a human player, by game id or invite code."""
    await _require_user(repo, user_id)
    if game_id is not None:
        game = await _require_game(repo, game_id)
    elif invite_code is not None:
        game = await get_game_by_invite_code(repo, invite_code)
        if game is None:
            raise NotFoundError("No game with that invite code")
    else:
        raise ValidationFailed("A game id or invite code is required")

    if await repo.get_player_for_user(game.id, user_id) is not None:
        raise StateConflict("Already in this game")

    seat = await _open_seat(repo, game)
    player = await repo.add_player(game.id, seat=seat, user_id=user_id)
    logger.info("player_joined game=%s user=%s seat=%d", game.id, user_id, seat)
    return player


async def ai_player_cap(repo: Repository, game: GameRow) -> int:
    if await has_valid_key(repo, game.host_id):
        return MAX_AI_PLAYERS_WITH_OWN_KEY
    return MAX_AI_PLAYERS_PER_GAME


async def add_ai_player(
    repo: Repository,
    game_id: str,
    persona_id: str,
    *,
    requester_id: str | None = None,
) -> GamePlayerRow:
    """Seat an AI player. Only the host may add one when a requester is given."""
    game = await _require_game(repo, game_id)
    if requester_id is not None and requester_id != game.host_id:
        raise PermissionDenied("Only the host can add AI players")

    await ensure_seatable(repo, persona_id, game.host_id)

    seat = await _open_seat(repo, game)
    players = await repo.get_players(game.id)
    cap = await ai_player_cap(repo, game)
    if sum(1 for p in players if p.is_ai) >= cap:
        raise ValidationFailed(f"Maximum of {cap} AI players for this game")

    player = await repo.add_player(game.id, seat=seat, ai_persona_id=persona_id.strip())
    logger.info("ai_player_added game=%s persona=%s seat=%d", game.id, persona_id, seat)
    return player


async def list_lobbies(repo: Repository) -> list[LobbySummary]:
    lobbies = []
    for game in await repo.get_games_by_status("lobby"):
        players = await repo.get_players(game.id)
        lobbies.append(LobbySummary(game=game_view(game), player_count=len(players)))
    return lobbies


# --- Dealing and rounds ---


async def _pick_prompt(repo: Repository, game_id: str, rng: random.Random) -> str:
    prompts = await repo.get_cards_by_type("prompt")
    if not prompts:
        raise StateConflict("No prompt cards available")
    used = {r.prompt_card_id for r in await repo.get_rounds(game_id)}
    fresh = [c for c in prompts if c.id not in used]
    return rng.choice(fresh or prompts).id


async def _deal_hands(
    repo: Repository, players: list[GamePlayerRow], judge_id: str, rng: random.Random
) -> None:
    """Top up every non-judge hand to HAND_SIZE from cards nobody holds."""
    held = {card_id for p in players for card_id in (p.hand or [])}
    deck = [c.id for c in await repo.get_cards_by_type("response") if c.id not in held]
    rng.shuffle(deck)

    for player in players:
        if player.id == judge_id:
            continue
        hand = list(player.hand or [])
        while len(hand) < HAND_SIZE and deck:
            hand.append(deck.pop())
        if len(hand) < HAND_SIZE:
            logger.warning("deck_exhausted game=%s player=%s", player.game_id, player.id)
        await repo.set_hand(player, hand)


async def _open_round(
    repo: Repository,
    game: GameRow,
    players: list[GamePlayerRow],
    judge: GamePlayerRow,
    rng: random.Random,
) -> RoundRow:
    for player in players:
        if player.is_judge != (player.id == judge.id):
            await repo.update_player(player, is_judge=player.id == judge.id)

    await _deal_hands(repo, players, judge.id, rng)
    round_number = game.current_round + 1
    round_row = await repo.create_round(
        game_id=game.id,
        round_number=round_number,
        prompt_card_id=await _pick_prompt(repo, game.id, rng),
        judge_player_id=judge.id,
    )
    await repo.update_game(game, current_round=round_number)
    logger.info(
        "round_opened game=%s number=%d judge=%s", game.id, round_number, judge.id
    )
    return round_row


async def start_game(
    repo: Repository,
    game_id: str,
    *,
    requester_id: str | None = None,
    rng: random.Random | None = None,
) -> RoundRow:
    """Move a lobby to playing: first seat judges, hands are dealt, round 1 opens."""
    rng = rng or random.Random()
    game = await _require_game(repo, game_id)
    if requester_id is not None and requester_id != game.host_id:
        raise PermissionDenied("Only the host can start the game")
    if game.status != "lobby":
        raise StateConflict("Game has already started")

    players = await repo.get_players(game.id)
    if len(players) < MIN_PLAYERS_TO_START:
        raise StateConflict(f"Need at least {MIN_PLAYERS_TO_START} players to start")

    await repo.update_game(game, status="playing")
    return await _open_round(repo, game, players, players[0], rng)


async def start_next_round(
    repo: Repository,
    game_id: str,
    *,
    rng: random.Random | None = None,
) -> RoundRow:
    """Rotate the judge by seat and open the next round."""
    rng = rng or random.Random()
    game = await _require_game(repo, game_id)
    if game.status != "playing":
        raise StateConflict(f"Game is {game.status}, not playing")

    current = await repo.get_round_by_number(game.id, game.current_round)
    if current is not None:
        if current.status == "submitting":
            raise StateConflict("Current round is still collecting submissions")
        if current.status == "judging" and await repo.count_submissions(current.id) > 0:
            raise StateConflict("Current round is waiting for the judge")

    players = await repo.get_players(game.id)
    judge_seat = next(
        (i for i, p in enumerate(players) if current is not None and p.id == current.judge_player_id),
        -1,
    )
    judge = players[(judge_seat + 1) % len(players)]
    return await _open_round(repo, game, players, judge, rng)


# --- Read-only views ---


def game_view(game: GameRow) -> GameView:
    return GameView(
        id=game.id,
        status=game.status,
        game_mode=game.game_mode,
        max_players=game.max_players,
        points_to_win=game.points_to_win,
        current_round=game.current_round,
        host_id=game.host_id,
        invite_code=game.invite_code,
    )


async def _player_view(repo: Repository, player: GamePlayerRow) -> PlayerView:
    username = None
    if player.user_id is not None:
        user = await repo.get_user(player.user_id)
        username = user.username if user is not None else None
    return PlayerView(
        id=player.id,
        game_id=player.game_id,
        user_id=player.user_id,
        username=username,
        ai_persona_id=player.ai_persona_id,
        is_ai=player.is_ai,
        score=player.score,
        is_judge=player.is_judge,
        seat=player.seat,
        hand_size=len(player.hand or []),
    )


async def _card(repo: Repository, card_id: str) -> Card | None:
    card = await repo.get_card(card_id)
    if card is None:
        return None
    return Card(id=card.id, type=card.type, text=card.text)


async def round_view(repo: Repository, round_row: RoundRow) -> RoundView:
    return RoundView(
        id=round_row.id,
        game_id=round_row.game_id,
        round_number=round_row.round_number,
        prompt=await _card(repo, round_row.prompt_card_id),
        judge_player_id=round_row.judge_player_id,
        winner_player_id=round_row.winner_player_id,
        status=round_row.status,
    )


async def get_round_view(repo: Repository, round_id: str) -> RoundView:
    round_row = await repo.get_round(round_id)
    if round_row is None:
        raise NotFoundError("Round not found")
    return await round_view(repo, round_row)


async def get_game_state(repo: Repository, game_id: str) -> GameState:
    game = await _require_game(repo, game_id)
    players = [await _player_view(repo, p) for p in await repo.get_players(game.id)]
    current = await repo.get_round_by_number(game.id, game.current_round)
    return GameState(
        game=game_view(game),
        players=players,
        current_round=await round_view(repo, current) if current is not None else None,
    )


async def get_submissions(repo: Repository, round_id: str) -> list[SubmissionView]:
    if await repo.get_round(round_id) is None:
        raise NotFoundError("Round not found")
    views = []
    for sub in await repo.get_submissions(round_id):
        if sub.card_id is not None:
            card = await repo.get_card(sub.card_id)
            text = card.text if card is not None else None
        else:
            text = sub.ai_generated_text
        views.append(
            SubmissionView(
                id=sub.id,
                round_id=sub.round_id,
                player_id=sub.player_id,
                card_id=sub.card_id,
                text=text,
                is_ai_generated=sub.card_id is None,
            )
        )
    return views


async def get_hand(repo: Repository, player_id: str) -> list[Card]:
    player = await repo.get_player(player_id)
    if player is None:
        raise NotFoundError("Player not found")
    cards = [await _card(repo, card_id) for card_id in player.hand or []]
    return [c for c in cards if c is not None]
