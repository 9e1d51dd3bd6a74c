"""Round state machine: submitting -> judging -> complete.

Every function here runs inside the caller's transaction and touches only
the repository. Scheduling follow-up work (AI judging, timeouts) is the
game loop's job, after commit.

Two submission paths share the same storage rule, one row per
(round, player):

- ``submit_card`` is the human path and rejects a second submission.
- ``submit_ai_card`` is the orchestrator path and treats a second
  submission, or a round that already moved on, as already done.
"""

from __future__ import annotations

import logging
import random
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from aiah.core.errors import (
    DuplicateSubmission,
    NotFoundError,
    PermissionDenied,
    StateConflict,
    ValidationFailed,
)
from aiah.models.game import GAME_TRANSITIONS, ROUND_TRANSITIONS

if TYPE_CHECKING:
    from aiah.db.models import GamePlayerRow, GameRow, RoundRow, SubmissionRow
    from aiah.db.repository import Repository

logger = logging.getLogger(__name__)


def _check_round_transition(round_row: RoundRow, target: str) -> None:
    if target not in ROUND_TRANSITIONS[round_row.status]:
        raise StateConflict(f"Round is {round_row.status}, cannot move to {target}")


def _check_game_transition(game: GameRow, target: str) -> None:
    if target not in GAME_TRANSITIONS[game.status]:
        raise StateConflict(f"Game is {game.status}, cannot move to {target}")


async def _require_round(repo: Repository, round_id: str) -> RoundRow:
    round_row = await repo.get_round(round_id)
    if round_row is None:
        raise NotFoundError("Round not found")
    return round_row


async def _require_player(repo: Repository, round_row: RoundRow, player_id: str) -> GamePlayerRow:
    player = await repo.get_player(player_id)
    if player is None or player.game_id != round_row.game_id:
        raise NotFoundError("Player not found in this game")
    return player


async def submit_card(
    repo: Repository,
    round_id: str,
    player_id: str,
    *,
    card_id: str | None = None,
    text: str | None = None,
) -> SubmissionRow:
    """Human submission. Errors on every rule violation, including a repeat."""
    if (card_id is None) == (text is None):
        raise ValidationFailed("Submit exactly one of a card or free text")
    if text is not None and not text.strip():
        raise ValidationFailed("Submission text is empty")

    round_row = await _require_round(repo, round_id)
    if round_row.status != "submitting":
        raise StateConflict("Round is not accepting submissions")

    player = await _require_player(repo, round_row, player_id)
    if player.id == round_row.judge_player_id:
        raise StateConflict("The judge cannot submit in their own round")

    if await repo.get_submission_for_player(round_id, player_id) is not None:
        raise DuplicateSubmission("Already submitted")

    if card_id is not None:
        hand = list(player.hand or [])
        if card_id not in hand:
            raise ValidationFailed("Card is not in your hand")
        submission = await repo.create_submission(round_id, player_id, card_id=card_id)
        hand.remove(card_id)
        await repo.set_hand(player, hand)
    else:
        submission = await repo.create_submission(
            round_id, player_id, ai_generated_text=text.strip()  # type: ignore[union-attr]
        )

    logger.info("card_submitted round=%s player=%s", round_id, player_id)
    return submission


async def submit_ai_card(repo: Repository, round_id: str, player_id: str, text: str) -> bool:
    """Orchestrator submission. Returns False when dropped as already done."""
    round_row = await repo.get_round(round_id)
    if round_row is None or round_row.status != "submitting":
        logger.info("ai_submission_dropped round=%s player=%s reason=closed", round_id, player_id)
        return False
    if await repo.get_submission_for_player(round_id, player_id) is not None:
        return False
    try:
        await repo.create_submission(round_id, player_id, ai_generated_text=text)
    except DuplicateSubmission:
        # Lost a race with a concurrent run for the same player.
        return False
    return True


async def count_expected_submissions(repo: Repository, round_row: RoundRow) -> int:
    players = await repo.get_players(round_row.game_id)
    return sum(1 for p in players if p.id != round_row.judge_player_id)


async def _enter_judging(repo: Repository, round_row: RoundRow) -> None:
    _check_round_transition(round_row, "judging")
    await repo.update_round(round_row, status="judging", judging_started_at=datetime.now(UTC))
    logger.info("round_judging round=%s number=%d", round_row.id, round_row.round_number)


async def advance_if_complete(repo: Repository, round_id: str) -> bool:
    """Move to judging once every non-judge player has submitted.

    Returns True only when this call made the transition.
    """
    round_row = await repo.get_round(round_id)
    if round_row is None or round_row.status != "submitting":
        return False
    submitted = await repo.count_submissions(round_id)
    if submitted < await count_expected_submissions(repo, round_row):
        return False
    await _enter_judging(repo, round_row)
    return True


async def move_to_judging(repo: Repository, round_id: str) -> RoundRow:
    """Explicit transition, regardless of missing submissions."""
    round_row = await _require_round(repo, round_id)
    await _enter_judging(repo, round_row)
    return round_row


async def _finish_game(repo: Repository, game: GameRow, winner: GamePlayerRow) -> None:
    _check_game_transition(game, "finished")
    await repo.update_game(game, status="finished", finished_at=datetime.now(UTC))

    for player in await repo.get_players(game.id):
        if player.user_id is None:
            continue
        user = await repo.get_user(player.user_id)
        if user is None:
            continue
        user.games_played += 1
        if player.id == winner.id:
            user.games_won += 1
    await repo.session.flush()
    logger.info("game_finished game=%s winner=%s score=%d", game.id, winner.id, winner.score)


async def select_winner(
    repo: Repository,
    round_id: str,
    winner_player_id: str,
    *,
    judge_player_id: str | None = None,
) -> RoundRow:
    """Complete a judging round, score the winner, and finish the game at the threshold.

    When *judge_player_id* is given it must be the round's judge; background
    tasks pass None.
    """
    round_row = await _require_round(repo, round_id)
    if judge_player_id is not None and judge_player_id != round_row.judge_player_id:
        raise PermissionDenied("Only this round's judge can pick the winner")
    if round_row.status != "judging":
        raise StateConflict(f"Round is {round_row.status}, not judging")

    if await repo.get_submission_for_player(round_id, winner_player_id) is None:
        raise ValidationFailed("Winner must have a submission in this round")

    winner = await _require_player(repo, round_row, winner_player_id)
    game = await repo.get_game(round_row.game_id)
    if game is None:
        raise NotFoundError("Game not found")

    _check_round_transition(round_row, "complete")
    await repo.update_round(
        round_row,
        status="complete",
        winner_player_id=winner.id,
        completed_at=datetime.now(UTC),
    )
    await repo.update_player(winner, score=winner.score + 1)
    logger.info(
        "round_complete round=%s winner=%s score=%d", round_row.id, winner.id, winner.score
    )

    if winner.score >= game.points_to_win and game.status == "playing":
        await _finish_game(repo, game, winner)
    return round_row


async def expire_submissions(repo: Repository, round_id: str) -> bool:
    """Submit timeout: force judging if the round is still collecting cards.

    Returns True if the round moved. No-op on any other status.
    """
    round_row = await repo.get_round(round_id)
    if round_row is None or round_row.status != "submitting":
        return False
    await _enter_judging(repo, round_row)
    logger.warning("submit_timeout round=%s", round_id)
    return True


async def expire_judging(
    repo: Repository, round_id: str, rng: random.Random | None = None
) -> RoundRow | None:
    """Judge timeout: pick a uniformly random submission as the winner.

    Returns the completed round, or None if there was nothing to do. A
    round that reached judging with no submissions stays where it is.
    """
    round_row = await repo.get_round(round_id)
    if round_row is None or round_row.status != "judging":
        return None
    submissions = await repo.get_submissions(round_id)
    if not submissions:
        logger.warning("judge_timeout_no_submissions round=%s", round_id)
        return None
    chosen = (rng or random).choice(submissions)
    logger.warning("judge_timeout round=%s random_winner=%s", round_id, chosen.player_id)
    return await select_winner(repo, round_id, chosen.player_id)
