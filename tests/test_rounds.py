"""Tests for the round state machine."""

from __future__ import annotations

import random
from typing import Any
from unittest.mock import AsyncMock, patch

import pytest
from conftest import build_lobby

from aiah.core import games, rounds
from aiah.core.errors import (
    DuplicateSubmission,
    NotFoundError,
    PermissionDenied,
    StateConflict,
    ValidationFailed,
)
from aiah.db.models import RoundRow
from aiah.db.repository import Repository


async def _started(repo: Repository, **kwargs: Any) -> tuple[dict[str, Any], RoundRow]:
    info = await build_lobby(repo, **kwargs)
    round_row = await games.start_game(repo, info["game_id"], rng=random.Random(0))
    return info, round_row


async def _play_card(repo: Repository, round_row: RoundRow, player_id: str) -> None:
    player = await repo.get_player(player_id)
    assert player is not None
    await rounds.submit_card(repo, round_row.id, player_id, card_id=player.hand[0])


async def _submit_all(repo: Repository, info: dict[str, Any], round_row: RoundRow) -> None:
    for player_id in info["player_ids"]:
        if player_id != round_row.judge_player_id:
            await _play_card(repo, round_row, player_id)


class TestSubmitCard:
    async def test_card_leaves_hand(self, repo: Repository) -> None:
        info, round_row = await _started(repo)
        player = await repo.get_player(info["player_ids"][1])
        card_id = player.hand[0]
        submission = await rounds.submit_card(repo, round_row.id, player.id, card_id=card_id)
        assert submission.card_id == card_id
        assert card_id not in player.hand
        assert len(player.hand) == 6

    async def test_free_text(self, repo: Repository) -> None:
        info, round_row = await _started(repo)
        submission = await rounds.submit_card(
            repo, round_row.id, info["player_ids"][1], text="  A custom answer  "
        )
        assert submission.ai_generated_text == "A custom answer"

    async def test_judge_cannot_submit(self, repo: Repository) -> None:
        _, round_row = await _started(repo)
        with pytest.raises(StateConflict, match="judge"):
            await rounds.submit_card(repo, round_row.id, round_row.judge_player_id, text="me!")

    async def test_card_must_be_in_hand(self, repo: Repository) -> None:
        info, round_row = await _started(repo)
        with pytest.raises(ValidationFailed, match="hand"):
            await rounds.submit_card(repo, round_row.id, info["player_ids"][1], card_id="nope")

    @pytest.mark.parametrize("payload", [{}, {"card_id": "c", "text": "t"}])
    async def test_exactly_one_payload(self, repo: Repository, payload: dict) -> None:
        info, round_row = await _started(repo)
        with pytest.raises(ValidationFailed):
            await rounds.submit_card(repo, round_row.id, info["player_ids"][1], **payload)

    async def test_human_double_submission_errors(self, repo: Repository) -> None:
        info, round_row = await _started(repo, humans=3)
        await _play_card(repo, round_row, info["player_ids"][1])
        with pytest.raises(DuplicateSubmission):
            await _play_card(repo, round_row, info["player_ids"][1])
        assert await repo.count_submissions(round_row.id) == 1

    async def test_concurrent_repeat_errors_and_keeps_hand(self, repo: Repository) -> None:
        info, round_row = await _started(repo, humans=3)
        player_id = info["player_ids"][1]
        await _play_card(repo, round_row, player_id)
        hand = list((await repo.get_player(player_id)).hand)

        # The pre-check misses the row a concurrent request already inserted.
        with patch.object(Repository, "get_submission_for_player", AsyncMock(return_value=None)):
            with pytest.raises(DuplicateSubmission):
                await _play_card(repo, round_row, player_id)

        assert (await repo.get_player(player_id)).hand == hand
        assert await repo.count_submissions(round_row.id) == 1

    async def test_rejected_when_not_submitting(self, repo: Repository) -> None:
        info, round_row = await _started(repo, humans=3)
        await rounds.move_to_judging(repo, round_row.id)
        with pytest.raises(StateConflict):
            await _play_card(repo, round_row, info["player_ids"][1])

    async def test_player_from_another_game(self, repo: Repository) -> None:
        _, round_row = await _started(repo)
        with pytest.raises(NotFoundError):
            await rounds.submit_card(repo, round_row.id, "stranger", text="hi")


class TestSubmitAICard:
    async def test_idempotent(self, repo: Repository) -> None:
        info, round_row = await _started(repo, humans=1, ai_personas=("chaotic-carl",))
        ai_player = info["player_ids"][1]
        assert await rounds.submit_ai_card(repo, round_row.id, ai_player, "first") is True
        assert await rounds.submit_ai_card(repo, round_row.id, ai_player, "second") is False
        submissions = await repo.get_submissions(round_row.id)
        assert [s.ai_generated_text for s in submissions] == ["first"]

    async def test_concurrent_repeat_is_dropped(self, repo: Repository) -> None:
        info, round_row = await _started(repo, humans=1, ai_personas=("chaotic-carl",))
        ai_player = info["player_ids"][1]
        await rounds.submit_ai_card(repo, round_row.id, ai_player, "first")

        with patch.object(Repository, "get_submission_for_player", AsyncMock(return_value=None)):
            assert await rounds.submit_ai_card(repo, round_row.id, ai_player, "second") is False

        # The transaction survives the refused insert and can still commit.
        await repo.session.commit()
        submissions = await repo.get_submissions(round_row.id)
        assert [s.ai_generated_text for s in submissions] == ["first"]

    async def test_dropped_after_round_moves_on(self, repo: Repository) -> None:
        info, round_row = await _started(repo, humans=2, ai_personas=("chaotic-carl",))
        await rounds.move_to_judging(repo, round_row.id)
        assert await rounds.submit_ai_card(repo, round_row.id, info["player_ids"][2], "late") is False
        assert await repo.count_submissions(round_row.id) == 0

    async def test_missing_round(self, repo: Repository) -> None:
        assert await rounds.submit_ai_card(repo, "no-round", "no-player", "text") is False


class TestAdvance:
    async def test_waits_for_every_non_judge(self, repo: Repository) -> None:
        info, round_row = await _started(repo, humans=5)
        non_judges = [p for p in info["player_ids"] if p != round_row.judge_player_id]
        assert len(non_judges) == 4
        for player_id in non_judges[:-1]:
            await _play_card(repo, round_row, player_id)
            assert await rounds.advance_if_complete(repo, round_row.id) is False
            assert round_row.status == "submitting"
        await _play_card(repo, round_row, non_judges[-1])
        assert await rounds.advance_if_complete(repo, round_row.id) is True
        assert round_row.status == "judging"
        assert round_row.judging_started_at is not None

    async def test_second_advance_is_noop(self, repo: Repository) -> None:
        info, round_row = await _started(repo)
        await _submit_all(repo, info, round_row)
        assert await rounds.advance_if_complete(repo, round_row.id) is True
        assert await rounds.advance_if_complete(repo, round_row.id) is False

    async def test_move_to_judging_only_from_submitting(self, repo: Repository) -> None:
        _, round_row = await _started(repo)
        await rounds.move_to_judging(repo, round_row.id)
        with pytest.raises(StateConflict):
            await rounds.move_to_judging(repo, round_row.id)


class TestSelectWinner:
    async def test_completes_round_and_scores(self, repo: Repository) -> None:
        info, round_row = await _started(repo, humans=3)
        await _submit_all(repo, info, round_row)
        await rounds.advance_if_complete(repo, round_row.id)
        winner_id = info["player_ids"][2]
        await rounds.select_winner(
            repo, round_row.id, winner_id, judge_player_id=round_row.judge_player_id
        )
        assert round_row.status == "complete"
        assert round_row.winner_player_id == winner_id
        assert round_row.completed_at is not None
        assert (await repo.get_player(winner_id)).score == 1

    async def test_only_while_judging(self, repo: Repository) -> None:
        info, round_row = await _started(repo, humans=3)
        await _play_card(repo, round_row, info["player_ids"][1])
        with pytest.raises(StateConflict):
            await rounds.select_winner(repo, round_row.id, info["player_ids"][1])
        assert round_row.winner_player_id is None

    async def test_only_the_judge(self, repo: Repository) -> None:
        info, round_row = await _started(repo, humans=3)
        await _submit_all(repo, info, round_row)
        await rounds.advance_if_complete(repo, round_row.id)
        with pytest.raises(PermissionDenied):
            await rounds.select_winner(
                repo, round_row.id, info["player_ids"][1], judge_player_id=info["player_ids"][2]
            )

    async def test_winner_needs_a_submission(self, repo: Repository) -> None:
        info, round_row = await _started(repo, humans=3)
        await _play_card(repo, round_row, info["player_ids"][1])
        await rounds.move_to_judging(repo, round_row.id)
        with pytest.raises(ValidationFailed):
            await rounds.select_winner(repo, round_row.id, info["player_ids"][2])

    async def test_complete_is_final(self, repo: Repository) -> None:
        info, round_row = await _started(repo)
        await _submit_all(repo, info, round_row)
        await rounds.advance_if_complete(repo, round_row.id)
        await rounds.select_winner(repo, round_row.id, info["player_ids"][1])
        with pytest.raises(StateConflict):
            await rounds.move_to_judging(repo, round_row.id)
        with pytest.raises(StateConflict):
            await rounds.select_winner(repo, round_row.id, info["player_ids"][1])
        assert await rounds.advance_if_complete(repo, round_row.id) is False
        assert round_row.status == "complete"


class TestScoringThreshold:
    async def test_below_threshold_keeps_playing(self, repo: Repository) -> None:
        info, round_row = await _started(repo, points_to_win=2)
        await _submit_all(repo, info, round_row)
        await rounds.advance_if_complete(repo, round_row.id)
        await rounds.select_winner(repo, round_row.id, info["player_ids"][1])
        game = await repo.get_game(info["game_id"])
        assert game.status == "playing"
        assert game.finished_at is None

    async def test_reaching_threshold_finishes_game(self, repo: Repository) -> None:
        info, round_row = await _started(repo, points_to_win=1)
        await _submit_all(repo, info, round_row)
        await rounds.advance_if_complete(repo, round_row.id)
        winner_id = info["player_ids"][1]
        await rounds.select_winner(repo, round_row.id, winner_id)

        game = await repo.get_game(info["game_id"])
        assert game.status == "finished"
        assert game.finished_at is not None

        host = await repo.get_user(info["user_ids"][0])
        winner_user = await repo.get_user(info["user_ids"][1])
        assert (host.games_played, host.games_won) == (1, 0)
        assert (winner_user.games_played, winner_user.games_won) == (1, 1)


class TestTimeouts:
    async def test_expire_submissions_forces_judging(self, repo: Repository) -> None:
        info, round_row = await _started(repo, humans=3)
        await _play_card(repo, round_row, info["player_ids"][1])
        assert await rounds.expire_submissions(repo, round_row.id) is True
        assert round_row.status == "judging"
        assert await rounds.expire_submissions(repo, round_row.id) is False

    async def test_expire_judging_picks_a_submitter(self, repo: Repository) -> None:
        info, round_row = await _started(repo, humans=4)
        await _submit_all(repo, info, round_row)
        await rounds.advance_if_complete(repo, round_row.id)
        completed = await rounds.expire_judging(repo, round_row.id, random.Random(3))
        assert completed is not None
        assert completed.status == "complete"
        submitters = {s.player_id for s in await repo.get_submissions(round_row.id)}
        assert completed.winner_player_id in submitters

    async def test_expire_judging_without_submissions(self, repo: Repository) -> None:
        _, round_row = await _started(repo)
        await rounds.expire_submissions(repo, round_row.id)
        assert await rounds.expire_judging(repo, round_row.id) is None
        assert round_row.status == "judging"
        assert round_row.winner_player_id is None

    async def test_expire_judging_after_judge_acted(self, repo: Repository) -> None:
        info, round_row = await _started(repo)
        await _submit_all(repo, info, round_row)
        await rounds.advance_if_complete(repo, round_row.id)
        await rounds.select_winner(repo, round_row.id, info["player_ids"][1])
        assert await rounds.expire_judging(repo, round_row.id) is None
