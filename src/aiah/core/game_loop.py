"""Public game operations and the background tasks they schedule.

Each operation runs its transactional work in one session, commits, and
only then schedules follow-up tasks: the AI orchestrator and the submit
timeout when a round opens; the judge timeout and, for an AI judge, the
AI judging task when a round enters judging. Tasks re-read state, so a
task that fires after the round moved on does nothing.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from aiah.core import games, rounds
from aiah.db.engine import get_session
from aiah.db.repository import Repository

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

    from aiah.ai.rate_limit import RateLimiter
    from aiah.config import Settings
    from aiah.core.tasks import TaskScheduler
    from aiah.db.models import RoundRow
    from aiah.models.game import RoundView, SubmissionView

logger = logging.getLogger(__name__)


@dataclass
class GameRuntime:
    """Process-wide collaborators shared by operations and tasks."""

    engine: AsyncEngine
    settings: Settings
    scheduler: TaskScheduler
    rate_limiter: RateLimiter
    rng: random.Random = field(default_factory=random.Random)


async def _judge_is_ai(repo: Repository, round_row: RoundRow) -> bool:
    judge = await repo.get_player(round_row.judge_player_id)
    return judge is not None and judge.is_ai


def schedule_round_tasks(runtime: GameRuntime, game_id: str, round_id: str) -> None:
    """Kick off AI submissions and the submit timeout for a freshly opened round."""
    from aiah.ai.orchestrator import generate_ai_submissions

    runtime.scheduler.run_after(
        0, generate_ai_submissions, runtime=runtime, game_id=game_id, round_id=round_id
    )
    timeout = runtime.settings.aiah_submit_timeout_seconds
    if timeout > 0:
        runtime.scheduler.run_after(
            timeout, expire_submissions_task, runtime=runtime, round_id=round_id
        )


def schedule_judging_tasks(runtime: GameRuntime, round_id: str, *, ai_judge: bool) -> None:
    """Schedule the judge timeout, and the AI judge when the judge is an AI player."""
    if ai_judge:
        from aiah.ai.judge import judge_round

        runtime.scheduler.run_after(0, judge_round, runtime=runtime, round_id=round_id)
    timeout = runtime.settings.aiah_judge_timeout_seconds
    if timeout > 0:
        runtime.scheduler.run_after(
            timeout, expire_judging_task, runtime=runtime, round_id=round_id
        )


# --- Operations ---


async def start_game(
    runtime: GameRuntime, game_id: str, *, requester_id: str | None = None
) -> RoundView:
    async with get_session(runtime.engine) as session:
        repo = Repository(session)
        round_row = await games.start_game(
            repo, game_id, requester_id=requester_id, rng=runtime.rng
        )
        view = await games.round_view(repo, round_row)
    schedule_round_tasks(runtime, game_id, round_row.id)
    return view


async def start_next_round(runtime: GameRuntime, game_id: str) -> RoundView:
    async with get_session(runtime.engine) as session:
        repo = Repository(session)
        round_row = await games.start_next_round(repo, game_id, rng=runtime.rng)
        view = await games.round_view(repo, round_row)
    schedule_round_tasks(runtime, game_id, round_row.id)
    return view


async def submit_card(
    runtime: GameRuntime,
    round_id: str,
    player_id: str,
    *,
    card_id: str | None = None,
    text: str | None = None,
) -> SubmissionView:
    """Human submission; the last expected card moves the round to judging."""
    async with get_session(runtime.engine) as session:
        repo = Repository(session)
        submission = await rounds.submit_card(
            repo, round_id, player_id, card_id=card_id, text=text
        )
        advanced = await rounds.advance_if_complete(repo, round_id)
        ai_judge = False
        if advanced:
            round_row = await repo.get_round(round_id)
            ai_judge = round_row is not None and await _judge_is_ai(repo, round_row)
        views = await games.get_submissions(repo, round_id)
    if advanced:
        schedule_judging_tasks(runtime, round_id, ai_judge=ai_judge)
    return next(v for v in views if v.id == submission.id)


async def move_to_judging(runtime: GameRuntime, round_id: str) -> RoundView:
    async with get_session(runtime.engine) as session:
        repo = Repository(session)
        round_row = await rounds.move_to_judging(repo, round_id)
        ai_judge = await _judge_is_ai(repo, round_row)
        view = await games.round_view(repo, round_row)
    schedule_judging_tasks(runtime, round_id, ai_judge=ai_judge)
    return view


async def select_winner(
    runtime: GameRuntime,
    round_id: str,
    winner_player_id: str,
    *,
    judge_player_id: str | None = None,
) -> RoundView:
    async with get_session(runtime.engine) as session:
        repo = Repository(session)
        round_row = await rounds.select_winner(
            repo, round_id, winner_player_id, judge_player_id=judge_player_id
        )
        return await games.round_view(repo, round_row)


# --- Background tasks ---


async def advance_round_task(runtime: GameRuntime, round_id: str) -> bool:
    """Re-check a round for completion; schedules judging work if it moved."""
    async with get_session(runtime.engine) as session:
        repo = Repository(session)
        advanced = await rounds.advance_if_complete(repo, round_id)
        round_row = await repo.get_round(round_id)
        ai_judge = advanced and round_row is not None and await _judge_is_ai(repo, round_row)
    if advanced:
        schedule_judging_tasks(runtime, round_id, ai_judge=ai_judge)
    return advanced


async def expire_submissions_task(runtime: GameRuntime, round_id: str) -> None:
    async with get_session(runtime.engine) as session:
        repo = Repository(session)
        moved = await rounds.expire_submissions(repo, round_id)
        round_row = await repo.get_round(round_id)
        ai_judge = moved and round_row is not None and await _judge_is_ai(repo, round_row)
    if moved:
        schedule_judging_tasks(runtime, round_id, ai_judge=ai_judge)


async def expire_judging_task(runtime: GameRuntime, round_id: str) -> None:
    async with get_session(runtime.engine) as session:
        await rounds.expire_judging(Repository(session), round_id, runtime.rng)
