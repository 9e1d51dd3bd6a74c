"""AI judging: an AI judge picks the funniest submission in its persona's voice.

Any failure (no key, rate limited, provider error, an answer out of
range) falls back to a uniformly random submission, so an AI judge never
stalls the game.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

import anthropic
from pydantic import BaseModel, ConfigDict, ValidationError

from aiah.ai import provider
from aiah.ai.orchestrator import load_host_key
from aiah.ai.personas import Persona, resolve_persona
from aiah.ai.usage import (
    extract_usage,
    pydantic_to_response_format,
    record_ai_usage,
    track_latency,
)
from aiah.core import credentials, games, rounds
from aiah.db.engine import get_session
from aiah.db.repository import Repository

if TYPE_CHECKING:
    from aiah.ai.usage import BilledTo
    from aiah.core.game_loop import GameRuntime

logger = logging.getLogger(__name__)

JUDGE_MAX_TOKENS = 200

JUDGE_INSTRUCTIONS = (
    "You are now the judge. Read the prompt card and the numbered answers, "
    "then pick the single funniest answer in keeping with your personality. "
    "Reply with the answer's number and a one-sentence explanation."
)


class JudgeVerdict(BaseModel):
    """Structured output for an AI judge's pick."""

    model_config = ConfigDict(frozen=True)

    winner_number: int
    explanation: str = ""


def build_judge_prompt(prompt_text: str, answers: list[str]) -> str:
    lines = [f'Prompt card: "{prompt_text}"', "", "Answers:"]
    lines.extend(f"{i}. {answer}" for i, answer in enumerate(answers, start=1))
    return "\n".join(lines)


def parse_verdict(raw: str, answer_count: int) -> int | None:
    """Return the zero-based index of the chosen answer, or None if unusable."""
    raw = raw.strip()
    if raw.startswith("```"):
        raw = raw.split("\n", 1)[-1].rsplit("```", 1)[0].strip()
    try:
        verdict = JudgeVerdict.model_validate(json.loads(raw))
    except (json.JSONDecodeError, ValidationError):
        return None
    if not 1 <= verdict.winner_number <= answer_count:
        return None
    return verdict.winner_number - 1


async def ask_judge(
    persona: Persona,
    prompt_text: str,
    answers: list[str],
    *,
    api_key: str,
    model: str,
    timeout: float,
    db_session: object | None = None,
    billed_to: BilledTo = "shared",
    game_id: str = "",
    round_number: int | None = None,
) -> int | None:
    """Ask the provider to judge. Raises anthropic.AnthropicError on failure."""
    client = provider.get_client(api_key, timeout)
    async with track_latency() as timing:
        response = await client.messages.create(
            model=model,
            max_tokens=JUDGE_MAX_TOKENS,
            temperature=max(0.0, min(persona.temperature, provider.MAX_PROVIDER_TEMPERATURE)),
            system=f"{persona.system_prompt}\n\n{JUDGE_INSTRUCTIONS}",
            messages=[{"role": "user", "content": build_judge_prompt(prompt_text, answers)}],
            output_config=pydantic_to_response_format(JudgeVerdict),
        )

    if db_session is not None:
        input_tok, output_tok, cache_tok, cache_create_tok = extract_usage(response)
        await record_ai_usage(
            session=db_session,  # type: ignore[arg-type]
            call_type="judge",
            model=model,
            input_tokens=input_tok,
            output_tokens=output_tok,
            cache_read_tokens=cache_tok,
            cache_creation_tokens=cache_create_tok,
            latency_ms=timing["latency_ms"],
            billed_to=billed_to,
            game_id=game_id,
            round_number=round_number,
        )

    for block in response.content:
        text = getattr(block, "text", None)
        if isinstance(text, str):
            return parse_verdict(text, len(answers))
    return None


async def judge_round(runtime: GameRuntime, round_id: str) -> str | None:
    """Pick and record a winner for a judging round whose judge is an AI player.

    Returns the winning player id, or None if there was nothing to judge.
    """
    settings = runtime.settings
    async with get_session(runtime.engine) as session:
        repo = Repository(session)
        round_row = await repo.get_round(round_id)
        if round_row is None or round_row.status != "judging":
            return None
        judge = await repo.get_player(round_row.judge_player_id)
        if judge is None or not judge.is_ai:
            return None
        submissions = await games.get_submissions(repo, round_id)
        if not submissions:
            logger.warning("ai_judge_no_submissions round=%s", round_id)
            return None
        game = await repo.get_game(round_row.game_id)
        prompt = await repo.get_card(round_row.prompt_card_id)
        persona = await resolve_persona(repo, judge.ai_persona_id or "")
        host_key = await load_host_key(runtime, repo, game.host_id) if game else None
        game_id, round_number = round_row.game_id, round_row.round_number

    answers = [s.text or "" for s in submissions]
    choice: int | None = None

    if persona is not None and prompt is not None:
        api_key: str | None = None
        billed_to: BilledTo = "shared"
        if host_key is not None and host_key.usable:
            api_key, billed_to = host_key.api_key, "byok"
        elif settings.anthropic_api_key and not await runtime.rate_limiter.is_limited(game_id):
            api_key = settings.anthropic_api_key

        if api_key is not None:
            try:
                async with get_session(runtime.engine) as session:
                    choice = await ask_judge(
                        persona,
                        prompt.text,
                        answers,
                        api_key=api_key,
                        model=settings.aiah_ai_model,
                        timeout=settings.aiah_provider_timeout_seconds,
                        db_session=session,
                        billed_to=billed_to,
                        game_id=game_id,
                        round_number=round_number,
                    )
            except anthropic.AnthropicError as e:
                reason = provider.classify_provider_error(e)
                logger.warning("ai_judge_failed round=%s reason=%s", round_id, reason)
                if billed_to == "byok" and host_key is not None and host_key.key_id:
                    async with get_session(runtime.engine) as session:
                        await credentials.mark_key_invalid(
                            Repository(session), host_key.key_id, reason
                        )

    if choice is None:
        choice = runtime.rng.randrange(len(submissions))
        logger.info("ai_judge_random_pick round=%s", round_id)

    winner_id = submissions[choice].player_id
    async with get_session(runtime.engine) as session:
        repo = Repository(session)
        round_row = await repo.get_round(round_id)
        if round_row is None or round_row.status != "judging":
            return None
        await rounds.select_winner(repo, round_id, winner_id)
    logger.info("ai_judge_picked round=%s winner=%s", round_id, winner_id)
    return winner_id
