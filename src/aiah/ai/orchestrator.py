"""AI submissions for one round.

Scheduled once when a round opens. For every AI player who still owes a
card (AI, not the judge, nothing submitted yet):

1. Resolve the persona. Unknown personas are skipped.
2. Serve a cached answer for (prompt text, persona) when there is one.
3. Otherwise call the provider. The host's own key is tried first; a
   failing key is marked invalid and flagged for the rest of this run, and
   that one call is retried once on the shared key directly. Every other
   shared-key call goes through the per-game rate limiter first. Limited,
   keyless and failed calls degrade to filler text.
4. Cache generated answers (never filler) in their own transaction, then
   submit idempotently. Submitting never depends on the cache write.

Finally the round is re-checked once for the move to judging.

Each step opens its own short session so no transaction is held open
across a provider call.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import anthropic
from sqlalchemy.exc import SQLAlchemyError

from aiah.ai import cache, provider
from aiah.ai.personas import Persona, resolve_persona
from aiah.core import credentials, rounds
from aiah.core.encryption import DecryptionError, EncryptionConfigError
from aiah.db.engine import get_session
from aiah.db.repository import Repository

if TYPE_CHECKING:
    from aiah.ai.usage import BilledTo
    from aiah.core.game_loop import GameRuntime

logger = logging.getLogger(__name__)

OVERLOADED_TEXT = "I'm thinking too hard... my brain hurts."
FAILED_TEXT = "My circuits are fried right now."

DECRYPT_FAILED_REASON = "Failed to decrypt key; it may be corrupted"


@dataclass
class HostKey:
    """The host's personal key for one orchestration run."""

    key_id: str | None = None
    api_key: str | None = None
    failed: bool = False

    @property
    def usable(self) -> bool:
        return self.api_key is not None and not self.failed


@dataclass
class PendingPlayer:
    player_id: str
    persona: Persona


@dataclass
class RoundContext:
    game_id: str
    round_id: str
    round_number: int
    prompt_text: str
    host_id: str


async def load_host_key(runtime: GameRuntime, repo: Repository, host_id: str) -> HostKey:
    """Decrypt the host's key. A corrupt blob invalidates the key; a missing
    server key is a configuration error and leaves the record alone."""
    try:
        unlocked = await credentials.unlock_key(
            repo, host_id, encryption_key=runtime.settings.encryption_key or None
        )
    except DecryptionError:
        row = await repo.get_api_key_for_user(host_id, provider.PROVIDER_NAME)
        if row is not None:
            await credentials.mark_key_invalid(repo, row.id, DECRYPT_FAILED_REASON)
        return HostKey()
    except EncryptionConfigError:
        logger.error("encryption_not_configured host=%s using_shared_key", host_id)
        return HostKey()

    if unlocked is None:
        return HostKey()
    key_id, api_key = unlocked
    return HostKey(key_id=key_id, api_key=api_key)


async def _load_round(
    runtime: GameRuntime, game_id: str, round_id: str
) -> tuple[RoundContext, list[PendingPlayer], HostKey] | None:
    async with get_session(runtime.engine) as session:
        repo = Repository(session)
        round_row = await repo.get_round(round_id)
        if round_row is None or round_row.status != "submitting":
            return None
        game = await repo.get_game(game_id)
        prompt = await repo.get_card(round_row.prompt_card_id)
        if game is None or prompt is None:
            return None

        pending: list[PendingPlayer] = []
        for player in await repo.get_players(game_id):
            if not player.is_ai or player.id == round_row.judge_player_id:
                continue
            if await repo.get_submission_for_player(round_id, player.id) is not None:
                continue
            persona = await resolve_persona(repo, player.ai_persona_id or "")
            if persona is None:
                logger.warning(
                    "ai_submission_skipped round=%s player=%s persona=%s reason=unknown_persona",
                    round_id,
                    player.id,
                    player.ai_persona_id,
                )
                continue
            pending.append(PendingPlayer(player.id, persona))

        host_key = await load_host_key(runtime, repo, game.host_id) if pending else HostKey()

    ctx = RoundContext(
        game_id=game_id,
        round_id=round_id,
        round_number=round_row.round_number,
        prompt_text=prompt.text,
        host_id=game.host_id,
    )
    return ctx, pending, host_key


async def call_provider(
    runtime: GameRuntime,
    ctx: RoundContext,
    persona: Persona,
    api_key: str,
    billed_to: BilledTo,
) -> str:
    settings = runtime.settings
    async with get_session(runtime.engine) as session:
        return await provider.complete(
            persona.system_prompt,
            provider.build_user_prompt(ctx.prompt_text),
            temperature=persona.temperature,
            max_tokens=settings.aiah_ai_max_tokens,
            api_key=api_key,
            model=settings.aiah_ai_model,
            timeout=settings.aiah_provider_timeout_seconds,
            db_session=session,
            call_type="response_card",
            billed_to=billed_to,
            game_id=ctx.game_id,
            round_number=ctx.round_number,
        )


async def _call_shared(
    runtime: GameRuntime, ctx: RoundContext, pending: PendingPlayer
) -> tuple[str, bool]:
    shared_key = runtime.settings.anthropic_api_key
    if not shared_key:
        logger.warning("ai_submission_no_shared_key round=%s player=%s", ctx.round_id, pending.player_id)
        return FAILED_TEXT, False

    try:
        text = await call_provider(runtime, ctx, pending.persona, shared_key, "shared")
    except anthropic.AnthropicError as e:
        logger.warning(
            "ai_submission_provider_failed round=%s player=%s reason=%s",
            ctx.round_id,
            pending.player_id,
            provider.classify_provider_error(e),
        )
        return FAILED_TEXT, False
    return text, True


async def _generate(
    runtime: GameRuntime, ctx: RoundContext, pending: PendingPlayer, host_key: HostKey
) -> tuple[str, bool]:
    """Produce an answer. Returns (text, generated) where filler is not generated."""
    api_key, key_id = host_key.api_key, host_key.key_id
    if host_key.usable and api_key is not None and key_id is not None:
        try:
            text = await call_provider(runtime, ctx, pending.persona, api_key, "byok")
        except anthropic.AnthropicError as e:
            reason = provider.classify_provider_error(e)
            host_key.failed = True
            async with get_session(runtime.engine) as session:
                await credentials.mark_key_invalid(Repository(session), key_id, reason)
            logger.warning(
                "byok_call_failed round=%s player=%s reason=%s falling_back=shared",
                ctx.round_id,
                pending.player_id,
                reason,
            )
            # The fallback for the failed call itself is not rate limited.
            return await _call_shared(runtime, ctx, pending)
        async with get_session(runtime.engine) as session:
            await credentials.mark_key_used(Repository(session), key_id)
        return text, True

    if await runtime.rate_limiter.is_limited(ctx.game_id):
        logger.info("ai_submission_rate_limited round=%s player=%s", ctx.round_id, pending.player_id)
        return OVERLOADED_TEXT, False
    return await _call_shared(runtime, ctx, pending)


async def _save_generated(
    runtime: GameRuntime, ctx: RoundContext, pending: PendingPlayer, text: str
) -> None:
    try:
        async with get_session(runtime.engine) as session:
            repo = Repository(session)
            await cache.save_to_cache(repo, ctx.prompt_text, pending.persona.id, text)
    except SQLAlchemyError:
        # A cache write never costs the player their card.
        logger.warning(
            "ai_cache_write_failed round=%s player=%s",
            ctx.round_id,
            pending.player_id,
            exc_info=True,
        )


async def _submit_for_player(
    runtime: GameRuntime, ctx: RoundContext, pending: PendingPlayer, host_key: HostKey
) -> bool:
    """Handle one AI player. Returns False once the round has stopped accepting cards."""
    async with get_session(runtime.engine) as session:
        repo = Repository(session)
        round_row = await repo.get_round(ctx.round_id)
        if round_row is None or round_row.status != "submitting":
            return False
        cached = await cache.get_cached_response(
            repo, ctx.prompt_text, pending.persona.id, runtime.rng
        )

    if cached is not None:
        text, generated = cached, False
        logger.debug("ai_submission_cache_hit round=%s player=%s", ctx.round_id, pending.player_id)
    else:
        text, generated = await _generate(runtime, ctx, pending, host_key)

    if generated:
        await _save_generated(runtime, ctx, pending, text)

    async with get_session(runtime.engine) as session:
        repo = Repository(session)
        submitted = await rounds.submit_ai_card(repo, ctx.round_id, pending.player_id, text)

    if submitted:
        logger.info("ai_card_submitted round=%s player=%s", ctx.round_id, pending.player_id)
    return True


async def generate_ai_submissions(runtime: GameRuntime, game_id: str, round_id: str) -> int:
    """Submit a card for every AI player who still owes one.

    Returns the number of players processed. Safe to run more than once
    for the same round.
    """
    from aiah.core.game_loop import advance_round_task

    loaded = await _load_round(runtime, game_id, round_id)
    if loaded is None:
        logger.info("ai_submissions_skipped round=%s reason=not_submitting", round_id)
        return 0
    ctx, pending_players, host_key = loaded

    processed = 0
    for pending in pending_players:
        if not await _submit_for_player(runtime, ctx, pending, host_key):
            logger.info("ai_submissions_stopped round=%s reason=round_closed", round_id)
            break
        processed += 1

    await advance_round_task(runtime, round_id)
    return processed
