"""Response cache: a bounded pool of generated answers per (prompt text, persona).

Pools only grow. Once a pool holds ``MAX_CACHED_RESPONSES_PER_PROMPT``
distinct answers, new answers are dropped rather than evicting old ones.
"""

from __future__ import annotations

import logging
import random
from typing import TYPE_CHECKING

from aiah.models.constants import MAX_CACHED_RESPONSES_PER_PROMPT

if TYPE_CHECKING:
    from aiah.db.repository import Repository

logger = logging.getLogger(__name__)


async def get_cached_pool(repo: Repository, prompt_text: str, persona_id: str) -> list[str]:
    """Return the cached answers for this pair, or an empty list."""
    row = await repo.get_response_pool(prompt_text, persona_id)
    if row is None:
        return []
    return list(row.responses or [])


def pick_response(pool: list[str], rng: random.Random | None = None) -> str | None:
    """Pick uniformly from a pool; None when the pool is empty."""
    if not pool:
        return None
    return (rng or random).choice(pool)


async def get_cached_response(
    repo: Repository,
    prompt_text: str,
    persona_id: str,
    rng: random.Random | None = None,
) -> str | None:
    return pick_response(await get_cached_pool(repo, prompt_text, persona_id), rng)


async def save_to_cache(
    repo: Repository, prompt_text: str, persona_id: str, response: str
) -> bool:
    """Add *response* to the pool. Returns True if the pool changed.

    Pools are shared across games, so two runs can miss together. The
    loser of the insert appends to the winner's pool instead.
    """
    row = await repo.get_response_pool(prompt_text, persona_id)
    if row is None:
        if await repo.create_response_pool(prompt_text, persona_id, [response]) is not None:
            return True
        logger.info("ai_cache_write_conflict persona=%s", persona_id)
        row = await repo.get_response_pool(prompt_text, persona_id)
        if row is None:
            return False

    pool = list(row.responses or [])
    if response in pool or len(pool) >= MAX_CACHED_RESPONSES_PER_PROMPT:
        return False

    pool.append(response)
    await repo.set_response_pool(row, pool)
    logger.debug("response_cached persona=%s pool_size=%d", persona_id, len(pool))
    return True
