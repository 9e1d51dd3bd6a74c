"""AI usage tracking: record token counts and costs for every provider call.

Provides ``record_ai_usage()`` which inserts an ``AIUsageLogRow``. Both call
sites (response cards, AI judging) record after each Anthropic response,
tagging whether the call was billed to the shared key or a host's own key.

Pricing constants live here and should be updated when Anthropic changes
its rates.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Literal

from aiah.db.models import AIUsageLogRow

if TYPE_CHECKING:
    from pydantic import BaseModel
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

BilledTo = Literal["shared", "byok"]

# Pricing per million tokens (USD).
PRICING: dict[str, dict[str, float]] = {
    "claude-sonnet-4-5-20250929": {
        "input_per_mtok": 3.00,
        "output_per_mtok": 15.00,
        "cache_read_per_mtok": 0.30,
        "cache_write_per_mtok": 3.75,
    },
    "claude-haiku-4-5-20251001": {
        "input_per_mtok": 0.80,
        "output_per_mtok": 4.00,
        "cache_read_per_mtok": 0.08,
        "cache_write_per_mtok": 1.00,
    },
}

_DEFAULT_PRICING = {
    "input_per_mtok": 3.00,
    "output_per_mtok": 15.00,
    "cache_read_per_mtok": 0.30,
    "cache_write_per_mtok": 3.75,
}


def compute_cost(
    model: str,
    input_tokens: int,
    output_tokens: int,
    cache_read_tokens: int = 0,
    cache_creation_tokens: int = 0,
) -> float:
    """Compute estimated cost in USD for a single API call."""
    rates = PRICING.get(model, _DEFAULT_PRICING)
    cost = (
        input_tokens * rates["input_per_mtok"]
        + output_tokens * rates["output_per_mtok"]
        + cache_read_tokens * rates["cache_read_per_mtok"]
        + cache_creation_tokens * rates["cache_write_per_mtok"]
    ) / 1_000_000
    return round(cost, 8)


async def record_ai_usage(
    *,
    session: AsyncSession,
    call_type: str,
    model: str,
    input_tokens: int,
    output_tokens: int,
    cache_read_tokens: int = 0,
    cache_creation_tokens: int = 0,
    latency_ms: float = 0.0,
    billed_to: BilledTo = "shared",
    game_id: str = "",
    round_number: int | None = None,
) -> AIUsageLogRow:
    """Record a provider call to the usage log.

    Parameters
    ----------
    session : AsyncSession
        The SQLAlchemy async session to use for the insert.
    call_type : str
        Identifier for the call site: "response_card" or "judge".
    model : str
        The model name, e.g. "claude-haiku-4-5-20251001".
    input_tokens, output_tokens, cache_read_tokens, cache_creation_tokens : int
        Token counts from the API response.
    latency_ms : float
        Wall-clock time of the API call in milliseconds.
    billed_to : "shared" or "byok"
        Whose credential paid for the call.
    game_id : str
        Game the call was made for (empty string if unavailable).
    round_number : int or None
        Round the call was made for.

    Returns
    -------
    AIUsageLogRow
        The inserted row.
    """
    cost = compute_cost(
        model, input_tokens, output_tokens, cache_read_tokens, cache_creation_tokens
    )
    row = AIUsageLogRow(
        call_type=call_type,
        model=model,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        cache_read_tokens=cache_read_tokens,
        cache_creation_tokens=cache_creation_tokens,
        latency_ms=latency_ms,
        cost_usd=cost,
        billed_to=billed_to,
        game_id=game_id,
        round_number=round_number,
    )
    session.add(row)
    try:
        await session.flush()
    except Exception:
        # Usage logging should never break the caller.
        logger.warning("Failed to flush AI usage log row", exc_info=True)
    return row


@asynccontextmanager
async def track_latency() -> AsyncGenerator[dict[str, float], None]:
    """Context manager that yields a dict; after exit, 'latency_ms' is set.

    Usage::

        async with track_latency() as timing:
            response = await client.messages.create(...)
        latency = timing["latency_ms"]
    """
    timing: dict[str, float] = {"latency_ms": 0.0}
    start = time.monotonic()
    try:
        yield timing
    finally:
        timing["latency_ms"] = (time.monotonic() - start) * 1000


def extract_usage(response: object) -> tuple[int, int, int, int]:
    """Extract token counts from an API response.

    Returns (input_tokens, output_tokens, cache_read_tokens,
    cache_creation_tokens). Works with the Anthropic SDK ``Message``
    objects; anything without a ``usage`` attribute counts as zero.
    """
    usage = getattr(response, "usage", None)
    if usage is None:
        return (0, 0, 0, 0)

    def _count(name: str) -> int:
        value = getattr(usage, name, 0)
        return value if isinstance(value, int) else 0

    return (
        _count("input_tokens"),
        _count("output_tokens"),
        _count("cache_read_input_tokens"),
        _count("cache_creation_input_tokens"),
    )


def pydantic_to_response_format(model_class: type[BaseModel]) -> dict[str, object]:
    """Convert a Pydantic model to a Messages API ``output_config`` dict.

    Uses ``anthropic.transform_schema()`` to sanitize Pydantic's JSON schema
    so the API guarantees the response conforms to it.
    """
    from anthropic import transform_schema

    return {
        "format": {
            "type": "json_schema",
            "schema": transform_schema(model_class),
        },
    }
