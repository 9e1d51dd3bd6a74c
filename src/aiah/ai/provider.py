"""Anthropic provider calls: response cards, judging, and key validation.

The provider is an opaque, possibly slow, possibly failing function. The
client is built with ``max_retries=0``: a failed call degrades to filler
text in the orchestrator instead of stretching round latency with retries.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import anthropic

from aiah.ai.usage import BilledTo, extract_usage, record_ai_usage, track_latency
from aiah.config import DEFAULT_AI_MODEL

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

PROVIDER_NAME = "anthropic"

# Light format check before spending a live validation call.
KEY_PREFIXES: dict[str, str] = {"anthropic": "sk-ant-"}

EMPTY_RESPONSE_TEXT = "I have nothing to say."

# Anthropic accepts temperatures in [0, 1]; personas may declare up to 1.2.
MAX_PROVIDER_TEMPERATURE = 1.0

DEFAULT_TIMEOUT_SECONDS = 20.0


class KeyValidationError(Exception):
    """A live key check failed. ``reason`` is the classified explanation."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


# Module-level client cache for connection reuse
_client_cache: dict[tuple[str, float], anthropic.AsyncAnthropic] = {}


def get_client(
    api_key: str, timeout: float = DEFAULT_TIMEOUT_SECONDS
) -> anthropic.AsyncAnthropic:
    """Return the cached client for this key and timeout, building it once."""
    cache_key = (api_key, timeout)
    if cache_key not in _client_cache:
        _client_cache[cache_key] = anthropic.AsyncAnthropic(
            api_key=api_key, max_retries=0, timeout=timeout
        )
    return _client_cache[cache_key]


async def close_clients() -> None:
    """Close every cached client. Called on application shutdown."""
    clients = list(_client_cache.values())
    _client_cache.clear()
    for client in clients:
        await client.close()


def classify_provider_error(err: BaseException) -> str:
    """Map a provider failure to a short, user-facing reason.

    Quota and billing text is checked before status codes: a quota
    exhaustion arrives as a 429 but is not a transient rate limit.
    """
    message = str(err)
    lowered = message.lower()
    status = getattr(err, "status_code", None)

    if "insufficient_quota" in lowered or "quota" in lowered:
        return "API key has exhausted its quota"
    if "billing" in lowered or "credit balance" in lowered:
        return "Billing issue with your API account"
    if (
        isinstance(err, anthropic.AuthenticationError)
        or status == 401
        or "invalid x-api-key" in lowered
        or "invalid_api_key" in lowered
    ):
        return "Invalid or revoked API key"
    if isinstance(err, anthropic.RateLimitError) or status == 429:
        return "Rate limit exceeded on your API key"
    if isinstance(err, anthropic.PermissionDeniedError) or status == 403:
        return "API key does not have required permissions"
    return f"API error: {message[:100]}"


def build_user_prompt(prompt_text: str) -> str:
    return f'The prompt card says: "{prompt_text}"\n\nWhat is your response card?'


async def complete(
    system_prompt: str,
    user_prompt: str,
    *,
    temperature: float,
    max_tokens: int,
    api_key: str,
    model: str = DEFAULT_AI_MODEL,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    db_session: AsyncSession | None = None,
    call_type: str = "response_card",
    billed_to: BilledTo = "shared",
    game_id: str = "",
    round_number: int | None = None,
) -> str:
    """Run one Messages API call and return the stripped text.

    Raises ``anthropic.AnthropicError`` subclasses on failure; never retries.
    Records usage when a DB session is supplied.
    """
    client = get_client(api_key, timeout)
    async with track_latency() as timing:
        response = await client.messages.create(
            model=model,
            max_tokens=max_tokens,
            temperature=max(0.0, min(temperature, MAX_PROVIDER_TEMPERATURE)),
            system=system_prompt,
            messages=[{"role": "user", "content": user_prompt}],
        )

    if db_session is not None:
        input_tok, output_tok, cache_tok, cache_create_tok = extract_usage(response)
        await record_ai_usage(
            session=db_session,
            call_type=call_type,
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

    text = ""
    for block in response.content:
        block_text = getattr(block, "text", None)
        if isinstance(block_text, str):
            text = block_text.strip()
            break
    # Models sometimes wrap the card in quotes.
    text = text.strip('"').strip()
    return text or EMPTY_RESPONSE_TEXT


async def validate_key(api_key: str, timeout: float = DEFAULT_TIMEOUT_SECONDS) -> None:
    """Make the cheapest authenticated call the API offers (list one model).

    Raises KeyValidationError with a classified reason on failure.
    """
    client = get_client(api_key, timeout)
    try:
        await client.models.list(limit=1)
    except anthropic.AnthropicError as e:
        reason = classify_provider_error(e)
        # Rejected keys are not kept around.
        _client_cache.pop((api_key, timeout), None)
        logger.info("provider_key_validation_failed reason=%s", reason)
        raise KeyValidationError(reason) from e
