"""User-authored AI personas.

Only the creator may update or delete a persona. Visibility controls who
can discover and seat it, not who can change it.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import BaseModel

from aiah.ai.personas import (
    BUILTIN_PERSONAS,
    BuiltinPersonaRef,
    Persona,
    parse_persona_ref,
    persona_from_row,
    wrap_instructions,
)
from aiah.core.errors import NotFoundError, PermissionDenied, ValidationFailed
from aiah.models.constants import (
    DEFAULT_PERSONA_EMOJI,
    MAX_CUSTOM_PERSONAS_PER_USER,
    MAX_PERSONA_TEMPERATURE,
    MIN_PERSONA_TEMPERATURE,
)

if TYPE_CHECKING:
    from aiah.db.models import CustomPersonaRow
    from aiah.db.repository import Repository

NAME_MAX = 30
PERSONALITY_MAX = 100
INSTRUCTIONS_MIN = 10
INSTRUCTIONS_MAX = 500
EMOJI_MAX = 16


class PersonaSummary(BaseModel):
    """Public view of a persona. Never includes the system prompt."""

    id: str
    name: str
    personality: str
    temperature: float
    emoji: str
    is_builtin: bool
    is_public: bool = True
    creator_id: str | None = None


def _summary(persona: Persona, *, is_public: bool = True, creator_id: str | None = None) -> PersonaSummary:
    return PersonaSummary(
        id=persona.id,
        name=persona.name,
        personality=persona.personality,
        temperature=persona.temperature,
        emoji=persona.emoji,
        is_builtin=persona.is_builtin,
        is_public=is_public,
        creator_id=creator_id,
    )


def summarize_row(row: CustomPersonaRow) -> PersonaSummary:
    return _summary(persona_from_row(row), is_public=row.is_public, creator_id=row.creator_id)


def _check_name(name: str) -> str:
    name = name.strip()
    if not 1 <= len(name) <= NAME_MAX:
        raise ValidationFailed(f"Name must be 1-{NAME_MAX} characters")
    return name


def _check_personality(personality: str) -> str:
    personality = personality.strip()
    if not 1 <= len(personality) <= PERSONALITY_MAX:
        raise ValidationFailed(f"Personality description must be 1-{PERSONALITY_MAX} characters")
    return personality


def _check_instructions(instructions: str) -> str:
    instructions = instructions.strip()
    if not INSTRUCTIONS_MIN <= len(instructions) <= INSTRUCTIONS_MAX:
        raise ValidationFailed(
            f"Instructions must be {INSTRUCTIONS_MIN}-{INSTRUCTIONS_MAX} characters"
        )
    return wrap_instructions(instructions)


def _check_temperature(temperature: float) -> float:
    if not MIN_PERSONA_TEMPERATURE <= temperature <= MAX_PERSONA_TEMPERATURE:
        raise ValidationFailed(
            f"Temperature must be between {MIN_PERSONA_TEMPERATURE} and {MAX_PERSONA_TEMPERATURE}"
        )
    return temperature


def _check_emoji(emoji: str) -> str:
    emoji = emoji.strip()
    if len(emoji) > EMOJI_MAX:
        raise ValidationFailed(f"Emoji must be at most {EMOJI_MAX} characters")
    return emoji or DEFAULT_PERSONA_EMOJI


async def create_persona(
    repo: Repository,
    creator_id: str,
    *,
    name: str,
    personality: str,
    instructions: str,
    temperature: float,
    emoji: str = "",
    is_public: bool = False,
) -> CustomPersonaRow:
    """Validate and store a new persona, wrapping its instructions in the guardrail."""
    if await repo.get_user(creator_id) is None:
        raise NotFoundError("User not found")

    if await repo.count_custom_personas(creator_id) >= MAX_CUSTOM_PERSONAS_PER_USER:
        raise ValidationFailed(
            f"Maximum of {MAX_CUSTOM_PERSONAS_PER_USER} custom personas per user"
        )

    return await repo.create_custom_persona(
        creator_id=creator_id,
        name=_check_name(name),
        personality=_check_personality(personality),
        system_prompt=_check_instructions(instructions),
        temperature=_check_temperature(temperature),
        emoji=_check_emoji(emoji),
        is_public=is_public,
    )


async def _owned_persona(repo: Repository, persona_row_id: str, user_id: str) -> CustomPersonaRow:
    row = await repo.get_custom_persona(persona_row_id)
    if row is None:
        raise NotFoundError("Persona not found")
    if row.creator_id != user_id:
        raise PermissionDenied("You can only change your own personas")
    return row


async def update_persona(
    repo: Repository,
    persona_row_id: str,
    user_id: str,
    *,
    name: str | None = None,
    personality: str | None = None,
    instructions: str | None = None,
    temperature: float | None = None,
    emoji: str | None = None,
    is_public: bool | None = None,
) -> CustomPersonaRow:
    """Apply a partial update. Every supplied field is validated as on create."""
    row = await _owned_persona(repo, persona_row_id, user_id)

    patch: dict[str, object] = {}
    if name is not None:
        patch["name"] = _check_name(name)
    if personality is not None:
        patch["personality"] = _check_personality(personality)
    if instructions is not None:
        patch["system_prompt"] = _check_instructions(instructions)
    if temperature is not None:
        patch["temperature"] = _check_temperature(temperature)
    if emoji is not None:
        patch["emoji"] = _check_emoji(emoji)
    if is_public is not None:
        patch["is_public"] = is_public

    if patch:
        await repo.update_custom_persona(row, **patch)
    return row


async def delete_persona(repo: Repository, persona_row_id: str, user_id: str) -> None:
    row = await _owned_persona(repo, persona_row_id, user_id)
    await repo.delete_custom_persona(row)


async def list_my_personas(repo: Repository, user_id: str) -> list[PersonaSummary]:
    rows = await repo.get_custom_personas_by_creator(user_id)
    return [summarize_row(row) for row in rows]


async def list_available_personas(repo: Repository) -> list[PersonaSummary]:
    """Built-ins first (most literal to most chaotic), then public custom personas."""
    builtins = sorted(BUILTIN_PERSONAS.values(), key=lambda p: p.temperature)
    public_rows = await repo.get_public_custom_personas()
    return [_summary(p) for p in builtins] + [summarize_row(row) for row in public_rows]


async def ensure_seatable(repo: Repository, persona_id: str, host_id: str) -> None:
    """Check that *host_id* may seat *persona_id* in their game.

    Built-ins must exist in the static table; a custom persona must exist
    and be public or owned by the host.
    """
    try:
        ref = parse_persona_ref(persona_id)
    except ValueError as e:
        raise ValidationFailed(str(e)) from e

    if isinstance(ref, BuiltinPersonaRef):
        if ref.slug not in BUILTIN_PERSONAS:
            raise NotFoundError(f"Unknown persona: {ref.slug}")
        return

    row = await repo.get_custom_persona(ref.persona_id)
    if row is None:
        raise NotFoundError("Persona not found")
    if not row.is_public and row.creator_id != host_id:
        raise PermissionDenied("That persona is private")
