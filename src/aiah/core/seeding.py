"""Card pack loading and seeding from YAML."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

import yaml
from pydantic import BaseModel, Field

from aiah.config import STARTER_PACK_PATH

if TYPE_CHECKING:
    from aiah.db.repository import Repository

logger = logging.getLogger(__name__)


class CardPackConfig(BaseModel):
    name: str
    description: str = ""
    prompts: list[str] = Field(default_factory=list)
    responses: list[str] = Field(default_factory=list)


def load_pack_yaml(path: Path = STARTER_PACK_PATH) -> CardPackConfig:
    """Load a card pack from a YAML file."""
    with open(path) as f:
        data = yaml.safe_load(f)
    return CardPackConfig(**data)


async def seed_card_pack(
    repo: Repository, pack: CardPackConfig, *, is_official: bool = True
) -> int:
    """Insert a pack and its cards. Returns the number of cards created."""
    row = await repo.create_card_pack(
        name=pack.name, description=pack.description, is_official=is_official
    )
    prompts = await repo.add_cards(row.id, "prompt", pack.prompts)
    responses = await repo.add_cards(row.id, "response", pack.responses)
    return len(prompts) + len(responses)


async def seed_if_empty(repo: Repository, path: Path = STARTER_PACK_PATH) -> int:
    """Seed the starter pack when the card table is empty. Returns cards created."""
    if await repo.count_cards() > 0:
        return 0
    created = await seed_card_pack(repo, load_pack_yaml(path))
    logger.info("starter_pack_seeded cards=%d", created)
    return created
