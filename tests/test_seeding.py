"""Tests for card pack loading and seeding."""

import tempfile
from pathlib import Path

import yaml

from aiah.core.seeding import CardPackConfig, load_pack_yaml, seed_card_pack, seed_if_empty
from aiah.db.repository import Repository


class TestStarterPack:
    def test_loads(self):
        pack = load_pack_yaml()
        assert pack.name
        assert len(pack.prompts) >= 20
        assert len(pack.responses) >= 40

    def test_prompts_and_responses_are_distinct_lists(self):
        pack = load_pack_yaml()
        assert not set(pack.prompts) & set(pack.responses)
        assert len(set(pack.responses)) == len(pack.responses)


class TestCustomPack:
    def test_yaml_roundtrip(self):
        pack = CardPackConfig(name="Tiny", prompts=["Why _____?"], responses=["Because."])
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "tiny.yaml"
            path.write_text(yaml.safe_dump(pack.model_dump()))
            assert load_pack_yaml(path) == pack


class TestSeeding:
    async def test_seed_if_empty_only_once(self, repo: Repository):
        pack = load_pack_yaml()
        created = await seed_if_empty(repo)
        assert created == len(pack.prompts) + len(pack.responses)
        assert await seed_if_empty(repo) == 0
        assert len(await repo.get_cards_by_type("prompt")) == len(pack.prompts)

    async def test_seed_custom_pack(self, repo: Repository):
        pack = CardPackConfig(name="Tiny", prompts=["Why _____?"], responses=["Because.", "Why not."])
        assert await seed_card_pack(repo, pack, is_official=False) == 3
        responses = await repo.get_cards_by_type("response")
        assert sorted(c.text for c in responses) == ["Because.", "Why not."]
