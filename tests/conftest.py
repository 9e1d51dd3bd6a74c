"""Shared test fixtures."""

from __future__ import annotations

import random
from collections.abc import Awaitable, Callable
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import anthropic
import httpx
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.ext.asyncio import AsyncEngine

from aiah.ai.rate_limit import RateLimiter
from aiah.config import Settings
from aiah.core.game_loop import GameRuntime
from aiah.db.engine import create_engine, create_tables, get_session
from aiah.db.repository import Repository

TEST_ENCRYPTION_KEY = "00112233445566778899aabbccddeeff00112233445566778899aabbccddeeff"
OTHER_ENCRYPTION_KEY = "ffeeddccbbaa99887766554433221100ffeeddccbbaa99887766554433221100"
SHARED_API_KEY = "sk-ant-REDACTED"
HOST_API_KEY = "sk-ant-REDACTED"


@pytest.fixture(autouse=True)
def _encryption_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ENCRYPTION_KEY", TEST_ENCRYPTION_KEY)


@pytest.fixture
def settings() -> Settings:
    """Test settings with defaults."""
    return Settings(
        aiah_env="development",
        database_url="sqlite+aiosqlite:///:memory:",
        encryption_key=TEST_ENCRYPTION_KEY,
        anthropic_api_key=SHARED_API_KEY,
        redis_url="",
    )


@pytest.fixture
async def engine() -> AsyncEngine:
    eng = create_engine("sqlite+aiosqlite:///:memory:")
    await create_tables(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
async def repo(engine: AsyncEngine) -> Repository:
    async with get_session(engine) as session:
        yield Repository(session)


# --- Scheduler ---


class RecordingScheduler:
    """Captures scheduled tasks; tests run them explicitly."""

    def __init__(self) -> None:
        self.jobs: list[tuple[float, Callable[..., Awaitable[Any]], dict[str, Any]]] = []

    def run_after(self, delay_seconds: float, func: Callable[..., Awaitable[Any]], **kwargs: Any) -> None:
        self.jobs.append((delay_seconds, func, kwargs))

    def names(self) -> list[str]:
        return [func.__name__ for _, func, _ in self.jobs]

    async def run_due(self, max_delay: float = 0) -> int:
        """Run queued jobs with delay <= max_delay, including ones they schedule."""
        ran = 0
        while True:
            due = [job for job in self.jobs if job[0] <= max_delay]
            if not due:
                return ran
            for job in due:
                self.jobs.remove(job)
            for _, func, kwargs in due:
                await func(**kwargs)
                ran += 1

    async def run_named(self, name: str) -> int:
        """Run every queued job whose function has this name, whatever its delay."""
        due = [job for job in self.jobs if job[1].__name__ == name]
        for job in due:
            self.jobs.remove(job)
        for _, func, kwargs in due:
            await func(**kwargs)
        return len(due)


@pytest.fixture
def scheduler() -> RecordingScheduler:
    return RecordingScheduler()


@pytest.fixture
def runtime(engine: AsyncEngine, settings: Settings, scheduler: RecordingScheduler) -> GameRuntime:
    return GameRuntime(
        engine=engine,
        settings=settings,
        scheduler=scheduler,
        rate_limiter=RateLimiter(None),
        rng=random.Random(1234),
    )


# --- Redis ---


class FakePipeline:
    def __init__(self, redis: FakeRedis) -> None:
        self.redis = redis
        self.ops: list[tuple[str, tuple[Any, ...]]] = []

    async def __aenter__(self) -> FakePipeline:
        return self

    async def __aexit__(self, *exc: object) -> None:
        self.ops.clear()

    def zremrangebyscore(self, key: str, low: float, high: float) -> FakePipeline:
        self.ops.append(("zremrangebyscore", (key, low, high)))
        return self

    def zadd(self, key: str, mapping: dict[str, float]) -> FakePipeline:
        self.ops.append(("zadd", (key, mapping)))
        return self

    def zcard(self, key: str) -> FakePipeline:
        self.ops.append(("zcard", (key,)))
        return self

    def pexpire(self, key: str, ms: int) -> FakePipeline:
        self.ops.append(("pexpire", (key, ms)))
        return self

    async def execute(self) -> list[Any]:
        if self.redis.down:
            raise RedisConnectionError("connection refused")
        results: list[Any] = []
        for name, args in self.ops:
            results.append(getattr(self.redis, f"_{name}")(*args))
        return results


class FakeRedis:
    """In-memory stand-in for the sorted-set commands the limiter uses."""

    def __init__(self) -> None:
        self.sets: dict[str, dict[str, float]] = {}
        self.down = False
        self.closed = False

    def pipeline(self, transaction: bool = True) -> FakePipeline:
        return FakePipeline(self)

    def _zremrangebyscore(self, key: str, low: float, high: float) -> int:
        members = self.sets.setdefault(key, {})
        stale = [m for m, score in members.items() if low <= score <= high]
        for m in stale:
            del members[m]
        return len(stale)

    def _zadd(self, key: str, mapping: dict[str, float]) -> int:
        self.sets.setdefault(key, {}).update(mapping)
        return len(mapping)

    def _zcard(self, key: str) -> int:
        return len(self.sets.get(key, {}))

    def _pexpire(self, key: str, ms: int) -> bool:
        return True

    async def zrem(self, key: str, *members: str) -> int:
        if self.down:
            raise RedisConnectionError("connection refused")
        bucket = self.sets.get(key, {})
        return sum(1 for m in members if bucket.pop(m, None) is not None)

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


# --- Anthropic ---


def make_api_error(cls: type[anthropic.APIStatusError], status: int, message: str) -> anthropic.APIStatusError:
    request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
    return cls(message, response=httpx.Response(status, request=request), body=None)


def make_message(text: str) -> MagicMock:
    block = MagicMock()
    block.text = text
    response = MagicMock()
    response.content = [block]
    return response


def make_client(text: str = "A sentient toaster") -> MagicMock:
    client = MagicMock()
    client.messages.create = AsyncMock(return_value=make_message(text))
    client.models.list = AsyncMock(return_value=MagicMock())
    return client


def lagging_reads(cls: type, name: str, misses: int) -> Any:
    """Patch a repository read so its first *misses* calls return None.

    Simulates a concurrent writer committing between our check and our insert.
    """
    real = getattr(cls, name)
    calls = 0

    async def read(self: Any, *args: Any, **kwargs: Any) -> Any:
        nonlocal calls
        calls += 1
        if calls <= misses:
            return None
        return await real(self, *args, **kwargs)

    return patch.object(cls, name, read)


# --- Game setup ---


async def build_lobby(
    repo: Repository,
    humans: int = 2,
    ai_personas: tuple[str, ...] = (),
    points_to_win: int = 7,
    max_players: int = 10,
    prompts: int = 5,
    responses: int = 60,
) -> dict[str, Any]:
    """Seed cards and build a lobby: a host, extra humans, and AI players."""
    from aiah.core import games

    pack = await repo.create_card_pack("Test Pack", is_official=True)
    await repo.add_cards(pack.id, "prompt", [f"Prompt {i}: _____." for i in range(prompts)])
    await repo.add_cards(pack.id, "response", [f"Response {i}" for i in range(responses)])

    host = await games.create_guest_user(repo, "host")
    game = await games.create_game(
        repo, host.id, max_players=max_players, points_to_win=points_to_win
    )
    user_ids = [host.id]
    for i in range(1, humans):
        user = await games.create_guest_user(repo, f"player{i}")
        await games.join_game(repo, user.id, game_id=game.id)
        user_ids.append(user.id)
    for persona_id in ai_personas:
        await games.add_ai_player(repo, game.id, persona_id)
    players = await repo.get_players(game.id)
    return {
        "game_id": game.id,
        "host_id": host.id,
        "user_ids": user_ids,
        "player_ids": [p.id for p in players],
        "invite_code": game.invite_code,
    }


@pytest.fixture
def make_lobby(engine: AsyncEngine) -> Callable[..., Awaitable[dict[str, Any]]]:
    """Build a lobby in its own committed session."""

    async def _make(**kwargs: Any) -> dict[str, Any]:
        async with get_session(engine) as session:
            return await build_lobby(Repository(session), **kwargs)

    return _make
