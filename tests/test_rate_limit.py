"""Tests for the per-game sliding-window rate limiter."""

from __future__ import annotations

from conftest import FakeRedis

from aiah.ai.rate_limit import RateLimiter, Window, default_windows
from aiah.config import Settings


class TestUnconfigured:
    async def test_fails_open_by_default(self) -> None:
        limiter = RateLimiter(None)
        assert limiter.configured is False
        assert await limiter.is_limited("game-1") is False

    async def test_fail_closed_when_policy_says_so(self) -> None:
        limiter = RateLimiter(None, fail_open=False)
        assert await limiter.is_limited("game-1") is True

    def test_from_settings_without_url(self, settings: Settings) -> None:
        limiter = RateLimiter.from_settings(settings)
        assert limiter.configured is False
        assert limiter.fail_open is True
        assert [w.limit for w in limiter.windows] == [10, 100]


class TestSlidingWindow:
    async def test_short_window_budget(self, fake_redis: FakeRedis) -> None:
        limiter = RateLimiter(fake_redis, default_windows(per_minute=3, per_day=100))
        results = [await limiter.is_limited("game-1") for _ in range(4)]
        assert results == [False, False, False, True]

    async def test_long_window_budget(self, fake_redis: FakeRedis) -> None:
        limiter = RateLimiter(fake_redis, default_windows(per_minute=100, per_day=2))
        results = [await limiter.is_limited("game-1") for _ in range(3)]
        assert results == [False, False, True]

    async def test_rejected_calls_are_refunded(self, fake_redis: FakeRedis) -> None:
        limiter = RateLimiter(fake_redis, default_windows(per_minute=2, per_day=100))
        for _ in range(5):
            await limiter.is_limited("game-1")
        minute_key = Window("min", 2, 60).key("game-1")
        day_key = Window("day", 100, 86_400).key("game-1")
        assert len(fake_redis.sets[minute_key]) == 2
        assert len(fake_redis.sets[day_key]) == 2

    async def test_scoped_per_game(self, fake_redis: FakeRedis) -> None:
        limiter = RateLimiter(fake_redis, default_windows(per_minute=1, per_day=100))
        assert await limiter.is_limited("game-1") is False
        assert await limiter.is_limited("game-1") is True
        assert await limiter.is_limited("game-2") is False

    async def test_expired_entries_do_not_count(self, fake_redis: FakeRedis) -> None:
        limiter = RateLimiter(fake_redis, default_windows(per_minute=1, per_day=100))
        key = Window("min", 1, 60).key("game-1")
        fake_redis.sets[key] = {"old-call": 1.0}
        assert await limiter.is_limited("game-1") is False


class TestBackendFailure:
    async def test_unavailable_backend_fails_open(self, fake_redis: FakeRedis) -> None:
        fake_redis.down = True
        assert await RateLimiter(fake_redis).is_limited("game-1") is False

    async def test_unavailable_backend_fail_closed(self, fake_redis: FakeRedis) -> None:
        fake_redis.down = True
        assert await RateLimiter(fake_redis, fail_open=False).is_limited("game-1") is True

    async def test_close(self, fake_redis: FakeRedis) -> None:
        await RateLimiter(fake_redis).close()
        assert fake_redis.closed is True
