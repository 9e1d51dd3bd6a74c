"""Per-game sliding-window limits on shared-credential provider calls.

Each window is a Redis sorted set of call timestamps. A check trims
entries older than the window, records the new call, and counts. A call
that would exceed any window is removed again so it does not consume
budget.

When Redis is not configured or unavailable the limiter follows the
``fail_open`` policy: by default calls are allowed so gameplay never
blocks on the limiter.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING

from redis import asyncio as aioredis
from redis.exceptions import RedisError

if TYPE_CHECKING:
    from aiah.config import Settings

logger = logging.getLogger(__name__)

KEY_PREFIX = "rl:ai"


@dataclass(frozen=True)
class Window:
    name: str
    limit: int
    seconds: int

    def key(self, game_id: str) -> str:
        return f"{KEY_PREFIX}:{self.name}:game:{game_id}"


def default_windows(per_minute: int = 10, per_day: int = 100) -> tuple[Window, ...]:
    return (Window("min", per_minute, 60), Window("day", per_day, 86_400))


class RateLimiter:
    """Sliding-window budget check scoped to a game."""

    def __init__(
        self,
        client: aioredis.Redis | None,
        windows: tuple[Window, ...] | None = None,
        *,
        fail_open: bool = True,
    ) -> None:
        self._redis = client
        self.windows = windows or default_windows()
        self.fail_open = fail_open

    @classmethod
    def from_settings(cls, settings: Settings) -> RateLimiter:
        client = aioredis.from_url(settings.redis_url) if settings.redis_url else None
        return cls(
            client,
            default_windows(settings.aiah_rate_limit_per_minute, settings.aiah_rate_limit_per_day),
            fail_open=settings.aiah_rate_limit_fail_open,
        )

    @property
    def configured(self) -> bool:
        return self._redis is not None

    @staticmethod
    async def _hit(
        client: aioredis.Redis, window: Window, game_id: str, now_ms: int, member: str
    ) -> bool:
        """Record one call in *window*. Returns True if the window is over budget."""
        key = window.key(game_id)
        window_ms = window.seconds * 1000
        async with client.pipeline(transaction=True) as pipe:
            pipe.zremrangebyscore(key, 0, now_ms - window_ms)
            pipe.zadd(key, {member: now_ms})
            pipe.zcard(key)
            pipe.pexpire(key, window_ms)
            _, _, count, _ = await pipe.execute()
        return int(count) > window.limit

    async def is_limited(self, game_id: str) -> bool:
        """True if any window's budget for *game_id* is exhausted."""
        client = self._redis
        if client is None:
            if not self.fail_open:
                logger.warning("rate_limit_unconfigured_fail_closed game=%s", game_id)
            return not self.fail_open

        now_ms = int(time.time() * 1000)
        member = f"{now_ms}-{uuid.uuid4().hex}"
        try:
            results = await asyncio.gather(
                *(self._hit(client, w, game_id, now_ms, member) for w in self.windows)
            )
            limited = any(results)
            if limited:
                # Refund the call in every window so a rejected call costs nothing.
                await asyncio.gather(
                    *(client.zrem(w.key(game_id), member) for w in self.windows)
                )
        except (RedisError, OSError):
            logger.warning(
                "rate_limit_backend_unavailable game=%s fail_open=%s",
                game_id,
                self.fail_open,
                exc_info=True,
            )
            return not self.fail_open

        if limited:
            logger.info("rate_limited game=%s", game_id)
        return limited

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
