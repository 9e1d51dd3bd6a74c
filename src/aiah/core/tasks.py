"""Fire-and-forget background tasks.

Callers hand a coroutine function and its keyword arguments to a
``TaskScheduler`` and never await the result. Every task is idempotent,
so a redelivered job is harmless.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger

logger = logging.getLogger(__name__)

TaskFunc = Callable[..., Awaitable[Any]]


class TaskScheduler(Protocol):
    def run_after(self, delay_seconds: float, func: TaskFunc, **kwargs: Any) -> None: ...


async def run_logged(func: TaskFunc, **kwargs: Any) -> None:
    """Run one task. Failures are logged, never raised into the scheduler."""
    name = getattr(func, "__name__", repr(func))
    try:
        await func(**kwargs)
    except Exception:  # Last-resort handler: a crashed task must not stop the scheduler
        logger.exception("background_task_error task=%s", name)


class APSchedulerTasks:
    """``TaskScheduler`` backed by an APScheduler ``AsyncIOScheduler``."""

    def __init__(self, scheduler: AsyncIOScheduler | None = None) -> None:
        self.scheduler = scheduler or AsyncIOScheduler()

    def start(self) -> None:
        if not self.scheduler.running:
            self.scheduler.start()
            logger.info("task_scheduler_started")

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("task_scheduler_stopped")

    def run_after(self, delay_seconds: float, func: TaskFunc, **kwargs: Any) -> None:
        run_at = datetime.now(UTC) + timedelta(seconds=max(delay_seconds, 0))
        name = getattr(func, "__name__", "task")
        self.scheduler.add_job(
            run_logged,
            trigger=DateTrigger(run_date=run_at),
            args=[func],
            kwargs=kwargs,
            id=f"{name}:{uuid.uuid4().hex}",
            name=name,
            misfire_grace_time=None,
        )
        logger.debug("task_scheduled task=%s delay=%.1fs", name, delay_seconds)
