"""FastAPI dependency injection for database sessions, repository, and game runtime."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from aiah.config import Settings
from aiah.core.game_loop import GameRuntime
from aiah.db.engine import create_session_factory
from aiah.db.repository import Repository


async def get_engine(request: Request) -> AsyncEngine:
    """Get the database engine from app state."""
    return request.app.state.engine


async def get_session(
    engine: Annotated[AsyncEngine, Depends(get_engine)],
) -> AsyncGenerator[AsyncSession, None]:
    """Yield an async session."""
    factory = create_session_factory(engine)
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:  # Re-raise pattern: roll back on any error
            await session.rollback()
            raise


async def get_repo(session: Annotated[AsyncSession, Depends(get_session)]) -> Repository:
    """Get a repository instance bound to the current session."""
    return Repository(session)


async def get_runtime(request: Request) -> GameRuntime:
    return request.app.state.runtime


async def get_settings(request: Request) -> Settings:
    return request.app.state.settings


RepoDep = Annotated[Repository, Depends(get_repo)]
RuntimeDep = Annotated[GameRuntime, Depends(get_runtime)]
SettingsDep = Annotated[Settings, Depends(get_settings)]
