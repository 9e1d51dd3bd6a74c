"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from aiah.ai import provider
from aiah.ai.rate_limit import RateLimiter
from aiah.api.games import router as games_router
from aiah.api.keys import router as keys_router
from aiah.api.personas import router as personas_router
from aiah.api.rounds import router as rounds_router
from aiah.api.users import router as users_router
from aiah.config import Settings
from aiah.core.errors import GameError
from aiah.core.game_loop import GameRuntime
from aiah.core.seeding import seed_if_empty
from aiah.core.tasks import APSchedulerTasks
from aiah.db.engine import create_engine, create_tables, get_session
from aiah.db.repository import Repository

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup: create engine/tables, seed cards, start the task scheduler."""
    settings: Settings = app.state.settings
    engine = create_engine(settings.database_url)
    await create_tables(engine)
    app.state.engine = engine

    if settings.aiah_seed_starter_pack:
        async with get_session(engine) as session:
            await seed_if_empty(Repository(session))

    tasks = APSchedulerTasks()
    tasks.start()
    rate_limiter = RateLimiter.from_settings(settings)
    if not rate_limiter.configured:
        logger.info("rate_limiter_unconfigured fail_open=%s", settings.aiah_rate_limit_fail_open)

    app.state.runtime = GameRuntime(
        engine=engine,
        settings=settings,
        scheduler=tasks,
        rate_limiter=rate_limiter,
    )

    yield

    tasks.shutdown()
    await rate_limiter.close()
    await provider.close_clients()
    await engine.dispose()


async def game_error_handler(request: Request, exc: GameError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the AI Against Humanity FastAPI application."""
    settings = settings or Settings()

    logging.basicConfig(
        level=getattr(logging, settings.aiah_log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(
        title="AI Against Humanity",
        version="0.1.0",
        description="A party card game where humans and AI personas compete for the judge's laugh",
        docs_url="/docs" if not settings.is_production else None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.add_exception_handler(GameError, game_error_handler)  # type: ignore[arg-type]

    app.include_router(users_router)
    app.include_router(games_router)
    app.include_router(rounds_router)
    app.include_router(keys_router)
    app.include_router(personas_router)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok", "env": settings.aiah_env}

    return app


app = create_app()
