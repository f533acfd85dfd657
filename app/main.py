"""FastAPI application entry point."""

import asyncio
import logging
from contextlib import asynccontextmanager
from collections.abc import AsyncGenerator

import redis.asyncio as aioredis
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings
from app.database import create_engine, create_session_factory
from app.errors import EscrowError, escrow_error_handler
from app.middleware import BodySizeLimitMiddleware, RequestLoggingMiddleware, SecurityHeadersMiddleware
from app.redis import create_redis_pool
from app.routers import accounts, escrow, fees

logger = logging.getLogger(__name__)


def _configure_logging() -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Own the database engine, Redis pool and auto-release sweep for the process."""
    _configure_logging()

    engine = create_engine(settings.database_url, echo=(settings.env == "development"))
    app.state.session_factory = create_session_factory(engine)
    app.state.redis_pool = create_redis_pool(settings.redis_url)

    sweep_task: asyncio.Task | None = None
    sweep_redis: aioredis.Redis | None = None
    if settings.auto_release_enabled:
        from app.services.auto_release import run_auto_release_loop

        sweep_redis = aioredis.Redis(connection_pool=app.state.redis_pool)
        sweep_task = asyncio.create_task(
            run_auto_release_loop(app.state.session_factory, sweep_redis)
        )
        logger.info(
            "Auto-release sweep started (every %ds)", settings.auto_release_interval_seconds
        )

    yield

    # Cleanup
    if sweep_task is not None:
        sweep_task.cancel()
        try:
            await sweep_task
        except asyncio.CancelledError:
            pass
    if sweep_redis is not None:
        await sweep_redis.aclose()
    await app.state.redis_pool.aclose()
    await engine.dispose()


app = FastAPI(
    title="Escrow Payments",
    description="Escrow-held payments between paying companies and receiving professionals",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_exception_handler(EscrowError, escrow_error_handler)  # type: ignore[arg-type]

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Middleware: last added is outermost
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(BodySizeLimitMiddleware, max_bytes=settings.max_body_bytes)
app.add_middleware(RequestLoggingMiddleware)

# Routers
app.include_router(accounts.router)
app.include_router(escrow.router)
app.include_router(fees.router)


@app.get("/health")
async def health() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "ok"}
