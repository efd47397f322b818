"""FastAPI application entrypoint: lifespan, routers, middleware."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from redis.asyncio import Redis
from sqlalchemy import text

from cropcycle.config import get_settings
from cropcycle.database import async_session_factory, engine
from cropcycle.middleware.logging import RequestLoggingMiddleware, configure_structured_logging
from cropcycle.routes import crops, stages, tasks
from cropcycle.services.stage_registry import load_stage_registry

logger = structlog.get_logger("cropcycle")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application startup / shutdown lifecycle.

    Startup:
      1. Initialize structured logging
      2. Verify the database and warm the stage registry
      3. Connect to Redis for lifecycle events (optional)

    Shutdown:
      1. Close Redis connection pool
      2. Dispose SQLAlchemy engine
    """
    configure_structured_logging()
    settings = get_settings()
    logger.info(
        "cropcycle_starting",
        log_level=settings.log_level,
        publish_events=settings.publish_events,
        inventory_enabled=bool(settings.inventory_base_url),
    )

    redis: Redis | None = None
    try:
        async with engine.connect() as connection:
            await connection.execute(text("SELECT 1"))

        async with async_session_factory() as session:
            registry = await load_stage_registry(session, refresh=True)
        app.state.stage_count = len(registry)

        if settings.publish_events:
            redis = Redis.from_url(settings.redis_url, decode_responses=True)
            await redis.ping()
        app.state.redis = redis
    except Exception as exc:
        logger.exception("startup_failure", error=str(exc))
        raise

    yield

    logger.info("cropcycle_shutting_down")
    if redis is not None:
        await redis.aclose()
    await engine.dispose()


app = FastAPI(
    title="Cropcycle API",
    description=(
        "Crop growth lifecycle engine: tracks planted trays through their "
        "growth stages, keeps batches in lockstep, and schedules stage "
        "transitions, watering suspension and harvest reminders."
    ),
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# ── CORS ────────────────────────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)


# ── Health check ────────────────────────────────────────────────────────────
@app.get("/health", tags=["system"])
async def health_check() -> dict[str, str]:
    """Basic health check: verifies the API process is alive."""
    return {
        "status": "ok",
        "service": "cropcycle",
        "version": "0.1.0",
    }


# ── Router registration ────────────────────────────────────────────────────
app.include_router(crops.router, prefix="/api/v1")
app.include_router(stages.router, prefix="/api/v1")
app.include_router(tasks.router, prefix="/api/v1")
