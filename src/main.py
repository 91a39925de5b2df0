"""AutoClaim service — FastAPI application entry point.

The HTTP surface is small (health + manual triggers); the real work is done
by the Engine's timers, started in the lifespan.

Run locally:
    uvicorn src.main:app --port 8000
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

from fastapi import FastAPI

from src.autoclaim.base import Notifier
from src.autoclaim.config_loader import get_engine_config
from src.autoclaim.engine import Engine
from src.config import Settings, get_settings
from src.routers import health, jobs
from src.services.database import (
    PostgresRecipientDirectory,
    PostgresUserRepository,
    close_pool,
    ensure_schema,
    init_pool,
)
from src.services.notifier import LoggingNotifier, WebhookNotifier

# ---------- Logging ----------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    stream=sys.stdout,
)
logger = logging.getLogger("autoclaim")


def build_notifier(settings: Settings) -> Notifier:
    if settings.notify_webhook_url:
        return WebhookNotifier(
            settings.notify_webhook_url,
            token=settings.notify_webhook_token,
            timeout=settings.http_timeout_seconds,
        )
    logger.warning("NOTIFY_WEBHOOK_URL not set, notifications will only be logged")
    return LoggingNotifier()


# ---------- Lifespan ----------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup / shutdown hooks."""
    settings = get_settings()
    logging.getLogger().setLevel(settings.log_level.upper())
    logger.info(
        "Starting AutoClaim v%s [%s] replica=%d",
        settings.app_version,
        settings.environment,
        settings.replica_index,
    )

    pool = await init_pool(settings)
    await ensure_schema(pool)

    config = get_engine_config(Path(settings.engine_config_path) if settings.engine_config_path else None)
    engine = Engine(
        settings,
        config,
        repository=PostgresUserRepository(pool),
        directory=PostgresRecipientDirectory(pool),
        notifier=build_notifier(settings),
    )
    app.state.engine = engine
    if settings.enable_scheduler:
        engine.start()

    yield

    app.state.engine = None
    await engine.stop()
    await close_pool()
    logger.info("AutoClaim shut down")


# ---------- App factory ----------

def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title="AutoClaim API",
        description=(
            "Background sync engine for daily game reward claims and "
            "anime / torrent feed notifications."
        ),
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # ---------- Health check (outside v1 prefix, always at /health) ----------
    app.include_router(health.router)

    # ---------- API v1 routes ----------
    app.include_router(jobs.router, prefix="/api/v1")

    return app


app = create_app()
