"""Health check endpoint — public, no auth required."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Request

from src.config import get_settings
from src.services.database import get_pool

router = APIRouter(tags=["system"])
logger = logging.getLogger("autoclaim.health")


@router.get("/health")
async def health_check(request: Request) -> dict:
    """Liveness probe. Returns 200 if the API process is up.

    Also performs a lightweight DB connectivity check and reports whether
    this replica is the leader.
    """
    settings = get_settings()
    db_ok = False
    try:
        pool = get_pool()
        async with pool.acquire() as conn:
            await conn.fetchval("SELECT 1")
        db_ok = True
    except Exception as exc:
        logger.warning("Health check DB probe failed: %s", exc)

    engine = getattr(request.app.state, "engine", None)
    return {
        "status": "healthy" if db_ok and engine is not None else "degraded",
        "version": settings.app_version,
        "environment": settings.environment,
        "database": "connected" if db_ok else "unreachable",
        "engine": "running" if engine is not None else "stopped",
        "leader": engine.is_leader() if engine is not None else False,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
