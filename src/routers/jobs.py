"""Manual triggers for the daily claim run and feed ticks.

Endpoints (all require ``X-Admin-Key``):
    POST /jobs/daily-claims        — Run the daily claim batch now
    POST /jobs/feeds/{feed}/tick   — Run one poll cycle of a feed
    GET  /jobs/status              — Engine, runner and poller state

These call exactly the same ``run()`` / ``tick()`` as the timers, so the
run-in-progress and leader guards apply to both.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException

from src.autoclaim.engine import summary_to_dict, tick_to_dict
from src.dependencies import AdminKey, CurrentEngine
from src.models.jobs import EngineStatusRead, RunSummaryRead, TickResultRead

router = APIRouter(prefix="/jobs", tags=["jobs"], dependencies=[AdminKey])
logger = logging.getLogger("autoclaim.jobs")


@router.post("/daily-claims", response_model=RunSummaryRead)
async def trigger_daily_claims(engine: CurrentEngine) -> Any:
    logger.info("Manual daily-claims run requested")
    summary = await engine.run_daily_claims()
    return summary_to_dict(summary)


@router.post("/feeds/{feed}/tick", response_model=TickResultRead)
async def trigger_feed_tick(feed: str, engine: CurrentEngine) -> Any:
    try:
        result = await engine.tick_feed(feed)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Feed '{feed}' is not running")
    return tick_to_dict(result)


@router.get("/status", response_model=EngineStatusRead)
async def engine_status(engine: CurrentEngine) -> Any:
    return engine.status()
