"""Shared FastAPI dependencies injected into route handlers."""

from __future__ import annotations

import hmac
from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request

from src.autoclaim.engine import Engine
from src.config import Settings, get_settings


def get_engine(request: Request) -> Engine:
    """Return the Engine built by the app lifespan."""
    engine: Engine | None = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Engine not running")
    return engine


async def require_admin_key(
    settings: Annotated[Settings, Depends(get_settings)],
    x_admin_key: Annotated[str | None, Header()] = None,
) -> None:
    """Guard manual triggers with the ``X-Admin-Key`` header."""
    if not settings.admin_api_key:
        raise HTTPException(status_code=403, detail="Admin API disabled")
    if not x_admin_key or not hmac.compare_digest(x_admin_key, settings.admin_api_key):
        raise HTTPException(status_code=401, detail="Invalid admin key")


# Annotated shortcuts for route signatures
CurrentEngine = Annotated[Engine, Depends(get_engine)]
AppSettings = Annotated[Settings, Depends(get_settings)]
AdminKey = Depends(require_admin_key)
