"""Pydantic response models for the manual job-trigger endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import Field

from src.models.base import AutoClaimBase


class EntityFailure(AutoClaimBase):
    entity_id: str
    error: str | None = None


class RunSummaryRead(AutoClaimBase):
    """Result of one daily-claims BatchRunner run."""

    job: str
    started_at: datetime
    finished_at: datetime | None = None
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    batches: int = 0
    skipped_reason: str | None = None
    aborted: bool = False
    failures: list[EntityFailure] = Field(default_factory=list)


class TickResultRead(AutoClaimBase):
    """Result of one feed Poller tick."""

    feed: str
    state: str
    started_at: datetime
    skipped_reason: str | None = None
    warmed: bool = False
    changes: int = 0
    delivered: int = 0
    failed_deliveries: int = 0


class DailyClaimsStatus(AutoClaimBase):
    state: str
    scheduled: bool
    last_run: RunSummaryRead | None = None


class FeedStatus(AutoClaimBase):
    state: str
    running: bool
    last_tick: TickResultRead | None = None


class EngineStatusRead(AutoClaimBase):
    leader: bool
    daily_claims: DailyClaimsStatus
    feeds: dict[str, FeedStatus] = Field(default_factory=dict)
