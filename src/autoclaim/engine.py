"""Composition root for the AutoClaim sync engine.

Builds every long-lived object once at process start and wires them
together by reference:

    httpx.AsyncClient ─┬─ CrunchyrollClient ── TokenCache
                       ├─ U2Feed
                       ├─ HoyolabClient ─┐
                       └─ EndfieldClient ┴─ DailyClaimJob ── BatchRunner ── DailyTimer
    FeedSource + DedupCache ── Poller ── IntervalTimer   (one per enabled feed)

Timers and manual triggers both go through ``run_daily_claims()`` and
``tick_feed()``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from src.autoclaim.adapters import get_feed_source
from src.autoclaim.adapters.endfield import EndfieldClient
from src.autoclaim.adapters.hoyolab import HoyolabClient
from src.autoclaim.base import EntityRepository, FeedSource, Notifier, RecipientDirectory
from src.autoclaim.claims import DailyClaimJob
from src.autoclaim.config_loader import EngineConfig, FeedConfig
from src.autoclaim.leader import LeaderGate, replica_gate
from src.autoclaim.sync.batch_runner import BatchRunner, RunSummary
from src.autoclaim.sync.dedup import DedupCache
from src.autoclaim.sync.poller import Poller, TickResult
from src.autoclaim.sync.timers import DailyTimer, IntervalTimer
from src.autoclaim.token_cache import TokenCache
from src.config import Settings

logger = logging.getLogger("autoclaim.engine")


class Engine:
    """Own the caches, pollers, runner and timers for one process."""

    def __init__(
        self,
        settings: Settings,
        config: EngineConfig,
        repository: EntityRepository,
        directory: RecipientDirectory,
        notifier: Notifier,
        http_client: httpx.AsyncClient | None = None,
        is_leader: LeaderGate | None = None,
    ) -> None:
        self.settings = settings
        self.config = config
        self._owns_http_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(settings.http_timeout_seconds)
        )
        self.is_leader = is_leader or replica_gate(settings.replica_index, settings.leader_index)
        self.notifier = notifier

        self.token_cache = TokenCache(
            safety_margin_seconds=config.token_cache.safety_margin_seconds
        )

        # ── Daily claims ──
        dc = config.daily_claims
        self.claim_job = DailyClaimJob(
            hoyolab=HoyolabClient(
                http_client=self.http_client,
                timeout=settings.http_timeout_seconds,
                inter_game_delay_seconds=dc.inter_game_delay_seconds,
            ),
            endfield=EndfieldClient(
                http_client=self.http_client, timeout=settings.http_timeout_seconds
            ),
            notifier=notifier,
        )
        self.batch_runner = BatchRunner(
            repository,
            name="daily_claims",
            batch_size=dc.batch_size,
            batch_delay_seconds=dc.batch_delay_seconds,
            job_timeout_seconds=dc.job_timeout_seconds,
            is_leader=self.is_leader,
        )
        self.daily_timer: DailyTimer | None = None
        if dc.enabled:
            self.daily_timer = DailyTimer(
                dc.hour,
                dc.minute,
                self.run_daily_claims,
                timezone=dc.timezone,
                name="daily_claims",
            )

        # ── Feeds ──
        self.pollers: dict[str, Poller] = {}
        self.feed_timers: dict[str, IntervalTimer] = {}
        for feed_config in config.enabled_feeds():
            source = self._build_feed_source(feed_config)
            if source is None:
                continue
            poller = Poller(
                source,
                DedupCache(feed_config.dedup_capacity, ttl_seconds=feed_config.dedup_ttl_seconds),
                directory,
                notifier,
                is_leader=self.is_leader,
                max_deliveries_per_tick=feed_config.max_deliveries_per_tick,
                delivery_delay_seconds=feed_config.delivery_delay_seconds,
            )
            self.pollers[feed_config.name] = poller
            self.feed_timers[feed_config.name] = IntervalTimer(
                feed_config.poll_interval_seconds, poller.tick, name=f"feed:{feed_config.name}"
            )

        logger.info(
            "Engine built: feeds=%s, daily_claims=%s",
            list(self.pollers) or "none",
            "enabled" if self.daily_timer else "disabled",
        )

    def _build_feed_source(self, feed_config: FeedConfig) -> FeedSource | None:
        try:
            source_cls = get_feed_source(feed_config.name)
        except KeyError:
            logger.warning("Unknown feed '%s' in engine config, skipping", feed_config.name)
            return None
        return source_cls.from_settings(
            self.settings,
            feed_config,
            http_client=self.http_client,
            token_cache=self.token_cache,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start every timer.  Must be called from a running event loop."""
        for timer in self.feed_timers.values():
            timer.start()
        if self.daily_timer is not None:
            self.daily_timer.start()
            logger.info(
                "Daily claims scheduled for %02d:%02d %s",
                self.daily_timer.hour,
                self.daily_timer.minute,
                self.config.daily_claims.timezone,
            )

    async def stop(self) -> None:
        timers: list[Any] = list(self.feed_timers.values())
        if self.daily_timer is not None:
            timers.append(self.daily_timer)
        await asyncio.gather(*(t.stop() for t in timers))
        self.token_cache.clear()
        if self._owns_http_client:
            await self.http_client.aclose()
        logger.info("Engine stopped")

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    async def run_daily_claims(self) -> RunSummary:
        return await self.batch_runner.run(self.claim_job)

    async def tick_feed(self, name: str) -> TickResult:
        """Run one tick of a feed's Poller.

        Raises:
            KeyError: If no Poller exists for ``name``.
        """
        if name not in self.pollers:
            raise KeyError(f"Feed '{name}' is not running. Available: {list(self.pollers)}")
        return await self.pollers[name].tick()

    def status(self) -> dict:
        summary = self.batch_runner.last_summary
        return {
            "leader": self.is_leader(),
            "daily_claims": {
                "state": self.batch_runner.state.value,
                "scheduled": self.daily_timer is not None,
                "last_run": summary_to_dict(summary) if summary else None,
            },
            "feeds": {
                name: {
                    "state": poller.state.value,
                    "running": poller.is_running,
                    "last_tick": tick_to_dict(poller.last_result) if poller.last_result else None,
                }
                for name, poller in self.pollers.items()
            },
        }


def summary_to_dict(summary: RunSummary) -> dict:
    return {
        "job": summary.job,
        "started_at": summary.started_at,
        "finished_at": summary.finished_at,
        "total": summary.total,
        "succeeded": summary.succeeded,
        "failed": summary.failed,
        "batches": summary.batches,
        "skipped_reason": summary.skipped_reason,
        "aborted": summary.aborted,
        "failures": [{"entity_id": f.entity_id, "error": f.error} for f in summary.failures],
    }


def tick_to_dict(result: TickResult) -> dict:
    return {
        "feed": result.feed,
        "state": result.state.value,
        "started_at": result.started_at,
        "skipped_reason": result.skipped_reason,
        "warmed": result.warmed,
        "changes": result.change_count,
        "delivered": result.delivered,
        "failed_deliveries": result.failed_deliveries,
    }
