"""Periodic feed poller.

One Poller per feed.  Each tick:

1. Skip if the previous tick is still running or this process is not leader
2. COLD: warm pass, seed the DedupCache and suppress every result
3. STEADY: fetch → classify → prune → enrich → deliver

Failures never escape ``tick()``: a failed fetch skips the tick with the cache
untouched, a failed lookup leaves items un-enriched, a failed delivery is
logged and the next recipient is served.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable

from src.autoclaim.base import (
    Change,
    ChangeKind,
    ChangeSet,
    FeedSource,
    Notifier,
    Recipient,
    RecipientDirectory,
    utc_now,
)
from src.autoclaim.errors import UpstreamUnavailable
from src.autoclaim.leader import LeaderGate, always_leader
from src.autoclaim.sync.dedup import DedupCache

logger = logging.getLogger("autoclaim.sync.poller")

Sleep = Callable[[float], Awaitable[None]]


class PollerState(str, Enum):
    COLD = "cold"
    WARMING = "warming"
    STEADY = "steady"


@dataclass
class TickResult:
    """Outcome of one ``Poller.tick()``.

    Attributes:
        feed:              Feed SOURCE_ID.
        state:             Poller state after the tick.
        skipped_reason:    'running', 'not_leader', 'fetch_failed' or None.
        warmed:            True when this tick was the warm pass.
        changes:           NEW/EDITED changes detected (empty for warm passes).
        delivered:         Successful deliveries across all recipients.
        failed_deliveries: Deliveries the Notifier reported as failed.
    """

    feed: str
    state: PollerState
    skipped_reason: str | None = None
    warmed: bool = False
    changes: ChangeSet | None = None
    delivered: int = 0
    failed_deliveries: int = 0
    started_at: datetime = field(default_factory=utc_now)

    @property
    def skipped(self) -> bool:
        return self.skipped_reason is not None

    @property
    def change_count(self) -> int:
        return len(self.changes) if self.changes is not None else 0


class Poller:
    """Drive one FeedSource through its DedupCache to the Notifier."""

    def __init__(
        self,
        source: FeedSource,
        dedup: DedupCache,
        directory: RecipientDirectory,
        notifier: Notifier,
        is_leader: LeaderGate = always_leader,
        max_deliveries_per_tick: int = 5,
        delivery_delay_seconds: float = 0.5,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if max_deliveries_per_tick < 1:
            raise ValueError(
                f"max_deliveries_per_tick must be >= 1, got {max_deliveries_per_tick}"
            )
        self._source = source
        self._dedup = dedup
        self._directory = directory
        self._notifier = notifier
        self._is_leader = is_leader
        self._max_deliveries = max_deliveries_per_tick
        self._delivery_delay = delivery_delay_seconds
        self._sleep = sleep
        self._running = False
        self.state = PollerState.COLD
        self.last_result: TickResult | None = None

    @property
    def feed(self) -> str:
        return self._source.SOURCE_ID

    @property
    def is_running(self) -> bool:
        return self._running

    async def tick(self) -> TickResult:
        """Run one poll cycle.  Never raises."""
        if self._running:
            logger.debug("%s: previous tick still running, skipping", self.feed)
            return TickResult(self.feed, self.state, skipped_reason="running")

        if not self._is_leader():
            return TickResult(self.feed, self.state, skipped_reason="not_leader")

        self._running = True
        try:
            if self.state is PollerState.STEADY:
                result = await self._steady_tick()
            else:
                result = await self._warm()
        finally:
            self._running = False

        self.last_result = result
        return result

    # ------------------------------------------------------------------
    # Warm pass
    # ------------------------------------------------------------------

    async def _warm(self) -> TickResult:
        self.state = PollerState.WARMING
        try:
            snapshot = await self._source.fetch_snapshot()
        except asyncio.CancelledError:
            self.state = PollerState.COLD
            logger.info("%s: warm pass cancelled, retrying next tick", self.feed)
            raise
        except Exception as exc:
            self.state = PollerState.COLD
            logger.warning("%s: warm pass failed, retrying next tick: %s", self.feed, exc)
            return TickResult(self.feed, self.state, skipped_reason="fetch_failed")

        for item in snapshot:
            self._dedup.classify(item.identity, item.fingerprint)
        self._dedup.prune()

        self.state = PollerState.STEADY
        logger.info(
            "%s: warm pass seeded %d items, notifications suppressed",
            self.feed,
            len(self._dedup),
        )
        return TickResult(self.feed, self.state, warmed=True)

    # ------------------------------------------------------------------
    # Steady-state tick
    # ------------------------------------------------------------------

    async def _steady_tick(self) -> TickResult:
        try:
            snapshot = await self._source.fetch_snapshot()
        except UpstreamUnavailable as exc:
            logger.warning("%s: %s, skipping tick", self.feed, exc)
            return TickResult(self.feed, self.state, skipped_reason="fetch_failed")
        except Exception as exc:
            logger.error("%s: unexpected fetch error, skipping tick: %s", self.feed, exc)
            return TickResult(self.feed, self.state, skipped_reason="fetch_failed")

        changes = ChangeSet(feed=self.feed)
        for item in snapshot:
            kind = self._dedup.classify(item.identity, item.fingerprint)
            if kind is not ChangeKind.UNCHANGED:
                changes.changes.append(Change(item, kind))
        self._dedup.prune()

        result = TickResult(self.feed, self.state, changes=changes)
        if not changes:
            logger.debug("%s: no changes", self.feed)
            return result

        logger.info("%s: %d new or edited items", self.feed, len(changes))
        await self._enrich(changes)
        await self._deliver(changes, result)
        return result

    async def _enrich(self, changes: ChangeSet) -> None:
        group_keys = list(
            dict.fromkeys(c.item.group_key for c in changes if c.item.group_key)
        )
        if not group_keys:
            return

        looked_up = await asyncio.gather(
            *(self._source.lookup(key) for key in group_keys),
            return_exceptions=True,
        )
        extras: dict[str, dict] = {}
        for key, value in zip(group_keys, looked_up):
            if isinstance(value, BaseException):
                logger.warning("%s: lookup for %s failed: %s", self.feed, key, value)
            elif value:
                extras[key] = value

        for change in changes:
            extra = extras.get(change.item.group_key or "")
            if extra:
                change.item.payload.update(extra)

    async def _deliver(self, changes: ChangeSet, result: TickResult) -> None:
        try:
            recipients = await self._directory.list_recipients(self.feed)
        except Exception as exc:
            logger.error("%s: could not list recipients: %s", self.feed, exc)
            return

        for recipient in recipients:
            await self._deliver_to(recipient, changes, result)

    async def _deliver_to(
        self, recipient: Recipient, changes: ChangeSet, result: TickResult
    ) -> None:
        matching = [c for c in changes if self._source.matches(recipient, c.item)]
        if len(matching) > self._max_deliveries:
            logger.info(
                "%s: capping %d changes to %d for %s",
                self.feed,
                len(matching),
                self._max_deliveries,
                recipient.recipient_id,
            )
            matching = matching[: self._max_deliveries]

        for index, change in enumerate(matching):
            if index > 0 and self._delivery_delay > 0:
                await self._sleep(self._delivery_delay)
            try:
                delivery = await self._notifier.deliver(
                    recipient.recipient_id, self._source.render(change)
                )
            except Exception as exc:
                logger.warning(
                    "%s: delivery to %s raised: %s", self.feed, recipient.recipient_id, exc
                )
                result.failed_deliveries += 1
                continue

            if delivery.delivered:
                result.delivered += 1
            else:
                result.failed_deliveries += 1
                logger.warning(
                    "%s: delivery to %s failed: %s",
                    self.feed,
                    recipient.recipient_id,
                    delivery.error,
                )
