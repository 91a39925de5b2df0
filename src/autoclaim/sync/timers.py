"""Thin asyncio timers that call a Poller tick or a BatchRunner run.

Timers only decide *when*; everything else lives in the callback.  Any
exception escaping the callback is logged and the timer keeps going.

Usage::

    timer = IntervalTimer(60, poller.tick, name="crunchyroll")
    timer.start()
    ...
    await timer.stop()
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable
from zoneinfo import ZoneInfo

from src.autoclaim.base import utc_now

logger = logging.getLogger("autoclaim.sync.timers")

Callback = Callable[[], Awaitable[Any]]
Sleep = Callable[[float], Awaitable[None]]


class _Timer:
    def __init__(self, callback: Callback, name: str, sleep: Sleep) -> None:
        self._callback = callback
        self.name = name
        self._sleep = sleep
        self._task: asyncio.Task | None = None
        self.fire_count = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.create_task(self._loop(), name=f"timer:{self.name}")
        logger.info("Timer %s started", self.name)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Timer %s stopped", self.name)

    async def fire(self) -> None:
        """Invoke the callback once, logging anything it raises."""
        self.fire_count += 1
        try:
            await self._callback()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Timer %s: callback raised", self.name)

    async def _loop(self) -> None:
        raise NotImplementedError


class IntervalTimer(_Timer):
    """Fire every ``interval_seconds``, measured from the end of the last fire."""

    def __init__(
        self,
        interval_seconds: float,
        callback: Callback,
        name: str = "interval",
        fire_immediately: bool = True,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be > 0, got {interval_seconds}")
        super().__init__(callback, name, sleep)
        self.interval_seconds = interval_seconds
        self._fire_immediately = fire_immediately

    async def _loop(self) -> None:
        if not self._fire_immediately:
            await self._sleep(self.interval_seconds)
        while True:
            await self.fire()
            await self._sleep(self.interval_seconds)


class DailyTimer(_Timer):
    """Fire once a day at ``hour:minute`` wall-clock time in ``timezone``."""

    def __init__(
        self,
        hour: int,
        minute: int,
        callback: Callback,
        timezone: str = "UTC",
        name: str = "daily",
        clock: Callable[[], datetime] = utc_now,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if not 0 <= hour <= 23:
            raise ValueError(f"hour must be 0-23, got {hour}")
        if not 0 <= minute <= 59:
            raise ValueError(f"minute must be 0-59, got {minute}")
        super().__init__(callback, name, sleep)
        self.hour = hour
        self.minute = minute
        self.tz = ZoneInfo(timezone)
        self._clock = clock

    def next_run_after(self, now: datetime) -> datetime:
        """Return the first scheduled instant strictly after ``now``.

        Args:
            now: Aware datetime in any zone.

        Returns:
            Aware datetime in the timer's zone.
        """
        local = now.astimezone(self.tz)
        candidate = local.replace(hour=self.hour, minute=self.minute, second=0, microsecond=0)
        if candidate <= local:
            candidate = (candidate + timedelta(days=1)).replace(
                hour=self.hour, minute=self.minute
            )
        return candidate

    def seconds_until_next(self, now: datetime | None = None) -> float:
        now = now or self._clock()
        return max((self.next_run_after(now) - now).total_seconds(), 0.0)

    async def _loop(self) -> None:
        last_run: datetime | None = None
        while True:
            now = self._clock()
            # An early wake-up must not fire the same slot twice
            next_run = self.next_run_after(max(now, last_run) if last_run else now)
            last_run = next_run
            logger.info("Timer %s: next run at %s", self.name, next_run.isoformat())
            await self._sleep(max((next_run - now).total_seconds(), 0.0))
            await self.fire()
