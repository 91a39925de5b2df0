"""Scheduling primitives: dedup cache, feed poller, batch runner and timers."""

from src.autoclaim.sync.batch_runner import BatchRunner, RunnerState, RunSummary
from src.autoclaim.sync.dedup import DedupCache, DedupEntry
from src.autoclaim.sync.poller import Poller, PollerState, TickResult
from src.autoclaim.sync.timers import DailyTimer, IntervalTimer

__all__ = [
    "BatchRunner",
    "DailyTimer",
    "DedupCache",
    "DedupEntry",
    "IntervalTimer",
    "Poller",
    "PollerState",
    "RunSummary",
    "RunnerState",
    "TickResult",
]
