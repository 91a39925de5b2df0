"""Concurrency-limited batch runner for per-entity jobs.

Drives one job (e.g. "claim daily rewards for user X") over every entity the
repository streams:

1. Check the Leader Gate (once per run)
2. Stream entities from the repository, cursor-style
3. Group them into batches of ``batch_size``; run each batch concurrently
4. Wait for the whole batch, then sleep ``batch_delay_seconds`` before the next
5. Persist every entity after its job, whatever the outcome
6. Aggregate per-entity JobOutcomes into a RunSummary

Triggered by a DailyTimer or manually; both go through ``run()``.  A second
``run()`` while one is in progress is rejected.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable

from src.autoclaim.base import EntityRepository, JobOutcome, utc_now
from src.autoclaim.leader import LeaderGate, always_leader

logger = logging.getLogger("autoclaim.sync.batch_runner")

JobFn = Callable[[Any], Awaitable[Any]]
Sleep = Callable[[float], Awaitable[None]]


class RunnerState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


@dataclass
class RunSummary:
    """Result of one BatchRunner run.

    Attributes:
        job:            Job name.
        started_at:     UTC timestamp the run started.
        finished_at:    UTC timestamp the run ended.
        total:          Entities whose job was attempted.
        succeeded:      Jobs that returned normally.
        failed:         Jobs that raised or timed out.
        batches:        Number of batches executed.
        skipped_reason: Why the run did nothing ('not_leader', 'already_running').
        aborted:        True when the entity stream failed mid-run.
        outcomes:       Per-entity results, in completion order.
    """

    job: str
    started_at: datetime = field(default_factory=utc_now)
    finished_at: datetime | None = None
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    batches: int = 0
    skipped_reason: str | None = None
    aborted: bool = False
    outcomes: list[JobOutcome] = field(default_factory=list)

    @property
    def skipped(self) -> bool:
        return self.skipped_reason is not None

    @property
    def failures(self) -> list[JobOutcome]:
        return [o for o in self.outcomes if not o.ok]

    def record(self, outcome: JobOutcome) -> None:
        self.outcomes.append(outcome)
        self.total += 1
        if outcome.ok:
            self.succeeded += 1
        else:
            self.failed += 1


def entity_label(entity: Any) -> str:
    """Return a loggable id for an opaque entity."""
    entity_id = getattr(entity, "entity_id", None)
    return str(entity_id) if entity_id is not None else repr(entity)


class BatchRunner:
    """Run a per-entity job across a streamed entity set in paced batches.

    Usage::

        runner = BatchRunner(repository, name="daily_claims", batch_size=5)
        summary = await runner.run(claim_job)
    """

    def __init__(
        self,
        repository: EntityRepository,
        name: str = "batch",
        batch_size: int = 5,
        batch_delay_seconds: float = 2.0,
        job_timeout_seconds: float | None = 120.0,
        is_leader: LeaderGate = always_leader,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        """Initialize the runner.

        Args:
            repository:          Entity source and persistence boundary.
            name:                Job name used in logs and summaries.
            batch_size:          Maximum number of jobs running at once.
            batch_delay_seconds: Pause between consecutive batches.
            job_timeout_seconds: Upper bound for a single entity job (None = unbounded).
            is_leader:           Leader Gate predicate.
            sleep:               Awaitable sleep (injected by tests).
        """
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        self._repository = repository
        self.name = name
        self._batch_size = batch_size
        self._batch_delay = batch_delay_seconds
        self._job_timeout = job_timeout_seconds
        self._is_leader = is_leader
        self._sleep = sleep
        self._running = False
        self.last_summary: RunSummary | None = None

    @property
    def state(self) -> RunnerState:
        return RunnerState.RUNNING if self._running else RunnerState.IDLE

    @property
    def is_running(self) -> bool:
        return self._running

    async def run(self, job_fn: JobFn) -> RunSummary:
        """Execute ``job_fn`` once for every streamed entity.

        Never raises: stream failures abort the run and are reported in the
        summary; job failures are isolated per entity.
        """
        summary = RunSummary(job=self.name)

        if self._running:
            logger.warning("%s: run already in progress, ignoring trigger", self.name)
            summary.skipped_reason = "already_running"
            summary.finished_at = utc_now()
            return summary

        if not self._is_leader():
            logger.debug("%s: not leader, skipping run", self.name)
            summary.skipped_reason = "not_leader"
            summary.finished_at = utc_now()
            return summary

        self._running = True
        logger.info("%s: starting batch run (batch_size=%d)", self.name, self._batch_size)
        try:
            await self._run_batches(job_fn, summary)
        finally:
            self._running = False
            summary.finished_at = utc_now()
            self.last_summary = summary

        logger.info(
            "%s: run complete, %d entities in %d batches, %d ok, %d failed%s",
            self.name,
            summary.total,
            summary.batches,
            summary.succeeded,
            summary.failed,
            " (aborted)" if summary.aborted else "",
        )
        return summary

    async def _run_batches(self, job_fn: JobFn, summary: RunSummary) -> None:
        batch: list[Any] = []
        try:
            async for entity in self._repository.stream_entities_with_credentials():
                batch.append(entity)
                if len(batch) >= self._batch_size:
                    await self._run_batch(batch, job_fn, summary)
                    batch = []
        except Exception as exc:
            logger.error("%s: entity stream failed, abandoning run: %s", self.name, exc)
            summary.aborted = True
            return

        if batch:
            await self._run_batch(batch, job_fn, summary)

    async def _run_batch(self, batch: list[Any], job_fn: JobFn, summary: RunSummary) -> None:
        # Pace between batches, not before the first or after the last
        if summary.batches > 0 and self._batch_delay > 0:
            await self._sleep(self._batch_delay)

        summary.batches += 1
        logger.debug("%s: batch %d with %d entities", self.name, summary.batches, len(batch))
        outcomes = await asyncio.gather(*(self._run_entity(e, job_fn) for e in batch))
        for outcome in outcomes:
            summary.record(outcome)

    async def _run_entity(self, entity: Any, job_fn: JobFn) -> JobOutcome:
        entity_id = entity_label(entity)
        try:
            if self._job_timeout is not None:
                value = await asyncio.wait_for(job_fn(entity), self._job_timeout)
            else:
                value = await job_fn(entity)
            outcome = JobOutcome.success(entity_id, value)
        except asyncio.TimeoutError:
            logger.warning("%s: job for %s timed out after %ss", self.name, entity_id, self._job_timeout)
            outcome = JobOutcome.failure(entity_id, f"timed out after {self._job_timeout}s")
        except Exception as exc:
            logger.warning("%s: job for %s failed: %s", self.name, entity_id, exc)
            outcome = JobOutcome.failure(entity_id, str(exc) or type(exc).__name__)

        try:
            await self._repository.persist(entity)
        except Exception as exc:
            logger.error("%s: failed to persist %s: %s", self.name, entity_id, exc)
            outcome.persisted = False

        return outcome
