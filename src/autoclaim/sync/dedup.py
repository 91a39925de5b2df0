"""Bounded deduplication cache for polled feeds.

Turns an unordered "current state" poll into "new or changed since last
poll" events.  One cache per feed, shared across ticks for the process
lifetime.

Eviction is by insertion order (oldest first), not access time.  An edited
item keeps its original position; only its fingerprint changes.

Usage::

    cache = DedupCache(capacity=500)
    for item in snapshot:
        kind = cache.classify(item.identity, item.fingerprint)
        if kind is not ChangeKind.UNCHANGED:
            changes.append(Change(item, kind))
    cache.prune()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from src.autoclaim.base import ChangeKind, utc_now

logger = logging.getLogger("autoclaim.sync.dedup")


@dataclass
class DedupEntry:
    identity: str
    fingerprint: str
    last_seen_at: datetime


class DedupCache:
    """Insertion-ordered identity → fingerprint map with a hard capacity.

    ``classify`` may grow the cache past capacity within a tick; ``prune``
    brings it back to at most ``capacity`` entries.
    """

    def __init__(
        self,
        capacity: int,
        ttl_seconds: float | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the cache.

        Args:
            capacity:    Maximum number of entries kept after ``prune()``.
            ttl_seconds: Optional; entries not seen for this long are pruned.
            clock:       Returns the current aware UTC datetime.
        """
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self._capacity = capacity
        self._ttl = timedelta(seconds=ttl_seconds) if ttl_seconds else None
        self._clock = clock
        # dict preserves insertion order; value updates keep the position
        self._entries: dict[str, DedupEntry] = {}

    @property
    def capacity(self) -> int:
        return self._capacity

    def classify(self, identity: str, fingerprint: str) -> ChangeKind:
        """Record one sighting and report whether it is new, edited or unchanged."""
        now = self._clock()
        entry = self._entries.get(identity)
        if entry is None:
            self._entries[identity] = DedupEntry(identity, fingerprint, now)
            return ChangeKind.NEW

        entry.last_seen_at = now
        if entry.fingerprint == fingerprint:
            return ChangeKind.UNCHANGED

        logger.debug("Detected edit on %s", identity)
        entry.fingerprint = fingerprint
        return ChangeKind.EDITED

    def prune(self) -> int:
        """Evict expired entries, then the oldest ones beyond capacity.

        Returns:
            Number of entries removed.
        """
        removed = 0
        if self._ttl is not None:
            cutoff = self._clock() - self._ttl
            expired = [k for k, e in self._entries.items() if e.last_seen_at < cutoff]
            for key in expired:
                del self._entries[key]
            removed += len(expired)

        excess = len(self._entries) - self._capacity
        if excess > 0:
            oldest = [key for key, _ in zip(self._entries, range(excess))]
            for key in oldest:
                del self._entries[key]
            removed += excess

        if removed:
            logger.debug("Pruned %d dedup entries (%d remain)", removed, len(self._entries))
        return removed

    def get(self, identity: str) -> DedupEntry | None:
        return self._entries.get(identity)

    def identities(self) -> list[str]:
        """Identities oldest-first."""
        return list(self._entries)

    def clear(self) -> None:
        """Reset the cache."""
        self._entries.clear()

    def __contains__(self, identity: object) -> bool:
        return identity in self._entries

    def __len__(self) -> int:
        return len(self._entries)
