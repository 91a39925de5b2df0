"""Tests for the bounded dedup cache."""

from __future__ import annotations

import pytest

from src.autoclaim.base import ChangeKind
from src.autoclaim.sync.dedup import DedupCache
from src.autoclaim.tests.conftest import FakeClock


class TestClassify:
    def test_unseen_identity_is_new(self) -> None:
        cache = DedupCache(capacity=10)
        assert cache.classify("a", "v1") is ChangeKind.NEW
        assert "a" in cache

    def test_same_fingerprint_is_unchanged(self) -> None:
        cache = DedupCache(capacity=10)
        cache.classify("a", "v1")
        assert cache.classify("a", "v1") is ChangeKind.UNCHANGED

    def test_changed_fingerprint_is_edited_and_stored(self) -> None:
        cache = DedupCache(capacity=10)
        cache.classify("a", "v1")
        assert cache.classify("a", "v2") is ChangeKind.EDITED
        assert cache.get("a").fingerprint == "v2"
        assert cache.classify("a", "v2") is ChangeKind.UNCHANGED

    def test_edit_keeps_insertion_position(self) -> None:
        cache = DedupCache(capacity=10)
        for identity in ("a", "b", "c"):
            cache.classify(identity, identity)
        cache.classify("a", "a2")
        assert cache.identities() == ["a", "b", "c"]


class TestPrune:
    def test_never_exceeds_capacity_after_prune(self) -> None:
        cache = DedupCache(capacity=3)
        for n in range(10):
            cache.classify(str(n), "x")
            cache.prune()
            assert len(cache) <= 3

    def test_evicts_oldest_inserted_first(self) -> None:
        cache = DedupCache(capacity=2)
        for identity in ("a", "b", "c", "d"):
            cache.classify(identity, identity)
        assert cache.prune() == 2
        assert cache.identities() == ["c", "d"]

    def test_recently_seen_old_entry_still_evicted_first(self) -> None:
        cache = DedupCache(capacity=2)
        cache.classify("a", "1")
        cache.classify("b", "1")
        cache.classify("a", "1")  # seen again, still oldest by insertion
        cache.classify("c", "1")
        cache.prune()
        assert "a" not in cache
        assert cache.identities() == ["b", "c"]

    def test_noop_within_capacity(self) -> None:
        cache = DedupCache(capacity=5)
        cache.classify("a", "1")
        assert cache.prune() == 0
        assert len(cache) == 1

    def test_ttl_expires_stale_entries(self) -> None:
        clock = FakeClock()
        cache = DedupCache(capacity=10, ttl_seconds=60, clock=clock)
        cache.classify("old", "1")
        clock.advance(30)
        cache.classify("fresh", "1")
        clock.advance(45)

        assert cache.prune() == 1
        assert cache.identities() == ["fresh"]

    def test_ttl_refreshed_by_sighting(self) -> None:
        clock = FakeClock()
        cache = DedupCache(capacity=10, ttl_seconds=60, clock=clock)
        cache.classify("a", "1")
        clock.advance(50)
        cache.classify("a", "1")
        clock.advance(50)
        assert cache.prune() == 0


def test_invalid_capacity_rejected() -> None:
    with pytest.raises(ValueError):
        DedupCache(capacity=0)


def test_clear_empties_cache() -> None:
    cache = DedupCache(capacity=3)
    cache.classify("a", "1")
    cache.clear()
    assert len(cache) == 0
    assert cache.classify("a", "1") is ChangeKind.NEW
