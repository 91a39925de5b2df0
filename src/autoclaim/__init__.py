"""AutoClaim background sync engine.

This package keeps short-lived upstream credentials and feed dedup state in
memory, polls feeds for new or edited items, and runs the daily reward claim
job over every registered user in paced, concurrency-limited batches.

Subpackages:
    adapters/ — Upstream clients and feed sources (Crunchyroll, U2, HoYoLAB, Endfield)
    sync/     — Dedup cache, feed poller, batch runner, timers

Core modules:
    base          — Shared data models and boundary ABCs
    errors        — Exception taxonomy
    signer        — Canonical request signing
    token_cache   — Named credential cache with single-flight refresh
    leader        — Leader Gate predicates
    claims        — Daily claim job
    config_loader — Load/validate engine_config.yaml
    engine        — Composition root
"""

from src.autoclaim.base import (
    ChangeKind,
    ClaimResult,
    Credential,
    FeedItem,
    FeedSource,
    JobOutcome,
    UserAccount,
)
from src.autoclaim.config_loader import EngineConfig, get_engine_config

__all__ = [
    "ChangeKind",
    "ClaimResult",
    "Credential",
    "EngineConfig",
    "FeedItem",
    "FeedSource",
    "JobOutcome",
    "UserAccount",
    "get_engine_config",
]
