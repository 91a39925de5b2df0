"""Load, validate, and hot-reload the AutoClaim engine configuration.

The config lives in ``engine_config.yaml`` alongside this module.  At startup
it is loaded once and cached.  Call ``reload_engine_config()`` to re-read from
disk; timers and pollers built from the old config keep running until the
engine is restarted.

Usage::

    from src.autoclaim.config_loader import get_engine_config

    config = get_engine_config()
    config.daily_claims.batch_size      # 5
    config.feed("u2").dedup_capacity    # 500
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

logger = logging.getLogger("autoclaim.config")

# Path to the YAML file sitting next to this module
_CONFIG_PATH = Path(__file__).parent / "engine_config.yaml"


# ---------------------------------------------------------------------------
# Typed config sections
# ---------------------------------------------------------------------------


@dataclass
class TokenCacheConfig:
    safety_margin_seconds: float = 30.0


@dataclass
class DailyClaimsConfig:
    """Scheduled per-user claim run."""

    enabled: bool
    hour: int
    minute: int
    timezone: str
    batch_size: int
    batch_delay_seconds: float
    job_timeout_seconds: float
    inter_game_delay_seconds: float


@dataclass
class FeedConfig:
    """One polled feed.

    Attributes:
        name:                     Feed SOURCE_ID.
        enabled:                  Whether a Poller is built for it.
        poll_interval_seconds:    IntervalTimer period.
        snapshot_size:            Items requested per fetch.
        dedup_capacity:           DedupCache capacity; must be ≥ snapshot_size.
        dedup_ttl_seconds:        Optional DedupCache TTL.
        max_deliveries_per_tick:  Per-recipient cap per tick.
        delivery_delay_seconds:   Pause between consecutive deliveries.
        options:                  Source-specific extras (locale, default filter).
    """

    name: str
    enabled: bool
    poll_interval_seconds: float
    snapshot_size: int
    dedup_capacity: int
    dedup_ttl_seconds: float | None
    max_deliveries_per_tick: int
    delivery_delay_seconds: float
    options: dict[str, Any] = field(default_factory=dict)


@dataclass
class EngineConfig:
    """Complete, validated engine configuration."""

    version: str
    token_cache: TokenCacheConfig
    daily_claims: DailyClaimsConfig
    feeds: dict[str, FeedConfig]
    _raw: dict = field(default_factory=dict, repr=False)

    def feed(self, name: str) -> FeedConfig:
        """Return the config for one feed.

        Raises:
            KeyError: If the feed is not configured.
        """
        if name not in self.feeds:
            raise KeyError(f"Feed '{name}' is not configured. Available: {list(self.feeds)}")
        return self.feeds[name]

    def enabled_feeds(self) -> list[FeedConfig]:
        return [f for f in self.feeds.values() if f.enabled]


# ---------------------------------------------------------------------------
# Loader / validation
# ---------------------------------------------------------------------------


class ConfigValidationError(ValueError):
    """Raised when engine_config.yaml fails validation."""


def _load_yaml(path: Path) -> dict:
    if not path.exists():
        raise FileNotFoundError(f"Engine config not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            return yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigValidationError(f"YAML parse error in {path}: {exc}") from exc


def _validate_and_build(raw: dict) -> EngineConfig:
    """Validate the raw YAML dict and construct an EngineConfig.

    Every problem is collected before raising so one run reports them all.

    Raises:
        ConfigValidationError: If required fields are missing or invalid.
    """
    errors: list[str] = []

    def _number(section: dict, key: str, path: str, default: Any, cast=float) -> Any:
        value = section.get(key, default)
        if value is None:
            return None
        try:
            return cast(value)
        except (TypeError, ValueError):
            errors.append(f"{path}.{key} must be a number, got {value!r}")
            return default

    def _positive(value: Any, path: str) -> None:
        if value is not None and value <= 0:
            errors.append(f"{path} must be > 0, got {value}")

    def _non_negative(value: Any, path: str) -> None:
        if value is not None and value < 0:
            errors.append(f"{path} must be >= 0, got {value}")

    version = str(raw.get("version", "1.0"))

    # ── Token cache ──
    tc_raw = raw.get("token_cache") or {}
    token_cache = TokenCacheConfig(
        safety_margin_seconds=_number(tc_raw, "safety_margin_seconds", "token_cache", 30.0)
    )
    _non_negative(token_cache.safety_margin_seconds, "token_cache.safety_margin_seconds")

    # ── Daily claims ──
    dc_raw = raw.get("daily_claims") or {}
    daily_claims = DailyClaimsConfig(
        enabled=bool(dc_raw.get("enabled", True)),
        hour=_number(dc_raw, "hour", "daily_claims", 9, int),
        minute=_number(dc_raw, "minute", "daily_claims", 0, int),
        timezone=str(dc_raw.get("timezone", "Asia/Singapore")),
        batch_size=_number(dc_raw, "batch_size", "daily_claims", 5, int),
        batch_delay_seconds=_number(dc_raw, "batch_delay_seconds", "daily_claims", 2.0),
        job_timeout_seconds=_number(dc_raw, "job_timeout_seconds", "daily_claims", 120.0),
        inter_game_delay_seconds=_number(dc_raw, "inter_game_delay_seconds", "daily_claims", 1.0),
    )
    if not 0 <= daily_claims.hour <= 23:
        errors.append(f"daily_claims.hour must be 0-23, got {daily_claims.hour}")
    if not 0 <= daily_claims.minute <= 59:
        errors.append(f"daily_claims.minute must be 0-59, got {daily_claims.minute}")
    try:
        ZoneInfo(daily_claims.timezone)
    except (ZoneInfoNotFoundError, ValueError):
        errors.append(f"daily_claims.timezone {daily_claims.timezone!r} is not a known IANA zone")
    _positive(daily_claims.batch_size, "daily_claims.batch_size")
    _non_negative(daily_claims.batch_delay_seconds, "daily_claims.batch_delay_seconds")
    _positive(daily_claims.job_timeout_seconds, "daily_claims.job_timeout_seconds")
    _non_negative(daily_claims.inter_game_delay_seconds, "daily_claims.inter_game_delay_seconds")

    # ── Feeds ──
    feeds: dict[str, FeedConfig] = {}
    for name, f_raw in (raw.get("feeds") or {}).items():
        path = f"feeds.{name}"
        if not isinstance(f_raw, dict):
            errors.append(f"{path} must be a mapping")
            continue
        feed = FeedConfig(
            name=name,
            enabled=bool(f_raw.get("enabled", True)),
            poll_interval_seconds=_number(f_raw, "poll_interval_seconds", path, 60.0),
            snapshot_size=_number(f_raw, "snapshot_size", path, 50, int),
            dedup_capacity=_number(f_raw, "dedup_capacity", path, 500, int),
            dedup_ttl_seconds=_number(f_raw, "dedup_ttl_seconds", path, None),
            max_deliveries_per_tick=_number(f_raw, "max_deliveries_per_tick", path, 5, int),
            delivery_delay_seconds=_number(f_raw, "delivery_delay_seconds", path, 0.5),
            options=dict(f_raw.get("options") or {}),
        )
        _positive(feed.poll_interval_seconds, f"{path}.poll_interval_seconds")
        _positive(feed.snapshot_size, f"{path}.snapshot_size")
        _positive(feed.dedup_capacity, f"{path}.dedup_capacity")
        _positive(feed.dedup_ttl_seconds, f"{path}.dedup_ttl_seconds")
        _positive(feed.max_deliveries_per_tick, f"{path}.max_deliveries_per_tick")
        _non_negative(feed.delivery_delay_seconds, f"{path}.delivery_delay_seconds")
        # Cache must hold at least one full snapshot
        if feed.dedup_capacity < feed.snapshot_size:
            errors.append(
                f"{path}.dedup_capacity ({feed.dedup_capacity}) must be >= "
                f"snapshot_size ({feed.snapshot_size})"
            )
        feeds[name] = feed

    if errors:
        raise ConfigValidationError(
            f"engine_config.yaml has {len(errors)} validation error(s):\n"
            + "\n".join(f"  • {e}" for e in errors)
        )

    return EngineConfig(
        version=version,
        token_cache=token_cache,
        daily_claims=daily_claims,
        feeds=feeds,
        _raw=raw,
    )


def load_engine_config(path: Path | None = None) -> EngineConfig:
    """Load and validate the engine config from disk.

    Args:
        path: Override path to YAML. Uses the bundled engine_config.yaml by default.
    """
    target = path or _CONFIG_PATH
    config = _validate_and_build(_load_yaml(target))
    logger.info("Loaded engine config v%s from %s", config.version, target)
    return config


# ---------------------------------------------------------------------------
# Global singleton with hot-reload support
# ---------------------------------------------------------------------------

_config: EngineConfig | None = None
_config_lock = threading.Lock()


def get_engine_config(path: Path | None = None) -> EngineConfig:
    """Return the global EngineConfig singleton, loading it on first call."""
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:  # double-checked locking
                _config = load_engine_config(path)
    return _config


def reload_engine_config(path: Path | None = None) -> EngineConfig:
    """Reload the config from disk and replace the global singleton.

    If validation fails, the old config is retained and the error re-raised.
    """
    global _config
    new_config = load_engine_config(path)  # validate before acquiring lock
    with _config_lock:
        old_version = _config.version if _config else "none"
        _config = new_config
    logger.info("Reloaded engine config: %s → %s", old_version, new_config.version)
    return new_config
