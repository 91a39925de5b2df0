"""Tests for engine_config.yaml loading and validation."""

from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from src.autoclaim.config_loader import (
    ConfigValidationError,
    EngineConfig,
    _validate_and_build,
    load_engine_config,
    reload_engine_config,
)


def _minimal(**overrides) -> dict:
    raw = {
        "version": "1.0",
        "daily_claims": {"hour": 9, "minute": 0, "timezone": "UTC"},
        "feeds": {"u2": {"snapshot_size": 50, "dedup_capacity": 100}},
    }
    raw.update(overrides)
    return raw


class TestConfigLoading:
    """Tests for the bundled engine_config.yaml."""

    def test_load_default_config(self, engine_config: EngineConfig) -> None:
        """The bundled engine_config.yaml loads without errors."""
        assert engine_config.version == "1.0"
        assert engine_config.token_cache.safety_margin_seconds == 30.0

    def test_daily_claims_defaults(self, engine_config: EngineConfig) -> None:
        """Claims run at 09:00 Singapore time in batches of five."""
        dc = engine_config.daily_claims
        assert (dc.hour, dc.minute, dc.timezone) == (9, 0, "Asia/Singapore")
        assert dc.batch_size == 5
        assert dc.batch_delay_seconds == 2.0

    def test_both_feeds_configured(self, engine_config: EngineConfig) -> None:
        """Crunchyroll and U2 feeds are present and enabled."""
        names = [f.name for f in engine_config.enabled_feeds()]
        assert names == ["crunchyroll", "u2"]
        assert engine_config.feed("crunchyroll").options["locale"] == "en-US"
        assert "BDMV" in engine_config.feed("u2").options["default_filter"]

    def test_dedup_capacity_covers_snapshot(self, engine_config: EngineConfig) -> None:
        """Every feed's cache holds at least one full snapshot."""
        for feed in engine_config.feeds.values():
            assert feed.dedup_capacity >= feed.snapshot_size

    def test_unknown_feed_raises_key_error(self, engine_config: EngineConfig) -> None:
        with pytest.raises(KeyError):
            engine_config.feed("nyaa")

    def test_load_from_custom_path(self, tmp_path: Path) -> None:
        """load_engine_config() accepts an override path."""
        path = tmp_path / "engine.yaml"
        path.write_text(
            textwrap.dedent(
                """
                version: "2.0"
                daily_claims:
                  hour: 6
                  minute: 30
                  timezone: Europe/Berlin
                feeds:
                  crunchyroll:
                    enabled: false
                """
            )
        )
        config = load_engine_config(path)
        assert config.version == "2.0"
        assert config.daily_claims.minute == 30
        assert config.enabled_feeds() == []

    def test_missing_file_raises(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_engine_config(tmp_path / "missing.yaml")

    def test_bad_yaml_raises_validation_error(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text("feeds: [unclosed\n")
        with pytest.raises(ConfigValidationError):
            load_engine_config(path)

    def test_reload_replaces_singleton(self, tmp_path: Path) -> None:
        """reload_engine_config() returns the newly loaded config."""
        path = tmp_path / "engine.yaml"
        path.write_text('version: "3.1"\n')
        config = reload_engine_config(path)
        assert config.version == "3.1"
        reload_engine_config()


class TestConfigValidation:
    """Tests for _validate_and_build()."""

    def test_minimal_config_valid(self) -> None:
        config = _validate_and_build(_minimal())
        assert config.feed("u2").max_deliveries_per_tick == 5
        assert config.feed("u2").dedup_ttl_seconds is None

    def test_hour_out_of_range(self) -> None:
        with pytest.raises(ConfigValidationError, match="hour"):
            _validate_and_build(_minimal(daily_claims={"hour": 24, "timezone": "UTC"}))

    def test_unknown_timezone(self) -> None:
        with pytest.raises(ConfigValidationError, match="IANA"):
            _validate_and_build(_minimal(daily_claims={"timezone": "Mars/Olympus_Mons"}))

    def test_capacity_smaller_than_snapshot(self) -> None:
        raw = _minimal(feeds={"u2": {"snapshot_size": 50, "dedup_capacity": 10}})
        with pytest.raises(ConfigValidationError, match="dedup_capacity"):
            _validate_and_build(raw)

    def test_non_numeric_value(self) -> None:
        raw = _minimal(feeds={"u2": {"poll_interval_seconds": "often"}})
        with pytest.raises(ConfigValidationError, match="must be a number"):
            _validate_and_build(raw)

    def test_feed_must_be_mapping(self) -> None:
        with pytest.raises(ConfigValidationError, match="mapping"):
            _validate_and_build(_minimal(feeds={"u2": "yes"}))

    def test_all_errors_reported_together(self) -> None:
        """Multiple problems are collected into one exception."""
        raw = _minimal(
            daily_claims={"hour": 30, "minute": 99, "batch_size": 0, "timezone": "UTC"},
        )
        with pytest.raises(ConfigValidationError) as exc_info:
            _validate_and_build(raw)
        message = str(exc_info.value)
        assert "3 validation error(s)" in message
        assert "hour" in message and "minute" in message and "batch_size" in message

    def test_validation_error_is_value_error(self) -> None:
        with pytest.raises(ValueError):
            _validate_and_build(_minimal(token_cache={"safety_margin_seconds": -1}))
