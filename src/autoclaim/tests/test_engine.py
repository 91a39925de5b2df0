"""Tests for Engine wiring and the manual trigger routes."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from src.autoclaim.adapters import FEED_REGISTRY
from src.autoclaim.adapters.crunchyroll import CrunchyrollFeed
from src.autoclaim.config_loader import EngineConfig
from src.autoclaim.engine import Engine
from src.autoclaim.tests.conftest import (
    InMemoryDirectory,
    InMemoryRepository,
    RecordingNotifier,
    ScriptedFeed,
    make_response,
    make_user,
)
from src.config import Settings, get_settings
from src.routers import jobs

ADMIN_KEY = "test-admin-key"


def make_settings(**overrides) -> Settings:
    values = {"database_url": "postgresql://localhost/autoclaim_test", "admin_api_key": ADMIN_KEY}
    values.update(overrides)
    return Settings(**values)


def make_engine(
    engine_config: EngineConfig,
    settings: Settings | None = None,
    users: list | None = None,
    leader: bool = True,
) -> Engine:
    http = MagicMock()
    http.request = AsyncMock(return_value=make_response(503))
    http.get = AsyncMock(return_value=make_response(503))
    http.post = AsyncMock(return_value=make_response(503))
    return Engine(
        settings or make_settings(),
        engine_config,
        repository=InMemoryRepository(users or []),
        directory=InMemoryDirectory(),
        notifier=RecordingNotifier(),
        http_client=http,
        is_leader=lambda: leader,
    )


class TestEngineWiring:
    def test_u2_skipped_without_feed_url(self, engine_config) -> None:
        engine = make_engine(engine_config)
        assert list(engine.pollers) == ["crunchyroll"]
        assert engine.daily_timer is not None
        assert engine.daily_timer.tz.key == "Asia/Singapore"

    def test_u2_built_with_feed_url(self, engine_config) -> None:
        engine = make_engine(engine_config, make_settings(u2_rss_url="https://u2.dmhy.org/rss?passkey=x"))
        assert sorted(engine.pollers) == ["crunchyroll", "u2"]
        assert engine.feed_timers["u2"].interval_seconds == 600

    def test_feed_sources_built_from_registry(self, engine_config) -> None:
        engine = make_engine(engine_config)
        source = engine.pollers["crunchyroll"]._source
        assert isinstance(source, CrunchyrollFeed)
        assert source.snapshot_size == engine_config.feed("crunchyroll").snapshot_size

    def test_registered_replacement_source_is_used(self, engine_config, monkeypatch) -> None:
        class QuietCrunchyroll(ScriptedFeed):
            SOURCE_ID = "crunchyroll"

            @classmethod
            def from_settings(cls, settings, feed_config, *, http_client=None, token_cache=None):
                return cls([])

        monkeypatch.setitem(FEED_REGISTRY, "crunchyroll", QuietCrunchyroll)
        engine = make_engine(engine_config)
        assert isinstance(engine.pollers["crunchyroll"]._source, QuietCrunchyroll)

    def test_unregistered_feed_skipped(self, engine_config, monkeypatch) -> None:
        monkeypatch.delitem(FEED_REGISTRY, "crunchyroll")
        assert make_engine(engine_config).pollers == {}

    def test_batch_runner_uses_config(self, engine_config) -> None:
        engine = make_engine(engine_config)
        assert engine.batch_runner.name == "daily_claims"
        assert engine.batch_runner._batch_size == 5

    @pytest.mark.asyncio
    async def test_run_daily_claims_persists_users(self, engine_config) -> None:
        users = [make_user("1", endfield=False, notify=False)]
        users[0].hoyolab.games = {"genshin": True}
        engine = make_engine(engine_config, users=users)

        summary = await engine.run_daily_claims()

        assert summary.total == 1
        assert engine.batch_runner._repository.persisted == users
        assert users[0].hoyolab.last_claim is not None

    @pytest.mark.asyncio
    async def test_tick_unknown_feed(self, engine_config) -> None:
        with pytest.raises(KeyError):
            await make_engine(engine_config).tick_feed("nyaa")

    @pytest.mark.asyncio
    async def test_failed_warm_pass_reported_in_status(self, engine_config) -> None:
        engine = make_engine(engine_config)

        result = await engine.tick_feed("crunchyroll")
        status = engine.status()

        assert result.skipped_reason == "fetch_failed"
        assert status["feeds"]["crunchyroll"]["state"] == "cold"
        assert status["feeds"]["crunchyroll"]["last_tick"]["skipped_reason"] == "fetch_failed"

    @pytest.mark.asyncio
    async def test_start_and_stop_timers(self, engine_config) -> None:
        engine = make_engine(engine_config, leader=False)

        engine.start()
        await asyncio.sleep(0)
        assert engine.feed_timers["crunchyroll"].is_running
        assert engine.daily_timer.is_running

        await engine.stop()
        assert not engine.feed_timers["crunchyroll"].is_running
        assert not engine.daily_timer.is_running


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@pytest.fixture
def app(engine_config) -> FastAPI:
    application = FastAPI()
    application.include_router(jobs.router, prefix="/api/v1")
    application.dependency_overrides[get_settings] = lambda: make_settings()
    application.state.engine = make_engine(engine_config, leader=False)
    return application


@pytest.fixture
def api(app: FastAPI) -> TestClient:
    return TestClient(app)


class TestJobRoutes:
    def test_missing_admin_key(self, api: TestClient) -> None:
        assert api.get("/api/v1/jobs/status").status_code == 401

    def test_wrong_admin_key(self, api: TestClient) -> None:
        response = api.get("/api/v1/jobs/status", headers={"X-Admin-Key": "nope"})
        assert response.status_code == 401

    def test_admin_api_disabled(self, app: FastAPI, api: TestClient) -> None:
        app.dependency_overrides[get_settings] = lambda: make_settings(admin_api_key="")
        response = api.get("/api/v1/jobs/status", headers={"X-Admin-Key": ADMIN_KEY})
        assert response.status_code == 403

    def test_status(self, api: TestClient) -> None:
        response = api.get("/api/v1/jobs/status", headers={"X-Admin-Key": ADMIN_KEY})
        assert response.status_code == 200
        body = response.json()
        assert body["leader"] is False
        assert body["daily_claims"]["state"] == "idle"
        assert "crunchyroll" in body["feeds"]

    def test_manual_run_respects_leader_gate(self, api: TestClient) -> None:
        response = api.post("/api/v1/jobs/daily-claims", headers={"X-Admin-Key": ADMIN_KEY})
        assert response.status_code == 200
        assert response.json()["skipped_reason"] == "not_leader"

    def test_manual_tick(self, api: TestClient) -> None:
        response = api.post(
            "/api/v1/jobs/feeds/crunchyroll/tick", headers={"X-Admin-Key": ADMIN_KEY}
        )
        assert response.status_code == 200
        assert response.json()["skipped_reason"] == "not_leader"

    def test_unknown_feed_is_404(self, api: TestClient) -> None:
        response = api.post("/api/v1/jobs/feeds/nyaa/tick", headers={"X-Admin-Key": ADMIN_KEY})
        assert response.status_code == 404

    def test_engine_missing_is_503(self, app: FastAPI, api: TestClient) -> None:
        app.state.engine = None
        response = api.get("/api/v1/jobs/status", headers={"X-Admin-Key": ADMIN_KEY})
        assert response.status_code == 503
