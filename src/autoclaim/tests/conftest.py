"""Shared fixtures and in-memory boundary fakes for AutoClaim engine tests."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.autoclaim.base import (
    DeliveryResult,
    EndfieldProfile,
    EntityRepository,
    FeedItem,
    FeedSource,
    HoyolabProfile,
    Notifier,
    Recipient,
    RecipientDirectory,
    UserAccount,
)
from src.autoclaim.config_loader import EngineConfig, load_engine_config
from src.autoclaim.errors import UpstreamUnavailable

T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Time
# ---------------------------------------------------------------------------


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class RecordingSleep:
    """Drop-in for asyncio.sleep that records delays and only yields."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        await asyncio.sleep(0)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def recorded_sleep() -> RecordingSleep:
    return RecordingSleep()


# ---------------------------------------------------------------------------
# Boundary fakes
# ---------------------------------------------------------------------------


class InMemoryRepository(EntityRepository):
    """Yields a fixed entity list; optionally fails after N entities."""

    def __init__(self, entities: list[Any], fail_after: int | None = None) -> None:
        self.entities = list(entities)
        self.fail_after = fail_after
        self.persisted: list[Any] = []
        self.fail_persist_for: set[str] = set()

    async def stream_entities_with_credentials(self) -> AsyncIterator[Any]:
        for index, entity in enumerate(self.entities):
            if self.fail_after is not None and index >= self.fail_after:
                raise ConnectionError("cursor lost")
            yield entity

    async def persist(self, entity: Any) -> None:
        if getattr(entity, "entity_id", None) in self.fail_persist_for:
            raise ConnectionError("write failed")
        self.persisted.append(entity)


class InMemoryDirectory(RecipientDirectory):
    def __init__(self, recipients: dict[str, list[Recipient]] | None = None) -> None:
        self.recipients = recipients or {}

    async def list_recipients(self, feed: str) -> list[Recipient]:
        return list(self.recipients.get(feed, []))


class RecordingNotifier(Notifier):
    """Records deliveries; reports failure for recipients in ``fail_for``."""

    def __init__(self, fail_for: set[str] | None = None) -> None:
        self.fail_for = fail_for or set()
        self.deliveries: list[tuple[str, dict]] = []

    async def deliver(self, recipient_id: str, payload: dict) -> DeliveryResult:
        if recipient_id in self.fail_for:
            return DeliveryResult(recipient_id, delivered=False, error="unreachable")
        self.deliveries.append((recipient_id, payload))
        return DeliveryResult(recipient_id, delivered=True)

    def for_recipient(self, recipient_id: str) -> list[dict]:
        return [p for r, p in self.deliveries if r == recipient_id]


class ScriptedFeed(FeedSource):
    """Feed returning queued snapshots; an Exception in the queue is raised."""

    SOURCE_ID = "scripted"
    DISPLAY_NAME = "Scripted Feed"

    def __init__(self, snapshots: list[Any] | None = None, lookups: dict | None = None) -> None:
        self.snapshots = list(snapshots or [])
        self.lookups = lookups or {}
        self.fetch_count = 0
        self.lookup_calls: list[str] = []

    async def fetch_snapshot(self) -> list[FeedItem]:
        self.fetch_count += 1
        snapshot = self.snapshots.pop(0) if self.snapshots else []
        if isinstance(snapshot, Exception):
            raise snapshot
        return [FeedItem(i.identity, i.fingerprint, dict(i.payload), i.group_key) for i in snapshot]

    async def lookup(self, group_key: str) -> dict | None:
        self.lookup_calls.append(group_key)
        value = self.lookups.get(group_key)
        if isinstance(value, Exception):
            raise value
        return value


def item(identity: str, fingerprint: str | None = None, group_key: str | None = None) -> FeedItem:
    return FeedItem(
        identity=identity,
        fingerprint=fingerprint or identity,
        payload={"title": f"{identity}:{fingerprint or identity}"},
        group_key=group_key,
    )


def unavailable(source: str = "scripted") -> UpstreamUnavailable:
    return UpstreamUnavailable(source, "HTTP 503")


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def directory() -> InMemoryDirectory:
    return InMemoryDirectory({"scripted": [Recipient("chan-1"), Recipient("chan-2")]})


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


def make_user(
    discord_id: str = "1001",
    hoyolab: bool = True,
    endfield: bool = True,
    notify: bool = True,
) -> UserAccount:
    return UserAccount(
        discord_id=discord_id,
        username=f"user{discord_id}",
        hoyolab=HoyolabProfile(
            token="ltoken_v2=abc; ltuid_v2=123",
            games={"genshin": True, "starRail": True, "honkai3": False},
        )
        if hoyolab
        else None,
        endfield=EndfieldProfile(
            cred="cred-0123456789",
            sk_token_cache_key="sk-0123456789",
            game_id="4200001",
        )
        if endfield
        else None,
        notify_on_claim=notify,
    )


# ---------------------------------------------------------------------------
# Mock HTTP clients
# ---------------------------------------------------------------------------


def make_response(status_code: int = 200, json_data: Any = None, text: str = "") -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.text = text
    if isinstance(json_data, Exception):
        response.json = MagicMock(side_effect=json_data)
    else:
        response.json = MagicMock(return_value=json_data if json_data is not None else {})
    return response


@pytest.fixture
def mock_httpx_client() -> MagicMock:
    """Mock httpx.AsyncClient for testing adapters without real API calls."""
    client = MagicMock()
    response = make_response()
    client.get = AsyncMock(return_value=response)
    client.post = AsyncMock(return_value=response)
    client.request = AsyncMock(return_value=response)
    return client


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------


@pytest.fixture
def engine_config() -> EngineConfig:
    """The bundled engine_config.yaml, loaded fresh for each test."""
    return load_engine_config()
