"""Base classes and shared data models for the AutoClaim sync engine.

Every feed adapter subclasses FeedSource; every persistence or delivery
backend implements one of the boundary ABCs below.  These types are the
single vocabulary shared by the token cache, dedup cache, Poller,
BatchRunner, and the per-entity claim job.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, AsyncIterator

logger = logging.getLogger("autoclaim")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------


@dataclass
class Credential:
    """A short-lived credential held by the TokenCache.

    Attributes:
        name:            Cache key (e.g. 'crunchyroll:anonymous').
        access_value:    Bearer token or equivalent sent upstream.
        expires_at:      UTC datetime when the upstream stops accepting it.
        secret_material: Signing secret or refresh token, if the service has one.
        issued_at:       UTC datetime the credential was obtained.
    """

    name: str
    access_value: str
    expires_at: datetime
    secret_material: str | None = None
    issued_at: datetime = field(default_factory=utc_now)

    def __repr__(self) -> str:
        # Never leak token material into logs
        return (
            f"Credential(name={self.name!r}, issued_at={self.issued_at.isoformat()}, "
            f"expires_at={self.expires_at.isoformat()})"
        )


# ---------------------------------------------------------------------------
# Feed items and change sets
# ---------------------------------------------------------------------------


class ChangeKind(str, Enum):
    """Result of classifying one polled item against the dedup cache."""

    NEW = "new"
    EDITED = "edited"
    UNCHANGED = "unchanged"


@dataclass
class FeedItem:
    """One item of a polled feed snapshot.

    Attributes:
        identity:    Stable unique key (episode id, torrent guid).
        fingerprint: Version-sensitive value; a change means the item was edited.
        payload:     Formatted, JSON-serializable item data.
        group_key:   Key for secondary enrichment lookups (e.g. series id).
    """

    identity: str
    fingerprint: str
    payload: dict = field(default_factory=dict)
    group_key: str | None = None


@dataclass
class Change:
    item: FeedItem
    kind: ChangeKind


@dataclass
class ChangeSet:
    """Ordered NEW/EDITED changes produced by one Poller tick."""

    feed: str
    changes: list[Change] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.changes)

    def __iter__(self):
        return iter(self.changes)

    def items(self) -> list[FeedItem]:
        return [c.item for c in self.changes]


# ---------------------------------------------------------------------------
# Notification boundary
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Recipient:
    """A subscriber to a feed (e.g. a chat channel).

    Attributes:
        recipient_id: Opaque id understood by the Notifier.
        filter:       Optional per-recipient title filter (regex).
    """

    recipient_id: str
    filter: str | None = None


@dataclass
class DeliveryResult:
    recipient_id: str
    delivered: bool
    error: str | None = None


class Notifier(ABC):
    """Best-effort delivery of payloads to recipients."""

    @abstractmethod
    async def deliver(self, recipient_id: str, payload: dict) -> DeliveryResult:
        """Deliver one payload.

        Implementations must not raise: an unreachable recipient is reported
        as ``DeliveryResult(delivered=False)``.
        """


class RecipientDirectory(ABC):
    """Lookup of which recipients subscribe to a feed."""

    @abstractmethod
    async def list_recipients(self, feed: str) -> list[Recipient]:
        """Return all enabled recipients for ``feed``."""


# ---------------------------------------------------------------------------
# Repository boundary
# ---------------------------------------------------------------------------


class EntityRepository(ABC):
    """Source of per-entity job inputs for the BatchRunner."""

    @abstractmethod
    def stream_entities_with_credentials(self) -> AsyncIterator[Any]:
        """Iterate over every entity with configured credentials.

        Must stream (cursor-style) rather than materialize the whole set.
        """

    @abstractmethod
    async def persist(self, entity: Any) -> None:
        """Write the entity's job results back to the store."""


# ---------------------------------------------------------------------------
# Per-entity results
# ---------------------------------------------------------------------------


@dataclass
class JobOutcome:
    """Result of one entity job: either a value or an isolated failure.

    Attributes:
        entity_id: Id of the entity the job ran for.
        ok:        True when the job returned normally.
        value:     Whatever the job returned.
        error:     Error message when ok is False.
        persisted: False if the follow-up persist call failed.
    """

    entity_id: str
    ok: bool
    value: Any = None
    error: str | None = None
    persisted: bool = True

    @classmethod
    def success(cls, entity_id: str, value: Any = None) -> "JobOutcome":
        return cls(entity_id=entity_id, ok=True, value=value)

    @classmethod
    def failure(cls, entity_id: str, error: str) -> "JobOutcome":
        return cls(entity_id=entity_id, ok=False, error=error)


@dataclass
class ClaimResult:
    """Result of one daily check-in against one game service.

    Attributes:
        game:          Display name of the game.
        success:       True when the check-in succeeded or was already done.
        message:       Upstream (or local) message.
        already:       True when upstream reported the claim as already done today.
        token_expired: True when upstream rejected the stored credentials.
        rewards:       Parsed rewards, if the upstream returned any.
    """

    game: str
    success: bool
    message: str
    already: bool = False
    token_expired: bool = False
    rewards: list[dict] = field(default_factory=list)

    def summary(self) -> str:
        if self.token_expired:
            return f"{self.game}: token expired ({self.message})"
        if self.already:
            return f"{self.game}: already claimed today"
        if not self.success:
            return f"{self.game}: failed ({self.message})"
        line = f"{self.game}: {self.message}"
        if self.rewards:
            line += " [" + ", ".join(
                f"{r.get('name', '?')} x{r.get('count') or 1}" for r in self.rewards
            ) + "]"
        return line


# ---------------------------------------------------------------------------
# Job entity: a user with configured game credentials
# ---------------------------------------------------------------------------


@dataclass
class HoyolabProfile:
    token: str
    games: dict[str, bool] = field(default_factory=dict)
    account_name: str = "Unknown"
    last_claim: datetime | None = None
    last_claim_result: str | None = None


@dataclass
class EndfieldProfile:
    """SKPORT credentials.

    Attributes:
        cred:                SK_OAUTH_CRED_KEY cookie value.
        sk_token_cache_key:  SK_TOKEN_CACHE_KEY, the request-signing secret.
        game_id:             Endfield game UID.
        server:              '2' (Asia) or '3' (Americas/Europe).
    """

    cred: str
    sk_token_cache_key: str
    game_id: str
    server: str = "2"
    language: str = "en"
    account_name: str = "Unknown"
    last_claim: datetime | None = None
    last_claim_result: str | None = None


@dataclass
class UserAccount:
    """A chat user with claimable game accounts."""

    discord_id: str
    username: str = ""
    hoyolab: HoyolabProfile | None = None
    endfield: EndfieldProfile | None = None
    notify_on_claim: bool = True

    @property
    def entity_id(self) -> str:
        return self.discord_id

    @property
    def has_hoyolab(self) -> bool:
        return bool(self.hoyolab and self.hoyolab.token)

    @property
    def has_endfield(self) -> bool:
        return bool(
            self.endfield
            and self.endfield.cred
            and self.endfield.sk_token_cache_key
        )


# ---------------------------------------------------------------------------
# Abstract feed source
# ---------------------------------------------------------------------------


class FeedSource(ABC):
    """Abstract base class for every polled upstream feed.

    Subclasses must implement:
        - fetch_snapshot()

    Optional overrides:
        - lookup()   — secondary enrichment per group key (default: none)
        - matches()  — per-recipient filtering (default: everything matches)
        - render()   — payload handed to the Notifier
    """

    #: Unique slug used in config, registry and recipient subscriptions.
    SOURCE_ID: str = "unknown"

    #: Human-readable name for logging.
    DISPLAY_NAME: str = "Unknown Feed"

    @classmethod
    def from_settings(
        cls,
        settings: Any,
        feed_config: Any,
        *,
        http_client: Any = None,
        token_cache: Any = None,
    ) -> FeedSource | None:
        """Build the source from process settings and its engine config section.

        Returns None when the deployment lacks what the source needs.
        """
        raise NotImplementedError(f"{cls.__name__} cannot be built from settings")

    @abstractmethod
    async def fetch_snapshot(self) -> list[FeedItem]:
        """Fetch the current state of the feed.

        Raises:
            UpstreamUnavailable: On HTTP errors, timeouts or unparseable bodies.
        """

    async def lookup(self, group_key: str) -> dict | None:
        """Resolve enrichment data shared by every item with this group key."""
        return None

    def matches(self, recipient: Recipient, item: FeedItem) -> bool:
        return True

    def render(self, change: Change) -> dict:
        """Build the notification payload for one change."""
        return {
            "feed": self.SOURCE_ID,
            "kind": change.kind.value,
            "item": change.item.payload,
        }

    # ------------------------------------------------------------------
    # Shared helpers available to all feed sources
    # ------------------------------------------------------------------

    @staticmethod
    def _safe_int(value: object) -> int | None:
        """Safely coerce a value to int, returning None on failure."""
        if value is None:
            return None
        try:
            return int(value)
        except (TypeError, ValueError):
            return None

    @staticmethod
    def _parse_iso_datetime(value: str | None) -> datetime | None:
        """Parse an ISO-8601 datetime string to an aware UTC datetime."""
        if not value:
            return None
        try:
            dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except (ValueError, AttributeError):
            logger.warning("Could not parse datetime string: %r", value)
            return None
        if dt.tzinfo is None:
            return dt.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc)
