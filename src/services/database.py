"""Postgres access for the AutoClaim engine.

Owns the asyncpg pool lifecycle and the two Postgres-backed boundary
implementations:

    PostgresUserRepository      — streams users with claimable credentials
                                  (server-side cursor) and writes claim results
    PostgresRecipientDirectory  — feed subscriptions per channel
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator

import asyncpg

from src.autoclaim.adapters.endfield import validate_params
from src.autoclaim.base import (
    EndfieldProfile,
    EntityRepository,
    HoyolabProfile,
    Recipient,
    RecipientDirectory,
    UserAccount,
)
from src.config import Settings, get_settings

logger = logging.getLogger("autoclaim.db")

# Module-level connection pool, initialized once at app startup
_pool: asyncpg.Pool | None = None

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS users (
    discord_id                  TEXT PRIMARY KEY,
    username                    TEXT NOT NULL DEFAULT '',
    notify_on_claim             BOOLEAN NOT NULL DEFAULT TRUE,
    hoyolab_token               TEXT,
    hoyolab_games               JSONB NOT NULL DEFAULT '{}'::jsonb,
    hoyolab_account_name        TEXT NOT NULL DEFAULT 'Unknown',
    hoyolab_last_claim          TIMESTAMPTZ,
    hoyolab_last_claim_result   TEXT,
    endfield_cred               TEXT,
    endfield_sk_token_cache_key TEXT,
    endfield_game_id            TEXT,
    endfield_server             TEXT NOT NULL DEFAULT '2',
    endfield_language           TEXT NOT NULL DEFAULT 'en',
    endfield_account_name       TEXT NOT NULL DEFAULT 'Unknown',
    endfield_last_claim         TIMESTAMPTZ,
    endfield_last_claim_result  TEXT,
    updated_at                  TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS feed_subscriptions (
    feed         TEXT NOT NULL,
    recipient_id TEXT NOT NULL,
    filter       TEXT,
    enabled      BOOLEAN NOT NULL DEFAULT TRUE,
    PRIMARY KEY (feed, recipient_id)
);
"""

_CLAIMABLE_USERS_SQL = """
SELECT * FROM users
WHERE coalesce(hoyolab_token, '') <> ''
   OR (coalesce(endfield_cred, '') <> '' AND coalesce(endfield_sk_token_cache_key, '') <> '')
ORDER BY discord_id
"""


async def init_pool(settings: Settings | None = None) -> asyncpg.Pool:
    """Create the asyncpg connection pool. Call once at app startup."""
    global _pool
    s = settings or get_settings()
    _pool = await asyncpg.create_pool(
        s.database_url,
        min_size=s.db_pool_min_size,
        max_size=s.db_pool_max_size,
        command_timeout=30,
    )
    logger.info(
        "Database pool initialized (min=%d, max=%d)", s.db_pool_min_size, s.db_pool_max_size
    )
    return _pool


async def close_pool() -> None:
    """Drain the pool. Call at app shutdown."""
    global _pool
    if _pool:
        await _pool.close()
        _pool = None
        logger.info("Database pool closed")


def get_pool() -> asyncpg.Pool:
    if _pool is None:
        raise RuntimeError("Database pool not initialized — call init_pool() first")
    return _pool


async def ensure_schema(pool: asyncpg.Pool) -> None:
    async with pool.acquire() as conn:
        await conn.execute(SCHEMA_SQL)


# ---------------------------------------------------------------------------
# Row mapping
# ---------------------------------------------------------------------------


def _json_field(value: Any) -> dict:
    if value is None:
        return {}
    if isinstance(value, str):
        try:
            return json.loads(value) or {}
        except ValueError:
            return {}
    return dict(value)


def user_from_record(record: Any) -> UserAccount:
    """Build a UserAccount from a ``users`` row (any mapping works)."""
    hoyolab = None
    if record["hoyolab_token"]:
        hoyolab = HoyolabProfile(
            token=record["hoyolab_token"],
            games={k: bool(v) for k, v in _json_field(record["hoyolab_games"]).items()},
            account_name=record["hoyolab_account_name"] or "Unknown",
            last_claim=record["hoyolab_last_claim"],
            last_claim_result=record["hoyolab_last_claim_result"],
        )

    endfield = None
    if record["endfield_cred"] and record["endfield_sk_token_cache_key"]:
        problem = validate_params(
            record["endfield_cred"],
            record["endfield_sk_token_cache_key"],
            record["endfield_game_id"] or "",
            record["endfield_server"],
        )
        if problem:
            logger.warning("Skipping Endfield profile for %s: %s", record["discord_id"], problem)
        else:
            endfield = EndfieldProfile(
                cred=record["endfield_cred"],
                sk_token_cache_key=record["endfield_sk_token_cache_key"],
                game_id=record["endfield_game_id"],
                server=record["endfield_server"] or "2",
                language=record["endfield_language"] or "en",
                account_name=record["endfield_account_name"] or "Unknown",
                last_claim=record["endfield_last_claim"],
                last_claim_result=record["endfield_last_claim_result"],
            )

    return UserAccount(
        discord_id=record["discord_id"],
        username=record["username"] or "",
        hoyolab=hoyolab,
        endfield=endfield,
        notify_on_claim=bool(record["notify_on_claim"]),
    )


def persist_query(user: UserAccount) -> tuple[str, list[Any]]:
    """Build the claim-result UPDATE for the profiles the user actually has.

    Columns of an absent profile are left untouched. ``$1`` is the user's
    discord_id.
    """
    updates: dict[str, Any] = {}
    if user.hoyolab is not None:
        updates["hoyolab_last_claim"] = user.hoyolab.last_claim
        updates["hoyolab_last_claim_result"] = user.hoyolab.last_claim_result
    if user.endfield is not None:
        updates["endfield_last_claim"] = user.endfield.last_claim
        updates["endfield_last_claim_result"] = user.endfield.last_claim_result

    set_clauses = []
    params: list[Any] = []
    for i, (column, value) in enumerate(updates.items(), start=2):
        set_clauses.append(f"{column} = ${i}")
        params.append(value)

    set_clauses.append("updated_at = now()")
    query = f"UPDATE users SET {', '.join(set_clauses)} WHERE discord_id = $1"
    return query, params


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------


class PostgresUserRepository(EntityRepository):
    """Users with at least one claimable game account."""

    def __init__(self, pool: asyncpg.Pool, prefetch: int = 50) -> None:
        self._pool = pool
        self._prefetch = prefetch

    async def stream_entities_with_credentials(self) -> AsyncIterator[UserAccount]:
        # Cursors only live inside a transaction
        async with self._pool.acquire() as conn:
            async with conn.transaction(readonly=True):
                async for record in conn.cursor(_CLAIMABLE_USERS_SQL, prefetch=self._prefetch):
                    yield user_from_record(record)

    async def persist(self, entity: UserAccount) -> None:
        query, params = persist_query(entity)
        async with self._pool.acquire() as conn:
            await conn.execute(query, entity.discord_id, *params)


class PostgresRecipientDirectory(RecipientDirectory):
    """Channels subscribed to a feed, from ``feed_subscriptions``."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def list_recipients(self, feed: str) -> list[Recipient]:
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT recipient_id, filter FROM feed_subscriptions "
                "WHERE feed = $1 AND enabled ORDER BY recipient_id",
                feed,
            )
        return [Recipient(recipient_id=r["recipient_id"], filter=r["filter"]) for r in rows]
