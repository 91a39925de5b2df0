"""Named credential cache with single-flight refresh.

Login / handshake calls are expensive and rate limited, so every periodic
job shares one TokenCache.  Each credential name has its own refresher, its
own expiry and its own in-flight refresh.

Usage::

    cache = TokenCache(safety_margin_seconds=30)
    cache.register("crunchyroll:anonymous", client.login_anonymous)
    credential = await cache.get("crunchyroll:anonymous")
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable

from src.autoclaim.base import Credential, utc_now
from src.autoclaim.errors import AuthFailure

logger = logging.getLogger("autoclaim.token_cache")

Refresher = Callable[[], Awaitable[Credential]]


class TokenCache:
    """Hold zero or more named credentials and refresh them on demand.

    Guarantees:
        - ``get`` never returns a credential with
          ``expires_at <= now + safety_margin``.
        - Concurrent ``get`` calls for a name with no valid credential share
          exactly one refresh.
        - A failed refresh caches nothing; every waiter gets ``AuthFailure``.
    """

    def __init__(
        self,
        safety_margin_seconds: float = 30.0,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the cache.

        Args:
            safety_margin_seconds: Treat credentials as expired this many
                                   seconds before their real expiry.
            clock:                 Returns the current aware UTC datetime.
        """
        self._margin = timedelta(seconds=safety_margin_seconds)
        self._clock = clock
        self._refreshers: dict[str, Refresher] = {}
        self._entries: dict[str, Credential] = {}
        self._inflight: dict[str, asyncio.Future] = {}
        self.refresh_count: dict[str, int] = {}

    def register(self, name: str, refresher: Refresher) -> None:
        """Attach the async refresher that produces credentials for ``name``."""
        self._refreshers[name] = refresher

    def is_registered(self, name: str) -> bool:
        return name in self._refreshers

    def _is_fresh(self, credential: Credential) -> bool:
        return self._clock() < credential.expires_at - self._margin

    def peek(self, name: str) -> Credential | None:
        """Return the cached credential if it is still fresh, without refreshing."""
        credential = self._entries.get(name)
        if credential is not None and self._is_fresh(credential):
            return credential
        return None

    async def get(self, name: str) -> Credential:
        """Return a valid credential for ``name``, refreshing if needed.

        Raises:
            KeyError:    No refresher registered for ``name``.
            AuthFailure: The refresh failed (propagated to all waiters).
        """
        credential = self.peek(name)
        if credential is not None:
            return credential

        # Expired values are discarded, never served stale
        self._entries.pop(name, None)

        if name not in self._refreshers:
            raise KeyError(f"No refresher registered for credential '{name}'")

        future = self._inflight.get(name)
        if future is None:
            future = asyncio.ensure_future(self._refresh(name))
            self._inflight[name] = future
            future.add_done_callback(lambda f, n=name: self._clear_inflight(n, f))
        # shield: one cancelled waiter must not cancel the shared refresh
        return await asyncio.shield(future)

    def _clear_inflight(self, name: str, future: asyncio.Future) -> None:
        if self._inflight.get(name) is future:
            del self._inflight[name]
        if not future.cancelled():
            # Mark the exception retrieved even if every waiter went away
            future.exception()

    async def _refresh(self, name: str) -> Credential:
        self.refresh_count[name] = self.refresh_count.get(name, 0) + 1
        logger.info("Refreshing credential '%s'", name)
        try:
            credential = await self._refreshers[name]()
        except AuthFailure:
            logger.warning("Credential refresh failed for '%s'", name)
            raise
        except Exception as exc:
            logger.warning("Credential refresh failed for '%s': %s", name, exc)
            raise AuthFailure(name, str(exc) or type(exc).__name__) from exc

        if not self._is_fresh(credential):
            logger.warning(
                "Refreshed credential '%s' expires at %s, inside the safety margin",
                name,
                credential.expires_at.isoformat(),
            )
            raise AuthFailure(name, "refreshed credential expires within safety margin")

        self._entries[name] = credential
        logger.debug("Credential '%s' valid until %s", name, credential.expires_at.isoformat())
        return credential

    def invalidate(self, name: str) -> None:
        """Drop the cached credential for ``name`` (e.g. after an upstream 401)."""
        if self._entries.pop(name, None) is not None:
            logger.info("Invalidated credential '%s'", name)

    def clear(self) -> None:
        """Evict every credential.  Called at shutdown."""
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.peek(name) is not None
