"""Daily reward claim job, run once per user by the BatchRunner."""

from __future__ import annotations

import logging

from src.autoclaim.adapters.endfield import GAME_NAME as ENDFIELD_NAME
from src.autoclaim.adapters.endfield import EndfieldClient
from src.autoclaim.adapters.hoyolab import HoyolabClient
from src.autoclaim.base import ClaimResult, Notifier, UserAccount, utc_now

logger = logging.getLogger("autoclaim.claims")


class DailyClaimJob:
    """Claim HoYoLAB and Endfield rewards for one user.

    Each service is isolated: an exception from one still lets the other
    claim, and is recorded as a failed ClaimResult.  Persisting the user is
    the BatchRunner's job, not this one.
    """

    def __init__(
        self,
        hoyolab: HoyolabClient,
        endfield: EndfieldClient,
        notifier: Notifier | None = None,
    ) -> None:
        self._hoyolab = hoyolab
        self._endfield = endfield
        self._notifier = notifier

    async def __call__(self, user: UserAccount) -> list[ClaimResult]:
        results: list[ClaimResult] = []

        if user.has_hoyolab:
            results.extend(await self._claim_hoyolab(user))
        if user.has_endfield:
            results.append(await self._claim_endfield(user))

        if user.notify_on_claim and results:
            await self._notify(user, results)
        return results

    async def _claim_hoyolab(self, user: UserAccount) -> list[ClaimResult]:
        profile = user.hoyolab
        try:
            results = await self._hoyolab.claim_all(profile.token, profile.games)
        except Exception as exc:
            logger.error("HoYoLAB claim error for %s: %s", user.discord_id, exc)
            return [ClaimResult("HoYoLAB", success=False, message=f"Error: {exc}")]

        profile.last_claim = utc_now()
        profile.last_claim_result = (
            "\n".join(r.summary() for r in results) or "No games configured for claiming"
        )
        return results

    async def _claim_endfield(self, user: UserAccount) -> ClaimResult:
        profile = user.endfield
        try:
            result = await self._endfield.claim(profile)
        except Exception as exc:
            logger.error("Endfield claim error for %s: %s", user.discord_id, exc)
            return ClaimResult(ENDFIELD_NAME, success=False, message=f"Error: {exc}")

        profile.last_claim = utc_now()
        profile.last_claim_result = result.summary()
        return result

    async def _notify(self, user: UserAccount, results: list[ClaimResult]) -> None:
        if self._notifier is None:
            return
        payload = {
            "kind": "claim_results",
            "user": user.discord_id,
            "results": [
                {"game": r.game, "success": r.success, "message": r.summary()} for r in results
            ],
            "claimed_at": utc_now().isoformat(),
        }
        delivery = await self._notifier.deliver(user.discord_id, payload)
        if not delivery.delivered:
            logger.warning(
                "Could not notify user %s of claim results: %s", user.discord_id, delivery.error
            )
