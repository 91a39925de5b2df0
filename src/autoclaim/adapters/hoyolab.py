"""HoYoLAB daily check-in across the supported HoYoverse titles.

The user's HoYoLAB cookie string is sent verbatim as the Cookie header; no
signing is involved.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable

import httpx

from src.autoclaim.base import ClaimResult

logger = logging.getLogger("autoclaim.adapters.hoyolab")

ALREADY_CLAIMED_RETCODE = -5003

_DEFAULT_HEADERS: dict[str, str] = {
    "Accept": "application/json, text/plain, */*",
    "x-rpc-app_version": "2.34.1",
    "x-rpc-client_type": "4",
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
    ),
    "Referer": "https://act.hoyolab.com/",
    "Origin": "https://act.hoyolab.com",
}


@dataclass(frozen=True)
class GameConfig:
    name: str
    url: str
    act_id: str
    biz_name: str
    extra_headers: dict[str, str] = field(default_factory=dict)


GAMES: dict[str, GameConfig] = {
    "genshin": GameConfig(
        "Genshin Impact",
        "https://sg-hk4e-api.hoyolab.com/event/sol/sign",
        "e202102251931481",
        "hk4e_global",
    ),
    "starRail": GameConfig(
        "Honkai: Star Rail",
        "https://sg-public-api.hoyolab.com/event/luna/os/sign",
        "e202303301540311",
        "hkrpg_global",
    ),
    "honkai3": GameConfig(
        "Honkai Impact 3rd",
        "https://sg-public-api.hoyolab.com/event/mani/sign",
        "e202110291205111",
        "bh3_global",
    ),
    "tearsOfThemis": GameConfig(
        "Tears of Themis",
        "https://sg-public-api.hoyolab.com/event/luna/os/sign",
        "e202308141137581",
        "tot_global",
    ),
    "zenlessZoneZero": GameConfig(
        "Zenless Zone Zero",
        "https://sg-public-api.hoyolab.com/event/luna/zzz/os/sign",
        "e202406031448091",
        "nap_global",
        {"x-rpc-signgame": "zzz"},
    ),
}


def classify_response(game: GameConfig, data: dict) -> ClaimResult:
    retcode = data.get("retcode")
    message = data.get("message") or ""

    if retcode == 0 or message == "OK":
        return ClaimResult(game.name, success=True, message="Claimed successfully!")

    if retcode == ALREADY_CLAIMED_RETCODE or "already" in message:
        return ClaimResult(game.name, success=True, message="Already claimed today", already=True)

    gt_result = (data.get("data") or {}).get("gt_result") or {}
    if gt_result.get("is_risk"):
        return ClaimResult(game.name, success=False, message="CAPTCHA required - please claim manually")

    return ClaimResult(game.name, success=False, message=message or "Unknown error")


class HoyolabClient:
    """Claims HoYoLAB daily rewards for a cookie token."""

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
        inter_game_delay_seconds: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._http_client = http_client
        self._timeout = httpx.Timeout(timeout)
        self._delay = inter_game_delay_seconds
        self._sleep = sleep

    async def _request(self, method: str, url: str, token: str, **kwargs) -> httpx.Response:
        headers = {**_DEFAULT_HEADERS, "Cookie": token, **kwargs.pop("headers", {})}
        if self._http_client:
            return await self._http_client.request(
                method, url, headers=headers, timeout=self._timeout, **kwargs
            )
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            return await client.request(method, url, headers=headers, **kwargs)

    async def claim_game(self, token: str, game_key: str) -> ClaimResult:
        game = GAMES.get(game_key)
        if game is None:
            return ClaimResult(game_key, success=False, message="Unknown game")

        try:
            response = await self._request(
                "POST",
                game.url,
                token,
                params={"lang": "en-us", "act_id": game.act_id},
                headers=game.extra_headers,
            )
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("HoYoLAB: %s claim failed: %s", game.name, exc)
            return ClaimResult(game.name, success=False, message=str(exc) or "Request failed")

        return classify_response(game, data if isinstance(data, dict) else {})

    async def claim_all(self, token: str, enabled_games: dict[str, bool]) -> list[ClaimResult]:
        """Claim every enabled game in order, pausing between requests."""
        results: list[ClaimResult] = []
        for game_key, enabled in enabled_games.items():
            if not enabled:
                continue
            if results and self._delay > 0:
                await self._sleep(self._delay)
            results.append(await self.claim_game(token, game_key))
        return results
