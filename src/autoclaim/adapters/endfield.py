"""Arknights: Endfield daily attendance via the SKPORT API.

Every request is signed with the CanonicalSigner.  The signing secret is the
profile's SK_TOKEN_CACHE_KEY; the ``cred`` header carries SK_OAUTH_CRED_KEY.

Endpoint:
    POST https://zonai.skport.com/web/v1/game/endfield/attendance
"""

from __future__ import annotations

import logging
import re

import httpx

from src.autoclaim.base import ClaimResult, EndfieldProfile
from src.autoclaim.signer import SignedRequestSpec, signed_headers

logger = logging.getLogger("autoclaim.adapters.endfield")

GAME_NAME = "Arknights: Endfield"

_ATTENDANCE_URL = "https://zonai.skport.com/web/v1/game/endfield/attendance"
_ATTENDANCE_PATH = "/web/v1/game/endfield/attendance"

PLATFORM = "3"
VERSION_NAME = "1.0.0"
TOKEN_EXPIRED_CODE = 10000

SERVERS: dict[str, str] = {"2": "Asia", "3": "Americas/Europe"}

_BASE_HEADERS: dict[str, str] = {
    "Accept": "*/*",
    "Content-Type": "application/json",
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:147.0) Gecko/20100101 Firefox/147.0"
    ),
    "Referer": "https://game.skport.com/",
    "Origin": "https://game.skport.com",
    "Sec-Fetch-Dest": "empty",
    "Sec-Fetch-Mode": "cors",
    "Sec-Fetch-Site": "same-site",
}


def validate_params(cred: str, sk_token_cache_key: str, game_id: str, server: str | None) -> str | None:
    """Check credential shape before storing a profile.

    Returns:
        An error message, or None when the parameters look valid.
    """
    if not cred or len(cred) < 10:
        return "Invalid SK_OAUTH_CRED_KEY (too short)"
    if not sk_token_cache_key or len(sk_token_cache_key) < 10:
        return "Invalid SK_TOKEN_CACHE_KEY (too short)"
    if not game_id or not re.fullmatch(r"\d+", game_id):
        return "Invalid Game ID (must be numbers only)"
    if server and server not in SERVERS:
        return f"Invalid server (use 2 for {SERVERS['2']} or 3 for {SERVERS['3']})"
    return None


def parse_rewards(award_ids: object, resource_info: object) -> list[dict]:
    if not isinstance(award_ids, list) or not isinstance(resource_info, dict):
        return []
    rewards = []
    for entry in award_ids:
        info = resource_info.get(entry.get("id")) if isinstance(entry, dict) else None
        if info:
            rewards.append(
                {
                    "id": info.get("id"),
                    "name": info.get("name"),
                    "count": info.get("count"),
                    "icon": info.get("icon"),
                }
            )
    return rewards


def _first_present(data: dict, *keys: str) -> object:
    """Return the value of the first key that is present and not None."""
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return None


def classify_response(status_code: int, data: dict | None) -> ClaimResult:
    """Map an attendance response onto a ClaimResult."""
    data = data if isinstance(data, dict) else {}

    if status_code != 200:
        reason = data.get("message") or data.get("msg") or "Request failed"
        return ClaimResult(GAME_NAME, success=False, message=f"HTTP {status_code}: {reason}")

    code = _first_present(data, "code", "retcode")
    msg = _first_present(data, "msg", "message")
    if msg is None:
        msg = "Attendance response received"
    body = data.get("data") if isinstance(data.get("data"), dict) else {}

    if code == TOKEN_EXPIRED_CODE:
        return ClaimResult(
            GAME_NAME,
            success=False,
            message="Token expired, update SK_OAUTH_CRED_KEY and SK_TOKEN_CACHE_KEY",
            token_expired=True,
        )

    if code == 0:
        return ClaimResult(
            GAME_NAME,
            success=True,
            message="Check-in successful" if msg == "OK" else msg,
            rewards=parse_rewards(body.get("awardIds"), body.get("resourceInfoMap")),
        )

    if "already" in str(msg).lower() or body.get("hasToday") is True:
        return ClaimResult(GAME_NAME, success=True, message="Already checked in today", already=True)

    return ClaimResult(GAME_NAME, success=False, message=str(msg))


class EndfieldClient:
    """SKPORT attendance client shared by every user's claim job."""

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        self._http_client = http_client
        self._timeout = httpx.Timeout(timeout)

    def build_headers(self, profile: EndfieldProfile) -> dict[str, str]:
        """Return the signed header set for one attendance request."""
        spec = SignedRequestSpec.build(
            _ATTENDANCE_PATH,
            "POST",
            body="",
            headers={"platform": PLATFORM, "vName": VERSION_NAME},
        )
        base = {
            **_BASE_HEADERS,
            "cred": profile.cred,
            "sk-game-role": f"{PLATFORM}_{profile.game_id}_{profile.server or '2'}",
            "sk-language": profile.language or "en",
        }
        return signed_headers(spec, profile.sk_token_cache_key, base)

    async def claim(self, profile: EndfieldProfile) -> ClaimResult:
        """Check in for today and return the parsed result.

        Network errors become a failed ClaimResult; only programmer errors
        (e.g. SignatureInputError) propagate.
        """
        headers = self.build_headers(profile)
        logger.info("Endfield: sending attendance request for role %s", headers["sk-game-role"])

        try:
            if self._http_client:
                response = await self._http_client.post(
                    _ATTENDANCE_URL, json={}, headers=headers, timeout=self._timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(_ATTENDANCE_URL, json={}, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("Endfield: attendance request failed: %s", exc)
            return ClaimResult(GAME_NAME, success=False, message=str(exc) or "Network error")

        try:
            data = response.json()
        except ValueError:
            data = None

        result = classify_response(response.status_code, data)
        logger.info("Endfield: HTTP %d, %s", response.status_code, result.summary())
        return result
