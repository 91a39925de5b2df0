"""Crunchyroll newest-episodes adapter.

Uses the Android TV client credentials for anonymous (``client_id`` grant)
access to the browse API.  The token lives in the shared TokenCache under
``crunchyroll:anonymous``.

API base: https://beta-api.crunchyroll.com

Endpoints used:
    /auth/v1/token                 — Token exchange
    /content/v2/discover/browse    — Newest episodes
    /content/v2/cms/objects/{id}   — Series poster art
"""

from __future__ import annotations

import logging
import re
import uuid
from datetime import timedelta

import httpx

from src.autoclaim.base import Credential, FeedItem, FeedSource, utc_now
from src.autoclaim.errors import AuthFailure, UpstreamUnavailable
from src.autoclaim.token_cache import TokenCache

logger = logging.getLogger("autoclaim.adapters.crunchyroll")

_CR_API_BASE = "https://beta-api.crunchyroll.com"
_CR_TOKEN_URL = f"{_CR_API_BASE}/auth/v1/token"
_CR_WATCH_URL = "https://www.crunchyroll.com/watch/{episode_id}/{slug}"

# Public Android TV client id:secret
_CR_BASIC_AUTH = (
    "bmR0aTZicXlqcm9wNXZnZjF0dnU6elpIcS00SEJJVDlDb2FMcnBPREJjRVRCTUNHai1QNlg="
)
_CR_USER_AGENT = (
    "Crunchyroll/ANDROIDTV/3.50.0_22282 "
    "(Android 12; en-US; SHIELD Android TV Build/SR1A.211012.001)"
)

ANONYMOUS_CREDENTIAL = "crunchyroll:anonymous"

MAX_SERIES_CACHE = 200

LANG_MAP: dict[str, str] = {
    "en-US": "English",
    "ja-JP": "Japanese",
    "id-ID": "Indonesian",
    "ms-MY": "Malay",
    "de-DE": "German",
    "es-LA": "Spanish (LA)",
    "es-ES": "Spanish",
    "es-419": "Spanish",
    "fr-FR": "French",
    "it-IT": "Italian",
    "pl-PL": "Polish",
    "pt-BR": "Portuguese (BR)",
    "pt-PT": "Portuguese",
    "vi-VN": "Vietnamese",
    "tr-TR": "Turkish",
    "ru-RU": "Russian",
    "ar-SA": "Arabic",
    "hi-IN": "Hindi",
    "ta-IN": "Tamil",
    "te-IN": "Telugu",
    "zh-HK": "Cantonese",
    "zh-CN": "Mandarin",
    "zh-TW": "Mandarin (TW)",
    "ko-KR": "Korean",
    "th-TH": "Thai",
}

_SEASON_RE = re.compile(r"^Season\s+(\d+)(?:\s*\((.+)\))?$")
_GENERIC_EPISODE_TITLE_RE = re.compile(r"^Episode\s+0*\d+$", re.IGNORECASE)


class CrunchyrollClient:
    """Thin async client for the Crunchyroll content API."""

    def __init__(
        self,
        token_cache: TokenCache,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        """Initialize the client and register its token refresher.

        Args:
            token_cache: Shared TokenCache.
            http_client: Optional pre-configured httpx client (for testing).
            timeout:     Per-request timeout in seconds.
        """
        self._tokens = token_cache
        self._http_client = http_client
        self._timeout = httpx.Timeout(timeout)
        # Insertion-ordered: series_id -> poster URL
        self._series_posters: dict[str, str] = {}

        token_cache.register(ANONYMOUS_CREDENTIAL, self.login_anonymous)

    # ------------------------------------------------------------------
    # Token refresher
    # ------------------------------------------------------------------

    async def login_anonymous(self) -> Credential:
        return await self._token_request(
            ANONYMOUS_CREDENTIAL,
            {"grant_type": "client_id", "device_id": str(uuid.uuid4())},
        )

    async def _token_request(self, name: str, form: dict) -> Credential:
        headers = {
            "Authorization": f"Basic {_CR_BASIC_AUTH}",
            "Content-Type": "application/x-www-form-urlencoded; charset=utf-8",
            "User-Agent": _CR_USER_AGENT,
        }
        try:
            response = await self._request("POST", _CR_TOKEN_URL, data=form, headers=headers)
        except httpx.HTTPError as exc:
            raise AuthFailure(name, f"token request failed: {exc}") from exc

        if response.status_code != 200:
            raise AuthFailure(name, f"HTTP {response.status_code}")

        data = response.json()
        access_token = data.get("access_token")
        if not access_token:
            raise AuthFailure(name, "no access token in response")

        issued_at = utc_now()
        expires_in = int(data.get("expires_in") or 300)
        return Credential(
            name=name,
            access_value=access_token,
            expires_at=issued_at + timedelta(seconds=expires_in),
            secret_material=data.get("refresh_token"),
            issued_at=issued_at,
        )

    # ------------------------------------------------------------------
    # Content
    # ------------------------------------------------------------------

    async def fetch_latest_episodes(self, locale: str = "en-US", count: int = 50) -> list[dict]:
        """Return the newest episodes, newest first.

        Raises:
            AuthFailure:         The anonymous token could not be obtained.
            UpstreamUnavailable: The browse call failed.
        """
        params = {
            "n": str(count),
            "type": "episode",
            "sort_by": "newly_added",
            "locale": locale,
            "force_locale": str(uuid.uuid4()),
        }
        headers = {
            "Cache-Control": "no-cache, no-store, must-revalidate",
            "Pragma": "no-cache",
            "Expires": "0",
        }
        data = await self._get_json(
            f"{_CR_API_BASE}/content/v2/discover/browse", params=params, extra_headers=headers
        )
        episodes = data.get("data") or []
        return sorted(episodes, key=_release_timestamp, reverse=True)

    async def get_series_poster(self, series_id: str) -> str | None:
        """Return the tallest poster for a series, cached per series id."""
        if not series_id:
            return None
        if series_id in self._series_posters:
            return self._series_posters[series_id]

        data = await self._get_json(f"{_CR_API_BASE}/content/v2/cms/objects/{series_id}")
        objects = data.get("data") or []
        groups = (objects[0].get("images") or {}).get("poster_tall") if objects else None
        if not groups or not groups[-1]:
            return None

        # Last group holds the highest-quality renditions
        best = max(groups[-1], key=lambda img: img.get("height") or 0)
        poster = best.get("source")
        if poster:
            self._series_posters[series_id] = poster
            self._prune_series_cache()
        return poster

    def _prune_series_cache(self) -> None:
        excess = len(self._series_posters) - MAX_SERIES_CACHE
        for key in list(self._series_posters)[: max(excess, 0)]:
            del self._series_posters[key]

    # ------------------------------------------------------------------
    # Private HTTP helpers
    # ------------------------------------------------------------------

    async def _get_json(
        self, url: str, params: dict | None = None, extra_headers: dict | None = None
    ) -> dict:
        credential = await self._tokens.get(ANONYMOUS_CREDENTIAL)
        headers = {
            "Authorization": f"Bearer {credential.access_value}",
            "User-Agent": _CR_USER_AGENT,
            **(extra_headers or {}),
        }
        try:
            response = await self._request("GET", url, params=params, headers=headers)
        except httpx.HTTPError as exc:
            raise UpstreamUnavailable("crunchyroll", str(exc)) from exc

        if response.status_code == 401:
            self._tokens.invalidate(ANONYMOUS_CREDENTIAL)
        if response.status_code != 200:
            logger.error(
                "Crunchyroll API error: GET %s → %d", url, response.status_code
            )
            raise UpstreamUnavailable("crunchyroll", f"HTTP {response.status_code}")
        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamUnavailable("crunchyroll", "unparseable response body") from exc

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        if self._http_client:
            return await self._http_client.request(method, url, timeout=self._timeout, **kwargs)
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            return await client.request(method, url, **kwargs)


def _release_timestamp(episode: dict) -> float:
    meta = episode.get("episode_metadata") or {}
    value = (
        meta.get("premium_available_date")
        or meta.get("availability_starts")
        or episode.get("last_public")
    )
    parsed = FeedSource._parse_iso_datetime(value)
    return parsed.timestamp() if parsed else 0.0


# ---------------------------------------------------------------------------
# Episode formatting
# ---------------------------------------------------------------------------


def format_season_name(name: str) -> str:
    """Return the suffix for a 'Season N' title ('' for a bare Season 1)."""
    match = _SEASON_RE.match(name)
    if match and int(match.group(1)) == 1:
        extra = match.group(2)
        return f" {extra}" if extra else ""
    return f" {name}"


def format_duration(duration_ms: int | None) -> str:
    """Format milliseconds as e.g. '1h2m3s', '23m40s' or '0s'."""
    if not duration_ms:
        return "0s"
    total = int(duration_ms) // 1000
    hours, rem = divmod(total, 3600)
    minutes, seconds = divmod(rem, 60)

    formatted = ""
    if hours > 0:
        formatted += f"{hours}h"
    if minutes > 0 or hours > 0:
        formatted += f"{minutes}m"
    return formatted + f"{seconds}s"


def is_dub(meta: dict) -> bool:
    audio_locale = meta.get("audio_locale")
    versions = meta.get("versions") or []
    if not audio_locale or not versions:
        return False
    current = next((v for v in versions if v.get("audio_locale") == audio_locale), None)
    return not (current and current.get("original"))


def format_episode(episode: dict) -> dict:
    """Turn a raw browse entry into the notification payload."""
    meta = episode.get("episode_metadata") or {}
    season_title = meta.get("season_title") or ""
    series_title = meta.get("series_title") or ""

    if season_title and not season_title.startswith("Season"):
        title = season_title
    else:
        title = series_title
        if season_title:
            title += format_season_name(season_title)

    dubbed = is_dub(meta)
    audio_locale = meta.get("audio_locale")
    if dubbed and audio_locale in LANG_MAP and " Dub" not in season_title:
        title += f" ({LANG_MAP[audio_locale]} Dub)"

    if meta.get("episode"):
        title += f" - Episode {meta['episode']}"

    ep_title = episode.get("title")
    if ep_title and not _GENERIC_EPISODE_TITLE_RE.match(ep_title) and ep_title != series_title:
        title += f" - {ep_title}"

    thumbs = [t for group in (episode.get("images") or {}).get("thumbnail") or [] for t in group]
    thumbnail = ""
    if thumbs:
        best = max(thumbs, key=lambda t: (t.get("width") or 0) * (t.get("height") or 0))
        thumbnail = best.get("source") or ""

    subtitle_locales = meta.get("subtitle_locales") or []
    subtitles = ", ".join(LANG_MAP.get(loc, loc) for loc in subtitle_locales) or "-"

    released = (
        meta.get("premium_available_date")
        or meta.get("availability_starts")
        or episode.get("last_public")
    )

    return {
        "id": episode.get("id"),
        "title": title,
        "url": _CR_WATCH_URL.format(episode_id=episode.get("id"), slug=episode.get("slug_title") or ""),
        "description": episode.get("description") or "No description",
        "thumbnail": thumbnail,
        "season_id": meta.get("season_id"),
        "series_id": meta.get("series_id"),
        "series_title": series_title,
        "season_title": season_title,
        "episode_number": meta.get("episode"),
        "duration": format_duration(meta.get("duration_ms")),
        "is_dub": dubbed,
        "audio_locale": audio_locale,
        "subtitles": subtitles,
        "released_at": released,
    }


# ---------------------------------------------------------------------------
# Feed source
# ---------------------------------------------------------------------------


class CrunchyrollFeed(FeedSource):
    """Newest Crunchyroll episodes.

    Identity and fingerprint are both the episode id: only new episodes are
    reported, never edits.
    """

    SOURCE_ID = "crunchyroll"
    DISPLAY_NAME = "Crunchyroll"

    def __init__(
        self,
        client: CrunchyrollClient,
        locale: str = "en-US",
        snapshot_size: int = 50,
    ) -> None:
        self._client = client
        self._locale = locale
        self.snapshot_size = snapshot_size

    @classmethod
    def from_settings(cls, settings, feed_config, *, http_client=None, token_cache=None):
        client = CrunchyrollClient(
            token_cache if token_cache is not None else TokenCache(),
            http_client=http_client,
            timeout=settings.http_timeout_seconds,
        )
        return cls(
            client,
            locale=feed_config.options.get("locale", "en-US"),
            snapshot_size=feed_config.snapshot_size,
        )

    async def fetch_snapshot(self) -> list[FeedItem]:
        try:
            episodes = await self._client.fetch_latest_episodes(self._locale, self.snapshot_size)
        except AuthFailure as exc:
            raise UpstreamUnavailable(self.SOURCE_ID, str(exc)) from exc

        items = []
        for episode in episodes:
            episode_id = episode.get("id")
            if not episode_id:
                continue
            payload = format_episode(episode)
            items.append(
                FeedItem(
                    identity=episode_id,
                    fingerprint=episode_id,
                    payload=payload,
                    group_key=payload.get("series_id"),
                )
            )
        return items

    async def lookup(self, group_key: str) -> dict | None:
        poster = await self._client.get_series_poster(group_key)
        return {"series_poster": poster} if poster else None
