"""U2 (u2.dmhy.org) torrent RSS adapter.

The feed URL carries a personal passkey, so it comes from configuration
(U2_RSS_URL) and is never logged.

Identity is the item guid (torrent info hash); fingerprint is the raw title,
so a retitled torrent is reported as EDITED.
"""

from __future__ import annotations

import html
import logging
import re
from email.utils import parsedate_to_datetime
from xml.etree import ElementTree as ET

import httpx

from src.autoclaim.base import Change, ChangeKind, FeedItem, FeedSource, Recipient
from src.autoclaim.errors import UpstreamUnavailable

logger = logging.getLogger("autoclaim.adapters.u2")

_U2_BASE = "https://u2.dmhy.org/"
_U2_USER_AGENT = "Mozilla/5.0 (compatible; AutoClaimBot/1.0)"

DEFAULT_FILTER = "BDMV|Blu-ray|BD-BOX"

_TAG_RE = re.compile(r"<[^>]+>")
_IMG_SRC_RE = re.compile(r"""src=['"]([^'"]+\.(?:jpg|jpeg|png|gif|webp))""", re.IGNORECASE)
_IMAGE_URL_RE = re.compile(
    r"(?:https?:)?//[a-zA-Z0-9@:%._+~#=-]{2,256}\.[a-z]{2,6}\b"
    r"[-a-zA-Z0-9@:%_+.~#?&/=]*\.(?:jpg|jpeg|png|gif|webp)",
    re.IGNORECASE,
)
_ATTACHMENT_RE = re.compile(r"^attachments/\d{6}/.*", re.IGNORECASE)

_SIZE_UNITS = ("B", "KiB", "MiB", "GiB", "TiB")


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def _text(element: ET.Element, tag: str) -> str:
    child = element.find(tag)
    if child is None or child.text is None:
        return ""
    return child.text.strip()


def parse_rss(xml_text: str) -> list[dict]:
    """Parse an RSS 2.0 document into raw item dicts.

    Raises:
        ET.ParseError: The document is not well-formed XML.
    """
    root = ET.fromstring(xml_text)
    items = []
    for node in root.iter("item"):
        enclosure = node.find("enclosure")
        download_url = ""
        size_bytes = 0
        if enclosure is not None:
            download_url = enclosure.get("url", "")
            size_bytes = FeedSource._safe_int(enclosure.get("length")) or 0

        items.append(
            {
                "title": _text(node, "title"),
                "link": _text(node, "link"),
                "description": _text(node, "description"),
                "author": _text(node, "author"),
                "category": _text(node, "category"),
                "guid": _text(node, "guid"),
                "download_url": download_url,
                "size_bytes": size_bytes,
                "pub_date": _text(node, "pubDate"),
            }
        )
    return items


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------


def clean_title(title: str) -> str:
    return _TAG_RE.sub("", title).strip()


def extract_uploader(author: str) -> str:
    """Pull the uploader name out of 'user@u2.dmhy.org (user)'."""
    cleaned = _TAG_RE.sub("", author)
    paren = re.search(r"\(([^)]+)\)", cleaned)
    if paren:
        return paren.group(1).strip()
    at = re.match(r"^([^@]+)@", cleaned)
    if at:
        return at.group(1).strip()
    return cleaned.strip() or "Unknown"


def format_size(size_bytes: int) -> str:
    if size_bytes <= 0:
        return "Unknown"
    size = float(size_bytes)
    unit = 0
    while size >= 1024 and unit < len(_SIZE_UNITS) - 1:
        size /= 1024
        unit += 1
    return f"{size:.2f} {_SIZE_UNITS[unit]}"


def _absolutize(url: str) -> str:
    if _ATTACHMENT_RE.match(url):
        return _U2_BASE + url
    if url.startswith("//"):
        return "https:" + url
    return url


def extract_image(description: str) -> str | None:
    """Return the first usable image URL in an HTML description."""
    if not description:
        return None
    description = html.unescape(description)

    for match in _IMG_SRC_RE.finditer(description):
        url = match.group(1)
        # Relative placeholders such as pic/trans.gif
        if not url.startswith(("http", "//")) and not _ATTACHMENT_RE.match(url):
            continue
        return _absolutize(url)

    match = _IMAGE_URL_RE.search(description)
    return _absolutize(match.group(0)) if match else None


def format_item(raw: dict) -> dict:
    pub_date = None
    if raw.get("pub_date"):
        try:
            pub_date = parsedate_to_datetime(raw["pub_date"]).isoformat()
        except (TypeError, ValueError):
            logger.warning("Could not parse U2 pubDate: %r", raw["pub_date"])

    return {
        "title": clean_title(raw.get("title", "")),
        "link": raw.get("link", ""),
        "image": extract_image(raw.get("description", "")),
        "category": raw.get("category", ""),
        "uploader": extract_uploader(raw.get("author", "")),
        "size": format_size(raw.get("size_bytes", 0)),
        "pub_date": pub_date,
        "guid": raw.get("guid", ""),
    }


# ---------------------------------------------------------------------------
# Feed source
# ---------------------------------------------------------------------------


class U2Feed(FeedSource):
    """U2 BDMV torrent feed with per-recipient title filters."""

    SOURCE_ID = "u2"
    DISPLAY_NAME = "U2 BDMV"

    def __init__(
        self,
        feed_url: str,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
        default_filter: str = DEFAULT_FILTER,
    ) -> None:
        self._feed_url = feed_url
        self._http_client = http_client
        self._timeout = httpx.Timeout(timeout)
        self._default_filter = default_filter
        self._filters: dict[str, re.Pattern] = {}

    @classmethod
    def from_settings(cls, settings, feed_config, *, http_client=None, token_cache=None):
        if not settings.u2_rss_url:
            logger.info("U2 feed disabled (no U2_RSS_URL configured)")
            return None
        return cls(
            settings.u2_rss_url,
            http_client=http_client,
            timeout=settings.http_timeout_seconds,
            default_filter=feed_config.options.get("default_filter", DEFAULT_FILTER),
        )

    async def fetch_snapshot(self) -> list[FeedItem]:
        xml_text = await self._fetch()
        try:
            raw_items = parse_rss(xml_text)
        except ET.ParseError as exc:
            raise UpstreamUnavailable(self.SOURCE_ID, f"unparseable RSS: {exc}") from exc

        items = []
        for raw in raw_items:
            if not raw["guid"]:
                continue
            items.append(
                FeedItem(
                    identity=raw["guid"],
                    fingerprint=raw["title"],
                    payload=format_item(raw),
                )
            )
        return items

    async def _fetch(self) -> str:
        headers = {"User-Agent": _U2_USER_AGENT}
        try:
            if self._http_client:
                response = await self._http_client.get(
                    self._feed_url, headers=headers, timeout=self._timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.get(self._feed_url, headers=headers)
        except httpx.HTTPError as exc:
            raise UpstreamUnavailable(self.SOURCE_ID, type(exc).__name__) from exc

        if response.status_code != 200:
            raise UpstreamUnavailable(self.SOURCE_ID, f"HTTP {response.status_code}")
        return response.text

    def _filter_for(self, recipient: Recipient) -> re.Pattern:
        source = recipient.filter or self._default_filter
        pattern = self._filters.get(source)
        if pattern is None:
            try:
                pattern = re.compile(source, re.IGNORECASE)
            except re.error:
                logger.warning(
                    "Invalid U2 filter %r for %s, using default", source, recipient.recipient_id
                )
                pattern = re.compile(self._default_filter, re.IGNORECASE)
            self._filters[source] = pattern
        return pattern

    def matches(self, recipient: Recipient, item: FeedItem) -> bool:
        return bool(self._filter_for(recipient).search(item.payload.get("title", "")))

    def render(self, change: Change) -> dict:
        payload = super().render(change)
        payload["edited"] = change.kind is ChangeKind.EDITED
        return payload
