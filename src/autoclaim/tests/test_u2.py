"""Tests for the U2 RSS adapter."""

from __future__ import annotations

from unittest.mock import AsyncMock

import httpx
import pytest

from src.autoclaim.adapters.u2_feed import (
    U2Feed,
    extract_image,
    extract_uploader,
    format_item,
    format_size,
    parse_rss,
)
from src.autoclaim.base import Change, ChangeKind, FeedItem, Recipient
from src.autoclaim.errors import UpstreamUnavailable
from src.autoclaim.tests.conftest import make_response

RSS = """<?xml version="1.0" encoding="utf-8"?>
<rss version="2.0">
  <channel>
    <title>U2</title>
    <item>
      <title>[BDMV] Sousou no Frieren Vol.1</title>
      <link>https://u2.dmhy.org/details.php?id=1</link>
      <description>&lt;img src="pic/trans.gif"&gt;&lt;img src="attachments/202603/cover.jpg"&gt;</description>
      <author>alice@u2.dmhy.org (alice)</author>
      <category>BDMV</category>
      <guid>hash-1</guid>
      <enclosure url="https://u2.dmhy.org/download.php?id=1" length="48318382080" type="application/x-bittorrent"/>
      <pubDate>Sun, 01 Mar 2026 12:00:00 +0800</pubDate>
    </item>
    <item>
      <title>[Lossless] Frieren OST</title>
      <guid>hash-2</guid>
    </item>
    <item>
      <title>No guid</title>
    </item>
  </channel>
</rss>
"""


def feed_item(title: str) -> FeedItem:
    return FeedItem(identity="h", fingerprint=title, payload={"title": title})


class TestParsing:
    def test_parse_rss_reads_fields(self) -> None:
        items = parse_rss(RSS)
        assert len(items) == 3
        first = items[0]
        assert first["guid"] == "hash-1"
        assert first["size_bytes"] == 48318382080
        assert first["download_url"].endswith("id=1")
        assert items[1]["author"] == ""

    def test_format_item(self) -> None:
        payload = format_item(parse_rss(RSS)[0])
        assert payload["uploader"] == "alice"
        assert payload["size"] == "45.00 GiB"
        assert payload["image"] == "https://u2.dmhy.org/attachments/202603/cover.jpg"
        assert payload["pub_date"] == "2026-03-01T12:00:00+08:00"

    def test_bad_pub_date_is_tolerated(self) -> None:
        assert format_item({"pub_date": "yesterday"})["pub_date"] is None


class TestHelpers:
    @pytest.mark.parametrize(
        "author,expected",
        [
            ("bob@u2.dmhy.org (bob)", "bob"),
            ("carol@u2.dmhy.org", "carol"),
            ("<b>dave</b>", "dave"),
            ("", "Unknown"),
        ],
    )
    def test_extract_uploader(self, author: str, expected: str) -> None:
        assert extract_uploader(author) == expected

    @pytest.mark.parametrize(
        "size,expected",
        [(0, "Unknown"), (512, "512.00 B"), (1536, "1.50 KiB"), (1024**3, "1.00 GiB")],
    )
    def test_format_size(self, size: int, expected: str) -> None:
        assert format_size(size) == expected

    def test_protocol_relative_image(self) -> None:
        assert extract_image('<img src="//i.example.com/a.png">') == "https://i.example.com/a.png"

    def test_bare_image_url(self) -> None:
        assert extract_image("cover: https://i.example.com/b.webp") == "https://i.example.com/b.webp"

    def test_no_image(self) -> None:
        assert extract_image("") is None
        assert extract_image('<img src="pic/trans.gif">') is None


class TestU2Feed:
    @pytest.mark.asyncio
    async def test_snapshot_skips_items_without_guid(self, mock_httpx_client) -> None:
        mock_httpx_client.get = AsyncMock(return_value=make_response(200, text=RSS))
        feed = U2Feed("https://u2.dmhy.org/torrentrss.php?passkey=x", http_client=mock_httpx_client)

        items = await feed.fetch_snapshot()

        assert [i.identity for i in items] == ["hash-1", "hash-2"]
        assert items[0].fingerprint == "[BDMV] Sousou no Frieren Vol.1"

    @pytest.mark.asyncio
    async def test_http_error_status(self, mock_httpx_client) -> None:
        mock_httpx_client.get = AsyncMock(return_value=make_response(502))
        with pytest.raises(UpstreamUnavailable, match="HTTP 502"):
            await U2Feed("https://u2", http_client=mock_httpx_client).fetch_snapshot()

    @pytest.mark.asyncio
    async def test_network_error(self, mock_httpx_client) -> None:
        mock_httpx_client.get = AsyncMock(side_effect=httpx.ConnectTimeout("slow"))
        with pytest.raises(UpstreamUnavailable):
            await U2Feed("https://u2", http_client=mock_httpx_client).fetch_snapshot()

    @pytest.mark.asyncio
    async def test_malformed_xml(self, mock_httpx_client) -> None:
        mock_httpx_client.get = AsyncMock(return_value=make_response(200, text="<rss><item>"))
        with pytest.raises(UpstreamUnavailable, match="unparseable"):
            await U2Feed("https://u2", http_client=mock_httpx_client).fetch_snapshot()

    def test_default_filter(self) -> None:
        feed = U2Feed("https://u2")
        everyone = Recipient("chan-1")
        assert feed.matches(everyone, feed_item("[BDMV] Show"))
        assert feed.matches(everyone, feed_item("Show blu-ray box"))
        assert not feed.matches(everyone, feed_item("[Lossless] OST"))

    def test_custom_filter(self) -> None:
        feed = U2Feed("https://u2")
        lossless = Recipient("chan-2", filter="lossless|flac")
        assert feed.matches(lossless, feed_item("[Lossless] OST"))
        assert not feed.matches(lossless, feed_item("[BDMV] Show"))

    def test_invalid_filter_falls_back_to_default(self) -> None:
        feed = U2Feed("https://u2")
        broken = Recipient("chan-3", filter="([unclosed")
        assert feed.matches(broken, feed_item("[BDMV] Show"))
        assert not feed.matches(broken, feed_item("([unclosed"))

    def test_render_marks_edits(self) -> None:
        feed = U2Feed("https://u2")
        payload = feed.render(Change(feed_item("[BDMV] Retitled"), ChangeKind.EDITED))
        assert payload["edited"] is True
        assert payload["kind"] == "edited"
        assert payload["feed"] == "u2"
