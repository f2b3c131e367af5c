"""Tests for feed acquisition and parsing."""
import pytest
import httpx
import xml.etree.ElementTree as ET

from autopilot.integrations.feeds import (
    FeedSourceAdapter,
    collect_media,
    images_in_html,
    parse_feed,
    strip_html,
)


RSS_OUT_OF_ORDER = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0"
     xmlns:content="http://purl.org/rss/1.0/modules/content/"
     xmlns:media="http://search.yahoo.com/mrss/">
  <channel>
    <title>Example blog</title>
    <item>
      <title>Older post</title>
      <link>https://blog.example.com/a</link>
      <guid>A</guid>
      <pubDate>Mon, 29 Apr 2024 10:00:00 GMT</pubDate>
      <description>First post</description>
    </item>
    <item>
      <title>Newer post</title>
      <link>https://blog.example.com/b</link>
      <guid>B</guid>
      <pubDate>Wed, 01 May 2024 10:00:00 GMT</pubDate>
      <description><![CDATA[<p>Hello <img src="https://blog.example.com/desc.jpg"></p>]]></description>
      <content:encoded><![CDATA[<p>Body <img data-src="https://blog.example.com/lazy.jpg"> <img src="https://blog.example.com/pixel.gif"></p>]]></content:encoded>
      <media:content url="https://blog.example.com/hero.jpg" medium="image" />
      <media:thumbnail url="https://blog.example.com/thumb.jpg" />
      <enclosure url="https://blog.example.com/cover.png" type="image/png" length="100" />
      <enclosure url="https://blog.example.com/episode.mp3" type="audio/mpeg" length="100" />
    </item>
    <item>
      <title>Undated post</title>
      <link>https://blog.example.com/c</link>
    </item>
  </channel>
</rss>
"""

ATOM_FEED = """<?xml version="1.0" encoding="utf-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Example atom</title>
  <entry>
    <title>First entry</title>
    <id>urn:uuid:1</id>
    <link rel="alternate" href="https://atom.example.com/1"/>
    <updated>2024-04-30T08:00:00Z</updated>
    <summary>Short summary</summary>
  </entry>
  <entry>
    <title>Second entry</title>
    <id>urn:uuid:2</id>
    <link rel="enclosure" type="image/jpeg" href="https://atom.example.com/2.jpg"/>
    <link rel="alternate" href="https://atom.example.com/2"/>
    <published>2024-05-01T08:00:00+00:00</published>
    <content type="html">Full text</content>
  </entry>
</feed>
"""


class TestStripHtml:
    def test_removes_tags_and_entities(self):
        assert strip_html("<p>Tom &amp; Jerry <b>rock</b></p>") == "Tom & Jerry rock"

    def test_empty(self):
        assert strip_html(None) == ""


class TestMediaCollection:
    """Tests for media discovery helpers."""

    def test_images_in_html_reads_src_and_data_src(self):
        markup = '<img src="https://a.com/1.jpg"><img class="lazy" data-src="https://a.com/2.jpg">'
        assert images_in_html(markup) == ["https://a.com/1.jpg", "https://a.com/2.jpg"]

    def test_collect_media_filters_and_dedupes(self):
        media = collect_media(
            [
                "https://a.com/1.jpg",
                "https://a.com/1.jpg",
                "https://a.com/tracking-pixel.gif",
                "data:image/png;base64,AAAA",
                "https://a.com/2.jpg",
            ],
            limit=8,
        )
        assert media == ["https://a.com/1.jpg", "https://a.com/2.jpg"]

    def test_collect_media_caps(self):
        urls = [f"https://a.com/{i}.jpg" for i in range(12)]
        assert len(collect_media(urls, limit=8)) == 8


class TestParseFeed:
    """Tests for RSS and Atom parsing."""

    def test_rss_sorted_newest_first(self):
        items = parse_feed(RSS_OUT_OF_ORDER)
        assert [item.guid for item in items] == ["B", "A", "https://blog.example.com/c"]

    def test_rss_fields(self):
        newest = parse_feed(RSS_OUT_OF_ORDER)[0]
        assert newest.title == "Newer post"
        assert newest.link == "https://blog.example.com/b"
        assert "Body" in newest.content
        assert newest.published_at.year == 2024

    def test_rss_media_priority(self):
        newest = parse_feed(RSS_OUT_OF_ORDER)[0]
        assert newest.media_urls == [
            "https://blog.example.com/hero.jpg",
            "https://blog.example.com/thumb.jpg",
            "https://blog.example.com/cover.png",
            "https://blog.example.com/lazy.jpg",
            "https://blog.example.com/desc.jpg",
        ]

    def test_media_cap(self):
        newest = parse_feed(RSS_OUT_OF_ORDER, max_media=2)[0]
        assert len(newest.media_urls) == 2

    def test_undated_items_last(self):
        items = parse_feed(RSS_OUT_OF_ORDER)
        assert items[-1].published_at is None

    def test_atom(self):
        items = parse_feed(ATOM_FEED)
        assert [item.guid for item in items] == ["urn:uuid:2", "urn:uuid:1"]
        assert items[0].link == "https://atom.example.com/2"
        assert items[0].media_urls == ["https://atom.example.com/2.jpg"]
        assert items[1].description == "Short summary"

    def test_malformed_raises(self):
        with pytest.raises(ET.ParseError):
            parse_feed("<rss><channel>")


class TestFeedSourceAdapter:
    """Tests for FeedSourceAdapter with a mocked transport."""

    @pytest.mark.asyncio
    async def test_fetch_items(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, text=RSS_OUT_OF_ORDER)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        adapter = FeedSourceAdapter(client=client)

        items = await adapter.fetch_items("https://blog.example.com/feed")

        assert items[0].guid == "B"
        assert "rss" in requests[0].headers["accept"]
        await adapter.close()

    @pytest.mark.asyncio
    async def test_http_error_yields_empty(self):
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(503, text="down"))
        )
        adapter = FeedSourceAdapter(client=client)

        assert await adapter.fetch_items("https://blog.example.com/feed") == []
        await adapter.close()

    @pytest.mark.asyncio
    async def test_parse_error_yields_empty(self):
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(200, text="<html><body>"))
        )
        adapter = FeedSourceAdapter(client=client)

        assert await adapter.fetch_items("https://blog.example.com/feed") == []
        await adapter.close()

    @pytest.mark.asyncio
    async def test_network_error_yields_empty(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        adapter = FeedSourceAdapter(client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))

        assert await adapter.fetch_items("https://blog.example.com/feed") == []
        await adapter.close()
