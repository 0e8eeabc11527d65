"""Tests for the RSS/Atom ingestion pipeline."""

from datetime import datetime, timezone

import httpx
import pytest

from conftest import FIXED_NOW, CountingHandler
from dayroll.exceptions import FeedParseError
from dayroll.ingestion.rss import RssIngestor, map_feed_items, parse_feed

FEED_URL = "https://example.com/feed.xml"

RSS_ONE_GOOD_ONE_LINKLESS = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>Example News</title>
    <link>https://example.com</link>
    <item>
      <title>Complete Story</title>
      <link>https://example.com/posts/complete</link>
      <guid isPermaLink="false">story-1</guid>
      <pubDate>Wed, 01 May 2024 10:00:00 GMT</pubDate>
      <description>All fields present.</description>
    </item>
    <item>
      <title>Story Without Link</title>
      <description>Nowhere to go.</description>
    </item>
  </channel>
</rss>
"""

RSS_WITH_EXTENSIONS = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0"
     xmlns:content="http://purl.org/rss/1.0/modules/content/"
     xmlns:dc="http://purl.org/dc/elements/1.1/"
     xmlns:media="http://search.yahoo.com/mrss/"
     xmlns:itunes="http://www.itunes.com/dtds/podcast-1.0.dtd">
  <channel>
    <title>Example Podcast</title>
    <link>https://pod.example.com</link>
    <itunes:image href="https://pod.example.com/cover.jpg"/>
    <item>
      <title>Episode One</title>
      <link>https://pod.example.com/ep1</link>
      <guid>https://pod.example.com/ep1</guid>
      <dc:creator>Jane Host</dc:creator>
      <dc:date>2024-05-02T08:00:00Z</dc:date>
      <content:encoded><![CDATA[<p>Full show notes</p>]]></content:encoded>
      <description>Short summary</description>
      <media:thumbnail url="https://pod.example.com/ep1.jpg"/>
      <enclosure url="https://pod.example.com/ep1.mp3" type="audio/mpeg" length="1234"/>
    </item>
    <item>
      <title>Episode Two</title>
      <link>https://pod.example.com/ep2</link>
      <guid>https://pod.example.com/ep2</guid>
    </item>
  </channel>
</rss>
"""

ATOM_FEED = """<?xml version="1.0" encoding="utf-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Atom Blog</title>
  <link href="https://blog.example.com/"/>
  <id>urn:uuid:feed</id>
  <updated>2024-05-03T12:00:00Z</updated>
  <entry>
    <title>Atom Entry</title>
    <link rel="alternate" href="https://blog.example.com/entry"/>
    <id>urn:uuid:entry-1</id>
    <updated>2024-05-03T12:00:00Z</updated>
    <author><name>Ann Author</name></author>
    <summary>An atom summary</summary>
  </entry>
</feed>
"""


def _rss_with_long_title() -> str:
    long_title = "x" * 300
    return f"""<?xml version="1.0"?>
<rss version="2.0"><channel><title>Feed</title>
  <item><title>Fine</title><link>https://example.com/a</link><guid isPermaLink="false">a</guid></item>
  <item><title>{long_title}</title><link>https://example.com/b</link><guid isPermaLink="false">b</guid></item>
</channel></rss>"""


def _feed_handler(body: str, status: int = 200) -> CountingHandler:
    return CountingHandler(
        lambda request: httpx.Response(
            status,
            content=body.encode("utf-8"),
            headers={"Content-Type": "application/rss+xml"},
        )
    )


class TestParseFeed:
    """Tests for parse_feed."""

    def test_drops_items_without_link(self):
        feed = parse_feed(RSS_ONE_GOOD_ONE_LINKLESS)

        assert feed.title == "Example News"
        assert len(feed.items) == 1
        item = feed.items[0]
        assert item.id == "story-1"
        assert item.link == "https://example.com/posts/complete"
        assert item.published_at == datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)

    def test_extension_fields(self):
        feed = parse_feed(RSS_WITH_EXTENSIONS)

        assert feed.image_url == "https://pod.example.com/cover.jpg"
        first = feed.items[0]
        assert first.author == "Jane Host"
        assert "Full show notes" in first.description
        assert first.image_url == "https://pod.example.com/ep1.jpg"
        assert first.enclosure_url == "https://pod.example.com/ep1.mp3"
        assert first.published_at == datetime(2024, 5, 2, 8, 0, tzinfo=timezone.utc)

    def test_atom_href_links_and_author_node(self):
        feed = parse_feed(ATOM_FEED)

        assert feed.title == "Atom Blog"
        entry = feed.items[0]
        assert entry.id == "urn:uuid:entry-1"
        assert entry.link == "https://blog.example.com/entry"
        assert entry.author == "Ann Author"
        assert entry.description == "An atom summary"

    def test_not_a_feed(self):
        with pytest.raises(FeedParseError):
            parse_feed(b"this is not xml at all <<<")


class TestMapFeedItems:
    """Tests for map_feed_items."""

    def test_fallbacks(self, make_subscription):
        subscription = make_subscription(source_kind="podcast", source_name="My Pod")
        feed = parse_feed(RSS_WITH_EXTENSIONS)

        mapped = map_feed_items(feed, subscription, FIXED_NOW)

        assert len(mapped.entries) == 2
        second = mapped.entries[1]
        assert second.source_kind == "podcast"
        assert second.creator == "My Pod"
        assert second.thumbnail_url == "https://pod.example.com/cover.jpg"
        assert second.published_at == FIXED_NOW
        assert second.source_id == subscription.source_id

    def test_description_capped(self, make_subscription):
        long_body = "word " * 1000
        document = f"""<?xml version="1.0"?>
<rss version="2.0"><channel><title>Feed</title>
  <item><title>Long</title><link>https://example.com/long</link><description>{long_body}</description></item>
</channel></rss>"""

        mapped = map_feed_items(parse_feed(document), make_subscription(), FIXED_NOW)

        assert len(mapped.entries[0].description) <= 2000


class TestRssIngestor:
    """Tests for RssIngestor.ingest_subscription."""

    @pytest.mark.asyncio
    async def test_linkless_item_never_reaches_sink(self, sink, clock, fast_options, make_subscription):
        handler = _feed_handler(RSS_ONE_GOOD_ONE_LINKLESS)
        ingestor = RssIngestor(fast_options, transport=httpx.MockTransport(handler), clock=clock)

        result = await ingestor.ingest_subscription(sink, make_subscription())

        assert (result.attempted, result.ingested, result.skipped, result.errors) == (1, 1, 0, 0)
        assert result.feed_title == "Example News"
        assert [item.title for item in sink.items] == ["Complete Story"]
        assert handler.requests[0].headers["Accept"].startswith("application/rss+xml")
        assert "DayrollIngestor" in handler.requests[0].headers["User-Agent"]

    @pytest.mark.asyncio
    async def test_validation_rejections_are_skipped(self, sink, clock, fast_options, make_subscription):
        handler = _feed_handler(_rss_with_long_title())
        ingestor = RssIngestor(fast_options, transport=httpx.MockTransport(handler), clock=clock)

        result = await ingestor.ingest_subscription(sink, make_subscription())

        assert (result.attempted, result.ingested, result.skipped, result.errors) == (2, 1, 1, 0)
        assert [item.external_id for item in sink.items] == ["a"]

    @pytest.mark.asyncio
    async def test_transient_502_then_success(self, sink, clock, fast_options, make_subscription):
        responses = iter([502, 200])
        handler = CountingHandler(
            lambda request: httpx.Response(next(responses), content=RSS_ONE_GOOD_ONE_LINKLESS.encode())
        )
        ingestor = RssIngestor(fast_options, transport=httpx.MockTransport(handler), clock=clock)

        result = await ingestor.ingest_subscription(sink, make_subscription())

        assert result.errors == 0
        assert result.ingested == 1
        assert handler.calls == 2

    @pytest.mark.asyncio
    async def test_fetch_failure(self, sink, clock, fast_options, make_subscription):
        handler = _feed_handler("", status=500)
        ingestor = RssIngestor(fast_options, transport=httpx.MockTransport(handler), clock=clock)

        result = await ingestor.ingest_subscription(sink, make_subscription())

        assert (result.attempted, result.ingested, result.skipped, result.errors) == (0, 0, 0, 1)
        assert result.error
        assert handler.calls == fast_options.max_retries
        assert sink.batches == []

    @pytest.mark.asyncio
    async def test_not_found_fails_fast(self, sink, clock, fast_options, make_subscription):
        handler = _feed_handler("", status=404)
        ingestor = RssIngestor(fast_options, transport=httpx.MockTransport(handler), clock=clock)

        result = await ingestor.ingest_subscription(sink, make_subscription())

        assert result.errors == 1
        assert handler.calls == 1

    @pytest.mark.asyncio
    async def test_unreadable_document(self, sink, clock, fast_options, make_subscription):
        handler = _feed_handler("<html><body>oops")
        ingestor = RssIngestor(fast_options, transport=httpx.MockTransport(handler), clock=clock)

        result = await ingestor.ingest_subscription(sink, make_subscription())

        assert result.errors == 1
        assert result.attempted == 0

    @pytest.mark.asyncio
    async def test_unsupported_kind_makes_no_request(self, sink, clock, fast_options, make_subscription):
        handler = _feed_handler(RSS_ONE_GOOD_ONE_LINKLESS)
        ingestor = RssIngestor(fast_options, transport=httpx.MockTransport(handler), clock=clock)

        result = await ingestor.ingest_subscription(sink, make_subscription(source_kind="youtube"))

        assert (result.attempted, result.ingested, result.skipped, result.errors) == (0, 0, 0, 0)
        assert handler.calls == 0

    @pytest.mark.asyncio
    async def test_empty_feed_skips_sink(self, sink, clock, fast_options, make_subscription):
        document = '<?xml version="1.0"?><rss version="2.0"><channel><title>Empty</title></channel></rss>'
        handler = _feed_handler(document)
        ingestor = RssIngestor(fast_options, transport=httpx.MockTransport(handler), clock=clock)

        result = await ingestor.ingest_subscription(sink, make_subscription())

        assert result.attempted == 0
        assert result.errors == 0
        assert sink.batches == []

    @pytest.mark.asyncio
    async def test_sink_failure_is_isolated(self, clock, fast_options, make_subscription):
        class BrokenSink:
            async def upsert_many(self, items):
                raise RuntimeError("database unavailable")

        handler = _feed_handler(RSS_ONE_GOOD_ONE_LINKLESS)
        ingestor = RssIngestor(fast_options, transport=httpx.MockTransport(handler), clock=clock)
        subscriptions = [make_subscription(id="a"), make_subscription(id="b")]

        results = await ingestor.ingest_subscriptions(BrokenSink(), subscriptions)

        assert [r.subscription_id for r in results] == ["a", "b"]
        assert all(r.errors == 1 for r in results)
        assert "database unavailable" in results[0].error
