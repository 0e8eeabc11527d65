"""RSS/Atom feed ingestion pipeline."""

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import feedparser

from dayroll.exceptions import FeedParseError, FetchError
from dayroll.ingestion.base import BaseIngestor, ContentSink, IngestResult, MapResult
from dayroll.logging import get_logger
from dayroll.schemas import Subscription, parse_timestamp

logger = get_logger(__name__)

RSS_ACCEPT = "application/rss+xml, application/atom+xml, application/xml;q=0.9, text/xml;q=0.8, */*;q=0.1"

# Subscription kinds that can be served by a syndication feed
FEED_SOURCE_KINDS = ("news", "podcast")

MAX_DESCRIPTION_LENGTH = 2000


@dataclass
class FeedItem:
    """One feed entry after fallback resolution."""

    id: str
    title: str
    link: str
    description: str | None = None
    published_at: datetime | None = None
    author: str | None = None
    enclosure_url: str | None = None
    image_url: str | None = None


@dataclass
class ParsedFeed:
    """Uniform view over RSS 2.0 and Atom documents."""

    title: str | None = None
    link: str | None = None
    image_url: str | None = None
    items: list[FeedItem] = field(default_factory=list)


def _text(value: Any) -> str:
    if isinstance(value, str):
        return value.strip()
    return ""


def _first_url(nodes: Any, *, images_only: bool = False) -> str | None:
    """Pick the first url/href out of a feedparser list-of-dicts (or a single dict)."""
    if not nodes:
        return None
    if isinstance(nodes, dict):
        nodes = [nodes]
    for node in nodes:
        if not isinstance(node, dict):
            continue
        if images_only:
            medium = node.get("medium") or ""
            mime = node.get("type") or ""
            if medium and medium != "image":
                continue
            if mime and not mime.startswith("image/"):
                continue
        url = _text(node.get("url")) or _text(node.get("href"))
        if url:
            return url
    return None


def _entry_date(entry: Any) -> datetime | None:
    """Publish date from pubDate/published, updated (incl. dc:date), then created."""
    for key in ("published", "updated", "created"):
        parsed: time.struct_time | None = entry.get(f"{key}_parsed")
        if parsed:
            try:
                return datetime(*parsed[:6], tzinfo=timezone.utc)
            except (TypeError, ValueError):
                pass
        raw = parse_timestamp(_text(entry.get(key)))
        if raw:
            return raw
    return None


def _entry_description(entry: Any) -> str | None:
    content = entry.get("content")
    if content:
        value = _text(content[0].get("value"))
        if value:
            return value
    return _text(entry.get("summary")) or _text(entry.get("description")) or None


def _entry_author(entry: Any) -> str | None:
    author = _text(entry.get("author"))
    if author:
        return author
    detail = entry.get("author_detail") or {}
    name = _text(detail.get("name"))
    if name:
        return name
    for person in entry.get("authors") or []:
        name = _text(person.get("name")) if isinstance(person, dict) else _text(person)
        if name:
            return name
    return None


def _entry_link(entry: Any) -> str:
    link = _text(entry.get("link"))
    # feedparser promotes a permalink guid to the link; a non-URL guid is no link
    if link and entry.get("guidislink") and not link.startswith(("http://", "https://")):
        link = ""
    if link:
        return link
    for candidate in entry.get("links") or []:
        href = _text(candidate.get("href"))
        if href and candidate.get("rel", "alternate") == "alternate":
            return href
    # Atom ids are frequently the permalink
    entry_id = _text(entry.get("id"))
    if entry_id.startswith(("http://", "https://")):
        return entry_id
    return ""


def _parse_entry(entry: Any) -> FeedItem | None:
    title = _text(entry.get("title"))
    link = _entry_link(entry)
    entry_id = (_text(entry.get("id")) or link or title).strip()
    if not entry_id or not title or not link:
        return None

    image_url = (
        _first_url(entry.get("media_thumbnail"))
        or _first_url(entry.get("media_content"), images_only=True)
        or _first_url(entry.get("image"))
    )

    return FeedItem(
        id=entry_id,
        title=title,
        link=link,
        description=_entry_description(entry),
        published_at=_entry_date(entry),
        author=_entry_author(entry),
        enclosure_url=_first_url(entry.get("enclosures")),
        image_url=image_url,
    )


def parse_feed(document: bytes | str) -> ParsedFeed:
    """
    Parse an RSS or Atom document.

    Entries without a usable id, title or link after fallback resolution are
    dropped here and never reach validation.

    Raises:
        FeedParseError: if the document is not a feed at all
    """
    if isinstance(document, str):
        document = document.encode("utf-8")

    parsed = feedparser.parse(document)
    channel = parsed.get("feed", {})

    if parsed.get("bozo") and not parsed.entries and not channel.get("title"):
        raise FeedParseError(
            "Document is not a readable feed",
            {"error": str(parsed.get("bozo_exception", ""))},
        )

    items: list[FeedItem] = []
    dropped = 0
    for entry in parsed.entries:
        item = _parse_entry(entry)
        if item is None:
            dropped += 1
            continue
        items.append(item)

    if dropped:
        logger.debug("Dropped feed entries missing id, title or link", count=dropped)

    image_url = (
        _first_url(channel.get("image"))
        or _first_url(channel.get("media_thumbnail"))
    )

    return ParsedFeed(
        title=_text(channel.get("title")) or None,
        link=_text(channel.get("link")) or None,
        image_url=image_url,
        items=items,
    )


def map_feed_items(
    feed: ParsedFeed,
    subscription: Subscription,
    now: datetime,
    fallback_creator: str | None = None,
    fallback_image: str | None = None,
) -> MapResult:
    """Map parsed feed items to canonical content, collecting rejections."""
    source_kind = "podcast" if subscription.source_kind == "podcast" else "news"
    fallback_creator = fallback_creator or subscription.source_name or None
    fallback_image = fallback_image or feed.image_url

    result = MapResult()
    for item in feed.items:
        description = item.description[:MAX_DESCRIPTION_LENGTH] if item.description else None
        candidate = {
            "source_kind": source_kind,
            "external_id": item.id,
            "source_id": subscription.source_id,
            "title": item.title,
            "url": item.link,
            "creator": item.author or fallback_creator,
            "thumbnail_url": item.image_url or fallback_image,
            "description": description,
            "published_at": item.published_at or now,
        }
        result.accept_or_reject(candidate, item)
    return result


class RssIngestor(BaseIngestor):
    """Ingests news and feed-backed podcast subscriptions."""

    name = "rss"

    async def ingest_subscription(
        self,
        sink: ContentSink,
        subscription: Subscription,
    ) -> IngestResult:
        now = self.clock()

        if subscription.source_kind not in FEED_SOURCE_KINDS:
            return self.empty_result(subscription, now)

        try:
            async with self.client(headers={"Accept": RSS_ACCEPT}) as client:
                response = await client.request("GET", subscription.source_id)
            feed = parse_feed(response.content)
        except (FetchError, FeedParseError) as e:
            return self.failure(subscription, now, e)

        mapped = map_feed_items(feed, subscription, now)
        self.log_rejections(subscription, mapped.skipped)
        ingested = await self.upsert(sink, mapped.entries)

        logger.debug(
            "Fetched feed",
            subscription_id=subscription.id,
            feed=feed.title,
            items=len(feed.items),
            ingested=ingested,
        )

        return IngestResult(
            subscription_id=subscription.id,
            attempted=len(feed.items),
            ingested=ingested,
            skipped=len(mapped.skipped),
            errors=0,
            feed_title=feed.title,
            fetched_at=now,
        )
