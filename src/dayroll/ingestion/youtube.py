"""YouTube channel ingestion through the uploads playlist of the Data API v3."""

from datetime import datetime
from typing import Any

from dayroll.exceptions import ConfigurationError, FetchError
from dayroll.ingestion.base import (
    BaseIngestor,
    ContentSink,
    IngestResult,
    MapResult,
    PipelineOptions,
)
from dayroll.logging import get_logger
from dayroll.schemas import Subscription, parse_timestamp

logger = get_logger(__name__)

API_ENDPOINT = "https://www.googleapis.com/youtube/v3/playlistItems"
WATCH_URL = "https://www.youtube.com/watch?v={video_id}"

THUMBNAIL_ORDER = ("maxres", "standard", "high", "medium", "default")
MAX_DESCRIPTION_LENGTH = 5000
MAX_PAGE_SIZE = 50


def derive_uploads_playlist_id(channel_id: str) -> str:
    """
    Swap the channel "UC" prefix for the uploads playlist "UU" prefix.

    Raises:
        ConfigurationError: if the id is not shaped like a channel id
    """
    channel_id = channel_id.strip()
    if not channel_id.startswith("UC") or len(channel_id) < 3:
        raise ConfigurationError(
            "Expected a YouTube channel id starting with UC",
            {"channel_id": channel_id},
        )
    return f"UU{channel_id[2:]}"


def pick_thumbnail(thumbnails: dict[str, Any] | None) -> str | None:
    """Best available thumbnail by resolution tag, else whatever comes first."""
    if not thumbnails:
        return None
    for key in THUMBNAIL_ORDER:
        url = (thumbnails.get(key) or {}).get("url")
        if url:
            return url
    for thumb in thumbnails.values():
        if isinstance(thumb, dict) and thumb.get("url"):
            return thumb["url"]
    return None


def map_playlist_items(
    items: list[dict[str, Any]],
    channel_id: str,
    channel_title: str | None,
    now: datetime,
) -> MapResult:
    """Map playlistItems resources to canonical content."""
    result = MapResult()

    for item in items:
        snippet = item.get("snippet") or {}
        details = item.get("contentDetails") or {}

        video_id = details.get("videoId") or (snippet.get("resourceId") or {}).get("videoId")
        title = (snippet.get("title") or "").strip()

        if not video_id or not title:
            result.reject(item, "Missing video id or title")
            continue

        published_at = parse_timestamp(details.get("videoPublishedAt")) or parse_timestamp(
            snippet.get("publishedAt")
        )
        description = snippet.get("description")

        candidate = {
            "source_kind": "youtube",
            "external_id": video_id,
            "source_id": channel_id,
            "title": title,
            "url": WATCH_URL.format(video_id=video_id),
            "creator": channel_title or snippet.get("channelTitle"),
            "thumbnail_url": pick_thumbnail(snippet.get("thumbnails")),
            "description": description[:MAX_DESCRIPTION_LENGTH] if description else None,
            "published_at": published_at or now,
        }
        result.accept_or_reject(candidate, item)

    return result


class YouTubeIngestor(BaseIngestor):
    """Ingests the uploads playlist of subscribed YouTube channels."""

    name = "youtube"

    def __init__(self, options: PipelineOptions | None = None, api_key: str | None = None, **kwargs: Any):
        super().__init__(options, **kwargs)
        self.api_key = api_key

    async def ingest_subscription(
        self,
        sink: ContentSink,
        subscription: Subscription,
    ) -> IngestResult:
        now = self.clock()
        feed_title = subscription.source_name or None

        if subscription.source_kind != "youtube":
            return self.empty_result(subscription, now, feed_title)

        try:
            if not self.api_key:
                raise ConfigurationError("YouTube API key is not configured")
            playlist_id = derive_uploads_playlist_id(subscription.source_id)
            items = await self._fetch_uploads(playlist_id)
        except (ConfigurationError, FetchError) as e:
            return self.failure(subscription, now, e, feed_title)

        mapped = map_playlist_items(items, subscription.source_id, feed_title, now)
        self.log_rejections(subscription, mapped.skipped)
        ingested = await self.upsert(sink, mapped.entries)

        return IngestResult(
            subscription_id=subscription.id,
            attempted=len(items),
            ingested=ingested,
            skipped=len(mapped.skipped),
            errors=0,
            feed_title=feed_title,
            fetched_at=now,
        )

    async def _fetch_uploads(self, playlist_id: str) -> list[dict[str, Any]]:
        """Page through the playlist until there is no next token or max_pages is hit."""
        page_size = min(MAX_PAGE_SIZE, max(1, self.options.max_results))
        items: list[dict[str, Any]] = []
        page_token: str | None = None
        pages = 0

        async with self.client() as client:
            while True:
                params = {
                    "part": "snippet,contentDetails",
                    "playlistId": playlist_id,
                    "maxResults": str(page_size),
                    "key": self.api_key,
                }
                if page_token:
                    params["pageToken"] = page_token

                page = await client.get_json(API_ENDPOINT, params=params)
                items.extend(page.get("items") or [])
                pages += 1

                page_token = page.get("nextPageToken")
                if not page_token or pages >= self.options.max_pages:
                    break

        logger.debug("Fetched uploads playlist", playlist_id=playlist_id, pages=pages, items=len(items))
        return items
