"""Spotify show ingestion through the Web API with client-credentials auth."""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any
from urllib.parse import quote, urlencode

from dayroll.exceptions import ConfigurationError, FetchError
from dayroll.ingestion.base import (
    BaseIngestor,
    ContentSink,
    IngestResult,
    MapResult,
    PipelineOptions,
)
from dayroll.ingestion.http import RetryingClient
from dayroll.logging import get_logger
from dayroll.schemas import Subscription, parse_spotify_show_id

logger = get_logger(__name__)

TOKEN_ENDPOINT = "https://accounts.spotify.com/api/token"
SHOW_ENDPOINT = "https://api.spotify.com/v1/shows/"
EPISODE_URL = "https://open.spotify.com/episode/{episode_id}"
DEFAULT_MARKET = "US"

MAX_DESCRIPTION_LENGTH = 5000
MAX_PAGE_SIZE = 50


@dataclass(frozen=True)
class SpotifyCredentials:
    client_id: str
    client_secret: str


def _first_image(images: list[dict[str, Any]] | None) -> str | None:
    for image in images or []:
        if image and image.get("url"):
            return image["url"]
    return None


def parse_release_date(value: str | None, precision: str | None = None) -> datetime | None:
    """Release dates come as YYYY, YYYY-MM or YYYY-MM-DD depending on precision."""
    if not value:
        return None
    formats = {"year": "%Y", "month": "%Y-%m", "day": "%Y-%m-%d"}
    candidates = [formats[precision]] if precision in formats else list(formats.values())[::-1]
    for fmt in candidates:
        try:
            return datetime.strptime(value.strip(), fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    return None


def duration_seconds(duration_ms: Any) -> int | None:
    """Milliseconds to whole seconds; zero or unknown becomes None."""
    if not isinstance(duration_ms, (int, float)) or duration_ms <= 0:
        return None
    seconds = round(duration_ms / 1000)
    return seconds or None


def build_episodes_url(show_id: str, limit: int = MAX_PAGE_SIZE, offset: int = 0) -> str:
    query = urlencode(
        {
            "market": DEFAULT_MARKET,
            "limit": min(MAX_PAGE_SIZE, max(1, limit)),
            "offset": max(0, offset),
        }
    )
    return f"{SHOW_ENDPOINT}{quote(show_id, safe='')}/episodes?{query}"


def map_episodes(episodes: list[dict[str, Any]], show: dict[str, Any], now: datetime) -> MapResult:
    """Map Spotify episode objects to canonical content."""
    result = MapResult()
    show_id = show.get("id") or ""
    creator = show.get("publisher") or show.get("name")
    show_image = _first_image(show.get("images"))

    for episode in episodes:
        if not episode:
            continue
        episode_id = episode.get("id")
        title = (episode.get("name") or "").strip()
        link = (episode.get("external_urls") or {}).get("spotify") or (
            EPISODE_URL.format(episode_id=episode_id) if episode_id else ""
        )

        if not episode_id or not title or not link:
            result.reject(episode, "Missing required Spotify episode metadata")
            continue

        description = episode.get("description")
        published_at = parse_release_date(
            episode.get("release_date"), episode.get("release_date_precision")
        )

        candidate = {
            "source_kind": "podcast",
            "external_id": episode_id,
            "source_id": show_id,
            "title": title,
            "url": link,
            "creator": creator,
            "thumbnail_url": _first_image(episode.get("images")) or show_image,
            "description": description[:MAX_DESCRIPTION_LENGTH] if description else None,
            "published_at": published_at or now,
            "duration_seconds": duration_seconds(episode.get("duration_ms")),
        }
        result.accept_or_reject(candidate, episode)

    return result


class SpotifyIngestor(BaseIngestor):
    """Ingests podcast subscriptions backed by a Spotify show."""

    name = "spotify"

    def __init__(
        self,
        options: PipelineOptions | None = None,
        credentials: SpotifyCredentials | None = None,
        **kwargs: Any,
    ):
        super().__init__(options, **kwargs)
        self.credentials = credentials

    async def ingest_subscription(
        self,
        sink: ContentSink,
        subscription: Subscription,
    ) -> IngestResult:
        now = self.clock()
        feed_title = subscription.source_name or None

        if subscription.source_kind != "podcast":
            return self.empty_result(subscription, now, feed_title)

        try:
            if self.credentials is None:
                raise ConfigurationError("Spotify client credentials are not configured")
            show_id = parse_spotify_show_id(subscription.source_id)
            if show_id is None:
                raise ConfigurationError(
                    "Expected a Spotify show id",
                    {"source_id": subscription.source_id},
                )
            async with self.client() as client:
                # The token lives only as long as this subscription's processing
                token = await self._fetch_token(client, self.credentials)
                show = await self._fetch_show(client, show_id, token)
                episodes = await self._fetch_episodes(client, show_id, token)
        except (ConfigurationError, FetchError) as e:
            return self.failure(subscription, now, e, feed_title)

        show.setdefault("id", show_id)
        mapped = map_episodes(episodes, show, now)
        self.log_rejections(subscription, mapped.skipped)
        ingested = await self.upsert(sink, mapped.entries)

        return IngestResult(
            subscription_id=subscription.id,
            attempted=len(episodes),
            ingested=ingested,
            skipped=len(mapped.skipped),
            errors=0,
            feed_title=show.get("name") or feed_title,
            fetched_at=now,
        )

    async def _fetch_token(self, client: RetryingClient, credentials: SpotifyCredentials) -> str:
        payload = await client.post_form(
            TOKEN_ENDPOINT,
            data={"grant_type": "client_credentials"},
            auth=(credentials.client_id, credentials.client_secret),
        )
        token = (payload or {}).get("access_token")
        if not token:
            raise FetchError("Token response did not include an access token", url=TOKEN_ENDPOINT)
        return token

    async def _fetch_show(self, client: RetryingClient, show_id: str, token: str) -> dict[str, Any]:
        return await client.get_json(
            f"{SHOW_ENDPOINT}{quote(show_id, safe='')}",
            params={"market": DEFAULT_MARKET},
            headers={"Authorization": f"Bearer {token}"},
        )

    async def _fetch_episodes(
        self,
        client: RetryingClient,
        show_id: str,
        token: str,
    ) -> list[dict[str, Any]]:
        """Follow the `next` links until exhausted or max_pages is reached."""
        episodes: list[dict[str, Any]] = []
        next_url: str | None = build_episodes_url(show_id, self.options.max_results)
        pages = 0

        while next_url and pages < self.options.max_pages:
            page = await client.get_json(next_url, headers={"Authorization": f"Bearer {token}"})
            episodes.extend(episode for episode in page.get("items") or [] if episode)
            next_url = page.get("next")
            pages += 1

        logger.debug("Fetched show episodes", show_id=show_id, pages=pages, episodes=len(episodes))
        return episodes
