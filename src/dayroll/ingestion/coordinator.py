"""Ingestion coordinator - routes subscriptions to pipelines and aggregates results."""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

from dayroll.config import Settings, get_settings
from dayroll.ingestion.base import (
    BaseIngestor,
    Clock,
    ContentSink,
    IngestionConfig,
    IngestResult,
    SubscriptionSource,
    utcnow,
)
from dayroll.ingestion.rss import RssIngestor
from dayroll.ingestion.spotify import SpotifyCredentials, SpotifyIngestor
from dayroll.ingestion.youtube import YouTubeIngestor
from dayroll.logging import get_logger
from dayroll.schemas import IngestRoute, Subscription

logger = get_logger(__name__)

ServiceName = Literal["rss", "youtube", "spotify"]

# Buckets run in this order, one after another
SERVICE_ORDER: tuple[ServiceName, ...] = ("rss", "youtube", "spotify")


@dataclass(frozen=True)
class IngestionEvent:
    """One completed per-subscription result, tagged with the pipeline that produced it."""

    service: ServiceName
    result: IngestResult


EventSink = Callable[[IngestionEvent], None]


@dataclass
class IngestTotals:
    attempted: int = 0
    ingested: int = 0
    skipped: int = 0
    errors: int = 0

    def add(self, result: IngestResult) -> None:
        self.attempted += result.attempted
        self.ingested += result.ingested
        self.skipped += result.skipped
        self.errors += result.errors


@dataclass
class CycleSummary:
    """Everything one ingestion cycle produced."""

    started_at: datetime
    finished_at: datetime
    totals: IngestTotals = field(default_factory=IngestTotals)
    rss: list[IngestResult] = field(default_factory=list)
    youtube: list[IngestResult] = field(default_factory=list)
    spotify: list[IngestResult] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "duration_seconds": round((self.finished_at - self.started_at).total_seconds(), 3),
            "totals": {
                "attempted": self.totals.attempted,
                "ingested": self.totals.ingested,
                "skipped": self.totals.skipped,
                "errors": self.totals.errors,
            },
            "rss": [r.to_dict() for r in self.rss],
            "youtube": [r.to_dict() for r in self.youtube],
            "spotify": [r.to_dict() for r in self.spotify],
        }


def partition_subscriptions(
    subscriptions: list[Subscription],
) -> dict[ServiceName, list[Subscription]]:
    """Split active subscriptions into per-pipeline buckets, preserving order."""
    buckets: dict[ServiceName, list[Subscription]] = {name: [] for name in SERVICE_ORDER}
    for subscription in subscriptions:
        if not subscription.is_active:
            continue
        if subscription.route == IngestRoute.RSS:
            buckets["rss"].append(subscription)
        elif subscription.route == IngestRoute.YOUTUBE:
            buckets["youtube"].append(subscription)
        elif subscription.route == IngestRoute.SPOTIFY:
            buckets["spotify"].append(subscription)
    return buckets


def build_services(
    config: IngestionConfig,
    settings: Settings | None = None,
    clock: Clock | None = None,
) -> dict[ServiceName, BaseIngestor]:
    """Construct the three pipelines from YAML tuning and environment credentials."""
    settings = settings or get_settings()
    user_agent = config.settings.get("user_agent") or settings.user_agent

    credentials = None
    if settings.has_spotify_credentials:
        credentials = SpotifyCredentials(
            client_id=settings.spotify_client_id,
            client_secret=settings.spotify_client_secret,
        )

    return {
        "rss": RssIngestor(config.rss, user_agent=user_agent, clock=clock),
        "youtube": YouTubeIngestor(
            config.youtube,
            api_key=settings.youtube_api_key or None,
            user_agent=user_agent,
            clock=clock,
        ),
        "spotify": SpotifyIngestor(
            config.spotify,
            credentials=credentials,
            user_agent=user_agent,
            clock=clock,
        ),
    }


class IngestionCoordinator:
    """Runs one ingestion cycle across every active subscription."""

    def __init__(
        self,
        subscriptions: SubscriptionSource,
        sink: ContentSink,
        config: IngestionConfig | None = None,
        services: dict[ServiceName, BaseIngestor] | None = None,
        event_sink: EventSink | None = None,
        clock: Clock | None = None,
    ):
        self.subscriptions = subscriptions
        self.sink = sink
        self.config = config or IngestionConfig()
        self.clock = clock or utcnow
        self.services = build_services(self.config, clock=clock)
        if services:
            self.services.update(services)
        self.event_sink = event_sink

    async def run_cycle(self) -> CycleSummary:
        """
        List active subscriptions, run each non-empty bucket, and summarize.

        Errors from the subscription source propagate: they are configuration
        level, not per-subscription.
        """
        started_at = self.clock()
        subscriptions = await self.subscriptions.list_active_subscriptions()
        buckets = partition_subscriptions(subscriptions)

        logger.info(
            "Starting ingestion cycle",
            subscriptions=len(subscriptions),
            **{name: len(bucket) for name, bucket in buckets.items()},
        )

        summary = CycleSummary(started_at=started_at, finished_at=started_at)
        for name in SERVICE_ORDER:
            bucket = buckets[name]
            if not bucket:
                continue
            results = await self._run_bucket(name, bucket)
            getattr(summary, name).extend(results)
            for result in results:
                summary.totals.add(result)
                self._emit(IngestionEvent(service=name, result=result))

        summary.finished_at = self.clock()

        logger.info(
            "Ingestion cycle complete",
            attempted=summary.totals.attempted,
            ingested=summary.totals.ingested,
            skipped=summary.totals.skipped,
            errors=summary.totals.errors,
        )
        return summary

    async def _run_bucket(self, name: ServiceName, bucket: list[Subscription]) -> list[IngestResult]:
        service = self.services[name]
        try:
            return await service.ingest_subscriptions(self.sink, bucket)
        except Exception as e:
            # A pipeline blowing up wholesale still yields one result per subscription
            logger.exception("Ingestion service failed", service=name, subscriptions=len(bucket))
            now = self.clock()
            return [BaseIngestor.error_result(sub, now, e) for sub in bucket]

    def _emit(self, event: IngestionEvent) -> None:
        result = event.result
        logger.info(
            "Subscription ingested",
            service=event.service,
            subscription_id=result.subscription_id,
            feed_title=result.feed_title,
            attempted=result.attempted,
            ingested=result.ingested,
            skipped=result.skipped,
            errors=result.errors,
        )
        if self.event_sink is not None:
            self.event_sink(event)


async def run_ingestion_cycle(
    subscriptions: SubscriptionSource,
    sink: ContentSink,
    config_path: str | None = None,
    event_sink: EventSink | None = None,
) -> CycleSummary:
    """
    Convenience function to run one cycle with default pipelines.

    Args:
        subscriptions: Source of active subscriptions
        sink: Content sink receiving validated content
        config_path: Path to ingestion.yml config file
        event_sink: Optional callback receiving one event per result

    Returns:
        The cycle summary
    """
    coordinator = IngestionCoordinator(
        subscriptions,
        sink,
        config=IngestionConfig.load(config_path),
        event_sink=event_sink,
    )
    return await coordinator.run_cycle()
