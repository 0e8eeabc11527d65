"""Ingestion module for Dayroll - fetches, normalizes and stores upstream content."""

from dayroll.ingestion.base import (
    BaseIngestor,
    ContentSink,
    IngestionConfig,
    IngestResult,
    PipelineOptions,
    SubscriptionSource,
)
from dayroll.ingestion.coordinator import (
    CycleSummary,
    IngestionCoordinator,
    IngestionEvent,
    run_ingestion_cycle,
)
from dayroll.ingestion.http import RetryingClient, RetryPolicy
from dayroll.ingestion.rss import RssIngestor
from dayroll.ingestion.scheduler import IngestionScheduler
from dayroll.ingestion.spotify import SpotifyCredentials, SpotifyIngestor
from dayroll.ingestion.youtube import YouTubeIngestor

__all__ = [
    "BaseIngestor",
    "ContentSink",
    "CycleSummary",
    "IngestionConfig",
    "IngestionCoordinator",
    "IngestionEvent",
    "IngestionScheduler",
    "IngestResult",
    "PipelineOptions",
    "RetryingClient",
    "RetryPolicy",
    "RssIngestor",
    "SpotifyCredentials",
    "SpotifyIngestor",
    "SubscriptionSource",
    "YouTubeIngestor",
    "run_ingestion_cycle",
]
