"""Tests for the ingestion coordinator."""

import httpx
import pytest

from conftest import FIXED_NOW, RecordingSink, StaticSubscriptions
from dayroll.config import Settings
from dayroll.ingestion.base import BaseIngestor, IngestionConfig, IngestResult, PipelineOptions
from dayroll.ingestion.coordinator import (
    IngestionCoordinator,
    build_services,
    partition_subscriptions,
    run_ingestion_cycle,
)
from dayroll.ingestion.rss import RssIngestor
from dayroll.ingestion.spotify import SpotifyIngestor
from dayroll.ingestion.youtube import YouTubeIngestor
from dayroll.schemas import IngestRoute

SHOW_ID = "4rOoJ6Egrf8K2IrywzwOMk"


class FakeIngestor(BaseIngestor):
    """Records the subscriptions it was asked to ingest."""

    def __init__(self, name: str, ingested: int = 1, **kwargs):
        super().__init__(**kwargs)
        self.name = name
        self.ingested = ingested
        self.seen: list[str] = []
        self.bucket_calls = 0

    async def ingest_subscriptions(self, sink, subscriptions):
        self.bucket_calls += 1
        return await super().ingest_subscriptions(sink, subscriptions)

    async def ingest_subscription(self, sink, subscription):
        self.seen.append(subscription.id)
        return IngestResult(
            subscription_id=subscription.id,
            attempted=self.ingested,
            ingested=self.ingested,
            fetched_at=FIXED_NOW,
        )


class ExplodingIngestor(FakeIngestor):
    async def ingest_subscriptions(self, sink, subscriptions):
        raise RuntimeError("pipeline exploded")


@pytest.fixture
def fakes():
    return {
        "rss": FakeIngestor("rss", ingested=2),
        "youtube": FakeIngestor("youtube", ingested=3),
        "spotify": FakeIngestor("spotify", ingested=5),
    }


@pytest.fixture
def mixed_subscriptions(make_subscription):
    return [
        make_subscription(id="news-1", source_kind="news"),
        make_subscription(id="yt-1", source_kind="youtube", source_id="UCabc123"),
        make_subscription(id="pod-rss", source_kind="podcast", source_id="https://feeds.example.com/pod.xml"),
        make_subscription(id="pod-spotify", source_kind="podcast", source_id=SHOW_ID),
        make_subscription(id="topic-1", source_kind="topic", source_id="machine learning"),
        make_subscription(id="inactive", source_kind="news", is_active=False),
    ]


class TestPartitionSubscriptions:
    """Tests for partition_subscriptions."""

    def test_buckets_by_route(self, mixed_subscriptions):
        buckets = partition_subscriptions(mixed_subscriptions)

        assert [s.id for s in buckets["rss"]] == ["news-1", "pod-rss"]
        assert [s.id for s in buckets["youtube"]] == ["yt-1"]
        assert [s.id for s in buckets["spotify"]] == ["pod-spotify"]

    def test_explicit_route_overrides_shape(self, make_subscription):
        subscription = make_subscription(
            id="pinned",
            source_kind="podcast",
            source_id=SHOW_ID,
            route=IngestRoute.RSS,
        )
        buckets = partition_subscriptions([subscription])
        assert [s.id for s in buckets["rss"]] == ["pinned"]
        assert buckets["spotify"] == []

    def test_deterministic(self, mixed_subscriptions):
        assert partition_subscriptions(mixed_subscriptions) == partition_subscriptions(mixed_subscriptions)


class TestBuildServices:
    """Tests for build_services."""

    def test_constructs_pipelines_from_settings(self):
        settings = Settings(
            youtube_api_key="yt-key",
            spotify_client_id="id",
            spotify_client_secret="secret",
            _env_file=None,
        )
        config = IngestionConfig(youtube=PipelineOptions(max_pages=2), settings={"user_agent": "custom/1.0"})

        services = build_services(config, settings=settings)

        assert isinstance(services["rss"], RssIngestor)
        assert isinstance(services["youtube"], YouTubeIngestor)
        assert isinstance(services["spotify"], SpotifyIngestor)
        assert services["youtube"].api_key == "yt-key"
        assert services["youtube"].options.max_pages == 2
        assert services["spotify"].credentials.client_secret == "secret"
        assert services["rss"].user_agent == "custom/1.0"

    def test_missing_spotify_secret_means_no_credentials(self):
        settings = Settings(spotify_client_id="id", spotify_client_secret="", _env_file=None)

        services = build_services(IngestionConfig(), settings=settings)

        assert services["spotify"].credentials is None


class TestIngestionCoordinator:
    """Tests for IngestionCoordinator.run_cycle."""

    @pytest.mark.asyncio
    async def test_routes_and_totals(self, fakes, mixed_subscriptions):
        events = []
        coordinator = IngestionCoordinator(
            StaticSubscriptions(mixed_subscriptions),
            RecordingSink(),
            services=fakes,
            event_sink=events.append,
            clock=lambda: FIXED_NOW,
        )

        summary = await coordinator.run_cycle()

        assert fakes["rss"].seen == ["news-1", "pod-rss"]
        assert fakes["youtube"].seen == ["yt-1"]
        assert fakes["spotify"].seen == ["pod-spotify"]
        assert summary.totals.ingested == 2 * 2 + 3 + 5
        assert summary.totals.errors == 0
        assert [r.subscription_id for r in summary.rss] == ["news-1", "pod-rss"]
        assert [(e.service, e.result.subscription_id) for e in events] == [
            ("rss", "news-1"),
            ("rss", "pod-rss"),
            ("youtube", "yt-1"),
            ("spotify", "pod-spotify"),
        ]

    @pytest.mark.asyncio
    async def test_empty_bucket_never_invoked(self, fakes, make_subscription):
        coordinator = IngestionCoordinator(
            StaticSubscriptions([make_subscription(id="news-1")]),
            RecordingSink(),
            services=fakes,
        )

        summary = await coordinator.run_cycle()

        assert fakes["rss"].bucket_calls == 1
        assert fakes["youtube"].bucket_calls == 0
        assert fakes["spotify"].bucket_calls == 0
        assert summary.youtube == []
        assert summary.spotify == []

    @pytest.mark.asyncio
    async def test_failing_pipeline_is_isolated(self, fakes, mixed_subscriptions):
        fakes["rss"] = ExplodingIngestor("rss")
        coordinator = IngestionCoordinator(
            StaticSubscriptions(mixed_subscriptions),
            RecordingSink(),
            services=fakes,
        )

        summary = await coordinator.run_cycle()

        assert [r.errors for r in summary.rss] == [1, 1]
        assert "pipeline exploded" in summary.rss[0].error
        assert fakes["youtube"].seen == ["yt-1"]
        assert fakes["spotify"].seen == ["pod-spotify"]
        assert summary.totals.errors == 2

    @pytest.mark.asyncio
    async def test_subscription_source_errors_propagate(self, fakes):
        class BrokenSource:
            async def list_active_subscriptions(self):
                raise ConnectionError("subscription store down")

        coordinator = IngestionCoordinator(BrokenSource(), RecordingSink(), services=fakes)

        with pytest.raises(ConnectionError):
            await coordinator.run_cycle()

    @pytest.mark.asyncio
    async def test_summary_is_json_ready(self, fakes, mixed_subscriptions):
        coordinator = IngestionCoordinator(
            StaticSubscriptions(mixed_subscriptions),
            RecordingSink(),
            services=fakes,
            clock=lambda: FIXED_NOW,
        )

        data = (await coordinator.run_cycle()).to_dict()

        assert data["totals"]["ingested"] == 12
        assert data["duration_seconds"] == 0
        assert data["started_at"] == FIXED_NOW.isoformat()
        assert len(data["rss"]) == 2

    @pytest.mark.asyncio
    async def test_end_to_end_with_real_pipelines(self, make_subscription, fast_options):
        feed = b"""<?xml version="1.0"?>
<rss version="2.0"><channel><title>Feed</title>
  <item><title>Story</title><link>https://example.com/s</link><guid isPermaLink="false">s1</guid></item>
</channel></rss>"""
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, content=feed)

        transport = httpx.MockTransport(handler)
        services = {
            "rss": RssIngestor(fast_options, transport=transport),
            "youtube": YouTubeIngestor(fast_options, api_key=None, transport=transport),
            "spotify": SpotifyIngestor(fast_options, credentials=None, transport=transport),
        }
        sink = RecordingSink()
        subscriptions = [
            make_subscription(id="news-1"),
            make_subscription(id="yt-1", source_kind="youtube", source_id="UCabc123"),
            make_subscription(id="pod-1", source_kind="podcast", source_id=SHOW_ID),
        ]
        coordinator = IngestionCoordinator(StaticSubscriptions(subscriptions), sink, services=services)

        summary = await coordinator.run_cycle()

        assert summary.totals.ingested == 1
        assert summary.totals.errors == 2
        assert len(requests) == 1
        assert [item.external_id for item in sink.items] == ["s1"]


class TestRunIngestionCycle:
    """Tests for the run_ingestion_cycle convenience function."""

    @pytest.mark.asyncio
    async def test_no_subscriptions(self, tmp_path):
        sink = RecordingSink()

        summary = await run_ingestion_cycle(
            StaticSubscriptions([]),
            sink,
            config_path=str(tmp_path / "missing.yml"),
        )

        assert summary.totals.attempted == 0
        assert summary.rss == summary.youtube == summary.spotify == []
        assert sink.batches == []
