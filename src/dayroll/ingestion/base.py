"""Base classes and schemas for the ingestion module."""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

import httpx
import yaml

from dayroll.exceptions import DayrollError, ValidationError
from dayroll.ingestion.http import RetryingClient, RetryPolicy
from dayroll.logging import get_logger
from dayroll.schemas import CanonicalContent, Subscription
from dayroll.validation import validate_content

logger = get_logger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SubscriptionSource(Protocol):
    """Read-only list of subscriptions, owned by the subscription store."""

    async def list_active_subscriptions(self) -> list[Subscription]: ...


class ContentSink(Protocol):
    """Idempotent bulk upsert keyed on (source_kind, external_id)."""

    async def upsert_many(self, items: list[CanonicalContent]) -> int: ...


@dataclass(frozen=True)
class IngestResult:
    """Outcome of ingesting one subscription in one cycle."""

    subscription_id: str
    attempted: int = 0
    ingested: int = 0
    skipped: int = 0
    errors: int = 0
    feed_title: str | None = None
    fetched_at: datetime = field(default_factory=utcnow)
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "subscription_id": self.subscription_id,
            "attempted": self.attempted,
            "ingested": self.ingested,
            "skipped": self.skipped,
            "errors": self.errors,
            "feed_title": self.feed_title,
            "fetched_at": self.fetched_at.isoformat(),
            "error": self.error,
        }


@dataclass(frozen=True)
class RejectedItem:
    """A source item that did not become canonical content, with the reason."""

    item: Any
    reason: str


@dataclass
class MapResult:
    """Accepted canonical entries and rejected items from one mapping pass."""

    entries: list[CanonicalContent] = field(default_factory=list)
    skipped: list[RejectedItem] = field(default_factory=list)

    def accept_or_reject(self, candidate: dict[str, Any], item: Any) -> None:
        """Validate a candidate and file it under entries or skipped."""
        try:
            self.entries.append(validate_content(candidate))
        except ValidationError as e:
            self.skipped.append(RejectedItem(item=item, reason=e.reasons))

    def reject(self, item: Any, reason: str) -> None:
        self.skipped.append(RejectedItem(item=item, reason=reason))


@dataclass
class PipelineOptions:
    """Per-pipeline retry, timeout and paging knobs."""

    max_retries: int = 3
    timeout: float = 15.0
    initial_retry_delay: float = 0.5
    retry_factor: float = 2.0
    randomize_backoff: bool = True
    delay_between: float = 0.0
    max_pages: int = 5
    max_results: int = 50

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "PipelineOptions":
        known = {f.name for f in fields(cls)}
        unknown = set(data or {}) - known
        if unknown:
            logger.warning("Ignoring unknown pipeline options", options=sorted(unknown))
        return cls(**{k: v for k, v in (data or {}).items() if k in known})

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=max(1, self.max_retries),
            base_delay=self.initial_retry_delay,
            multiplier=self.retry_factor,
            jitter=self.randomize_backoff,
        )


@dataclass
class IngestionConfig:
    """Ingestion tuning loaded from YAML."""

    rss: PipelineOptions = field(default_factory=PipelineOptions)
    youtube: PipelineOptions = field(default_factory=PipelineOptions)
    spotify: PipelineOptions = field(default_factory=PipelineOptions)
    settings: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def load(cls, config_path: str | Path | None = None) -> "IngestionConfig":
        """Load configuration from YAML file."""
        if config_path is None:
            # Default to config/ingestion.yml relative to project root
            config_path = Path(__file__).parent.parent.parent.parent / "config" / "ingestion.yml"

        config_path = Path(config_path)

        if not config_path.exists():
            logger.warning("Config file not found, using defaults", path=str(config_path))
            return cls()

        with open(config_path) as f:
            data = yaml.safe_load(f) or {}

        return cls(
            rss=PipelineOptions.from_dict(data.get("rss")),
            youtube=PipelineOptions.from_dict(data.get("youtube")),
            spotify=PipelineOptions.from_dict(data.get("spotify")),
            settings=data.get("settings") or {},
        )


class BaseIngestor(ABC):
    """
    Base class for all ingestion pipelines.

    Subclasses implement ingest_subscription for a single subscription;
    ingest_subscriptions runs a bucket sequentially and never lets one
    subscription's failure stop the rest.
    """

    name: str = "base"

    def __init__(
        self,
        options: PipelineOptions | None = None,
        user_agent: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Clock | None = None,
    ):
        self.options = options or PipelineOptions()
        self.user_agent = user_agent or "DayrollIngestor/0.1 (+https://dayroll.app)"
        self.transport = transport
        self.clock = clock or utcnow

    @abstractmethod
    async def ingest_subscription(
        self,
        sink: ContentSink,
        subscription: Subscription,
    ) -> IngestResult:
        """Fetch, map, validate and upsert one subscription."""

    async def ingest_subscriptions(
        self,
        sink: ContentSink,
        subscriptions: list[Subscription],
    ) -> list[IngestResult]:
        """Ingest a bucket of subscriptions one after another."""
        results: list[IngestResult] = []
        for subscription in subscriptions:
            try:
                result = await self.ingest_subscription(sink, subscription)
            except Exception as e:
                logger.exception(
                    "Ingestion failed unexpectedly",
                    service=self.name,
                    subscription_id=subscription.id,
                )
                result = self.error_result(subscription, self.clock(), e)
            results.append(result)
            if self.options.delay_between > 0:
                await asyncio.sleep(self.options.delay_between)
        return results

    def client(self, headers: dict[str, str] | None = None) -> RetryingClient:
        """A retrying client configured from this pipeline's options."""
        return RetryingClient(
            policy=self.options.retry_policy(),
            timeout=self.options.timeout,
            headers={"User-Agent": self.user_agent, **(headers or {})},
            transport=self.transport,
        )

    async def upsert(self, sink: ContentSink, entries: list[CanonicalContent]) -> int:
        """Send accepted entries to the sink; an empty batch is never sent."""
        if not entries:
            return 0
        return await sink.upsert_many(entries)

    def log_rejections(self, subscription: Subscription, rejected: list[RejectedItem]) -> None:
        for rejected_item in rejected:
            logger.debug(
                "Rejected content candidate",
                service=self.name,
                subscription_id=subscription.id,
                reason=rejected_item.reason,
            )

    @staticmethod
    def empty_result(
        subscription: Subscription,
        now: datetime,
        feed_title: str | None = None,
    ) -> IngestResult:
        return IngestResult(subscription_id=subscription.id, feed_title=feed_title, fetched_at=now)

    @staticmethod
    def error_result(
        subscription: Subscription,
        now: datetime,
        error: BaseException | str,
        feed_title: str | None = None,
    ) -> IngestResult:
        return IngestResult(
            subscription_id=subscription.id,
            errors=1,
            feed_title=feed_title,
            fetched_at=now,
            error=str(error),
        )

    def failure(
        self,
        subscription: Subscription,
        now: datetime,
        error: DayrollError,
        feed_title: str | None = None,
    ) -> IngestResult:
        """Log an expected per-subscription failure and turn it into a result."""
        logger.warning(
            "Subscription ingestion failed",
            service=self.name,
            subscription_id=subscription.id,
            error_type=type(error).__name__,
            error=str(error),
        )
        return self.error_result(subscription, now, error, feed_title)
