"""Repository layer for data access operations."""

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from dayroll.date_ranges import FeedRange, get_range_bounds
from dayroll.db.models import ContentItem, SubscriptionRow
from dayroll.logging import get_logger
from dayroll.schemas import CanonicalContent, ContentSourceKind, IngestRoute, Subscription

logger = get_logger(__name__)

UPSERT_CHUNK_SIZE = 100

# Columns refreshed when a (source_type, external_id) row already exists
MUTABLE_COLUMNS = (
    "source_id",
    "title",
    "creator",
    "url",
    "thumbnail_url",
    "description",
    "published_at",
    "dedupe_hash",
    "duration_seconds",
    "summary",
    "topics",
)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class SubscriptionRepository:
    """Repository for subscription reads."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def list_active_subscriptions(self) -> list[Subscription]:
        """All active subscriptions, oldest first."""
        result = await self.session.execute(
            select(SubscriptionRow)
            .where(SubscriptionRow.is_active.is_(True))
            .order_by(SubscriptionRow.created_at, SubscriptionRow.id)
        )
        return [self._to_schema(row) for row in result.scalars().all()]

    async def add(
        self,
        user_id: Any,
        source_type: str,
        source_id: str,
        source_name: str,
        metadata: dict[str, Any] | None = None,
        ingest_route: IngestRoute | None = None,
    ) -> SubscriptionRow:
        """Create a subscription record."""
        row = SubscriptionRow(
            user_id=user_id,
            source_type=source_type,
            source_id=source_id,
            source_name=source_name,
            metadata_=metadata,
            ingest_route=ingest_route.value if ingest_route else None,
            is_active=True,
        )
        self.session.add(row)
        await self.session.flush()
        return row

    @staticmethod
    def _to_schema(row: SubscriptionRow) -> Subscription:
        return Subscription(
            id=str(row.id),
            user_id=str(row.user_id),
            source_kind=row.source_type,
            source_id=row.source_id,
            source_name=row.source_name,
            metadata=row.metadata_,
            is_active=row.is_active,
            route=IngestRoute(row.ingest_route) if row.ingest_route else None,
        )


class ContentRepository:
    """
    Content sink backed by the content_items table.

    upsert_many commits after each call so one subscription's batch is
    durable even if a later one fails, and rolls back on error so the
    session stays usable for the next call.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    def _insert(self):
        dialect = self.session.get_bind().dialect.name
        if dialect == "postgresql":
            return postgresql.insert(ContentItem)
        if dialect == "sqlite":
            return sqlite.insert(ContentItem)
        raise NotImplementedError(f"Upsert is not supported on {dialect}")

    @staticmethod
    def _to_row(item: CanonicalContent) -> dict[str, Any]:
        return {
            "id": uuid.uuid4(),
            "source_type": item.source_kind,
            "external_id": item.external_id,
            "source_id": item.source_id,
            "title": item.title,
            "creator": item.creator,
            "url": item.url,
            "thumbnail_url": item.thumbnail_url,
            "description": item.description,
            "published_at": _as_utc(item.published_at),
            "dedupe_hash": item.fingerprint,
            "duration_seconds": item.duration_seconds,
            "summary": item.summary,
            "topics": item.topics,
        }

    async def upsert_many(self, items: list[CanonicalContent]) -> int:
        """
        Insert or refresh content keyed on (source_type, external_id).

        Duplicate keys inside one call collapse to the last occurrence.

        Returns:
            Number of rows inserted or updated
        """
        if not items:
            return 0

        unique: dict[tuple[str, str], dict[str, Any]] = {}
        for item in items:
            unique[item.natural_key] = self._to_row(item)
        rows = list(unique.values())

        affected = 0
        try:
            for start in range(0, len(rows), UPSERT_CHUNK_SIZE):
                chunk = rows[start : start + UPSERT_CHUNK_SIZE]
                stmt = self._insert().values(chunk)
                stmt = stmt.on_conflict_do_update(
                    index_elements=["source_type", "external_id"],
                    set_={column: stmt.excluded[column] for column in MUTABLE_COLUMNS},
                ).returning(ContentItem.id)
                result = await self.session.execute(stmt)
                affected += len(result.all())

            await self.session.commit()
        except Exception:
            # Session is shared across the cycle; leave it usable for the next write
            await self.session.rollback()
            raise

        logger.debug("Upserted content", received=len(items), affected=affected)
        return affected

    async def list_by_range(
        self,
        range_: FeedRange,
        source_kind: ContentSourceKind | None = None,
        limit: int = 50,
        offset: int = 0,
        now: datetime | None = None,
    ) -> list[ContentItem]:
        """Content published inside the rolling window, newest first."""
        start, end = get_range_bounds(range_, now)
        query = select(ContentItem).where(
            ContentItem.published_at >= _as_utc(start),
            ContentItem.published_at <= _as_utc(end),
        )
        if source_kind is not None:
            query = query.where(ContentItem.source_type == source_kind)
        query = query.order_by(ContentItem.published_at.desc()).limit(limit).offset(offset)

        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def count(self) -> int:
        result = await self.session.execute(select(func.count(ContentItem.id)))
        return result.scalar_one()
