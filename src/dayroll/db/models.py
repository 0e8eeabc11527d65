"""SQLAlchemy models for subscriptions and ingested content."""

import uuid
from datetime import datetime
from typing import Any

import sqlalchemy as sa
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class SubscriptionRow(Base):
    """A user's subscription to one upstream source."""

    __tablename__ = "subscriptions"
    __table_args__ = (
        sa.UniqueConstraint("user_id", "source_type", "source_id", name="subscriptions_user_source_unique"),
        sa.Index("subscriptions_user_created_at_idx", "user_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, nullable=False)
    source_type: Mapped[str] = mapped_column(sa.String(20), nullable=False)
    source_id: Mapped[str] = mapped_column(sa.Text, nullable=False)
    source_name: Mapped[str] = mapped_column(sa.Text, nullable=False)
    metadata_: Mapped[dict[str, Any] | None] = mapped_column("metadata", sa.JSON, nullable=True)
    ingest_route: Mapped[str | None] = mapped_column(sa.String(20), nullable=True)
    is_active: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now()
    )


class ContentItem(Base):
    """Canonical content, unique on (source_type, external_id) and on dedupe_hash."""

    __tablename__ = "content_items"
    __table_args__ = (
        sa.UniqueConstraint("source_type", "external_id", name="content_items_external_unique"),
        sa.UniqueConstraint("dedupe_hash", name="content_items_dedupe_hash_key"),
        sa.Index("content_items_published_idx", "published_at"),
        sa.Index("content_items_source_type_published_idx", "source_type", "published_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, primary_key=True, default=uuid.uuid4)
    source_type: Mapped[str] = mapped_column(sa.String(20), nullable=False)
    external_id: Mapped[str] = mapped_column(sa.Text, nullable=False)
    source_id: Mapped[str] = mapped_column(sa.Text, nullable=False)
    title: Mapped[str] = mapped_column(sa.Text, nullable=False)
    creator: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    url: Mapped[str] = mapped_column(sa.Text, nullable=False)
    thumbnail_url: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    description: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    published_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), nullable=False)
    dedupe_hash: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    duration_seconds: Mapped[int | None] = mapped_column(sa.Integer, nullable=True)
    summary: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    topics: Mapped[list[str] | None] = mapped_column(sa.JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now()
    )
