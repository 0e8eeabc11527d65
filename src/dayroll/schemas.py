"""Pydantic schemas shared by the ingestion pipelines and the storage layer."""

import re
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from enum import Enum
from typing import Any, Literal
from urllib.parse import urlparse

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_validator,
    model_validator,
)

from dayroll.hashing import compute_fingerprint

SubscriptionSourceKind = Literal["youtube", "podcast", "news", "topic"]
ContentSourceKind = Literal["youtube", "podcast", "news", "recommendation"]

SPOTIFY_SHOW_ID = re.compile(r"^[0-9A-Za-z]{22}$")
SPOTIFY_SHOW_URI = re.compile(r"^spotify:show:([0-9A-Za-z]{22})$")
SPOTIFY_SHOW_URL = re.compile(
    r"^https?://open\.spotify\.com/(?:[a-z-]+/)?show/([0-9A-Za-z]{22})(?:[/?#].*)?$"
)


class IngestRoute(str, Enum):
    """Which pipeline a subscription is ingested through."""

    RSS = "rss"
    YOUTUBE = "youtube"
    SPOTIFY = "spotify"
    NONE = "none"


def parse_spotify_show_id(source_id: str) -> str | None:
    """Extract a Spotify show id from a bare id, a spotify: URI or a share URL."""
    value = source_id.strip()
    if SPOTIFY_SHOW_ID.match(value):
        return value
    for pattern in (SPOTIFY_SHOW_URI, SPOTIFY_SHOW_URL):
        match = pattern.match(value)
        if match:
            return match.group(1)
    return None


def resolve_route(source_kind: str, metadata: dict[str, Any] | None, source_id: str = "") -> IngestRoute:
    """
    Decide the ingestion route for a subscription.

    Pure function of (source kind, metadata provider hint, source id shape).
    A podcast goes to Spotify only when the metadata says so or the source id
    is recognisably a Spotify show reference; every other podcast is a feed.
    """
    if source_kind == "youtube":
        return IngestRoute.YOUTUBE
    if source_kind == "news":
        return IngestRoute.RSS
    if source_kind == "podcast":
        provider = (metadata or {}).get("provider")
        if provider == "spotify" or parse_spotify_show_id(source_id) is not None:
            return IngestRoute.SPOTIFY
        return IngestRoute.RSS
    return IngestRoute.NONE


class Subscription(BaseModel):
    """A user's registered interest in one external source."""

    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str | None = None
    source_kind: SubscriptionSourceKind
    source_id: str = Field(..., min_length=1)
    source_name: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)
    is_active: bool = True
    route: IngestRoute | None = Field(
        default=None,
        description="Explicit route; resolved from kind and metadata when omitted",
    )

    @field_validator("metadata", mode="before")
    @classmethod
    def _metadata_or_empty(cls, value: Any) -> Any:
        return value if value is not None else {}

    @model_validator(mode="before")
    @classmethod
    def _resolve_route(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("route") is None:
            data = dict(data)
            data["route"] = resolve_route(
                data.get("source_kind", ""),
                data.get("metadata"),
                data.get("source_id") or "",
            )
        return data


def parse_timestamp(value: str | None) -> datetime | None:
    """
    Parse the timestamp shapes upstream sources emit.

    Accepts ISO 8601 (with or without a trailing Z), bare ISO dates and
    RFC 822 dates as used by RSS pubDate. Naive results are taken as UTC.
    Returns None when nothing matches.
    """
    if not value or not value.strip():
        return None
    text = value.strip()
    parsed: datetime | None = None
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        try:
            parsed = parsedate_to_datetime(text)
        except (TypeError, ValueError, IndexError):
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _is_http_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


class CanonicalContent(BaseModel):
    """Source-agnostic content record, validated and ready for the content sink."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    source_kind: ContentSourceKind
    external_id: str = Field(..., min_length=1)
    source_id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1, max_length=240)
    creator: str | None = Field(None, max_length=180)
    url: str
    thumbnail_url: str | None = None
    description: str | None = Field(None, max_length=5000)
    published_at: datetime
    duration_seconds: int | None = Field(None, gt=0)
    summary: str | None = None
    topics: list[str] | None = Field(None, max_length=10)

    @field_validator("creator", "thumbnail_url", "description", "summary", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        if not _is_http_url(value):
            raise ValueError("Expected an absolute http(s) URL")
        return value

    @field_validator("thumbnail_url")
    @classmethod
    def _check_thumbnail(cls, value: str | None) -> str | None:
        if value is not None and not _is_http_url(value):
            raise ValueError("Expected an absolute http(s) URL")
        return value

    @field_validator("topics")
    @classmethod
    def _check_topics(cls, value: list[str] | None) -> list[str] | None:
        if value is None:
            return None
        cleaned = [topic.strip() for topic in value]
        if any(not topic for topic in cleaned):
            raise ValueError("Topics must be non-empty strings")
        return cleaned

    @field_validator("published_at", mode="before")
    @classmethod
    def _coerce_published(cls, value: Any) -> Any:
        if isinstance(value, str):
            return parse_timestamp(value) or value
        return value

    @field_validator("published_at")
    @classmethod
    def _ensure_aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @computed_field  # type: ignore[prop-decorator]
    @property
    def fingerprint(self) -> str:
        """Dedupe hash derived from kind, external id, url and title."""
        return compute_fingerprint(self.source_kind, self.external_id, self.url, self.title)

    @property
    def natural_key(self) -> tuple[str, str]:
        return (self.source_kind, self.external_id)
