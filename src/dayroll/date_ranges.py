"""Rolling publish-time windows used when listing stored content."""

from datetime import datetime, timedelta, timezone
from typing import Literal

FeedRange = Literal["today", "3d", "7d"]

RANGE_TO_DELTA: dict[str, timedelta] = {
    "today": timedelta(days=1),
    "3d": timedelta(days=3),
    "7d": timedelta(days=7),
}


def get_range_bounds(range_: FeedRange, now: datetime | None = None) -> tuple[datetime, datetime]:
    """Return (start, end) of the window ending at now."""
    if range_ not in RANGE_TO_DELTA:
        raise ValueError(f"Unknown feed range: {range_}")
    end = now or datetime.now(timezone.utc)
    return end - RANGE_TO_DELTA[range_], end


def is_within_range(range_: FeedRange, published_at: datetime, now: datetime | None = None) -> bool:
    start, end = get_range_bounds(range_, now)
    return start <= published_at <= end
