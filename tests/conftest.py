"""Shared fixtures for ingestion tests."""

from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

import httpx
import pytest

from dayroll.ingestion.base import PipelineOptions
from dayroll.schemas import CanonicalContent, Subscription

FIXED_NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


class RecordingSink:
    """In-memory content sink that records every batch it receives."""

    def __init__(self) -> None:
        self.batches: list[list[CanonicalContent]] = []

    async def upsert_many(self, items: list[CanonicalContent]) -> int:
        self.batches.append(list(items))
        return len(items)

    @property
    def items(self) -> list[CanonicalContent]:
        return [item for batch in self.batches for item in batch]


class StaticSubscriptions:
    def __init__(self, subscriptions: list[Subscription]) -> None:
        self.subscriptions = subscriptions

    async def list_active_subscriptions(self) -> list[Subscription]:
        return list(self.subscriptions)


class CountingHandler:
    """MockTransport handler that replays queued responses and records requests."""

    def __init__(self, responder: Callable[[httpx.Request], httpx.Response]) -> None:
        self.responder = responder
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responder(request)

    @property
    def calls(self) -> int:
        return len(self.requests)


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def clock() -> Callable[[], datetime]:
    return lambda: FIXED_NOW


@pytest.fixture
def fast_options() -> PipelineOptions:
    """No backoff delay so retry tests run instantly."""
    return PipelineOptions(
        max_retries=2,
        timeout=5.0,
        initial_retry_delay=0.0,
        retry_factor=2.0,
        randomize_backoff=False,
    )


@pytest.fixture
def make_subscription() -> Callable[..., Subscription]:
    def _make(**overrides: Any) -> Subscription:
        data: dict[str, Any] = {
            "id": "sub-1",
            "user_id": "user-1",
            "source_kind": "news",
            "source_id": "https://example.com/feed.xml",
            "source_name": "Example News",
        }
        data.update(overrides)
        return Subscription(**data)

    return _make
