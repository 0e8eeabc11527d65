"""Retrying async HTTP client shared by all ingestion pipelines."""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)
from tenacity.wait import wait_base

from dayroll.exceptions import FetchError
from dayroll.logging import get_logger

logger = get_logger(__name__)


def is_retryable(exc: BaseException) -> bool:
    """Transport failures, timeouts and 5xx responses earn another attempt; 4xx never does."""
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code >= 500
    return isinstance(exc, (httpx.TransportError, asyncio.TimeoutError))


@dataclass(frozen=True)
class RetryPolicy:
    """
    Exponential backoff policy.

    The delay before attempt n+1 is base_delay * multiplier ** (n - 1), plus a
    random amount up to base_delay when jitter is on.
    """

    max_attempts: int = 3
    base_delay: float = 0.5
    multiplier: float = 2.0
    jitter: bool = True
    retry_on: Callable[[BaseException], bool] = is_retryable

    def wait_strategy(self) -> wait_base:
        strategy: wait_base = wait_exponential(
            multiplier=self.base_delay,
            exp_base=self.multiplier,
        )
        if self.jitter:
            strategy = strategy + wait_random(0, self.base_delay)
        return strategy

    def retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(max(1, self.max_attempts)),
            wait=self.wait_strategy(),
            retry=retry_if_exception(self.retry_on),
            before_sleep=_log_retry,
            reraise=True,
        )


def _log_retry(retry_state: RetryCallState) -> None:
    error = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "Retrying request",
        attempt=retry_state.attempt_number,
        error=str(error),
        wait=round(retry_state.next_action.sleep, 3) if retry_state.next_action else None,
    )


class RetryingClient:
    """
    httpx.AsyncClient wrapper applying a RetryPolicy and a per-attempt timeout.

    Use as an async context manager:

        async with RetryingClient(policy, timeout=15) as client:
            text = await client.get_text(url)
    """

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        timeout: float = 15.0,
        headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.policy = policy or RetryPolicy()
        self.timeout = timeout
        self._headers = headers or {}
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "RetryingClient":
        self._client = httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=True,
            headers=self._headers,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """
        Perform a request, retrying per the policy.

        Raises:
            FetchError: when attempts are exhausted or the failure is not retryable
        """
        if self._client is None:
            raise RuntimeError("RetryingClient must be used as an async context manager")

        attempts = 0
        try:
            async for attempt in self.policy.retrying():
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    response = await asyncio.wait_for(
                        self._client.request(method, url, **kwargs),
                        timeout=self.timeout,
                    )
                    response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise FetchError(
                f"{method} request failed with status {status}",
                url=url,
                status_code=status,
                attempts=attempts,
            ) from e
        except asyncio.TimeoutError as e:
            raise FetchError(
                f"{method} request timed out after {self.timeout}s",
                url=url,
                attempts=attempts,
            ) from e
        except httpx.HTTPError as e:
            raise FetchError(
                f"{method} request failed: {e!r}",
                url=url,
                attempts=attempts,
            ) from e

        return response

    async def get_text(self, url: str, **kwargs: Any) -> str:
        response = await self.request("GET", url, **kwargs)
        return response.text

    async def get_json(self, url: str, **kwargs: Any) -> Any:
        response = await self.request("GET", url, **kwargs)
        return _decode_json(response)

    async def post_form(self, url: str, data: dict[str, str], **kwargs: Any) -> Any:
        response = await self.request("POST", url, data=data, **kwargs)
        return _decode_json(response)


def _decode_json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError as e:
        raise FetchError(
            "Response body is not valid JSON",
            url=str(response.request.url),
            status_code=response.status_code,
        ) from e
