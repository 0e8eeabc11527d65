"""
Exception hierarchy for the Dayroll ingestion core.

Errors are categorized by how the ingestion cycle treats them: configuration
problems and validation failures are never retried, fetch failures are retried
by the network client before they surface here.
"""

from typing import Any, Optional


class DayrollError(Exception):
    """Base exception for all Dayroll errors."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(DayrollError):
    """
    Missing credentials, malformed identifiers or invalid settings.

    Fatal to the subscription (or component) it concerns, never retried.
    """

    pass


class FetchError(DayrollError):
    """Raised when a remote call fails after the retry budget is spent."""

    def __init__(
        self,
        message: str,
        url: str | None = None,
        status_code: int | None = None,
        attempts: int = 0,
    ):
        self.url = url
        self.status_code = status_code
        self.attempts = attempts
        details: dict[str, Any] = {"attempts": attempts}
        if url:
            details["url"] = url
        if status_code is not None:
            details["status_code"] = status_code
        super().__init__(message, details)


class FeedParseError(DayrollError):
    """Raised when an upstream document cannot be read as a feed."""

    pass


class ValidationError(DayrollError):
    """A single content candidate violated the canonical schema."""

    def __init__(self, issues: list[tuple[str, str]]):
        self.issues = issues
        super().__init__(self.reasons)

    @property
    def reasons(self) -> str:
        """All violations joined into one human-readable string."""
        return "; ".join(f"{field}: {reason}" for field, reason in self.issues)


class SchedulerCycleError(DayrollError):
    """Wraps any exception that escaped a scheduled ingestion cycle."""

    def __init__(self, cause: BaseException):
        self.cause = cause
        super().__init__(
            f"Ingestion cycle failed: {cause}",
            {"error_type": type(cause).__name__},
        )
