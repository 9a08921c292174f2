"""
Exception types for the calendar availability server.
"""

from typing import Optional


class CalendarServiceError(Exception):
    """Base class for all errors raised by this package."""


class ValidationError(CalendarServiceError, ValueError):
    """Required input is missing or malformed. Raised before any external call."""


class InvalidTimeFormat(ValidationError):
    """A time boundary matches neither accepted ISO 8601 pattern."""

    def __init__(self, value: str):
        super().__init__(
            f"Invalid time format: {value!r}. Must be ISO 8601 format: "
            "'2026-01-01T00:00:00' (optionally with 'Z' or '+01:00')"
        )
        self.value = value


class TotalFetchError(CalendarServiceError):
    """The calendar service rejected the call outright."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status = status

    def __str__(self) -> str:
        if self.status is None:
            return self.message
        return f"{self.message} (HTTP {self.status})"


class PartialFetchError(CalendarServiceError):
    """Some calendars of a batched fetch failed.

    Never raised by the orchestrator: failures are returned as diagnostics
    and FetchResult.raise_for_failures() converts them on request.
    """

    def __init__(self, failures: list):
        self.failures = failures
        calendars = ", ".join(f.calendar_id for f in failures)
        super().__init__(f"Some calendars had errors: {calendars}")


class EnhancementFailure(CalendarServiceError):
    """Free-slot synthesis failed on malformed busy data."""
