"""
Multi-calendar event retrieval.

One calendar is fetched with a direct events.list call. Two or more are
fetched with a single batch call to the calendar service; a failing calendar
is reported in the result's failures and never aborts the others.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import quote, urlencode

from pydantic import BaseModel

from .errors import PartialFetchError, ValidationError
from .google import CalendarServiceProtocol, SubRequest, SubResponse
from .timeutil import normalize_boundaries

logger = logging.getLogger(__name__)

# Sub-requests per batch call
BATCH_LIMIT = 50


class CalendarQuery(BaseModel):
    """Events of one calendar within an optional window."""

    calendar_id: str
    time_min: Optional[str] = None
    time_max: Optional[str] = None
    time_zone: Optional[str] = None


@dataclass(slots=True)
class CalendarFailure:
    """A calendar whose fetch failed."""

    calendar_id: str
    error: str

    def to_dict(self) -> dict[str, str]:
        return {"calendarId": self.calendar_id, "error": self.error}


@dataclass(slots=True)
class FetchResult:
    """Successful items per calendar plus the calendars that failed."""

    items: Dict[str, List[Dict[str, Any]]] = field(default_factory=dict)
    failures: List[CalendarFailure] = field(default_factory=list)

    def raise_for_failures(self) -> None:
        """For callers that treat a partial result as fatal."""
        if self.failures:
            raise PartialFetchError(self.failures)


def events_path(
    calendar_id: str, time_min: Optional[str] = None, time_max: Optional[str] = None
) -> str:
    """Relative events.list URL for a batch sub-request."""
    params = {"singleEvents": "true", "orderBy": "startTime"}
    if time_min:
        params["timeMin"] = time_min
    if time_max:
        params["timeMax"] = time_max
    return f"/calendar/v3/calendars/{quote(calendar_id, safe='')}/events?{urlencode(params)}"


def failure_message(response: SubResponse) -> str:
    """Error text of a failed sub-response."""
    body = response.body or {}
    error = body.get("error")
    if isinstance(error, dict) and error.get("message"):
        return error["message"]
    if body.get("message"):
        return body["message"]
    return f"HTTP {response.status_code}"


class BatchRequestOrchestrator:
    """Fetches events for a list of CalendarQuery objects."""

    def __init__(self, service: CalendarServiceProtocol):
        self.service = service

    def fetch_events(self, queries: List[CalendarQuery]) -> FetchResult:
        if not queries:
            raise ValidationError("At least one calendar must be specified")

        if len(queries) == 1:
            return self._fetch_single(queries[0])
        return self._fetch_batch(queries)

    def _normalize(self, query: CalendarQuery) -> tuple[Optional[str], Optional[str]]:
        return normalize_boundaries(
            query.time_min,
            query.time_max,
            query.time_zone,
            lambda: self.service.get_calendar_timezone(query.calendar_id),
        )

    def _fetch_single(self, query: CalendarQuery) -> FetchResult:
        time_min, time_max = self._normalize(query)
        events = self.service.list_events(query.calendar_id, time_min, time_max)
        return FetchResult(items={query.calendar_id: events})

    def _fetch_batch(self, queries: List[CalendarQuery]) -> FetchResult:
        requests: List[SubRequest] = []
        for index, query in enumerate(queries):
            time_min, time_max = self._normalize(query)
            requests.append(
                SubRequest(
                    method="GET",
                    path=events_path(query.calendar_id, time_min, time_max),
                    request_id=str(index),
                )
            )

        responses: Dict[str, SubResponse] = {}
        for offset in range(0, len(requests), BATCH_LIMIT):
            chunk = requests[offset : offset + BATCH_LIMIT]
            for response in self.service.execute_batch(chunk):
                responses[response.request_id] = response

        result = FetchResult()
        for request, query in zip(requests, queries):
            response = responses.get(request.request_id)
            if response is None:
                result.failures.append(
                    CalendarFailure(query.calendar_id, "No response from batch request")
                )
            elif response.ok:
                items = response.body.get("items") or []
                result.items.setdefault(query.calendar_id, []).extend(items)
            else:
                result.failures.append(
                    CalendarFailure(query.calendar_id, failure_message(response))
                )

        if result.failures:
            logger.warning(
                "Some calendars had errors: %s",
                ", ".join(f"{f.calendar_id}: {f.error}" for f in result.failures),
            )

        return result
