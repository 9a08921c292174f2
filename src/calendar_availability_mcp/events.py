"""
Aggregation of events fetched from several calendars.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from .batch import CalendarFailure, FetchResult


def effective_start(event: Mapping[str, Any]) -> str:
    """Timed start, else all-day date, else ''."""
    start = event.get("start") or {}
    return start.get("dateTime") or start.get("date") or ""


def tag_events(items: Mapping[str, List[Dict[str, Any]]]) -> List[Dict[str, Any]]:
    """Flatten per-calendar lists, adding the source calendarId to each event."""
    return [
        {**event, "calendarId": calendar_id}
        for calendar_id, events in items.items()
        for event in events
    ]


def sort_events_by_start(events: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    # Plain string order: only chronological while all starts share one format
    return sorted(events, key=effective_start)


def group_events_by_calendar(
    events: List[Dict[str, Any]],
) -> Dict[str, List[Dict[str, Any]]]:
    grouped: Dict[str, List[Dict[str, Any]]] = {}
    for event in events:
        grouped.setdefault(event["calendarId"], []).append(event)
    return grouped


@dataclass(slots=True)
class EventListing:
    """Events of one query across one or more calendars."""

    calendar_ids: List[str]
    events: List[Dict[str, Any]]
    grouped: Optional[Dict[str, List[Dict[str, Any]]]] = None
    failures: List[CalendarFailure] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for API responses."""
        data: dict[str, Any] = {
            "calendarIds": self.calendar_ids,
            "count": len(self.events),
            "events": self.events,
        }
        if self.grouped is not None:
            data["grouped"] = self.grouped
        if self.failures:
            data["errors"] = [failure.to_dict() for failure in self.failures]
        return data


def aggregate_events(result: FetchResult, calendar_ids: List[str]) -> EventListing:
    """Build the flat (and, for several calendars, grouped) listing.

    No deduplication: an event present in two calendars is listed twice.
    A single calendar keeps the order the service returned.
    """
    events = tag_events(result.items)
    if len(calendar_ids) == 1:
        return EventListing(calendar_ids=calendar_ids, events=events, failures=result.failures)

    events = sort_events_by_start(events)
    return EventListing(
        calendar_ids=calendar_ids,
        events=events,
        grouped=group_events_by_calendar(events),
        failures=result.failures,
    )
