"""
Busy interval merging and free slot synthesis.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Mapping

from pydantic import AwareDatetime, BaseModel, ConfigDict, ValidationError, model_validator

from .errors import EnhancementFailure
from .timeutil import format_instant, parse_instant

logger = logging.getLogger(__name__)

DEFAULT_MIN_SLOT_DURATION = 30


class BusyInterval(BaseModel):
    """A period during which a calendar reports itself occupied."""

    model_config = ConfigDict(frozen=True)

    start: AwareDatetime
    end: AwareDatetime

    @model_validator(mode="after")
    def validate_order(self) -> "BusyInterval":
        if self.end < self.start:
            raise ValueError(f"end ({self.end}) must not be before start ({self.start})")
        return self

    def to_dict(self) -> dict[str, str]:
        return {"start": format_instant(self.start), "end": format_instant(self.end)}


@dataclass(slots=True)
class FreeSlot:
    """A gap between busy intervals inside the search window."""

    start: datetime
    end: datetime
    duration_minutes: int

    def to_dict(self) -> dict[str, str | int]:
        """Serialize to dictionary for API responses."""
        return {
            "start": format_instant(self.start),
            "end": format_instant(self.end),
            "durationMinutes": self.duration_minutes,
        }


def merge_busy_intervals(intervals: Iterable[BusyInterval]) -> list[BusyInterval]:
    """Collapse intervals into a sorted list of disjoint intervals.

    Touching intervals (next.start == last.end) are merged as well.
    """
    ordered = sorted(intervals, key=lambda interval: interval.start)
    if not ordered:
        return []

    merged: list[BusyInterval] = [ordered[0]]
    for current in ordered[1:]:
        last = merged[-1]
        if current.start <= last.end:
            if current.end > last.end:
                merged[-1] = BusyInterval(start=last.start, end=current.end)
        else:
            merged.append(current)

    return merged


def find_free_slots(
    merged: Iterable[BusyInterval],
    search_start: datetime,
    search_end: datetime,
    min_duration: int = DEFAULT_MIN_SLOT_DURATION,
) -> list[FreeSlot]:
    """Emit the gaps of at least min_duration minutes in [search_start, search_end)."""
    slots: list[FreeSlot] = []
    threshold = min_duration * 60
    cursor = search_start

    for busy in merged:
        if busy.start >= search_end:
            break
        if busy.start > cursor:
            gap = (busy.start - cursor).total_seconds()
            if gap >= threshold:
                slots.append(FreeSlot(start=cursor, end=busy.start, duration_minutes=int(gap // 60)))
        cursor = max(cursor, busy.end)

    if cursor < search_end:
        gap = (search_end - cursor).total_seconds()
        if gap >= threshold:
            slots.append(FreeSlot(start=cursor, end=search_end, duration_minutes=int(gap // 60)))

    return slots


def collect_busy_intervals(calendars: Mapping[str, Mapping[str, Any]]) -> list[BusyInterval]:
    """Read every calendar's raw busy periods into BusyInterval objects."""
    intervals: list[BusyInterval] = []
    for calendar_id, calendar in calendars.items():
        for period in calendar.get("busy") or []:
            try:
                intervals.append(BusyInterval.model_validate(period))
            except ValidationError as e:
                raise EnhancementFailure(
                    f"Malformed busy period for {calendar_id}: {period!r}"
                ) from e
    return intervals


def find_common_free_slots(
    calendars: Mapping[str, Mapping[str, Any]],
    time_min: str,
    time_max: str,
    min_duration: int = DEFAULT_MIN_SLOT_DURATION,
) -> list[FreeSlot]:
    """Free slots common to all calendars.

    Raises EnhancementFailure if the busy data or the window cannot be read.
    """
    try:
        search_start = parse_instant(time_min)
        search_end = parse_instant(time_max)
    except (TypeError, ValueError) as e:
        raise EnhancementFailure(f"Unreadable search window: {e}") from e

    merged = merge_busy_intervals(collect_busy_intervals(calendars))
    logger.debug("Merged busy periods into %d interval(s)", len(merged))
    return find_free_slots(merged, search_start, search_end, min_duration)
