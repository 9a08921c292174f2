"""
Free/busy lookup across calendars with optional free slot suggestions.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, List, Optional

from .batch import CalendarFailure
from .errors import EnhancementFailure, ValidationError
from .google import CalendarServiceProtocol
from .intervals import DEFAULT_MIN_SLOT_DURATION, FreeSlot, find_common_free_slots
from .timeutil import normalize_boundaries, parse_instant

logger = logging.getLogger(__name__)

# Longest window the free/busy endpoint accepts
MAX_WINDOW = timedelta(days=92)


@dataclass(slots=True)
class AvailabilityResult:
    """Busy periods per calendar, optionally with suggested free slots."""

    calendars: Dict[str, Dict[str, Any]]
    failures: List[CalendarFailure] = field(default_factory=list)
    suggested_free_slots: Optional[List[FreeSlot]] = None
    search_criteria: Optional[Dict[str, Any]] = None
    enhancement_error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for API responses."""
        data: dict[str, Any] = {"calendars": self.calendars}
        if self.suggested_free_slots is not None:
            data["suggestedFreeSlots"] = [slot.to_dict() for slot in self.suggested_free_slots]
        if self.search_criteria is not None:
            data["searchCriteria"] = self.search_criteria
        if self.failures:
            data["errors"] = [failure.to_dict() for failure in self.failures]
        if self.enhancement_error:
            data["enhancementError"] = self.enhancement_error
        return data


def _freebusy_error(calendar: Dict[str, Any]) -> str:
    reasons = [e.get("reason", "unknown") for e in calendar.get("errors") or []]
    return ", ".join(reasons) or "unknown"


class AvailabilityEngine:
    """Answers "when are these calendars free?"."""

    def __init__(self, service: CalendarServiceProtocol):
        self.service = service

    def check_availability(
        self,
        calendars: List[str],
        time_min: Optional[str],
        time_max: Optional[str],
        time_zone: Optional[str] = None,
        suggest_free_slots: bool = False,
        min_slot_duration: Optional[int] = None,
    ) -> AvailabilityResult:
        if not calendars:
            raise ValidationError("At least one calendar must be specified")
        if not time_min or not time_max:
            raise ValidationError("timeMin and timeMax are required")

        time_min, time_max = normalize_boundaries(
            time_min,
            time_max,
            time_zone,
            lambda: self.service.get_calendar_timezone(calendars[0]),
        )
        self._validate_window(time_min, time_max)

        raw = self.service.query_freebusy(calendars, time_min, time_max, time_zone)
        result = self._base_result(calendars, raw)

        if not suggest_free_slots:
            return result

        min_duration = min_slot_duration or DEFAULT_MIN_SLOT_DURATION
        try:
            slots = find_common_free_slots(result.calendars, time_min, time_max, min_duration)
        except EnhancementFailure as e:
            logger.warning("Free slot suggestion failed, returning busy data only: %s", e)
            result.enhancement_error = str(e)
            return result

        result.suggested_free_slots = slots
        result.search_criteria = {
            "minSlotDuration": min_duration,
            "timeZone": time_zone or "UTC",
        }
        return result

    @staticmethod
    def _validate_window(time_min: str, time_max: str) -> None:
        window = parse_instant(time_max) - parse_instant(time_min)
        if window <= timedelta(0):
            raise ValidationError("timeMax must be after timeMin")
        if window > MAX_WINDOW:
            raise ValidationError(
                "The time gap between timeMin and timeMax must be less than 3 months"
            )

    @staticmethod
    def _base_result(
        calendars: List[str], raw: Dict[str, Dict[str, Any]]
    ) -> AvailabilityResult:
        result = AvailabilityResult(calendars={})
        for calendar_id in dict.fromkeys(calendars):
            calendar = raw.get(calendar_id)
            if calendar is None:
                result.failures.append(
                    CalendarFailure(calendar_id, "No free/busy data returned")
                )
            elif calendar.get("errors"):
                result.failures.append(CalendarFailure(calendar_id, _freebusy_error(calendar)))
            else:
                result.calendars[calendar_id] = {"busy": calendar.get("busy") or []}

        if result.failures:
            logger.warning(
                "Some calendars had errors: %s",
                ", ".join(f"{f.calendar_id}: {f.error}" for f in result.failures),
            )
        return result
