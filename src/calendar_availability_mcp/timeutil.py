"""
Time boundary normalization.

Turns caller-supplied ISO 8601 boundaries into absolute RFC 3339 instants for
the calendar service. Which zone applies is resolved in this order:

1. a zone or offset embedded in the string itself (passed through untouched),
2. the zone explicitly supplied by the caller,
3. the calendar's default zone, looked up lazily from the service.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Callable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .errors import InvalidTimeFormat

logger = logging.getLogger(__name__)

WITH_TIMEZONE = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(Z|[+-]\d{2}:\d{2})$")
WITHOUT_TIMEZONE = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}$")


def validate_boundary(value: str) -> str:
    """Raise InvalidTimeFormat unless value is a real date and time in an accepted pattern."""
    if not (WITH_TIMEZONE.match(value) or WITHOUT_TIMEZONE.match(value)):
        raise InvalidTimeFormat(value)
    try:
        datetime.fromisoformat(value)
    except ValueError as e:
        raise InvalidTimeFormat(value) from e
    return value


def has_timezone(value: str) -> bool:
    """True if the boundary carries its own 'Z' or numeric offset."""
    return WITH_TIMEZONE.match(value) is not None


def format_instant(dt: datetime) -> str:
    """Render an aware datetime as a UTC RFC 3339 string ('...Z')."""
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_instant(value: str) -> datetime:
    """Parse an RFC 3339 instant. Zone-naive values are read as UTC."""
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def convert_to_rfc3339(value: str, fallback_timezone: str) -> str:
    """Convert a boundary to an absolute instant.

    A value that already has a zone or offset is returned as-is. A zone-naive
    value is read as wall time in fallback_timezone and returned in UTC. If
    the zone name is unknown the wall time is taken as UTC.
    """
    validate_boundary(value)
    if has_timezone(value):
        return value

    try:
        tz = ZoneInfo(fallback_timezone)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(
            "Unknown timezone %r, treating %s as UTC", fallback_timezone, value
        )
        return value + "Z"

    local = datetime.fromisoformat(value).replace(tzinfo=tz)
    return format_instant(local)


def normalize_boundaries(
    time_min: Optional[str],
    time_max: Optional[str],
    time_zone: Optional[str],
    default_timezone: Callable[[], str],
) -> tuple[Optional[str], Optional[str]]:
    """Normalize a (timeMin, timeMax) pair.

    default_timezone is only called when a boundary is zone-naive and no
    explicit time_zone was given, so an absent window costs no lookup.
    """
    if not time_min and not time_max:
        return None, None

    bounds = [b for b in (time_min, time_max) if b]
    for bound in bounds:
        validate_boundary(bound)

    zone = time_zone or None
    if zone is None and not all(has_timezone(b) for b in bounds):
        zone = default_timezone()

    return (
        convert_to_rfc3339(time_min, zone or "UTC") if time_min else None,
        convert_to_rfc3339(time_max, zone or "UTC") if time_max else None,
    )
