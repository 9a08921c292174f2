"""
MCP tool implementations for the calendar availability server.
This module contains the glue between the MCP tools and the calendar logic.
"""

import json
import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Annotated, Any, Callable, Dict, List, Optional

from pydantic import Field

from .availability import AvailabilityEngine
from .batch import BatchRequestOrchestrator, CalendarQuery
from .errors import TotalFetchError, ValidationError
from .events import aggregate_events
from .google import CalendarServiceProtocol, OAuthCredentials, create_calendar_service
from .timeutil import format_instant, normalize_boundaries

logger = logging.getLogger(__name__)

DEFAULT_CALENDAR = "primary"
SEARCH_WINDOW = timedelta(days=365)

AccessToken = Annotated[str, Field(description="Google OAuth access token")]
RefreshToken = Annotated[Optional[str], Field(description="Google OAuth refresh token")]
ClientId = Annotated[
    Optional[str],
    Field(
        description="Google OAuth client ID. Falls back to GOOGLE_CLIENT_ID from the server environment"
    ),
]
ClientSecret = Annotated[
    Optional[str],
    Field(
        description="Google OAuth client secret. Falls back to GOOGLE_CLIENT_SECRET from the server environment"
    ),
]
TimeBoundary = Annotated[
    Optional[str],
    Field(
        description="Time boundary. Preferred: '2024-01-01T00:00:00' (uses time_zone or the calendar's timezone). Also accepts '2024-01-01T00:00:00Z' or '2024-01-01T00:00:00-08:00'."
    ),
]
TimeZone = Annotated[
    Optional[str],
    Field(
        description="IANA timezone (e.g., America/Los_Angeles). Takes priority over the calendar's default timezone. Only used for timezone-naive datetime strings."
    ),
]


class ManageOperation(str, Enum):
    """Read operations of the calendar_manage tool."""
    LIST_CALENDARS = "list-calendars"
    LIST_EVENTS = "list-events"
    SEARCH_EVENTS = "search-events"
    LIST_COLORS = "list-colors"


def parse_calendar_ids(value: str | List[str] | None) -> List[str]:
    """Accepts a single ID, a list of IDs or a JSON array string like '["a", "b"]'."""
    if value is None or value == "" or value == []:
        return [DEFAULT_CALENDAR]
    if isinstance(value, list):
        return value

    stripped = value.strip()
    if stripped.startswith("["):
        try:
            parsed = json.loads(stripped)
        except ValueError as e:
            raise ValidationError(f"Invalid calendar ID list: {e}") from e
        if not isinstance(parsed, list) or not all(isinstance(c, str) for c in parsed):
            raise ValidationError("Calendar ID list must be a JSON array of strings")
        return parsed or [DEFAULT_CALENDAR]
    return [stripped]


def _list_calendars(service: CalendarServiceProtocol, **_: Any) -> Dict[str, Any]:
    calendars = [
        {
            "id": entry.get("id", ""),
            "summary": entry.get("summaryOverride") or entry.get("summary", ""),
            "timeZone": entry.get("timeZone", ""),
            "primary": bool(entry.get("primary", False)),
            "accessRole": entry.get("accessRole", ""),
        }
        for entry in service.list_calendars()
    ]
    return {"count": len(calendars), "calendars": calendars}


def _list_events(
    service: CalendarServiceProtocol,
    calendar_id: str | List[str] | None = None,
    time_min: Optional[str] = None,
    time_max: Optional[str] = None,
    time_zone: Optional[str] = None,
    **_: Any,
) -> Dict[str, Any]:
    calendar_ids = parse_calendar_ids(calendar_id)
    queries = [
        CalendarQuery(
            calendar_id=cid, time_min=time_min, time_max=time_max, time_zone=time_zone
        )
        for cid in calendar_ids
    ]
    result = BatchRequestOrchestrator(service).fetch_events(queries)
    return aggregate_events(result, calendar_ids).to_dict()


def _search_events(
    service: CalendarServiceProtocol,
    calendar_id: str | List[str] | None = None,
    query: Optional[str] = None,
    time_min: Optional[str] = None,
    time_max: Optional[str] = None,
    time_zone: Optional[str] = None,
    **_: Any,
) -> Dict[str, Any]:
    if not query:
        raise ValidationError("Query parameter is required for search-events operation")

    calendar_ids = parse_calendar_ids(calendar_id)
    if len(calendar_ids) > 1:
        raise ValidationError("search-events accepts a single calendar ID")
    cid = calendar_ids[0]

    now = datetime.now(timezone.utc)
    time_min = time_min or format_instant(now)
    time_max = time_max or format_instant(now + SEARCH_WINDOW)
    time_min, time_max = normalize_boundaries(
        time_min, time_max, time_zone, lambda: service.get_calendar_timezone(cid)
    )

    events = service.list_events(cid, time_min, time_max, query=query)
    tagged = [{**event, "calendarId": cid} for event in events]
    return {"query": query, "count": len(tagged), "events": tagged}


def _list_colors(service: CalendarServiceProtocol, **_: Any) -> Dict[str, Any]:
    colors = service.get_colors()
    return {
        "event": {
            color_id: {
                "background": info.get("background", ""),
                "foreground": info.get("foreground", ""),
            }
            for color_id, info in (colors.get("event") or {}).items()
        }
    }


MANAGE_HANDLERS: Dict[ManageOperation, Callable[..., Dict[str, Any]]] = {
    ManageOperation.LIST_CALENDARS: _list_calendars,
    ManageOperation.LIST_EVENTS: _list_events,
    ManageOperation.SEARCH_EVENTS: _search_events,
    ManageOperation.LIST_COLORS: _list_colors,
}


def _service_for(
    access_token: str,
    refresh_token: Optional[str],
    client_id: Optional[str],
    client_secret: Optional[str],
) -> CalendarServiceProtocol:
    return create_calendar_service(
        OAuthCredentials(
            access_token=access_token,
            refresh_token=refresh_token,
            client_id=client_id,
            client_secret=client_secret,
        )
    )


def _calendar_manage_internal(
    operation: ManageOperation,
    access_token: str = "",
    calendar_id: str | List[str] | None = None,
    query: Optional[str] = None,
    time_min: Optional[str] = None,
    time_max: Optional[str] = None,
    time_zone: Optional[str] = None,
    refresh_token: Optional[str] = None,
    client_id: Optional[str] = None,
    client_secret: Optional[str] = None,
    service: CalendarServiceProtocol | None = None,
) -> Dict[str, Any]:
    """Internal function for testing with dependency injection support.

    Args:
        operation: Read operation to run
        access_token: OAuth access token
        calendar_id: Calendar ID(s), defaults to 'primary'
        query: Free text query for search-events
        time_min: Start boundary
        time_max: End boundary
        time_zone: IANA zone for zone-naive boundaries
        refresh_token: OAuth refresh token
        client_id: OAuth client ID
        client_secret: OAuth client secret
        service: Optional calendar service for testing (internal use only)

    Returns:
        Dict with the operation result or an error
    """
    try:
        try:
            handler = MANAGE_HANDLERS[ManageOperation(operation)]
        except ValueError as e:
            valid = ", ".join(op.value for op in ManageOperation)
            raise ValidationError(
                f"Unknown operation: {operation}. Valid operations are: {valid}"
            ) from e
        if service is None:
            service = _service_for(access_token, refresh_token, client_id, client_secret)
        return handler(
            service,
            calendar_id=calendar_id,
            query=query,
            time_min=time_min,
            time_max=time_max,
            time_zone=time_zone,
        )
    except ValidationError as e:
        logger.error("Invalid %s request: %s", operation, e)
        return {"error": str(e)}
    except TotalFetchError as e:
        logger.error("Calendar service rejected %s: %s", operation, e)
        return {"error": str(e), "status": e.status}
    except (ConnectionError, OSError) as e:
        logger.error("Failed to reach calendar service: %s", e)
        return {"error": f"Calendar service unreachable: {e}"}
    except Exception as e:
        logger.error("Unexpected error in calendar_manage: %s", e)
        return {"error": f"Unexpected error: {e}"}


def calendar_manage(
    operation: Annotated[
        ManageOperation,
        Field(
            description="The read operation to perform: list-calendars, list-events, search-events or list-colors"
        ),
    ],
    access_token: AccessToken,
    calendar_id: Annotated[
        str | List[str] | None,
        Field(
            description="Calendar ID(s) to query. Defaults to 'primary'. Can be a single ID, a list of IDs, or a JSON array string like '[\"cal1\", \"cal2\"]'. search-events accepts a single ID only.",
        ),
    ] = None,
    query: Annotated[
        Optional[str],
        Field(
            description="Free text search query (required for search-events). Searches summary, description, location, attendees, etc.",
        ),
    ] = None,
    time_min: TimeBoundary = None,
    time_max: TimeBoundary = None,
    time_zone: TimeZone = None,
    refresh_token: RefreshToken = None,
    client_id: ClientId = None,
    client_secret: ClientSecret = None,
) -> Dict[str, Any]:
    """Read and search calendar information: list calendars, list events across one or many calendars (fetched in a single batch, with per-calendar errors reported instead of failing the call), search events by text, or list event colors. Multi-calendar listings are sorted by start time and grouped by calendar."""
    return _calendar_manage_internal(
        operation,
        access_token,
        calendar_id=calendar_id,
        query=query,
        time_min=time_min,
        time_max=time_max,
        time_zone=time_zone,
        refresh_token=refresh_token,
        client_id=client_id,
        client_secret=client_secret,
    )


def _calendar_availability_internal(
    calendars: List[str],
    time_min: Optional[str],
    time_max: Optional[str],
    access_token: str = "",
    time_zone: Optional[str] = None,
    suggest_free_slots: bool = False,
    min_slot_duration: Optional[int] = None,
    refresh_token: Optional[str] = None,
    client_id: Optional[str] = None,
    client_secret: Optional[str] = None,
    service: CalendarServiceProtocol | None = None,
) -> Dict[str, Any]:
    """Internal function for testing with dependency injection support."""
    try:
        # Validate before building a client so bad input never costs a call
        if not calendars:
            raise ValidationError("At least one calendar must be specified")
        if not time_min or not time_max:
            raise ValidationError("timeMin and timeMax are required")

        if service is None:
            service = _service_for(access_token, refresh_token, client_id, client_secret)
        result = AvailabilityEngine(service).check_availability(
            calendars,
            time_min,
            time_max,
            time_zone=time_zone,
            suggest_free_slots=suggest_free_slots,
            min_slot_duration=min_slot_duration,
        )
        return result.to_dict()
    except ValidationError as e:
        logger.error("Invalid availability request: %s", e)
        return {"error": str(e)}
    except TotalFetchError as e:
        logger.error("Calendar service rejected availability request: %s", e)
        return {"error": str(e), "status": e.status}
    except (ConnectionError, OSError) as e:
        logger.error("Failed to reach calendar service: %s", e)
        return {"error": f"Calendar service unreachable: {e}"}
    except Exception as e:
        logger.error("Unexpected error in calendar_availability: %s", e)
        return {"error": f"Unexpected error: {e}"}


def calendar_availability(
    calendars: Annotated[
        List[str],
        Field(description="Calendar IDs to check for availability (e.g., ['primary', 'lisa@example.com'])"),
    ],
    time_min: Annotated[
        str,
        Field(
            description="Start of the availability check period. Preferred: '2024-01-01T09:00:00' (uses time_zone or the first calendar's timezone). Also accepts '2024-01-01T09:00:00Z' or '2024-01-01T09:00:00+01:00'."
        ),
    ],
    time_max: Annotated[
        str,
        Field(
            description="End of the availability check period, at most 3 months after time_min. Same formats as time_min."
        ),
    ],
    access_token: AccessToken,
    time_zone: TimeZone = None,
    suggest_free_slots: Annotated[
        bool,
        Field(
            description="Whether to suggest free time slots common to all calendars",
        ),
    ] = False,
    min_slot_duration: Annotated[
        Optional[int],
        Field(
            description="Minimum duration for suggested free slots in minutes (default: 30)",
            ge=1,
            le=1440,
        ),
    ] = None,
    refresh_token: RefreshToken = None,
    client_id: ClientId = None,
    client_secret: ClientSecret = None,
) -> Dict[str, Any]:
    """Check free/busy times for one or more calendars and optionally suggest free slots common to all of them. Returns busy periods per calendar; with suggest_free_slots, overlapping busy periods are merged and gaps of at least min_slot_duration minutes are returned as suggestedFreeSlots. Calendars that cannot be read are listed under errors instead of failing the request."""
    return _calendar_availability_internal(
        calendars,
        time_min,
        time_max,
        access_token,
        time_zone=time_zone,
        suggest_free_slots=suggest_free_slots,
        min_slot_duration=min_slot_duration,
        refresh_token=refresh_token,
        client_id=client_id,
        client_secret=client_secret,
    )


def _connection_suggestion(error: TotalFetchError) -> str:
    if "invalid_grant" in error.message:
        return "The OAuth token has expired or been revoked. Please re-authenticate."
    if error.status == 403:
        return "Permission denied. Ensure the token has the necessary Google Calendar scopes."
    if error.status == 401:
        return "Authentication failed. The access token may be invalid or expired."
    return "Verify your OAuth credentials and ensure they have proper Google Calendar permissions."


def _calendar_connect_internal(
    access_token: str = "",
    refresh_token: Optional[str] = None,
    client_id: Optional[str] = None,
    client_secret: Optional[str] = None,
    service: CalendarServiceProtocol | None = None,
) -> Dict[str, Any]:
    """Internal function for testing with dependency injection support."""
    try:
        if service is None:
            service = _service_for(access_token, refresh_token, client_id, client_secret)
        calendars = service.list_calendars()
        return {
            "connected": True,
            "hasCalendarAccess": True,
            "calendarCount": len(calendars),
            "message": "Successfully connected to Google Calendar",
        }
    except TotalFetchError as e:
        logger.error("Calendar connection check failed: %s", e)
        return {
            "connected": False,
            "error": str(e),
            "errorCode": e.status if e.status is not None else "UNKNOWN",
            "suggestion": _connection_suggestion(e),
        }
    except (ConnectionError, OSError) as e:
        logger.error("Failed to reach calendar service: %s", e)
        return {
            "connected": False,
            "error": f"Calendar service unreachable: {e}",
            "errorCode": "UNKNOWN",
            "suggestion": "Network error. Check your internet connection and try again.",
        }
    except Exception as e:
        logger.error("Unexpected error in calendar_connect: %s", e)
        return {
            "connected": False,
            "error": f"Unexpected error: {e}",
            "errorCode": "UNKNOWN",
            "suggestion": "Verify your OAuth credentials and ensure they have proper Google Calendar permissions.",
        }


def calendar_connect(
    access_token: AccessToken,
    refresh_token: RefreshToken = None,
    client_id: ClientId = None,
    client_secret: ClientSecret = None,
) -> Dict[str, Any]:
    """Verify that the supplied OAuth credentials can reach Google Calendar. Returns connection status, or an error code with a suggestion on how to fix it."""
    return _calendar_connect_internal(access_token, refresh_token, client_id, client_secret)


__all__ = [
    "ManageOperation",
    "MANAGE_HANDLERS",
    "calendar_manage",
    "calendar_availability",
    "calendar_connect",
    "parse_calendar_ids",
    "_calendar_manage_internal",
    "_calendar_availability_internal",
    "_calendar_connect_internal",
]
