"""
Google Calendar client for the availability server.
Credentials are supplied per call; nothing is cached between invocations.
"""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Protocol

import httplib2
from google.auth.exceptions import RefreshError, TransportError
from google.oauth2.credentials import Credentials
from google_auth_httplib2 import AuthorizedHttp
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import HttpRequest
from googleapiclient.model import JsonModel
from pydantic import BaseModel

from . import config
from .errors import TotalFetchError

logger = logging.getLogger(__name__)

API_ROOT = "https://www.googleapis.com"

_STATUS_MESSAGES = {
    400: "Invalid request to the calendar service",
    401: "Authentication failed. The access token may be invalid or expired",
    403: "Permission denied. Ensure the token has Google Calendar scopes",
    404: "Calendar or resource not found",
    429: "Rate limit exceeded. Try again later",
}


@dataclass(slots=True)
class SubRequest:
    """One request inside a batch call."""

    method: str
    path: str
    request_id: str


@dataclass(slots=True)
class SubResponse:
    """Response to the SubRequest with the same request_id."""

    request_id: str
    status_code: int
    body: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


class OAuthCredentials(BaseModel):
    """OAuth material passed in by the caller for a single invocation."""

    access_token: str
    refresh_token: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None

    def to_google_credentials(self) -> Credentials:
        return Credentials(
            token=self.access_token,
            refresh_token=self.refresh_token,
            client_id=self.client_id or config.get_client_id(),
            client_secret=self.client_secret or config.get_client_secret(),
            token_uri=config.get_token_uri(),
        )


class CalendarServiceProtocol(Protocol):
    """Operations the availability server needs from a calendar backend."""

    def list_events(
        self,
        calendar_id: str,
        time_min: Optional[str] = None,
        time_max: Optional[str] = None,
        query: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """List single events ordered by start time."""
        ...

    def execute_batch(self, requests: List[SubRequest]) -> List[SubResponse]:
        """Send all requests as one batch call, one response per request_id."""
        ...

    def get_calendar_timezone(self, calendar_id: str) -> str:
        """The calendar's default IANA zone name."""
        ...

    def query_freebusy(
        self,
        calendar_ids: List[str],
        time_min: str,
        time_max: str,
        time_zone: Optional[str] = None,
    ) -> Dict[str, Dict[str, Any]]:
        """Busy periods keyed by calendar ID."""
        ...

    def list_calendars(self) -> List[Dict[str, Any]]:
        """Entries of the user's calendar list."""
        ...

    def get_colors(self) -> Dict[str, Any]:
        """Event and calendar color palettes."""
        ...


def error_body(error: HttpError) -> Dict[str, Any]:
    """Decode the JSON error payload of an HttpError, or {} if there is none."""
    try:
        body = json.loads(error.content)
    except (TypeError, ValueError):
        return {}
    return body if isinstance(body, dict) else {}


def to_fetch_error(error: HttpError) -> TotalFetchError:
    """Translate a rejected call into a TotalFetchError."""
    status = error.resp.status
    detail = getattr(error, "reason", None) or str(error)
    summary = _STATUS_MESSAGES.get(status)
    if summary is None and status >= 500:
        summary = "Calendar service error"
    message = f"{summary}: {detail}" if summary else detail
    return TotalFetchError(message, status=status)


def refresh_failure(error: RefreshError) -> TotalFetchError:
    """A refresh token the token endpoint refused is an authorization failure."""
    detail = error.args[0] if error.args else str(error)
    return TotalFetchError(f"Token refresh failed: {detail}", status=401)


@contextmanager
def translated_errors() -> Iterator[None]:
    """Re-raise client library failures as TotalFetchError."""
    try:
        yield
    except HttpError as e:
        raise to_fetch_error(e) from e
    except RefreshError as e:
        raise refresh_failure(e) from e
    except (TransportError, httplib2.HttpLib2Error) as e:
        raise TotalFetchError(f"Calendar service unreachable: {e}") from e


def batch_response(
    request_id: str, response: Any, exception: Optional[Exception]
) -> SubResponse:
    """Turn one batch callback invocation into a SubResponse."""
    if exception is None:
        return SubResponse(request_id, 200, response or {})
    if isinstance(exception, HttpError):
        return SubResponse(request_id, exception.resp.status, error_body(exception))
    return SubResponse(request_id, 500, {"message": str(exception)})


class GoogleCalendarService:
    """Production implementation of CalendarServiceProtocol."""

    def __init__(
        self,
        credentials: OAuthCredentials,
        timeout: Optional[float] = None,
        http: Optional[httplib2.Http] = None,
    ):
        if http is None:
            http = httplib2.Http(
                timeout=config.get_api_timeout() if timeout is None else timeout
            )
        self._http = AuthorizedHttp(credentials.to_google_credentials(), http=http)
        self._service = build("calendar", "v3", http=self._http, cache_discovery=False)

    def list_events(
        self,
        calendar_id: str,
        time_min: Optional[str] = None,
        time_max: Optional[str] = None,
        query: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {
            "calendarId": calendar_id,
            "singleEvents": True,
            "orderBy": "startTime",
        }
        if time_min:
            params["timeMin"] = time_min
        if time_max:
            params["timeMax"] = time_max
        if query:
            params["q"] = query

        with translated_errors():
            response = self._service.events().list(**params).execute()
        return response.get("items", [])

    def execute_batch(self, requests: List[SubRequest]) -> List[SubResponse]:
        responses: Dict[str, SubResponse] = {}

        def callback(request_id, response, exception):
            """Callback for batch request."""
            responses[request_id] = batch_response(request_id, response, exception)

        batch = self._service.new_batch_http_request(callback=callback)
        for sub_request in requests:
            batch.add(
                HttpRequest(
                    self._http,
                    JsonModel().response,
                    API_ROOT + sub_request.path,
                    method=sub_request.method,
                ),
                request_id=sub_request.request_id,
            )

        with translated_errors():
            batch.execute()

        return list(responses.values())

    def get_calendar_timezone(self, calendar_id: str) -> str:
        with translated_errors():
            try:
                calendar = self._service.calendars().get(calendarId=calendar_id).execute()
            except HttpError as e:
                logger.warning(
                    "Could not read timezone of %s, using UTC: %s", calendar_id, e
                )
                return "UTC"
        return calendar.get("timeZone") or "UTC"

    def query_freebusy(
        self,
        calendar_ids: List[str],
        time_min: str,
        time_max: str,
        time_zone: Optional[str] = None,
    ) -> Dict[str, Dict[str, Any]]:
        body: Dict[str, Any] = {
            "timeMin": time_min,
            "timeMax": time_max,
            "items": [{"id": calendar_id} for calendar_id in calendar_ids],
        }
        if time_zone:
            body["timeZone"] = time_zone

        with translated_errors():
            response = self._service.freebusy().query(body=body).execute()
        return response.get("calendars", {})

    def list_calendars(self) -> List[Dict[str, Any]]:
        with translated_errors():
            response = self._service.calendarList().list().execute()
        return response.get("items", [])

    def get_colors(self) -> Dict[str, Any]:
        with translated_errors():
            return self._service.colors().get().execute()


def create_calendar_service(credentials: OAuthCredentials) -> CalendarServiceProtocol:
    """Build a fresh service client for one invocation."""
    return GoogleCalendarService(credentials)
