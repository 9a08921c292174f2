"""
Pytest fixtures for calendar availability tests.
"""

import json
from http import HTTPStatus
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import parse_qs, unquote, urlsplit

import httplib2
import pytest

from calendar_availability_mcp.errors import TotalFetchError
from calendar_availability_mcp.google import (
    GoogleCalendarService,
    OAuthCredentials,
    SubRequest,
    SubResponse,
)


class MockCalendarService:
    """Mock implementation of CalendarServiceProtocol with realistic behavior."""

    def __init__(self):
        self._events: Dict[str, List[Dict[str, Any]]] = {}
        self._timezones: Dict[str, str] = {}
        self._failures: Dict[str, Tuple[int, Dict[str, Any]]] = {}
        self._busy: Dict[str, List[Dict[str, str]]] = {}
        self._freebusy_errors: Dict[str, str] = {}
        self._calendar_list: List[Dict[str, Any]] = []
        self._colors: Dict[str, Any] = {"event": {}, "calendar": {}}
        self._rejection: Optional[TotalFetchError] = None
        self._reverse_batch = False
        self._drop_from_batch: set[str] = set()

        self.calls: List[Tuple[str, Dict[str, Any]]] = []
        self.batches: List[List[SubRequest]] = []
        self.timezone_lookups: List[str] = []

    # Setup helpers

    def add_event(self, calendar_id: str, event: Dict[str, Any]) -> None:
        self._events.setdefault(calendar_id, []).append(event)

    def set_timezone(self, calendar_id: str, tz: str) -> None:
        self._timezones[calendar_id] = tz

    def fail_calendar(
        self, calendar_id: str, status: int, body: Dict[str, Any] | None = None
    ) -> None:
        self._failures[calendar_id] = (status, body or {})

    def set_busy(self, calendar_id: str, periods: List[Dict[str, str]]) -> None:
        self._busy[calendar_id] = periods

    def fail_freebusy(self, calendar_id: str, reason: str = "notFound") -> None:
        self._freebusy_errors[calendar_id] = reason

    def add_calendar(self, entry: Dict[str, Any]) -> None:
        self._calendar_list.append(entry)

    def set_colors(self, colors: Dict[str, Any]) -> None:
        self._colors = colors

    def reject_all(self, status: int, message: str = "Request rejected") -> None:
        self._rejection = TotalFetchError(message, status=status)

    def reverse_batch_responses(self) -> None:
        self._reverse_batch = True

    def drop_batch_response(self, calendar_id: str) -> None:
        self._drop_from_batch.add(calendar_id)

    # CalendarServiceProtocol

    def list_events(
        self,
        calendar_id: str,
        time_min: Optional[str] = None,
        time_max: Optional[str] = None,
        query: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        self.calls.append(
            (
                "list_events",
                {
                    "calendar_id": calendar_id,
                    "time_min": time_min,
                    "time_max": time_max,
                    "query": query,
                },
            )
        )
        self._raise_if_rejected()
        if calendar_id in self._failures:
            status, body = self._failures[calendar_id]
            raise TotalFetchError(body.get("error", {}).get("message", "Failed"), status=status)

        events = list(self._events.get(calendar_id, []))
        if query:
            events = [e for e in events if query.lower() in e.get("summary", "").lower()]
        return events

    def execute_batch(self, requests: List[SubRequest]) -> List[SubResponse]:
        self.calls.append(("execute_batch", {"count": len(requests)}))
        self.batches.append(list(requests))
        self._raise_if_rejected()

        responses = []
        for request in requests:
            calendar_id = self._calendar_from_path(request.path)
            if calendar_id in self._drop_from_batch:
                continue
            if calendar_id in self._failures:
                status, body = self._failures[calendar_id]
                responses.append(SubResponse(request.request_id, status, body))
            else:
                responses.append(
                    SubResponse(
                        request.request_id,
                        200,
                        {"items": list(self._events.get(calendar_id, []))},
                    )
                )

        if self._reverse_batch:
            responses.reverse()
        return responses

    def get_calendar_timezone(self, calendar_id: str) -> str:
        self.timezone_lookups.append(calendar_id)
        return self._timezones.get(calendar_id, "UTC")

    def query_freebusy(
        self,
        calendar_ids: List[str],
        time_min: str,
        time_max: str,
        time_zone: Optional[str] = None,
    ) -> Dict[str, Dict[str, Any]]:
        self.calls.append(
            (
                "query_freebusy",
                {
                    "calendar_ids": list(calendar_ids),
                    "time_min": time_min,
                    "time_max": time_max,
                    "time_zone": time_zone,
                },
            )
        )
        self._raise_if_rejected()

        result: Dict[str, Dict[str, Any]] = {}
        for calendar_id in calendar_ids:
            if calendar_id in self._freebusy_errors:
                result[calendar_id] = {
                    "errors": [
                        {"domain": "global", "reason": self._freebusy_errors[calendar_id]}
                    ],
                    "busy": [],
                }
            else:
                result[calendar_id] = {"busy": list(self._busy.get(calendar_id, []))}
        return result

    def list_calendars(self) -> List[Dict[str, Any]]:
        self.calls.append(("list_calendars", {}))
        self._raise_if_rejected()
        return list(self._calendar_list)

    def get_colors(self) -> Dict[str, Any]:
        self.calls.append(("get_colors", {}))
        self._raise_if_rejected()
        return self._colors

    # Private assertion helpers for testing

    def _raise_if_rejected(self) -> None:
        if self._rejection is not None:
            raise self._rejection

    @staticmethod
    def _calendar_from_path(path: str) -> str:
        return unquote(urlsplit(path).path.split("/")[4])

    @staticmethod
    def _query_params(path: str) -> Dict[str, str]:
        return {k: v[0] for k, v in parse_qs(urlsplit(path).query).items()}

    def _call_names(self) -> List[str]:
        return [name for name, _ in self.calls]

    def _calls_named(self, name: str) -> List[Dict[str, Any]]:
        return [args for call_name, args in self.calls if call_name == name]


@pytest.fixture
def mock_calendar_service() -> MockCalendarService:
    """Fixture providing a fresh mock calendar service for testing.

    Returns:
        MockCalendarService: An empty mock with no events, calendars or failures
    """
    return MockCalendarService()


def make_event(
    event_id: str,
    start: str,
    end: str | None = None,
    summary: str | None = None,
    all_day: bool = False,
) -> Dict[str, Any]:
    """Build a minimal upstream event record."""
    key = "date" if all_day else "dateTime"
    return {
        "id": event_id,
        "summary": summary or event_id,
        "start": {key: start},
        "end": {key: end or start},
    }


@pytest.fixture
def event_factory():
    """Fixture returning the make_event helper."""
    return make_event


class FakeHttp:
    """Stands in for httplib2.Http, answering requests by URL prefix."""

    def __init__(self):
        self._routes: List[Tuple[str, Any]] = []
        self.requests: List[Tuple[str, str]] = []

    def route(
        self,
        prefix: str,
        status: int,
        content: bytes = b"{}",
        content_type: str = "application/json; charset=UTF-8",
    ) -> None:
        self._routes.append((prefix, (status, content, content_type)))

    def fail(self, prefix: str, error: Exception) -> None:
        self._routes.append((prefix, error))

    def request(self, uri, method="GET", body=None, headers=None, **kwargs):
        self.requests.append((method, uri))
        for prefix, answer in self._routes:
            if uri.startswith(prefix):
                if isinstance(answer, Exception):
                    raise answer
                status, content, content_type = answer
                return httplib2.Response({"status": status, "content-type": content_type}), content
        raise AssertionError(f"Unexpected request: {method} {uri}")


def multipart_batch_response(
    parts: List[Tuple[str, int, Dict[str, Any]]], boundary: str = "batch_boundary"
) -> Tuple[bytes, str]:
    """Encode (request_id, status, body) parts the way the batch endpoint answers."""
    chunks = []
    for request_id, status, body in parts:
        chunks.append(
            f"--{boundary}\r\n"
            "Content-Type: application/http\r\n"
            f"Content-ID: <response-item + {request_id}>\r\n"
            "\r\n"
            f"HTTP/1.1 {status} {HTTPStatus(status).phrase}\r\n"
            "Content-Type: application/json; charset=UTF-8\r\n"
            "\r\n"
            f"{json.dumps(body)}\r\n"
        )
    chunks.append(f"--{boundary}--\r\n")
    return "".join(chunks).encode(), f"multipart/mixed; boundary={boundary}"


@pytest.fixture
def fake_http() -> FakeHttp:
    """Fixture providing an offline HTTP transport for GoogleCalendarService."""
    return FakeHttp()


@pytest.fixture
def batch_payload():
    """Fixture returning the multipart_batch_response helper."""
    return multipart_batch_response


@pytest.fixture
def google_service(fake_http, monkeypatch):
    """GoogleCalendarService talking to the fake transport."""
    monkeypatch.delenv("GOOGLE_TOKEN_URI", raising=False)
    credentials = OAuthCredentials(
        access_token="ya29.token",
        refresh_token="1//refresh",
        client_id="client-id",
        client_secret="client-secret",
    )
    return GoogleCalendarService(credentials, timeout=5, http=fake_http)


