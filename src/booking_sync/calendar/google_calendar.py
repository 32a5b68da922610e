"""Google Calendar API client.

Provides the event operations the reconciler needs:
- Search events by booking code
- Create events
- Update events (full replace)
- Delete events

## API Documentation

https://developers.google.com/calendar/api/v3/reference

## Authentication

Uses a service account key with the calendar scope. The target calendar
must be shared with the service account's email address.

## Concurrency

The discovery client is blocking and its default httplib2 transport is not
thread-safe, so every request runs in a worker thread with its own
authorized `httplib2.Http`.

## Rate Limits

- 1,000,000 queries per day (default)
- 403 `rateLimitExceeded` / `userRateLimitExceeded` and 429 are retried
  with backoff
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable

import google.auth.exceptions
import httplib2
from google.oauth2 import service_account
from google_auth_httplib2 import AuthorizedHttp
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from booking_sync.errors import (
    MalformedError,
    NotFoundError,
    RejectedError,
    SyncError,
    UnauthenticatedError,
    UnavailableError,
    parse_retry_after,
)
from booking_sync.models.event import EventProjection, description_carries_code
from booking_sync.retry import RetryPolicy

if TYPE_CHECKING:
    from booking_sync.config import Settings

logger = logging.getLogger(__name__)

CALENDAR_SCOPE = "https://www.googleapis.com/auth/calendar"

RATE_LIMIT_REASONS = frozenset(
    {"rateLimitExceeded", "userRateLimitExceeded", "quotaExceeded"}
)


@dataclass
class CalendarEvent:
    """A calendar event as read back from the API."""

    id: str
    calendar_id: str
    summary: str
    description: str | None = None
    start: datetime | None = None
    end: datetime | None = None
    time_zone: str | None = None
    status: str = "confirmed"  # confirmed, tentative, cancelled
    etag: str | None = None
    html_link: str | None = None
    attendees: list[str] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: dict[str, Any], calendar_id: str) -> CalendarEvent:
        """Create from Google Calendar API response."""
        start_data = data.get("start", {})
        end_data = data.get("end", {})

        start = None
        end = None
        start_str = start_data.get("dateTime")
        end_str = end_data.get("dateTime")
        if start_str:
            start = datetime.fromisoformat(start_str.replace("Z", "+00:00"))
        if end_str:
            end = datetime.fromisoformat(end_str.replace("Z", "+00:00"))

        return cls(
            id=data["id"],
            calendar_id=calendar_id,
            summary=data.get("summary", "(No title)"),
            description=data.get("description"),
            start=start,
            end=end,
            time_zone=start_data.get("timeZone"),
            status=data.get("status", "confirmed"),
            etag=data.get("etag"),
            html_link=data.get("htmlLink"),
            attendees=[a["email"] for a in data.get("attendees", []) if a.get("email")],
        )

    def carries_code(self, code: str) -> bool:
        """Check whether this event is correlated to booking ``code``."""
        return description_carries_code(self.description, code)


def _error_reason(error: HttpError) -> str:
    """Extract the first `reason` from a Google API error body."""
    try:
        content = error.content.decode("utf-8") if error.content else ""
        data = json.loads(content)
    except (ValueError, AttributeError):
        return ""
    error_body = data.get("error") if isinstance(data, dict) else None
    if not isinstance(error_body, dict):
        return ""
    errors = error_body.get("errors") or []
    return errors[0].get("reason", "") if errors else ""


class GoogleCalendarClient:
    """Client for the events of a single Google calendar.

    Example:
        ```python
        client = GoogleCalendarClient.from_service_account_file(
            "/secrets/sa.json", calendar_id="abc@group.calendar.google.com"
        )

        event_id = await client.create_event(projection)
        matches = await client.search_events_by_code("ABC123")
        await client.delete_event(event_id)
        ```
    """

    name = "google_calendar"

    def __init__(
        self,
        calendar_id: str,
        credentials: Any | None = None,
        service: Any | None = None,
        timeout: float = 20.0,
        retry_policy: RetryPolicy | None = None,
    ):
        """Initialize the client.

        Args:
            calendar_id: Calendar to manage
            credentials: google-auth credentials with the calendar scope
            service: Pre-built Calendar v3 resource (tests inject a mock)
            timeout: Per-request timeout in seconds
            retry_policy: Backoff policy for transient failures
        """
        if service is None and credentials is None:
            raise ValueError("Either credentials or service is required")

        self.calendar_id = calendar_id
        self.timeout = timeout
        self.retry_policy = retry_policy or RetryPolicy()
        self._credentials = credentials
        self._service = service or build(
            "calendar", "v3", credentials=credentials, cache_discovery=False
        )

    @classmethod
    def from_service_account_file(
        cls,
        credentials_file: str,
        calendar_id: str,
        timeout: float = 20.0,
        retry_policy: RetryPolicy | None = None,
    ) -> GoogleCalendarClient:
        credentials = service_account.Credentials.from_service_account_file(
            credentials_file, scopes=[CALENDAR_SCOPE]
        )
        logger.info(f"Loaded service account {credentials.service_account_email}")
        return cls(
            calendar_id=calendar_id,
            credentials=credentials,
            timeout=timeout,
            retry_policy=retry_policy,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> GoogleCalendarClient:
        return cls.from_service_account_file(
            settings.google_calendar_credentials_file,
            calendar_id=settings.google_calendar_id,
            timeout=settings.request_timeout_seconds,
            retry_policy=RetryPolicy.from_settings(settings),
        )

    def _http(self) -> AuthorizedHttp | None:
        """Build a per-request transport, or None to use the service default."""
        if self._credentials is None:
            return None
        return AuthorizedHttp(self._credentials, http=httplib2.Http(timeout=self.timeout))

    def _translate(self, error: HttpError, operation: str) -> SyncError:
        """Map a Google API error onto the failure taxonomy."""
        status = int(error.resp.status)
        reason = _error_reason(error)
        message = f"{operation} failed: {status} {reason}".strip()

        if status in (404, 410):
            return NotFoundError(message, source=self.name, status_code=status)
        if status == 429 or status >= 500 or (
            status == 403 and reason in RATE_LIMIT_REASONS
        ):
            return UnavailableError(
                message,
                source=self.name,
                status_code=status,
                retry_after=parse_retry_after(error.resp.get("retry-after")),
            )
        if status in (401, 403):
            return UnauthenticatedError(message, source=self.name, status_code=status)
        return RejectedError(message, source=self.name, status_code=status)

    async def _execute_once(self, request_factory: Callable[[], Any], operation: str) -> Any:
        http = self._http()
        try:
            return await asyncio.to_thread(lambda: request_factory().execute(http=http))
        except HttpError as e:
            raise self._translate(e, operation) from e
        except google.auth.exceptions.RefreshError as e:
            raise UnauthenticatedError(
                f"{operation} failed: credentials rejected", source=self.name
            ) from e
        except (google.auth.exceptions.TransportError, httplib2.HttpLib2Error, OSError) as e:
            raise UnavailableError(f"{operation} failed: {e}", source=self.name) from e

    async def _execute(self, request_factory: Callable[[], Any], operation: str) -> Any:
        """Execute a request with bounded retries on transient failures."""
        result = None
        async for attempt in self.retry_policy.retrying():
            with attempt:
                result = await self._execute_once(request_factory, operation)
        return result

    def _event_from_api(self, data: Any, operation: str) -> CalendarEvent:
        try:
            return CalendarEvent.from_api(data, self.calendar_id)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise MalformedError(
                f"{operation}: unparseable event: {e}", source=self.name
            ) from e

    async def search_events_by_code(self, code: str) -> list[CalendarEvent]:
        """Find live events correlated to a booking code.

        The free-text search is only a pre-filter; results are kept only if
        their description holds the exact correlation line.

        Args:
            code: Booking correlation code

        Returns:
            Matching events sorted by event ID
        """
        events: list[CalendarEvent] = []
        page_token = None

        params: dict[str, Any] = {
            "calendarId": self.calendar_id,
            "q": code,
            "showDeleted": False,
            "singleEvents": True,
            "maxResults": 250,
        }

        while True:
            if page_token:
                params["pageToken"] = page_token

            result = await self._execute(
                lambda p=dict(params): self._service.events().list(**p),
                "search events",
            )

            for item in result.get("items", []):
                if item.get("status") == "cancelled":
                    continue
                event = self._event_from_api(item, "search events")
                if event.carries_code(code):
                    events.append(event)
                else:
                    logger.debug(f"Ignoring fuzzy search hit {event.id} for code {code}")

            page_token = result.get("nextPageToken")
            if not page_token:
                break

        return sorted(events, key=lambda e: e.id)

    async def find_event_by_code(self, code: str) -> str | None:
        """Return the lowest matching event ID for a booking code, if any."""
        matches = await self.search_events_by_code(code)
        return matches[0].id if matches else None

    async def create_event(self, projection: EventProjection) -> str:
        """Insert a new event.

        Returns:
            The new event ID
        """
        body = projection.to_api_body()
        result = await self._execute(
            lambda: self._service.events().insert(
                calendarId=self.calendar_id, body=body
            ),
            "create event",
        )
        event_id = result.get("id") if isinstance(result, dict) else None
        if not event_id:
            raise MalformedError("create event: response has no event id", source=self.name)
        return event_id

    async def update_event(self, event_id: str, projection: EventProjection) -> CalendarEvent:
        """Replace the mutable fields of an event.

        Raises:
            NotFoundError: If the event was deleted
        """
        body = projection.to_api_body()
        result = await self._execute(
            lambda: self._service.events().update(
                calendarId=self.calendar_id, eventId=event_id, body=body
            ),
            "update event",
        )
        event = self._event_from_api(result, "update event")
        if event.status == "cancelled":
            # Updating a deleted event does not bring it back
            raise NotFoundError(f"Event {event_id} is cancelled", source=self.name)
        return event

    async def delete_event(self, event_id: str) -> None:
        """Delete an event.

        Raises:
            NotFoundError: If the event was already deleted
        """
        await self._execute(
            lambda: self._service.events().delete(
                calendarId=self.calendar_id, eventId=event_id
            ),
            "delete event",
        )
