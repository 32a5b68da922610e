"""Pytest fixtures for booking sync tests.

This module provides test fixtures that ensure:
1. No external API calls are made (SimplyBook, Google Calendar)
2. Isolated test environment with controlled configuration
3. In-memory fakes of the booking source and calendar for reconciler tests
"""

import asyncio
import itertools
import os
from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

# Set test environment BEFORE importing application modules
# This ensures no real services are contacted during test collection
os.environ.setdefault("SIMPLYBOOK_COMPANY_LOGIN", "testcompany")
os.environ.setdefault("SIMPLYBOOK_API_KEY", "test-api-key")
os.environ.setdefault("GOOGLE_CALENDAR_CREDENTIALS_FILE", "/nonexistent/sa.json")
os.environ.setdefault("GOOGLE_CALENDAR_ID", "test-calendar@group.calendar.google.com")
os.environ.setdefault("TIMEZONE", "Asia/Taipei")

from booking_sync.booking_source.base import BookingSource
from booking_sync.calendar.google_calendar import CalendarEvent
from booking_sync.errors import NotFoundError
from booking_sync.models.booking import Booking
from booking_sync.models.event import EventProjection
from booking_sync.reconciler import Reconciler
from booking_sync.retry import RetryPolicy

TAIPEI = ZoneInfo("Asia/Taipei")
CALENDAR_ID = "test-calendar@group.calendar.google.com"


# =============================================================================
# Fakes
# =============================================================================


class FakeBookingSource(BookingSource):
    """Booking source backed by a dict; unknown IDs raise NotFoundError."""

    name = "fake"

    def __init__(self):
        super().__init__(retry_policy=RetryPolicy(attempts=1, wait_min=0, wait_max=0))
        self.bookings: dict[str, Booking] = {}
        self.errors: dict[str, Exception] = {}
        self.calls: list[str] = []

    def put(self, booking: Booking) -> None:
        self.bookings[booking.id] = booking

    def remove(self, booking_id: str) -> None:
        self.bookings.pop(booking_id, None)

    async def fetch_booking(self, booking_id: str) -> Booking:
        self.calls.append(booking_id)
        await asyncio.sleep(0)
        if booking_id in self.errors:
            raise self.errors[booking_id]
        if booking_id not in self.bookings:
            raise NotFoundError(f"Booking {booking_id} not found", source=self.name)
        return self.bookings[booking_id]


class FakeCalendar:
    """In-memory calendar with the GoogleCalendarClient event operations."""

    def __init__(self):
        self.events: dict[str, CalendarEvent] = {}
        self.bodies: dict[str, dict] = {}
        self._ids = itertools.count(1)
        self.created = 0
        self.updated = 0
        self.deleted = 0

    def add_raw(self, event_id: str, description: str, summary: str = "Raw") -> CalendarEvent:
        event = CalendarEvent(
            id=event_id,
            calendar_id=CALENDAR_ID,
            summary=summary,
            description=description,
        )
        self.events[event_id] = event
        return event

    def events_for(self, code: str) -> list[CalendarEvent]:
        return sorted(
            (e for e in self.events.values() if e.carries_code(code)),
            key=lambda e: e.id,
        )

    def _store(self, event_id: str, projection: EventProjection) -> CalendarEvent:
        body = projection.to_api_body()
        event = CalendarEvent.from_api({"id": event_id, **body}, CALENDAR_ID)
        self.events[event_id] = event
        self.bodies[event_id] = body
        return event

    async def search_events_by_code(self, code: str) -> list[CalendarEvent]:
        await asyncio.sleep(0)
        return self.events_for(code)

    async def create_event(self, projection: EventProjection) -> str:
        await asyncio.sleep(0)
        event_id = f"evt{next(self._ids):04d}"
        self._store(event_id, projection)
        self.created += 1
        return event_id

    async def update_event(self, event_id: str, projection: EventProjection) -> CalendarEvent:
        await asyncio.sleep(0)
        if event_id not in self.events:
            raise NotFoundError(f"Event {event_id} not found", source="fake")
        self.updated += 1
        return self._store(event_id, projection)

    async def delete_event(self, event_id: str) -> None:
        await asyncio.sleep(0)
        if event_id not in self.events:
            raise NotFoundError(f"Event {event_id} not found", source="fake")
        del self.events[event_id]
        self.bodies.pop(event_id, None)
        self.deleted += 1


# =============================================================================
# Test Isolation Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def reset_settings_cache():
    """Reset settings cache before each test to ensure clean state."""
    from booking_sync.config import get_settings
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def no_retry_wait() -> RetryPolicy:
    """Retry policy with three attempts and no sleeping between them."""
    return RetryPolicy(attempts=3, wait_min=0, wait_max=0)


# =============================================================================
# Domain Fixtures
# =============================================================================


def make_booking(
    booking_id: str = "1042",
    code: str = "ABC123",
    start: datetime | None = None,
    end: datetime | None = None,
    **overrides,
) -> Booking:
    """Build a booking in the Asia/Taipei timezone."""
    values = {
        "id": booking_id,
        "code": code,
        "client_name": "Jane Doe",
        "client_email": "jane@example.com",
        "client_phone": "+886912345678",
        "start_time": start or datetime(2025, 4, 1, 10, 0, tzinfo=TAIPEI),
        "end_time": end or datetime(2025, 4, 1, 10, 30, tzinfo=TAIPEI),
        "service_name": "Haircut",
        "provider_name": "Alice",
    }
    values.update(overrides)
    return Booking(**values)


@pytest.fixture
def sample_booking() -> Booking:
    """Booking ABC123 on 2025-04-01 10:00-10:30 Taipei time."""
    return make_booking()


@pytest.fixture
def sample_booking_record() -> dict:
    """Raw SimplyBook getBooking result for booking ABC123."""
    return {
        "id": "1042",
        "code": "ABC123",
        "client_name": "Jane Doe",
        "client_email": "jane@example.com",
        "client_phone": "+886912345678",
        "start_datetime": "2025-04-01 10:00:00",
        "end_datetime": "2025-04-01 10:30:00",
        "event_id": "3",
        "event_name": "Haircut",
        "unit_id": "2",
        "unit_name": "Alice",
        "note": "",
        "status": "confirmed",
        "is_confirm": "1",
    }


@pytest.fixture
def booking_source() -> FakeBookingSource:
    return FakeBookingSource()


@pytest.fixture
def calendar() -> FakeCalendar:
    return FakeCalendar()


@pytest.fixture
def reconciler(booking_source: FakeBookingSource, calendar: FakeCalendar) -> Reconciler:
    return Reconciler(
        booking_source,
        calendar,
        time_zone="Asia/Taipei",
        lock_timeout=5.0,
    )
