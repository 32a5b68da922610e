"""Calendar integration module.

Writes one Google Calendar event per booking and finds it again by the
booking code embedded in the event description.

## Google Calendar API

Uses the Google Calendar API v3:
- https://developers.google.com/calendar/api/v3/reference

## Correlation

There is no local mapping from booking to event. Every event description
carries a `Booking code: <code>` line and lookups run a free-text search for
the code, keeping only events with that exact line.
"""

from booking_sync.calendar.google_calendar import (
    CalendarEvent,
    GoogleCalendarClient,
)

__all__ = [
    "CalendarEvent",
    "GoogleCalendarClient",
]
