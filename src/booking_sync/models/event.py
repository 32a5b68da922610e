"""Calendar event projection built from a booking."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from booking_sync.models.booking import Booking

# Correlation marker written into every event description. Lookups match
# this exact line, so changing it orphans existing events.
CODE_MARKER = "Booking code: "


def code_line(code: str) -> str:
    return f"{CODE_MARKER}{code}"


def description_carries_code(description: str | None, code: str) -> bool:
    """Check whether a description holds the exact correlation line for ``code``."""
    if not description or not code:
        return False
    expected = code_line(code)
    return any(line.strip() == expected for line in description.splitlines())


class EventProjection(BaseModel):
    """Local projection of the mutable fields of a calendar event."""

    summary: str
    description: str
    start: datetime
    end: datetime
    time_zone: str = Field(..., description="IANA timezone name written with the times")
    attendees: list[str] = Field(default_factory=list)
    booking_code: str
    booking_id: str

    @classmethod
    def from_booking(cls, booking: Booking, time_zone: str) -> EventProjection:
        """Build the event projection for a booking."""
        client = booking.client_name or "Unknown client"
        service = booking.service_name or "Booking"

        lines = [code_line(booking.code), f"Client: {client}"]
        if booking.client_phone:
            lines.append(f"Phone: {booking.client_phone}")
        if booking.client_email:
            lines.append(f"Email: {booking.client_email}")
        if booking.provider_name:
            lines.append(f"Provider: {booking.provider_name}")
        if booking.notes:
            lines.append(f"Notes: {booking.notes}")
        lines.append(f"Booking ID: {booking.id}")

        return cls(
            summary=f"{service} - {client}",
            description="\n".join(lines),
            start=booking.start_time,
            end=booking.end_time,
            time_zone=time_zone,
            attendees=[booking.client_email] if booking.client_email else [],
            booking_code=booking.code,
            booking_id=booking.id,
        )

    def to_api_body(self) -> dict[str, Any]:
        """Convert to a Google Calendar event resource.

        Times always carry an explicit offset plus the zone name; a naive
        time here would be read by the calendar in its own default zone.
        """
        if self.start.tzinfo is None or self.end.tzinfo is None:
            raise ValueError("Event times must be timezone-aware")

        return {
            "summary": self.summary,
            "description": self.description,
            "start": {
                "dateTime": self.start.isoformat(),
                "timeZone": self.time_zone,
            },
            "end": {
                "dateTime": self.end.isoformat(),
                "timeZone": self.time_zone,
            },
            "attendees": [{"email": email} for email in self.attendees],
            "extendedProperties": {
                "private": {
                    "bookingCode": self.booking_code,
                    "bookingId": self.booking_id,
                }
            },
        }
