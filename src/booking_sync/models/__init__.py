"""Domain models for booking calendar sync."""

from booking_sync.models.booking import Booking, Provider, Service, parse_civil_time
from booking_sync.models.event import (
    CODE_MARKER,
    EventProjection,
    description_carries_code,
)
from booking_sync.models.notification import Notification, NotificationAction
from booking_sync.models.outcome import (
    Outcome,
    OutcomeReason,
    OutcomeStatus,
    ReconcileAction,
)

__all__ = [
    # Booking
    "Booking",
    "Service",
    "Provider",
    "parse_civil_time",
    # Event
    "CODE_MARKER",
    "EventProjection",
    "description_carries_code",
    # Notification
    "Notification",
    "NotificationAction",
    # Outcome
    "Outcome",
    "OutcomeReason",
    "OutcomeStatus",
    "ReconcileAction",
]
