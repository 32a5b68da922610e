"""Booking sources."""

from booking_sync.booking_source.base import BookingSource
from booking_sync.booking_source.session import SessionManager, TokenSession
from booking_sync.booking_source.simplybook import SimplyBookClient

__all__ = [
    "BookingSource",
    "SessionManager",
    "TokenSession",
    "SimplyBookClient",
]
