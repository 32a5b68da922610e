"""Booking to calendar reconciliation.

Drives the calendar event of one booking to the state implied by a
notification. No state is kept between notifications: every run re-fetches
the booking and searches the calendar for its event, so any number of
reconciler instances can run side by side.

## Reconciliation Process

1. Normalize the notification action (create / update / delete)
2. Fetch the canonical booking
3. Search the calendar for events carrying the booking code
4. Apply the branch table:

| action | event found | effect | outcome |
|--------|-------------|--------|---------|
| create | yes | none | skipped: already_exists |
| create | no | create | synced: created |
| update | no | create | synced: created_on_update |
| update | yes | update | synced: updated |
| delete | yes | delete | synced: deleted |
| delete | no | none | skipped: already_gone |
| create or update, booking cancelled | yes | delete | synced: deleted |
| create or update, booking cancelled | no | none | skipped: already_gone |

An update whose event vanished mid-flight falls back to create, and a
delete whose event vanished mid-flight is treated as already gone. A create
or update for a booking whose canonical record is already cancelled is
handled like a delete, so a delayed create cannot outlive the cancellation.

## Concurrency

Reconciliations of the same booking are serialized with a per-booking lock
so concurrent duplicates cannot both create an event. Different bookings
run fully in parallel. The locked section has no overall deadline; each
calendar or booking request is bounded by its own timeout and retry limit.
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, AsyncIterator

from booking_sync.errors import (
    FailureKind,
    NotFoundError,
    SyncError,
    UncorrelatableError,
    UnsupportedActionError,
)
from booking_sync.models.event import EventProjection
from booking_sync.models.notification import Notification, NotificationAction
from booking_sync.models.outcome import (
    Outcome,
    OutcomeReason,
    OutcomeStatus,
    ReconcileAction,
)

if TYPE_CHECKING:
    from booking_sync.booking_source.base import BookingSource
    from booking_sync.calendar.google_calendar import CalendarEvent, GoogleCalendarClient
    from booking_sync.config import Settings
    from booking_sync.models.booking import Booking

logger = logging.getLogger(__name__)

ACTION_MAP: dict[NotificationAction, ReconcileAction] = {
    NotificationAction.CREATED: ReconcileAction.CREATE,
    NotificationAction.CHANGED: ReconcileAction.UPDATE,
    NotificationAction.CANCELLED: ReconcileAction.DELETE,
}


class KeyedLock:
    """A lock per key. Entries are dropped once nobody holds or awaits them."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str, timeout: float | None = None) -> AsyncIterator[None]:
        """Hold the lock for ``key``.

        Raises:
            TimeoutError: If the lock is not acquired within ``timeout``
        """
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            if timeout is None:
                await lock.acquire()
            else:
                async with asyncio.timeout(timeout):
                    await lock.acquire()
            try:
                yield
            finally:
                lock.release()
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]

    def locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)


def normalize_action(notification: Notification) -> ReconcileAction:
    """Map a notification action onto a reconcile action.

    Raises:
        UnsupportedActionError: For unknown actions
    """
    action = ACTION_MAP.get(notification.action)
    if action is None:
        raise UnsupportedActionError(
            f"Unsupported action {notification.raw_action or notification.action.value!r}"
        )
    return action


def select_event(code: str, matches: list[CalendarEvent]) -> CalendarEvent | None:
    """Pick the event correlated to ``code`` from the search matches.

    More than one match means duplicates were written earlier. The lowest
    event ID wins and the duplicates are logged for cleanup; no new event
    is created in that case.
    """
    if not matches:
        return None
    chosen = min(matches, key=lambda event: event.id)
    if len(matches) > 1:
        others = sorted(event.id for event in matches if event is not chosen)
        logger.warning(
            f"Booking code {code} matches {len(matches)} events; "
            f"using {chosen.id}, duplicates: {', '.join(others)}"
        )
    return chosen


class Reconciler:
    """Reconciles one notification at a time against the calendar.

    Example:
        ```python
        reconciler = Reconciler(booking_source, calendar, time_zone="Asia/Taipei")

        outcome = await reconciler.process(
            Notification(action=NotificationAction.CREATED, booking_id="1042")
        )
        ```
    """

    def __init__(
        self,
        booking_source: BookingSource,
        calendar: GoogleCalendarClient,
        time_zone: str,
        lock_timeout: float | None = 60.0,
    ):
        """Initialize the reconciler.

        Args:
            booking_source: Source of canonical booking records
            calendar: Calendar client holding the events
            time_zone: IANA zone name written into events
            lock_timeout: Max seconds to wait for another run on the same booking
        """
        self.booking_source = booking_source
        self.calendar = calendar
        self.time_zone = time_zone
        self.lock_timeout = lock_timeout
        self._locks = KeyedLock()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        booking_source: BookingSource,
        calendar: GoogleCalendarClient,
    ) -> Reconciler:
        return cls(
            booking_source=booking_source,
            calendar=calendar,
            time_zone=settings.timezone,
            lock_timeout=settings.lock_timeout_seconds,
        )

    async def process(self, notification: Notification) -> Outcome:
        """Reconcile one notification.

        Never raises: every failure is reported as a FAILED outcome.

        Args:
            notification: The inbound notification

        Returns:
            Terminal outcome of the reconciliation
        """
        started = time.monotonic()
        booking_id = notification.booking_id
        action: ReconcileAction | None = None

        try:
            action = normalize_action(notification)
            logger.info(f"Reconciling {action.value} for booking {booking_id}")
            async with self._locks.hold(booking_id, timeout=self.lock_timeout):
                outcome = await self._reconcile(action, booking_id)
        except SyncError as e:
            outcome = Outcome.failed(booking_id, e.kind, str(e), action=action)
        except TimeoutError:
            outcome = Outcome.failed(
                booking_id,
                FailureKind.UNAVAILABLE,
                "Timed out waiting for another reconciliation of this booking",
                action=action,
            )
        except Exception as e:
            logger.exception(f"Unexpected error reconciling booking {booking_id}: {e}")
            outcome = Outcome.failed(
                booking_id, FailureKind.INTERNAL, f"Unexpected error: {e}", action=action
            )

        outcome.duration_seconds = time.monotonic() - started
        self._log_outcome(notification, outcome)
        return outcome

    async def _reconcile(self, action: ReconcileAction, booking_id: str) -> Outcome:
        booking = await self._fetch_booking(action, booking_id)
        matches = await self.calendar.search_events_by_code(booking.code)
        existing = select_event(booking.code, matches)

        if action is ReconcileAction.DELETE:
            return await self._apply_delete(booking, existing, action)

        if booking.is_cancelled:
            # A late create/update must not resurrect a cancelled booking
            logger.info(
                f"Booking {booking.id} is cancelled upstream, "
                f"treating {action.value} as delete"
            )
            return await self._apply_delete(booking, existing, action)

        projection = EventProjection.from_booking(booking, self.time_zone)

        if action is ReconcileAction.CREATE:
            if existing is not None:
                return Outcome.skipped(
                    booking.id, action, OutcomeReason.ALREADY_EXISTS, existing.id
                )
            event_id = await self.calendar.create_event(projection)
            return Outcome.synced(booking.id, action, OutcomeReason.CREATED, event_id)

        if existing is None:
            # Missed create: heal by creating now
            event_id = await self.calendar.create_event(projection)
            return Outcome.synced(
                booking.id, action, OutcomeReason.CREATED_ON_UPDATE, event_id
            )

        try:
            await self.calendar.update_event(existing.id, projection)
        except NotFoundError:
            logger.warning(
                f"Event {existing.id} for booking {booking.id} vanished during update, "
                "recreating"
            )
            event_id = await self.calendar.create_event(projection)
            return Outcome.synced(
                booking.id, action, OutcomeReason.CREATED_ON_UPDATE, event_id
            )
        return Outcome.synced(booking.id, action, OutcomeReason.UPDATED, existing.id)

    async def _apply_delete(
        self,
        booking: Booking,
        existing: CalendarEvent | None,
        action: ReconcileAction,
    ) -> Outcome:
        if existing is None:
            return Outcome.skipped(booking.id, action, OutcomeReason.ALREADY_GONE)

        try:
            await self.calendar.delete_event(existing.id)
        except NotFoundError:
            return Outcome.skipped(
                booking.id, action, OutcomeReason.ALREADY_GONE, existing.id
            )
        return Outcome.synced(booking.id, action, OutcomeReason.DELETED, existing.id)

    async def _fetch_booking(self, action: ReconcileAction, booking_id: str) -> Booking:
        try:
            return await self.booking_source.fetch_booking(booking_id)
        except NotFoundError as e:
            if action is ReconcileAction.DELETE:
                # The event can only be found through the booking code
                raise UncorrelatableError(
                    f"Booking {booking_id} cannot be fetched, so its calendar event "
                    "cannot be located; manual cleanup may be needed",
                    source=e.source,
                ) from e
            raise

    def _log_outcome(self, notification: Notification, outcome: Outcome) -> None:
        action = outcome.action.value if outcome.action else notification.action.value
        if outcome.status is OutcomeStatus.FAILED:
            logger.error(
                f"Failed to reconcile {action} for booking {outcome.booking_id}: "
                f"{outcome.label} ({outcome.message})"
            )
            return

        logger.info(
            f"Reconciled {action} for booking {outcome.booking_id}: {outcome.label}"
            + (f" event {outcome.event_id}" if outcome.event_id else "")
            + (
                f" in {outcome.duration_seconds:.2f}s"
                if outcome.duration_seconds is not None
                else ""
            )
        )
