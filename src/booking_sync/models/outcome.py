"""Terminal outcomes of a reconciliation."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from booking_sync.errors import FailureKind


class ReconcileAction(str, Enum):
    """Normalized action the reconciler drives the calendar towards."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class OutcomeStatus(str, Enum):
    SYNCED = "synced"
    SKIPPED = "skipped"
    FAILED = "failed"


class OutcomeReason(str, Enum):
    """Why a reconciliation ended as SYNCED or SKIPPED."""

    CREATED = "created"
    CREATED_ON_UPDATE = "created_on_update"
    UPDATED = "updated"
    DELETED = "deleted"
    ALREADY_EXISTS = "already_exists"
    ALREADY_GONE = "already_gone"


@dataclass
class Outcome:
    """Result of reconciling one notification."""

    status: OutcomeStatus
    booking_id: str
    action: ReconcileAction | None = None
    reason: OutcomeReason | None = None
    failure: FailureKind | None = None
    event_id: str | None = None
    message: str | None = None
    duration_seconds: float | None = None
    finished_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def synced(
        cls,
        booking_id: str,
        action: ReconcileAction,
        reason: OutcomeReason,
        event_id: str | None = None,
    ) -> Outcome:
        return cls(
            status=OutcomeStatus.SYNCED,
            booking_id=booking_id,
            action=action,
            reason=reason,
            event_id=event_id,
        )

    @classmethod
    def skipped(
        cls,
        booking_id: str,
        action: ReconcileAction,
        reason: OutcomeReason,
        event_id: str | None = None,
    ) -> Outcome:
        return cls(
            status=OutcomeStatus.SKIPPED,
            booking_id=booking_id,
            action=action,
            reason=reason,
            event_id=event_id,
        )

    @classmethod
    def failed(
        cls,
        booking_id: str,
        failure: FailureKind,
        message: str,
        action: ReconcileAction | None = None,
    ) -> Outcome:
        return cls(
            status=OutcomeStatus.FAILED,
            booking_id=booking_id,
            action=action,
            failure=failure,
            message=message,
        )

    @property
    def success(self) -> bool:
        return self.status != OutcomeStatus.FAILED

    @property
    def label(self) -> str:
        """Short label such as ``synced:created`` or ``failed:unavailable``."""
        detail = self.failure if self.status == OutcomeStatus.FAILED else self.reason
        return f"{self.status.value}:{detail.value}" if detail else self.status.value
