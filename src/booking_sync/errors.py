"""Failure taxonomy shared by the clients and the reconciler.

Collaborator clients translate their transport errors (httpx exceptions,
Google ``HttpError``, socket timeouts) into these exceptions so the
reconciler only has to reason about a small, closed set of failure kinds.

| Kind | Transient | Typical cause |
|------|-----------|---------------|
| NOT_FOUND | no | Booking deleted upstream, event deleted concurrently |
| UNAUTHENTICATED | no | Token exchange rejected, bad service account |
| UNAVAILABLE | yes | Network error, timeout, 429, 5xx |
| MALFORMED | no | Response body cannot be parsed into a model |
| UNSUPPORTED_ACTION | no | Webhook action we do not handle |
| UNCORRELATABLE | no | Cancel for a booking that can no longer be fetched |
| REJECTED | no | Other 4xx from a collaborator |
"""

from __future__ import annotations

from enum import Enum


class FailureKind(str, Enum):
    """Kind of a failed reconciliation."""

    NOT_FOUND = "not_found"
    UNAUTHENTICATED = "unauthenticated"
    UNAVAILABLE = "unavailable"
    MALFORMED = "malformed"
    UNSUPPORTED_ACTION = "unsupported_action"
    UNCORRELATABLE = "uncorrelatable"
    REJECTED = "rejected"
    INTERNAL = "internal"


class SyncError(Exception):
    """Base exception for booking sync errors."""

    kind: FailureKind = FailureKind.INTERNAL

    def __init__(
        self,
        message: str,
        source: str | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.source = source
        self.status_code = status_code

    @property
    def transient(self) -> bool:
        return False


class NotFoundError(SyncError):
    """Raised when a booking or calendar event does not exist."""

    kind = FailureKind.NOT_FOUND


class UnauthenticatedError(SyncError):
    """Raised when credentials are rejected or token exchange fails."""

    kind = FailureKind.UNAUTHENTICATED


class UnavailableError(SyncError):
    """Raised on network errors, timeouts, rate limits and 5xx responses."""

    kind = FailureKind.UNAVAILABLE

    def __init__(
        self,
        message: str,
        source: str | None = None,
        status_code: int | None = None,
        retry_after: float | None = None,
    ):
        super().__init__(message, source=source, status_code=status_code)
        self.retry_after = retry_after

    @property
    def transient(self) -> bool:
        return True


class MalformedError(SyncError):
    """Raised when a remote response cannot be parsed."""

    kind = FailureKind.MALFORMED


class UnsupportedActionError(SyncError):
    """Raised for notification actions the reconciler does not handle."""

    kind = FailureKind.UNSUPPORTED_ACTION


class UncorrelatableError(SyncError):
    """Raised when a cancellation cannot be matched to a calendar event."""

    kind = FailureKind.UNCORRELATABLE


class RejectedError(SyncError):
    """Raised when a collaborator refuses a request for a non-transient reason."""

    kind = FailureKind.REJECTED


def parse_retry_after(value: str | None) -> float | None:
    """Parse a Retry-After header given in seconds."""
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None
