"""Inbound booking notifications."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator


class NotificationAction(str, Enum):
    """Action reported by the booking source."""

    CREATED = "created"
    CHANGED = "changed"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: str | None) -> NotificationAction:
        """Map a raw webhook action string onto an action.

        Matching is case-insensitive; unrecognized values map to UNKNOWN.
        """
        return _ACTION_ALIASES.get((value or "").strip().lower(), cls.UNKNOWN)


_ACTION_ALIASES: dict[str, NotificationAction] = {
    "create": NotificationAction.CREATED,
    "created": NotificationAction.CREATED,
    "new": NotificationAction.CREATED,
    "update": NotificationAction.CHANGED,
    "updated": NotificationAction.CHANGED,
    "change": NotificationAction.CHANGED,
    "changed": NotificationAction.CHANGED,
    "cancel": NotificationAction.CANCELLED,
    "cancelled": NotificationAction.CANCELLED,
    "canceled": NotificationAction.CANCELLED,
    "delete": NotificationAction.CANCELLED,
    "deleted": NotificationAction.CANCELLED,
}


class Notification(BaseModel):
    """One inbound push naming a booking. Consumed once, never persisted."""

    action: NotificationAction
    booking_id: str = Field(..., min_length=1)
    received_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    raw_action: str | None = Field(
        default=None, description="Action string as sent, for diagnostics"
    )

    @field_validator("booking_id", mode="before")
    @classmethod
    def normalize_booking_id(cls, v: Any) -> Any:
        if isinstance(v, int):
            return str(v)
        if isinstance(v, str):
            return v.strip()
        return v

    @classmethod
    def from_raw(cls, action: str | None, booking_id: Any, **kwargs: Any) -> Notification:
        """Build a notification from the raw webhook action string."""
        return cls(
            action=NotificationAction.parse(action),
            booking_id=booking_id,
            raw_action=action,
            **kwargs,
        )

    def __str__(self) -> str:
        return f"{self.action.value} booking {self.booking_id}"
