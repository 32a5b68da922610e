"""SimplyBook webhook intake.

Validates the callback, turns it into a `Notification` and hands it to the
dispatcher. The response is sent before reconciliation runs so SimplyBook's
delivery timeout is never hit.
"""

from __future__ import annotations

import logging
import secrets
from typing import Any

from fastapi import APIRouter, Header, HTTPException, Request, status
from pydantic import BaseModel, ValidationError, field_validator

from booking_sync.dispatcher import (
    DispatcherClosedError,
    DispatcherFullError,
    NotificationDispatcher,
)
from booking_sync.models.notification import Notification

logger = logging.getLogger(__name__)

router = APIRouter()


class WebhookPayload(BaseModel):
    """SimplyBook callback body."""

    action: str
    booking_id: str
    client_id: str | None = None
    provider_id: str | None = None
    service_id: str | None = None
    timestamp: str | None = None

    @field_validator(
        "booking_id", "client_id", "provider_id", "service_id", "timestamp", mode="before"
    )
    @classmethod
    def coerce_to_string(cls, v: Any) -> Any:
        if isinstance(v, int):
            return str(v)
        return v

    @field_validator("booking_id")
    @classmethod
    def require_booking_id(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("booking_id must not be empty")
        return v.strip()


class WebhookAccepted(BaseModel):
    """Acknowledgement returned to the booking source."""

    status: str = "accepted"
    action: str
    booking_id: str


def _check_token(request: Request, token: str | None) -> None:
    settings = request.app.state.settings
    if not settings.webhook_auth_enabled:
        return
    # Starlette decodes header bytes as latin-1
    if token is None or not secrets.compare_digest(
        token.encode("latin-1"), settings.webhook_secret.encode()
    ):
        logger.warning("Rejected webhook with missing or invalid token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )


@router.post("", response_model=WebhookAccepted)
async def receive_webhook(
    request: Request,
    x_simplybook_token: str | None = Header(default=None),
) -> WebhookAccepted:
    """Accept a booking notification for background reconciliation."""
    _check_token(request, x_simplybook_token)

    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid JSON body",
        )

    try:
        payload = WebhookPayload.model_validate(body)
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid webhook payload: {e.error_count()} error(s)",
        )

    notification = Notification.from_raw(payload.action, payload.booking_id)
    dispatcher: NotificationDispatcher = request.app.state.dispatcher

    try:
        dispatcher.submit(notification)
    except (DispatcherFullError, DispatcherClosedError) as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(e),
        )

    logger.info(f"Accepted {payload.action!r} notification for booking {payload.booking_id}")
    return WebhookAccepted(action=notification.action.value, booking_id=notification.booking_id)
