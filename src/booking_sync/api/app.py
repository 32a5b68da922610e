"""FastAPI application factory.

Creates the webhook intake application and wires the reconciliation
pipeline into its lifespan.

## Usage

```python
from booking_sync.api import create_app

app = create_app()

# Run with uvicorn
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8080)
```

## Configuration

The app is configured via environment variables. See `booking_sync.config`
for available settings.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request

from booking_sync.booking_source.simplybook import SimplyBookClient
from booking_sync.calendar.google_calendar import GoogleCalendarClient
from booking_sync.config import Settings, get_settings
from booking_sync.dispatcher import NotificationDispatcher
from booking_sync.reconciler import Reconciler

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    dispatcher: NotificationDispatcher | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Settings to use (defaults to the cached environment settings)
        dispatcher: Pre-built dispatcher; when omitted the SimplyBook and
            Google Calendar clients are built from settings at startup

    Returns:
        Configured FastAPI application
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan manager.

        Handles startup and shutdown tasks:
        - Build the booking source, calendar client and reconciler
        - Start the dispatcher workers
        - Drain queued notifications and close clients on shutdown
        """
        logger.info(f"Starting {settings.app_name} v{settings.app_version}")

        booking_source = None
        active = dispatcher
        if active is None:
            booking_source = SimplyBookClient.from_settings(settings)
            calendar = GoogleCalendarClient.from_settings(settings)
            reconciler = Reconciler.from_settings(settings, booking_source, calendar)
            active = NotificationDispatcher.from_settings(settings, reconciler)

        app.state.dispatcher = active
        await active.start()

        yield

        # Shutdown
        logger.info("Shutting down")
        await active.stop()
        if booking_source is not None:
            await booking_source.aclose()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Mirrors SimplyBook bookings into Google Calendar",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
        lifespan=lifespan,
    )
    app.state.settings = settings

    # Include routers
    from booking_sync.api.routes import webhook

    app.include_router(webhook.router, prefix=settings.webhook_path, tags=["Webhook"])

    # Health check endpoint
    @app.get("/health", tags=["Health"])
    async def health_check(request: Request):
        """Health check endpoint."""
        active: NotificationDispatcher | None = getattr(
            request.app.state, "dispatcher", None
        )
        stats = active.stats() if active else {"running": False}
        return {"status": "healthy", "version": settings.app_version, **stats}

    return app
