"""FastAPI application and routes.

This module provides the HTTP front door of the sync service.

## API Structure

- POST /webhook - SimplyBook booking callbacks (path configurable)
- GET /health - Liveness and dispatcher statistics

## Security

- Set WEBHOOK_SECRET to require a matching X-Simplybook-Token header
- All communication should be over HTTPS in production
"""

from booking_sync.api.app import create_app

__all__ = ["create_app"]
