"""Command-line interface for the booking calendar sync service."""

import argparse
import asyncio
import logging
import os
import sys

from booking_sync.config import CONFIG_PATH_ENV, Settings, get_settings

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def serve(settings: Settings, host: str | None, port: int | None) -> int:
    import uvicorn

    from booking_sync.api import create_app

    uvicorn.run(
        create_app(settings),
        host=host or settings.host,
        port=port or settings.port,
        log_level=settings.log_level.lower(),
    )
    return 0


async def _reconcile(settings: Settings, action: str, booking_id: str) -> int:
    from booking_sync.booking_source.simplybook import SimplyBookClient
    from booking_sync.calendar.google_calendar import GoogleCalendarClient
    from booking_sync.models.notification import Notification
    from booking_sync.reconciler import Reconciler

    async with SimplyBookClient.from_settings(settings) as source:
        calendar = GoogleCalendarClient.from_settings(settings)
        reconciler = Reconciler.from_settings(settings, source, calendar)
        outcome = await reconciler.process(Notification.from_raw(action, booking_id))

    print(f"{outcome.booking_id}: {outcome.label}")
    if outcome.event_id:
        print(f"  event: {outcome.event_id}")
    if outcome.message:
        print(f"  {outcome.message}")
    return 0 if outcome.success else 1


async def _catalog(settings: Settings) -> int:
    from booking_sync.booking_source.simplybook import SimplyBookClient

    async with SimplyBookClient.from_settings(settings) as source:
        services = await source.list_services()
        providers = await source.list_providers()

    print("Services:")
    for service in services.values():
        duration = f" ({service.duration} min)" if service.duration else ""
        print(f"  {service.id}: {service.name}{duration}")
    print("Providers:")
    for provider in providers.values():
        print(f"  {provider.id}: {provider.name}")
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="SimplyBook Calendar Sync - Mirror bookings into Google Calendar"
    )
    parser.add_argument(
        "--version",
        action="version",
        version="%(prog)s 0.1.0",
    )
    parser.add_argument(
        "--config",
        help="Path to a JSON config file (environment variables take priority)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Serve command
    serve_parser = subparsers.add_parser("serve", help="Run the webhook server")
    serve_parser.add_argument("--host", help="Bind address")
    serve_parser.add_argument("--port", type=int, help="Listen port")

    # Reconcile command
    reconcile_parser = subparsers.add_parser(
        "reconcile", help="Reconcile one booking in the foreground"
    )
    reconcile_parser.add_argument(
        "action",
        choices=["create", "update", "cancel"],
        help="Action to reconcile",
    )
    reconcile_parser.add_argument("booking_id", help="SimplyBook booking ID")

    # Catalog command
    subparsers.add_parser("catalog", help="List SimplyBook services and providers")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    if args.config:
        os.environ[CONFIG_PATH_ENV] = args.config
        get_settings.cache_clear()

    settings = get_settings()
    configure_logging(settings.log_level)

    if args.command == "serve":
        return serve(settings, args.host, args.port)
    if args.command == "reconcile":
        return asyncio.run(_reconcile(settings, args.action, args.booking_id))
    if args.command == "catalog":
        return asyncio.run(_catalog(settings))

    parser.print_help()
    return 2


if __name__ == "__main__":
    sys.exit(main())
