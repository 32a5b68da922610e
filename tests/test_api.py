"""Tests for the webhook intake and health endpoints."""

import time

import pytest
from fastapi.testclient import TestClient

from booking_sync.api import create_app
from booking_sync.config import Settings
from booking_sync.dispatcher import (
    DispatcherClosedError,
    DispatcherFullError,
    NotificationDispatcher,
)
from booking_sync.models.notification import Notification, NotificationAction

from conftest import make_booking


class RecordingDispatcher:
    """Dispatcher double that records submissions without reconciling."""

    def __init__(self, error: Exception | None = None):
        self.submitted: list[Notification] = []
        self.error = error
        self.started = False
        self.stopped = False

    async def start(self) -> None:
        self.started = True

    async def stop(self) -> None:
        self.stopped = True

    def submit(self, notification: Notification) -> None:
        if self.error is not None:
            raise self.error
        self.submitted.append(notification)

    def stats(self) -> dict:
        return {"running": self.started, "queue_depth": len(self.submitted), "outcomes": {}}


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def settings() -> Settings:
    return Settings()


@pytest.fixture
def client(settings, dispatcher):
    with TestClient(create_app(settings, dispatcher=dispatcher)) as test_client:
        yield test_client


class TestWebhook:
    """Tests for POST /webhook."""

    def test_accepts_notification(self, client, dispatcher):
        response = client.post("/webhook", json={"action": "create", "booking_id": "1042"})

        assert response.status_code == 200
        assert response.json() == {
            "status": "accepted",
            "action": "created",
            "booking_id": "1042",
        }
        assert len(dispatcher.submitted) == 1
        assert dispatcher.submitted[0].action == NotificationAction.CREATED

    def test_numeric_booking_id(self, client, dispatcher):
        response = client.post(
            "/webhook",
            json={"action": "cancel", "booking_id": 1042, "provider_id": 2},
        )

        assert response.status_code == 200
        assert dispatcher.submitted[0].booking_id == "1042"
        assert dispatcher.submitted[0].action == NotificationAction.CANCELLED

    def test_unknown_action_is_accepted_for_reporting(self, client, dispatcher):
        response = client.post("/webhook", json={"action": "notify", "booking_id": "1"})

        assert response.status_code == 200
        assert response.json()["action"] == "unknown"
        assert dispatcher.submitted[0].raw_action == "notify"

    def test_invalid_json(self, client, dispatcher):
        response = client.post(
            "/webhook",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert dispatcher.submitted == []

    @pytest.mark.parametrize(
        "body",
        [
            {"action": "create"},
            {"action": "create", "booking_id": ""},
            {"action": "create", "booking_id": "   "},
            {"booking_id": "1042"},
            ["create", "1042"],
        ],
    )
    def test_invalid_payload(self, client, dispatcher, body):
        response = client.post("/webhook", json=body)

        assert response.status_code == 400
        assert dispatcher.submitted == []

    def test_get_not_allowed(self, client):
        assert client.get("/webhook").status_code == 405

    @pytest.mark.parametrize(
        "error",
        [DispatcherFullError("full"), DispatcherClosedError("closed")],
    )
    def test_backpressure_is_503(self, settings, error):
        app = create_app(settings, dispatcher=RecordingDispatcher(error=error))
        with TestClient(app) as client:
            response = client.post("/webhook", json={"action": "create", "booking_id": "1"})

        assert response.status_code == 503


class TestWebhookAuth:
    """Tests for the shared-secret header."""

    @pytest.fixture
    def settings(self) -> Settings:
        return Settings(webhook_secret="s3cret")

    def test_missing_token_rejected(self, client, dispatcher):
        response = client.post("/webhook", json={"action": "create", "booking_id": "1"})

        assert response.status_code == 401
        assert dispatcher.submitted == []

    def test_wrong_token_rejected(self, client):
        response = client.post(
            "/webhook",
            json={"action": "create", "booking_id": "1"},
            headers={"X-Simplybook-Token": "wrong"},
        )
        assert response.status_code == 401

    def test_non_ascii_token_rejected(self, client, dispatcher):
        response = client.post(
            "/webhook",
            json={"action": "create", "booking_id": "1"},
            headers={"X-Simplybook-Token": "s3cr\xe9t".encode("latin-1")},
        )

        assert response.status_code == 401
        assert dispatcher.submitted == []

    def test_valid_token_accepted(self, client, dispatcher):
        response = client.post(
            "/webhook",
            json={"action": "create", "booking_id": "1"},
            headers={"X-Simplybook-Token": "s3cret"},
        )

        assert response.status_code == 200
        assert len(dispatcher.submitted) == 1


class TestCustomPath:
    @pytest.fixture
    def settings(self) -> Settings:
        return Settings(webhook_path="hooks/simplybook")

    def test_route_follows_configured_path(self, client):
        response = client.post(
            "/hooks/simplybook", json={"action": "create", "booking_id": "1"}
        )

        assert response.status_code == 200
        assert client.post("/webhook", json={}).status_code == 404


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["version"] == "0.1.0"
        assert data["running"] is True

    def test_lifespan_starts_and_stops_dispatcher(self, settings, dispatcher):
        with TestClient(create_app(settings, dispatcher=dispatcher)):
            assert dispatcher.started
        assert dispatcher.stopped


def test_webhook_to_calendar(settings, booking_source, calendar, reconciler):
    """A delivered webhook ends up as exactly one calendar event."""
    booking_source.put(make_booking())
    dispatcher = NotificationDispatcher(reconciler, workers=2, queue_size=10)

    with TestClient(create_app(settings, dispatcher=dispatcher)) as client:
        for _ in range(3):
            response = client.post("/webhook", json={"action": "create", "booking_id": "1042"})
            assert response.status_code == 200

        deadline = time.monotonic() + 5
        while sum(dispatcher.outcomes.values()) < 3 and time.monotonic() < deadline:
            time.sleep(0.01)

        health = client.get("/health").json()

    assert len(calendar.events_for("ABC123")) == 1
    assert health["outcomes"] == {"synced:created": 1, "skipped:already_exists": 2}
