"""Tests for booking, notification, event and outcome models."""

from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from booking_sync.errors import FailureKind
from booking_sync.models.booking import Booking, Service, parse_civil_time
from booking_sync.models.event import (
    EventProjection,
    code_line,
    description_carries_code,
)
from booking_sync.models.notification import Notification, NotificationAction
from booking_sync.models.outcome import (
    Outcome,
    OutcomeReason,
    OutcomeStatus,
    ReconcileAction,
)

from conftest import TAIPEI, make_booking


class TestParseCivilTime:
    """Timestamps are civil time in the organization timezone."""

    def test_naive_time_is_localized_not_utc(self):
        parsed = parse_civil_time("2025-04-01 10:00:00", TAIPEI)
        assert parsed.hour == 10
        assert parsed.utcoffset() == timedelta(hours=8)
        assert parsed.isoformat() == "2025-04-01T10:00:00+08:00"

    def test_offset_time_is_converted(self):
        parsed = parse_civil_time("2025-04-01T02:00:00Z", TAIPEI)
        assert parsed == datetime(2025, 4, 1, 10, 0, tzinfo=TAIPEI)
        assert parsed.hour == 10

    def test_datetime_passthrough(self):
        value = datetime(2025, 4, 1, 10, 0)
        assert parse_civil_time(value, TAIPEI).tzinfo is TAIPEI

    @pytest.mark.parametrize("value", [None, "", "not a date", 12345])
    def test_invalid_values(self, value):
        with pytest.raises(ValueError):
            parse_civil_time(value, TAIPEI)


class TestBooking:
    """Tests for the Booking model."""

    def test_from_api(self, sample_booking_record):
        booking = Booking.from_api(sample_booking_record, TAIPEI)

        assert booking.id == "1042"
        assert booking.code == "ABC123"
        assert booking.service_name == "Haircut"
        assert booking.service_id == "3"
        assert booking.provider_name == "Alice"
        assert booking.provider_id == "2"
        assert booking.notes is None
        assert booking.confirmed is True
        assert booking.start_time == datetime(2025, 4, 1, 10, 0, tzinfo=TAIPEI)

    def test_from_api_coerces_numeric_ids(self, sample_booking_record):
        sample_booking_record["id"] = 1042
        sample_booking_record["event_id"] = 3
        booking = Booking.from_api(sample_booking_record, TAIPEI)
        assert booking.id == "1042"
        assert booking.service_id == "3"

    def test_from_api_in_other_timezone(self, sample_booking_record):
        tz = ZoneInfo("Europe/Berlin")
        booking = Booking.from_api(sample_booking_record, tz)
        assert booking.start_time.hour == 10
        assert booking.start_time.utcoffset() == timedelta(hours=2)

    def test_empty_code_rejected(self, sample_booking_record):
        sample_booking_record["code"] = "  "
        with pytest.raises(ValueError, match="code"):
            Booking.from_api(sample_booking_record, TAIPEI)

    def test_missing_code_rejected(self, sample_booking_record):
        del sample_booking_record["code"]
        with pytest.raises(ValueError):
            Booking.from_api(sample_booking_record, TAIPEI)

    def test_start_must_precede_end(self, sample_booking_record):
        sample_booking_record["end_datetime"] = "2025-04-01 09:00:00"
        with pytest.raises(ValueError, match="before end"):
            Booking.from_api(sample_booking_record, TAIPEI)

    def test_naive_times_rejected_on_direct_construction(self):
        with pytest.raises(ValueError, match="timezone-aware"):
            make_booking(
                start=datetime(2025, 4, 1, 10, 0),
                end=datetime(2025, 4, 1, 10, 30),
            )

    def test_non_object_rejected(self):
        with pytest.raises(ValueError):
            Booking.from_api(["not", "a", "booking"], TAIPEI)

    @pytest.mark.parametrize("status", ["cancelled", "Canceled"])
    def test_is_cancelled(self, status):
        assert make_booking(status=status).is_cancelled is True

    def test_not_cancelled_by_default(self):
        assert make_booking().is_cancelled is False


class TestService:
    def test_unit_map_as_dict(self):
        service = Service.model_validate({"id": 3, "name": "Haircut", "unit_map": {"2": 30}})
        assert service.id == "3"
        assert service.unit_map == ["2"]


class TestNotification:
    """Tests for notification parsing."""

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("create", NotificationAction.CREATED),
            ("CREATE", NotificationAction.CREATED),
            ("new", NotificationAction.CREATED),
            ("update", NotificationAction.CHANGED),
            ("changed", NotificationAction.CHANGED),
            ("cancel", NotificationAction.CANCELLED),
            ("canceled", NotificationAction.CANCELLED),
            ("delete", NotificationAction.CANCELLED),
            (" Cancel ", NotificationAction.CANCELLED),
            ("notify", NotificationAction.UNKNOWN),
            ("", NotificationAction.UNKNOWN),
            (None, NotificationAction.UNKNOWN),
        ],
    )
    def test_action_parse(self, raw, expected):
        assert NotificationAction.parse(raw) == expected

    def test_from_raw_keeps_raw_action(self):
        notification = Notification.from_raw("Reschedule", 1042)
        assert notification.action == NotificationAction.UNKNOWN
        assert notification.raw_action == "Reschedule"
        assert notification.booking_id == "1042"

    def test_received_at_defaults_to_now_utc(self):
        notification = Notification.from_raw("create", "1")
        assert notification.received_at.tzinfo == timezone.utc

    @pytest.mark.parametrize("booking_id", ["", "   "])
    def test_empty_booking_id_rejected(self, booking_id):
        with pytest.raises(ValueError):
            Notification.from_raw("create", booking_id)


class TestEventProjection:
    """Tests for building calendar events from bookings."""

    def test_from_booking(self, sample_booking):
        projection = EventProjection.from_booking(sample_booking, "Asia/Taipei")

        assert projection.summary == "Haircut - Jane Doe"
        assert projection.attendees == ["jane@example.com"]
        lines = projection.description.splitlines()
        assert lines[0] == "Booking code: ABC123"
        assert "Phone: +886912345678" in lines
        assert "Provider: Alice" in lines
        assert lines[-1] == "Booking ID: 1042"

    def test_optional_contact_fields_omitted(self):
        booking = make_booking(client_email=None, client_phone=None, client_name=None)
        projection = EventProjection.from_booking(booking, "Asia/Taipei")

        assert projection.attendees == []
        assert projection.summary == "Haircut - Unknown client"
        assert "Email:" not in projection.description
        assert "Phone:" not in projection.description

    def test_api_body_has_explicit_offset(self, sample_booking):
        body = EventProjection.from_booking(sample_booking, "Asia/Taipei").to_api_body()

        assert body["start"] == {
            "dateTime": "2025-04-01T10:00:00+08:00",
            "timeZone": "Asia/Taipei",
        }
        assert body["end"]["dateTime"] == "2025-04-01T10:30:00+08:00"
        assert body["attendees"] == [{"email": "jane@example.com"}]
        assert body["extendedProperties"]["private"]["bookingCode"] == "ABC123"

    def test_api_body_rejects_naive_times(self, sample_booking):
        projection = EventProjection.from_booking(sample_booking, "Asia/Taipei")
        projection.start = datetime(2025, 4, 1, 10, 0)
        with pytest.raises(ValueError):
            projection.to_api_body()


class TestDescriptionCarriesCode:
    def test_exact_line_matches(self):
        description = f"Client: Jane\n{code_line('ABC123')}\nBooking ID: 1"
        assert description_carries_code(description, "ABC123")

    def test_longer_code_does_not_match(self):
        assert not description_carries_code(code_line("ABC1234"), "ABC123")

    def test_code_elsewhere_does_not_match(self):
        assert not description_carries_code("Notes: see ABC123", "ABC123")

    @pytest.mark.parametrize("description", [None, ""])
    def test_empty_description(self, description):
        assert not description_carries_code(description, "ABC123")


class TestOutcome:
    def test_labels(self):
        synced = Outcome.synced("1", ReconcileAction.CREATE, OutcomeReason.CREATED, "e1")
        failed = Outcome.failed("1", FailureKind.UNAVAILABLE, "down")

        assert synced.label == "synced:created"
        assert synced.success is True
        assert failed.label == "failed:unavailable"
        assert failed.status == OutcomeStatus.FAILED
        assert failed.success is False
