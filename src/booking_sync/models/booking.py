"""Booking models for the SimplyBook booking source.

## SimplyBook Record (getBooking)

```json
{
  "id": "1042",
  "code": "ABC123",
  "client_name": "Jane Doe",
  "client_email": "jane@example.com",
  "client_phone": "+886912345678",
  "start_datetime": "2025-04-01 10:00:00",
  "end_datetime": "2025-04-01 10:30:00",
  "event_id": "3",
  "event_name": "Haircut",
  "unit_id": "2",
  "unit_name": "Alice",
  "note": "",
  "status": "confirmed",
  "is_confirm": "1"
}
```

Timestamps are civil time in the company's timezone with no offset. They
must be localized to the organization timezone, never read as UTC.
"""

from __future__ import annotations

from datetime import datetime, tzinfo
from typing import Any

from pydantic import AliasChoices, BaseModel, Field, field_validator, model_validator


def parse_civil_time(value: Any, tz: tzinfo) -> datetime:
    """Parse a booking timestamp as civil time in ``tz``.

    Naive values are localized to ``tz``. Values that already carry an
    offset are converted into ``tz`` so the civil time stays correct.

    Examples:
        '2025-04-01 10:00:00' -> 2025-04-01 10:00:00+08:00 (Asia/Taipei)
        '2025-04-01T02:00:00Z' -> 2025-04-01 10:00:00+08:00 (Asia/Taipei)
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    else:
        raise ValueError(f"Invalid booking timestamp: {value!r}")

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=tz)
    return parsed.astimezone(tz)


class Booking(BaseModel):
    """Canonical booking record fetched from the booking source."""

    id: str = Field(..., min_length=1, description="Booking identifier")
    code: str = Field(..., description="Correlation token embedded in events")

    client_name: str | None = None
    client_email: str | None = None
    client_phone: str | None = None

    start_time: datetime
    end_time: datetime

    service_id: str | None = Field(
        default=None, validation_alias=AliasChoices("service_id", "event_id")
    )
    service_name: str | None = Field(
        default=None, validation_alias=AliasChoices("service_name", "event_name")
    )
    provider_id: str | None = Field(
        default=None, validation_alias=AliasChoices("provider_id", "unit_id")
    )
    provider_name: str | None = Field(
        default=None, validation_alias=AliasChoices("provider_name", "unit_name")
    )
    notes: str | None = Field(default=None, validation_alias=AliasChoices("notes", "note"))
    status: str | None = None
    confirmed: bool | None = Field(
        default=None, validation_alias=AliasChoices("confirmed", "is_confirm")
    )

    model_config = {"populate_by_name": True}

    @field_validator(
        "id", "code", "service_id", "provider_id", mode="before"
    )
    @classmethod
    def coerce_identifier(cls, v: Any) -> Any:
        """SimplyBook returns identifiers as numbers or strings."""
        if isinstance(v, int):
            return str(v)
        if isinstance(v, str):
            return v.strip()
        return v

    @field_validator(
        "client_name", "client_email", "client_phone", "notes", mode="before"
    )
    @classmethod
    def blank_to_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @model_validator(mode="after")
    def validate_booking(self) -> Booking:
        if not self.code:
            raise ValueError("Booking code must not be empty")
        if self.start_time.tzinfo is None or self.end_time.tzinfo is None:
            raise ValueError("Booking times must be timezone-aware")
        if self.start_time >= self.end_time:
            raise ValueError(
                f"Booking start {self.start_time} must be before end {self.end_time}"
            )
        return self

    @classmethod
    def from_api(cls, data: dict[str, Any], tz: tzinfo) -> Booking:
        """Create from a SimplyBook getBooking result.

        Raises:
            ValueError: If the record is incomplete or inconsistent
        """
        if not isinstance(data, dict):
            raise ValueError(f"Expected booking object, got {type(data).__name__}")

        values = dict(data)
        values["start_time"] = parse_civil_time(
            data.get("start_datetime", data.get("start_time")), tz
        )
        values["end_time"] = parse_civil_time(
            data.get("end_datetime", data.get("end_time")), tz
        )
        return cls.model_validate(values)

    @property
    def is_cancelled(self) -> bool:
        return (self.status or "").lower() in ("cancelled", "canceled")


class Service(BaseModel):
    """A bookable service (SimplyBook "event")."""

    id: str
    name: str
    duration: int | None = None
    unit_map: list[str] = Field(default_factory=list)

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> Any:
        return str(v) if isinstance(v, int) else v

    @field_validator("unit_map", mode="before")
    @classmethod
    def coerce_unit_map(cls, v: Any) -> Any:
        # SimplyBook sends either a list of ids or a {unit_id: duration} map
        if isinstance(v, dict):
            return [str(k) for k in v]
        if v is None:
            return []
        return [str(item) for item in v]


class Provider(BaseModel):
    """A service provider (SimplyBook "unit")."""

    id: str
    name: str

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> Any:
        return str(v) if isinstance(v, int) else v
