"""Application configuration.

Configuration is loaded from environment variables using pydantic-settings.
Secrets (SimplyBook API key, webhook secret) should be provided via
environment variables, not config files.

## Required Environment Variables

- SIMPLYBOOK_COMPANY_LOGIN: SimplyBook company login
- SIMPLYBOOK_API_KEY: SimplyBook API key
- GOOGLE_CALENDAR_CREDENTIALS_FILE: Path to the service account JSON key
- GOOGLE_CALENDAR_ID: Target calendar ID

## Optional Environment Variables

- PORT / SERVER_PORT: Listen port (PORT wins, default: 8080)
- WEBHOOK_PATH: Path of the webhook route (default: /webhook)
- WEBHOOK_SECRET: Shared secret expected in the X-Simplybook-Token header
- TIMEZONE: Organization timezone for booking times (default: Asia/Taipei)
- CONFIG_PATH: Flat JSON file with any of the settings above; environment
  variables take priority over values in the file

## Example .env file

```
SIMPLYBOOK_COMPANY_LOGIN=mycompany
SIMPLYBOOK_API_KEY=your-api-key
GOOGLE_CALENDAR_CREDENTIALS_FILE=/secrets/service-account.json
GOOGLE_CALENDAR_ID=abc123@group.calendar.google.com
```
"""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import (
    BaseSettings,
    JsonConfigSettingsSource,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

CONFIG_PATH_ENV = "CONFIG_PATH"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Application
    app_name: str = "SimplyBook Calendar Sync"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # Server
    host: str = "0.0.0.0"
    port: int = Field(
        default=8080,
        ge=1,
        le=65535,
        validation_alias=AliasChoices("port", "server_port"),
    )
    webhook_path: str = "/webhook"
    webhook_secret: str | None = Field(
        default=None,
        description="Expected X-Simplybook-Token header value (disabled if unset)",
    )

    # SimplyBook
    simplybook_company_login: str = Field(..., min_length=1)
    simplybook_api_key: str = Field(..., min_length=1)
    simplybook_api_url: str = "https://user-api.simplybook.me"
    simplybook_login_url: str = "https://user-api.simplybook.me/login"
    token_ttl_seconds: int = Field(default=3000, ge=60)

    # Google Calendar
    google_calendar_credentials_file: str = Field(..., min_length=1)
    google_calendar_id: str = Field(..., min_length=1)
    timezone: str = Field(
        default="Asia/Taipei",
        description="IANA zone booking times are expressed in",
    )

    # Remote calls
    request_timeout_seconds: float = Field(default=20.0, ge=1, le=120)
    retry_attempts: int = Field(default=3, ge=1, le=10)
    retry_wait_min_seconds: float = Field(default=1.0, ge=0)
    retry_wait_max_seconds: float = Field(default=10.0, ge=0)

    # Dispatching
    worker_count: int = Field(default=4, ge=1, le=64)
    queue_size: int = Field(default=100, ge=1)
    lock_timeout_seconds: float = Field(default=60.0, gt=0)
    shutdown_timeout_seconds: float = Field(default=10.0, ge=0)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Layer the optional JSON config file beneath environment variables."""
        sources = [init_settings, env_settings, dotenv_settings]
        config_path = os.environ.get(CONFIG_PATH_ENV)
        if config_path:
            sources.append(JsonConfigSettingsSource(settings_cls, json_file=config_path))
        sources.append(file_secret_settings)
        return tuple(sources)

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Ensure the timezone is a known IANA zone."""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v!r}") from e
        return v

    @field_validator("webhook_path")
    @classmethod
    def validate_webhook_path(cls, v: str) -> str:
        path = "/" + v.strip().strip("/")
        if path == "/":
            raise ValueError("webhook_path must not be the root path")
        return path

    @property
    def tzinfo(self) -> ZoneInfo:
        """Organization timezone as a tzinfo object."""
        return ZoneInfo(self.timezone)

    @property
    def webhook_auth_enabled(self) -> bool:
        return bool(self.webhook_secret)


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Settings are loaded once and cached. To reload, clear the cache:
    ```python
    get_settings.cache_clear()
    ```
    """
    return Settings()


def get_settings_uncached() -> Settings:
    """Get fresh settings without caching.

    Useful for testing when environment variables change.
    """
    return Settings()
