"""Base booking source abstraction.

This module defines the interface the reconciler needs from the upstream
booking system and the shared HTTP plumbing concrete sources build on.

## Contract

- `fetch_booking(id)` returns the canonical `Booking` or raises:
  - `NotFoundError` if the upstream has no such booking
  - `UnauthenticatedError` if credentials or token exchange are rejected
  - `UnavailableError` on network errors, timeouts, 429 or 5xx
    (after bounded retries)
  - `MalformedError` if the response cannot be parsed into a `Booking`

All booking timestamps are civil time in the organization timezone.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

import httpx

from booking_sync.errors import UnavailableError, parse_retry_after
from booking_sync.models.booking import Booking
from booking_sync.retry import RetryPolicy


class BookingSource(ABC):
    """Abstract base class for booking sources.

    Attributes:
        name: Human-readable source name, used in errors and logs

    Example:
        ```python
        async with SimplyBookClient.from_settings(settings) as source:
            booking = await source.fetch_booking("1042")
        ```
    """

    name: str

    def __init__(
        self,
        timeout: float = 20.0,
        retry_policy: RetryPolicy | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        """Initialize the source.

        Args:
            timeout: Per-request timeout in seconds
            retry_policy: Backoff policy for transient failures
            http_client: Pre-built client (tests inject a mock transport)
        """
        self.timeout = timeout
        self.retry_policy = retry_policy or RetryPolicy()
        self._client = http_client

    async def __aenter__(self) -> BookingSource:
        self._get_client()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    def _get_default_headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def _post(
        self,
        url: str,
        payload: dict[str, Any],
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """POST a JSON payload, translating transient failures.

        Timeouts, transport errors, 429 and 5xx become `UnavailableError`.
        Every other response is returned for the caller to interpret.
        """
        client = self._get_client()
        request_headers = self._get_default_headers()
        if headers:
            request_headers.update(headers)

        try:
            response = await client.post(url, json=payload, headers=request_headers)
        except httpx.TimeoutException as e:
            raise UnavailableError(
                f"{self.name} request timed out", source=self.name
            ) from e
        except httpx.TransportError as e:
            raise UnavailableError(
                f"{self.name} request failed: {e}", source=self.name
            ) from e

        if response.status_code == 429:
            raise UnavailableError(
                f"Rate limit exceeded for {self.name}",
                source=self.name,
                status_code=429,
                retry_after=parse_retry_after(response.headers.get("Retry-After")),
            )

        if response.status_code >= 500:
            raise UnavailableError(
                f"{self.name} server error: {response.status_code}",
                source=self.name,
                status_code=response.status_code,
            )

        return response

    @abstractmethod
    async def fetch_booking(self, booking_id: str) -> Booking:
        """Fetch the canonical booking record.

        Args:
            booking_id: Upstream booking identifier

        Returns:
            Booking with times in the organization timezone
        """
        pass
