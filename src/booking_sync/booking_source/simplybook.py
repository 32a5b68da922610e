"""SimplyBook.me booking source.

## API Documentation Summary
Source: https://simplybook.me/en/api/developer-api

## Endpoints
- Login: https://user-api.simplybook.me/login (JSON-RPC 2.0)
- API: https://user-api.simplybook.me (JSON-RPC 2.0)

## Authentication
- `getToken(companyLogin, apiKey)` on the login endpoint returns a token
- Every API call sends `X-Company-Login` and `X-Token` headers
- Tokens are short-lived; a rejected token is refreshed once and the call
  is replayed

## Request Format
```json
{"jsonrpc": "2.0", "method": "getBooking", "params": ["1042"], "id": 1}
```

## Response Format
```json
{"jsonrpc": "2.0", "result": {...}, "id": 1}
{"jsonrpc": "2.0", "error": {"code": -32600, "message": "..."}, "id": 1}
```

## Methods Used
| Method | Params | Result |
|--------|--------|--------|
| getToken | companyLogin, apiKey | token string |
| getBooking | bookingId | booking record (see `models.booking`) |
| getEventList | - | {service_id: service} |
| getUnitList | - | {provider_id: provider} |
"""

from __future__ import annotations

import itertools
import logging
from datetime import tzinfo
from typing import TYPE_CHECKING, Any

import httpx
from pydantic import ValidationError

from booking_sync.booking_source.base import BookingSource
from booking_sync.booking_source.session import SessionManager, TokenSession
from booking_sync.errors import (
    MalformedError,
    NotFoundError,
    RejectedError,
    UnauthenticatedError,
)
from booking_sync.models.booking import Booking, Provider, Service
from booking_sync.retry import RetryPolicy

if TYPE_CHECKING:
    from booking_sync.config import Settings

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://user-api.simplybook.me"
DEFAULT_LOGIN_URL = "https://user-api.simplybook.me/login"

# Fragments of JSON-RPC error messages that mean the token was rejected
TOKEN_ERROR_HINTS = ("access denied", "token", "unauthorized", "not authorized")

NOT_FOUND_HINTS = ("not found", "does not exist", "no such")


class SimplyBookClient(BookingSource):
    """JSON-RPC client for the SimplyBook user API.

    Example:
        ```python
        client = SimplyBookClient("mycompany", api_key, tz=ZoneInfo("Asia/Taipei"))
        async with client:
            booking = await client.fetch_booking("1042")
        ```
    """

    name = "simplybook"

    def __init__(
        self,
        company_login: str,
        api_key: str,
        tz: tzinfo,
        api_url: str = DEFAULT_API_URL,
        login_url: str = DEFAULT_LOGIN_URL,
        token_ttl_seconds: float | None = None,
        timeout: float = 20.0,
        retry_policy: RetryPolicy | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        """Initialize the client.

        Args:
            company_login: SimplyBook company login
            api_key: SimplyBook API key
            tz: Organization timezone booking times are expressed in
            api_url: JSON-RPC API endpoint
            login_url: JSON-RPC login endpoint
            token_ttl_seconds: Refresh tokens proactively after this age
            timeout: Request timeout in seconds
            retry_policy: Backoff policy for transient failures
            http_client: Pre-built HTTP client
        """
        super().__init__(timeout=timeout, retry_policy=retry_policy, http_client=http_client)
        self.company_login = company_login
        self.api_key = api_key
        self.tz = tz
        self.api_url = api_url
        self.login_url = login_url
        self.sessions = SessionManager(self.authenticate, ttl_seconds=token_ttl_seconds)
        self._request_ids = itertools.count(1)

    @classmethod
    def from_settings(cls, settings: Settings) -> SimplyBookClient:
        return cls(
            company_login=settings.simplybook_company_login,
            api_key=settings.simplybook_api_key,
            tz=settings.tzinfo,
            api_url=settings.simplybook_api_url,
            login_url=settings.simplybook_login_url,
            token_ttl_seconds=settings.token_ttl_seconds,
            timeout=settings.request_timeout_seconds,
            retry_policy=RetryPolicy.from_settings(settings),
        )

    def _rpc_body(self, method: str, params: list[Any]) -> dict[str, Any]:
        return {
            "jsonrpc": "2.0",
            "method": method,
            "params": params,
            "id": next(self._request_ids),
        }

    @staticmethod
    def _decode(response: httpx.Response) -> dict[str, Any] | None:
        """Decode a JSON-RPC envelope, or None if the body is not one."""
        try:
            body = response.json()
        except ValueError:
            return None
        return body if isinstance(body, dict) else None

    @staticmethod
    def _rpc_error(body: dict[str, Any] | None) -> dict[str, Any] | None:
        if not body:
            return None
        error = body.get("error")
        if isinstance(error, dict) and (error.get("message") or error.get("code")):
            return error
        return None

    def _is_unauthorized(self, response: httpx.Response) -> bool:
        if response.status_code in (401, 403):
            return True
        error = self._rpc_error(self._decode(response))
        if error is None:
            return False
        if error.get("code") in (401, 403):
            return True
        message = str(error.get("message", "")).lower()
        return any(hint in message for hint in TOKEN_ERROR_HINTS)

    async def authenticate(self) -> TokenSession:
        """Exchange the API key for a short-lived access token.

        Returns:
            New TokenSession

        Raises:
            UnauthenticatedError: If the exchange is rejected
            UnavailableError: If the login endpoint is unreachable
        """
        async for attempt in self.retry_policy.retrying():
            with attempt:
                response = await self._post(
                    self.login_url,
                    self._rpc_body("getToken", [self.company_login, self.api_key]),
                )

        if response.status_code >= 400:
            raise UnauthenticatedError(
                f"Token exchange failed: {response.status_code}",
                source=self.name,
                status_code=response.status_code,
            )

        body = self._decode(response)
        error = self._rpc_error(body)
        if error is not None:
            logger.error(f"SimplyBook token exchange rejected: {error.get('message')}")
            raise UnauthenticatedError(
                f"Token exchange rejected: {error.get('message')}", source=self.name
            )

        token = body.get("result") if body else None
        if not isinstance(token, str) or not token:
            raise UnauthenticatedError(
                "Token exchange returned no token", source=self.name
            )

        return TokenSession(token=token)

    async def _send(
        self, method: str, params: list[Any], session: TokenSession
    ) -> httpx.Response:
        return await self._post(
            self.api_url,
            self._rpc_body(method, params),
            headers={
                "X-Company-Login": self.company_login,
                "X-Token": session.token,
            },
        )

    async def _call_once(self, method: str, params: list[Any]) -> Any:
        session = await self.sessions.current()
        response = await self._send(method, params, session)

        if self._is_unauthorized(response):
            logger.info(f"SimplyBook token rejected on {method}, refreshing")
            session = await self.sessions.refresh(session)
            response = await self._send(method, params, session)
            if self._is_unauthorized(response):
                raise UnauthenticatedError(
                    f"SimplyBook rejected a fresh token on {method}",
                    source=self.name,
                    status_code=response.status_code,
                )

        return self._unwrap(method, response)

    def _unwrap(self, method: str, response: httpx.Response) -> Any:
        """Extract the JSON-RPC result or raise the matching error."""
        if response.status_code == 404:
            raise NotFoundError(
                f"SimplyBook {method}: not found", source=self.name, status_code=404
            )
        if response.status_code >= 400:
            raise RejectedError(
                f"SimplyBook {method} failed: {response.status_code}",
                source=self.name,
                status_code=response.status_code,
            )

        body = self._decode(response)
        if body is None:
            raise MalformedError(
                f"SimplyBook {method} returned a non JSON-RPC body", source=self.name
            )

        error = self._rpc_error(body)
        if error is not None:
            message = str(error.get("message", ""))
            if any(hint in message.lower() for hint in NOT_FOUND_HINTS):
                raise NotFoundError(f"SimplyBook {method}: {message}", source=self.name)
            raise RejectedError(
                f"SimplyBook {method} error {error.get('code')}: {message}",
                source=self.name,
            )

        return body.get("result")

    async def call(self, method: str, params: list[Any] | None = None) -> Any:
        """Run one JSON-RPC call with retries and transparent re-authentication.

        Args:
            method: JSON-RPC method name
            params: Positional parameters

        Returns:
            The `result` member of the response
        """
        result = None
        async for attempt in self.retry_policy.retrying():
            with attempt:
                result = await self._call_once(method, params or [])
        return result

    async def fetch_booking(self, booking_id: str) -> Booking:
        """Fetch a booking by ID.

        Args:
            booking_id: SimplyBook booking ID

        Returns:
            Booking with times localized to the organization timezone
        """
        result = await self.call("getBooking", [booking_id])
        if not result:
            raise NotFoundError(f"Booking {booking_id} not found", source=self.name)

        try:
            return Booking.from_api(result, self.tz)
        except (ValidationError, ValueError) as e:
            raise MalformedError(
                f"Cannot parse booking {booking_id}: {e}", source=self.name
            ) from e

    async def list_services(self) -> dict[str, Service]:
        """List bookable services keyed by service ID."""
        result = await self.call("getEventList")
        return self._parse_catalog(result, Service, "services")

    async def list_providers(self) -> dict[str, Provider]:
        """List service providers keyed by provider ID."""
        result = await self.call("getUnitList")
        return self._parse_catalog(result, Provider, "providers")

    def _parse_catalog(self, result: Any, model: type, label: str) -> dict[str, Any]:
        if not result:
            return {}
        if not isinstance(result, dict):
            raise MalformedError(
                f"Expected {label} map, got {type(result).__name__}", source=self.name
            )
        try:
            return {
                str(key): model.model_validate({"id": key, **value})
                for key, value in result.items()
            }
        except (ValidationError, TypeError) as e:
            raise MalformedError(f"Cannot parse {label}: {e}", source=self.name) from e
