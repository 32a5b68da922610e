"""Access token sessions for the booking source.

A `TokenSession` is an immutable value: callers hold on to the session they
used for a request and hand it back to `SessionManager.refresh()` when the
token is rejected. Refreshes are single-flight, so a burst of concurrent
callers holding the same stale session triggers exactly one token exchange
and every caller sees a complete session value.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenSession:
    """A short-lived access token and when it was obtained."""

    token: str
    obtained_at: float = field(default_factory=time.monotonic)

    def age(self) -> float:
        """Seconds since the token was obtained."""
        return time.monotonic() - self.obtained_at

    def __repr__(self) -> str:
        return f"TokenSession(token='***', age={self.age():.0f}s)"


class SessionManager:
    """Holds the current token session and refreshes it on demand.

    Example:
        ```python
        sessions = SessionManager(client.authenticate, ttl_seconds=3000)

        session = await sessions.current()
        response = await send(session.token)
        if rejected(response):
            session = await sessions.refresh(session)
        ```
    """

    def __init__(
        self,
        authenticate: Callable[[], Awaitable[TokenSession]],
        ttl_seconds: float | None = None,
    ):
        """Initialize the manager.

        Args:
            authenticate: Coroutine function performing the token exchange
            ttl_seconds: Proactively refresh tokens older than this
        """
        self._authenticate = authenticate
        self.ttl_seconds = ttl_seconds
        self._session: TokenSession | None = None
        self._lock = asyncio.Lock()
        self.refresh_count = 0

    def _is_fresh(self, session: TokenSession | None) -> bool:
        if session is None:
            return False
        if self.ttl_seconds is None:
            return True
        return session.age() < self.ttl_seconds

    async def current(self) -> TokenSession:
        """Return a usable session, authenticating if there is none yet."""
        session = self._session
        if self._is_fresh(session):
            return session  # type: ignore[return-value]
        return await self.refresh(session)

    async def refresh(self, stale: TokenSession | None) -> TokenSession:
        """Replace ``stale`` with a new session.

        If another caller already replaced ``stale`` while we waited for the
        lock, the newer session is returned without another token exchange.
        """
        async with self._lock:
            current = self._session
            if current is not None and current is not stale and self._is_fresh(current):
                return current

            session = await self._authenticate()
            self._session = session
            self.refresh_count += 1
            logger.info(f"Obtained new access token (refresh #{self.refresh_count})")
            return session
