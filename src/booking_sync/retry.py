"""Bounded retry with exponential backoff for transient failures.

Only transient failures (``UnavailableError``) are retried. After the final
attempt the last exception is re-raised unchanged so callers see the
original failure kind.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from booking_sync.errors import SyncError

if TYPE_CHECKING:
    from booking_sync.config import Settings

logger = logging.getLogger(__name__)


def is_transient(error: BaseException) -> bool:
    """Whether a failure is worth another attempt."""
    return isinstance(error, SyncError) and error.transient


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how patiently transient failures are retried."""

    attempts: int = 3
    wait_min: float = 1.0
    wait_max: float = 10.0

    @classmethod
    def from_settings(cls, settings: Settings) -> RetryPolicy:
        return cls(
            attempts=settings.retry_attempts,
            wait_min=settings.retry_wait_min_seconds,
            wait_max=settings.retry_wait_max_seconds,
        )

    def _wait(self, retry_state: RetryCallState) -> float:
        """Honor Retry-After when the server sent one, else back off exponentially."""
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        retry_after = getattr(exc, "retry_after", None)
        if retry_after is not None:
            return min(retry_after, self.wait_max)
        backoff = wait_exponential(multiplier=1, min=self.wait_min, max=self.wait_max)
        return backoff(retry_state)

    def retrying(self) -> AsyncRetrying:
        """Build a tenacity controller for one logical remote call.

        Example:
            ```python
            async for attempt in policy.retrying():
                with attempt:
                    response = await client.post(...)
            ```
        """
        return AsyncRetrying(
            stop=stop_after_attempt(self.attempts),
            wait=self._wait,
            retry=retry_if_exception(is_transient),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
