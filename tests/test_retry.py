"""Tests for the retry policy."""

import pytest

from booking_sync.errors import (
    MalformedError,
    NotFoundError,
    RejectedError,
    UnauthenticatedError,
    UnavailableError,
)
from booking_sync.retry import RetryPolicy, is_transient


@pytest.mark.parametrize(
    "error, expected",
    [
        (UnavailableError("down"), True),
        (NotFoundError("gone"), False),
        (UnauthenticatedError("denied"), False),
        (MalformedError("garbage"), False),
        (RejectedError("bad request"), False),
        (RuntimeError("bug"), False),
    ],
)
def test_is_transient(error, expected):
    assert is_transient(error) is expected


class TestRetrying:
    """Only transient failures are attempted again."""

    async def run(self, policy: RetryPolicy, errors: list[Exception]) -> int:
        attempts = 0
        async for attempt in policy.retrying():
            with attempt:
                attempts += 1
                if errors:
                    raise errors.pop(0)
        return attempts

    async def test_transient_failure_is_retried(self, no_retry_wait):
        attempts = await self.run(no_retry_wait, [UnavailableError("down")])
        assert attempts == 2

    async def test_permanent_failure_is_not_retried(self, no_retry_wait):
        with pytest.raises(RejectedError):
            await self.run(no_retry_wait, [RejectedError("bad"), RejectedError("bad")])

    async def test_last_transient_failure_is_reraised(self, no_retry_wait):
        errors = [UnavailableError("down", retry_after=0) for _ in range(3)]
        with pytest.raises(UnavailableError):
            await self.run(no_retry_wait, errors)
        assert errors == []
