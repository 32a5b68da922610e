"""Bounded background dispatch of notifications.

The webhook must be acknowledged before reconciliation finishes, so
notifications are queued and reconciled by a fixed pool of worker tasks.
The queue is bounded: when it is full `submit()` refuses the notification
and the intake answers 503, letting the booking source redeliver later
instead of piling up unbounded outbound calls.

Notifications for one booking run one after another on the worker that
picked up the first of them. Duplicates of a slow booking wait in that
worker's backlog instead of occupying other workers, so the remaining
workers keep serving other bookings.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter, deque
from typing import TYPE_CHECKING

from booking_sync.models.notification import Notification
from booking_sync.models.outcome import Outcome

if TYPE_CHECKING:
    from booking_sync.config import Settings
    from booking_sync.reconciler import Reconciler

logger = logging.getLogger(__name__)


class DispatcherError(Exception):
    """Base exception for dispatcher errors."""

    pass


class DispatcherFullError(DispatcherError):
    """Raised when the notification queue is at capacity."""

    pass


class DispatcherClosedError(DispatcherError):
    """Raised when submitting to a dispatcher that is not running."""

    pass


class NotificationDispatcher:
    """Worker pool feeding notifications to the reconciler.

    Example:
        ```python
        dispatcher = NotificationDispatcher(reconciler, workers=4, queue_size=100)
        await dispatcher.start()

        dispatcher.submit(notification)  # returns immediately

        await dispatcher.stop()
        ```
    """

    def __init__(
        self,
        reconciler: Reconciler,
        workers: int = 4,
        queue_size: int = 100,
        shutdown_timeout: float = 10.0,
    ):
        """Initialize the dispatcher.

        Args:
            reconciler: Reconciler processing each notification
            workers: Concurrency ceiling for reconciliations
            queue_size: Max notifications waiting for a worker
            shutdown_timeout: Seconds to drain the queue on stop
        """
        if workers < 1:
            raise ValueError("workers must be at least 1")

        self.reconciler = reconciler
        self.worker_count = workers
        self.queue_size = queue_size
        self.shutdown_timeout = shutdown_timeout
        self._queue: asyncio.Queue[Notification] | None = None
        self._workers: list[asyncio.Task[None]] = []
        # Notifications waiting for the worker that is reconciling their booking
        self._backlogs: dict[str, deque[Notification]] = {}
        self._accepting = False
        self.outcomes: Counter[str] = Counter()
        self.last_outcome: Outcome | None = None

    @classmethod
    def from_settings(cls, settings: Settings, reconciler: Reconciler) -> NotificationDispatcher:
        return cls(
            reconciler,
            workers=settings.worker_count,
            queue_size=settings.queue_size,
            shutdown_timeout=settings.shutdown_timeout_seconds,
        )

    @property
    def running(self) -> bool:
        return self._accepting

    @property
    def queue_depth(self) -> int:
        queued = self._queue.qsize() if self._queue else 0
        return queued + sum(len(backlog) for backlog in self._backlogs.values())

    async def start(self) -> None:
        """Spawn the worker tasks."""
        if self._accepting:
            return
        self._queue = asyncio.Queue(maxsize=self.queue_size)
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"reconcile-worker-{i}")
            for i in range(self.worker_count)
        ]
        self._accepting = True
        logger.info(
            f"Dispatcher started with {self.worker_count} workers "
            f"(queue size {self.queue_size})"
        )

    def submit(self, notification: Notification) -> None:
        """Queue a notification without waiting for it to be reconciled.

        Raises:
            DispatcherClosedError: If the dispatcher is not running
            DispatcherFullError: If the queue is at capacity
        """
        if not self._accepting or self._queue is None:
            raise DispatcherClosedError("Dispatcher is not accepting notifications")
        if self.queue_depth >= self.queue_size:
            logger.warning(f"Notification queue full, rejecting {notification}")
            raise DispatcherFullError(f"Notification queue is full ({self.queue_size})")
        self._queue.put_nowait(notification)

    async def join(self) -> None:
        """Wait until every queued notification has been reconciled."""
        if self._queue is not None:
            await self._queue.join()

    async def stop(self) -> None:
        """Stop accepting work, drain the queue, then cancel the workers."""
        if not self._workers:
            return
        self._accepting = False

        try:
            await asyncio.wait_for(self.join(), self.shutdown_timeout)
        except TimeoutError:
            logger.warning(
                f"Shutdown timeout reached with {self.queue_depth} notifications queued"
            )

        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("Dispatcher stopped")

    async def _worker(self, index: int) -> None:
        assert self._queue is not None
        queue = self._queue
        while True:
            notification = await queue.get()
            key = notification.booking_id
            backlog = self._backlogs.get(key)
            if backlog is not None:
                # Another worker owns this booking and runs it next
                backlog.append(notification)
                continue

            backlog = self._backlogs[key] = deque()
            try:
                await self._run(index, notification)
                while backlog:
                    await self._run(index, backlog.popleft())
            finally:
                del self._backlogs[key]
                if backlog:
                    logger.warning(
                        f"Worker {index} stopped with {len(backlog)} notifications "
                        f"for booking {key} unprocessed"
                    )

    async def _run(self, index: int, notification: Notification) -> None:
        assert self._queue is not None
        try:
            outcome = await self.reconciler.process(notification)
            self.outcomes[outcome.label] += 1
            self.last_outcome = outcome
        except Exception as e:
            # process() reports failures as outcomes and should not raise
            logger.exception(f"Worker {index} crashed on {notification}: {e}")
            self.outcomes["failed:internal"] += 1
        finally:
            self._queue.task_done()

    def stats(self) -> dict[str, object]:
        """Snapshot for the health endpoint."""
        return {
            "running": self.running,
            "workers": len(self._workers),
            "queue_depth": self.queue_depth,
            "queue_size": self.queue_size,
            "outcomes": dict(self.outcomes),
        }
