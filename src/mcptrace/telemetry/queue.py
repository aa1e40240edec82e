"""Ordered write queue for telemetry log appends.

Every operation is chained onto the completion of the one before it, so
appends reach disk in call order without a lock. Each operation runs through
the retry policy; a failure is reported to that operation's awaiter and never
blocks the operations queued behind it.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from mcptrace.telemetry.retry import RetryPolicy

logger = logging.getLogger(__name__)

DEFAULT_FLUSH_THRESHOLD = 100

Operation = Callable[[], Awaitable[None]]


class WriteQueue:
    """Serializes asynchronous write operations in strict FIFO order."""

    def __init__(
        self,
        retry_policy: RetryPolicy | None = None,
        *,
        flush_threshold: int = DEFAULT_FLUSH_THRESHOLD,
    ) -> None:
        """Initialize the write queue.

        Args:
            retry_policy: Policy applied to each operation.
            flush_threshold: Outstanding operations that force a full flush
                before another operation is accepted.
        """
        if flush_threshold < 1:
            msg = "flush_threshold must be at least 1"
            raise ValueError(msg)
        self._policy = retry_policy or RetryPolicy()
        self._flush_threshold = flush_threshold
        self._tail: asyncio.Task[None] | None = None
        self._pending = 0
        self.completed = 0
        self.failed = 0
        self.retried = 0

    @property
    def pending(self) -> int:
        """Operations queued or in flight."""
        return self._pending

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._policy

    async def enqueue(
        self,
        operation: Operation,
        *,
        description: str = "telemetry write",
    ) -> asyncio.Task[None]:
        """Queue an operation behind all previously queued ones.

        Awaits a full flush first when the outstanding count has reached the
        flush threshold.

        Args:
            operation: Zero-argument coroutine factory performing one write.
            description: Label for logs and errors.

        Returns:
            Task that completes when this operation has finished; it raises
            TelemetryWriteError if the operation ultimately failed.
        """
        if self._pending >= self._flush_threshold:
            logger.debug("Write queue at %d pending operations, flushing", self._pending)
            await self.flush()

        previous = self._tail
        task = asyncio.ensure_future(self._run_after(previous, operation, description))
        self._tail = task
        self._pending += 1
        task.add_done_callback(self._on_done)
        return task

    async def flush(self) -> None:
        """Wait until every queued operation has finished (successfully or not)."""
        while self._tail is not None and not self._tail.done():
            await asyncio.wait({self._tail})

    async def _run_after(
        self,
        previous: asyncio.Task[None] | None,
        operation: Operation,
        description: str,
    ) -> None:
        if previous is not None and not previous.done():
            # asyncio.wait never raises the awaited task's exception
            await asyncio.wait({previous})
        # Counters settle before the task completes so a flush observes them.
        try:
            await self._policy.run(
                operation, description=description, on_retry=self._count_retry
            )
        except Exception as e:
            self._pending -= 1
            self.failed += 1
            logger.warning("Telemetry write failed: %s", e)
            raise
        else:
            self._pending -= 1
            self.completed += 1

    def _count_retry(self, attempt: int, error: BaseException) -> None:
        self.retried += 1

    def _on_done(self, task: asyncio.Task[None]) -> None:
        if task.cancelled():
            self._pending -= 1
            self.failed += 1
            return
        # The failure was logged above; the awaiter still sees it via the task.
        task.exception()
