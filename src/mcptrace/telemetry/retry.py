"""Retry policy for telemetry log writes.

Transient filesystem failures (missing directory, lock contention, permission
races, descriptor exhaustion) are retried on a fixed backoff table. Anything
else, or running out of attempts, fails the single operation.
"""

from __future__ import annotations

import asyncio
import errno
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import TypeVar

from mcptrace.exceptions import TelemetryWriteError
from mcptrace.models.config import DEFAULT_BACKOFF_DELAYS

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_ERRNOS = frozenset(
    {
        errno.ENOENT,  # Directory removed underneath us
        errno.EBUSY,  # Lock contention
        errno.EACCES,  # Permission race
        errno.EPERM,
        errno.EMFILE,  # Descriptor exhaustion
        errno.ENFILE,
        errno.EAGAIN,  # Resource temporarily unavailable
        errno.EWOULDBLOCK,
        errno.EDEADLK,
    }
)

DEFAULT_MAX_ATTEMPTS = 5


def is_retryable_error(error: BaseException) -> bool:
    """Return True if a write failure is transient and worth retrying."""
    return isinstance(error, OSError) and error.errno in RETRYABLE_ERRNOS


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded, deterministic retry with a fixed backoff table."""

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    delays: Sequence[float] = field(default_factory=lambda: tuple(DEFAULT_BACKOFF_DELAYS))
    is_retryable: Callable[[BaseException], bool] = is_retryable_error
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            msg = "max_attempts must be at least 1"
            raise ValueError(msg)
        if not self.delays:
            msg = "delays must not be empty"
            raise ValueError(msg)

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the given failed attempt (1-based).

        The last table entry is reused once the table is exhausted.
        """
        index = min(max(attempt, 1), len(self.delays)) - 1
        return float(self.delays[index])

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        description: str = "operation",
        on_retry: Callable[[int, BaseException], None] | None = None,
    ) -> T:
        """Run an operation, retrying transient failures.

        Args:
            operation: Zero-argument coroutine factory, called once per attempt.
            description: Label used in log and error messages.
            on_retry: Optional callback invoked before each retry.

        Returns:
            The operation's result.

        Raises:
            TelemetryWriteError: On a non-retryable failure or after the last attempt.
        """
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await operation()
            except Exception as e:
                if not self.is_retryable(e):
                    msg = f"{description} failed: {e}"
                    raise TelemetryWriteError(msg, attempts=attempt) from e
                if attempt >= self.max_attempts:
                    msg = f"{description} failed after {attempt} attempts: {e}"
                    raise TelemetryWriteError(msg, attempts=attempt) from e

                delay = self.delay_for(attempt)
                logger.debug(
                    "Retrying %s in %.2fs (attempt %d/%d): %s",
                    description,
                    delay,
                    attempt,
                    self.max_attempts,
                    e,
                )
                if on_retry is not None:
                    on_retry(attempt, e)
                await self.sleep(delay)

        # Unreachable: the loop either returns or raises
        msg = f"{description} failed"
        raise TelemetryWriteError(msg, attempts=self.max_attempts)
