"""Completion watcher.

Polls a session's log file for the completion sentinel. Intended for the
process driving an agent, which may not be the process writing the log.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

from mcptrace.models.config import TelemetryConfig
from mcptrace.telemetry.store import EventLogStore

logger = logging.getLogger(__name__)


class CompletionWatcher:
    """Waits for sessions to be marked complete on disk."""

    def __init__(
        self,
        store: EventLogStore,
        *,
        poll_interval: float = 0.5,
        progress_interval: float = 10.0,
        timeout: float = 180.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the completion watcher.

        Args:
            store: Event log store to read from.
            poll_interval: Seconds between sentinel checks.
            progress_interval: Seconds between progress/inactivity log lines.
            timeout: Default overall wait in seconds.
            clock: Monotonic clock in seconds.
            sleep: Coroutine used to wait between polls.
        """
        if poll_interval <= 0 or progress_interval <= 0 or timeout <= 0:
            msg = "poll_interval, progress_interval and timeout must be positive"
            raise ValueError(msg)
        self._store = store
        self._poll_interval = poll_interval
        self._progress_interval = progress_interval
        self._timeout = timeout
        self._clock = clock
        self._sleep = sleep

    @classmethod
    def from_config(cls, store: EventLogStore, config: TelemetryConfig) -> CompletionWatcher:
        return cls(
            store,
            poll_interval=config.poll_interval_seconds,
            progress_interval=config.progress_interval_seconds,
            timeout=config.wait_timeout_seconds,
        )

    async def wait_for_session_complete(
        self,
        session_id: str,
        timeout: float | None = None,
    ) -> bool:
        """Poll until the session's sentinel appears or the deadline passes.

        A missing log file is treated as "not complete yet".

        Args:
            session_id: Session to wait for.
            timeout: Seconds to wait; defaults to the watcher's timeout.

        Returns:
            True if the sentinel was found, False on timeout.
        """
        wait = self._timeout if timeout is None else timeout
        start = self._clock()
        deadline = start + wait
        last_report = start
        last_size = await asyncio.to_thread(self._store.file_size, session_id)
        last_change = start

        logger.info("Waiting up to %.1fs for session %s to complete", wait, session_id)

        while True:
            if await asyncio.to_thread(self._store.has_sentinel, session_id):
                logger.info(
                    "Session %s complete after %.1fs", session_id, self._clock() - start
                )
                return True

            now = self._clock()
            if now >= deadline:
                logger.warning(
                    "Timed out after %.1fs waiting for session %s to complete", wait, session_id
                )
                return False

            size = await asyncio.to_thread(self._store.file_size, session_id)
            if size != last_size:
                last_size = size
                last_change = now

            if now - last_report >= self._progress_interval:
                last_report = now
                if now - last_change >= self._progress_interval:
                    logger.warning(
                        "No telemetry activity for session %s in %.1fs (file size: %s)",
                        session_id,
                        now - last_change,
                        "missing" if size is None else f"{size} bytes",
                    )
                else:
                    logger.info(
                        "Still waiting for session %s (%.0fs elapsed, %s bytes)",
                        session_id,
                        now - start,
                        size,
                    )

            await self._sleep(min(self._poll_interval, max(deadline - now, 0.0)))
