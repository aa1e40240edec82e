"""Telemetry session manager.

Owns the single active capture session of a process: the in-memory call
buffer, its mirror in the event log store and the completion sentinel.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from enum import Enum
from typing import Any

from mcptrace.exceptions import SentinelWriteError
from mcptrace.models.config import TelemetryConfig
from mcptrace.models.telemetry import (
    CallResult,
    SessionCompleteRecord,
    TelemetryHealth,
    TelemetrySession,
    ToolCall,
)
from mcptrace.telemetry.queue import WriteQueue
from mcptrace.telemetry.retry import RetryPolicy
from mcptrace.telemetry.sanitize import sanitize_params, sanitize_value
from mcptrace.telemetry.store import EventLogStore

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    """Capture state of a session manager."""

    IDLE = "idle"
    ACTIVE = "active"


class SessionManager:
    """Records tool calls for one active session at a time.

    State machine: IDLE -> ACTIVE on start_session, ACTIVE -> IDLE on
    end_session. Starting while ACTIVE ends the previous session first.
    """

    def __init__(
        self,
        store: EventLogStore,
        queue: WriteQueue | None = None,
        *,
        config: TelemetryConfig | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the session manager.

        Args:
            store: Event log store the calls are mirrored to.
            queue: Write queue serializing appends. Built from config if omitted.
            config: Telemetry configuration (overrides, retry settings).
            clock: Wall clock returning epoch seconds.
        """
        self._config = config or TelemetryConfig()
        self._store = store
        self._queue = queue or WriteQueue(
            RetryPolicy(
                max_attempts=self._config.max_attempts,
                delays=tuple(self._config.backoff_delays),
            ),
            flush_threshold=self._config.flush_threshold,
        )
        self._clock = clock
        self._enabled = self._config.enabled
        self._state = SessionState.IDLE
        self._current: TelemetrySession | None = None
        self._calls: list[ToolCall] = []
        self._history: dict[str, TelemetrySession] = {}

    # -- state ---------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state == SessionState.ACTIVE

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def config(self) -> TelemetryConfig:
        return self._config

    @property
    def store(self) -> EventLogStore:
        return self._store

    @property
    def queue(self) -> WriteQueue:
        return self._queue

    def enable(self) -> None:
        self._enabled = True
        logger.debug("Telemetry enabled")

    def disable(self) -> None:
        self._enabled = False
        logger.debug("Telemetry disabled")

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    # -- lifecycle -----------------------------------------------------------

    def generate_session_id(self, agent_id: str, generation: int) -> str:
        """Session id from the configured override, else ``<ms>-<agent>-gen<n>``."""
        if self._config.session_id:
            return self._config.session_id
        return f"{self._now_ms()}-{agent_id}-gen{generation}"

    async def start_session(self, agent_id: str, generation: int) -> str:
        """Start a new capture session.

        If a session is already active it is ended first. When the new session
        reuses the active session's id (a configured override) the previous
        session is closed without a sentinel, so the shared log keeps a single
        terminal sentinel. A sentinel failure during that forced end is logged
        and the new session still starts.

        Args:
            agent_id: Agent whose calls will be recorded.
            generation: Generation number of the agent.

        Returns:
            The new session id.
        """
        session_id = self.generate_session_id(agent_id, generation)

        if self._state == SessionState.ACTIVE and self._current is not None:
            previous_id = self._current.id
            logger.warning(
                "Started session while %s is active; ending the previous session",
                previous_id,
            )
            try:
                await self._finish(self._current, write_sentinel=previous_id != session_id)
            except SentinelWriteError as e:
                logger.error("Previous session %s did not complete cleanly: %s", previous_id, e)
        elif self._config.session_id and self._store.has_sentinel(session_id):
            logger.warning(
                "Session %s is already complete; new calls follow its sentinel", session_id
            )

        session = TelemetrySession(
            id=session_id,
            start_time=self._now_ms(),
            agent_id=agent_id,
            generation=generation,
        )
        self._current = session
        self._history[session_id] = session
        self._calls = []
        self._state = SessionState.ACTIVE
        logger.info("Telemetry session started: %s", session_id)
        return session_id

    async def capture(
        self,
        tool: str,
        params: Any,
        *,
        success: bool,
        execution_time: float,
        error: str | None = None,
        result: Any = None,
    ) -> asyncio.Task[None] | None:
        """Record a tool call and queue its persistence.

        Does nothing when telemetry is disabled or no session is active.
        Persistence failures are logged by the write queue and never raised
        from here.

        Args:
            tool: Tool name.
            params: Parameters the tool was invoked with.
            success: Whether the tool succeeded.
            execution_time: Execution time in milliseconds.
            error: Error message for failed calls.
            result: Result payload; sanitized before storage.

        Returns:
            The write task, or None if nothing was recorded.
        """
        if not self._enabled or self._state != SessionState.ACTIVE or self._current is None:
            return None

        session = self._current
        call = ToolCall(
            timestamp=self._now_ms(),
            tool=tool,
            parameters=sanitize_params(params),
            execution_time=max(execution_time, 0.0),
            result=CallResult.SUCCESS if success else CallResult.ERROR,
            error_message=error,
            result_data=sanitize_value(result) if result is not None else None,
            agent_id=session.agent_id,
            generation=session.generation,
            session_id=session.id,
        )
        self._calls.append(call)

        record = call.to_record()
        return await self._queue.enqueue(
            lambda: self._store.append(session.id, record),
            description=f"append {tool} to {session.id}",
        )

    async def end_session(self) -> TelemetrySession | None:
        """End the active session, write its sentinel and flush pending writes.

        The sentinel is skipped if the session's log already carries one,
        which happens when several managers share an overridden session id.

        Returns:
            The completed session, or None if no session was active.

        Raises:
            SentinelWriteError: If the completion sentinel could not be written.
                The manager is IDLE afterwards regardless.
        """
        if self._state != SessionState.ACTIVE or self._current is None:
            logger.info("end_session called with no active session")
            return None
        return await self._finish(self._current, write_sentinel=True)

    async def _finish(
        self, session: TelemetrySession, *, write_sentinel: bool
    ) -> TelemetrySession:
        session.end_time = self._now_ms()
        session.calls = list(self._calls)

        self._current = None
        self._calls = []
        self._state = SessionState.IDLE

        await self._queue.flush()
        if not write_sentinel:
            logger.info("Telemetry session %s continues under the same id", session.id)
            return session
        if self._store.has_sentinel(session.id):
            logger.warning("Session %s already has a completion sentinel", session.id)
            return session

        sentinel = SessionCompleteRecord(timestamp=session.end_time, session_id=session.id)
        record = sentinel.to_record()
        sentinel_task = await self._queue.enqueue(
            lambda: self._store.append(session.id, record),
            description=f"completion sentinel for {session.id}",
        )
        await self._queue.flush()

        error = sentinel_task.exception()
        if error is not None:
            msg = f"Failed to write completion sentinel for session {session.id}: {error}"
            raise SentinelWriteError(msg) from error

        logger.info(
            "Telemetry session ended: %s with %d calls",
            session.id,
            len(session.calls),
        )
        return session

    # -- inspection ----------------------------------------------------------

    def current_session(self) -> TelemetrySession | None:
        """Snapshot of the active session with the calls captured so far."""
        if self._state != SessionState.ACTIVE or self._current is None:
            return None
        return self._current.model_copy(
            update={"calls": list(self._calls), "end_time": self._now_ms()}
        )

    def get_calls(self) -> list[ToolCall]:
        return list(self._calls)

    def get_session(self, session_id: str) -> TelemetrySession | None:
        return self._history.get(session_id)

    def all_sessions(self) -> list[TelemetrySession]:
        return list(self._history.values())

    def reset(self) -> None:
        """Drop the active session without writing a sentinel. History is kept."""
        self._current = None
        self._calls = []
        self._state = SessionState.IDLE

    def clear_history(self) -> None:
        self._history.clear()
        self.reset()

    def health_status(self) -> TelemetryHealth:
        """Report the state of the capture pipeline."""
        if not self._enabled:
            status = "disabled"
        elif self._queue.failed > 0:
            status = "degraded"
        else:
            status = "healthy"

        directory = self._store.directory
        return TelemetryHealth(
            system_status=status,
            enabled=self._enabled,
            state=self._state.value,
            current_session_id=self._current.id if self._current else None,
            calls_count=len(self._calls),
            pending_writes=self._queue.pending,
            completed_writes=self._queue.completed,
            failed_writes=self._queue.failed,
            retried_writes=self._queue.retried,
            telemetry_dir=str(directory) if directory else None,
        )
