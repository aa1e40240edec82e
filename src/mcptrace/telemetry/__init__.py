"""Telemetry capture: event log store, write queue, sessions and watcher."""

from mcptrace.telemetry.queue import WriteQueue
from mcptrace.telemetry.retry import RetryPolicy, is_retryable_error
from mcptrace.telemetry.session import SessionManager, SessionState
from mcptrace.telemetry.store import EventLogStore, parse_session_id
from mcptrace.telemetry.summary import (
    SessionsSummary,
    SessionSummary,
    export_sessions,
    summarize_session,
    summarize_sessions,
)
from mcptrace.telemetry.watcher import CompletionWatcher
from mcptrace.telemetry.wrapper import instrument_tool, telemetry_session

__all__ = [
    "CompletionWatcher",
    "EventLogStore",
    "RetryPolicy",
    "SessionManager",
    "SessionState",
    "SessionSummary",
    "SessionsSummary",
    "WriteQueue",
    "export_sessions",
    "instrument_tool",
    "is_retryable_error",
    "parse_session_id",
    "summarize_session",
    "summarize_sessions",
    "telemetry_session",
]
