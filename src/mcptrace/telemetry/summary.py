"""Session summaries for quick inspection and export."""

from __future__ import annotations

import json
from collections import Counter
from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, Field

from mcptrace.analysis import statistics
from mcptrace.models.telemetry import TelemetrySession


class ErrorPatternCount(BaseModel):
    tool: str
    error: str
    count: int


class SlowCall(BaseModel):
    """A call whose execution time is above the session's upper IQR fence."""

    position: int
    tool: str
    execution_time: float


class SessionSummary(BaseModel):
    """Per-session usage statistics."""

    session_id: str
    agent_id: str
    generation: int
    total_calls: int
    tool_usage: dict[str, int] = Field(default_factory=dict)
    error_rate: float = 0.0
    average_execution_time: float = 0.0
    median_execution_time: float = 0.0
    error_patterns: list[ErrorPatternCount] = Field(default_factory=list)
    slow_calls: list[SlowCall] = Field(default_factory=list)


class SessionsSummary(BaseModel):
    """Aggregate statistics across many sessions."""

    total_sessions: int
    total_calls: int
    total_duration_seconds: float
    average_calls_per_session: float
    tool_usage: dict[str, int] = Field(default_factory=dict)
    errors_by_tool: dict[str, int] = Field(default_factory=dict)
    generations: list[int] = Field(default_factory=list)


def summarize_session(session: TelemetrySession) -> SessionSummary:
    """Summarize tool usage, error rate and timing for one session."""
    calls = session.calls
    times = [call.execution_time for call in calls]
    spread = statistics.find_outliers(times)
    slow = {t for t in spread["outliers"] if t > spread["upper_bound"]}
    usage = Counter(call.tool for call in calls)
    failed = [call for call in calls if call.failed]
    error_counts = Counter(
        (call.tool, call.error_message) for call in failed if call.error_message
    )

    return SessionSummary(
        session_id=session.id,
        agent_id=session.agent_id,
        generation=session.generation,
        total_calls=len(calls),
        tool_usage=dict(usage),
        error_rate=len(failed) / len(calls) if calls else 0.0,
        average_execution_time=statistics.mean(times),
        median_execution_time=statistics.median(times),
        error_patterns=[
            ErrorPatternCount(tool=tool, error=error, count=count)
            for (tool, error), count in error_counts.most_common()
        ],
        slow_calls=[
            SlowCall(position=i, tool=call.tool, execution_time=call.execution_time)
            for i, call in enumerate(calls)
            if call.execution_time in slow
        ],
    )


def summarize_sessions(sessions: list[TelemetrySession]) -> SessionsSummary:
    """Aggregate tool usage and errors across sessions."""
    usage: Counter[str] = Counter()
    errors: Counter[str] = Counter()
    total_calls = 0
    total_duration_ms = 0

    for session in sessions:
        total_calls += len(session.calls)
        total_duration_ms += session.duration_ms
        for call in session.calls:
            usage[call.tool] += 1
            if call.failed:
                errors[call.tool] += 1

    return SessionsSummary(
        total_sessions=len(sessions),
        total_calls=total_calls,
        total_duration_seconds=round(total_duration_ms / 1000, 3),
        average_calls_per_session=total_calls / len(sessions) if sessions else 0.0,
        tool_usage=dict(usage),
        errors_by_tool=dict(errors),
        generations=sorted({s.generation for s in sessions}),
    )


def export_sessions(sessions: list[TelemetrySession], output_path: Path) -> Path:
    """Write sessions and their aggregate summary to one JSON file.

    Args:
        sessions: Sessions to export.
        output_path: Destination file; parent directories are created.

    Returns:
        Path to the written file.
    """
    payload = {
        "exported_at": datetime.now().isoformat(),
        "summary": summarize_sessions(sessions).model_dump(mode="json"),
        "sessions": [s.model_dump(mode="json", by_alias=True) for s in sessions],
    }
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(json.dumps(payload, indent=2))
    return output_path
