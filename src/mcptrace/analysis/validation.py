"""Validation of analyzer inputs and outputs.

Raises ValidationError with a machine-readable code for the first problem
found.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from mcptrace.analysis.models import Pattern
from mcptrace.exceptions import ValidationError
from mcptrace.models.run import TestRun
from mcptrace.models.telemetry import TelemetrySession

logger = logging.getLogger(__name__)

SIGNIFICANT_CONFIDENCE = 0.6
MIN_RUNS_EXPECTING_PATTERNS = 3


def validate_run(run: TestRun) -> None:
    """Check a run is complete enough to analyze."""
    if not run.agent_id:
        raise ValidationError("Agent ID is required", "MISSING_AGENT_ID")
    if run.telemetry is None:
        raise ValidationError("Telemetry session is required", "MISSING_TELEMETRY")
    if run.success and run.comparison_result is None:
        raise ValidationError(
            "Successful runs must have comparison results", "MISSING_COMPARISON"
        )


def validate_session(session: TelemetrySession) -> None:
    """Check a session's calls belong to it and are in time order."""
    previous: int | None = None
    for position, call in enumerate(session.calls):
        if call.session_id is not None and call.session_id != session.id:
            msg = (
                f"Call {position} ({call.tool}) belongs to session {call.session_id}, "
                f"not {session.id}"
            )
            raise ValidationError(msg, "SESSION_MISMATCH")
        if previous is not None and call.timestamp < previous:
            msg = f"Call {position} ({call.tool}) is earlier than the call before it"
            raise ValidationError(msg, "OUT_OF_ORDER")
        previous = call.timestamp

    if session.end_time is not None and session.end_time < session.start_time:
        raise ValidationError("Session ends before it starts", "INVALID_DURATION")


def validate_patterns(patterns: Sequence[Pattern], run_count: int) -> None:
    """Check pattern statistics are consistent with the number of runs."""
    significant = [p for p in patterns if p.confidence > SIGNIFICANT_CONFIDENCE]
    if run_count >= MIN_RUNS_EXPECTING_PATTERNS and not significant:
        logger.warning(
            "No significant patterns detected after %d runs; check that agents make "
            "diverse attempts and that reference metrics and thresholds are accurate",
            run_count,
        )

    for pattern in patterns:
        if pattern.frequency > run_count:
            msg = f"Pattern frequency ({pattern.frequency}) exceeds run count ({run_count})"
            raise ValidationError(msg, "INVALID_PATTERN_FREQUENCY")
        if not 0.0 <= pattern.confidence <= 1.0:
            raise ValidationError("Pattern confidence must be between 0-1", "INVALID_CONFIDENCE")
