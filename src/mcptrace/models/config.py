"""Configuration data models.

Defines capture, completion-wait and pattern-detection settings.
"""

import os
import tempfile
from pathlib import Path

from pydantic import BaseModel, Field, field_validator

DEFAULT_BACKOFF_DELAYS = [0.1, 0.2, 0.5, 1.0, 2.0]

# Scenario -> tools a complete layout is expected to use
DEFAULT_EXPECTED_TOOLS: dict[str, list[str]] = {
    "text-hierarchy": ["create_paragraph_style", "apply_paragraph_style"],
    "layout-structure": ["create_textframe", "position_textframe"],
    "font-styling": ["create_character_style", "apply_character_style"],
}


def default_fallback_dirs() -> list[str]:
    """Fallback telemetry directories, tried in order after the configured one."""
    return [
        os.path.join(tempfile.gettempdir(), "mcptrace", "telemetry"),
        str(Path.home() / ".mcptrace" / "telemetry"),
        str(Path.cwd() / ".mcptrace" / "telemetry"),
    ]


class TelemetryConfig(BaseModel):
    """Configuration for telemetry capture and completion detection."""

    enabled: bool = True
    telemetry_dir: str | None = None
    fallback_dirs: list[str] = Field(default_factory=default_fallback_dirs)

    # Overrides supplied by an out-of-process driver
    session_id: str | None = None
    agent_id: str = Field(default="task-agent", min_length=1)
    generation: int = Field(default=0, ge=0)

    # Completion watcher timing
    poll_interval_seconds: float = Field(default=0.5, gt=0)
    progress_interval_seconds: float = Field(default=10.0, gt=0)
    wait_timeout_seconds: float = Field(default=180.0, gt=0)

    # Write queue
    flush_threshold: int = Field(default=100, ge=1)
    max_attempts: int = Field(default=5, ge=1)
    backoff_delays: list[float] = Field(default_factory=lambda: list(DEFAULT_BACKOFF_DELAYS))

    # Housekeeping
    max_session_age_hours: float = Field(default=24.0, gt=0)

    @field_validator("backoff_delays")
    @classmethod
    def _delays_not_empty(cls, value: list[float]) -> list[float]:
        if not value or any(d < 0 for d in value):
            msg = "backoff_delays must be a non-empty list of non-negative seconds"
            raise ValueError(msg)
        return value


class PatternConfig(BaseModel):
    """Thresholds for pattern detection.

    The heuristic cutoffs are kept as named settings so they can be tuned
    without touching the detectors.
    """

    min_frequency: int = Field(default=2, ge=1)
    confidence_threshold: float = Field(default=0.6, ge=0.0, le=1.0)
    max_examples: int = Field(default=5, ge=1)

    # Tool-sequence detector
    min_sequence_length: int = Field(default=2, ge=2)
    max_sequence_length: int = Field(default=4, ge=2)
    sequence_correlation_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    sequence_high_severity: float = Field(default=0.8, ge=0.0, le=1.0)
    score_stdev_threshold: float = Field(default=20.0, ge=0.0)
    consistency_discount: float = Field(default=0.7, ge=0.0, le=1.0)

    # Parameter-choice detector
    parameter_score_cutoff: float = Field(default=70.0, ge=0.0, le=100.0)
    parameter_high_severity_cutoff: float = Field(default=50.0, ge=0.0, le=100.0)

    # Visual-deviation detector
    deviation_tolerance: float = Field(default=0.05, ge=0.0)
    visual_high_severity: float = Field(default=20.0, ge=0.0)

    # Redundant-call detector
    redundancy_threshold: int = Field(default=3, ge=1)

    # Missing-tool detector
    expected_tools: dict[str, list[str]] = Field(
        default_factory=lambda: {k: list(v) for k, v in DEFAULT_EXPECTED_TOOLS.items()}
    )
