"""Pattern analysis data models."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from mcptrace.models.telemetry import ToolCall


class PatternType(str, Enum):
    """Kind of recurring behavior a pattern describes."""

    TOOL_SEQUENCE = "tool-sequence"
    PARAMETER_CHOICE = "parameter-choice"
    ERROR_PATTERN = "error-pattern"
    VISUAL_DEVIATION = "visual-deviation"
    MISSING_TOOL = "missing-tool"
    REDUNDANT_CALL = "redundant-call"


class Severity(str, Enum):
    """Severity of a detected pattern."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class DeviationDirection(str, Enum):
    """Direction of a visual deviation relative to the reference."""

    OVER = "over"
    UNDER = "under"
    WRONG = "wrong"


class PatternExample(BaseModel):
    """One run's evidence for a pattern."""

    agent_id: str
    tool_calls: list[ToolCall] = Field(default_factory=list)
    context: str = ""
    deviation: float | None = None


class DeviationPattern(BaseModel):
    """Aggregate of one deviation attribute across runs."""

    attribute: str
    direction: DeviationDirection
    average_deviation: float = 0.0
    consistency: float = Field(default=0.0, ge=0.0, le=1.0)
    occurrences: int = 0


class Pattern(BaseModel):
    """A recurring behavior supported by multiple runs."""

    type: PatternType
    frequency: int = Field(ge=0)  # Distinct supporting runs
    description: str
    examples: list[PatternExample] = Field(default_factory=list)
    confidence: float = Field(ge=0.0, le=1.0)
    severity: Severity
    details: dict[str, Any] = Field(default_factory=dict)
    deviation_pattern: DeviationPattern | None = None
