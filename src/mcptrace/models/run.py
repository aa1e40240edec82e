"""Test run data models.

Run records are assembled by the test orchestration layer (or reloaded from
disk) and are read-only input to pattern analysis.
"""

from typing import Any

from pydantic import BaseModel, Field

from mcptrace.models.telemetry import TelemetrySession, ToolCall


class Deviation(BaseModel):
    """Single mismatch between a produced layout and its reference."""

    type: str
    field: str
    expected: Any = None
    actual: Any = None
    deviation: float | None = None  # Percentage magnitude

    @property
    def numeric(self) -> bool:
        return _is_number(self.expected) and _is_number(self.actual)

    def magnitude(self) -> float | None:
        """Return the deviation percentage, deriving it from numeric values if absent."""
        if self.deviation is not None:
            return abs(self.deviation)
        ratio = self.relative_difference()
        return ratio * 100 if ratio is not None else None

    def relative_difference(self) -> float | None:
        """Return |actual - expected| / expected for numeric values, else None."""
        if not self.numeric:
            return None
        if self.expected == 0:
            return None
        return abs(self.actual - self.expected) / abs(self.expected)


class ComparisonResult(BaseModel):
    """Outcome of comparing a run's output against the reference."""

    score: float = Field(ge=0.0, le=100.0)
    match: bool = False
    deviations: list[Deviation] = Field(default_factory=list)


class TestRun(BaseModel):
    """Result from a single agent run."""

    __test__ = False  # Not a pytest test class

    agent_id: str
    telemetry: TelemetrySession | None = None
    extracted_metrics: dict[str, Any] | None = None
    comparison_result: ComparisonResult | None = None
    duration: float = 0.0  # Milliseconds
    success: bool = True
    error: str | None = None
    generation: int | None = None

    @property
    def calls(self) -> list[ToolCall]:
        """Recorded tool calls, empty when the run carries no telemetry."""
        if self.telemetry is None:
            return []
        return self.telemetry.calls

    @property
    def score(self) -> float:
        """Comparison score, 0 when the run was never compared."""
        if self.comparison_result is None:
            return 0.0
        return self.comparison_result.score


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)
