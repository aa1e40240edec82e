"""Cross-run pattern detection.

Mines a batch of completed runs for recurring behavior. Each detector is a
plain function from runs to candidate patterns; the analyzer concatenates
their output and applies one shared frequency/confidence filter.
"""

from __future__ import annotations

import json
import logging
from collections import Counter
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from mcptrace.analysis import statistics
from mcptrace.analysis.models import (
    DeviationDirection,
    DeviationPattern,
    Pattern,
    PatternExample,
    PatternType,
    Severity,
)
from mcptrace.models.config import PatternConfig
from mcptrace.models.run import Deviation, TestRun

logger = logging.getLogger(__name__)

DetectorFn = Callable[[list[TestRun], PatternConfig], list[Pattern]]


@dataclass(frozen=True)
class Detector:
    """A registered pattern detector."""

    name: str
    detect: DetectorFn
    requires_telemetry: bool = True


def _clamp(value: float) -> float:
    return min(1.0, max(0.0, value))


def failure_correlation(scores: Sequence[float], config: PatternConfig) -> float:
    """Correlation between a behavior and low scores, in [0, 1].

    Scores spread wider than ``score_stdev_threshold`` are discounted by
    ``consistency_discount``.
    """
    if not scores:
        return 0.0
    average = statistics.mean(scores)
    factor = (
        config.consistency_discount
        if statistics.stdev(scores) > config.score_stdev_threshold
        else 1.0
    )
    return _clamp((1 - average / 100) * factor)


# -- detectors ---------------------------------------------------------------


def detect_tool_sequences(runs: list[TestRun], config: PatternConfig) -> list[Pattern]:
    """Find contiguous tool subsequences shared by low-scoring runs."""
    # sequence -> run index -> first occurrence in that run
    supporting: dict[tuple[str, ...], dict[int, PatternExample]] = {}

    for index, run in enumerate(runs):
        calls = run.calls
        tools = [call.tool for call in calls]
        longest = min(config.max_sequence_length, len(tools))
        for length in range(config.min_sequence_length, longest + 1):
            for start in range(len(tools) - length + 1):
                sequence = tuple(tools[start : start + length])
                examples = supporting.setdefault(sequence, {})
                if index in examples:
                    continue
                examples[index] = PatternExample(
                    agent_id=run.agent_id,
                    tool_calls=calls[start : start + length],
                    context=f"Tools {start + 1}-{start + length} of {len(tools)}",
                )

    patterns: list[Pattern] = []
    for sequence, examples in supporting.items():
        if len(examples) < config.min_frequency:
            continue

        scores = [runs[i].score for i in examples]
        correlation = failure_correlation(scores, config)
        if correlation <= config.sequence_correlation_threshold:
            continue

        patterns.append(
            Pattern(
                type=PatternType.TOOL_SEQUENCE,
                frequency=len(examples),
                description=f"Problematic tool sequence: {' -> '.join(sequence)}",
                examples=list(examples.values())[: config.max_examples],
                confidence=correlation,
                severity=(
                    Severity.HIGH if correlation > config.sequence_high_severity else Severity.MEDIUM
                ),
                details={
                    "sequence": list(sequence),
                    "mean_score": statistics.mean(scores),
                    "median_score": statistics.median(scores),
                    "score_stdev": statistics.stdev(scores),
                    "score_interval": statistics.confidence_interval(scores),
                },
            )
        )
    return patterns


def detect_parameter_choices(runs: list[TestRun], config: PatternConfig) -> list[Pattern]:
    """Find parameter values that recur in low-scoring runs."""
    supporting: dict[tuple[str, str, str], dict[int, PatternExample]] = {}

    for index, run in enumerate(runs):
        for call in run.calls:
            for param, value in call.parameters.items():
                encoded = json.dumps(value, sort_keys=True, default=str)
                examples = supporting.setdefault((call.tool, param, encoded), {})
                if index not in examples:
                    examples[index] = PatternExample(
                        agent_id=run.agent_id,
                        tool_calls=[call],
                        context=f"Parameter choice for {call.tool}",
                    )

    patterns: list[Pattern] = []
    for (tool, param, encoded), examples in supporting.items():
        if len(examples) < config.min_frequency:
            continue

        scores = [runs[i].score for i in examples]
        average = statistics.mean(scores)
        if average >= config.parameter_score_cutoff:
            continue

        patterns.append(
            Pattern(
                type=PatternType.PARAMETER_CHOICE,
                frequency=len(examples),
                description=f"Common parameter choice for {tool}: {param}={encoded}",
                examples=list(examples.values())[: config.max_examples],
                confidence=_clamp(1 - average / 100),
                severity=(
                    Severity.HIGH
                    if average < config.parameter_high_severity_cutoff
                    else Severity.MEDIUM
                ),
                details={
                    "tool": tool,
                    "parameter": param,
                    "value": json.loads(encoded),
                    "mean_score": average,
                    "median_score": statistics.median(scores),
                    "score_interval": statistics.confidence_interval(scores),
                },
            )
        )
    return patterns


def detect_errors(runs: list[TestRun], config: PatternConfig) -> list[Pattern]:
    """Find tool errors repeated across runs."""
    supporting: dict[tuple[str, str], dict[int, PatternExample]] = {}
    occurrences: Counter[tuple[str, str]] = Counter()

    for index, run in enumerate(runs):
        for call in run.calls:
            if not call.failed:
                continue
            key = (call.tool, call.error_message or "unknown")
            occurrences[key] += 1
            examples = supporting.setdefault(key, {})
            if index in examples:
                examples[index].tool_calls.append(call)
            else:
                examples[index] = PatternExample(
                    agent_id=run.agent_id,
                    tool_calls=[call],
                    context=f"Error in {call.tool}",
                )

    return [
        Pattern(
            type=PatternType.ERROR_PATTERN,
            frequency=len(examples),
            description=f"Repeated error in {tool}: {error}",
            examples=list(examples.values())[: config.max_examples],
            confidence=1.0,  # Errors are definitive
            severity=Severity.HIGH,
            details={"tool": tool, "error": error, "occurrences": occurrences[(tool, error)]},
        )
        for (tool, error), examples in supporting.items()
        if len(examples) >= config.min_frequency
    ]


def deviation_direction(deviation: Deviation, tolerance: float) -> DeviationDirection | None:
    """Direction of a deviation, or None when a numeric one is within tolerance."""
    if not deviation.numeric:
        return DeviationDirection.WRONG

    ratio = deviation.relative_difference()
    if deviation.actual == deviation.expected or (ratio is not None and ratio <= tolerance):
        return None
    if deviation.actual > deviation.expected:
        return DeviationDirection.OVER
    return DeviationDirection.UNDER


@dataclass
class _DeviationGroup:
    attribute: str
    magnitudes: list[float] = field(default_factory=list)
    directions: Counter[DeviationDirection] = field(default_factory=Counter)
    run_indexes: set[int] = field(default_factory=set)
    examples: list[PatternExample] = field(default_factory=list)


def detect_visual_deviations(runs: list[TestRun], config: PatternConfig) -> list[Pattern]:
    """Find layout attributes that deviate the same way across runs."""
    groups: dict[tuple[str, str], _DeviationGroup] = {}

    for index, run in enumerate(runs):
        if run.comparison_result is None:
            continue
        for deviation in run.comparison_result.deviations:
            direction = deviation_direction(deviation, config.deviation_tolerance)
            if direction is None:
                continue

            group = groups.setdefault(
                (deviation.type, deviation.field),
                _DeviationGroup(attribute=deviation.field),
            )
            magnitude = deviation.magnitude() or 0.0
            group.magnitudes.append(magnitude)
            group.directions[direction] += 1
            group.run_indexes.add(index)
            group.examples.append(
                PatternExample(
                    agent_id=run.agent_id,
                    context=(
                        f"{deviation.field}: expected {deviation.expected}, "
                        f"actual {deviation.actual}"
                    ),
                    deviation=magnitude,
                )
            )

    patterns: list[Pattern] = []
    for (deviation_type, _), group in groups.items():
        frequency = len(group.run_indexes)
        if frequency < config.min_frequency:
            continue

        average = statistics.mean(group.magnitudes)
        direction = group.directions.most_common(1)[0][0]
        deviation_pattern = DeviationPattern(
            attribute=group.attribute,
            direction=direction,
            average_deviation=average,
            consistency=statistics.consistency(group.magnitudes),
            occurrences=len(group.magnitudes),
        )
        patterns.append(
            Pattern(
                type=PatternType.VISUAL_DEVIATION,
                frequency=frequency,
                description=(
                    f"Consistent {direction.value} deviation in {group.attribute} "
                    f"(avg: {average:.1f}%)"
                ),
                examples=group.examples[: config.max_examples],
                confidence=_clamp(frequency / len(runs)),
                severity=(
                    Severity.HIGH if average > config.visual_high_severity else Severity.MEDIUM
                ),
                details={"deviation_type": deviation_type},
                deviation_pattern=deviation_pattern,
            )
        )
    return patterns


def detect_missing_tools(runs: list[TestRun], config: PatternConfig) -> list[Pattern]:
    """Find scenarios whose expected tools are routinely skipped."""
    patterns: list[Pattern] = []

    for scenario, tools in config.expected_tools.items():
        examples: list[PatternExample] = []
        missing_counts: Counter[str] = Counter()

        for run in runs:
            if run.telemetry is None:
                continue
            used = {call.tool for call in run.calls}
            missing = [tool for tool in tools if tool not in used]
            if missing:
                missing_counts.update(missing)
                examples.append(
                    PatternExample(
                        agent_id=run.agent_id,
                        context=f"Missing tools: {', '.join(missing)}",
                    )
                )

        if len(examples) < config.min_frequency:
            continue

        patterns.append(
            Pattern(
                type=PatternType.MISSING_TOOL,
                frequency=len(examples),
                description=f"Missing expected tools for {scenario}: {', '.join(tools)}",
                examples=examples[: config.max_examples],
                confidence=_clamp(len(examples) / len(runs)),
                severity=Severity.MEDIUM,
                details={"scenario": scenario, "missing_counts": dict(missing_counts)},
            )
        )
    return patterns


def detect_redundant_calls(runs: list[TestRun], config: PatternConfig) -> list[Pattern]:
    """Find tools called excessively within single runs.

    Each pattern reports how a tool's per-run call count correlates with
    run scores across the whole batch.
    """
    supporting: dict[tuple[str, int], list[PatternExample]] = {}
    counts_by_run = [Counter(call.tool for call in run.calls) for run in runs]
    scores = [run.score for run in runs]

    for run, counts in zip(runs, counts_by_run, strict=True):
        for tool, count in counts.items():
            if count <= config.redundancy_threshold:
                continue
            supporting.setdefault((tool, count), []).append(
                PatternExample(
                    agent_id=run.agent_id,
                    tool_calls=[call for call in run.calls if call.tool == tool],
                    context=f"Called {count} times",
                )
            )

    return [
        Pattern(
            type=PatternType.REDUNDANT_CALL,
            frequency=len(examples),
            description=f"Tool {tool} called excessively ({count}x)",
            examples=examples[: config.max_examples],
            confidence=_clamp(len(examples) / len(runs)),
            severity=Severity.LOW,
            details={
                "tool": tool,
                "count": count,
                "score_correlation": statistics.correlation(
                    [counts[tool] for counts in counts_by_run], scores
                ),
            },
        )
        for (tool, count), examples in supporting.items()
        if len(examples) >= config.min_frequency
    ]


DEFAULT_DETECTORS: tuple[Detector, ...] = (
    Detector("tool-sequence", detect_tool_sequences),
    Detector("parameter-choice", detect_parameter_choices),
    Detector("error-pattern", detect_errors),
    Detector("missing-tool", detect_missing_tools),
    Detector("redundant-call", detect_redundant_calls),
    Detector("visual-deviation", detect_visual_deviations, requires_telemetry=False),
)


class PatternAnalyzer:
    """Runs the registered detectors over a batch of runs."""

    def __init__(
        self,
        config: PatternConfig | None = None,
        detectors: Sequence[Detector] = DEFAULT_DETECTORS,
    ) -> None:
        """Initialize the pattern analyzer.

        Args:
            config: Detection thresholds; defaults apply when omitted.
            detectors: Detectors to run, in order.
        """
        self._config = config or PatternConfig()
        self._detectors = tuple(detectors)

    @property
    def config(self) -> PatternConfig:
        return self._config

    @property
    def detectors(self) -> tuple[Detector, ...]:
        return self._detectors

    def analyze_patterns(self, runs: Sequence[TestRun]) -> list[Pattern]:
        """Detect patterns that recur across runs.

        Detectors needing telemetry are skipped when no run recorded any tool
        calls. A failing detector is logged and skipped.

        Args:
            runs: Completed runs to analyze.

        Returns:
            Patterns meeting the minimum frequency and confidence threshold.
        """
        runs = list(runs)
        if not runs:
            logger.info("No runs available for pattern analysis")
            return []
        if len(runs) < self._config.min_frequency:
            logger.info("Insufficient runs (%d) for pattern analysis", len(runs))
            return []

        has_telemetry = any(run.calls for run in runs)
        if not has_telemetry:
            logger.info("No telemetry in any run; analyzing layout deviations only")

        candidates: list[Pattern] = []
        for detector in self._detectors:
            if detector.requires_telemetry and not has_telemetry:
                continue
            try:
                found = detector.detect(runs, self._config)
            except Exception:
                logger.exception("Pattern detector %s failed; skipping", detector.name)
                continue
            logger.debug("Detector %s found %d candidate patterns", detector.name, len(found))
            candidates.extend(found)

        patterns = [
            p
            for p in candidates
            if p.frequency >= self._config.min_frequency
            and p.confidence >= self._config.confidence_threshold
        ]
        logger.info(
            "Pattern analysis of %d runs: %d patterns (%d candidates)",
            len(runs),
            len(patterns),
            len(candidates),
        )
        return patterns

    def rank_patterns(self, patterns: Sequence[Pattern], total_runs: int) -> list[Pattern]:
        """Order patterns by severity-weighted significance, highest first."""
        return sorted(
            patterns,
            key=lambda p: statistics.significance(p, total_runs),
            reverse=True,
        )
