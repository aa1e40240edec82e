"""Tests for cross-run pattern detection."""

import pytest

from mcptrace.analysis import (
    DEFAULT_DETECTORS,
    Detector,
    DeviationDirection,
    PatternAnalyzer,
    PatternType,
    Severity,
)
from mcptrace.analysis.patterns import (
    deviation_direction,
    failure_correlation,
)
from mcptrace.models.config import PatternConfig
from mcptrace.models.run import ComparisonResult, Deviation, TestRun
from mcptrace.models.telemetry import CallResult, TelemetrySession, ToolCall

# Tools that satisfy every default expected-tool scenario
ALL_EXPECTED_TOOLS = [
    "create_paragraph_style",
    "apply_paragraph_style",
    "create_textframe",
    "position_textframe",
    "create_character_style",
    "apply_character_style",
]


def make_run(
    agent_id: str,
    tools: list[str] | None = None,
    score: float | None = None,
    *,
    errors: dict[int, str] | None = None,
    params: dict[int, dict] | None = None,
    deviations: list[Deviation] | None = None,
) -> TestRun:
    """Build a run from a tool sequence and optional comparison score."""
    telemetry = None
    if tools is not None:
        errors = errors or {}
        params = params or {}
        telemetry = TelemetrySession(
            id=f"1700000000000-{agent_id}-gen0",
            start_time=1_700_000_000_000,
            agent_id=agent_id,
            calls=[
                ToolCall(
                    timestamp=1_700_000_000_000 + i,
                    tool=tool,
                    parameters=params.get(i, {}),
                    result=CallResult.ERROR if i in errors else CallResult.SUCCESS,
                    error_message=errors.get(i),
                    session_id=f"1700000000000-{agent_id}-gen0",
                )
                for i, tool in enumerate(tools)
            ],
        )

    comparison = None
    if score is not None or deviations:
        comparison = ComparisonResult(score=score or 0.0, deviations=deviations or [])

    return TestRun(agent_id=agent_id, telemetry=telemetry, comparison_result=comparison)


def find(patterns: list, pattern_type: PatternType) -> list:
    return [p for p in patterns if p.type == pattern_type]


class TestAnalyzerGuards:
    """Tests for input guards and the shared filter."""

    def test_no_runs(self) -> None:
        assert PatternAnalyzer().analyze_patterns([]) == []

    def test_fewer_runs_than_min_frequency(self) -> None:
        """A single run can never form a pattern."""
        run = make_run("a", ["add_text", "apply_paragraph_style"], 10)
        assert PatternAnalyzer().analyze_patterns([run]) == []

    def test_pattern_bounds_hold(self) -> None:
        """Frequency never exceeds the run count and confidence stays in [0, 1]."""
        runs = [
            make_run(
                f"agent-{i}",
                ["add_text", "add_text", "add_text", "add_text", "apply_paragraph_style"],
                30 + i,
                errors={4: "style missing"},
                params={0: {"size": 12}},
                deviations=[Deviation(type="frame", field="width", expected=100, actual=140)],
            )
            for i in range(4)
        ]

        patterns = PatternAnalyzer(PatternConfig(confidence_threshold=0.0)).analyze_patterns(runs)

        assert patterns
        for pattern in patterns:
            assert 0.0 <= pattern.confidence <= 1.0
            assert pattern.frequency <= len(runs)
            assert pattern.frequency >= 2

    def test_failing_detector_is_skipped(self) -> None:
        """A detector that raises does not abort the analysis."""

        def explode(runs: list[TestRun], config: PatternConfig) -> list:
            raise RuntimeError("bad input")

        detectors = [Detector("explode", explode), *DEFAULT_DETECTORS]
        runs = [
            make_run("a", ["x"], 50, errors={0: "boom"}),
            make_run("b", ["x"], 50, errors={0: "boom"}),
        ]

        patterns = PatternAnalyzer(detectors=detectors).analyze_patterns(runs)

        assert find(patterns, PatternType.ERROR_PATTERN)

    def test_only_visual_detector_without_telemetry(self) -> None:
        """Runs without telemetry only produce visual-deviation patterns."""
        deviation = Deviation(type="frame", field="frame_height", expected=40, actual=35)
        runs = [make_run(f"a{i}", None, 20, deviations=[deviation]) for i in range(3)]

        patterns = PatternAnalyzer().analyze_patterns(runs)

        assert {p.type for p in patterns} == {PatternType.VISUAL_DEVIATION}

    def test_rank_patterns_by_significance(self) -> None:
        """High-severity errors outrank low-severity redundancy."""
        runs = [
            make_run(
                f"a{i}",
                ["x", "x", "x", "x", *ALL_EXPECTED_TOOLS],
                90,
                errors={0: "boom"},
            )
            for i in range(2)
        ]
        analyzer = PatternAnalyzer()

        ranked = analyzer.rank_patterns(analyzer.analyze_patterns(runs), len(runs))

        assert ranked[0].type == PatternType.ERROR_PATTERN
        assert ranked[-1].severity == Severity.LOW


class TestToolSequenceDetector:
    """Tests for the tool-sequence detector."""

    def test_low_scores_produce_medium_pattern(self) -> None:
        """Three runs sharing a sequence with scores 40/45/50."""
        runs = [
            make_run(f"agent-{i}", ["add_text", "apply_paragraph_style"], score)
            for i, score in enumerate([40, 45, 50])
        ]
        analyzer = PatternAnalyzer(PatternConfig(confidence_threshold=0.5))

        patterns = find(analyzer.analyze_patterns(runs), PatternType.TOOL_SEQUENCE)

        assert len(patterns) == 1
        pattern = patterns[0]
        assert pattern.confidence == pytest.approx(0.55)
        assert pattern.frequency == 3
        assert pattern.severity == Severity.MEDIUM
        assert pattern.details["sequence"] == ["add_text", "apply_paragraph_style"]
        assert "add_text -> apply_paragraph_style" in pattern.description
        assert pattern.details["median_score"] == pytest.approx(45)
        interval = pattern.details["score_interval"]
        assert interval["mean"] == pytest.approx(45)
        assert interval["lower"] < 45 < interval["upper"]

    def test_default_threshold_filters_moderate_correlation(self) -> None:
        """0.55 is below the default 0.6 confidence threshold."""
        runs = [
            make_run(f"agent-{i}", ["add_text", "apply_paragraph_style"], score)
            for i, score in enumerate([40, 45, 50])
        ]

        patterns = PatternAnalyzer().analyze_patterns(runs)

        assert find(patterns, PatternType.TOOL_SEQUENCE) == []

    def test_high_scores_no_pattern(self) -> None:
        runs = [make_run(f"a{i}", ["a", "b"], 90) for i in range(3)]
        patterns = PatternAnalyzer(PatternConfig(confidence_threshold=0.0)).analyze_patterns(runs)
        assert find(patterns, PatternType.TOOL_SEQUENCE) == []

    def test_repeated_sequence_counted_once_per_run(self) -> None:
        """A sequence repeated inside one run does not inflate frequency."""
        runs = [make_run(f"a{i}", ["a", "b", "a", "b"], 0) for i in range(2)]

        patterns = find(PatternAnalyzer().analyze_patterns(runs), PatternType.TOOL_SEQUENCE)
        ab = [p for p in patterns if p.details["sequence"] == ["a", "b"]]

        assert len(ab) == 1
        assert ab[0].frequency == 2
        assert ab[0].severity == Severity.HIGH

    def test_failure_correlation_discounts_spread_scores(self) -> None:
        """Widely spread scores are discounted."""
        config = PatternConfig()
        assert failure_correlation([40, 45, 50], config) == pytest.approx(0.55)
        assert failure_correlation([0, 60], config) == pytest.approx(0.7 * 0.7)
        assert failure_correlation([], config) == 0.0

    def test_runs_without_comparison_score_zero(self) -> None:
        """Missing comparison results count as a score of 0."""
        runs = [make_run(f"a{i}", ["a", "b"]) for i in range(2)]

        patterns = find(PatternAnalyzer().analyze_patterns(runs), PatternType.TOOL_SEQUENCE)

        assert patterns[0].confidence == pytest.approx(1.0)


class TestParameterChoiceDetector:
    """Tests for the parameter-choice detector."""

    def test_low_score_parameter(self) -> None:
        runs = [
            make_run(f"a{i}", ["add_text"], 30, params={0: {"font": "Arial"}})
            for i in range(3)
        ]

        patterns = find(PatternAnalyzer().analyze_patterns(runs), PatternType.PARAMETER_CHOICE)

        assert len(patterns) == 1
        assert patterns[0].confidence == pytest.approx(0.7)
        assert patterns[0].severity == Severity.HIGH
        assert patterns[0].details["value"] == "Arial"
        assert patterns[0].details["median_score"] == pytest.approx(30)
        assert patterns[0].details["score_interval"] == {
            "lower": pytest.approx(30),
            "upper": pytest.approx(30),
            "mean": pytest.approx(30),
        }

    def test_medium_severity_between_cutoffs(self) -> None:
        runs = [
            make_run(f"a{i}", ["add_text"], 60, params={0: {"font": "Arial"}}) for i in range(2)
        ]
        config = PatternConfig(confidence_threshold=0.0)

        patterns = find(PatternAnalyzer(config).analyze_patterns(runs), PatternType.PARAMETER_CHOICE)

        assert patterns[0].severity == Severity.MEDIUM

    def test_good_scores_ignored(self) -> None:
        runs = [
            make_run(f"a{i}", ["add_text"], 80, params={0: {"font": "Arial"}}) for i in range(2)
        ]
        config = PatternConfig(confidence_threshold=0.0)

        patterns = PatternAnalyzer(config).analyze_patterns(runs)

        assert find(patterns, PatternType.PARAMETER_CHOICE) == []


class TestErrorDetector:
    """Tests for the error-pattern detector."""

    def test_repeated_errors_have_full_confidence(self) -> None:
        runs = [make_run(f"a{i}", ["apply_style"], 90, errors={0: "no style"}) for i in range(2)]

        patterns = find(PatternAnalyzer().analyze_patterns(runs), PatternType.ERROR_PATTERN)

        assert len(patterns) == 1
        assert patterns[0].confidence == 1.0
        assert patterns[0].severity == Severity.HIGH
        assert patterns[0].details == {"tool": "apply_style", "error": "no style", "occurrences": 2}

    def test_error_in_one_run_only(self) -> None:
        """Repeating within a single run is not a cross-run pattern."""
        runs = [
            make_run("a", ["x", "x"], 90, errors={0: "boom", 1: "boom"}),
            make_run("b", ["x"], 90),
        ]

        patterns = find(PatternAnalyzer().analyze_patterns(runs), PatternType.ERROR_PATTERN)

        assert patterns == []


class TestVisualDeviationDetector:
    """Tests for the visual-deviation detector."""

    def test_consistent_under_deviation(self) -> None:
        """Two runs with frame_height 40 -> 35."""
        deviation = Deviation(type="frame", field="frame_height", expected=40, actual=35)
        runs = [make_run(f"a{i}", None, 70, deviations=[deviation]) for i in range(2)]

        patterns = find(PatternAnalyzer().analyze_patterns(runs), PatternType.VISUAL_DEVIATION)

        assert len(patterns) == 1
        pattern = patterns[0]
        assert pattern.deviation_pattern is not None
        assert pattern.deviation_pattern.direction == DeviationDirection.UNDER
        assert pattern.deviation_pattern.average_deviation == pytest.approx(12.5)
        assert pattern.deviation_pattern.occurrences == 2
        assert pattern.confidence == 1.0
        assert pattern.severity == Severity.MEDIUM

    def test_large_deviation_high_severity(self) -> None:
        deviation = Deviation(type="text", field="font_size", expected=10, actual=15)
        runs = [make_run(f"a{i}", None, 70, deviations=[deviation]) for i in range(2)]

        pattern = find(PatternAnalyzer().analyze_patterns(runs), PatternType.VISUAL_DEVIATION)[0]

        assert pattern.deviation_pattern is not None
        assert pattern.deviation_pattern.direction == DeviationDirection.OVER
        assert pattern.severity == Severity.HIGH

    def test_within_tolerance_is_noise(self) -> None:
        deviation = Deviation(type="frame", field="width", expected=100, actual=103)
        runs = [make_run(f"a{i}", None, 70, deviations=[deviation]) for i in range(3)]

        assert PatternAnalyzer().analyze_patterns(runs) == []

    def test_non_numeric_is_wrong(self) -> None:
        deviation = Deviation(
            type="text", field="font", expected="Helvetica", actual="Arial", deviation=100
        )
        runs = [make_run(f"a{i}", None, 70, deviations=[deviation]) for i in range(2)]

        pattern = find(PatternAnalyzer().analyze_patterns(runs), PatternType.VISUAL_DEVIATION)[0]

        assert pattern.deviation_pattern is not None
        assert pattern.deviation_pattern.direction == DeviationDirection.WRONG

    def test_examples_capped(self) -> None:
        deviation = Deviation(type="frame", field="x", expected=10, actual=20)
        runs = [make_run(f"a{i}", None, 50, deviations=[deviation]) for i in range(8)]

        pattern = find(PatternAnalyzer().analyze_patterns(runs), PatternType.VISUAL_DEVIATION)[0]

        assert len(pattern.examples) == 5
        assert pattern.frequency == 8

    def test_deviation_direction(self) -> None:
        assert deviation_direction(Deviation(type="t", field="f", expected=10, actual=10), 0.05) is None
        assert (
            deviation_direction(Deviation(type="t", field="f", expected=0, actual=3), 0.05)
            == DeviationDirection.OVER
        )


class TestMissingToolDetector:
    """Tests for the missing-tool detector."""

    def test_missing_paragraph_styles(self) -> None:
        tools = [t for t in ALL_EXPECTED_TOOLS if "paragraph" not in t]
        runs = [make_run(f"a{i}", tools, 50) for i in range(3)]

        patterns = find(PatternAnalyzer().analyze_patterns(runs), PatternType.MISSING_TOOL)

        assert len(patterns) == 1
        assert patterns[0].details["scenario"] == "text-hierarchy"
        assert patterns[0].confidence == 1.0
        assert patterns[0].severity == Severity.MEDIUM

    def test_all_expected_tools_used(self) -> None:
        runs = [make_run(f"a{i}", list(ALL_EXPECTED_TOOLS), 50) for i in range(2)]
        patterns = PatternAnalyzer().analyze_patterns(runs)
        assert find(patterns, PatternType.MISSING_TOOL) == []

    def test_custom_expected_tools(self) -> None:
        config = PatternConfig(expected_tools={"export": ["export_pdf"]})
        runs = [make_run(f"a{i}", ["add_text"], 90) for i in range(2)]

        patterns = find(PatternAnalyzer(config).analyze_patterns(runs), PatternType.MISSING_TOOL)

        assert [p.details["scenario"] for p in patterns] == ["export"]


class TestRedundantCallDetector:
    """Tests for the redundant-call detector."""

    def test_excessive_calls(self) -> None:
        tools = ["add_text"] * 5 + list(ALL_EXPECTED_TOOLS)
        runs = [make_run(f"a{i}", tools, 90) for i in range(3)]
        config = PatternConfig(confidence_threshold=0.5)

        patterns = find(PatternAnalyzer(config).analyze_patterns(runs), PatternType.REDUNDANT_CALL)

        assert len(patterns) == 1
        assert patterns[0].details["tool"] == "add_text"
        assert patterns[0].details["count"] == 5
        assert patterns[0].details["score_correlation"] == 0.0
        assert patterns[0].severity == Severity.LOW
        assert len(patterns[0].examples[0].tool_calls) == 5

    def test_score_correlation_across_runs(self) -> None:
        """Runs calling the tool more often scoring lower correlate negatively."""
        runs = [
            make_run(f"a{i}", ["add_text"] * count + list(ALL_EXPECTED_TOOLS), score)
            for i, (count, score) in enumerate([(5, 20), (5, 30), (4, 80)])
        ]
        config = PatternConfig(confidence_threshold=0.0)

        patterns = find(PatternAnalyzer(config).analyze_patterns(runs), PatternType.REDUNDANT_CALL)

        assert len(patterns) == 1
        assert patterns[0].details["score_correlation"] < -0.9

    def test_different_counts_are_separate(self) -> None:
        """Counts are part of the grouping key."""
        runs = [
            make_run("a", ["x"] * 4, 90),
            make_run("b", ["x"] * 5, 90),
        ]
        config = PatternConfig(confidence_threshold=0.0)

        patterns = find(PatternAnalyzer(config).analyze_patterns(runs), PatternType.REDUNDANT_CALL)

        assert patterns == []

    def test_at_threshold_not_redundant(self) -> None:
        runs = [make_run(f"a{i}", ["x"] * 3, 90) for i in range(2)]
        config = PatternConfig(confidence_threshold=0.0)

        patterns = find(PatternAnalyzer(config).analyze_patterns(runs), PatternType.REDUNDANT_CALL)

        assert patterns == []
