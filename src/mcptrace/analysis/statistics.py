"""Statistical helpers for pattern significance.

All functions accept empty input and return neutral values instead of
raising, so detectors can call them on sparse data.
"""

from __future__ import annotations

import math
import statistics
from collections.abc import Sequence
from typing import Any

from mcptrace.analysis.models import Pattern, PatternType, Severity

# Two-sided z-scores for common confidence levels
Z_SCORES = {
    0.90: 1.645,
    0.95: 1.96,
    0.99: 2.576,
}
DEFAULT_Z_SCORE = 1.96

SEVERITY_WEIGHTS = {
    Severity.HIGH: 1.0,
    Severity.MEDIUM: 0.7,
    Severity.LOW: 0.4,
}

IQR_MIN_VALUES = 4
IQR_FENCE = 1.5

_TOOL_KEYED = (
    PatternType.PARAMETER_CHOICE,
    PatternType.ERROR_PATTERN,
    PatternType.REDUNDANT_CALL,
)


def mean(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    return statistics.fmean(values)


def stdev(values: Sequence[float]) -> float:
    """Population standard deviation (0 for empty input)."""
    if not values:
        return 0.0
    return statistics.pstdev(values)


def median(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    return float(statistics.median(values))


def confidence_interval(values: Sequence[float], confidence: float = 0.95) -> dict[str, float]:
    """Normal-approximation confidence interval around the mean.

    Unknown confidence levels fall back to 95%.

    Returns:
        Dictionary with ``lower``, ``upper`` and ``mean``.
    """
    center = mean(values)
    if not values:
        return {"lower": 0.0, "upper": 0.0, "mean": 0.0}

    z_score = Z_SCORES.get(confidence, DEFAULT_Z_SCORE)
    margin = z_score * stdev(values) / math.sqrt(len(values))
    return {"lower": center - margin, "upper": center + margin, "mean": center}


def consistency(values: Sequence[float]) -> float:
    """Consistency in [0, 1] as one minus the coefficient of variation."""
    if not values:
        return 0.0
    if len(values) == 1:
        return 1.0

    center = mean(values)
    cv = stdev(values) / abs(center) if center != 0 else 0.0
    return max(0.0, 1.0 - cv)


def significance(pattern: Pattern, total_runs: int) -> float:
    """Severity-weighted average of a pattern's frequency ratio and confidence."""
    if total_runs <= 0:
        return 0.0
    frequency_score = pattern.frequency / total_runs
    return (frequency_score + pattern.confidence) / 2 * SEVERITY_WEIGHTS[pattern.severity]


def correlation(x: Sequence[float], y: Sequence[float]) -> float:
    """Pearson correlation, 0 for mismatched, empty or constant input."""
    if len(x) != len(y) or len(x) < 2:
        return 0.0
    try:
        return statistics.correlation(x, y)
    except statistics.StatisticsError:
        return 0.0


def find_outliers(values: Sequence[float]) -> dict[str, Any]:
    """Flag values outside the 1.5 * IQR fences.

    Fewer than four values never produce outliers.

    Returns:
        Dictionary with ``outliers``, ``lower_bound`` and ``upper_bound``.
    """
    if len(values) < IQR_MIN_VALUES:
        return {"outliers": [], "lower_bound": 0.0, "upper_bound": 0.0}

    ordered = sorted(values)
    q1 = ordered[int(len(ordered) * 0.25)]
    q3 = ordered[int(len(ordered) * 0.75)]
    iqr = q3 - q1
    lower = q1 - IQR_FENCE * iqr
    upper = q3 + IQR_FENCE * iqr

    return {
        "outliers": [v for v in values if v < lower or v > upper],
        "lower_bound": lower,
        "upper_bound": upper,
    }


def pattern_group_key(pattern: Pattern) -> str:
    """Key grouping patterns of the same type around the same subject."""
    key = pattern.type.value
    details = pattern.details

    if pattern.type == PatternType.TOOL_SEQUENCE and details.get("sequence"):
        key += ":" + "-".join(details["sequence"][:2])
    elif pattern.type in _TOOL_KEYED and details.get("tool"):
        key += ":" + details["tool"]
    elif pattern.type == PatternType.VISUAL_DEVIATION and pattern.deviation_pattern:
        key += ":" + pattern.deviation_pattern.attribute

    return key


def group_patterns(patterns: Sequence[Pattern]) -> dict[str, list[Pattern]]:
    """Group similar patterns, preserving first-seen order."""
    groups: dict[str, list[Pattern]] = {}
    for pattern in patterns:
        groups.setdefault(pattern_group_key(pattern), []).append(pattern)
    return groups
