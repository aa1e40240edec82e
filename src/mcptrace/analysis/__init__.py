"""Analysis module for cross-run pattern detection."""

from mcptrace.analysis.models import (
    DeviationDirection,
    DeviationPattern,
    Pattern,
    PatternExample,
    PatternType,
    Severity,
)
from mcptrace.analysis.patterns import DEFAULT_DETECTORS, Detector, PatternAnalyzer
from mcptrace.analysis.validation import validate_patterns, validate_run, validate_session

__all__ = [
    "DEFAULT_DETECTORS",
    "Detector",
    "DeviationDirection",
    "DeviationPattern",
    "Pattern",
    "PatternAnalyzer",
    "PatternExample",
    "PatternType",
    "Severity",
    "validate_patterns",
    "validate_run",
    "validate_session",
]
