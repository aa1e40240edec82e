"""Data models for mcptrace."""

from mcptrace.models.config import PatternConfig, TelemetryConfig
from mcptrace.models.run import ComparisonResult, Deviation, TestRun
from mcptrace.models.telemetry import (
    SENTINEL_TYPE,
    CallResult,
    SessionCompleteRecord,
    SessionFileInfo,
    TelemetryHealth,
    TelemetrySession,
    ToolCall,
)

__all__ = [
    "SENTINEL_TYPE",
    "CallResult",
    "ComparisonResult",
    "Deviation",
    "PatternConfig",
    "SessionCompleteRecord",
    "SessionFileInfo",
    "TelemetryConfig",
    "TelemetryHealth",
    "TelemetrySession",
    "TestRun",
    "ToolCall",
]
