"""Custom exception hierarchy for mcptrace.

All exceptions inherit from MCPTraceError for easy catching at the top level.
"""


class MCPTraceError(Exception):
    """Base exception for all mcptrace errors."""


class ConfigurationError(MCPTraceError):
    """Configuration-related errors."""


class TelemetryError(MCPTraceError):
    """Telemetry capture and storage errors."""


class TelemetryDirectoryError(TelemetryError):
    """No usable telemetry directory could be resolved."""


class TelemetryWriteError(TelemetryError):
    """A log append failed after exhausting its retry budget."""

    def __init__(self, message: str, attempts: int = 1) -> None:
        super().__init__(message)
        self.attempts = attempts


class SentinelWriteError(TelemetryError):
    """The session completion sentinel could not be written."""


class AnalysisError(MCPTraceError):
    """Pattern analysis errors."""


class ValidationError(AnalysisError):
    """A run, session or pattern failed validation."""

    def __init__(self, message: str, code: str) -> None:
        super().__init__(message)
        self.code = code
