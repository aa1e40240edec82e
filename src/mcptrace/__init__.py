"""mcptrace - tool-call telemetry capture and cross-run pattern mining for agent testing."""

__version__ = "0.1.0"
