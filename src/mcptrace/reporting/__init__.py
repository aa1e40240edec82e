"""Reporting module for exporting pattern analysis results."""

from mcptrace.reporting.json_generator import JsonReportGenerator

__all__ = [
    "JsonReportGenerator",
]
