"""JSON report generator for machine-readable export.

Exports detected patterns as JSON for programmatic access and integration.
"""

from __future__ import annotations

import json
from collections import Counter
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from mcptrace import __version__
from mcptrace.analysis import statistics

if TYPE_CHECKING:
    from mcptrace.analysis import Pattern


class JsonReportGenerator:
    """Generates JSON reports from detected patterns."""

    def generate(
        self,
        patterns: list[Pattern],
        run_count: int,
        output_path: Path,
        include_examples: bool = True,
    ) -> None:
        """Generate a JSON report.

        Args:
            patterns: Detected patterns.
            run_count: Number of runs the patterns were mined from.
            output_path: Path to write the JSON report.
            include_examples: Whether to include per-run pattern examples.
        """
        report = self._build_report(patterns, run_count, include_examples)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(json.dumps(report, indent=2, default=str))

    def _build_report(
        self,
        patterns: list[Pattern],
        run_count: int,
        include_examples: bool,
    ) -> dict[str, Any]:
        """Build the report dictionary."""
        by_severity = Counter(p.severity.value for p in patterns)
        by_type = Counter(p.type.value for p in patterns)
        groups = statistics.group_patterns(patterns)

        return {
            "metadata": {
                "generated_at": datetime.now().isoformat(),
                "mcptrace_version": __version__,
                "total_runs": run_count,
                "total_patterns": len(patterns),
                "by_severity": dict(by_severity),
                "by_type": dict(by_type),
            },
            "groups": {key: len(members) for key, members in groups.items()},
            "patterns": [
                self._build_pattern_entry(p, run_count, include_examples) for p in patterns
            ],
        }

    def _build_pattern_entry(
        self,
        pattern: Pattern,
        run_count: int,
        include_examples: bool,
    ) -> dict[str, Any]:
        """Build a single pattern entry."""
        entry: dict[str, Any] = {
            "type": pattern.type.value,
            "description": pattern.description,
            "frequency": pattern.frequency,
            "confidence": pattern.confidence,
            "severity": pattern.severity.value,
            "significance": statistics.significance(pattern, run_count),
            "details": pattern.details,
        }

        if pattern.deviation_pattern is not None:
            entry["deviation_pattern"] = pattern.deviation_pattern.model_dump(mode="json")

        if include_examples:
            entry["examples"] = [
                {
                    "agent_id": example.agent_id,
                    "context": example.context,
                    "deviation": example.deviation,
                    "tools": [call.tool for call in example.tool_calls],
                }
                for example in pattern.examples
            ]

        return entry
