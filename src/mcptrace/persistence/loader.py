"""Run record loader implementation.

Handles loading run records from stored JSON files, and building runs
directly from raw telemetry sessions.
"""

import json
import logging
from pathlib import Path

from pydantic import ValidationError

from mcptrace.models.run import TestRun
from mcptrace.models.telemetry import TelemetrySession
from mcptrace.persistence.models import IndexEntry, RunIndex, RunRecord
from mcptrace.telemetry.store import parse_session_id

logger = logging.getLogger(__name__)


class RunLoader:
    """Handles loading run records from the filesystem."""

    def __init__(self, results_dir: Path) -> None:
        """Initialize the run loader.

        Args:
            results_dir: Directory where run records are stored.
        """
        self._results_dir = results_dir
        self._runs_dir = results_dir / "runs"
        self._index_path = results_dir / "index.json"

    def load_index(self) -> RunIndex:
        """Load the run index.

        Returns:
            The run index, or empty index if not found.
        """
        if self._index_path.exists():
            data = json.loads(self._index_path.read_text())
            return RunIndex.model_validate(data)
        return RunIndex()

    def load(self, run_id: str) -> RunRecord | None:
        """Load a specific run record by ID.

        Args:
            run_id: The run ID to load.

        Returns:
            The run record, or None if not found.
        """
        if not self._runs_dir.exists():
            return None

        # Search for the run file
        for run_file in self._runs_dir.glob(f"*_{run_id[:8]}.json"):
            try:
                record = RunRecord.model_validate_json(run_file.read_text())
            except ValidationError:
                logger.warning("Skipping unreadable run file %s", run_file)
                continue
            if record.run_id == run_id:
                return record

        return None

    def load_all(
        self,
        generation: int | None = None,
        limit: int | None = None,
    ) -> list[TestRun]:
        """Load stored runs.

        Args:
            generation: Optional filter by generation.
            limit: Optional maximum number of runs to return.

        Returns:
            List of runs, most recent first.
        """
        entries = self.load_index().entries

        if generation is not None:
            entries = [e for e in entries if e.generation == generation]

        # Sort by timestamp descending
        entries.sort(key=lambda e: e.timestamp, reverse=True)

        if limit:
            entries = entries[:limit]

        runs: list[TestRun] = []
        for entry in entries:
            record = self.load(entry.run_id)
            if record:
                runs.append(record.run)

        return runs

    def list_generations(self) -> list[int]:
        """List all generations that have stored runs."""
        index = self.load_index()
        return sorted({e.generation for e in index.entries if e.generation is not None})

    def get_entries_by_agent(self) -> dict[str, list[IndexEntry]]:
        """Group index entries by agent id."""
        result: dict[str, list[IndexEntry]] = {}
        for entry in self.load_index().entries:
            result.setdefault(entry.agent_id, []).append(entry)
        return result


def runs_from_sessions(sessions: list[TelemetrySession]) -> list[TestRun]:
    """Build runs from raw telemetry sessions.

    The runs carry no comparison result, so every score counts as 0 and
    only behavior-based detectors produce meaningful patterns.
    """
    runs: list[TestRun] = []
    for session in sessions:
        agent_id = session.agent_id
        if not agent_id:
            agent_id = parse_session_id(session.id)[0] or session.id
        runs.append(
            TestRun(
                agent_id=agent_id,
                telemetry=session,
                duration=float(session.duration_ms),
                success=not any(call.failed for call in session.calls),
                generation=session.generation,
            )
        )
    return runs
