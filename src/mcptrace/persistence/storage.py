"""Run record storage implementation.

Handles saving run records to JSON files.
"""

import json
import logging
import platform
import uuid
from datetime import datetime
from pathlib import Path

from pydantic import ValidationError

from mcptrace import __version__
from mcptrace.models.run import TestRun
from mcptrace.persistence.models import IndexEntry, RunIndex, RunRecord

logger = logging.getLogger(__name__)


def index_entry_for(record: RunRecord) -> IndexEntry:
    run = record.run
    return IndexEntry(
        run_id=record.run_id,
        timestamp=record.timestamp,
        agent_id=run.agent_id,
        generation=run.generation,
        session_id=run.telemetry.id if run.telemetry else None,
        success=run.success,
        score=run.score,
        total_calls=len(run.calls),
    )


class RunStorage:
    """Handles saving run records to the filesystem."""

    def __init__(self, results_dir: Path) -> None:
        """Initialize the run storage.

        Args:
            results_dir: Directory to store run records in.
        """
        self._results_dir = results_dir
        self._runs_dir = results_dir / "runs"
        self._index_path = results_dir / "index.json"

    def _ensure_dirs(self) -> None:
        """Ensure storage directories exist."""
        self._runs_dir.mkdir(parents=True, exist_ok=True)

    def _generate_filename(self, record: RunRecord) -> str:
        """Generate a filename for a run record.

        Format: YYYY-MM-DDTHH-MM-SS_runid.json
        """
        timestamp_str = record.timestamp.strftime("%Y-%m-%dT%H-%M-%S")
        short_id = record.run_id[:8]
        return f"{timestamp_str}_{short_id}.json"

    def save(self, run: TestRun, timestamp: datetime | None = None) -> RunRecord:
        """Save a run to disk.

        Args:
            run: The run to save.
            timestamp: Time the run finished; defaults to now.

        Returns:
            The stored record, including its generated run id.
        """
        self._ensure_dirs()

        record = RunRecord(
            run_id=str(uuid.uuid4()),
            timestamp=timestamp or datetime.now(),
            run=run,
            mcptrace_version=__version__,
            python_version=platform.python_version(),
        )

        run_path = self._runs_dir / self._generate_filename(record)
        run_path.write_text(record.model_dump_json(indent=2))
        logger.debug("Saved run %s for agent %s to %s", record.run_id, run.agent_id, run_path)

        self._update_index(record)
        return record

    def _update_index(self, record: RunRecord) -> None:
        """Update the index with a new record."""
        index = self._load_index()
        index.entries.append(index_entry_for(record))
        index.last_updated = datetime.now()
        self._index_path.write_text(index.model_dump_json(indent=2))

    def _load_index(self) -> RunIndex:
        """Load the run index, creating if it doesn't exist."""
        if self._index_path.exists():
            data = json.loads(self._index_path.read_text())
            return RunIndex.model_validate(data)
        return RunIndex()

    def cleanup_old_runs(self, max_age_days: int = 30) -> int:
        """Remove old run records.

        Args:
            max_age_days: Remove runs older than this many days.

        Returns:
            Number of files removed.
        """
        removed = 0
        cutoff = datetime.now().timestamp() - (max_age_days * 24 * 60 * 60)

        if self._runs_dir.exists():
            for run_file in self._runs_dir.glob("*.json"):
                try:
                    data = json.loads(run_file.read_text())
                    timestamp = datetime.fromisoformat(data["timestamp"]).timestamp()
                except (json.JSONDecodeError, KeyError, ValueError):
                    continue
                if timestamp < cutoff:
                    run_file.unlink()
                    removed += 1

        # Rebuild index after cleanup
        self._rebuild_index()

        return removed

    def _rebuild_index(self) -> None:
        """Rebuild the index from remaining run files."""
        entries: list[IndexEntry] = []

        if self._runs_dir.exists():
            for run_file in self._runs_dir.glob("*.json"):
                try:
                    record = RunRecord.model_validate_json(run_file.read_text())
                except ValidationError:
                    logger.warning("Skipping unreadable run file %s", run_file)
                    continue
                entries.append(index_entry_for(record))

        # Sort by timestamp
        entries.sort(key=lambda e: e.timestamp)

        index = RunIndex(entries=entries, last_updated=datetime.now())
        self._results_dir.mkdir(parents=True, exist_ok=True)
        self._index_path.write_text(index.model_dump_json(indent=2))
