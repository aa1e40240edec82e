"""Event log store implementation.

Each capture session owns one append-only JSONL file in the telemetry
directory. Tool calls are written one JSON object per line and a single
``session-complete`` sentinel line marks the session as finished. The store
never rewrites a line.
"""

from __future__ import annotations

import asyncio
import errno
import json
import logging
import os
import time
from collections.abc import Sequence
from datetime import timedelta
from pathlib import Path
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from mcptrace.exceptions import TelemetryDirectoryError
from mcptrace.models.telemetry import (
    SENTINEL_TYPE,
    SessionFileInfo,
    TelemetrySession,
    ToolCall,
)

logger = logging.getLogger(__name__)

LOG_SUFFIX = ".jsonl"

# Errors that mean the cached directory can no longer be trusted
_DIRECTORY_ERRNOS = frozenset({errno.ENOENT, errno.EACCES, errno.EPERM, errno.EROFS})


def safe_session_filename(session_id: str) -> str:
    """Map a session id to a deterministic, filesystem-safe file stem."""
    return "".join(c if c.isalnum() or c in "-_." else "_" for c in session_id)


class EventLogStore:
    """Append-only per-session JSONL storage."""

    def __init__(
        self,
        telemetry_dir: Path | str | None = None,
        *,
        fallback_dirs: Sequence[Path | str] = (),
    ) -> None:
        """Initialize the event log store.

        Args:
            telemetry_dir: Preferred telemetry directory (from configuration).
            fallback_dirs: Directories tried in order when the preferred one is
                missing or not writable.
        """
        self._configured_dir = Path(telemetry_dir) if telemetry_dir else None
        self._fallback_dirs = [Path(d) for d in fallback_dirs]
        self._resolved_dir: Path | None = None

    # -- directory resolution ------------------------------------------------

    def candidate_dirs(self) -> list[Path]:
        """Directories in resolution order."""
        candidates: list[Path] = []
        if self._configured_dir is not None:
            candidates.append(self._configured_dir)
        candidates.extend(d for d in self._fallback_dirs if d not in candidates)
        return candidates

    def resolve_directory(self) -> Path:
        """Return the telemetry directory, resolving and caching it on first use.

        Raises:
            TelemetryDirectoryError: If no candidate directory is writable.
        """
        if self._resolved_dir is not None:
            if self._is_writable(self._resolved_dir):
                return self._resolved_dir
            logger.warning(
                "Telemetry directory %s is no longer accessible, re-resolving",
                self._resolved_dir,
            )
            self._resolved_dir = None

        for candidate in self.candidate_dirs():
            try:
                candidate.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                logger.debug("Cannot create telemetry directory %s: %s", candidate, e)
                continue
            if self._is_writable(candidate):
                if candidate != self._configured_dir and self._configured_dir is not None:
                    logger.warning("Using fallback telemetry directory %s", candidate)
                self._resolved_dir = candidate
                return candidate
            logger.debug("Telemetry directory %s is not writable", candidate)

        tried = ", ".join(str(c) for c in self.candidate_dirs()) or "(none configured)"
        msg = f"No writable telemetry directory available (tried: {tried})"
        raise TelemetryDirectoryError(msg)

    def invalidate_directory(self) -> None:
        """Forget the cached directory so the next write re-resolves it."""
        self._resolved_dir = None

    @property
    def directory(self) -> Path | None:
        """The cached telemetry directory, if one has been resolved."""
        return self._resolved_dir

    def _read_directories(self) -> list[Path]:
        """Existing directories to search on reads, cached directory first."""
        directories: list[Path] = []
        if self._resolved_dir is not None:
            directories.append(self._resolved_dir)
        for candidate in self.candidate_dirs():
            if candidate not in directories and candidate.is_dir():
                directories.append(candidate)
        return directories

    @staticmethod
    def _is_writable(path: Path) -> bool:
        return path.is_dir() and os.access(path, os.W_OK | os.X_OK)

    def session_path(self, session_id: str, directory: Path | None = None) -> Path | None:
        """Path of a session's log file, or None if no directory is known.

        Without an explicit directory, the first searched directory holding
        the file wins.
        """
        filename = f"{safe_session_filename(session_id)}{LOG_SUFFIX}"
        if directory is not None:
            return directory / filename
        directories = self._read_directories()
        for base in directories:
            path = base / filename
            if path.exists():
                return path
        return directories[0] / filename if directories else None

    # -- writing -------------------------------------------------------------

    async def append(self, session_id: str, record: dict[str, Any]) -> None:
        """Durably append one JSON record to a session's log file.

        Args:
            session_id: Session the record belongs to.
            record: JSON-serializable record.

        Raises:
            OSError: On write failure (classified by the caller's retry policy).
            TelemetryDirectoryError: If no directory can be resolved.
        """
        line = json.dumps(record, separators=(",", ":"), default=str) + "\n"
        await asyncio.to_thread(self._append_line, session_id, line)

    def _append_line(self, session_id: str, line: str) -> None:
        directory = self.resolve_directory()
        path = directory / f"{safe_session_filename(session_id)}{LOG_SUFFIX}"
        try:
            with path.open("a", encoding="utf-8") as f:
                f.write(line)
                f.flush()
                os.fsync(f.fileno())
        except OSError as e:
            if e.errno in _DIRECTORY_ERRNOS:
                self.invalidate_directory()
            raise

    # -- reading -------------------------------------------------------------

    def read_records(self, session_id: str) -> list[dict[str, Any]]:
        """Read all well-formed JSON records from a session's log file.

        Unparseable lines (including a partially written final line) are
        skipped with a warning. A missing file yields an empty list.
        """
        path = self.session_path(session_id)
        if path is None or not path.exists():
            return []
        return self._read_file(path)

    @staticmethod
    def _read_file(path: Path) -> list[dict[str, Any]]:
        try:
            content = path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.warning("Could not read telemetry file %s: %s", path, e)
            return []

        records: list[dict[str, Any]] = []
        for line_number, line in enumerate(content.splitlines(), start=1):
            if not line.strip():
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError:
                logger.warning("Skipping unparseable line %d in %s", line_number, path)
                continue
            if not isinstance(record, dict):
                logger.warning("Skipping non-object line %d in %s", line_number, path)
                continue
            records.append(record)
        return records

    def has_sentinel(self, session_id: str) -> bool:
        """Return True once the session's completion sentinel is on disk."""
        return any(_is_sentinel(r) for r in self.read_records(session_id))

    def file_size(self, session_id: str) -> int | None:
        """Size of the session's log file in bytes, or None if it does not exist."""
        path = self.session_path(session_id)
        if path is None:
            return None
        try:
            return path.stat().st_size
        except FileNotFoundError:
            return None

    def read_session(self, session_id: str) -> TelemetrySession | None:
        """Rebuild a session from its log file.

        Start time comes from the first call, end time from the sentinel (or
        the last call when the sentinel is missing), and agent/generation from
        the first call that carries them.

        Returns:
            The reconstructed session, or None if the file has no usable records.
        """
        records = self.read_records(session_id)
        session_id = _recorded_session_id(records) or session_id
        calls: list[ToolCall] = []
        sentinel_timestamp: int | None = None

        for record in records:
            if _is_sentinel(record):
                timestamp = record.get("timestamp")
                if isinstance(timestamp, int):
                    sentinel_timestamp = timestamp
                continue
            try:
                calls.append(ToolCall.model_validate(record))
            except PydanticValidationError:
                logger.warning("Skipping malformed tool call record in session %s", session_id)

        if not calls and sentinel_timestamp is None:
            return None

        agent_id = next((c.agent_id for c in calls if c.agent_id), None)
        generation = next((c.generation for c in calls if c.generation is not None), None)
        if agent_id is None or generation is None:
            parsed_agent, parsed_generation = parse_session_id(session_id)
            agent_id = agent_id or parsed_agent or "unknown"
            generation = generation if generation is not None else parsed_generation

        start_time = calls[0].timestamp if calls else sentinel_timestamp
        end_time = sentinel_timestamp if sentinel_timestamp is not None else calls[-1].timestamp

        return TelemetrySession(
            id=session_id,
            start_time=start_time or 0,
            end_time=end_time,
            agent_id=agent_id,
            generation=generation or 0,
            calls=calls,
        )

    def list_sessions(self) -> list[SessionFileInfo]:
        """List session log files across all searched directories, newest first.

        A session found in more than one directory is listed once, from the
        directory reads would use.
        """
        sessions: list[SessionFileInfo] = []
        seen: set[str] = set()
        for directory in self._read_directories():
            for path in directory.glob(f"*{LOG_SUFFIX}"):
                if path.name in seen:
                    continue
                try:
                    stats = path.stat()
                except FileNotFoundError:
                    continue
                seen.add(path.name)
                records = self._read_file(path)
                sessions.append(
                    SessionFileInfo(
                        session_id=_recorded_session_id(records)
                        or path.name[: -len(LOG_SUFFIX)],
                        path=str(path),
                        size_bytes=stats.st_size,
                        modified_at=stats.st_mtime,
                        complete=any(_is_sentinel(r) for r in records),
                    )
                )

        sessions.sort(key=lambda s: s.modified_at, reverse=True)
        return sessions

    def load_all_sessions(self, limit: int | None = None) -> list[TelemetrySession]:
        """Load sessions from disk, newest first."""
        infos = self.list_sessions()
        if limit:
            infos = infos[:limit]

        sessions: list[TelemetrySession] = []
        for info in infos:
            session = self.read_session(info.session_id)
            if session is not None:
                sessions.append(session)
        return sessions

    def cleanup(self, max_age: timedelta) -> int:
        """Remove session files older than max_age.

        Returns:
            Number of files removed.
        """
        cutoff = time.time() - max_age.total_seconds()
        removed = 0
        for info in self.list_sessions():
            if info.modified_at >= cutoff:
                continue
            try:
                Path(info.path).unlink()
                removed += 1
                logger.info("Removed old telemetry file %s", info.path)
            except OSError as e:
                logger.warning("Failed to remove old telemetry file %s: %s", info.path, e)
        return removed


def _is_sentinel(record: dict[str, Any]) -> bool:
    return record.get("type") == SENTINEL_TYPE


def _recorded_session_id(records: list[dict[str, Any]]) -> str | None:
    """Session id as written in the records; file stems are sanitized."""
    for record in records:
        session_id = record.get("sessionId")
        if isinstance(session_id, str) and session_id:
            return session_id
    return None


def parse_session_id(session_id: str) -> tuple[str | None, int]:
    """Extract agent id and generation from a ``<ts>-<agent>-gen<n>`` session id."""
    head, sep, generation_str = session_id.rpartition("-gen")
    if not sep or not generation_str.isdigit():
        return None, 0
    _, dash, agent_id = head.partition("-")
    return (agent_id or None) if dash else None, int(generation_str)
