"""Persistence data models.

Defines the structure for run records to be stored and retrieved.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from mcptrace.models.run import TestRun


class RunRecord(BaseModel):
    """Stored run with the metadata needed to find it again."""

    run_id: str  # UUID v4
    timestamp: datetime
    run: TestRun

    # Environment
    mcptrace_version: str
    python_version: str


class IndexEntry(BaseModel):
    """Entry in the run index for fast lookup."""

    run_id: str
    timestamp: datetime
    agent_id: str
    generation: int | None = None
    session_id: str | None = None
    success: bool
    score: float
    total_calls: int = 0


class RunIndex(BaseModel):
    """Index of all stored runs."""

    entries: list[IndexEntry] = Field(default_factory=list)
    last_updated: datetime = Field(default_factory=datetime.now)
