"""Persistence module for storing and retrieving run records."""

from mcptrace.persistence.loader import RunLoader, runs_from_sessions
from mcptrace.persistence.models import IndexEntry, RunIndex, RunRecord
from mcptrace.persistence.storage import RunStorage

__all__ = [
    "IndexEntry",
    "RunIndex",
    "RunLoader",
    "RunRecord",
    "RunStorage",
    "runs_from_sessions",
]
