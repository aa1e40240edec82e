"""Telemetry data models.

Defines tool call records, capture sessions and the completion sentinel as they
appear in memory and in the per-session JSONL log files. Log files use camelCase
keys so that writers and watchers in different processes agree on the format.
"""

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

SENTINEL_TYPE = "session-complete"


class CallResult(str, Enum):
    """Outcome of a single tool invocation."""

    SUCCESS = "success"
    ERROR = "error"


class ToolCall(BaseModel):
    """Record of a tool invocation captured during a session."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    timestamp: int  # Epoch milliseconds
    tool: str
    parameters: dict[str, Any] = Field(default_factory=dict)
    execution_time: float = Field(default=0.0, ge=0.0)  # Milliseconds
    result: CallResult = CallResult.SUCCESS
    error_message: str | None = None
    result_data: Any = None

    # Session correlation (string ids so other processes can match them)
    agent_id: str | None = None
    generation: int | None = None
    session_id: str | None = None

    @property
    def failed(self) -> bool:
        return self.result == CallResult.ERROR

    def to_record(self) -> dict[str, Any]:
        """Serialize to the JSONL record shape."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class TelemetrySession(BaseModel):
    """One bounded recording interval of tool calls for one agent/generation."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    start_time: int  # Epoch milliseconds
    end_time: int | None = None
    agent_id: str
    generation: int = 0
    calls: list[ToolCall] = Field(default_factory=list)

    @property
    def duration_ms(self) -> int:
        return (self.end_time or self.start_time) - self.start_time


class SessionCompleteRecord(BaseModel):
    """Terminal log line marking a session as complete."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    type: Literal["session-complete"] = SENTINEL_TYPE
    timestamp: int
    session_id: str

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class SessionFileInfo(BaseModel):
    """A session log file found in the telemetry directory."""

    session_id: str
    path: str
    size_bytes: int
    modified_at: float  # Epoch seconds
    complete: bool = False


class TelemetryHealth(BaseModel):
    """Snapshot of a session manager's capture pipeline."""

    system_status: Literal["healthy", "degraded", "disabled"]
    enabled: bool
    state: str
    current_session_id: str | None = None
    calls_count: int = 0
    pending_writes: int = 0
    completed_writes: int = 0
    failed_writes: int = 0
    retried_writes: int = 0
    telemetry_dir: str | None = None
