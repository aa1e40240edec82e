"""Tests for tool instrumentation helpers."""

from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from mcptrace.models.config import TelemetryConfig
from mcptrace.telemetry.session import SessionManager, SessionState
from mcptrace.telemetry.store import EventLogStore
from mcptrace.telemetry.wrapper import instrument_tool, telemetry_session


@pytest.fixture
def manager(tmp_path: Path) -> SessionManager:
    """Enabled session manager writing to a temporary directory."""
    return SessionManager(EventLogStore(tmp_path / "telemetry"))


class TestInstrumentTool:
    """Tests for the instrument_tool wrapper."""

    @pytest.mark.asyncio
    async def test_captures_success(self, manager: SessionManager) -> None:
        """Successful calls are recorded with their parameters."""

        async def add_text(text: str, size: int = 12) -> dict:
            return {"frame": "f1", "text": text}

        wrapped = instrument_tool(manager, "add_text", add_text)
        await manager.start_session("agent-1", 0)

        result = await wrapped(text="hello", size=14)

        assert result == {"frame": "f1", "text": "hello"}
        call = manager.get_calls()[0]
        assert call.tool == "add_text"
        assert call.parameters == {"text": "hello", "size": 14}
        assert not call.failed
        assert call.execution_time >= 0
        assert call.result_data == {"frame": "f1", "text": "hello"}
        await manager.end_session()

    @pytest.mark.asyncio
    async def test_captures_and_reraises_errors(self, manager: SessionManager) -> None:
        """Tool errors are recorded and re-raised unchanged."""

        async def broken(**_: object) -> None:
            raise RuntimeError("style not found")

        wrapped = instrument_tool(manager, "apply_style", broken)
        await manager.start_session("agent-1", 0)

        with pytest.raises(RuntimeError, match="style not found"):
            await wrapped(name="H1")

        call = manager.get_calls()[0]
        assert call.failed
        assert call.error_message == "style not found"
        await manager.end_session()

    @pytest.mark.asyncio
    async def test_capture_failure_does_not_escape(self, manager: SessionManager) -> None:
        """The tool result is returned even when capture blows up."""
        handler = AsyncMock(return_value="ok")
        wrapped = instrument_tool(manager, "x", handler)
        await manager.start_session("agent-1", 0)

        with patch.object(manager, "capture", side_effect=RuntimeError("boom")):
            assert await wrapped(a=1) == "ok"

    @pytest.mark.asyncio
    async def test_disabled_skips_capture(self, manager: SessionManager) -> None:
        """Disabled telemetry calls the handler directly."""
        manager.disable()
        handler = AsyncMock(return_value=5)
        wrapped = instrument_tool(manager, "x", handler)

        assert await wrapped(a=1) == 5
        assert manager.get_calls() == []

    @pytest.mark.asyncio
    async def test_auto_starts_session_with_override(self, tmp_path: Path) -> None:
        """A configured session id starts a session on the first call."""
        config = TelemetryConfig(session_id="run-42", agent_id="driver", generation=2)
        manager = SessionManager(EventLogStore(tmp_path / "telemetry"), config=config)
        wrapped = instrument_tool(manager, "x", AsyncMock(return_value=None))

        await wrapped(a=1)

        assert manager.state == SessionState.ACTIVE
        session = manager.current_session()
        assert session is not None
        assert session.id == "run-42"
        assert session.agent_id == "driver"
        assert session.generation == 2
        await manager.end_session()

    @pytest.mark.asyncio
    async def test_positional_argument_recorded_as_value(self, manager: SessionManager) -> None:
        """A single positional argument is stored under ``value``."""
        wrapped = instrument_tool(manager, "x", AsyncMock(return_value=None))
        await manager.start_session("agent-1", 0)

        await wrapped("payload")

        assert manager.get_calls()[0].parameters == {"value": "payload"}
        await manager.end_session()


class TestTelemetrySession:
    """Tests for the telemetry_session context manager."""

    @pytest.mark.asyncio
    async def test_records_and_ends(self, manager: SessionManager) -> None:
        """The block runs inside an active session that is ended on exit."""
        manager.disable()

        async with telemetry_session(manager, "agent-1", 1) as session_id:
            assert manager.is_active
            await manager.capture("x", {}, success=True, execution_time=1.0)

        assert not manager.is_active
        assert not manager.enabled
        assert manager.store.has_sentinel(session_id)

    @pytest.mark.asyncio
    async def test_ends_on_error(self, manager: SessionManager) -> None:
        """The session ends even when the block raises."""
        with pytest.raises(ValueError):
            async with telemetry_session(manager, "agent-1") as session_id:
                raise ValueError("agent crashed")

        assert not manager.is_active
        assert manager.store.has_sentinel(session_id)
