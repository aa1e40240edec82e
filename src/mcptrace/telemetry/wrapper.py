"""Tool instrumentation helpers.

Wraps async tool handlers so every invocation is timed and captured. Capture
never changes what the handler returns or raises.
"""

from __future__ import annotations

import functools
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any, TypeVar

from mcptrace.telemetry.session import SessionManager

logger = logging.getLogger(__name__)

R = TypeVar("R")

ToolHandler = Callable[..., Awaitable[R]]


def instrument_tool(
    manager: SessionManager,
    tool_name: str,
    handler: ToolHandler[R],
) -> ToolHandler[R]:
    """Wrap a tool handler with telemetry capture.

    When a session id override is configured and no session is active, the
    first call starts one using the configured agent id and generation.

    Args:
        manager: Session manager receiving the captured calls.
        tool_name: Name recorded for the tool.
        handler: Async tool handler taking keyword arguments.

    Returns:
        Wrapped handler with the same signature.
    """

    @functools.wraps(handler)
    async def wrapper(*args: Any, **kwargs: Any) -> R:
        if not manager.enabled:
            return await handler(*args, **kwargs)

        if not manager.is_active and manager.config.session_id:
            await manager.start_session(manager.config.agent_id, manager.config.generation)

        params: Any = kwargs if kwargs or not args else (args[0] if len(args) == 1 else list(args))
        start = time.perf_counter()
        try:
            result = await handler(*args, **kwargs)
        except Exception as e:
            await _safe_capture(
                manager,
                tool_name,
                params,
                success=False,
                execution_time=(time.perf_counter() - start) * 1000,
                error=str(e),
            )
            raise

        await _safe_capture(
            manager,
            tool_name,
            params,
            success=True,
            execution_time=(time.perf_counter() - start) * 1000,
            result=result,
        )
        return result

    return wrapper


async def _safe_capture(manager: SessionManager, tool_name: str, params: Any, **kwargs: Any) -> None:
    try:
        await manager.capture(tool_name, params, **kwargs)
    except Exception:
        logger.exception("Failed to capture telemetry for %s", tool_name)


@asynccontextmanager
async def telemetry_session(
    manager: SessionManager,
    agent_id: str = "default",
    generation: int = 0,
) -> AsyncIterator[str]:
    """Enable telemetry and record one session for the duration of the block.

    The previous enabled flag is restored on exit.

    Yields:
        The session id.
    """
    was_enabled = manager.enabled
    manager.enable()
    try:
        session_id = await manager.start_session(agent_id, generation)
        try:
            yield session_id
        finally:
            await manager.end_session()
    finally:
        if not was_enabled:
            manager.disable()
