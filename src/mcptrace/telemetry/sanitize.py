"""Sanitization of captured parameters and results.

Bounds log growth: long strings are truncated with a marker and nested
structures are limited in depth and size. Output is always JSON-compatible so
that a replayed log matches what was recorded in memory.
"""

from typing import Any

MAX_STRING_LENGTH = 1000
TRUNCATED_PREFIX_LENGTH = 100
TRUNCATION_MARKER = "... [truncated]"
MAX_DEPTH = 3
MAX_LIST_ITEMS = 10
MAX_DICT_KEYS = 20
DEPTH_PLACEHOLDER = "[object]"


def truncate_string(value: str) -> str:
    if len(value) > MAX_STRING_LENGTH:
        return value[:TRUNCATED_PREFIX_LENGTH] + TRUNCATION_MARKER
    return value


def sanitize_params(params: Any) -> dict[str, Any]:
    """Sanitize a tool's parameter mapping.

    Non-mapping input is stored under a single ``value`` key.
    """
    if params is None:
        return {}
    if not isinstance(params, dict):
        return {"value": sanitize_value(params)}
    return {str(key): sanitize_value(value) for key, value in params.items()}


def sanitize_value(value: Any, max_depth: int = MAX_DEPTH, depth: int = 0) -> Any:
    """Return a JSON-compatible, size-limited copy of a value."""
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, str):
        return truncate_string(value)
    if isinstance(value, bytes):
        return f"<{len(value)} bytes>"

    if isinstance(value, dict):
        if depth >= max_depth:
            return DEPTH_PLACEHOLDER
        items = list(value.items())[:MAX_DICT_KEYS]
        return {str(k): sanitize_value(v, max_depth, depth + 1) for k, v in items}

    if isinstance(value, (list, tuple, set, frozenset)):
        if depth >= max_depth:
            return DEPTH_PLACEHOLDER
        return [sanitize_value(v, max_depth, depth + 1) for v in list(value)[:MAX_LIST_ITEMS]]

    # Pydantic models and other objects
    model_dump = getattr(value, "model_dump", None)
    if callable(model_dump):
        return sanitize_value(model_dump(mode="json"), max_depth, depth)
    return truncate_string(str(value))
