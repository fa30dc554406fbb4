"""Tool execution helpers used by the tool call round.

Arguments accumulated from a stream are parsed here for the first time;
malformed JSON is replaced by an empty argument set so a bad fragment never
aborts the turn.
"""

from __future__ import annotations

import inspect
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Mapping, Protocol, runtime_checkable

from .types import ToolCallInvocation

__all__ = [
    "ToolExecutor",
    "ToolExecutionResult",
    "format_tool_result_content",
    "parse_tool_arguments",
    "run_tool_call",
]

LOGGER = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Result Types
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ToolExecutionResult:
    """Result from executing a single tool call.

    Attributes:
        call_id: The ID of the tool call.
        name: Name of the tool that was called.
        success: Whether the executor returned normally.
        result: Content recorded in the tool message.
        error: Error message if the executor raised.
        duration_ms: Execution time in milliseconds.
    """

    call_id: str
    name: str
    success: bool
    result: str
    error: str | None = None
    duration_ms: float = 0.0

    @classmethod
    def from_success(cls, call_id: str, name: str, result: Any, duration_ms: float = 0.0) -> ToolExecutionResult:
        return cls(
            call_id=call_id,
            name=name,
            success=True,
            result=format_tool_result_content(result),
            duration_ms=duration_ms,
        )

    @classmethod
    def from_error(cls, call_id: str, name: str, error: str, duration_ms: float = 0.0) -> ToolExecutionResult:
        return cls(
            call_id=call_id,
            name=name,
            success=False,
            result=f"Error: {error}",
            error=error,
            duration_ms=duration_ms,
        )


# -----------------------------------------------------------------------------
# Protocols
# -----------------------------------------------------------------------------


@runtime_checkable
class ToolExecutor(Protocol):
    """Caller-supplied tool implementation.

    Executors return a descriptive string for unknown tools instead of
    raising. The result may be returned directly or as an awaitable.
    """

    def execute(self, name: str, arguments: Mapping[str, Any]) -> str | Awaitable[str]:
        ...


# -----------------------------------------------------------------------------
# Helper Functions
# -----------------------------------------------------------------------------


def format_tool_result_content(result: Any) -> str:
    """Format a tool result for inclusion in a tool message."""
    if result is None:
        return "null"
    if isinstance(result, str):
        return result
    if isinstance(result, bool):
        return "true" if result else "false"
    if isinstance(result, (int, float)):
        return str(result)
    if isinstance(result, (dict, list)):
        try:
            return json.dumps(result, ensure_ascii=False, indent=2)
        except (TypeError, ValueError):
            return str(result)
    return str(result)


def parse_tool_arguments(arguments: str, *, tool_name: str = "") -> dict[str, Any]:
    """Parse accumulated tool arguments, falling back to ``{}``.

    Args:
        arguments: Raw JSON string concatenated from stream fragments.
        tool_name: Used only for logging.

    Returns:
        The parsed object, or an empty dict when the string is blank, not
        valid JSON, or not a JSON object.
    """
    if not arguments or not arguments.strip():
        return {}
    try:
        parsed = json.loads(arguments)
    except json.JSONDecodeError as exc:
        LOGGER.warning("Malformed arguments for tool %s; using {}: %s", tool_name or "?", exc)
        return {}
    if not isinstance(parsed, dict):
        LOGGER.warning(
            "Arguments for tool %s must be a JSON object, got %s; using {}",
            tool_name or "?",
            type(parsed).__name__,
        )
        return {}
    return parsed


# -----------------------------------------------------------------------------
# Tool Execution
# -----------------------------------------------------------------------------


async def run_tool_call(call: ToolCallInvocation, executor: ToolExecutor) -> ToolExecutionResult:
    """Execute one assembled invocation with ``executor``."""

    start_time = time.perf_counter()
    arguments = parse_tool_arguments(call.arguments, tool_name=call.name)
    try:
        raw_result = executor.execute(call.name, arguments)
        if inspect.isawaitable(raw_result):
            raw_result = await raw_result
    except Exception as exc:
        duration_ms = (time.perf_counter() - start_time) * 1000
        error_msg = str(exc) or type(exc).__name__
        LOGGER.warning("Tool %s failed: %s", call.name, error_msg)
        return ToolExecutionResult.from_error(call.id, call.name, error_msg, duration_ms)

    duration_ms = (time.perf_counter() - start_time) * 1000
    LOGGER.debug("Tool %s completed in %.1fms", call.name, duration_ms)
    return ToolExecutionResult.from_success(call.id, call.name, raw_result, duration_ms)
