"""
tools/tool_bus.py — Tool Bus

Sits between the orchestration engine and host-supplied tool handlers.
Every ordinary (non-handoff) tool call is routed through here.

Flow:
  ParsedToolCall → ToolBus.execute()
    → Enabled check
    → Parameter validation (JSON schema subset)
    → Handler execution (sync or async, with timeout)
    → ToolResult (success or error)

call() raises typed ToolErrors. execute() never raises: each failure becomes
an error-flagged result the calling agent can read before deciding what to
do next.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import time
from typing import Any, Optional

from tally.exceptions import ToolDisabledError, ToolError, ToolTimeoutError, ToolValidationError
from tally.observability.logger import get_logger
from tally.tools.types import ExecutionContext, ToolDefinition, ToolResult

log = get_logger(__name__)

# Max output size fed back to the model; truncate beyond this
MAX_RESULT_CHARS = 8_000

DEFAULT_TIMEOUT_SECONDS = 30.0

_JSON_TYPE_MAP: dict[str, type | tuple] = {
    "string":  str,
    "integer": int,
    "number":  (int, float),
    "boolean": bool,
    "array":   list,
    "object":  dict,
}


class ToolBus:
    """
    Validates arguments and runs tool handlers.

    Usage:
        bus = ToolBus(timeout_seconds=10.0)
        result = await bus.execute(tool, {"amount": 50}, context)
    """

    def __init__(
        self,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_result_chars: int = MAX_RESULT_CHARS,
    ):
        self.timeout_seconds = timeout_seconds
        self.max_result_chars = max_result_chars

    async def execute(
        self,
        tool: ToolDefinition,
        args: dict[str, Any],
        context: ExecutionContext,
    ) -> ToolResult:
        start_ms = time.monotonic() * 1000

        log.info(
            "tool_bus.execute",
            tool=tool.name,
            tool_id=tool.id,
            agent_id=context.current_agent_id,
        )

        try:
            raw_result = await self.call(tool, args, context)
        except ToolError as e:
            duration_ms = time.monotonic() * 1000 - start_ms
            return ToolResult.error(tool.name, str(e), duration_ms=duration_ms)
        except Exception as e:
            duration_ms = time.monotonic() * 1000 - start_ms
            log.error(
                "tool_bus.execution_error",
                tool=tool.name,
                error=str(e),
                error_type=type(e).__name__,
                duration_ms=round(duration_ms, 1),
                exc_info=True,
            )
            return ToolResult.error(tool.name, str(e) or type(e).__name__,
                                    duration_ms=duration_ms)

        duration_ms = time.monotonic() * 1000 - start_ms
        content = _truncate(normalise_result(raw_result), self.max_result_chars)

        log.info(
            "tool_bus.success",
            tool=tool.name,
            duration_ms=round(duration_ms, 1),
            result_chars=len(content),
        )
        return ToolResult.success(tool.name, content, duration_ms=duration_ms)

    async def call(
        self,
        tool: ToolDefinition,
        args: dict[str, Any],
        context: ExecutionContext,
    ) -> Any:
        """
        Check, validate and run the handler, returning its raw value.

        Raises ToolDisabledError, ToolValidationError or ToolTimeoutError;
        anything the handler raises propagates unchanged.
        """
        if not tool.enabled:
            raise ToolDisabledError(tool.name, f"Tool '{tool.name}' is disabled.")

        validation_error = validate_args(args, tool.parameters)
        if validation_error:
            log.warning("tool_bus.invalid_args", tool=tool.name, error=validation_error)
            raise ToolValidationError(tool.name, validation_error)

        try:
            return await asyncio.wait_for(
                _invoke(tool, args, context),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            log.error("tool_bus.timeout", tool=tool.name, timeout_seconds=self.timeout_seconds)
            raise ToolTimeoutError(tool.name, self.timeout_seconds) from e


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────


async def _invoke(tool: ToolDefinition, args: dict[str, Any], context: ExecutionContext) -> Any:
    """Call the handler; await the result if it returned an awaitable."""
    result = tool.handler(args, context)
    if inspect.isawaitable(result):
        result = await result
    return result


def validate_args(arguments: dict[str, Any], schema: dict[str, Any]) -> Optional[str]:
    """
    Validate tool arguments against the JSON schema.
    Returns an error string if invalid, None if valid.

    Checks required fields, declared JSON types (bool is never accepted as a
    number), enum membership, and recurses into nested objects and array items.
    """
    return _validate_object(arguments, schema, prefix="")


def _validate_object(value: dict[str, Any], schema: dict[str, Any], prefix: str) -> Optional[str]:
    properties = schema.get("properties", {}) or {}

    for field in schema.get("required", []) or []:
        if value.get(field) is None:
            return f"Missing required field: '{prefix}{field}'"

    for field, item in value.items():
        prop_schema = properties.get(field)
        if prop_schema is None or item is None:
            continue  # unknown or explicitly null optional field
        error = _validate_value(item, prop_schema, f"{prefix}{field}")
        if error:
            return error
    return None


def _validate_value(value: Any, schema: dict[str, Any], path: str) -> Optional[str]:
    json_type = schema.get("type")
    expected = _JSON_TYPE_MAP.get(json_type) if json_type else None

    if expected is not None:
        # bool is a subclass of int in Python, so check it explicitly first
        if json_type in ("integer", "number") and isinstance(value, bool):
            return f"Field '{path}': expected {json_type}, got boolean"
        if not isinstance(value, expected):
            return f"Field '{path}': expected {json_type}, got {type(value).__name__}"

    enum = schema.get("enum")
    if enum and value not in enum:
        allowed = ", ".join(str(v) for v in enum)
        return f"Field '{path}': must be one of: {allowed}"

    if json_type == "object" and isinstance(value, dict):
        return _validate_object(value, schema, prefix=f"{path}.")

    if json_type == "array" and isinstance(value, list) and isinstance(schema.get("items"), dict):
        for i, element in enumerate(value):
            error = _validate_value(element, schema["items"], f"{path}[{i}]")
            if error:
                return error
    return None


def normalise_result(result: Any) -> str:
    """Convert any tool return value to a string."""
    if result is None:
        return "Done."
    if isinstance(result, str):
        return result
    if isinstance(result, (dict, list)):
        try:
            return json.dumps(result, indent=2, ensure_ascii=False, default=str)
        except (TypeError, ValueError):
            return str(result)
    return str(result)


def _truncate(text: str, max_chars: int) -> str:
    if len(text) <= max_chars:
        return text
    return (
        text[:max_chars]
        + f"\n\n[Output truncated: {len(text) - max_chars} chars omitted. "
        f"Total: {len(text)} chars]"
    )
