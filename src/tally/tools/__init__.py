"""
tools/ — Tally Tool System

Public interface for the tool system.

Usage:
    from tally.tools import ToolBus, ToolDefinition, parse_tool_call

    bus = ToolBus(timeout_seconds=30.0)
    call = parse_tool_call(model_output)
    if call is not None:
        result = await bus.execute(tool, call.args, context)
"""

from __future__ import annotations

from tally.tools.parser import clean_json_text, parse_tool_call
from tally.tools.tool_bus import ToolBus, normalise_result, validate_args
from tally.tools.types import (
    ExecutionContext,
    ParsedToolCall,
    ToolDefinition,
    ToolResult,
)

__all__ = [
    "ToolBus",
    "parse_tool_call",
    "clean_json_text",
    "validate_args",
    "normalise_result",
    # Types
    "ExecutionContext",
    "ParsedToolCall",
    "ToolDefinition",
    "ToolResult",
]
