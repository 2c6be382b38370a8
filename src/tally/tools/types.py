"""
tools/types.py — Tool System Data Models

Shared types used across the registry, the tool bus, the parser and the
orchestration engine.
"""

from __future__ import annotations

from typing import Any, Callable, Optional

from pydantic import BaseModel, ConfigDict, Field

from tally.brain.types import Message


def _empty_parameters() -> dict[str, Any]:
    return {"type": "object", "properties": {}, "required": []}


# ─────────────────────────────────────────────────────────────────────────────
# Handler context
# ─────────────────────────────────────────────────────────────────────────────


class ExecutionContext(BaseModel):
    """
    Built fresh for every tool invocation. Never persisted.

    history is a tuple of frozen messages: a snapshot taken when the tool
    was invoked, not the live session log.
    """
    model_config = ConfigDict(frozen=True)

    session_id: str
    current_agent_id: str
    history: tuple[Message, ...] = ()


# ─────────────────────────────────────────────────────────────────────────────
# Tool registration metadata
# ─────────────────────────────────────────────────────────────────────────────


class ToolDefinition(BaseModel):
    """
    A named capability the model may invoke.

    parameters is a JSON-schema object:
        {"type": "object",
         "properties": {"amount": {"type": "number"},
                        "kind": {"type": "string", "enum": ["income", "expense"]},
                        "tags": {"type": "array", "items": {"type": "string"}}},
         "required": ["amount"]}

    handler is called as handler(args, context) and may be sync or async.
    target_agent_id is set only on synthesized handoff tools.
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: str
    name: str
    description: str
    parameters: dict[str, Any] = Field(default_factory=_empty_parameters)
    handler: Callable[..., Any]
    target_agent_id: Optional[str] = None
    enabled: bool = True

    @property
    def is_handoff(self) -> bool:
        return self.target_agent_id is not None

    def to_catalog_entry(self) -> dict[str, Any]:
        """The model-facing description used in the tool catalog."""
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
        }


# ─────────────────────────────────────────────────────────────────────────────
# Runtime call / result types
# ─────────────────────────────────────────────────────────────────────────────


class ParsedToolCall(BaseModel):
    """A tool invocation recovered from raw model text."""
    model_config = ConfigDict(frozen=True)

    name: str
    args: dict[str, Any] = Field(default_factory=dict)


class ToolResult(BaseModel):
    """The result of a tool execution, success or failure."""
    name: str
    content: str                        # JSON string or plain text
    is_error: bool = False
    duration_ms: float = 0.0

    @classmethod
    def success(cls, name: str, content: str, duration_ms: float = 0.0) -> "ToolResult":
        return cls(name=name, content=content, is_error=False, duration_ms=duration_ms)

    @classmethod
    def error(cls, name: str, error_message: str, duration_ms: float = 0.0) -> "ToolResult":
        return cls(
            name=name,
            content=f"Error: {error_message}",
            is_error=True,
            duration_ms=duration_ms,
        )
