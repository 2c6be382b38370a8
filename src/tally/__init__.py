"""
tally — Multi-agent conversation orchestration for a personal-finance assistant

Public API:
    from tally import Engine, Registry, AgentDefinition, ToolDefinition, StreamingClient

    registry = Registry()
    registry.register_agent(AgentDefinition(id="assistant", name="Assistant"))
    async with StreamingClient(api_key=...) as llm:
        engine = Engine(registry, llm)
        session_id = engine.create_session()
        result = await engine.chat(session_id, "How much did I spend this week?")
"""

from tally.agent import (
    AgentDefinition,
    Engine,
    EngineEvent,
    EventKind,
    HandoffPolicy,
    Registry,
    RunHandle,
    RunResult,
    RunStatus,
    SessionStore,
)
from tally.brain import BaseLLMClient, Message, Role, StreamingClient
from tally.tools import ExecutionContext, ParsedToolCall, ToolBus, ToolDefinition, parse_tool_call

__version__ = "0.1.0"

__all__ = [
    "Engine",
    "Registry",
    "HandoffPolicy",
    "AgentDefinition",
    "SessionStore",
    "EngineEvent",
    "EventKind",
    "RunHandle",
    "RunResult",
    "RunStatus",
    "BaseLLMClient",
    "StreamingClient",
    "Message",
    "Role",
    "ExecutionContext",
    "ParsedToolCall",
    "ToolBus",
    "ToolDefinition",
    "parse_tool_call",
]
