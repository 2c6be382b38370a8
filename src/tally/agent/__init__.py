"""
agent/ — Tally Agent Core

Public API:
    from tally.agent import Engine, Registry, AgentDefinition

Component overview:
    AgentDefinition   One role: prompt, model overrides, tools, handoff targets
    Registry          Agents + tools; builds each agent's tool table
    SessionStore      Per-conversation message log and current agent
    context_builder   Renders the tool catalog into the system prompt
    Engine            The loop: stream → parse → handoff / tool → repeat
    RunHandle         Event stream, cancellation and result of one run
"""

from tally.agent.context_builder import build_system_prompt, build_tool_catalog
from tally.agent.engine import Engine
from tally.agent.events import EngineEvent, EventKind, RunHandle, RunResult, RunStatus
from tally.agent.registry import HandoffPolicy, Registry
from tally.agent.session import Session, SessionStore
from tally.agent.types import AgentDefinition

__all__ = [
    "Engine",
    "Registry",
    "HandoffPolicy",
    "AgentDefinition",
    "Session",
    "SessionStore",
    "EngineEvent",
    "EventKind",
    "RunHandle",
    "RunResult",
    "RunStatus",
    "build_system_prompt",
    "build_tool_catalog",
]
