"""
agent/registry.py — Agent & Tool Registry

Holds every AgentDefinition and ToolDefinition known to one Engine.
There is no process-wide instance: whoever builds the Engine owns the
Registry and passes it in, so tests and tenants stay isolated.

tools_for(agent_id) is the single lookup that drives the engine loop:
  - the agent's assigned tools, in assignment order
  - followed by one synthesized tool per handoff target that exists

Synthesized tools are rebuilt on every call and never stored, so they
always reflect the current set of registered agents.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Any, Optional

from tally.agent.types import AgentDefinition
from tally.exceptions import AgentNotFoundError
from tally.observability.logger import get_logger
from tally.tools.types import ExecutionContext, ToolDefinition

log = get_logger(__name__)

_WHITESPACE = re.compile(r"\s+")


class HandoffPolicy(str, Enum):
    """How an agent reaches the agents listed in its handoffs."""
    HANDOFF = "handoff"      # transfer_<target>: target becomes the current agent
    DELEGATE = "delegate"    # call_<target>: target answers once, caller stays current


class Registry:
    """
    Maps agent ids to AgentDefinitions and tool ids to ToolDefinitions.

    Mutated only through its methods. Insertion order is preserved and is
    the order list_agents() returns.
    """

    def __init__(self):
        self._agents: dict[str, AgentDefinition] = {}
        self._tools: dict[str, ToolDefinition] = {}

    # ── Registration ──────────────────────────────────────────────────────────

    def register_agent(self, agent: AgentDefinition) -> None:
        """Insert or overwrite by id. Handoff targets are not checked here."""
        replaced = agent.id in self._agents
        self._agents[agent.id] = agent
        log.debug("registry.agent_registered", agent_id=agent.id, replaced=replaced)

    def register_tool(self, tool: ToolDefinition) -> None:
        """Insert or overwrite by id."""
        replaced = tool.id in self._tools
        self._tools[tool.id] = tool
        log.debug("registry.tool_registered", tool_id=tool.id, name=tool.name, replaced=replaced)

    def unregister_tool(self, tool_id: str) -> bool:
        """Remove a tool. Returns False if it was not registered."""
        removed = self._tools.pop(tool_id, None) is not None
        if removed:
            log.debug("registry.tool_unregistered", tool_id=tool_id)
        return removed

    def enable_tool(self, tool_id: str) -> None:
        self._set_enabled(tool_id, True)

    def disable_tool(self, tool_id: str) -> None:
        self._set_enabled(tool_id, False)

    # ── Lookup ────────────────────────────────────────────────────────────────

    def get_agent(self, agent_id: str) -> Optional[AgentDefinition]:
        return self._agents.get(agent_id)

    def require_agent(self, agent_id: str) -> AgentDefinition:
        """Like get_agent(), but raises AgentNotFoundError when absent."""
        agent = self._agents.get(agent_id)
        if agent is None:
            raise AgentNotFoundError(agent_id)
        return agent

    def get_tool(self, tool_id: str) -> Optional[ToolDefinition]:
        return self._tools.get(tool_id)

    def find_tool_by_name(self, name: str) -> Optional[ToolDefinition]:
        """Registered tools only; synthesized handoff tools are not stored."""
        for tool in self._tools.values():
            if tool.name == name:
                return tool
        return None

    def list_agents(self) -> list[AgentDefinition]:
        return list(self._agents.values())

    def list_tools(self, enabled_only: bool = False) -> list[ToolDefinition]:
        tools = list(self._tools.values())
        if enabled_only:
            tools = [t for t in tools if t.enabled]
        return tools

    def tools_for(
        self,
        agent_id: str,
        policy: HandoffPolicy = HandoffPolicy.HANDOFF,
    ) -> list[ToolDefinition]:
        """
        The tool table for one agent. Unknown agent → empty list.

        Assigned tool ids that do not resolve, or resolve to a disabled tool,
        are skipped. Handoff ids that do not resolve are skipped.
        """
        agent = self._agents.get(agent_id)
        if agent is None:
            return []

        tools: list[ToolDefinition] = []
        for tool_id in agent.tools:
            tool = self._tools.get(tool_id)
            if tool is not None and tool.enabled:
                tools.append(tool)

        for target_id in agent.handoffs:
            target = self._agents.get(target_id)
            if target is None:
                continue
            if policy == HandoffPolicy.DELEGATE:
                tools.append(_delegate_tool(target))
            else:
                tools.append(_handoff_tool(target))
        return tools

    def disabled_tool_names(self, agent_id: str) -> set[str]:
        """Names of tools assigned to agent_id that are currently disabled."""
        agent = self._agents.get(agent_id)
        if agent is None:
            return set()
        return {
            tool.name
            for tool_id in agent.tools
            if (tool := self._tools.get(tool_id)) is not None and not tool.enabled
        }

    # ── Private ───────────────────────────────────────────────────────────────

    def _set_enabled(self, tool_id: str, enabled: bool) -> None:
        tool = self._tools.get(tool_id)
        if tool is None:
            log.warning("registry.unknown_tool", tool_id=tool_id)
            return
        # Replace rather than mutate: tool tables already handed out stay unchanged
        self._tools[tool_id] = tool.model_copy(update={"enabled": enabled})

    def __len__(self) -> int:
        return len(self._agents)

    def __repr__(self) -> str:
        return (
            f"<Registry agents={list(self._agents.keys())} "
            f"tools={list(self._tools.keys())}>"
        )


# ─────────────────────────────────────────────────────────────────────────────
# Synthesized tools
# ─────────────────────────────────────────────────────────────────────────────


def _handoff_marker(args: dict[str, Any], context: ExecutionContext) -> dict[str, str]:
    """Never executed by the engine; the handoff branch acts on target_agent_id."""
    return {"status": "transferred"}


def _delegate_marker(args: dict[str, Any], context: ExecutionContext) -> dict[str, str]:
    """Never executed by the engine; the delegate branch calls the worker directly."""
    return {"status": "delegated"}


def _slug(name: str) -> str:
    return _WHITESPACE.sub("_", name.strip())


def _handoff_tool(target: AgentDefinition) -> ToolDefinition:
    return ToolDefinition(
        id=f"transfer_to_{target.id}",
        name=f"transfer_to_{_slug(target.name)}",
        description=f"Transfer the conversation to {target.name}. Role: {target.description}",
        parameters={
            "type": "object",
            "properties": {
                "reason": {
                    "type": "string",
                    "description": "Reason for the transfer",
                },
            },
            "required": ["reason"],
        },
        handler=_handoff_marker,
        target_agent_id=target.id,
    )


def _delegate_tool(target: AgentDefinition) -> ToolDefinition:
    return ToolDefinition(
        id=f"call_{target.id}",
        name=f"call_{_slug(target.name)}",
        description=f"Ask {target.name} to handle a sub-task and return its answer. "
                    f"Role: {target.description}",
        parameters={
            "type": "object",
            "properties": {
                "message": {
                    "type": "string",
                    "description": "The instruction or question for this agent",
                },
            },
            "required": ["message"],
        },
        handler=_delegate_marker,
        target_agent_id=target.id,
    )
