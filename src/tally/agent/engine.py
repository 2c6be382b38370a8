"""
agent/engine.py — Orchestration Engine

Drives a chat model through a graph of agents. For each run:

    1. Append the user message to the session log
    2. Resolve the session's current agent and its tool table
    3. Stream the model answer (deltas forwarded as text_delta events)
    4. Append the raw answer as an assistant message
    5. Parse it for a tool call:
         none          → completed, run ends
         unknown tool  → system error note, next step (self-correction)
         handoff tool  → switch current agent, transfer note, next step
         ordinary tool → ToolBus, tool message, next step
    6. Repeat until completion, cancellation or max_steps

Handoff and tool execution never end a run on their own: the current agent
must see the result and decide what to do next.

Two handoff policies are supported (HandoffPolicy):
    HANDOFF   the target agent becomes current and sees the whole log
    DELEGATE  the target answers one `message` from its bare system prompt,
              with no shared history and no tools; its answer comes back as a
              tool message and the caller stays current

Usage:
    engine = Engine(registry, llm_client)
    session_id = engine.create_session("assistant")
    handle = engine.run(session_id, "I spent 12 on lunch")
    async for event in handle.events():
        ...
    result = await handle.wait()
"""

from __future__ import annotations

import asyncio
import json
import time
from typing import Optional

from tally.agent.context_builder import build_system_prompt
from tally.agent.events import EngineEvent, EventKind, RunHandle, RunResult, RunStatus
from tally.agent.registry import HandoffPolicy, Registry
from tally.agent.session import SessionStore
from tally.agent.types import AgentDefinition
from tally.brain.llm_client import BaseLLMClient
from tally.brain.types import Message
from tally.exceptions import (
    ConfigurationError,
    SessionNotFoundError,
    StepLimitExceededError,
    StreamCancelledError,
    TallyError,
    ToolDisabledError,
    ToolNotFoundError,
)
from tally.observability.logger import bind_session, clear_session, get_logger
from tally.tools.parser import parse_tool_call
from tally.tools.tool_bus import ToolBus
from tally.tools.types import ExecutionContext, ParsedToolCall, ToolDefinition

log = get_logger(__name__)

DEFAULT_MAX_STEPS = 15
DEFAULT_TEMPERATURE = 0.5


class Engine:
    """
    Owns the session store and runs the agent loop for each user input.

    The Registry is passed in and shared; the Engine never creates one.
    Runs on different sessions may execute concurrently.
    """

    def __init__(
        self,
        registry: Registry,
        llm_client: BaseLLMClient,
        sessions: Optional[SessionStore] = None,
        tool_bus: Optional[ToolBus] = None,
        max_steps: int = DEFAULT_MAX_STEPS,
        handoff_policy: HandoffPolicy = HandoffPolicy.HANDOFF,
        default_model: Optional[str] = None,
        default_temperature: float = DEFAULT_TEMPERATURE,
        default_max_tokens: Optional[int] = None,
    ):
        if max_steps < 1:
            raise ConfigurationError("max_steps must be >= 1")
        self.registry = registry
        self.sessions = sessions or SessionStore()
        self._llm = llm_client
        self._bus = tool_bus or ToolBus()
        self.max_steps = max_steps
        self.handoff_policy = HandoffPolicy(handoff_policy)
        self.default_model = default_model
        self.default_temperature = default_temperature
        self.default_max_tokens = default_max_tokens
        self._active: dict[str, RunHandle] = {}

    @classmethod
    def from_settings(cls, settings, registry: Registry, llm_client: BaseLLMClient) -> "Engine":
        """Build an Engine from the tally Settings object."""
        return cls(
            registry=registry,
            llm_client=llm_client,
            tool_bus=ToolBus(
                timeout_seconds=settings.engine.tool_timeout_seconds,
                max_result_chars=settings.engine.max_result_chars,
            ),
            max_steps=settings.engine.max_steps,
            handoff_policy=settings.engine.handoff_policy,
            default_model=settings.llm.default_model,
            default_temperature=settings.llm.temperature,
            default_max_tokens=settings.llm.max_tokens,
        )

    # ─────────────────────────────────────────────────────────────────────────
    # Public: sessions
    # ─────────────────────────────────────────────────────────────────────────

    def create_session(self, initial_agent_id: Optional[str] = None) -> str:
        """Start a session on initial_agent_id, or on the first registered agent."""
        if initial_agent_id is None:
            agents = self.registry.list_agents()
            if not agents:
                raise ConfigurationError("No agents registered")
            initial_agent_id = agents[0].id
        self.registry.require_agent(initial_agent_id)
        return self.sessions.create_session(initial_agent_id)

    def get_messages(self, session_id: str, limit: Optional[int] = None) -> list[Message]:
        if self.sessions.get_session(session_id) is None:
            raise SessionNotFoundError(session_id)
        return self.sessions.get_messages(session_id, limit)

    def set_current_agent(self, session_id: str, agent_id: str) -> None:
        if self.sessions.get_session(session_id) is None:
            raise SessionNotFoundError(session_id)
        self.registry.require_agent(agent_id)
        self.sessions.set_current_agent(session_id, agent_id)

    # ─────────────────────────────────────────────────────────────────────────
    # Public: runs
    # ─────────────────────────────────────────────────────────────────────────

    def run(self, session_id: str, user_input: str, max_steps: Optional[int] = None) -> RunHandle:
        """
        Schedule one run and return its handle immediately.

        Raises SessionNotFoundError synchronously for an unknown session.
        Must be called from inside a running event loop.
        """
        if self.sessions.get_session(session_id) is None:
            raise SessionNotFoundError(session_id)
        budget = max_steps if max_steps is not None else self.max_steps
        if budget < 1:
            raise ConfigurationError("max_steps must be >= 1")

        handle = RunHandle(session_id=session_id)
        task = asyncio.get_running_loop().create_task(self._run(handle, user_input, budget))
        handle._task = task
        self._active[handle.run_id] = handle
        task.add_done_callback(lambda _t: self._active.pop(handle.run_id, None))
        return handle

    async def chat(self, session_id: str, text: str, max_steps: Optional[int] = None) -> RunResult:
        """Run and wait for the result, ignoring intermediate events."""
        return await self.run(session_id, text, max_steps).wait()

    def stop(self, session_id: Optional[str] = None) -> int:
        """
        Cancel active runs (all of them, or only those on session_id).
        Returns the number of runs signalled.
        """
        stopped = 0
        for handle in list(self._active.values()):
            if session_id is None or handle.session_id == session_id:
                handle.cancel()
                stopped += 1
        if stopped:
            log.info("engine.stop", session_id=session_id, runs=stopped)
        return stopped

    @property
    def active_runs(self) -> int:
        return len(self._active)

    # ─────────────────────────────────────────────────────────────────────────
    # The loop
    # ─────────────────────────────────────────────────────────────────────────

    async def _run(self, handle: RunHandle, user_input: str, max_steps: int) -> RunResult:
        session_id = handle.session_id
        bind_session(session_id, run_id=handle.run_id)
        t0 = time.monotonic()
        step = 0
        agent_id: Optional[str] = None

        try:
            session = self.sessions.get_session(session_id)
            if session is None:
                raise SessionNotFoundError(session_id)
            agent_id = session.current_agent_id

            log.info("engine.run_start", agent_id=agent_id, max_steps=max_steps,
                     user_input=user_input[:120])
            handle.emit(EngineEvent(EventKind.STARTED, session_id, agent_id=agent_id))

            if user_input and user_input.strip():
                self.sessions.append_message(session_id, Message.user(user_input))

            while step < max_steps:
                if handle.cancel_requested:
                    return self._cancelled(handle, step, agent_id)
                step += 1

                session = self.sessions.get_session(session_id)
                if session is None:
                    raise SessionNotFoundError(session_id)
                agent = self.registry.require_agent(session.current_agent_id)
                agent_id = agent.id
                tools = self.registry.tools_for(agent.id, self.handoff_policy)

                log.info("engine.step", step=step, agent_id=agent.id, tools=len(tools))

                try:
                    output = await self._generate(handle, agent, tools)
                except StreamCancelledError:
                    return self._cancelled(handle, step, agent_id)

                self.sessions.append_message(
                    session_id, Message.assistant(output, name=agent.name, agent_id=agent.id)
                )

                call = parse_tool_call(output)
                if call is None:
                    duration_ms = (time.monotonic() - t0) * 1000
                    log.info("engine.run_done", steps=step, agent_id=agent.id,
                             chars=len(output), duration_ms=round(duration_ms, 1))
                    handle.emit(EngineEvent(EventKind.COMPLETED, session_id,
                                            agent_id=agent.id, text=output))
                    return RunResult(RunStatus.COMPLETED, session_id, step, final_text=output)

                log.info("engine.tool_call", tool=call.name, agent_id=agent.id)
                handle.emit(EngineEvent(EventKind.TOOL_CALL, session_id, agent_id=agent.id,
                                        tool_name=call.name, args=dict(call.args)))

                tool = {t.name: t for t in tools}.get(call.name)
                if tool is None:
                    self._unknown_tool(session_id, agent, call)
                elif tool.is_handoff and self.handoff_policy == HandoffPolicy.DELEGATE:
                    await self._delegate(handle, agent, tool, call)
                elif tool.is_handoff:
                    agent_id = self._handoff(handle, agent, tool, call)
                else:
                    await self._execute_tool(handle, agent, tool, call)

            err = StepLimitExceededError(session_id, max_steps)
            log.warning("engine.max_steps_reached", max_steps=max_steps, agent_id=agent_id)
            handle.emit(EngineEvent(EventKind.ERRORED, session_id, agent_id=agent_id, error=err))
            return RunResult(RunStatus.MAX_STEPS, session_id, max_steps, error=err)

        except TallyError as e:
            log.error("engine.run_failed", step=step, error=str(e), error_type=type(e).__name__)
            handle.emit(EngineEvent(EventKind.ERRORED, session_id, agent_id=agent_id, error=e))
            return RunResult(RunStatus.FAILED, session_id, step, error=e)
        except asyncio.CancelledError:
            log.info("engine.task_cancelled", step=step)
            handle.emit(EngineEvent(EventKind.CANCELLED, session_id, agent_id=agent_id))
            raise
        except Exception as e:
            log.error("engine.run_error", step=step, error=str(e), exc_info=True)
            handle.emit(EngineEvent(EventKind.ERRORED, session_id, agent_id=agent_id, error=e))
            return RunResult(RunStatus.FAILED, session_id, step, error=e)
        finally:
            handle.close()
            clear_session()

    # ── Step helpers ──────────────────────────────────────────────────────────

    async def _generate(
        self,
        handle: RunHandle,
        agent: AgentDefinition,
        tools: list[ToolDefinition],
    ) -> str:
        session_id = handle.session_id

        def on_delta(text: str) -> None:
            handle.emit(EngineEvent(EventKind.TEXT_DELTA, session_id, agent_id=agent.id, text=text))

        return await self._llm.stream(
            history=self.sessions.get_messages(session_id),
            system_prompt=build_system_prompt(agent.system_prompt, tools),
            model=agent.model or self.default_model,
            temperature=self._temperature(agent),
            on_delta=on_delta,
            cancel_event=handle._cancel_event,
            max_tokens=agent.max_tokens if agent.max_tokens is not None else self.default_max_tokens,
        )

    def _unknown_tool(self, session_id: str, agent: AgentDefinition, call: ParsedToolCall) -> None:
        if call.name in self.registry.disabled_tool_names(agent.id):
            err: Exception = ToolDisabledError(call.name)
        else:
            err = ToolNotFoundError(call.name)
        log.warning("engine.tool_unavailable", tool=call.name, agent_id=agent.id,
                    reason=type(err).__name__)
        self.sessions.append_message(session_id, Message.system(f"System Error: {err}"))

    def _handoff(
        self,
        handle: RunHandle,
        agent: AgentDefinition,
        tool: ToolDefinition,
        call: ParsedToolCall,
    ) -> str:
        session_id = handle.session_id
        target = self.registry.require_agent(tool.target_agent_id)
        reason = call.args.get("reason")
        if not isinstance(reason, str) or not reason.strip():
            reason = json.dumps(call.args, ensure_ascii=False) if call.args else "not given"

        self.sessions.set_current_agent(session_id, target.id)
        self.sessions.append_message(
            session_id,
            Message.system(
                f"Task transferred from {agent.name} to {target.name}. Reason: {reason}"
            ),
        )
        log.info("engine.handoff", from_agent=agent.id, to_agent=target.id, reason=reason[:120])
        handle.emit(EngineEvent(EventKind.AGENT_CHANGED, session_id, agent_id=target.id,
                                from_agent_id=agent.id, to_agent_id=target.id))
        return target.id

    async def _delegate(
        self,
        handle: RunHandle,
        agent: AgentDefinition,
        tool: ToolDefinition,
        call: ParsedToolCall,
    ) -> None:
        session_id = handle.session_id
        worker = self.registry.require_agent(tool.target_agent_id)
        message = call.args.get("message")
        if not isinstance(message, str) or not message.strip():
            self._append_tool_message(handle, agent, tool.name,
                                      "Error: Missing required field: 'message'", is_error=True)
            return

        log.info("engine.delegate", supervisor=agent.id, worker=worker.id)
        # Worker gets its bare system prompt, no tool table
        try:
            answer = await self._llm.complete(
                history=[Message.user(message)],
                system_prompt=worker.system_prompt,
                model=worker.model or self.default_model,
                temperature=self._temperature(worker),
                max_tokens=worker.max_tokens if worker.max_tokens is not None
                else self.default_max_tokens,
            )
        except TallyError as e:
            log.warning("engine.delegate_failed", worker=worker.id, error=str(e))
            self._append_tool_message(handle, agent, tool.name, f"Error: {e}", is_error=True)
            return

        self._append_tool_message(handle, agent, tool.name, answer, is_error=False)

    async def _execute_tool(
        self,
        handle: RunHandle,
        agent: AgentDefinition,
        tool: ToolDefinition,
        call: ParsedToolCall,
    ) -> None:
        context = ExecutionContext(
            session_id=handle.session_id,
            current_agent_id=agent.id,
            history=tuple(self.sessions.get_messages(handle.session_id)),
        )
        result = await self._bus.execute(tool, dict(call.args), context)
        self._append_tool_message(handle, agent, tool.name, result.content, result.is_error)

    def _append_tool_message(
        self,
        handle: RunHandle,
        agent: AgentDefinition,
        tool_name: str,
        content: str,
        is_error: bool,
    ) -> None:
        self.sessions.append_message(
            handle.session_id,
            Message.tool(f"Tool '{tool_name}' output:\n{content}", name=tool_name,
                         is_error=is_error),
        )
        handle.emit(EngineEvent(EventKind.TOOL_RESULT, handle.session_id, agent_id=agent.id,
                                tool_name=tool_name, result=content, is_error=is_error))

    def _cancelled(self, handle: RunHandle, step: int, agent_id: Optional[str]) -> RunResult:
        log.info("engine.run_cancelled", step=step, agent_id=agent_id)
        handle.emit(EngineEvent(EventKind.CANCELLED, handle.session_id, agent_id=agent_id))
        return RunResult(RunStatus.CANCELLED, handle.session_id, step)

    def _temperature(self, agent: AgentDefinition) -> float:
        return agent.temperature if agent.temperature is not None else self.default_temperature
