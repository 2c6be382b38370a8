"""
agent/events.py — Run Events & Handles

A run reports progress through one discriminated event stream instead of
a bag of optional callbacks. The engine puts EngineEvents on an
asyncio.Queue; the host drains them with RunHandle.events().

Every run emits exactly one `started` event first and exactly one
terminal event (`completed`, `errored` or `cancelled`) last.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class EventKind(str, Enum):
    STARTED = "started"
    TEXT_DELTA = "text_delta"
    TOOL_CALL = "tool_call"
    TOOL_RESULT = "tool_result"
    AGENT_CHANGED = "agent_changed"
    COMPLETED = "completed"
    ERRORED = "errored"
    CANCELLED = "cancelled"


TERMINAL_KINDS = frozenset({EventKind.COMPLETED, EventKind.ERRORED, EventKind.CANCELLED})


class RunStatus(str, Enum):
    COMPLETED = "completed"     # plain answer produced
    MAX_STEPS = "max_steps"     # step budget exhausted
    CANCELLED = "cancelled"     # cancel() or Engine.stop()
    FAILED = "failed"           # configuration or unrecoverable model error


@dataclass(frozen=True)
class EngineEvent:
    kind: EventKind
    session_id: str
    agent_id: Optional[str] = None
    text: Optional[str] = None
    tool_name: Optional[str] = None
    args: Optional[dict[str, Any]] = None
    result: Optional[str] = None
    is_error: bool = False
    from_agent_id: Optional[str] = None
    to_agent_id: Optional[str] = None
    error: Optional[BaseException] = None

    @property
    def is_terminal(self) -> bool:
        return self.kind in TERMINAL_KINDS


@dataclass(frozen=True)
class RunResult:
    """Outcome of one run, returned by RunHandle.wait()."""
    status: RunStatus
    session_id: str
    steps: int
    final_text: Optional[str] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.status == RunStatus.COMPLETED


@dataclass
class RunHandle:
    """
    Returned by Engine.run(). The run is already scheduled on the loop.

    Usage:
        handle = engine.run(session_id, "How much did I spend on food?")
        async for event in handle.events():
            if event.kind == EventKind.TEXT_DELTA:
                print(event.text, end="")
        result = await handle.wait()
    """
    session_id: str
    run_id: str = field(default_factory=lambda: f"run_{uuid.uuid4().hex[:12]}")
    _queue: asyncio.Queue = field(default_factory=asyncio.Queue, repr=False)
    _cancel_event: asyncio.Event = field(default_factory=asyncio.Event, repr=False)
    _task: Optional[asyncio.Task] = field(default=None, repr=False)

    async def events(self) -> AsyncIterator[EngineEvent]:
        """
        Yield events until the run's terminal event has been delivered.
        A second call after the stream was drained returns immediately.
        """
        while True:
            if self.done and self._queue.empty():
                return
            event = await self._queue.get()
            if event is None:
                return
            yield event

    def cancel(self) -> None:
        """Abort the in-flight model call; no further step will start."""
        self._cancel_event.set()

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_event.is_set()

    @property
    def done(self) -> bool:
        return self._task is not None and self._task.done()

    async def wait(self) -> RunResult:
        if self._task is None:
            raise RuntimeError("RunHandle is not attached to a running task")
        return await self._task

    # ── Engine side ───────────────────────────────────────────────────────────

    def emit(self, event: EngineEvent) -> None:
        self._queue.put_nowait(event)

    def close(self) -> None:
        """End-of-stream marker for events()."""
        self._queue.put_nowait(None)
