"""
brain/types.py — Tally Conversation Data Models

Messages shared by the streaming client, the session store and the
orchestration engine.
"""

from __future__ import annotations

import time
import uuid
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


# ─────────────────────────────────────────────────────────────────────────────
# Enums
# ─────────────────────────────────────────────────────────────────────────────


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"           # tool result; sent to the endpoint as "user"


# ─────────────────────────────────────────────────────────────────────────────
# Message
# ─────────────────────────────────────────────────────────────────────────────


def _message_id() -> str:
    return f"msg_{uuid.uuid4().hex[:12]}"


class Message(BaseModel):
    """
    A single entry in a session's append-only log.

    Frozen: once appended, a message is never edited in place. Tool
    handlers receive tuples of these, so they cannot alter history.
    """
    model_config = ConfigDict(frozen=True)

    role: Role
    content: str = ""
    name: Optional[str] = None          # display tag: agent name, "User", "System", tool name
    agent_id: Optional[str] = None      # agent that produced an assistant message
    is_error: bool = False              # set on error-bearing tool results
    id: str = Field(default_factory=_message_id)
    timestamp: float = Field(default_factory=time.time)

    @classmethod
    def system(cls, content: str, name: str = "System") -> "Message":
        return cls(role=Role.SYSTEM, content=content, name=name)

    @classmethod
    def user(cls, content: str, name: str = "User") -> "Message":
        return cls(role=Role.USER, content=content, name=name)

    @classmethod
    def assistant(cls, content: str, name: Optional[str] = None,
                  agent_id: Optional[str] = None) -> "Message":
        return cls(role=Role.ASSISTANT, content=content, name=name, agent_id=agent_id)

    @classmethod
    def tool(cls, content: str, name: str, is_error: bool = False) -> "Message":
        return cls(role=Role.TOOL, content=content, name=name, is_error=is_error)

    def to_wire(self) -> dict[str, str]:
        """Endpoint format. The protocol has no tool role, so results travel as user turns."""
        role = Role.USER if self.role == Role.TOOL else self.role
        return {"role": role.value, "content": self.content}
