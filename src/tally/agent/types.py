"""
agent/types.py — Agent Definitions
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator


class AgentDefinition(BaseModel):
    """
    One role in the conversation: its prompt, model overrides, the tool ids
    it may call and the agent ids it may hand off to.

    Frozen after construction. Handoff targets are not validated here; the
    registry resolves them lazily every time an agent's tool table is built.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str = ""
    system_prompt: str = ""
    model: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    tools: tuple[str, ...] = ()
    handoffs: tuple[str, ...] = ()

    @field_validator("id", "name")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("must not be blank")
        return v
