"""
agent/session.py — Session State

One Session per conversation: an append-only message log plus the id of
the agent currently holding the conversation.

Sessions live in a SessionStore owned by the Engine. Every mutation goes
through the store so updated_at is always maintained. Callers that read
messages get copies, never the live list.
"""

from __future__ import annotations

import time
import uuid
from typing import Any, Optional

from tally.brain.types import Message, Role
from tally.observability.logger import get_logger

log = get_logger(__name__)


class Session:
    """Per-conversation state. Mutate only through SessionStore."""

    def __init__(self, session_id: str, current_agent_id: str):
        self.id = session_id
        self.current_agent_id = current_agent_id
        self.messages: list[Message] = []
        self.created_at = time.time()
        self.updated_at = self.created_at

    def touch(self) -> None:
        self.updated_at = time.time()

    def __repr__(self) -> str:
        return (
            f"<Session id={self.id} agent={self.current_agent_id} "
            f"messages={len(self.messages)}>"
        )


class SessionStore:
    """
    In-memory mapping of session id → Session.

    Concurrent runs on different sessions touch disjoint entries. Runs on
    the same session are not serialized here; the host does that if needed.
    """

    def __init__(self):
        self._sessions: dict[str, Session] = {}

    def create_session(self, initial_agent_id: str) -> str:
        session_id = f"sess_{uuid.uuid4().hex[:12]}"
        self._sessions[session_id] = Session(session_id, initial_agent_id)
        log.info("session.created", session_id=session_id, agent_id=initial_agent_id)
        return session_id

    def get_session(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def append_message(self, session_id: str, message: Message) -> Optional[Message]:
        """Append to the log. No-op returning None when the session is absent."""
        session = self._sessions.get(session_id)
        if session is None:
            log.warning("session.append_missing", session_id=session_id)
            return None
        session.messages.append(message)
        session.touch()
        return message

    def set_current_agent(self, session_id: str, agent_id: str) -> None:
        session = self._sessions.get(session_id)
        if session is None:
            log.warning("session.set_agent_missing", session_id=session_id)
            return
        session.current_agent_id = agent_id
        session.touch()

    def get_messages(self, session_id: str, limit: Optional[int] = None) -> list[Message]:
        """Copy of the log, or of its last `limit` entries. Empty if absent."""
        session = self._sessions.get(session_id)
        if session is None:
            return []
        if limit is not None:
            return session.messages[-limit:] if limit > 0 else []
        return list(session.messages)

    def clear_messages(self, session_id: str) -> None:
        session = self._sessions.get(session_id)
        if session is None:
            return
        session.messages.clear()
        session.touch()

    def delete_session(self, session_id: str) -> bool:
        removed = self._sessions.pop(session_id, None) is not None
        if removed:
            log.info("session.deleted", session_id=session_id)
        return removed

    def list_sessions(self) -> list[str]:
        return list(self._sessions.keys())

    def session_stats(self, session_id: str) -> Optional[dict[str, Any]]:
        """Message counts per role plus timestamps, or None if absent."""
        session = self._sessions.get(session_id)
        if session is None:
            return None
        by_role = {role.value: 0 for role in Role}
        for msg in session.messages:
            by_role[msg.role.value] += 1
        return {
            "session_id": session.id,
            "current_agent_id": session.current_agent_id,
            "message_count": len(session.messages),
            "by_role": by_role,
            "created_at": session.created_at,
            "updated_at": session.updated_at,
        }

    def __len__(self) -> int:
        return len(self._sessions)
