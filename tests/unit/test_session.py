"""
tests/unit/test_session.py — SessionStore Unit Tests

Run with:
    pytest tests/unit/test_session.py -v
"""

from __future__ import annotations

import time

import pytest

from tally.agent.session import SessionStore
from tally.brain.types import Message, Role


@pytest.fixture
def store():
    return SessionStore()


class TestSessionStore:
    def test_create_and_get(self, store):
        sid = store.create_session("assistant")
        assert sid.startswith("sess_")
        session = store.get_session(sid)
        assert session.current_agent_id == "assistant"
        assert session.messages == []

    def test_unique_ids(self, store):
        ids = {store.create_session("assistant") for _ in range(20)}
        assert len(ids) == 20

    def test_get_missing_is_none(self, store):
        assert store.get_session("sess_nope") is None

    def test_append_in_order(self, store):
        sid = store.create_session("assistant")
        store.append_message(sid, Message.user("one"))
        store.append_message(sid, Message.assistant("two", name="Assistant", agent_id="assistant"))
        store.append_message(sid, Message.system("three"))
        assert [m.content for m in store.get_messages(sid)] == ["one", "two", "three"]

    def test_append_to_missing_session_is_noop(self, store):
        assert store.append_message("sess_nope", Message.user("hi")) is None

    def test_mutations_update_timestamp(self, store):
        sid = store.create_session("assistant")
        session = store.get_session(sid)
        session.updated_at = time.time() - 100
        stale = session.updated_at

        store.append_message(sid, Message.user("hi"))
        assert session.updated_at > stale

        session.updated_at = stale
        store.set_current_agent(sid, "summarizer")
        assert session.updated_at > stale
        assert session.current_agent_id == "summarizer"

    def test_get_messages_returns_copy(self, store):
        sid = store.create_session("assistant")
        store.append_message(sid, Message.user("hi"))
        snapshot = store.get_messages(sid)
        snapshot.clear()
        assert len(store.get_messages(sid)) == 1

    def test_get_messages_limit(self, store):
        sid = store.create_session("assistant")
        for i in range(5):
            store.append_message(sid, Message.user(str(i)))
        assert [m.content for m in store.get_messages(sid, limit=2)] == ["3", "4"]
        assert store.get_messages(sid, limit=0) == []
        assert store.get_messages("sess_nope") == []

    def test_clear_delete_list(self, store):
        a = store.create_session("assistant")
        b = store.create_session("assistant")
        store.append_message(a, Message.user("hi"))
        store.clear_messages(a)
        assert store.get_messages(a) == []

        assert set(store.list_sessions()) == {a, b}
        assert store.delete_session(a) is True
        assert store.delete_session(a) is False
        assert store.list_sessions() == [b]
        assert len(store) == 1

    def test_session_stats(self, store):
        sid = store.create_session("assistant")
        store.append_message(sid, Message.user("hi"))
        store.append_message(sid, Message.tool("Tool 'x' output:\nok", name="x"))
        stats = store.session_stats(sid)
        assert stats["message_count"] == 2
        assert stats["by_role"][Role.USER.value] == 1
        assert stats["by_role"][Role.TOOL.value] == 1
        assert stats["by_role"][Role.SYSTEM.value] == 0
        assert store.session_stats("sess_nope") is None
