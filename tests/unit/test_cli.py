"""
tests/unit/test_cli.py — CLI Interface Unit Tests

Tests TallyCLI command dispatch and event rendering against a real Engine
driven by a fake model client. Output is captured through a rich Console
writing to a StringIO.

Run with:
    pytest tests/unit/test_cli.py -v
"""

from __future__ import annotations

from io import StringIO
from unittest.mock import AsyncMock, patch

import pytest
from rich.console import Console

from tally.__main__ import parse_args
from tally.agent.engine import Engine
from tally.agent.events import EngineEvent, EventKind
from tally.brain.llm_client import BaseLLMClient
from tally.brain.types import Message
from tally.config.settings import Settings
from tally.interfaces.cli import TallyCLI, build_registry


# ── Helpers ───────────────────────────────────────────────────────────────────


class EchoLLM(BaseLLMClient):
    """Answers every prompt with a fixed plain-text reply."""

    def __init__(self, reply: str = "Hello there"):
        self.reply = reply

    async def stream(self, history, system_prompt, model, temperature, on_delta=None,
                     on_error=None, cancel_event=None, max_tokens=None) -> str:
        if on_delta:
            on_delta(self.reply)
        return self.reply

    async def complete(self, history, system_prompt, model, temperature, max_tokens=None) -> str:
        return self.reply


def make_settings() -> Settings:
    return Settings(
        llm_api_key="sk-test",
        agents=[
            {"id": "assistant", "name": "Tally Assistant", "handoffs": ["summarizer"]},
            {"id": "summarizer", "name": "Summarizer", "description": "Writes reports"},
        ],
    )


def read(console: Console) -> str:
    return console.file.getvalue()


# ── Fixtures ──────────────────────────────────────────────────────────────────


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def console():
    return Console(file=StringIO(), width=200, color_system=None)


@pytest.fixture
def cli(settings, console):
    engine = Engine(build_registry(settings), EchoLLM())
    return TallyCLI(settings, engine, console=console)


# ─────────────────────────────────────────────────────────────────────────────
# Entry point helpers
# ─────────────────────────────────────────────────────────────────────────────


class TestParseArgs:
    def test_defaults(self):
        args = parse_args([])
        assert args.config is None
        assert args.log_level is None
        assert args.agent is None

    def test_flags(self):
        args = parse_args(["--config", "x.yaml", "--log-level", "DEBUG", "--agent", "summarizer"])
        assert args.config == "x.yaml"
        assert args.log_level == "DEBUG"
        assert args.agent == "summarizer"

    def test_bad_log_level_exits(self):
        with pytest.raises(SystemExit):
            parse_args(["--log-level", "LOUD"])


class TestBuildRegistry:
    def test_registers_every_agent(self, settings):
        registry = build_registry(settings)
        assert [a.id for a in registry.list_agents()] == ["assistant", "summarizer"]
        assert [t.name for t in registry.tools_for("assistant")] == ["transfer_to_Summarizer"]


# ─────────────────────────────────────────────────────────────────────────────
# Rendering
# ─────────────────────────────────────────────────────────────────────────────


class TestRenderEvent:
    def test_text_delta_printed_raw(self, cli, console):
        cli.render_event(EngineEvent(EventKind.TEXT_DELTA, "s", "assistant", text="[bold]hi"))
        assert "[bold]hi" in read(console)

    def test_tool_call_and_result(self, cli, console):
        cli.render_event(EngineEvent(
            EventKind.TOOL_CALL, "s", "assistant",
            tool_name="query_transactions", args={"tags": ["[food]"]},
        ))
        cli.render_event(EngineEvent(
            EventKind.TOOL_RESULT, "s", "assistant",
            tool_name="query_transactions", result="[]",
        ))
        out = read(console)
        assert "assistant calls query_transactions" in out
        assert "[food]" in out
        assert "← query_transactions: []" in out

    def test_agent_changed(self, cli, console):
        cli.render_event(EngineEvent(
            EventKind.AGENT_CHANGED, "s", "summarizer",
            from_agent_id="assistant", to_agent_id="summarizer",
        ))
        assert "assistant → summarizer" in read(console)

    def test_errored(self, cli, console):
        cli.render_event(EngineEvent(EventKind.ERRORED, "s", error=RuntimeError("boom")))
        assert "Error: boom" in read(console)


# ─────────────────────────────────────────────────────────────────────────────
# Commands
# ─────────────────────────────────────────────────────────────────────────────


class TestCommands:
    @pytest.mark.asyncio
    async def test_plain_text_runs_engine(self, cli, console):
        await cli._dispatch("how much did I spend?")
        assert "Hello there" in read(console)
        messages = cli.engine.get_messages(cli.session_id)
        assert [m.content for m in messages] == ["how much did I spend?", "Hello there"]

    @pytest.mark.asyncio
    async def test_agents_lists_registry(self, cli, console):
        await cli._dispatch("/agents")
        out = read(console)
        assert "assistant" in out
        assert "Writes reports" in out

    @pytest.mark.asyncio
    async def test_switch_agent(self, cli, console):
        await cli._dispatch("/agent summarizer")
        session = cli.engine.sessions.get_session(cli.session_id)
        assert session.current_agent_id == "summarizer"

    @pytest.mark.asyncio
    async def test_switch_to_unknown_agent(self, cli, console):
        await cli._dispatch("/agent ghost")
        session = cli.engine.sessions.get_session(cli.session_id)
        assert session.current_agent_id == "assistant"
        assert "ghost" in read(console)

    @pytest.mark.asyncio
    async def test_history_and_clear(self, cli, console):
        cli.engine.sessions.append_message(cli.session_id, Message.user("remember me"))
        await cli._dispatch("/history 5")
        assert "remember me" in read(console)

        await cli._dispatch("/clear")
        assert cli.engine.get_messages(cli.session_id) == []

    @pytest.mark.asyncio
    async def test_new_session(self, cli):
        old = cli.session_id
        await cli._dispatch("/new")
        assert cli.session_id != old

    @pytest.mark.asyncio
    async def test_unknown_command(self, cli, console):
        await cli._dispatch("/dance")
        assert "Unknown command: /dance" in read(console)


class TestReplLoop:
    @pytest.mark.asyncio
    async def test_exit_ends_loop(self, cli, console):
        with patch("tally.interfaces.cli.aioconsole.ainput",
                   new=AsyncMock(side_effect=["", "/stats", "exit"])) as ainput:
            await cli.start()
        assert ainput.await_count == 3
        assert "message_count" in read(console)
        assert "Goodbye." in read(console)

    @pytest.mark.asyncio
    async def test_eof_ends_loop(self, cli, console):
        with patch("tally.interfaces.cli.aioconsole.ainput",
                   new=AsyncMock(side_effect=EOFError)):
            await cli.start()
        assert "Goodbye." in read(console)
