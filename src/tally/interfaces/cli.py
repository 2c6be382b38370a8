"""
interfaces/cli.py — Tally CLI Interface

Interactive REPL over the orchestration engine.
Uses rich for terminal rendering and aioconsole for async input.

Features:
  - Streams model deltas as they arrive, prefixed by the answering agent
  - Prints tool calls, tool results and agent handoffs inline
  - /agents, /agent, /history, /stats, /new, /clear, /help
  - Graceful Ctrl+D / exit handling

Usage:
    python -m tally
    python -m tally --agent assistant --log-level DEBUG
"""

from __future__ import annotations

import json
from typing import Optional

import aioconsole
from rich.console import Console
from rich.markdown import Markdown
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich import box

from tally.agent.engine import Engine
from tally.agent.events import EngineEvent, EventKind, RunStatus
from tally.agent.registry import Registry
from tally.config.settings import Settings
from tally.exceptions import TallyError
from tally.observability.logger import get_logger

log = get_logger(__name__)

# ── Constants ─────────────────────────────────────────────────────────────────

_HELP_TEXT = """
## Tally CLI Commands

| Command | Description |
|---------|-------------|
| `/agents` | List registered agents and their handoff targets |
| `/agent <id>` | Make `<id>` the current agent of this session |
| `/history [n]` | Show the last `n` messages (default 10) |
| `/stats` | Show session statistics |
| `/new` | Start a fresh session |
| `/clear` | Clear this session's history |
| `/help` | Show this help message |
| `exit` / `quit` / Ctrl+D | Exit |

Just type your message directly to talk to the current agent.
"""

_ROLE_COLOURS = {
    "system": "yellow",
    "user": "green",
    "assistant": "cyan",
    "tool": "magenta",
}


def build_registry(settings: Settings) -> Registry:
    """Registry holding every agent declared in the settings."""
    registry = Registry()
    for agent in settings.agents:
        registry.register_agent(agent)
    return registry


class TallyCLI:
    """Rich console REPL bound to one Engine."""

    def __init__(
        self,
        settings: Settings,
        engine: Engine,
        initial_agent_id: Optional[str] = None,
        console: Optional[Console] = None,
    ):
        self.settings = settings
        self.engine = engine
        self.console = console or Console()
        self._initial_agent_id = initial_agent_id
        self.session_id = engine.create_session(initial_agent_id)

    async def start(self) -> None:
        self._print_banner()
        while True:
            try:
                user_input = await aioconsole.ainput(self._build_prompt())
            except (EOFError, KeyboardInterrupt):
                self.console.print("\n[dim]Goodbye.[/]")
                break

            user_input = user_input.strip()
            if not user_input:
                continue
            if user_input.lower() in ("exit", "quit"):
                self.console.print("[dim]Goodbye.[/]")
                break

            await self._dispatch(user_input)

    # ── Rendering ─────────────────────────────────────────────────────────────

    def _print_banner(self) -> None:
        agents = self.engine.registry.list_agents()
        self.console.print(
            Panel(
                f"[bold]Tally[/]  ·  "
                f"Model: [cyan]{self.settings.llm.default_model}[/]  ·  "
                f"Agents: [cyan]{len(agents)}[/]  ·  "
                f"Policy: [cyan]{self.engine.handoff_policy.value}[/]  ·  "
                f"Session: [dim]{self.session_id}[/]\n\n"
                f"Type your message or [bold]/help[/] for commands. "
                f"[bold]exit[/] or Ctrl+D to quit.",
                border_style="cyan",
                padding=(0, 2),
            )
        )

    def _build_prompt(self) -> str:
        session = self.engine.sessions.get_session(self.session_id)
        agent_id = session.current_agent_id if session else "?"
        return f"\033[36mTally[{agent_id}]\033[0m> "

    def render_event(self, event: EngineEvent) -> None:
        if event.kind == EventKind.TEXT_DELTA:
            self.console.print(event.text, end="", markup=False, highlight=False)
        elif event.kind == EventKind.TOOL_CALL:
            args = json.dumps(event.args or {}, ensure_ascii=False)
            self.console.print(f"\n[dim]→ {event.agent_id} calls [bold]{event.tool_name}[/] {escape(args)}[/]")
        elif event.kind == EventKind.TOOL_RESULT:
            colour = "red" if event.is_error else "dim"
            preview = (event.result or "")[:300]
            self.console.print(f"[{colour}]← {event.tool_name}: {escape(preview)}[/]",
                               markup=True, highlight=False)
        elif event.kind == EventKind.AGENT_CHANGED:
            self.console.print(
                f"\n[yellow]⇄ {event.from_agent_id} → {event.to_agent_id}[/]"
            )
        elif event.kind == EventKind.ERRORED:
            self.console.print(f"\n[bold red]Error:[/] {escape(str(event.error))}")
        elif event.kind == EventKind.CANCELLED:
            self.console.print("\n[yellow]Cancelled.[/]")
        elif event.kind == EventKind.COMPLETED:
            self.console.print()

    # ── Command Dispatch ──────────────────────────────────────────────────────

    async def _dispatch(self, raw: str) -> None:
        if not raw.startswith("/"):
            await self._ask(raw)
            return

        parts = raw.split(maxsplit=1)
        cmd = parts[0].lower()
        arg = parts[1].strip() if len(parts) > 1 else ""

        handlers = {
            "/help":    lambda _: self.console.print(Markdown(_HELP_TEXT)),
            "/agents":  lambda _: self._cmd_agents(),
            "/agent":   self._cmd_agent,
            "/history": self._cmd_history,
            "/stats":   lambda _: self._cmd_stats(),
            "/new":     lambda _: self._cmd_new(),
            "/clear":   lambda _: self._cmd_clear(),
        }
        handler = handlers.get(cmd)
        if handler is None:
            self.console.print(f"[yellow]Unknown command: {cmd}. Type /help for commands.[/]")
            return
        handler(arg)

    async def _ask(self, text: str) -> None:
        handle = self.engine.run(self.session_id, text)
        async for event in handle.events():
            self.render_event(event)
        result = await handle.wait()
        if result.status == RunStatus.MAX_STEPS:
            self.console.print(
                f"[yellow]Stopped after {result.steps} steps without a final answer.[/]"
            )
        log.debug("cli.run_done", status=result.status.value, steps=result.steps)

    # ── Commands ──────────────────────────────────────────────────────────────

    def _cmd_agents(self) -> None:
        table = Table(box=box.SIMPLE, show_header=True, header_style="bold cyan")
        table.add_column("id")
        table.add_column("name")
        table.add_column("handoffs")
        table.add_column("description", overflow="fold")
        for agent in self.engine.registry.list_agents():
            table.add_row(agent.id, agent.name, ", ".join(agent.handoffs), agent.description)
        self.console.print(table)

    def _cmd_agent(self, arg: str) -> None:
        if not arg:
            self.console.print("[yellow]Usage: /agent <id>[/]")
            return
        try:
            self.engine.set_current_agent(self.session_id, arg)
        except TallyError as e:
            self.console.print(f"[red]{e}[/]")
            return
        self.console.print(f"[dim]Current agent: {arg}[/]")

    def _cmd_history(self, arg: str) -> None:
        try:
            limit = int(arg) if arg else 10
        except ValueError:
            self.console.print("[yellow]Usage: /history [n][/]")
            return
        for msg in self.engine.get_messages(self.session_id, limit=limit):
            colour = _ROLE_COLOURS.get(msg.role.value, "white")
            label = msg.name or msg.role.value
            self.console.print(f"[{colour}]{label}[/]: ", end="")
            self.console.print(msg.content, markup=False, highlight=False)

    def _cmd_stats(self) -> None:
        stats = self.engine.sessions.session_stats(self.session_id) or {}
        table = Table(box=box.SIMPLE, show_header=False)
        table.add_column("key", style="bold")
        table.add_column("value")
        for key in ("session_id", "current_agent_id", "message_count"):
            table.add_row(key, str(stats.get(key, "")))
        for role, count in stats.get("by_role", {}).items():
            table.add_row(f"  {role}", str(count))
        self.console.print(table)

    def _cmd_new(self) -> None:
        self.session_id = self.engine.create_session(self._initial_agent_id)
        self.console.print(f"[dim]New session: {self.session_id}[/]")

    def _cmd_clear(self) -> None:
        self.engine.sessions.clear_messages(self.session_id)
        self.console.print("[dim]History cleared.[/]")
