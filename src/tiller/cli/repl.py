"""Interactive terminal loop: prompt_toolkit input, rich output."""

from __future__ import annotations

import asyncio
import json
import logging
import signal
import sys
from typing import Any

from prompt_toolkit import PromptSession
from rich.console import Console
from rich.markup import escape

from ..services.approvals import PendingPermission
from ..services.engine import Engine
from ..services.store import EngineStore, HistoryRecord
from ..tools import ToolRegistry

logger = logging.getLogger(__name__)

GOLD = "#C5A059"  # thinking indicator
SLATE = "#94A3B8"  # labels
MUTED = "#8b8b8b"  # tool results, hints
ERROR_RED = "#CD6B6B"

_IS_WINDOWS = sys.platform == "win32"
_RESULT_PREVIEW_LINES = 8


def _preview(text: str, limit: int = _RESULT_PREVIEW_LINES) -> str:
    lines = text.splitlines()
    if len(lines) <= limit:
        return text
    return "\n".join(lines[:limit]) + f"\n... ({len(lines) - limit} more lines)"


class StoreRenderer:
    """Prints new history records and thinking changes as the store mutates."""

    def __init__(self, console: Console, tools: ToolRegistry) -> None:
        self.console = console
        self._tools = tools
        self._rendered = 0
        self._thinking: str | None = None
        self.permission_ready = asyncio.Event()

    def __call__(self, store: EngineStore) -> None:
        history = store.history
        for record in history[self._rendered :]:
            self.render_record(record)
        self._rendered = len(history)

        if store.thinking != self._thinking:
            self._thinking = store.thinking
            if store.thinking:
                self.console.print(f"[{GOLD}]{escape(store.thinking)}...[/{GOLD}]")

        if store.permission is not None:
            self.permission_ready.set()

    def render_record(self, record: HistoryRecord) -> None:
        if record.kind == "user":
            return
        if record.kind == "assistant":
            self.console.print(f"\n[{SLATE}]AI:[/{SLATE}] {escape(record.text)}\n")
        elif record.kind == "tool_call":
            self.console.print(f"[{SLATE}]> {escape(self._title(record.name or '', record.arguments))}[/{SLATE}]")
        elif record.kind == "tool_result":
            color = ERROR_RED if record.error else MUTED
            self.console.print(f"[{color}]{escape(_preview(record.text))}[/{color}]")
        elif record.kind == "error":
            self.console.print(f"[{ERROR_RED}]Error: {escape(record.text)}[/{ERROR_RED}]")

    def _title(self, name: str, arguments: Any) -> str:
        tool = self._tools.get(name)
        if tool is not None and tool.format_title is not None and isinstance(arguments, dict):
            return tool.format_title(arguments)
        return f"{name}({json.dumps(arguments, default=str)[:200]})"


async def _ask_permission(
    session: PromptSession[str],
    engine: Engine,
    tools: ToolRegistry,
    console: Console,
    pending: PendingPermission,
) -> None:
    tool = tools.get(pending.tool_name)
    if tool is not None and tool.format_question is not None:
        question = tool.format_question(pending.arguments)
    else:
        question = f"Allow {pending.tool_name} with {json.dumps(pending.arguments, default=str)[:200]}?"
    console.print(f"\n[bold]{escape(question)}[/bold]")

    try:
        answer = await session.prompt_async("  [y]es / [s]ession / [n]o: ")
    except (EOFError, KeyboardInterrupt):
        answer = "n"

    choice = answer.strip().lower()
    if choice in ("s", "session"):
        engine.grant_session_permission(pending.tool_name)
        engine.gate.approve(pending.id)
        console.print(f"  [{MUTED}]Allowed {escape(pending.tool_name)} for this session[/{MUTED}]")
    elif choice in ("y", "yes"):
        engine.gate.approve(pending.id)
    else:
        engine.gate.deny(pending.id)
        console.print(f"  [{MUTED}]Denied[/{MUTED}]")


async def _wait_for_turn(
    session: PromptSession[str],
    engine: Engine,
    tools: ToolRegistry,
    renderer: StoreRenderer,
) -> None:
    """Block until the engine is idle, answering permission prompts meanwhile.

    Ctrl-C aborts the running turn.
    """
    loop = asyncio.get_running_loop()
    if not _IS_WINDOWS:
        loop.add_signal_handler(signal.SIGINT, engine.abort)
    try:
        while engine.busy:
            idle = asyncio.ensure_future(engine.wait_idle())
            permission = asyncio.ensure_future(renderer.permission_ready.wait())
            _, pending = await asyncio.wait({idle, permission}, return_when=asyncio.FIRST_COMPLETED)
            for task in pending:
                task.cancel()

            renderer.permission_ready.clear()
            head = engine.store.permission
            if head is not None:
                await _ask_permission(session, engine, tools, renderer.console, head)
    finally:
        if not _IS_WINDOWS:
            loop.remove_signal_handler(signal.SIGINT)


def _handle_command(text: str, engine: Engine, console: Console) -> bool:
    """Handle a slash command. Returns False when the loop should exit."""
    command, _, arg = text.partition(" ")
    if command in ("/exit", "/quit"):
        return False
    if command == "/model":
        if not arg:
            for name, entry in engine.models.items():
                marker = "*" if name == engine.model.name else " "
                console.print(f" {marker} {name}  [{MUTED}]{entry.descriptor.display_name}[/{MUTED}]")
            return True
        try:
            engine.select_model(arg.strip())
        except ValueError as e:
            console.print(f"[{ERROR_RED}]{escape(str(e))}[/{ERROR_RED}]")
        else:
            console.print(f"[{MUTED}]Model: {escape(engine.model.display_name)}[/{MUTED}]")
        return True
    console.print(f"[{MUTED}]Unknown command: {escape(command)}[/{MUTED}]")
    return True


async def run_cli(engine: Engine, tools: ToolRegistry, initial_prompt: str | None = None) -> None:
    console = Console()
    renderer = StoreRenderer(console, tools)
    unsubscribe = engine.store.subscribe(renderer)
    session: PromptSession[str] = PromptSession()

    console.print(f"[{SLATE}]tiller[/{SLATE}] [{MUTED}]{escape(engine.model.display_name)}[/{MUTED}]")
    console.print(f"[{MUTED}]/model to switch models, /exit to quit, Ctrl-C to interrupt[/{MUTED}]\n")

    try:
        if initial_prompt:
            engine.send(initial_prompt)
            await _wait_for_turn(session, engine, tools, renderer)

        while True:
            try:
                raw = await session.prompt_async("> ")
            except EOFError:
                return
            except KeyboardInterrupt:
                continue

            text = raw.strip()
            if not text:
                continue
            if text.startswith("/"):
                if not _handle_command(text, engine, console):
                    return
                continue

            engine.send(text)
            await _wait_for_turn(session, engine, tools, renderer)
    finally:
        engine.abort()
        unsubscribe()
