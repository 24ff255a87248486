"""Turn scheduler.

The engine owns the pending user texts and tool calls and drives at most one
turn at a time. A turn first drains queued tool calls (each one gated,
executed and summarized), then sends the joined texts plus the tool results
to the session and applies the streamed updates. Tool calls that arrive while
streaming are queued for the next turn, which starts as soon as the current
one ends.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Literal, Sequence

from ..config import SafetyConfig
from ..tools import Tool, ToolRegistry
from ..tools.policy import parse_approval_mode, should_require_approval
from .approvals import PermissionGate
from .providers import ModelDescriptor, ModelProvider
from .session import (
    EndedUpdate,
    ErrorUpdate,
    ReasoningUpdate,
    Session,
    SessionUpdate,
    StepArguments,
    TextUpdate,
    ToolCallUpdate,
    ToolResult,
)
from .store import EngineStore, HistoryRecord

logger = logging.getLogger(__name__)

ABORTED_MESSAGE = "Tool call was aborted by the user"
PERMISSION_DENIED_MESSAGE = "Permission denied"


@dataclass(frozen=True)
class PendingToolCall:
    id: str
    name: str
    arguments: Any


@dataclass
class _ModelEntry:
    descriptor: ModelDescriptor
    provider: ModelProvider


@dataclass
class _Turn:
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    task: asyncio.Task[None] | None = None
    phase: Literal["drain", "stream"] = "drain"
    current_call: PendingToolCall | None = None
    stream_mark: int = 0
    sent_results: list[ToolResult] = field(default_factory=list)
    failed: bool = False

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()


class Engine:
    """Top-level orchestrator. All methods must be called from the event loop thread."""

    def __init__(
        self,
        providers: Sequence[ModelProvider],
        tools: ToolRegistry,
        *,
        gate: PermissionGate | None = None,
        store: EngineStore | None = None,
        safety: SafetyConfig | None = None,
        preferred_model: str | None = None,
        web_search: bool = True,
    ) -> None:
        self.models: dict[str, _ModelEntry] = {}
        for provider in providers:
            for descriptor in provider.models():
                if descriptor.name in self.models:
                    raise ValueError(f"Model {descriptor.name} already exists")
                self.models[descriptor.name] = _ModelEntry(descriptor=descriptor, provider=provider)
        if not self.models:
            raise ValueError("At least one model is required")
        if preferred_model is not None and preferred_model not in self.models:
            raise ValueError(f"Unknown model: {preferred_model}")

        self._model = preferred_model or next(iter(self.models))
        self._session = self.models[self._model].provider.create_session(self._model)

        self.store = store or EngineStore()
        self.store.set_model(self.model.display_name)
        self.gate = gate or PermissionGate()
        self.gate.set_listener(self.store.set_permission)

        self._tools = tools
        self._safety = safety or SafetyConfig()
        self._mode = parse_approval_mode(self._safety.approval_mode)
        self._allowed_tools = set(self._safety.allowed_tools)
        self._session_allowed: set[str] = set()
        self.web_search = web_search

        self._pending_texts: deque[str] = deque()
        self._pending_calls: deque[PendingToolCall] = deque()
        self._pending_results: list[ToolResult] = []
        self._turn: _Turn | None = None
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def model(self) -> ModelDescriptor:
        return self.models[self._model].descriptor

    @property
    def session(self) -> Session:
        return self._session

    @property
    def busy(self) -> bool:
        return self._turn is not None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def send(self, text: str) -> None:
        self._pending_texts.append(text)
        self._start_if_needed()

    def abort(self) -> None:
        """Cancel the active turn and drop all queued work.

        Calls queued while draining belong to a response already in the
        session history, so each one still gets an aborted error result
        for the next request. Calls that arrived during the aborted stream
        are dropped with it. Tool results that the aborted request carried are
        queued again.
        """
        turn = self._turn
        self._turn = None
        if turn is not None:
            turn.cancel_event.set()
            if turn.task is not None and not turn.task.done():
                turn.task.cancel()
            if turn.phase == "drain":
                unfinished = [turn.current_call] if turn.current_call else []
                for call in [*unfinished, *self._pending_calls]:
                    self._pending_results.append(ToolResult(id=call.id, content=ABORTED_MESSAGE, error=True))
            else:
                self._pending_results[:0] = turn.sent_results
            logger.info("Turn aborted")
        self._pending_texts.clear()
        self._pending_calls.clear()
        self.store.set_thinking(False)
        self._idle.set()

    async def wait_idle(self) -> None:
        await self._idle.wait()

    def grant_session_permission(self, tool_name: str) -> None:
        self._session_allowed.add(tool_name)

    def select_model(self, name: str) -> None:
        if self._turn is not None:
            raise RuntimeError("Cannot switch model while a turn is running")
        entry = self.models.get(name)
        if entry is None:
            raise ValueError(f"Unknown model: {name}")
        self._model = name
        self._session = entry.provider.create_session(name)
        self._pending_results.clear()
        self.store.set_model(entry.descriptor.display_name)
        logger.info("Switched model to %s", name)

    # ------------------------------------------------------------------
    # Turn loop
    # ------------------------------------------------------------------

    def _has_work(self) -> bool:
        return bool(self._pending_texts or self._pending_calls)

    def _start_if_needed(self) -> None:
        if self._turn is not None or not self._has_work():
            return
        turn = _Turn()
        self._turn = turn
        self._idle.clear()
        turn.task = asyncio.get_running_loop().create_task(self._run_turn(turn))
        turn.task.add_done_callback(_log_task_failure)

    def _finish(self, turn: _Turn) -> None:
        if self._turn is not turn:
            return
        self._turn = None
        if self._has_work():
            self._start_if_needed()
            return
        self.store.set_thinking(False)
        self._idle.set()

    async def _run_turn(self, turn: _Turn) -> None:
        try:
            await self._drain_tool_calls(turn)
            if turn.cancelled:
                return

            text = "\n".join(self._pending_texts) or None
            results = list(self._pending_results)
            self._pending_texts.clear()
            self._pending_results.clear()
            if text:
                self.store.append_history(HistoryRecord(kind="user", text=text))
            self.store.set_thinking(True)

            turn.phase = "stream"
            turn.sent_results = results
            turn.stream_mark = len(self._pending_calls)
            args = StepArguments(
                text=text,
                tool_results=results,
                tools=self._tools.definitions(),
                web_search=self.web_search,
            )
            async for update in self._session.step(args, turn.cancel_event):
                if turn.cancelled:
                    return
                self._apply(turn, update)
        except Exception as e:
            logger.exception("Turn failed unexpectedly")
            if not turn.cancelled:
                if turn.phase == "stream":
                    self._discard_uncommitted(turn)
                self.store.append_history(HistoryRecord(kind="error", text=str(e), error=True))
        if not turn.cancelled:
            self._finish(turn)

    async def _drain_tool_calls(self, turn: _Turn) -> None:
        while self._pending_calls and not turn.cancelled:
            call = self._pending_calls.popleft()
            turn.current_call = call
            result = await self._execute(turn, call)
            if turn.cancelled:
                return
            turn.current_call = None
            self._pending_results.append(result)
            self.store.append_history(
                HistoryRecord(
                    kind="tool_result",
                    text=result.content,
                    name=call.name,
                    call_id=call.id,
                    error=result.error,
                )
            )

    async def _execute(self, turn: _Turn, call: PendingToolCall) -> ToolResult:
        tool = self._tools.get(call.name)
        if tool is None:
            logger.warning("Model called unknown tool %s", call.name)
            return ToolResult(id=call.id, content=f"Tool {call.name} not found", error=True)

        if self._needs_approval(tool):
            timeout = self._safety.approval_timeout or None
            approved = await self.gate.request(call.name, _as_dict(call.arguments), timeout=timeout)
            if turn.cancelled or not approved:
                logger.info("Tool call %s (%s) denied", call.id, call.name)
                return ToolResult(id=call.id, content=PERMISSION_DENIED_MESSAGE, error=True)

        try:
            result = await tool.run(call.arguments)
            if turn.cancelled:
                return ToolResult(id=call.id, content=ABORTED_MESSAGE, error=True)
            content = tool.to_llm(result)
        except Exception as e:
            logger.info("Tool %s failed: %s", call.name, e)
            return ToolResult(id=call.id, content=str(e) or type(e).__name__, error=True)
        return ToolResult(id=call.id, content=content)

    def _needs_approval(self, tool: Tool) -> bool:
        return should_require_approval(
            tool.name,
            self._mode,
            allowed_tools=self._allowed_tools,
            session_allowed=self._session_allowed,
        )

    def _apply(self, turn: _Turn, update: SessionUpdate) -> None:
        if isinstance(update, TextUpdate):
            self.store.append_history(HistoryRecord(kind="assistant", text=update.text))
        elif isinstance(update, ToolCallUpdate):
            self._pending_calls.append(PendingToolCall(id=update.id, name=update.name, arguments=update.arguments))
            self.store.append_history(
                HistoryRecord(kind="tool_call", name=update.name, arguments=update.arguments, call_id=update.id)
            )
        elif isinstance(update, ReasoningUpdate):
            self.store.set_thinking(update.text)
        elif isinstance(update, ErrorUpdate):
            turn.failed = True
            self.store.append_history(HistoryRecord(kind="error", text=update.message, error=True))
        elif isinstance(update, EndedUpdate):
            if turn.failed or not update.committed:
                self._discard_uncommitted(turn)
            self._finish(turn)

    def _discard_uncommitted(self, turn: _Turn) -> None:
        """Undo a stream whose response never made it into the session history.

        Calls from that response are dropped. The tool results it carried go
        back on the queue so the calls they answer still get an output.
        """
        dropped = len(self._pending_calls) - turn.stream_mark
        while len(self._pending_calls) > turn.stream_mark:
            self._pending_calls.pop()
        if dropped:
            logger.info("Dropped %d tool call(s) from an incomplete response", dropped)
        self._pending_results[:0] = turn.sent_results
        turn.sent_results = []


def _as_dict(arguments: Any) -> dict[str, Any]:
    return arguments if isinstance(arguments, dict) else {"arguments": arguments}


def _log_task_failure(task: asyncio.Task[None]) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Turn task crashed", exc_info=exc)
