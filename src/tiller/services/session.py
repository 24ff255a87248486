"""Conversation session on top of the protocol client.

A session owns the backend-native history and turns raw stream events into
a small set of updates: ``reasoning``, ``text``, ``tool_call``, ``error``
and ``ended``.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, AsyncGenerator, Literal, Protocol, Union

import httpx

from ..models import GenericEvent, OutputItemDone, OutputTextDone, ReasoningSummaryTextDone, ResponseCompleted
from .protocol import BackendError, ResponsesRequest, StreamEvent

logger = logging.getLogger(__name__)

ReasoningEffort = Literal["low", "medium", "high"]


@dataclass(frozen=True)
class ReasoningUpdate:
    text: str
    kind: Literal["reasoning"] = "reasoning"


@dataclass(frozen=True)
class TextUpdate:
    text: str
    kind: Literal["text"] = "text"


@dataclass(frozen=True)
class ToolCallUpdate:
    id: str
    name: str
    arguments: Any
    kind: Literal["tool_call"] = "tool_call"


@dataclass(frozen=True)
class ErrorUpdate:
    message: str
    kind: Literal["error"] = "error"


@dataclass(frozen=True)
class EndedUpdate:
    committed: bool = True
    kind: Literal["ended"] = "ended"


SessionUpdate = Union[ReasoningUpdate, TextUpdate, ToolCallUpdate, ErrorUpdate, EndedUpdate]


@dataclass(frozen=True)
class ToolResult:
    id: str
    content: str
    error: bool = False


@dataclass
class StepArguments:
    text: str | None = None
    tool_results: list[ToolResult] = field(default_factory=list)
    tools: list[dict[str, Any]] = field(default_factory=list)
    web_search: bool = False


class StreamingClient(Protocol):
    def stream(self, request: ResponsesRequest) -> AsyncGenerator[StreamEvent, None]: ...


def _strip_bold(text: str) -> str:
    if len(text) >= 4 and text.startswith("**") and text.endswith("**") and "**" not in text[2:-2]:
        return text[2:-2]
    return text


def _user_message(text: str) -> dict[str, Any]:
    return {"type": "message", "role": "user", "content": [{"type": "input_text", "text": text}]}


def _tool_output(result: ToolResult) -> dict[str, Any]:
    return {"type": "function_call_output", "call_id": result.id, "output": result.content}


def _tool_declaration(tool: dict[str, Any]) -> dict[str, Any]:
    return {
        "type": "function",
        "name": tool["name"],
        "description": tool.get("description", ""),
        "strict": False,
        "parameters": tool.get("parameters", {"type": "object", "properties": {}}),
    }


class Session:
    def __init__(
        self,
        client: StreamingClient,
        model: str,
        instructions: str,
        reasoning_effort: ReasoningEffort = "medium",
        session_id: str | None = None,
    ) -> None:
        self.id = session_id or str(uuid.uuid4())
        self.model = model
        self.instructions = instructions
        self.reasoning_effort = reasoning_effort
        self._client = client
        self._history: list[dict[str, Any]] = []

    @property
    def history(self) -> list[dict[str, Any]]:
        return list(self._history)

    def _build_request(self, args: StepArguments, new_items: list[dict[str, Any]]) -> ResponsesRequest:
        tools = [_tool_declaration(t) for t in args.tools]
        if args.web_search:
            tools.append({"type": "web_search"})
        return ResponsesRequest(
            model=self.model,
            instructions=self.instructions,
            input=[*self._history, *new_items],
            session_id=self.id,
            tools=tools or None,
            reasoning={"effort": self.reasoning_effort, "summary": "auto"},
        )

    async def step(
        self, args: StepArguments, cancel_event: asyncio.Event | None = None
    ) -> AsyncGenerator[SessionUpdate, None]:
        """Run one backend round-trip, yielding updates and finally ``ended``.

        History grows only when the backend reports the response as
        completed. Once ``cancel_event`` is set nothing more is yielded, not
        even ``ended``.
        """
        new_items = [_tool_output(r) for r in args.tool_results]
        if args.text:
            new_items.append(_user_message(args.text))
        request = self._build_request(args, new_items)

        def cancelled() -> bool:
            return cancel_event is not None and cancel_event.is_set()

        completed: list[dict[str, Any]] | None = None
        error: str | None = None
        try:
            async for event in self._client.stream(request):
                if cancelled():
                    return
                if isinstance(event.data, ResponseCompleted):
                    completed = self._completed_items(event.data, new_items)
                    continue
                update = self._translate(event.data)
                if update is not None:
                    yield update
        except BackendError as e:
            error = str(e)
        except httpx.HTTPError as e:
            logger.warning("Backend connection failed: %s", e)
            error = f"Connection error: {e}"
        except Exception as e:
            logger.exception("Unexpected error while streaming response")
            error = f"Unexpected error: {e}"

        if cancelled():
            return
        committed = False
        if error is not None:
            yield ErrorUpdate(message=error)
        elif completed is not None:
            self._history.extend(completed)
            committed = True
            logger.debug("Response completed; history now %d items", len(self._history))
        yield EndedUpdate(committed=committed)

    @staticmethod
    def _completed_items(data: ResponseCompleted, new_items: list[dict[str, Any]]) -> list[dict[str, Any]] | None:
        output = data.response.get("output") if isinstance(data.response, dict) else None
        if not isinstance(output, list):
            logger.warning("Completed response carried no output items; history unchanged")
            return None
        return [*new_items, *output]

    def _translate(self, data: Any) -> SessionUpdate | None:
        if isinstance(data, ReasoningSummaryTextDone):
            return ReasoningUpdate(text=_strip_bold(data.text))
        if isinstance(data, OutputTextDone):
            return TextUpdate(text=data.text)
        if isinstance(data, OutputItemDone):
            item = data.item
            if isinstance(item, dict) and item.get("type") == "function_call":
                return self._tool_call(item)
            return None
        if isinstance(data, GenericEvent) and data.type in ("error", "response.failed"):
            return ErrorUpdate(message=_error_message(data))
        return None

    def _tool_call(self, item: dict[str, Any]) -> SessionUpdate:
        raw = item.get("arguments") or "{}"
        try:
            arguments = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Tool call %s has invalid JSON arguments: %.200s", item.get("name"), raw)
            arguments = {}
        return ToolCallUpdate(
            id=str(item.get("call_id") or item.get("id") or ""),
            name=str(item.get("name") or ""),
            arguments=arguments,
        )


def _error_message(data: GenericEvent) -> str:
    extra = data.model_extra or {}
    if isinstance(extra.get("message"), str):
        return extra["message"]
    response = extra.get("response")
    if isinstance(response, dict):
        err = response.get("error")
        if isinstance(err, dict) and isinstance(err.get("message"), str):
            return err["message"]
    return f"Backend reported {data.type}"
