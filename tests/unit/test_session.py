"""Tests for the session layer over the protocol client."""

from __future__ import annotations

import asyncio
import json
from typing import Any

import httpx
import pytest

from tiller.models import validate_event
from tiller.services.protocol import BackendError, ResponsesRequest, StreamEvent
from tiller.services.session import (
    EndedUpdate,
    ErrorUpdate,
    ReasoningUpdate,
    Session,
    StepArguments,
    TextUpdate,
    ToolCallUpdate,
    ToolResult,
    _strip_bold,
)


class FakeClient:
    """Replays canned payloads, optionally failing after them."""

    def __init__(self, payloads: list[dict[str, Any]], error: Exception | None = None) -> None:
        self.payloads = payloads
        self.error = error
        self.requests: list[ResponsesRequest] = []

    async def stream(self, request: ResponsesRequest):
        self.requests.append(request)
        for payload in self.payloads:
            yield StreamEvent(event=payload["type"], data=validate_event(payload))
        if self.error is not None:
            raise self.error


def _text_done(text: str, seq: int = 1) -> dict[str, Any]:
    return {
        "type": "response.output_text.done",
        "sequence_number": seq,
        "item_id": "msg_1",
        "output_index": 0,
        "content_index": 0,
        "text": text,
        "logprobs": [],
    }


def _reasoning_done(text: str) -> dict[str, Any]:
    return {
        "type": "response.reasoning_summary_text.done",
        "sequence_number": 1,
        "item_id": "rs_1",
        "output_index": 0,
        "summary_index": 0,
        "text": text,
    }


def _function_call(call_id: str, name: str, arguments: str) -> dict[str, Any]:
    return {
        "type": "response.output_item.done",
        "sequence_number": 2,
        "output_index": 1,
        "item": {"type": "function_call", "id": "fc_1", "call_id": call_id, "name": name, "arguments": arguments},
    }


def _completed(output: list[dict[str, Any]]) -> dict[str, Any]:
    return {"type": "response.completed", "sequence_number": 9, "response": {"id": "r1", "output": output}}


ASSISTANT_ITEM = {"type": "message", "role": "assistant", "content": [{"type": "output_text", "text": "hello"}]}


async def _collect(session: Session, args: StepArguments, cancel: asyncio.Event | None = None) -> list[Any]:
    return [u async for u in session.step(args, cancel)]


class TestSessionStep:
    @pytest.mark.asyncio
    async def test_text_then_ended_and_history_committed(self) -> None:
        client = FakeClient([_text_done("hello"), _completed([ASSISTANT_ITEM])])
        session = Session(client, model="gpt-5-codex", instructions="x")

        updates = await _collect(session, StepArguments(text="hi"))

        assert updates == [TextUpdate(text="hello"), EndedUpdate()]
        assert len(session.history) == 2
        assert session.history[0]["role"] == "user"
        assert session.history[1] == ASSISTANT_ITEM

    @pytest.mark.asyncio
    async def test_request_shape(self) -> None:
        client = FakeClient([_completed([])])
        session = Session(client, model="gpt-5-codex", instructions="sys", reasoning_effort="high", session_id="s1")
        tools = [{"name": "read", "description": "Read", "parameters": {"type": "object", "properties": {}}}]

        await _collect(
            session,
            StepArguments(text="go", tool_results=[ToolResult(id="c1", content="ok")], tools=tools, web_search=True),
        )

        body = client.requests[0].to_body()
        assert body["instructions"] == "sys"
        assert body["reasoning"] == {"effort": "high", "summary": "auto"}
        assert body["prompt_cache_key"] == "s1"
        assert body["input"][0] == {"type": "function_call_output", "call_id": "c1", "output": "ok"}
        assert body["input"][1]["content"][0]["text"] == "go"
        assert body["tools"][0]["type"] == "function"
        assert body["tools"][0]["name"] == "read"
        assert body["tools"][-1] == {"type": "web_search"}

    @pytest.mark.asyncio
    async def test_history_carries_into_next_request(self) -> None:
        client = FakeClient([_completed([ASSISTANT_ITEM])])
        session = Session(client, model="m", instructions="x")
        await _collect(session, StepArguments(text="one"))
        await _collect(session, StepArguments(text="two"))

        second_input = client.requests[1].input
        assert len(second_input) == 3
        assert second_input[1] == ASSISTANT_ITEM
        assert second_input[2]["content"][0]["text"] == "two"

    @pytest.mark.asyncio
    async def test_reasoning_bold_is_stripped(self) -> None:
        client = FakeClient([_reasoning_done("**Planning the change**"), _reasoning_done("plain **mid** text")])
        session = Session(client, model="m", instructions="x")
        updates = await _collect(session, StepArguments(text="hi"))
        assert updates[:2] == [
            ReasoningUpdate(text="Planning the change"),
            ReasoningUpdate(text="plain **mid** text"),
        ]

    def test_bold_stripped_only_when_whole_text_wrapped(self) -> None:
        assert _strip_bold("**a** and **b**") == "**a** and **b**"
        assert _strip_bold("**Reading files**") == "Reading files"

    @pytest.mark.asyncio
    async def test_function_call_update(self) -> None:
        client = FakeClient([_function_call("call_1", "bash", json.dumps({"command": "ls"})), _completed([])])
        session = Session(client, model="m", instructions="x")
        updates = await _collect(session, StepArguments(text="hi"))
        assert updates[0] == ToolCallUpdate(id="call_1", name="bash", arguments={"command": "ls"})

    @pytest.mark.asyncio
    async def test_function_call_with_invalid_json_arguments(self) -> None:
        client = FakeClient([_function_call("call_1", "bash", "{broken")])
        session = Session(client, model="m", instructions="x")
        updates = await _collect(session, StepArguments(text="hi"))
        assert updates[0] == ToolCallUpdate(id="call_1", name="bash", arguments={})

    @pytest.mark.asyncio
    async def test_backend_error_yields_error_then_ended(self) -> None:
        client = FakeClient([_text_done("partial")], error=BackendError("Backend error: 500 Server Error"))
        session = Session(client, model="m", instructions="x")
        updates = await _collect(session, StepArguments(text="hi"))
        assert updates == [
            TextUpdate(text="partial"),
            ErrorUpdate(message="Backend error: 500 Server Error"),
            EndedUpdate(committed=False),
        ]
        assert session.history == []

    @pytest.mark.asyncio
    async def test_error_after_completed_does_not_commit(self) -> None:
        client = FakeClient([_completed([ASSISTANT_ITEM])], error=httpx.ReadError("connection reset"))
        session = Session(client, model="m", instructions="x")
        updates = await _collect(session, StepArguments(text="hi"))
        assert isinstance(updates[0], ErrorUpdate)
        assert "connection reset" in updates[0].message
        assert updates[-1] == EndedUpdate(committed=False)
        assert session.history == []

    @pytest.mark.asyncio
    async def test_no_completed_event_leaves_history_alone(self) -> None:
        client = FakeClient([_text_done("hello")])
        session = Session(client, model="m", instructions="x")
        updates = await _collect(session, StepArguments(text="hi"))
        assert updates[-1] == EndedUpdate(committed=False)
        assert session.history == []

    @pytest.mark.asyncio
    async def test_backend_failed_event_becomes_error(self) -> None:
        failed = {
            "type": "response.failed",
            "sequence_number": 3,
            "response": {"error": {"message": "quota exceeded"}},
        }
        client = FakeClient([failed])
        session = Session(client, model="m", instructions="x")
        updates = await _collect(session, StepArguments(text="hi"))
        assert updates == [ErrorUpdate(message="quota exceeded"), EndedUpdate(committed=False)]

    @pytest.mark.asyncio
    async def test_cancelled_step_yields_nothing_more(self) -> None:
        cancel = asyncio.Event()
        client = FakeClient([_text_done("one"), _text_done("two", seq=2), _completed([ASSISTANT_ITEM])])
        session = Session(client, model="m", instructions="x")

        updates = []
        async for update in session.step(StepArguments(text="hi"), cancel):
            updates.append(update)
            cancel.set()

        assert updates == [TextUpdate(text="one")]
        assert session.history == []
