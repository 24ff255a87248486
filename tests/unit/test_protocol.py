"""Tests for SSE decoding and the streaming protocol client."""

from __future__ import annotations

import base64
import json
from typing import Any
from unittest.mock import MagicMock

import httpx
import pytest

from tiller.config import AIConfig
from tiller.models import GenericEvent, OutputTextDelta, OutputTextDone, ResponseCompleted
from tiller.services.credentials import TokenProvider
from tiller.services.protocol import BackendError, ProtocolClient, ResponsesRequest, parse_sse


async def _lines(text: str):
    for line in text.split("\n"):
        yield line


def _block(payload: dict[str, Any], event: str | None = None) -> str:
    head = f"event: {event or payload['type']}\n"
    return head + f"data: {json.dumps(payload)}\n\n"


def _delta(seq: int, text: str = "hi") -> dict[str, Any]:
    return {
        "type": "response.output_text.delta",
        "sequence_number": seq,
        "item_id": "msg_1",
        "output_index": 0,
        "content_index": 0,
        "delta": text,
        "logprobs": [],
    }


def _sse_body(*payloads: dict[str, Any]) -> bytes:
    return "".join(_block(p) for p in payloads).encode()


def _jwt(claims: dict[str, Any]) -> str:
    def enc(obj: dict[str, Any]) -> str:
        return base64.urlsafe_b64encode(json.dumps(obj).encode()).decode().rstrip("=")

    return f"{enc({'alg': 'none'})}.{enc(claims)}.sig"


def _request() -> ResponsesRequest:
    return ResponsesRequest(
        model="gpt-5-codex",
        instructions="be brief",
        input=[{"type": "message", "role": "user", "content": [{"type": "input_text", "text": "hi"}]}],
        session_id="sess-1",
    )


def _client(handler: Any, token_provider: TokenProvider | None = None) -> ProtocolClient:
    config = AIConfig(base_url="https://backend.test/codex", token="tok")
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ProtocolClient(config, token_provider=token_provider, http_client=http_client)


class TestParseSSE:
    @pytest.mark.asyncio
    async def test_malformed_block_is_skipped(self) -> None:
        blocks = [_block(_delta(i)) for i in range(10)]
        blocks[4] = "event: response.output_text.delta\ndata: {not json\n\n"
        events = [e async for e in parse_sse(_lines("".join(blocks)))]
        assert len(events) == 9
        assert all(isinstance(e.data, OutputTextDelta) for e in events)

    @pytest.mark.asyncio
    async def test_multiline_data_is_joined(self) -> None:
        payload = json.dumps(_delta(1), indent=2)
        text = "event: response.output_text.delta\n" + "".join(f"data: {line}\n" for line in payload.split("\n"))
        events = [e async for e in parse_sse(_lines(text + "\n"))]
        assert len(events) == 1
        assert events[0].event == "response.output_text.delta"

    @pytest.mark.asyncio
    async def test_unknown_type_falls_back_to_generic(self) -> None:
        text = _block({"type": "response.something_new", "sequence_number": 3, "extra": 1})
        events = [e async for e in parse_sse(_lines(text))]
        assert isinstance(events[0].data, GenericEvent)
        assert events[0].data.model_extra == {"extra": 1}

    @pytest.mark.asyncio
    async def test_known_type_with_wrong_shape_is_skipped(self) -> None:
        bad = {"type": "response.output_text.done", "sequence_number": 1}
        good = {
            "type": "response.output_text.done",
            "sequence_number": 2,
            "item_id": "m",
            "output_index": 0,
            "content_index": 0,
            "text": "done",
            "logprobs": [],
        }
        events = [e async for e in parse_sse(_lines(_block(bad) + _block(good)))]
        assert len(events) == 1
        assert isinstance(events[0].data, OutputTextDone)

    @pytest.mark.asyncio
    async def test_trailing_block_without_blank_line(self) -> None:
        text = f"event: x\ndata: {json.dumps(_delta(1))}"
        events = [e async for e in parse_sse(_lines(text))]
        assert len(events) == 1

    @pytest.mark.asyncio
    async def test_crlf_lines(self) -> None:
        text = _block(_delta(1)).replace("\n", "\r\n")
        events = [e async for e in parse_sse(_lines(text))]
        assert len(events) == 1


class TestResponsesRequest:
    def test_body(self) -> None:
        body = _request().to_body()
        assert body["model"] == "gpt-5-codex"
        assert body["stream"] is True
        assert body["store"] is False
        assert body["parallel_tool_calls"] is False
        assert body["prompt_cache_key"] == "sess-1"
        assert body["include"] == ["reasoning.encrypted_content"]
        assert "tools" not in body


class TestProtocolClient:
    @pytest.mark.asyncio
    async def test_stream_posts_and_decodes(self) -> None:
        captured: list[httpx.Request] = []
        completed = {"type": "response.completed", "sequence_number": 2, "response": {"output": []}}

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return httpx.Response(200, content=_sse_body(_delta(1), completed))

        client = _client(handler)
        events = [e async for e in client.stream(_request())]
        await client.aclose()

        assert [type(e.data) for e in events] == [OutputTextDelta, ResponseCompleted]
        request = captured[0]
        assert str(request.url) == "https://backend.test/codex/responses"
        assert request.headers["authorization"] == "Bearer tok"
        assert request.headers["session_id"] == "sess-1"
        assert request.headers["conversation_id"] == "sess-1"
        assert request.headers["accept"] == "text/event-stream"
        assert "chatgpt-account-id" not in request.headers
        assert json.loads(request.content)["instructions"] == "be brief"

    @pytest.mark.asyncio
    async def test_account_id_header_from_jwt(self) -> None:
        captured: list[httpx.Request] = []
        token = _jwt({"https://api.openai.com/auth": {"chatgpt_account_id": "acct-42"}})

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return httpx.Response(200, content=b"")

        client = _client(handler, token_provider=TokenProvider(token=token))
        _ = [e async for e in client.stream(_request())]
        assert captured[0].headers["chatgpt-account-id"] == "acct-42"

    @pytest.mark.asyncio
    async def test_error_status_raises_backend_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, content=b'{"detail": "bad model"}')

        client = _client(handler)
        with pytest.raises(BackendError, match="400") as exc_info:
            _ = [e async for e in client.stream(_request())]
        assert exc_info.value.status_code == 400
        assert "bad model" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_401_refreshes_token_once(self) -> None:
        seen_tokens: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen_tokens.append(request.headers["authorization"])
            if len(seen_tokens) == 1:
                return httpx.Response(401, content=b"expired")
            return httpx.Response(200, content=_sse_body(_delta(1)))

        provider = MagicMock(spec=TokenProvider)
        provider.can_refresh = True
        provider.get_token.side_effect = ["old", "new"]

        client = _client(handler, token_provider=provider)
        events = [e async for e in client.stream(_request())]
        assert len(events) == 1
        assert seen_tokens == ["Bearer old", "Bearer new"]
        provider.refresh.assert_called_once()

    @pytest.mark.asyncio
    async def test_401_without_command_raises(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, content=b"nope")

        client = _client(handler)
        with pytest.raises(BackendError) as exc_info:
            _ = [e async for e in client.stream(_request())]
        assert exc_info.value.status_code == 401
