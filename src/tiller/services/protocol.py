"""Streaming client for the Responses backend.

Opens one POST per request and decodes the ``text/event-stream`` body into
validated events. Blocks that fail to decode or validate are logged and
skipped; they never end the stream.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncGenerator, AsyncIterable

import httpx
from pydantic import ValidationError

from .. import __version__
from ..config import AIConfig
from ..models import EventData, validate_event
from .credentials import TokenProvider, TokenProviderError, extract_account_id

logger = logging.getLogger(__name__)

_CLIENT_VERSION = "0.41.0"
_ORIGINATOR = "codex_cli_rs"
_USER_AGENT = f"tiller/{__version__}"
_MAX_ERROR_BODY = 2000


class BackendError(Exception):
    """The backend rejected the request or the stream could not be opened."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass
class StreamEvent:
    event: str | None
    data: EventData


@dataclass
class ResponsesRequest:
    model: str
    instructions: str
    input: list[dict[str, Any]]
    session_id: str
    tools: list[dict[str, Any]] | None = None
    reasoning: dict[str, str] = field(default_factory=lambda: {"effort": "medium", "summary": "auto"})

    def to_body(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": self.model,
            "instructions": self.instructions,
            "input": self.input,
            "tool_choice": "auto",
            "parallel_tool_calls": False,
            "reasoning": self.reasoning,
            "store": False,
            "stream": True,
            "include": ["reasoning.encrypted_content"],
            "prompt_cache_key": self.session_id,
        }
        if self.tools:
            body["tools"] = self.tools
        return body


def _decode_block(event_name: str | None, data_lines: list[str]) -> StreamEvent | None:
    raw = "\n".join(data_lines)
    try:
        payload = json.loads(raw)
        data = validate_event(payload)
    except (json.JSONDecodeError, ValidationError) as e:
        logger.warning("Invalid SSE event data (event=%s): %s", event_name, e)
        return None
    return StreamEvent(event=event_name, data=data)


async def parse_sse(lines: AsyncIterable[str]) -> AsyncGenerator[StreamEvent, None]:
    """Group ``event:``/``data:`` lines into blocks and decode each one.

    A blank line ends a block. Multiple ``data:`` lines are joined with
    newlines. A trailing block without a terminating blank line is still
    decoded.
    """
    event_name: str | None = None
    data_lines: list[str] = []

    async for line in lines:
        line = line.rstrip("\r")
        if not line.strip():
            if data_lines:
                decoded = _decode_block(event_name, data_lines)
                if decoded is not None:
                    yield decoded
            event_name = None
            data_lines = []
            continue

        field_name, sep, value = line.partition(":")
        if not sep:
            continue
        value = value.strip()
        if field_name == "event":
            event_name = value
        elif field_name == "data":
            data_lines.append(value)

    if data_lines:
        decoded = _decode_block(event_name, data_lines)
        if decoded is not None:
            yield decoded


class ProtocolClient:
    def __init__(
        self,
        config: AIConfig,
        token_provider: TokenProvider | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config
        self._token_provider = token_provider or TokenProvider(token=config.token, command=config.token_command)
        self._http_client = http_client

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            timeout = httpx.Timeout(
                connect=float(self.config.connect_timeout),
                read=float(self.config.request_timeout),
                write=float(self.config.request_timeout),
                pool=float(self.config.connect_timeout),
            )
            # SECURITY-REVIEW: verify=False only when user explicitly sets verify_ssl: false in config
            self._http_client = httpx.AsyncClient(verify=self.config.verify_ssl, timeout=timeout)
        return self._http_client

    async def aclose(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    def _headers(self, token: str, session_id: str) -> dict[str, str]:
        headers = {
            "authorization": f"Bearer {token}",
            "version": _CLIENT_VERSION,
            "openai-beta": "responses=experimental",
            "conversation_id": session_id,
            "session_id": session_id,
            "accept": "text/event-stream",
            "content-type": "application/json",
            "originator": _ORIGINATOR,
            "user-agent": _USER_AGENT,
        }
        account_id = extract_account_id(token)
        if account_id:
            headers["chatgpt-account-id"] = account_id
        return headers

    async def stream(self, request: ResponsesRequest) -> AsyncGenerator[StreamEvent, None]:
        """POST the request and yield decoded events until the body ends.

        Raises ``BackendError`` for non-2xx responses and credential failures;
        transport errors propagate as ``httpx.HTTPError``.
        """
        url = f"{self.config.base_url}/responses"
        body = request.to_body()
        refreshed = False

        while True:
            try:
                token = self._token_provider.get_token()
            except TokenProviderError as e:
                raise BackendError(f"Could not obtain token: {e}") from e

            async with self._client().stream(
                "POST", url, headers=self._headers(token, request.session_id), json=body
            ) as response:
                if response.status_code == 401 and not refreshed and self._token_provider.can_refresh:
                    logger.info("Backend returned 401, refreshing token and retrying")
                    refreshed = True
                    try:
                        self._token_provider.refresh()
                    except TokenProviderError as e:
                        raise BackendError(f"Authentication failed: {e}", status_code=401) from e
                    continue

                if response.status_code >= 400:
                    detail = (await response.aread()).decode("utf-8", errors="replace")[:_MAX_ERROR_BODY]
                    logger.warning("Backend error %d: %s", response.status_code, detail)
                    raise BackendError(
                        f"Backend error: {response.status_code} {response.reason_phrase}\n{detail}".rstrip(),
                        status_code=response.status_code,
                    )

                async for event in parse_sse(response.aiter_lines()):
                    yield event
                return
