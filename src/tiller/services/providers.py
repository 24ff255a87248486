"""Model providers: which models exist and how to open a session for one."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

from ..config import AIConfig
from ..prompts import build_instructions
from ..tools.policy import ApprovalMode, mode_reminder
from .session import ReasoningEffort, Session, StreamingClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelDescriptor:
    name: str
    display_name: str


class ModelProvider(Protocol):
    name: str
    display_name: str

    def models(self) -> list[ModelDescriptor]: ...

    def create_session(self, model: str) -> Session: ...


_CODEX_EFFORTS: dict[str, ReasoningEffort] = {
    "gpt-5-codex-high": "high",
    "gpt-5-codex-medium": "medium",
    "gpt-5-codex-low": "low",
}
_CODEX_BACKEND_MODEL = "gpt-5-codex"


class CodexProvider:
    """Codex Responses backend. Model names encode the reasoning effort."""

    name = "codex"
    display_name = "Codex"

    def __init__(
        self,
        config: AIConfig,
        client: StreamingClient,
        approval_mode: ApprovalMode = ApprovalMode.ASK,
    ) -> None:
        self._config = config
        self._client = client
        self._approval_mode = approval_mode

    def models(self) -> list[ModelDescriptor]:
        return [
            ModelDescriptor(name=name, display_name=f"GPT-5 Codex ({effort})") for name, effort in _CODEX_EFFORTS.items()
        ]

    def create_session(self, model: str) -> Session:
        effort = _CODEX_EFFORTS.get(model)
        if effort is None:
            raise ValueError(f"Unknown model for provider {self.name}: {model}")
        instructions = build_instructions(self._config.instructions, [mode_reminder(self._approval_mode)])
        logger.debug("Creating %s session for %s (effort=%s)", self.name, model, effort)
        return Session(
            self._client,
            model=_CODEX_BACKEND_MODEL,
            instructions=instructions,
            reasoning_effort=effort,
        )
