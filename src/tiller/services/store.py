"""Observable UI state owned by the engine."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Literal

from .approvals import PendingPermission

logger = logging.getLogger(__name__)

RecordKind = Literal["user", "assistant", "tool_call", "tool_result", "error"]
StoreListener = Callable[["EngineStore"], None]


@dataclass(frozen=True)
class HistoryRecord:
    kind: RecordKind
    text: str = ""
    name: str | None = None
    arguments: Any = None
    call_id: str | None = None
    error: bool = False


class EngineStore:
    """Conversation view, thinking indicator and permission head.

    Only the engine mutates the store. Listeners are called synchronously
    after every mutation; a failing listener is logged and does not stop
    the others.
    """

    def __init__(self) -> None:
        self.model: str = ""
        self.thinking: str | None = None
        self.permission: PendingPermission | None = None
        self._history: list[HistoryRecord] = []
        self._listeners: list[StoreListener] = []

    @property
    def history(self) -> list[HistoryRecord]:
        return list(self._history)

    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def set_model(self, display_name: str) -> None:
        self.model = display_name
        self._notify()

    def set_thinking(self, thinking: bool | str) -> None:
        if thinking is True:
            value: str | None = "Thinking"
        elif thinking is False or thinking == "":
            value = None
        else:
            value = str(thinking)
        if value == self.thinking:
            return
        self.thinking = value
        self._notify()

    def append_history(self, record: HistoryRecord) -> None:
        self._history.append(record)
        self._notify()

    def set_permission(self, permission: PendingPermission | None) -> None:
        self.permission = permission
        self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception("Store listener failed")
