"""Permission gate: FIFO queue of tool calls awaiting a human decision."""

from __future__ import annotations

import asyncio
import logging
import secrets
import time
from dataclasses import dataclass, field
from typing import Any, Callable

logger = logging.getLogger(__name__)

PermissionListener = Callable[["PendingPermission | None"], None]


@dataclass
class PendingPermission:
    id: str
    tool_name: str
    arguments: dict[str, Any]
    fut: asyncio.Future[bool] = field(repr=False)
    created_at: float = field(default_factory=time.time)


class PermissionGate:
    """Queues authorization requests and resolves each exactly once.

    Only the head of the queue is exposed. The listener is called when a
    request becomes the head (queue was empty) and after every resolution
    with the new head, or ``None`` when the queue drains.

    All methods must be called from the event loop thread.
    """

    def __init__(self, on_change: PermissionListener | None = None) -> None:
        self._queue: list[PendingPermission] = []
        self._on_change = on_change

    def set_listener(self, on_change: PermissionListener | None) -> None:
        self._on_change = on_change

    @property
    def current(self) -> PendingPermission | None:
        return self._queue[0] if self._queue else None

    def __len__(self) -> int:
        return len(self._queue)

    async def request(self, tool_name: str, arguments: dict[str, Any], timeout: float | None = None) -> bool:
        """Enqueue a request and wait for approve/deny.

        Returns False if ``timeout`` seconds pass without a decision. If the
        waiting task is cancelled, the request is withdrawn from the queue.
        """
        loop = asyncio.get_running_loop()
        pending = PendingPermission(
            id=secrets.token_urlsafe(8),
            tool_name=tool_name,
            arguments=arguments,
            fut=loop.create_future(),
        )
        self._queue.append(pending)
        logger.debug("Permission requested for %s (%s)", tool_name, pending.id)
        if len(self._queue) == 1:
            self._notify()

        try:
            if timeout:
                return await asyncio.wait_for(asyncio.shield(pending.fut), timeout=timeout)
            return await pending.fut
        except asyncio.TimeoutError:
            logger.warning("Permission request for %s timed out after %.0fs", tool_name, timeout)
            self._resolve(pending.id, False)
            return False
        finally:
            if any(p is pending for p in self._queue):
                # Withdrawn without a decision (cancelled turn)
                pending.fut.cancel()
                self._remove(pending)

    def approve(self, permission_id: str) -> bool:
        return self._resolve(permission_id, True)

    def deny(self, permission_id: str) -> bool:
        return self._resolve(permission_id, False)

    def _resolve(self, permission_id: str, approved: bool) -> bool:
        pending = next((p for p in self._queue if p.id == permission_id), None)
        if pending is None or pending.fut.done():
            return False
        pending.fut.set_result(approved)
        logger.info("Permission %s for %s", "approved" if approved else "denied", pending.tool_name)
        self._remove(pending)
        return True

    def _remove(self, pending: PendingPermission) -> None:
        self._queue = [p for p in self._queue if p is not pending]
        self._notify()

    def _notify(self) -> None:
        if self._on_change is not None:
            self._on_change(self.current)
