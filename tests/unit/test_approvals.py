"""Tests for the permission gate."""

from __future__ import annotations

import asyncio

import pytest

from tiller.services.approvals import PendingPermission, PermissionGate


def _recording_gate() -> tuple[PermissionGate, list[PendingPermission | None]]:
    seen: list[PendingPermission | None] = []
    return PermissionGate(on_change=seen.append), seen


class TestPermissionGate:
    @pytest.mark.asyncio
    async def test_approve_resolves_true(self) -> None:
        gate, seen = _recording_gate()
        task = asyncio.create_task(gate.request("bash", {"command": "ls"}))
        await asyncio.sleep(0)

        head = gate.current
        assert head is not None
        assert head.tool_name == "bash"
        assert seen == [head]

        assert gate.approve(head.id) is True
        assert await task is True
        assert gate.current is None
        assert seen[-1] is None

    @pytest.mark.asyncio
    async def test_deny_resolves_false(self) -> None:
        gate, _ = _recording_gate()
        task = asyncio.create_task(gate.request("write", {"file_path": "a"}))
        await asyncio.sleep(0)
        assert gate.current is not None
        gate.deny(gate.current.id)
        assert await task is False

    @pytest.mark.asyncio
    async def test_unknown_id_is_noop(self) -> None:
        gate, seen = _recording_gate()
        assert gate.approve("missing") is False
        assert gate.deny("missing") is False
        assert seen == []

    @pytest.mark.asyncio
    async def test_double_resolution_is_noop(self) -> None:
        gate, _ = _recording_gate()
        task = asyncio.create_task(gate.request("bash", {}))
        await asyncio.sleep(0)
        pid = gate.current.id  # type: ignore[union-attr]
        assert gate.approve(pid) is True
        assert gate.deny(pid) is False
        assert await task is True

    @pytest.mark.asyncio
    async def test_fifo_head_only(self) -> None:
        gate, seen = _recording_gate()
        tasks = [asyncio.create_task(gate.request(name, {})) for name in ("one", "two", "three")]
        await asyncio.sleep(0)

        # Only the first request became head; later ones were queued silently
        assert len(gate) == 3
        assert [p.tool_name for p in seen if p is not None] == ["one"]

        for expected in ("one", "two", "three"):
            head = gate.current
            assert head is not None
            assert head.tool_name == expected
            gate.approve(head.id)

        assert await asyncio.gather(*tasks) == [True, True, True]
        assert [p.tool_name if p else None for p in seen] == ["one", "two", "three", None]

    @pytest.mark.asyncio
    async def test_out_of_order_resolution(self) -> None:
        gate, seen = _recording_gate()
        first = asyncio.create_task(gate.request("one", {}))
        second = asyncio.create_task(gate.request("two", {}))
        await asyncio.sleep(0)

        second_id = next(p.id for p in gate._queue if p.tool_name == "two")
        assert gate.deny(second_id) is True
        assert await second is False

        # Head is still the first request
        assert gate.current is not None
        assert gate.current.tool_name == "one"
        gate.approve(gate.current.id)
        assert await first is True

    @pytest.mark.asyncio
    async def test_cancel_withdraws_request(self) -> None:
        gate, seen = _recording_gate()
        task = asyncio.create_task(gate.request("bash", {}))
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert gate.current is None
        assert len(gate) == 0
        assert seen[-1] is None

    @pytest.mark.asyncio
    async def test_timeout_denies(self) -> None:
        gate, seen = _recording_gate()
        assert await gate.request("bash", {}, timeout=0.01) is False
        assert gate.current is None
        assert seen[-1] is None
