"""Approval mode logic.

Pure functions with no I/O.
"""

from __future__ import annotations

from enum import Enum

from ..prompts import ALLOW_EDITS_MODE_REMINDER, ASK_MODE_REMINDER, AUTO_MODE_REMINDER


class ApprovalMode(str, Enum):
    """How tool calls reach the permission gate."""

    ASK = "ask"  # every call is gated
    ALLOW_EDITS = "allow-edits"  # file edits run freely, everything else is gated
    AUTO = "auto"  # nothing is gated


APPROVAL_MODE_NAMES: dict[str, ApprovalMode] = {mode.value: mode for mode in ApprovalMode}

EDIT_TOOLS: frozenset[str] = frozenset({"write", "edit"})

_MODE_REMINDERS: dict[ApprovalMode, str] = {
    ApprovalMode.ASK: ASK_MODE_REMINDER,
    ApprovalMode.ALLOW_EDITS: ALLOW_EDITS_MODE_REMINDER,
    ApprovalMode.AUTO: AUTO_MODE_REMINDER,
}


def parse_approval_mode(raw: str) -> ApprovalMode:
    """Parse an approval mode string. Returns ASK on invalid input."""
    return APPROVAL_MODE_NAMES.get(raw.lower().strip().replace("_", "-"), ApprovalMode.ASK)


def mode_reminder(mode: ApprovalMode) -> str:
    return _MODE_REMINDERS[mode]


def should_require_approval(
    tool_name: str,
    mode: ApprovalMode,
    allowed_tools: set[str] | None = None,
    session_allowed: set[str] | None = None,
) -> bool:
    """Return True when the call must wait for a human decision.

    A tool's read-only flag is deliberately not an input here.
    """
    if allowed_tools and tool_name in allowed_tools:
        return False

    if session_allowed and tool_name in session_allowed:
        return False

    if mode == ApprovalMode.ALLOW_EDITS:
        return tool_name not in EDIT_TOOLS

    return mode != ApprovalMode.AUTO
