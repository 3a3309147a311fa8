"""Execution modes — decide whether an agent turn may write to disk."""

from __future__ import annotations

from enum import StrEnum

from tether.conversation import Conversation


class ExecutionMode(StrEnum):
    DISCUSS = "discuss"
    PATCH = "patch"
    AUTONOMOUS = "autonomous"


def normalize_execution_mode(
    value: object, fallback: ExecutionMode = ExecutionMode.PATCH
) -> ExecutionMode:
    mode = str(value or "").strip().lower()
    try:
        return ExecutionMode(mode)
    except ValueError:
        return fallback


def resolve_execution_mode(conversation: Conversation) -> ExecutionMode:
    """Return the conversation's mode.

    An explicit ``execution_mode`` wins; otherwise the legacy ``autopilot``
    flag maps to discuss/autonomous; otherwise ``patch``.
    """
    if conversation.execution_mode in set(ExecutionMode):
        return ExecutionMode(conversation.execution_mode)
    if conversation.autopilot is not None:
        return ExecutionMode.AUTONOMOUS if conversation.autopilot else ExecutionMode.DISCUSS
    return ExecutionMode.PATCH


def mode_allows_writes(mode: object) -> bool:
    return normalize_execution_mode(mode) is ExecutionMode.AUTONOMOUS


def writes_allowed(conversation: Conversation) -> bool:
    """Default writes-allowed resolver used by the bridge."""
    return mode_allows_writes(resolve_execution_mode(conversation))
