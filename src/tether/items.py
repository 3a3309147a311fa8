"""Classify the heterogeneous item shapes emitted by the agent CLI.

Field names vary across tools and protocol versions, so an item is mapped
onto one of four variants by a fixed priority of heuristics:

1. ``reasoning``       -> :class:`ReasoningItem`
2. ``agent_message``   -> :class:`AgentMessageItem`
3. tool result         -> :class:`ToolResultItem`
4. tool start          -> :class:`ToolStartItem`

Anything else classifies to ``None``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

RawItem = dict[str, Any]

_RESULT_TYPES = frozenset(
    {
        "tool_result",
        "function_call_output",
        "tool_call_output",
        "custom_tool_call_output",
        "mcp_tool_call_output",
    }
)

_START_TYPES = frozenset(
    {
        "tool_use",
        "tool_call",
        "function_call",
        "custom_tool_call",
        "mcp_tool_call",
        "command_execution",
        "local_shell_call",
        "web_search",
        "file_change",
    }
)

#: Fields that correlate a result with the call that produced it.
_CORRELATION_FIELDS = ("tool_use_id", "call_id", "tool_call_id")

#: Item statuses that mean the tool has already finished.
_TERMINAL_STATUSES = frozenset({"completed", "failed", "declined"})

_ID_FIELDS = ("id", "tool_use_id", "call_id", "invocation_id")
_NAME_FIELDS = ("name", "tool", "tool_name", "function_name", "type")
_COMMAND_FIELDS = ("command", "cmd", "command_line", "shell_command")
_MESSAGE_FIELDS = ("text", "content", "output_text", "summary")
_PART_FIELDS = ("text", "output_text", "content", "summary")


# ------------------------------------------------------------------ #
# Variants
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class ReasoningItem:
    text: str


@dataclass(frozen=True)
class AgentMessageItem:
    text: str


@dataclass(frozen=True)
class ToolStartItem:
    tool_id: str | None
    name: str
    command: str | None


@dataclass(frozen=True)
class ToolResultItem:
    tool_id: str | None
    command: str | None
    output: str
    is_error: bool


Item = ReasoningItem | AgentMessageItem | ToolStartItem | ToolResultItem


# ------------------------------------------------------------------ #
# Field helpers
# ------------------------------------------------------------------ #


def _first(raw: RawItem, fields: tuple[str, ...]) -> Any:
    for field in fields:
        value = raw.get(field)
        if value is not None:
            return value
    return None


def _first_str(raw: RawItem, fields: tuple[str, ...]) -> str | None:
    for field in fields:
        value = raw.get(field)
        if isinstance(value, str):
            return value
    return None


def resolve_tool_id(raw: RawItem) -> str | None:
    value = _first(raw, _ID_FIELDS)
    return None if value is None else str(value)


def resolve_tool_name(raw: RawItem) -> str:
    value = _first(raw, _NAME_FIELDS)
    return str(value) if value else "Tool"


def extract_command(raw: RawItem) -> str | None:
    """Return the command text a tool call ran, if the item names one."""
    for source in (raw, raw.get("input"), raw.get("arguments")):
        if not isinstance(source, dict):
            continue
        command = _command_from(source)
        if command:
            return command
    return None


def _command_from(source: RawItem) -> str | None:
    value = _first(source, _COMMAND_FIELDS)
    if isinstance(value, list):
        return " ".join(str(part) for part in value)
    if value is not None:
        return str(value)
    argv = source.get("argv")
    if isinstance(argv, list) and argv:
        return " ".join(str(part) for part in argv)
    execution = source.get("execution")
    if isinstance(execution, dict):
        nested = _first(execution, ("command", "command_line", "shell_command"))
        if isinstance(nested, list):
            return " ".join(str(part) for part in nested)
        if nested is not None:
            return str(nested)
    return None


def _part_text(part: Any) -> str:
    if isinstance(part, str):
        return part
    if isinstance(part, dict):
        value = _first_str(part, _PART_FIELDS)
        if value is not None:
            return value
    return ""


def extract_message_text(raw: RawItem) -> str:
    """Text of an ``agent_message`` item across protocol versions."""
    value = _first_str(raw, _MESSAGE_FIELDS)
    if value is not None:
        return value
    for field in ("content", "output"):
        parts = raw.get(field)
        if isinstance(parts, list):
            return "".join(_part_text(part) for part in parts)
    nested = raw.get("output")
    if isinstance(nested, dict):
        return _first_str(nested, ("text", "content", "summary")) or ""
    return ""


def extract_result_text(raw: RawItem) -> str:
    """Output text of a tool result, in order of how specific the field is."""
    value = _first_str(raw, ("content", "output", "result", "text", "summary"))
    if value is not None:
        return value
    aggregated = raw.get("aggregated_output")
    if isinstance(aggregated, str):
        return aggregated

    streams = [raw[k] for k in ("stdout", "stderr") if isinstance(raw.get(k), str)]
    if streams:
        return "\n".join(s for s in streams if s)

    for field in ("output", "content"):
        parts = raw.get(field)
        if isinstance(parts, list):
            return "\n".join(t for t in (_part_text(p) for p in parts) if t)

    nested = raw.get("output")
    if isinstance(nested, dict):
        nested_streams = [
            nested[k] for k in ("stdout", "stderr") if isinstance(nested.get(k), str)
        ]
        if nested_streams:
            return "\n".join(s for s in nested_streams if s)
        value = _first_str(nested, ("text", "summary", "content"))
        if value is not None:
            return value

    execution = raw.get("execution")
    if isinstance(execution, dict):
        return _describe_execution(execution)
    return ""


def _describe_execution(execution: RawItem) -> str:
    parts: list[str] = []
    command = _command_from(execution)
    if command:
        parts.append(f"$ {command}")
    exit_code = execution.get("exit_code")
    if exit_code is not None:
        parts.append(f"exit code {exit_code}")
    duration = execution.get("duration_ms")
    if duration is not None:
        parts.append(f"{duration} ms")
    return " · ".join(parts)


def _is_error(raw: RawItem) -> bool:
    if raw.get("is_error") is True or raw.get("status") == "failed":
        return True
    exit_code = raw.get("exit_code")
    if isinstance(exit_code, int) and not isinstance(exit_code, bool) and exit_code != 0:
        return True
    return bool(raw.get("error"))


# ------------------------------------------------------------------ #
# Classification
# ------------------------------------------------------------------ #


def _looks_like_result(raw: RawItem) -> bool:
    if raw.get("type") in _RESULT_TYPES:
        return True
    if any(raw.get(f) is not None for f in _CORRELATION_FIELDS):
        return True
    if "stdout" in raw or "stderr" in raw:
        return True
    # Completed execution evidence, e.g. a finished ``command_execution``.
    # Started items carry an empty ``aggregated_output`` while in progress.
    status = raw.get("status")
    if status == "in_progress":
        return False
    if raw.get("exit_code") is not None or "aggregated_output" in raw:
        return True
    return status in _TERMINAL_STATUSES


def _looks_like_start(raw: RawItem) -> bool:
    if raw.get("type") in _START_TYPES:
        return True
    if any(raw.get(f) is not None for f in ("name", "tool", "tool_name", "function_name")):
        return True
    return isinstance(raw.get("input"), dict) or raw.get("command") is not None


def classify_item(raw: object) -> Item | None:
    """Map a raw item onto its variant, or ``None`` if it is not recognised."""
    if not isinstance(raw, dict):
        return None
    item_type = raw.get("type")

    if item_type == "reasoning":
        return ReasoningItem(text=extract_message_text(raw))

    if item_type == "agent_message":
        return AgentMessageItem(text=extract_message_text(raw))

    if _looks_like_result(raw):
        return ToolResultItem(
            tool_id=resolve_tool_id(raw),
            command=extract_command(raw),
            output=extract_result_text(raw),
            is_error=_is_error(raw),
        )

    if _looks_like_start(raw):
        return ToolStartItem(
            tool_id=resolve_tool_id(raw),
            name=resolve_tool_name(raw),
            command=extract_command(raw),
        )

    return None
