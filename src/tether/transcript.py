"""Event interpreter — turns decoded agent events into a transcript.

The builder is scoped to one attempt of one turn.  It consumes events in
arrival order, emits notifications synchronously, and either finalizes the
turn on ``turn.completed`` or marks it for retry.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any

from tether.accounting import (
    TokenUsage,
    calculate_cost,
    display_input_tokens,
)
from tether.constants import (
    TOOL_RESULT_MAX_LENGTH,
    TRACE_CLOSE,
    TRACE_OPEN,
    NotificationSink,
    SaveCallback,
    StatusCallback,
)
from tether.conversation import Conversation, Message, TokenCounts
from tether.helpers import report_error
from tether.items import (
    AgentMessageItem,
    Item,
    ReasoningItem,
    ToolResultItem,
    ToolStartItem,
    classify_item,
)
from tether.notifications import (
    DeltaNotification,
    ResultNotification,
    StderrNotification,
    ThinkingNotification,
    ToolResultNotification,
    ToolStartNotification,
)
from tether.pricing import ModelRegistry
from tether.retry import RetryMode, RetryPermissions, plan_empty_turn_retry

logger = logging.getLogger(__name__)

EMPTY_RESPONSE_ERROR = "Model returned an empty response. Please retry."


@dataclass
class TurnCallbacks:
    """Caller-supplied hooks invoked when a turn is finalized."""

    on_save: SaveCallback
    broadcast_status: StatusCallback


@dataclass
class TurnState:
    """Scratch state for one attempt; discarded when the attempt ends."""

    typed_input_tokens: int | None = None
    assistant_text: str = ""
    open_tool_ids: set[str] = field(default_factory=set)
    open_trace_count: int = 0
    #: Every tool id announced this attempt, open or not.
    seen_tool_ids: set[str] = field(default_factory=set)
    #: Tool ids whose result has already been rendered.
    closed_tool_ids: set[str] = field(default_factory=set)
    tool_commands: dict[str, str] = field(default_factory=dict)
    retry_mode: RetryMode = RetryMode.NONE
    started_at: float = field(default_factory=time.monotonic)

    @property
    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started_at) * 1000)


def merge_with_overlap(existing: str, new: str) -> tuple[str, str]:
    """Concatenate *new* onto *existing* without repeating shared text.

    Returns ``(merged, appended)`` where *appended* is what the client has
    not yet seen.  Text with no overlap starts a new paragraph unless
    *existing* already ends on a line break.
    """
    if not new or new in existing:
        return existing, ""
    if existing in new:
        if new.startswith(existing):
            return new, new[len(existing):]
        return new, new
    for size in range(min(len(existing), len(new)), 0, -1):
        if existing.endswith(new[:size]):
            remainder = new[size:]
            return existing + remainder, remainder
    if existing and not existing.endswith("\n"):
        new = "\n\n" + new
    return existing + new, new


def truncate_result(text: str, limit: int = TOOL_RESULT_MAX_LENGTH) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "...\n(truncated)"


class TranscriptBuilder:
    """Interprets one attempt's event stream for a conversation."""

    def __init__(
        self,
        conversation: Conversation,
        state: TurnState,
        sink: NotificationSink,
        callbacks: TurnCallbacks,
        *,
        registry: ModelRegistry,
        permissions: RetryPermissions | None = None,
        tool_result_max_length: int = TOOL_RESULT_MAX_LENGTH,
    ) -> None:
        self._conv = conversation
        self.state = state
        self._sink = sink
        self._callbacks = callbacks
        self._registry = registry
        self._permissions = permissions or RetryPermissions()
        self._max_result = tool_result_max_length
        self.completed = False

    @property
    def text(self) -> str:
        return self.state.assistant_text

    # ------------------------------------------------------------------ #
    # Events
    # ------------------------------------------------------------------ #

    def handle_event(self, event: dict[str, Any]) -> None:
        """Apply a single decoded event."""
        event_type = event.get("type")
        logger.debug("%s: event %s", self._conv.id, event_type)

        if event_type == "thread.started":
            thread_id = event.get("thread_id")
            if isinstance(thread_id, str) and thread_id:
                self._conv.session_id = thread_id

        elif event_type in ("item.started", "item.completed"):
            item = classify_item(event.get("item"))
            if item is not None:
                self.handle_item(item)

        elif event_type == "turn.completed":
            self._handle_turn_completed(event)

        elif event_type in ("turn.failed", "error"):
            self._handle_agent_error(event)

        # turn.started and unknown types carry nothing to render.

    def handle_item(self, item: Item, *, replay: bool = False) -> None:
        if isinstance(item, ReasoningItem):
            if not replay:
                self._emit(ThinkingNotification(conversation_id=self._conv.id, text=item.text))
        elif isinstance(item, AgentMessageItem):
            self._handle_agent_message(item)
        elif isinstance(item, ToolResultItem):
            self._handle_tool_result(item)
        elif isinstance(item, ToolStartItem):
            self._handle_tool_start(item)

    # ------------------------------------------------------------------ #
    # Items
    # ------------------------------------------------------------------ #

    def _handle_tool_start(self, item: ToolStartItem) -> None:
        state = self.state
        if item.tool_id is not None and item.tool_id in state.seen_tool_ids:
            logger.debug("%s: duplicate tool start %s", self._conv.id, item.tool_id)
            return
        if item.tool_id is not None:
            state.open_tool_ids.add(item.tool_id)
            state.seen_tool_ids.add(item.tool_id)
            if item.command:
                state.tool_commands[item.tool_id] = item.command
        state.open_trace_count += 1

        self._emit(
            ToolStartNotification(
                conversation_id=self._conv.id, tool=item.name, id=item.tool_id
            )
        )
        header = f"\n**Using {item.name}**"
        if item.command:
            header += f": `{item.command}`"
        self._append(f"{TRACE_OPEN}{header}\n")

    def _handle_tool_result(self, item: ToolResultItem) -> None:
        state = self.state
        if item.tool_id is not None:
            if item.tool_id in state.closed_tool_ids:
                logger.debug("%s: duplicate tool result %s", self._conv.id, item.tool_id)
                return
            state.closed_tool_ids.add(item.tool_id)
            had_open = item.tool_id in state.open_tool_ids
        else:
            # Positional fallback: an id-less result closes whichever trace
            # is open, which can misattribute nested calls.
            had_open = state.open_trace_count > 0
        if had_open:
            if item.tool_id is not None:
                state.open_tool_ids.discard(item.tool_id)
            state.open_trace_count = max(0, state.open_trace_count - 1)

        self._emit(
            ToolResultNotification(
                conversation_id=self._conv.id,
                tool_use_id=item.tool_id,
                is_error=item.is_error,
            )
        )

        command = item.command
        if command is None and item.tool_id is not None:
            command = state.tool_commands.get(item.tool_id)
        output = ""
        if command:
            output += f"\n```\n$ {command}\n```\n"
        if item.output:
            body = truncate_result(item.output, self._max_result)
            if item.is_error:
                body = f"Error: {body}"
            output += f"\n```\n{body}\n```\n"
        if had_open:
            output += TRACE_CLOSE
        self._append(output)

    def _handle_agent_message(self, item: AgentMessageItem) -> None:
        self.close_open_traces()
        merged, appended = merge_with_overlap(self.state.assistant_text, item.text)
        self.state.assistant_text = merged
        if appended:
            self._emit(DeltaNotification(conversation_id=self._conv.id, text=appended))

    def close_open_traces(self) -> None:
        """Close every open trace so following text renders outside them."""
        state = self.state
        if state.open_trace_count <= 0:
            return
        self._append(TRACE_CLOSE * state.open_trace_count)
        state.open_tool_ids.clear()
        state.open_trace_count = 0

    # ------------------------------------------------------------------ #
    # Turn completion
    # ------------------------------------------------------------------ #

    def _handle_turn_completed(self, event: dict[str, Any]) -> None:
        batch = event.get("items")
        if isinstance(batch, list):
            for raw in batch:
                item = classify_item(raw)
                if item is not None:
                    self.handle_item(item, replay=True)

        usage = TokenUsage.from_usage(event.get("usage"))
        if not self.state.assistant_text.strip() and usage.is_empty:
            self._handle_empty_turn()
            return

        self.close_open_traces()
        self._finalize(usage, event.get("duration_ms"))

    def _handle_empty_turn(self) -> None:
        mode = plan_empty_turn_retry(self._permissions)
        if mode is not RetryMode.NONE:
            logger.info("%s: empty turn, retrying with %s", self._conv.id, mode)
            self._conv.session_id = None
            self.state.retry_mode = mode
            return

        self.completed = True
        self._conv.status = "idle"
        self._callbacks.on_save(self._conv.id)
        report_error(self._sink, self._conv.id, EMPTY_RESPONSE_ERROR, logger=logger)
        self._callbacks.broadcast_status(self._conv.id, "idle")

    def _finalize(self, usage: TokenUsage, duration: object) -> None:
        conv = self._conv
        state = self.state
        duration_ms = duration if isinstance(duration, int) else state.elapsed_ms
        cost = calculate_cost(self._registry, conv.model, usage.net_input, usage.output)
        tokens = TokenCounts(
            raw_input=usage.raw_input,
            cached_input=usage.cached_input,
            net_input=usage.net_input,
            display_input=display_input_tokens(usage, state.typed_input_tokens),
            typed_input=state.typed_input_tokens,
            output=usage.output,
            reasoning=usage.reasoning,
        )

        conv.messages.append(
            Message(
                role="assistant",
                text=state.assistant_text,
                cost=cost,
                duration_ms=duration_ms,
                session_id=conv.session_id,
                tokens=tokens,
            )
        )
        conv.status = "idle"
        self.completed = True
        self._emit(
            ResultNotification(
                conversation_id=conv.id,
                text=state.assistant_text,
                cost=cost,
                duration=duration_ms,
                session_id=conv.session_id,
                input_tokens=tokens.net_input,
                display_input_tokens=tokens.display_input,
                typed_input_tokens=tokens.typed_input,
                output_tokens=tokens.output,
                raw_input_tokens=tokens.raw_input,
                cached_input_tokens=tokens.cached_input,
                reasoning_tokens=tokens.reasoning,
            )
        )
        self._callbacks.on_save(conv.id)
        self._callbacks.broadcast_status(conv.id, "idle")

    def finalize_incomplete(self) -> None:
        """Keep text produced by a process that exited before completing."""
        conv = self._conv
        self.close_open_traces()
        conv.messages.append(
            Message(
                role="assistant",
                text=self.state.assistant_text,
                duration_ms=self.state.elapsed_ms,
                session_id=conv.session_id,
                incomplete=True,
            )
        )
        conv.status = "idle"
        self.completed = True
        self._callbacks.on_save(conv.id)
        self._emit(
            ResultNotification(
                conversation_id=conv.id,
                text=self.state.assistant_text,
                session_id=conv.session_id,
                incomplete=True,
            )
        )
        self._callbacks.broadcast_status(conv.id, "idle")

    def _handle_agent_error(self, event: dict[str, Any]) -> None:
        error = event.get("error")
        if isinstance(error, dict):
            message = str(error.get("message", ""))
        elif isinstance(error, str):
            message = error
        else:
            message = str(event.get("message", ""))
        if not message:
            return
        logger.error("%s: agent reported %s: %s", self._conv.id, event.get("type"), message)
        self._emit(StderrNotification(conversation_id=self._conv.id, text=message))

    # ------------------------------------------------------------------ #
    # Output
    # ------------------------------------------------------------------ #

    def _append(self, text: str) -> None:
        if not text:
            return
        self.state.assistant_text += text
        self._emit(DeltaNotification(conversation_id=self._conv.id, text=text))

    def _emit(self, notification: Any) -> None:
        self._sink(notification)
