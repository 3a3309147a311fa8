"""Tests for the event interpreter / transcript builder."""

from __future__ import annotations

from typing import Any
from unittest.mock import MagicMock

import pytest

from tether.constants import TRACE_CLOSE, TRACE_OPEN
from tether.conversation import Conversation
from tether.notifications import (
    DeltaNotification,
    ErrorNotification,
    ResultNotification,
    StderrNotification,
    ThinkingNotification,
    ToolResultNotification,
    ToolStartNotification,
)
from tether.pricing import ModelRegistry
from tether.retry import RetryMode, RetryPermissions
from tether.transcript import (
    EMPTY_RESPONSE_ERROR,
    TranscriptBuilder,
    TurnCallbacks,
    TurnState,
    merge_with_overlap,
    truncate_result,
)

# ------------------------------------------------------------------ #
# Helpers
# ------------------------------------------------------------------ #


def _make_builder(
    *,
    conversation: Conversation | None = None,
    permissions: RetryPermissions | None = None,
    typed: int | None = None,
    max_result: int = 500,
) -> tuple[TranscriptBuilder, list[Any], TurnCallbacks]:
    conv = conversation or Conversation(id="c1", model="gpt-5.3-codex", status="thinking")
    sink: list[Any] = []
    callbacks = TurnCallbacks(on_save=MagicMock(), broadcast_status=MagicMock())
    builder = TranscriptBuilder(
        conv,
        TurnState(typed_input_tokens=typed),
        sink.append,
        callbacks,
        registry=ModelRegistry(),
        permissions=permissions,
        tool_result_max_length=max_result,
    )
    return builder, sink, callbacks


def _started(item: dict) -> dict:
    return {"type": "item.started", "item": item}


def _completed(item: dict) -> dict:
    return {"type": "item.completed", "item": item}


def _message(text: str) -> dict:
    return _completed({"type": "agent_message", "text": text})


def _turn_completed(input_tokens: int = 100, output_tokens: int = 20, **extra: Any) -> dict:
    return {
        "type": "turn.completed",
        "usage": {"input_tokens": input_tokens, "output_tokens": output_tokens},
        **extra,
    }


def _of_type(sink: list[Any], cls: type) -> list[Any]:
    return [n for n in sink if isinstance(n, cls)]


# ------------------------------------------------------------------ #
# Pure helpers
# ------------------------------------------------------------------ #


class TestMergeWithOverlap:
    def test_plain_append(self) -> None:
        assert merge_with_overlap("Hello\n", "world") == ("Hello\nworld", "world")

    def test_unrelated_text_starts_new_paragraph(self) -> None:
        merged, appended = merge_with_overlap("First paragraph.", "Second paragraph.")
        assert merged == "First paragraph.\n\nSecond paragraph."
        assert appended == "\n\nSecond paragraph."

    def test_suffix_prefix_overlap(self) -> None:
        assert merge_with_overlap("Hello wor", "world!") == ("Hello world!", "ld!")

    def test_repeat_is_ignored(self) -> None:
        assert merge_with_overlap("Hello world", "world") == ("Hello world", "")
        assert merge_with_overlap("abc", "abc") == ("abc", "")

    def test_extension_streams_only_new_text(self) -> None:
        assert merge_with_overlap("Hello", "Hello there") == ("Hello there", " there")

    def test_first_message(self) -> None:
        assert merge_with_overlap("", "Hi") == ("Hi", "Hi")

    def test_empty_new_text(self) -> None:
        assert merge_with_overlap("Hi", "") == ("Hi", "")


class TestTruncateResult:
    def test_short_text_untouched(self) -> None:
        assert truncate_result("ok", 10) == "ok"

    def test_long_text_marked(self) -> None:
        assert truncate_result("abcdef", 3) == "abc...\n(truncated)"


# ------------------------------------------------------------------ #
# Session and reasoning
# ------------------------------------------------------------------ #


class TestSessionAndReasoning:
    def test_thread_started_sets_session(self) -> None:
        builder, sink, _ = _make_builder()
        builder.handle_event({"type": "thread.started", "thread_id": "th_42"})
        assert builder._conv.session_id == "th_42"
        assert sink == []

    def test_reasoning_is_forwarded_not_accumulated(self) -> None:
        builder, sink, _ = _make_builder()
        builder.handle_event(_completed({"type": "reasoning", "text": "pondering"}))
        assert sink == [ThinkingNotification(conversation_id="c1", text="pondering")]
        assert builder.text == ""

    def test_unknown_events_ignored(self) -> None:
        builder, sink, _ = _make_builder()
        builder.handle_event({"type": "turn.started"})
        builder.handle_event({"type": "something.new", "payload": 1})
        builder.handle_event(_completed({"type": "todo_list"}))
        assert sink == []


# ------------------------------------------------------------------ #
# Assistant text
# ------------------------------------------------------------------ #


class TestAgentMessages:
    def test_message_streams_delta(self) -> None:
        builder, sink, _ = _make_builder()
        builder.handle_event(_message("Hello"))
        assert builder.text == "Hello"
        assert sink == [DeltaNotification(conversation_id="c1", text="Hello")]

    def test_duplicate_message_not_repeated(self) -> None:
        builder, sink, _ = _make_builder()
        builder.handle_event(_message("Hello"))
        builder.handle_event(_message("Hello"))
        assert builder.text == "Hello"
        assert len(_of_type(sink, DeltaNotification)) == 1

    def test_overlapping_messages_merge(self) -> None:
        builder, sink, _ = _make_builder()
        builder.handle_event(_message("Checking the fi"))
        builder.handle_event(_message("the files now."))
        assert builder.text == "Checking the files now."
        assert [n.text for n in _of_type(sink, DeltaNotification)] == [
            "Checking the fi",
            "les now.",
        ]

    def test_separate_messages_become_paragraphs(self) -> None:
        builder, sink, _ = _make_builder()
        builder.handle_event(_message("First paragraph."))
        builder.handle_event(_message("Second paragraph."))
        assert builder.text == "First paragraph.\n\nSecond paragraph."
        deltas = "".join(n.text for n in _of_type(sink, DeltaNotification))
        assert deltas == builder.text


# ------------------------------------------------------------------ #
# Tool traces
# ------------------------------------------------------------------ #


class TestToolTraces:
    def test_start_opens_trace(self) -> None:
        builder, sink, _ = _make_builder()
        builder.handle_event(
            _started({"id": "t1", "type": "command_execution", "command": "ls", "status": "in_progress"})
        )
        assert builder.text == f"{TRACE_OPEN}\n**Using command_execution**: `ls`\n"
        assert _of_type(sink, ToolStartNotification) == [
            ToolStartNotification(conversation_id="c1", tool="command_execution", id="t1")
        ]
        assert builder.state.open_trace_count == 1

    def test_duplicate_start_skipped(self) -> None:
        builder, sink, _ = _make_builder()
        start = _started({"id": "t1", "type": "tool_use", "name": "Read"})
        builder.handle_event(start)
        builder.handle_event(start)
        assert builder.text.count(":::trace") == 1
        assert len(_of_type(sink, ToolStartNotification)) == 1
        assert builder.state.open_trace_count == 1

    def test_result_closes_trace(self) -> None:
        builder, sink, _ = _make_builder()
        builder.handle_event(_started({"id": "t1", "type": "tool_use", "name": "Read"}))
        builder.handle_event(
            _completed({"type": "tool_result", "tool_use_id": "t1", "content": "file body"})
        )
        assert builder.text.endswith(f"\n```\nfile body\n```\n{TRACE_CLOSE}")
        assert builder.state.open_trace_count == 0
        assert builder.state.open_tool_ids == set()
        assert _of_type(sink, ToolResultNotification) == [
            ToolResultNotification(conversation_id="c1", tool_use_id="t1", is_error=False)
        ]

    def test_result_with_command_renders_command_fence(self) -> None:
        builder, _, _ = _make_builder()
        builder.handle_event(
            _completed(
                {
                    "id": "t1",
                    "type": "command_execution",
                    "command": "pytest -q",
                    "aggregated_output": "1 failed",
                    "exit_code": 1,
                    "status": "failed",
                }
            )
        )
        assert "\n```\n$ pytest -q\n```\n" in builder.text
        assert "\n```\nError: 1 failed\n```\n" in builder.text
        # No trace was open, so none is closed.
        assert TRACE_CLOSE not in builder.text

    def test_error_result_flagged(self) -> None:
        builder, sink, _ = _make_builder()
        builder.handle_event(_started({"id": "t1", "name": "Bash"}))
        builder.handle_event(
            _completed({"type": "tool_result", "tool_use_id": "t1", "is_error": True, "content": "boom"})
        )
        assert _of_type(sink, ToolResultNotification)[0].is_error
        assert "Error: boom" in builder.text

    def test_result_reuses_command_from_start(self) -> None:
        builder, _, _ = _make_builder()
        builder.handle_event(
            _started({"type": "tool_use", "id": "t1", "name": "Bash", "input": {"command": "ls"}})
        )
        builder.handle_event(_completed({"type": "tool_result", "tool_use_id": "t1", "output": "a.txt"}))
        assert builder.text.endswith(f"\n```\n$ ls\n```\n\n```\na.txt\n```\n{TRACE_CLOSE}")

    def test_duplicate_result_skipped(self) -> None:
        builder, sink, _ = _make_builder()
        builder.handle_event(_started({"id": "t1", "name": "Read"}))
        result = _completed({"type": "tool_result", "tool_use_id": "t1", "content": "body"})
        builder.handle_event(result)
        builder.handle_event(result)
        assert builder.text.count("body") == 1
        assert len(_of_type(sink, ToolResultNotification)) == 1

    def test_long_result_truncated(self) -> None:
        builder, _, _ = _make_builder(max_result=10)
        builder.handle_event(_completed({"type": "tool_result", "content": "x" * 50}))
        assert "x" * 10 + "...\n(truncated)" in builder.text
        assert "x" * 11 not in builder.text

    def test_id_less_result_closes_open_trace(self) -> None:
        builder, _, _ = _make_builder()
        builder.handle_event(_started({"type": "tool_use", "name": "Read"}))
        builder.handle_event(_completed({"type": "tool_result", "content": "ok"}))
        assert builder.text.count(TRACE_CLOSE) == 1
        assert builder.state.open_trace_count == 0

    def test_message_force_closes_open_traces(self) -> None:
        builder, _, _ = _make_builder()
        builder.handle_event(_started({"id": "t1", "name": "Read"}))
        builder.handle_event(_started({"id": "t2", "name": "Grep"}))
        builder.handle_event(_message("All done."))
        assert builder.text.endswith(TRACE_CLOSE * 2 + "All done.")
        assert builder.state.open_trace_count == 0
        assert builder.state.open_tool_ids == set()

    def test_traces_balanced_after_completion(self) -> None:
        builder, _, _ = _make_builder()
        builder.handle_event(_started({"id": "t1", "name": "Read"}))
        builder.handle_event(_turn_completed())
        assert builder.text.count(":::trace") == builder.text.count(TRACE_CLOSE)


# ------------------------------------------------------------------ #
# Turn completion
# ------------------------------------------------------------------ #


class TestTurnCompleted:
    def test_finalizes_message_and_result(self) -> None:
        builder, sink, callbacks = _make_builder(typed=3)
        conv = builder._conv
        builder.handle_event({"type": "thread.started", "thread_id": "th_1"})
        builder.handle_event(_message("Answer."))
        builder.handle_event(
            {
                "type": "turn.completed",
                "usage": {
                    "input_tokens": 1200,
                    "cached_input_tokens": 200,
                    "output_tokens": 100,
                    "reasoning_output_tokens": 40,
                },
                "duration_ms": 1500,
            }
        )

        assert builder.completed
        assert conv.status == "idle"
        message = conv.messages[-1]
        assert message.role == "assistant"
        assert message.text == "Answer."
        assert message.duration_ms == 1500
        assert message.session_id == "th_1"
        assert message.cost == pytest.approx(1000 / 1e6 * 10 + 100 / 1e6 * 30)
        assert message.tokens.net_input == 1000
        assert message.tokens.display_input == 3
        assert message.tokens.reasoning == 40

        results = _of_type(sink, ResultNotification)
        assert len(results) == 1
        result = results[0]
        assert result.text == "Answer."
        assert result.input_tokens == 1000
        assert result.raw_input_tokens == 1200
        assert result.cached_input_tokens == 200
        assert result.display_input_tokens == 3
        assert result.typed_input_tokens == 3
        assert result.output_tokens == 100
        assert result.session_id == "th_1"
        callbacks.on_save.assert_called_once_with("c1")
        callbacks.broadcast_status.assert_called_once_with("c1", "idle")

    def test_display_input_falls_back_to_net(self) -> None:
        builder, sink, _ = _make_builder(typed=None)
        builder.handle_event(_message("ok"))
        builder.handle_event(_turn_completed(input_tokens=70))
        assert _of_type(sink, ResultNotification)[0].display_input_tokens == 70

    def test_duration_measured_when_not_reported(self) -> None:
        builder, _, _ = _make_builder()
        builder.handle_event(_message("ok"))
        builder.handle_event(_turn_completed())
        assert builder._conv.messages[-1].duration_ms >= 0

    def test_batch_items_replayed_without_thinking(self) -> None:
        builder, sink, _ = _make_builder()
        builder.handle_event(
            _turn_completed(
                items=[
                    {"type": "reasoning", "text": "hmm"},
                    {"id": "t1", "type": "tool_use", "name": "Read"},
                    {"type": "tool_result", "tool_use_id": "t1", "content": "x"},
                    {"type": "agent_message", "text": "From batch."},
                ]
            )
        )
        assert _of_type(sink, ThinkingNotification) == []
        assert builder.text.endswith("From batch.")
        assert builder._conv.messages[-1].text == builder.text

    def test_batch_replay_deduplicates_streamed_items(self) -> None:
        builder, sink, _ = _make_builder()
        builder.handle_event(_started({"id": "t1", "type": "tool_use", "name": "Read"}))
        builder.handle_event(_message("Done."))
        builder.handle_event(
            _turn_completed(items=[{"type": "agent_message", "text": "Done."}])
        )
        assert builder.text.count("Done.") == 1

    def test_batch_replay_skips_finished_tool_calls(self) -> None:
        builder, sink, _ = _make_builder()
        start = {"type": "tool_use", "id": "t1", "name": "Bash", "input": {"command": "ls"}}
        result = {"type": "tool_result", "tool_use_id": "t1", "output": "listing-output"}
        builder.handle_event(_started(start))
        builder.handle_event(_completed(result))
        streamed = builder.text

        builder.handle_event(_turn_completed(items=[start, result]))

        assert builder.text == streamed
        assert builder.text.count("listing-output") == 1
        assert len(_of_type(sink, ToolStartNotification)) == 1
        assert len(_of_type(sink, ToolResultNotification)) == 1
        assert builder._conv.messages[-1].text.count(":::trace") == 1


# ------------------------------------------------------------------ #
# Empty turns
# ------------------------------------------------------------------ #


class TestEmptyTurn:
    def test_marks_fresh_session_retry(self) -> None:
        conv = Conversation(id="c1", session_id="old", status="thinking")
        builder, sink, callbacks = _make_builder(
            conversation=conv, permissions=RetryPermissions(fresh_session=True)
        )
        builder.handle_event(_turn_completed(input_tokens=0, output_tokens=0))
        assert builder.state.retry_mode is RetryMode.FRESH_SESSION
        assert conv.session_id is None
        assert not builder.completed
        assert sink == []
        assert conv.messages == []
        callbacks.on_save.assert_not_called()

    def test_marks_compact_retry(self) -> None:
        builder, _, _ = _make_builder(permissions=RetryPermissions(compact_history=True))
        builder.handle_event({"type": "turn.completed", "usage": {}})
        assert builder.state.retry_mode is RetryMode.COMPACT_HISTORY

    def test_whitespace_only_text_is_empty(self) -> None:
        builder, _, _ = _make_builder(permissions=RetryPermissions(compact_history=True))
        builder.handle_event(_message("  \n"))
        builder.handle_event(_turn_completed(input_tokens=0, output_tokens=0))
        assert builder.state.retry_mode is RetryMode.COMPACT_HISTORY

    def test_reports_error_without_permission(self) -> None:
        builder, sink, callbacks = _make_builder()
        builder.handle_event(_turn_completed(input_tokens=0, output_tokens=0))
        assert builder.completed
        assert builder._conv.status == "idle"
        assert sink == [ErrorNotification(conversation_id="c1", error=EMPTY_RESPONSE_ERROR)]
        callbacks.on_save.assert_called_once_with("c1")
        callbacks.broadcast_status.assert_called_once_with("c1", "idle")

    def test_text_with_zero_usage_is_not_empty(self) -> None:
        builder, sink, _ = _make_builder(permissions=RetryPermissions(fresh_session=True))
        builder.handle_event(_message("hi"))
        builder.handle_event(_turn_completed(input_tokens=0, output_tokens=0))
        assert builder.completed
        assert len(_of_type(sink, ResultNotification)) == 1


# ------------------------------------------------------------------ #
# Incomplete turns and agent errors
# ------------------------------------------------------------------ #


class TestIncompleteAndErrors:
    def test_finalize_incomplete(self) -> None:
        builder, sink, callbacks = _make_builder()
        builder.handle_event(_started({"id": "t1", "name": "Read"}))
        builder.handle_event(_message("partial"))
        builder.finalize_incomplete()
        message = builder._conv.messages[-1]
        assert message.incomplete
        assert message.text == builder.text
        result = _of_type(sink, ResultNotification)[-1]
        assert result.incomplete
        assert builder._conv.status == "idle"
        callbacks.on_save.assert_called_once_with("c1")

    def test_turn_failed_forwarded_as_stderr(self) -> None:
        builder, sink, _ = _make_builder()
        builder.handle_event({"type": "turn.failed", "error": {"message": "rate limited"}})
        builder.handle_event({"type": "error", "message": "stream closed"})
        assert _of_type(sink, StderrNotification) == [
            StderrNotification(conversation_id="c1", text="rate limited"),
            StderrNotification(conversation_id="c1", text="stream closed"),
        ]
        assert not builder.completed


# ------------------------------------------------------------------ #
# End-to-end
# ------------------------------------------------------------------ #


class TestEndToEnd:
    def test_tool_then_answer(self) -> None:
        builder, sink, _ = _make_builder(typed=2)
        events = [
            {"type": "thread.started", "thread_id": "th_9"},
            {"type": "turn.started"},
            _started({"id": "item_0", "type": "command_execution", "command": "ls", "status": "in_progress", "aggregated_output": ""}),
            _completed({"id": "item_0", "type": "command_execution", "command": "ls", "status": "completed", "exit_code": 0, "aggregated_output": "a.txt"}),
            _message("There is one file."),
            _turn_completed(input_tokens=500, output_tokens=40),
        ]
        for event in events:
            builder.handle_event(event)

        expected = (
            f"{TRACE_OPEN}\n**Using command_execution**: `ls`\n"
            "\n```\n$ ls\n```\n"
            "\n```\na.txt\n```\n"
            f"{TRACE_CLOSE}"
            "There is one file."
        )
        assert builder.text == expected
        deltas = "".join(n.text for n in _of_type(sink, DeltaNotification))
        assert deltas == expected
        types = [n.type for n in sink]
        assert types.count("result") == 1
        assert types.count("error") == 0
        assert types[-1] == "result"

    def test_tool_only_turn(self) -> None:
        builder, sink, _ = _make_builder(typed=3)
        events = [
            {"type": "thread.started", "thread_id": "s1"},
            _started({"type": "tool_use", "id": "t1", "name": "Bash", "input": {"command": "ls"}}),
            _completed({"type": "tool_result", "tool_use_id": "t1", "output": "a.txt\nb.txt"}),
            _turn_completed(input_tokens=50, output_tokens=10),
        ]
        for event in events:
            builder.handle_event(event)

        conv = builder._conv
        message = conv.messages[-1]
        assert TRACE_OPEN in message.text
        assert "`ls`" in message.text
        assert "\n```\n$ ls\n```\n" in message.text
        assert "a.txt\nb.txt" in message.text
        assert message.text.endswith(TRACE_CLOSE)
        assert conv.status == "idle"
        assert conv.session_id == "s1"
        assert message.cost == pytest.approx((50 / 1e6) * 10 + (10 / 1e6) * 30)
