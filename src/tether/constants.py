"""Shared constants and type aliases for the Tether runtime."""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from tether.notifications import Notification

#: Seconds a turn's agent process may run before it is sent SIGTERM.
PROCESS_TIMEOUT = 5 * 60.0

#: Seconds a one-shot summary invocation may run.
SUMMARY_TIMEOUT = 120.0

#: Maximum characters of a tool result rendered into the transcript.
TOOL_RESULT_MAX_LENGTH = 500

#: Character budget for the inline history sent on a compact-history retry.
RETRY_HISTORY_CHAR_BUDGET = 24_000

#: Maximum stderr characters included in a process-exit error.
STDERR_ERROR_CHARS = 1200

#: Marker opening a tool-trace region in the transcript.
TRACE_OPEN = "\n\n:::trace\n"

#: Marker closing a tool-trace region in the transcript.
TRACE_CLOSE = ":::\n\n"

#: Callback receiving every notification produced during a turn.
NotificationSink = Callable[["Notification"], None]

#: Persistence callback, invoked with the conversation id.
SaveCallback = Callable[[str], None]

#: Status broadcast callback, invoked with (conversation id, status).
StatusCallback = Callable[[str, str], None]
