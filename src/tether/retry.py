"""Retry policy for anomalous turns.

A turn may be re-run at most once.  The first attempt carries a fresh
:class:`RetryContext`; the retry carries ``attempted=True``, which revokes
every retry permission, so a second retry can never be scheduled.
"""

from __future__ import annotations

import errno
import re
from dataclasses import dataclass
from enum import StrEnum


class RetryMode(StrEnum):
    NONE = "none"
    FRESH_SESSION = "fresh_session"
    COMPACT_HISTORY = "compact_history"


class HistoryMode(StrEnum):
    FULL = "full"
    COMPACT = "compact"


_CONTEXT_OVERFLOW_RE = re.compile(
    r"(context|token|prompt|request).*(limit|length|size|large|long|exceed|overflow)|e2big"
)


def is_context_overflow_error(value: object) -> bool:
    """Whether an error text looks like the prompt was too large."""
    if value is None:
        return False
    return _CONTEXT_OVERFLOW_RE.search(str(value).lower()) is not None


def describe_spawn_error(exc: BaseException) -> str:
    """Message plus errno name (e.g. ``E2BIG``) for overflow matching."""
    code = getattr(exc, "errno", None)
    name = errno.errorcode.get(code, "") if isinstance(code, int) else ""
    return f"{exc} {name}".strip()


@dataclass(frozen=True)
class RetryContext:
    """Retry bookkeeping threaded through the attempts of one user turn."""

    attempted: bool = False
    mode: RetryMode = RetryMode.NONE

    @property
    def history_mode(self) -> HistoryMode:
        if self.mode is RetryMode.COMPACT_HISTORY:
            return HistoryMode.COMPACT
        return HistoryMode.FULL

    def retry_with(self, mode: RetryMode) -> RetryContext:
        if self.attempted:
            msg = "A turn may only be retried once"
            raise RuntimeError(msg)
        return RetryContext(attempted=True, mode=mode)


@dataclass(frozen=True)
class RetryPermissions:
    """Which retry strategies one attempt may still fall back to."""

    fresh_session: bool = False
    compact_history: bool = False

    @classmethod
    def for_attempt(
        cls,
        context: RetryContext,
        *,
        resumed: bool,
        inline_history: str,
    ) -> RetryPermissions:
        if context.attempted:
            return cls()
        return cls(
            fresh_session=resumed,
            compact_history=(
                not resumed
                and context.history_mode is HistoryMode.FULL
                and bool(inline_history)
            ),
        )


def plan_empty_turn_retry(permissions: RetryPermissions) -> RetryMode:
    """Pick the strategy for an empty turn, or ``NONE`` to surface an error."""
    if permissions.fresh_session:
        return RetryMode.FRESH_SESSION
    if permissions.compact_history:
        return RetryMode.COMPACT_HISTORY
    return RetryMode.NONE


def plan_exit_retry(
    context: RetryContext,
    permissions: RetryPermissions,
    marked: RetryMode,
    stderr: str,
) -> RetryMode:
    """Decide at process exit whether a text-less attempt is re-run."""
    if context.attempted:
        return RetryMode.NONE
    if marked is not RetryMode.NONE:
        return marked
    if permissions.compact_history and is_context_overflow_error(stderr):
        return RetryMode.COMPACT_HISTORY
    return RetryMode.NONE
