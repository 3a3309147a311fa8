"""Pydantic v2 models for conversations, messages, attachments and memories."""

from __future__ import annotations

import time
from pathlib import PurePath
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

Role = Literal["user", "assistant", "system"]
Status = Literal["idle", "thinking"]

#: Attachment extensions passed to the agent as images rather than files.
IMAGE_EXTENSIONS = frozenset({".png", ".jpg", ".jpeg", ".gif", ".webp"})


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class TokenCounts(BaseModel):
    """Token-accounting bundle stored on finalized assistant messages."""

    raw_input: int = Field(default=0, description="Input tokens as reported")
    cached_input: int = Field(default=0, description="Input tokens served from cache")
    net_input: int = Field(default=0, description="raw_input minus cached_input")
    display_input: int = Field(default=0, description="Input tokens shown in the UI")
    typed_input: int | None = Field(
        default=None,
        description="Estimate for the literal text the user typed",
    )
    output: int = Field(default=0, description="Output tokens")
    reasoning: int = Field(default=0, description="Reasoning tokens")


class Message(BaseModel):
    """One entry in a conversation transcript."""

    model_config = ConfigDict(extra="forbid")

    role: Role
    text: str = ""
    timestamp: int = Field(default_factory=now_ms, description="Epoch milliseconds")
    cost: float | None = Field(default=None, description="USD cost of the turn")
    duration_ms: int | None = Field(default=None, description="Turn duration")
    session_id: str | None = Field(
        default=None,
        description="Agent session id that can resume this context",
    )
    tokens: TokenCounts | None = None
    incomplete: bool = Field(
        default=False,
        description="Process exited before a formal completion event",
    )
    summarized: bool = Field(
        default=False,
        description="Folded into a compression summary; excluded from history",
    )


class Conversation(BaseModel):
    """A conversation handed to the bridge by reference and mutated in place.

    Only long-lived fields live here; per-turn scratch state is kept on a
    separate ``TurnState``.
    """

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    id: str
    messages: list[Message] = Field(default_factory=list)
    status: Status = "idle"
    model: str | None = None
    cwd: str | None = None
    session_id: str | None = Field(
        default=None,
        description="External agent session id used to resume context",
    )
    sandboxed: bool = True
    autopilot: bool | None = None
    execution_mode: str | None = None


class Attachment(BaseModel):
    """A file uploaded alongside a user message."""

    path: str
    name: str | None = None

    @property
    def is_image(self) -> bool:
        return PurePath(self.path).suffix.lower() in IMAGE_EXTENSIONS


class Memory(BaseModel):
    """A user memory entry injected into prompts."""

    text: str
    scope: str = "project"
    enabled: bool = True
