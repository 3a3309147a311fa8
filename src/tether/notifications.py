"""Pydantic v2 models for notifications streamed to the client."""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag


class _NotificationBase(BaseModel):
    """Common envelope shared by every notification."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    conversation_id: str = Field(
        alias="conversationId", description="Conversation the update belongs to"
    )


class ThinkingNotification(_NotificationBase):
    """Reasoning text forwarded verbatim, never part of the transcript."""

    type: Literal["thinking"] = "thinking"
    text: str = Field(description="Reasoning text")


class DeltaNotification(_NotificationBase):
    """Text newly appended to the transcript."""

    type: Literal["delta"] = "delta"
    text: str = Field(description="Appended transcript text")


class ToolStartNotification(_NotificationBase):
    """A tool call was announced by the agent."""

    type: Literal["tool_start"] = "tool_start"
    tool: str = Field(description="Tool name")
    id: str | None = Field(default=None, description="Tool call id")


class ToolResultNotification(_NotificationBase):
    """A tool call returned."""

    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str | None = Field(
        default=None, alias="toolUseId", description="Tool call id"
    )
    is_error: bool = Field(default=False, alias="isError")


class ResultNotification(_NotificationBase):
    """The finalized assistant message for a turn."""

    type: Literal["result"] = "result"
    text: str = Field(description="Full transcript text")
    cost: float | None = None
    duration: int | None = Field(default=None, description="Duration in ms")
    session_id: str | None = Field(default=None, alias="sessionId")
    input_tokens: int | None = Field(default=None, alias="inputTokens")
    display_input_tokens: int | None = Field(default=None, alias="displayInputTokens")
    typed_input_tokens: int | None = Field(default=None, alias="typedInputTokens")
    output_tokens: int | None = Field(default=None, alias="outputTokens")
    raw_input_tokens: int | None = Field(default=None, alias="rawInputTokens")
    cached_input_tokens: int | None = Field(default=None, alias="cachedInputTokens")
    reasoning_tokens: int | None = Field(default=None, alias="reasoningTokens")
    incomplete: bool = False


class StderrNotification(_NotificationBase):
    """Raw diagnostic text from the agent process."""

    type: Literal["stderr"] = "stderr"
    text: str


class ErrorNotification(_NotificationBase):
    """Terminal failure of a turn."""

    type: Literal["error"] = "error"
    error: str = Field(description="Human-readable error")


def _notification_discriminator(v: Any) -> str:
    if isinstance(v, dict):
        return str(v.get("type", ""))
    return str(getattr(v, "type", ""))


Notification = Annotated[
    Annotated[ThinkingNotification, Tag("thinking")]
    | Annotated[DeltaNotification, Tag("delta")]
    | Annotated[ToolStartNotification, Tag("tool_start")]
    | Annotated[ToolResultNotification, Tag("tool_result")]
    | Annotated[ResultNotification, Tag("result")]
    | Annotated[StderrNotification, Tag("stderr")]
    | Annotated[ErrorNotification, Tag("error")],
    Discriminator(_notification_discriminator),
]
"""Discriminated union of all notification types."""
