"""Prompt assembly — history digest, attachments and memories."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from tether.conversation import Attachment, Memory, Message

_ROLE_LABELS = {"assistant": "Assistant", "system": "System", "user": "User"}

#: Per-message cap when rendering a conversation for summarization.
_SUMMARY_MESSAGE_CHARS = 2000

SUMMARY_PROMPT_TEMPLATE = """\
You are compressing a conversation history to preserve context while reducing token usage.

Summarize the following conversation in approximately 2000-3000 tokens. Preserve:
1. Key decisions and conclusions reached
2. Important code snippets, file paths, and technical details discussed
3. Current state of any ongoing tasks
4. Action items or commitments made
5. User preferences or requirements stated

Format as a clear summary that could be used to continue the conversation naturally.

---
CONVERSATION TO SUMMARIZE:
{conversation}
---

Write your summary:"""


@dataclass
class AssembledPrompt:
    """Prompt text plus the pieces the argument builder needs."""

    text: str
    inline_history: str = ""
    images: list[str] = field(default_factory=list)
    files: list[str] = field(default_factory=list)


def partition_attachments(
    attachments: Iterable[Attachment],
) -> tuple[list[str], list[str]]:
    """Split attachments into (image paths, other file paths)."""
    images: list[str] = []
    files: list[str] = []
    for attachment in attachments:
        if not attachment.path:
            continue
        (images if attachment.is_image else files).append(attachment.path)
    return images, files


def build_inline_history(
    messages: Sequence[Message],
    latest_user_text: str = "",
    max_chars: int | None = None,
) -> str:
    """Render prior messages as a bounded, chronological history block.

    Messages are taken newest-first until *max_chars* would be exceeded, so
    a budget keeps the most recent context.
    """
    prior = list(messages)
    if prior and prior[-1].role == "user" and prior[-1].text == (latest_user_text or ""):
        prior.pop()

    chunks: list[str] = []
    total = 0
    for message in reversed(prior):
        if message.summarized:
            continue
        text = message.text.strip()
        if not text:
            continue
        chunk = f"[{_ROLE_LABELS.get(message.role, 'User')}]\n{text}"
        if max_chars and total + len(chunk) > max_chars:
            break
        chunks.append(chunk)
        total += len(chunk)

    if not chunks:
        return ""
    chunks.reverse()
    joined = "\n\n".join(chunks)
    return f"[Conversation history]\n{joined}\n[/Conversation history]"


def format_file_block(paths: Sequence[str]) -> str:
    if not paths:
        return ""
    label = "Attached files" if len(paths) > 1 else "Attached file"
    return f"\n\n[{label} — read for context:]\n" + "\n".join(paths)


def format_memories(memories: Iterable[Memory]) -> str:
    enabled = [m for m in memories if m.enabled]
    global_memories = [m for m in enabled if m.scope == "global"]
    project_memories = [m for m in enabled if m.scope != "global"]

    sections: list[str] = []
    if global_memories:
        lines = "\n".join(f"- {m.text}" for m in global_memories)
        sections.append(f"Global:\n{lines}")
    if project_memories:
        lines = "\n".join(f"- {m.text}" for m in project_memories)
        sections.append(f"Project-specific:\n{lines}")
    if not sections:
        return ""
    body = "\n\n".join(sections)
    return f"\n\n[User memories]\n{body}\n[/User memories]"


def assemble_prompt(
    text: str,
    *,
    messages: Sequence[Message] = (),
    attachments: Iterable[Attachment] = (),
    memories: Iterable[Memory] = (),
    resuming: bool = False,
    history_budget: int | None = None,
) -> AssembledPrompt:
    """Build the final prompt for one attempt.

    Order: history block and new-message marker, the user's text, the
    attached-file block, then the memory block.  A resumed session already
    holds the history, so none is inlined.
    """
    images, files = partition_attachments(attachments)
    history = (
        "" if resuming else build_inline_history(messages, text, max_chars=history_budget)
    )
    prompt = f"{history}\n\n[New user message]\n{text}" if history else text
    prompt += format_file_block(files)
    prompt += format_memories(memories)
    return AssembledPrompt(
        text=prompt, inline_history=history, images=images, files=files
    )


def build_summary_prompt(messages: Iterable[Message]) -> str:
    """Prompt asking the agent to compress *messages* into a summary."""
    rendered: list[str] = []
    for message in messages:
        role = "User" if message.role == "user" else "Assistant"
        text = message.text or ""
        if len(text) > _SUMMARY_MESSAGE_CHARS:
            text = text[:_SUMMARY_MESSAGE_CHARS] + "\n[... truncated ...]"
        rendered.append(f"[{role}]: {text}")
    return SUMMARY_PROMPT_TEMPLATE.format(conversation="\n\n".join(rendered))
