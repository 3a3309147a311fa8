"""Codex bridge — runs one user turn through the ``codex`` CLI.

Each turn spawns ``codex exec --json`` (or ``codex exec resume``) as a
subprocess, decodes its JSONL stdout incrementally and hands every event to
a :class:`~tether.transcript.TranscriptBuilder`.  Anomalous turns are
re-run at most once, either in a fresh session or with a compacted inline
history.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
from collections.abc import Callable, Iterable, Sequence
from pathlib import Path

from tether.accounting import estimate_typed_tokens
from tether.config.models import BridgeConfig
from tether.constants import NotificationSink
from tether.conversation import Attachment, Conversation, Memory, Message
from tether.decoder import JsonlDecoder
from tether.execution import writes_allowed as default_writes_allowed
from tether.helpers import report_error
from tether.items import AgentMessageItem, classify_item
from tether.notifications import StderrNotification
from tether.pricing import ModelRegistry
from tether.process import ProcessHandle, ProcessSupervisor
from tether.prompt import AssembledPrompt, assemble_prompt, build_summary_prompt
from tether.retry import (
    HistoryMode,
    RetryContext,
    RetryMode,
    RetryPermissions,
    describe_spawn_error,
    is_context_overflow_error,
    plan_exit_retry,
)
from tether.transcript import TranscriptBuilder, TurnCallbacks, TurnState

logger = logging.getLogger(__name__)

#: Bytes requested per read from the agent's pipes.
_READ_CHUNK = 64 * 1024

_SLASH_ONLY_RE = re.compile(r"^/\S+\s*$")

SLASH_ONLY_HINT = (
    ". Slash-only skill/agent selections need a task. "
    "Example: `/code-quality-reviewer review my latest changes`."
)

WritesAllowed = Callable[[Conversation], bool]


class SummaryError(Exception):
    """Raised when the agent fails to produce a conversation summary."""


def build_codex_args(
    conversation: Conversation,
    prompt: AssembledPrompt,
    *,
    model: str,
    writes: bool,
    upload_dir: str | None = None,
    has_attachments: bool = False,
) -> list[str]:
    """Argument vector for one ``codex exec`` invocation.

    Flags precede the prompt, which is always last.  ``exec resume`` accepts
    neither ``-C``, ``-s`` nor ``--add-dir``.
    """
    resume = bool(conversation.session_id)
    args = ["exec"]
    if resume:
        args += ["resume", conversation.session_id or ""]
    args += ["--json", "-m", model]
    if not resume and conversation.cwd:
        args += ["-C", conversation.cwd]
    args.append("--skip-git-repo-check")

    if resume:
        if not conversation.sandboxed and writes:
            args.append("--dangerously-bypass-approvals-and-sandbox")
    elif conversation.sandboxed or not writes:
        args += ["-s", "workspace-write" if writes else "read-only"]
    else:
        args.append("--dangerously-bypass-approvals-and-sandbox")

    for image in prompt.images:
        args += ["-i", image]

    if not resume and has_attachments and upload_dir:
        args += ["--add-dir", str(Path(upload_dir) / conversation.id)]

    args.append(prompt.text)
    return args


class CodexBridge:
    """Drives conversation turns through the ``codex`` CLI.

    One bridge owns one :class:`ProcessSupervisor`, so ``cancel`` and
    ``is_active`` see every turn started through it.
    """

    def __init__(
        self,
        *,
        config: BridgeConfig | None = None,
        supervisor: ProcessSupervisor | None = None,
        registry: ModelRegistry | None = None,
        writes_allowed: WritesAllowed = default_writes_allowed,
    ) -> None:
        self._config = config or BridgeConfig()
        self._supervisor = supervisor or ProcessSupervisor(
            timeout=self._config.process_timeout
        )
        self._registry = registry or self._config.build_registry()
        self._writes_allowed = writes_allowed

    # ------------------------------------------------------------------ #
    # Turn lifecycle
    # ------------------------------------------------------------------ #

    async def run_turn(
        self,
        conversation: Conversation,
        text: str,
        *,
        sink: NotificationSink,
        callbacks: TurnCallbacks,
        attachments: Sequence[Attachment] = (),
        upload_dir: str | None = None,
        memories: Iterable[Memory] = (),
        runtime: RetryContext | None = None,
    ) -> None:
        """Run one user turn to completion.

        Ends with exactly one ``result`` or ``error`` notification, except
        when the first attempt is re-run, in which case the retry delivers
        it.  The conversation is left ``idle``.
        """
        context = runtime or RetryContext()
        memories = list(memories)
        conversation.status = "thinking"

        mode = await self._run_attempt(
            conversation, text, sink, callbacks, attachments, upload_dir, memories, context
        )
        if mode is RetryMode.NONE:
            return

        retry = context.retry_with(mode)
        logger.info("%s: retrying turn (%s)", conversation.id, mode)
        await self._run_attempt(
            conversation, text, sink, callbacks, attachments, upload_dir, memories, retry
        )

    def cancel(self, conversation_id: str) -> bool:
        """Terminate the conversation's running agent process, if any."""
        return self._supervisor.cancel(conversation_id)

    def is_active(self, conversation_id: str) -> bool:
        return self._supervisor.is_active(conversation_id)

    async def _run_attempt(
        self,
        conversation: Conversation,
        text: str,
        sink: NotificationSink,
        callbacks: TurnCallbacks,
        attachments: Sequence[Attachment],
        upload_dir: str | None,
        memories: list[Memory],
        context: RetryContext,
    ) -> RetryMode:
        """Run one attempt.  Returns the retry mode to apply, or ``NONE``."""
        resumed = bool(conversation.session_id)
        budget = (
            self._config.retry_history_char_budget
            if context.history_mode is HistoryMode.COMPACT
            else None
        )
        prompt = assemble_prompt(
            text,
            messages=conversation.messages,
            attachments=attachments,
            memories=memories,
            resuming=resumed,
            history_budget=budget,
        )
        permissions = RetryPermissions.for_attempt(
            context, resumed=resumed, inline_history=prompt.inline_history
        )
        model = self._registry.resolve_id(conversation.model)
        args = build_codex_args(
            conversation,
            prompt,
            model=model,
            writes=self._writes_allowed(conversation),
            upload_dir=upload_dir,
            has_attachments=bool(attachments),
        )
        logger.debug("%s: spawning %s %s", conversation.id, self._config.binary, args)

        try:
            handle = await self._supervisor.spawn(
                conversation.id,
                self._config.binary,
                args,
                cwd=conversation.cwd,
                env=self._build_env(),
            )
        except OSError as exc:
            if permissions.compact_history and is_context_overflow_error(
                describe_spawn_error(exc)
            ):
                logger.warning(
                    "%s: spawn failed with oversized prompt (%s), compacting history",
                    conversation.id,
                    exc,
                )
                return RetryMode.COMPACT_HISTORY
            conversation.status = "idle"
            report_error(
                sink, conversation.id, f"Failed to spawn codex: {exc}", logger=logger
            )
            callbacks.broadcast_status(conversation.id, "idle")
            return RetryMode.NONE

        state = TurnState(typed_input_tokens=estimate_typed_tokens(text))
        builder = TranscriptBuilder(
            conversation,
            state,
            sink,
            callbacks,
            registry=self._registry,
            permissions=permissions,
            tool_result_max_length=self._config.tool_result_max_length,
        )
        decoder = JsonlDecoder()
        stderr_chunks: list[str] = []

        try:
            await asyncio.gather(
                self._pump_stdout(handle, decoder, builder),
                self._pump_stderr(handle, conversation.id, sink, stderr_chunks),
            )
        except BaseException:
            logger.error("%s: stream handling failed, stopping codex", conversation.id)
            handle.kill()
            await handle.wait()
            conversation.status = "idle"
            raise
        code = await handle.wait()
        for event in decoder.flush():
            self._dispatch(builder, event)

        return self._handle_exit(
            conversation,
            text,
            sink,
            callbacks,
            builder,
            handle,
            code,
            "".join(stderr_chunks),
            context,
            permissions,
        )

    # ------------------------------------------------------------------ #
    # Streams
    # ------------------------------------------------------------------ #

    async def _pump_stdout(
        self,
        handle: ProcessHandle,
        decoder: JsonlDecoder,
        builder: TranscriptBuilder,
    ) -> None:
        stream = handle.stdout
        if stream is None:
            return
        while True:
            chunk = await stream.read(_READ_CHUNK)
            if not chunk:
                break
            for event in decoder.feed(chunk):
                self._dispatch(builder, event)

    async def _pump_stderr(
        self,
        handle: ProcessHandle,
        conversation_id: str,
        sink: NotificationSink,
        chunks: list[str],
    ) -> None:
        stream = handle.stderr
        if stream is None:
            return
        while True:
            chunk = await stream.read(_READ_CHUNK)
            if not chunk:
                break
            text = chunk.decode("utf-8", errors="replace")
            chunks.append(text)
            sink(StderrNotification(conversation_id=conversation_id, text=text))

    @staticmethod
    def _dispatch(builder: TranscriptBuilder, event: dict) -> None:
        if builder.completed:
            logger.debug("turn already finalized, ignoring %s", event.get("type"))
            return
        builder.handle_event(event)

    # ------------------------------------------------------------------ #
    # Exit handling
    # ------------------------------------------------------------------ #

    def _handle_exit(
        self,
        conversation: Conversation,
        text: str,
        sink: NotificationSink,
        callbacks: TurnCallbacks,
        builder: TranscriptBuilder,
        handle: ProcessHandle,
        code: int,
        stderr: str,
        context: RetryContext,
        permissions: RetryPermissions,
    ) -> RetryMode:
        if builder.completed:
            return RetryMode.NONE

        if not builder.text.strip() and conversation.status == "thinking":
            mode = plan_exit_retry(
                context, permissions, builder.state.retry_mode, stderr
            )
            if mode is not RetryMode.NONE:
                conversation.session_id = None
                return mode

        if builder.text:
            logger.warning(
                "%s: codex exited with code %s before completing the turn",
                conversation.id,
                code,
            )
            builder.finalize_incomplete()
            return RetryMode.NONE

        conversation.status = "idle"
        error = self._no_output_error(code, stderr, timed_out=handle.timed_out)
        if _SLASH_ONLY_RE.match(text.strip()):
            error += SLASH_ONLY_HINT
        report_error(sink, conversation.id, error, logger=logger)
        callbacks.broadcast_status(conversation.id, "idle")
        return RetryMode.NONE

    def _no_output_error(self, code: int, stderr: str, *, timed_out: bool) -> str:
        if timed_out:
            return (
                f"Codex process timed out after "
                f"{self._config.process_timeout:.0f} seconds"
            )
        if code == 0:
            return "Codex process exited without producing a response"
        details = stderr.strip()[: self._config.stderr_error_chars]
        if details:
            return f"Codex process exited with code {code}: {details}"
        return f"Codex process exited with code {code}"

    def _build_env(self) -> dict[str, str]:
        stripped = set(self._config.strip_env)
        return {k: v for k, v in os.environ.items() if k not in stripped}

    # ------------------------------------------------------------------ #
    # Summaries
    # ------------------------------------------------------------------ #

    async def summarize(
        self,
        messages: Sequence[Message],
        model: str | None = None,
        cwd: str | None = None,
    ) -> str:
        """Ask the agent for a compressed summary of *messages*.

        Raises:
            SummaryError: On spawn failure, timeout, non-zero exit, or an
                empty response.
        """
        args = [
            "exec",
            "--json",
            "-m",
            self._registry.resolve_id(model),
            "--skip-git-repo-check",
            "-s",
            "read-only",
            build_summary_prompt(messages),
        ]
        workdir = cwd or str(Path.home())
        try:
            handle = await self._supervisor.spawn(
                None,
                self._config.binary,
                args,
                cwd=workdir,
                env=self._build_env(),
                timeout=self._config.summary_timeout,
            )
        except OSError as exc:
            msg = f"Failed to spawn codex: {exc}"
            raise SummaryError(msg) from exc

        decoder = JsonlDecoder(label="summary")
        parts: list[str] = []
        stderr_chunks: list[str] = []

        def collect(events: list[dict]) -> None:
            for event in events:
                if event.get("type") != "item.completed":
                    continue
                item = classify_item(event.get("item"))
                if isinstance(item, AgentMessageItem) and item.text:
                    parts.append(item.text)

        async def read_stdout() -> None:
            if handle.stdout is None:
                return
            while chunk := await handle.stdout.read(_READ_CHUNK):
                collect(decoder.feed(chunk))

        async def read_stderr() -> None:
            if handle.stderr is None:
                return
            while chunk := await handle.stderr.read(_READ_CHUNK):
                stderr_chunks.append(chunk.decode("utf-8", errors="replace"))

        await asyncio.gather(read_stdout(), read_stderr())
        code = await handle.wait()
        collect(decoder.flush())

        if handle.timed_out:
            msg = "Summary generation timed out"
            raise SummaryError(msg)
        summary = "".join(parts).strip()
        if code != 0 or not summary:
            stderr = "".join(stderr_chunks).strip()[: self._config.stderr_error_chars]
            logger.error("summary failed (code %s): %s", code, stderr)
            msg = f"Summary generation failed (code {code}): {stderr}"
            raise SummaryError(msg)
        return summary
