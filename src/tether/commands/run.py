"""tether run — run one conversation turn and stream the transcript."""

from __future__ import annotations

import asyncio
import logging
import uuid
from pathlib import Path

import click

from tether.bridge import CodexBridge
from tether.config.models import BridgeConfig
from tether.config.parser import ConfigError, load_config
from tether.conversation import Attachment, Conversation, Message
from tether.execution import ExecutionMode
from tether.notifications import (
    DeltaNotification,
    ErrorNotification,
    Notification,
    ResultNotification,
    StderrNotification,
    ThinkingNotification,
)
from tether.recorder import NotificationRecorder
from tether.transcript import TurnCallbacks

logger = logging.getLogger(__name__)


class TerminalSink:
    """Renders notifications to the terminal.

    Transcript deltas go to stdout; everything else goes to stderr.
    """

    def __init__(
        self,
        verbose: bool = False,
        recorder: NotificationRecorder | None = None,
    ) -> None:
        self._verbose = verbose
        self._recorder = recorder
        self.result: ResultNotification | None = None
        self.error: str | None = None

    def __call__(self, notification: Notification) -> None:
        if self._recorder is not None:
            self._recorder.record(notification)

        if isinstance(notification, DeltaNotification):
            click.echo(notification.text, nl=False)
        elif isinstance(notification, ThinkingNotification):
            if self._verbose:
                click.echo(click.style(notification.text, dim=True), err=True)
        elif isinstance(notification, StderrNotification):
            if self._verbose:
                click.echo(notification.text, nl=False, err=True)
        elif isinstance(notification, ErrorNotification):
            self.error = notification.error
            click.echo(f"\nError: {notification.error}", err=True)
        elif isinstance(notification, ResultNotification):
            self.result = notification


def _format_footer(result: ResultNotification) -> str:
    parts: list[str] = []
    if result.incomplete:
        parts.append("incomplete")
    if result.cost is not None:
        parts.append(f"${result.cost:.4f}")
    if result.display_input_tokens is not None or result.output_tokens is not None:
        parts.append(
            f"{result.display_input_tokens or 0} in / {result.output_tokens or 0} out"
        )
    if result.duration is not None:
        parts.append(f"{result.duration / 1000:.1f}s")
    if result.session_id:
        parts.append(f"session {result.session_id}")
    return " · ".join(parts)


@click.command()
@click.argument("prompt")
@click.option(
    "--cwd",
    type=click.Path(exists=True, file_okay=False),
    default=".",
    show_default=True,
    help="Working directory for the agent.",
)
@click.option("-m", "--model", default=None, help="Model id.")
@click.option(
    "-s", "--session", "session_id", default=None, help="Resume an agent session."
)
@click.option(
    "-a",
    "--attach",
    "attachments",
    multiple=True,
    type=click.Path(exists=True, dir_okay=False),
    help="Attach a file (repeatable). Images are passed with -i.",
)
@click.option(
    "--upload-dir",
    type=click.Path(file_okay=False),
    default=None,
    help="Directory holding per-conversation uploads; <dir>/<conversation id> "
    "is made readable to the agent.",
)
@click.option(
    "--mode",
    type=click.Choice([m.value for m in ExecutionMode]),
    default=ExecutionMode.PATCH.value,
    show_default=True,
    help="Execution mode; only 'autonomous' lets the agent write.",
)
@click.option(
    "--unsandboxed", is_flag=True, help="Run without the agent's sandbox."
)
@click.option(
    "-f", "--config", "config_file", type=click.Path(), help="Config file path."
)
@click.option(
    "--record",
    "record_dir",
    type=click.Path(file_okay=False),
    default=None,
    help="Append every notification to a JSONL file in this directory.",
)
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output.")
def run(
    prompt: str,
    cwd: str,
    model: str | None,
    session_id: str | None,
    attachments: tuple[str, ...],
    upload_dir: str | None,
    mode: str,
    unsandboxed: bool,
    config_file: str | None,
    record_dir: str | None,
    verbose: bool,
) -> None:
    """Send PROMPT to the agent and stream its transcript."""
    if verbose:
        logging.basicConfig(level=logging.DEBUG)

    try:
        config = load_config(Path(config_file) if config_file else None)
    except ConfigError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1) from exc

    conversation = Conversation(
        id=uuid.uuid4().hex[:12],
        messages=[Message(role="user", text=prompt)],
        model=model,
        cwd=str(Path(cwd).resolve()),
        session_id=session_id,
        sandboxed=not unsandboxed,
        execution_mode=mode,
    )
    files = [
        Attachment(path=str(Path(p).resolve()), name=Path(p).name) for p in attachments
    ]

    recorder = (
        NotificationRecorder(Path(record_dir), conversation.id) if record_dir else None
    )
    sink = TerminalSink(verbose=verbose, recorder=recorder)
    try:
        asyncio.run(_run_turn(config, conversation, prompt, files, upload_dir, sink))
    finally:
        if recorder is not None:
            recorder.close()
            click.echo(f"Recorded to {recorder.path}", err=True)

    if sink.result is not None:
        click.echo()
        click.echo(_format_footer(sink.result), err=True)
    if sink.error is not None:
        raise SystemExit(1)


async def _run_turn(
    config: BridgeConfig,
    conversation: Conversation,
    prompt: str,
    attachments: list[Attachment],
    upload_dir: str | None,
    sink: TerminalSink,
) -> None:
    bridge = CodexBridge(config=config)
    callbacks = TurnCallbacks(
        on_save=lambda cid: logger.debug("%s: conversation updated", cid),
        broadcast_status=lambda cid, status: logger.debug("%s: status %s", cid, status),
    )
    await bridge.run_turn(
        conversation,
        prompt,
        sink=sink,
        callbacks=callbacks,
        attachments=attachments,
        upload_dir=upload_dir,
    )
