"""tether summarize — compress a saved message list into a summary."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path

import click
from pydantic import TypeAdapter, ValidationError

from tether.bridge import CodexBridge, SummaryError
from tether.config.parser import ConfigError, load_config
from tether.conversation import Message

_MESSAGES = TypeAdapter(list[Message])


@click.command()
@click.argument("messages_file", type=click.Path(exists=True, dir_okay=False))
@click.option("-m", "--model", default=None, help="Model used for summarizing.")
@click.option(
    "--cwd",
    type=click.Path(exists=True, file_okay=False),
    default=None,
    help="Working directory for the agent (defaults to $HOME).",
)
@click.option(
    "-f", "--config", "config_file", type=click.Path(), help="Config file path."
)
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output.")
def summarize(
    messages_file: str,
    model: str | None,
    cwd: str | None,
    config_file: str | None,
    verbose: bool,
) -> None:
    """Summarize MESSAGES_FILE, a JSON list of messages."""
    if verbose:
        logging.basicConfig(level=logging.DEBUG)

    try:
        config = load_config(Path(config_file) if config_file else None)
    except ConfigError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1) from exc

    try:
        raw = json.loads(Path(messages_file).read_text(encoding="utf-8"))
        messages = _MESSAGES.validate_python(raw)
    except json.JSONDecodeError as exc:
        click.echo(f"Error: {messages_file} is not valid JSON: {exc}", err=True)
        raise SystemExit(1) from exc
    except ValidationError as exc:
        click.echo(f"Error: invalid message list: {exc}", err=True)
        raise SystemExit(1) from exc

    bridge = CodexBridge(config=config)
    try:
        summary = asyncio.run(bridge.summarize(messages, model=model, cwd=cwd))
    except SummaryError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1) from exc

    click.echo(summary)
