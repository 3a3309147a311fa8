"""Root CLI group and version flag."""

import signal

import click

# Keep SIGPIPE from killing the process when stdout closes mid-stream
# (e.g. ``tether run ... | head``).
if hasattr(signal, "SIGPIPE"):
    signal.signal(signal.SIGPIPE, signal.SIG_IGN)

from tether import __version__
from tether.commands.models import models
from tether.commands.run import run
from tether.commands.summarize import summarize


@click.group()
@click.version_option(version=__version__, prog_name="tether")
def cli() -> None:
    """Tether — drive the codex CLI and narrate what it does."""


cli.add_command(run)
cli.add_command(models)
cli.add_command(summarize)
