"""tether models — list the models and their pricing."""

from __future__ import annotations

from pathlib import Path

import click

from tether.config.parser import ConfigError, load_config


@click.command()
@click.option(
    "-f", "--config", "config_file", type=click.Path(), help="Config file path."
)
def models(config_file: str | None) -> None:
    """List known models with context size and per-million-token prices."""
    try:
        config = load_config(Path(config_file) if config_file else None)
    except ConfigError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1) from exc

    registry = config.build_registry()
    for info in registry:
        marker = "*" if info.id == registry.default_model else " "
        click.echo(
            f"{marker} {info.id:<16} {info.name:<16} {info.context:>9,} ctx  "
            f"${info.input_price:g} in / ${info.output_price:g} out"
        )
