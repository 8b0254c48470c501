"""CLI commands for the feed configuration file."""

from __future__ import annotations

import dataclasses

import click
from rich.console import Console
from rich.table import Table

from nippo_feed.config import DEFAULT_CONFIG_PATH, FeedConfig, coerce_value, load_config, save_config

console = Console()


@click.group("config")
def config_cli():
    """Show or change settings in ~/.nippo/feed.yaml."""
    pass


@config_cli.command("show")
def show():
    """Print the effective configuration (file plus environment)."""
    config = load_config()
    table = Table(title=str(DEFAULT_CONFIG_PATH))
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    for key, value in config.to_dict().items():
        table.add_row(key, str(value))
    console.print(table)


@config_cli.command("set")
@click.argument("key")
@click.argument("value")
def set_value(key: str, value: str):
    """Set one configuration key.

    \b
    Examples:
        nippo-feed config set project_id my-project
        nippo-feed config set timezone Asia/Tokyo
    """
    known = {f.name for f in dataclasses.fields(FeedConfig)}
    if key not in known:
        raise click.BadParameter(f"unknown key {key!r}; expected one of: {', '.join(sorted(known))}")
    config = load_config()
    try:
        setattr(config, key, coerce_value(key, value))
    except (TypeError, ValueError) as exc:
        raise click.BadParameter(f"invalid value for {key}: {exc}")
    save_config(config)
    console.print(f"[green]✓[/green] {key} = {getattr(config, key)}")
