"""nippo-feed CLI — load, search and watch the daily-report activity feed."""

import logging

import click
from rich.logging import RichHandler

from nippo_feed.cli.config_cmd import config_cli
from nippo_feed.cli.feed_cmd import feed_cli


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
def cli(verbose: bool):
    """nippo-feed — the group activity feed from the command line."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=verbose)],
    )


cli.add_command(feed_cli)
cli.add_command(config_cli)


if __name__ == "__main__":
    cli()
