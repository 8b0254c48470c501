"""CLI commands for inspecting a viewer's feed.

Commands:
  feed page      — Load one or more pages and print them
  feed search    — Load pages, then rank and filter them
  feed poll      — Check for new content once, or keep watching
  feed refresh   — Ask every session on this device to refetch
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from nippo_feed.timeline.base import Alert, MeetingSummary, Partition, Post, partition_from_record

console = Console()
logger = logging.getLogger(__name__)

_identity_option = click.option(
    "--identity", "-u", envvar="NIPPO_FEED_IDENTITY", required=True,
    help="Viewer identity (uid). Defaults to $NIPPO_FEED_IDENTITY.",
)
_partition_option = click.option(
    "--partition", "-p", "partition_ids", multiple=True, required=True,
    help="Partition (group) id to include. Can repeat: -p g1 -p g2",
)


def _runtime(identity: str, partition_ids: tuple):
    from nippo_feed.config import load_config, load_token
    from nippo_feed.engine.feed import build_runtime
    from nippo_feed.store.firestore import FirestoreRestStore

    config = load_config()
    if not config.project_id:
        raise click.UsageError("No project configured. Run: nippo-feed config set project_id <id>")
    if not load_token():
        console.print("[yellow]NIPPO_FEED_ID_TOKEN is not set; requests will be unauthenticated.[/yellow]")

    store = FirestoreRestStore(config.project_id, load_token, api_url=config.api_url,
                               timeout=config.fetch_timeout_s)
    partitions = asyncio.run(_load_partitions(store, partition_ids))
    return config, build_runtime(config, identity, partitions, store=store)


async def _load_partitions(store, partition_ids: tuple) -> list[Partition]:
    from nippo_feed.errors import TransientFetchError
    from nippo_feed.store.remote import GROUPS

    partitions = []
    for pid in dict.fromkeys(partition_ids):
        try:
            record = await store.get_document(GROUPS, pid)
        except TransientFetchError as exc:
            logger.warning("Could not load group %s: %s", pid, exc)
            record = None
        partitions.append(partition_from_record(pid, record.data) if record else Partition(id=pid))
    return partitions


def _fmt_time(ts: Optional[int], tz) -> str:
    if ts is None:
        return "?"
    return datetime.fromtimestamp(ts / 1000, tz=tz).strftime("%Y-%m-%d %H:%M")


def _print_items(items: list, tz, title: str):
    table = Table(title=title, show_lines=False)
    table.add_column("When", style="dim", no_wrap=True)
    table.add_column("Kind")
    table.add_column("Group", style="cyan")
    table.add_column("Who", style="green")
    table.add_column("Text", max_width=70)

    for item in items:
        if isinstance(item, Post):
            who, text = item.author_name, item.message
            if item.tags:
                text = f"{text} [dim]{' '.join(item.tags)}[/dim]"
        elif isinstance(item, Alert):
            who, text = item.username, f"[red]No report by {item.deadline}[/red]"
        elif isinstance(item, MeetingSummary):
            who, text = "", f"{item.title} [dim]({item.status})[/dim]"
        else:
            who, text = "", ""
        table.add_row(_fmt_time(item.timestamp_ms, tz), item.kind, item.partition_name or item.partition_id or "",
                      who, text)

    console.print(table)


async def _load_pages(session, pages: int):
    view = await session.load_first_page()
    for _ in range(max(0, pages - 1)):
        if not view.has_more:
            break
        view = await session.load_next_page()
    return view


@click.group("feed")
def feed_cli():
    """Feed operations — load, search and watch a viewer's feed."""
    pass


@feed_cli.command("page")
@_identity_option
@_partition_option
@click.option("--pages", default=1, show_default=True, help="Number of pages to load")
@click.option("--mark-seen", is_flag=True, help="Advance the viewer's high-water mark to what was shown")
def page(identity: str, partition_ids: tuple, pages: int, mark_seen: bool):
    """Load feed pages and print them newest first.

    \b
    Examples:
        nippo-feed feed page -u alice -p g1 -p g2
        nippo-feed feed page -u alice -p g1 --pages 3
    """
    config, runtime = _runtime(identity, partition_ids)
    view = asyncio.run(_load_pages(runtime.session, pages))

    _print_items(view.items, config.tz, f"Feed for {identity} ({len(view.items)} items)")
    if view.partial:
        console.print(f"[yellow]Some groups failed to load: {', '.join(view.failed_partitions)}[/yellow]")
    if view.stale:
        console.print("[yellow]Showing cached data; the store could not be reached.[/yellow]")
    if view.has_more:
        console.print("[dim]More items available (--pages to load more).[/dim]")
    if mark_seen and runtime.session.mark_seen(view.items):
        console.print("[green]✓[/green] High-water mark advanced")


@feed_cli.command("search")
@click.argument("query", required=False, default="")
@_identity_option
@_partition_option
@click.option("--pages", default=3, show_default=True, help="Pages to load before searching")
@click.option("--from", "start", type=click.DateTime(["%Y-%m-%d"]), default=None, help="First day (inclusive)")
@click.option("--to", "end", type=click.DateTime(["%Y-%m-%d"]), default=None, help="Last day (inclusive)")
@click.option("--group", "group_id", default=None, help="Only items from this partition")
def search(query: str, identity: str, partition_ids: tuple, pages: int,
           start: Optional[datetime], end: Optional[datetime], group_id: Optional[str]):
    """Rank loaded items by keyword and apply date/group filters.

    Keywords are ANDed; '#tag' matches tags exactly.

    \b
    Examples:
        nippo-feed feed search "#safety check" -u alice -p g1
        nippo-feed feed search -u alice -p g1 --from 2024-05-01 --to 2024-05-31
    """
    from nippo_feed.engine.search import FeedFilter

    config, runtime = _runtime(identity, partition_ids)
    asyncio.run(_load_pages(runtime.session, pages))

    start_day: Optional[date] = start.date() if start else None
    end_day: Optional[date] = end.date() if end else None
    feed_filter = FeedFilter.from_query(query, start=start_day, end=end_day, partition_id=group_id)
    results = runtime.session.search(feed_filter)

    if not results:
        console.print("[dim]No matching items.[/dim]")
        return
    _print_items(results, config.tz, f"{len(results)} match(es) for {query!r}" if query else f"{len(results)} item(s)")


@feed_cli.command("poll")
@_identity_option
@_partition_option
@click.option("--watch", is_flag=True, help="Keep polling until interrupted")
def poll(identity: str, partition_ids: tuple, watch: bool):
    """Check whether newer content than the viewer has seen exists."""
    from nippo_feed.engine.poller import PollOutcome

    config, runtime = _runtime(identity, partition_ids)
    runtime.channel.subscribe(
        lambda s: console.print(f"[bold green]New content[/bold green] in {s.partition_id} "
                                f"at {_fmt_time(s.newest_ms, config.tz)}")
    )

    if not watch:
        outcome = asyncio.run(runtime.poller.check_once())
        if outcome is PollOutcome.ERROR:
            console.print("[red]Check failed (see log).[/red]")
        elif outcome is not PollOutcome.SIGNALED:
            console.print(f"[dim]{outcome.value}[/dim]")
        return

    console.print(f"[dim]Polling every {config.poll_interval_s:.0f}s, Ctrl-C to stop...[/dim]")
    try:
        asyncio.run(runtime.poller.run())
    except KeyboardInterrupt:
        console.print("[dim]Stopped.[/dim]")


@feed_cli.command("refresh")
def refresh():
    """Set the refresh flag so the next feed read on this device refetches."""
    from nippo_feed.config import load_config
    from nippo_feed.engine.cache import FeedCache
    from nippo_feed.store.local import LocalStore

    local = LocalStore(load_config().local_db_path)
    try:
        FeedCache(local).request_refresh()
    finally:
        local.close()
    console.print("[green]✓[/green] Refresh requested")


@feed_cli.command("watermark")
@_identity_option
@click.option("--reset", is_flag=True, help="Forget the high-water mark")
def watermark(identity: str, reset: bool):
    """Show (or reset) the viewer's last-viewed time."""
    from nippo_feed.config import load_config
    from nippo_feed.engine.poller import HighWaterMark
    from nippo_feed.store.local import LocalStore

    config = load_config()
    local = LocalStore(config.local_db_path)
    try:
        mark = HighWaterMark(local, identity)
        if reset:
            local.delete(mark.key)
            console.print(f"[green]✓[/green] Cleared high-water mark for {identity}")
            return
        console.print(f"{identity}: {_fmt_time(mark.get(), config.tz)}")
    finally:
        local.close()
