"""CLI entry point for podsync."""

import asyncio
import json
import sys
from datetime import datetime
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from podsync.config.logging import setup_logging
from podsync.config.manager import ConfigManager
from podsync.models import metadata_from_dto, metadata_to_dto
from podsync.network.cache import RecordCache
from podsync.network.feed import FeedFetcher
from podsync.network.gateway import GatewayClient
from podsync.sync.partition import BatchPartitioner
from podsync.sync.orchestrator import status_to_string, transaction_to_string
from podsync.sync.store import TransactionStore
from podsync.utils.errors import ConfigError, PodsyncError
from podsync.utils.metadata import Metadata, episodes_count, find_metadata_by_id, has_metadata

app = typer.Typer(
    name="podsync",
    help="Publish and reconstruct podcast metadata on a permanent storage network",
    no_args_is_help=True,
)
console = Console()


@app.callback()
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable verbose (DEBUG) logging"
    ),
    log_file: Path | None = typer.Option(
        None, "--log-file", help="Write logs to file"
    ),
) -> None:
    """podsync - Sync podcast metadata with a permanent storage network."""
    setup_logging(verbose=verbose, log_file=log_file)


@app.command("version")
def show_version() -> None:
    """Show version information."""
    from podsync import __version__

    console.print(f"[bold cyan]podsync[/bold cyan] v{__version__}")


def _load_plan_file(path: Path) -> tuple[list[Metadata], list[Metadata]]:
    data = json.loads(path.read_text())
    if isinstance(data, list):
        data = {"diffs": data}
    subscriptions = [metadata_from_dto(m) for m in data.get("subscriptions") or []]
    diffs = [metadata_from_dto(m) for m in data.get("diffs") or []]
    return subscriptions, diffs


@app.command("plan")
def plan_command(
    file: Path = typer.Argument(..., help="JSON file with pending diffs", exists=True),
    max_batch_size: int | None = typer.Option(
        None, "--max-batch-size", help="Override the configured batch size ceiling in bytes"
    ),
) -> None:
    """Show how pending podcast diffs would be split into records.

    FILE holds either a list of podcast diffs, or an object with ``diffs``
    and, optionally, the currently known ``subscriptions``. Both use the
    camelCase wire form.

    Examples:
        podsync plan pending.json

        podsync plan pending.json --max-batch-size 102400
    """
    try:
        config = ConfigManager().load_config()
        subscriptions, diffs = _load_plan_file(file)
    except ConfigError as e:
        console.print(f"[red]✗[/red] {e}")
        sys.exit(1)
    except (OSError, ValueError) as e:
        console.print(f"[red]✗[/red] Could not read {file}: {e}")
        sys.exit(1)

    partitioner = BatchPartitioner(
        RecordCache(),
        max_batch_size or config.sync.max_batch_size,
        config.partition,
        config.publish.tag_prefix,
    )

    table = Table(title="Planned records")
    table.add_column("Podcast", style="cyan")
    table.add_column("Batch", justify="right")
    table.add_column("Episodes", justify="right")
    table.add_column("Size (bytes)", justify="right")

    failed = 0
    for diff in diffs:
        podcast_diff = {k: v for k, v in diff.items() if k != "threads"}
        if not has_metadata(podcast_diff):
            continue
        cached = find_metadata_by_id(diff.get("id") or "", subscriptions)
        try:
            batches = partitioner.partition_metadata_batches(cached, podcast_diff)
        except PodsyncError as e:
            failed += 1
            console.print(f"[red]✗[/red] {diff.get('title') or diff.get('feed_url')}: {e}")
            continue

        for batch in batches:
            batch_number = batch.metadata.get("batch_number")
            table.add_row(
                batch.title,
                "-" if batch_number is None else str(batch_number),
                str(batch.num_episodes),
                str(partitioner.batch_size(batch.compressed_metadata, batch.tags)),
            )

    console.print(table)
    if failed:
        sys.exit(1)


@app.command("fetch")
def fetch_command(
    feed_url: str = typer.Argument(..., help="RSS feed URL of the podcast"),
    feed_type: str = typer.Option("rss2", "--feed-type", help="Feed type"),
    output: Path | None = typer.Option(
        None, "--output", "-o", help="Write the reconstructed metadata to a JSON file"
    ),
) -> None:
    """Reconstruct a podcast's metadata from its published records.

    Examples:
        podsync fetch https://example.com/feed.rss

        podsync fetch https://example.com/feed.rss -o podcast.json
    """
    try:
        config = ConfigManager().load_config()
    except ConfigError as e:
        console.print(f"[red]✗[/red] {e}")
        sys.exit(1)

    async def run() -> Metadata:
        async with GatewayClient(config.gateway, config.publish.tag_prefix) as gateway:
            fetcher = FeedFetcher(
                gateway,
                RecordCache(),
                config.publish.tag_prefix,
                config.sync.max_fetch_batches,
            )
            return await fetcher.get_podcast_feed(feed_url, feed_type)

    try:
        with console.status(f"Fetching {feed_url}..."):
            metadata = asyncio.run(run())
    except PodsyncError as e:
        console.print(f"[red]✗[/red] {e}")
        sys.exit(1)

    if not has_metadata(metadata):
        console.print(f"[yellow]⚠[/yellow] No published metadata found for {feed_url}")
        return

    table = Table(show_header=False, box=None)
    table.add_column("Key", style="cyan")
    table.add_column("Value", style="white")
    table.add_row("Id", str(metadata.get("id") or ""))
    table.add_row("Title", str(metadata.get("title") or ""))
    table.add_row("Episodes", str(episodes_count(metadata)))
    for field in ("first_episode_date", "last_episode_date", "batch_number"):
        value = metadata.get(field)
        if value is not None:
            table.add_row(field.replace("_", " ").capitalize(), str(value))
    console.print(table)

    if output:
        output.write_text(json.dumps(metadata_to_dto(metadata), indent=2))
        console.print(f"[green]✓[/green] Metadata written to {output}")


@app.command("history")
def history_command(
    clear: bool = typer.Option(False, "--clear", help="Delete the transaction history"),
) -> None:
    """List stored sync transactions."""
    store = TransactionStore()
    if clear:
        asyncio.run(store.clear())
        console.print("[green]✓[/green] Transaction history cleared")
        return

    transactions = asyncio.run(store.load())
    if not transactions:
        console.print("[dim]No transactions recorded yet[/dim]")
        return

    table = Table(title="Sync transactions")
    table.add_column("Time")
    table.add_column("Podcast", style="cyan")
    table.add_column("Content")
    table.add_column("Status")
    table.add_column("Record")

    status_styles = {"Confirmed": "green", "Posted": "yellow", "Error": "red", "Rejected": "red"}
    for tx in transactions:
        label = status_to_string(tx.status)
        style = status_styles.get(label, "white")
        detail = tx.record_id or (str(tx.error) if tx.error else "")
        table.add_row(
            datetime.fromtimestamp(tx.timestamp).strftime("%Y-%m-%d %H:%M"),
            tx.title,
            transaction_to_string(tx),
            f"[{style}]{label}[/{style}]",
            detail,
        )
    console.print(table)


@app.command("config")
def config_command(
    action: str = typer.Argument(..., help="Action: show, or set <key> <value>"),
    key: str | None = typer.Argument(None, help="Dotted config key (for 'set' action)"),
    value: str | None = typer.Argument(None, help="Config value (for 'set' action)"),
) -> None:
    """Manage podsync configuration.

    Actions:
        show: Display current configuration
        set:  Set a configuration value

    Examples:
        podsync config show

        podsync config set sync.max_batch_size 51200
    """
    try:
        manager = ConfigManager()

        if action == "show":
            config = manager.load_config()

            console.print("\n[bold]podsync Configuration[/bold]\n")

            table = Table(show_header=False, box=None)
            table.add_column("Key", style="cyan")
            table.add_column("Value", style="white")

            table.add_row("Config file", str(manager.config_file))
            table.add_row("Log level", config.log_level)
            table.add_row("Gateway", config.gateway.url)
            table.add_row("Tag prefix", config.publish.tag_prefix)
            table.add_row("App name", config.publish.app_name)
            table.add_row("Max batch size", str(config.sync.max_batch_size))
            table.add_row("Min confirmations", str(config.sync.min_confirmations))

            console.print(table)

        elif action == "set":
            if not key or value is None:
                console.print("[red]✗[/red] Usage: podsync config set <key> <value>")
                sys.exit(1)

            manager.set_value(key, value)
            console.print(f"[green]✓[/green] Set [cyan]{key}[/cyan] = [yellow]{value}[/yellow]")

        else:
            console.print(f"[red]✗[/red] Unknown action: {action}")
            console.print("Valid actions: show, set")
            sys.exit(1)

    except PodsyncError as e:
        console.print(f"[red]✗[/red] Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    app()
