"""Sync commands - offline queue inspection and replay.

Operators use these to see what is waiting in the offline queue, trigger a
drain, and deal with operations that exhausted their retries.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import Optional
from urllib.parse import urlparse

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from sphair_offline.sync.connectivity import ConnectivityMonitor, ConnectivityProbe
from sphair_offline.sync.models import OperationStatus, QueueStats
from sphair_offline.sync.runtime import OfflineRuntime, get_runtime

console = Console()

app = typer.Typer(
    help="Offline queue synchronization commands",
    no_args_is_help=True,
)


def humanize_timedelta(td: timedelta) -> str:
    """Convert a timedelta into a concise human-readable string.

    Examples: '2s', '45s', '3m 12s', '2h 5m', '1d 4h', '3d'
    """
    total_seconds = int(td.total_seconds())
    if total_seconds < 0:
        return "0s"

    days, remainder = divmod(total_seconds, 86400)
    hours, remainder = divmod(remainder, 3600)
    minutes, seconds = divmod(remainder, 60)

    if days > 0:
        return f"{days}d {hours}h" if hours > 0 else f"{days}d"
    if hours > 0:
        return f"{hours}h {minutes}m" if minutes > 0 else f"{hours}h"
    if minutes > 0:
        return f"{minutes}m {seconds}s" if seconds > 0 else f"{minutes}m"
    return f"{seconds}s"


def format_queue_health(stats: QueueStats, target_console: Console) -> None:
    """Render queue health metrics as Rich panels/tables.

    Args:
        stats: Aggregate queue statistics from OfflineStore.get_queue_stats()
        target_console: Rich Console to print to (allows testing with captured output)
    """
    summary_lines: list[str] = [
        f"[bold]Pending:[/bold]  {stats.total_pending:,} operation(s)",
        f"[bold]Retrying:[/bold] {stats.total_retried:,}",
        f"[bold]Failed:[/bold]   {stats.total_failed:,}",
    ]
    if stats.oldest_operation_age is not None:
        summary_lines.append(
            f"[bold]Oldest:[/bold]   {humanize_timedelta(stats.oldest_operation_age)} ago"
        )

    target_console.print(
        Panel(
            "\n".join(summary_lines),
            title="Queue Health",
            border_style="cyan",
            expand=False,
        )
    )

    if stats.type_counts:
        type_table = Table(
            title="Operation Types",
            show_header=True,
            header_style="bold",
            expand=False,
        )
        type_table.add_column("Type", style="cyan")
        type_table.add_column("Count", justify="right")
        for op_type, count in stats.type_counts:
            type_table.add_row(op_type, str(count))
        target_console.print(type_table)


async def _probe(runtime: OfflineRuntime) -> bool:
    # Own monitor: a reachable result must not kick off a reconnect drain here
    probe = ConnectivityProbe(
        monitor=ConnectivityMonitor(),
        url=runtime.config.get_health_url,
        timeout=5.0,
    )
    return await probe.check()


@app.command()
def status(
    check_connection: bool = typer.Option(
        False,
        "--check",
        "-c",
        help="Probe the server health endpoint (may be slow if unreachable)",
    ),
) -> None:
    """Show offline queue status and configuration.

    Examples:
        sphair-sync status
        sphair-sync status --check
    """
    runtime = get_runtime()

    async def _collect() -> tuple[QueueStats, Optional[bool]]:
        try:
            stats = await runtime.store.get_queue_stats()
            reachable = await _probe(runtime) if check_connection else None
            return stats, reachable
        finally:
            await runtime.aclose()

    stats, reachable = asyncio.run(_collect())

    console.print()
    console.print("[cyan]SPHAiR Offline Sync Status[/cyan]")
    console.print()

    table = Table(show_header=False, box=None)
    table.add_column("Key", style="dim")
    table.add_column("Value")

    pending_color = "green" if stats.total_pending == 0 else "yellow"
    table.add_row("Pending", f"[{pending_color}]{stats.total_pending} operation(s)[/{pending_color}]")
    failed_color = "green" if stats.total_failed == 0 else "red"
    table.add_row("Failed", f"[{failed_color}]{stats.total_failed} operation(s)[/{failed_color}]")
    table.add_row("Server URL", runtime.config.get_server_url())
    table.add_row("Store", str(runtime.store.db_path))
    table.add_row("Config File", str(runtime.config.config_file))
    if reachable is not None:
        table.add_row("Connection", "[green]Online[/green]" if reachable else "[red]Unreachable[/red]")

    console.print(table)
    console.print()

    if stats.total_pending or stats.total_failed:
        format_queue_health(stats, console)
        console.print()
    else:
        console.print("[green]Queue empty -- all operations synced.[/green]")
        console.print()

    if not check_connection:
        console.print("[dim]Use 'sphair-sync status --check' to test connectivity.[/dim]")


@app.command()
def now(
    strict: bool = typer.Option(
        True,
        "--strict/--no-strict",
        help="Exit non-zero when operations fail or the server is unreachable",
    ),
) -> None:
    """Replay every pending operation now.

    Checks connectivity first so an unreachable server does not burn
    retries. Operations that fail for the last time are marked failed and
    listed by `sphair-sync failed`.

    Examples:
        sphair-sync now
        sphair-sync now --no-strict
    """
    runtime = get_runtime()

    async def _run():
        try:
            pending = await runtime.store.size(OperationStatus.PENDING)
            if pending == 0:
                return pending, True, None
            reachable = await _probe(runtime)
            if not reachable:
                return pending, False, None
            return pending, True, await runtime.engine.sync()
        finally:
            await runtime.aclose()

    pending, reachable, summary = asyncio.run(_run())

    if pending == 0:
        console.print("[dim]Queue is empty, nothing to sync.[/dim]")
        return

    if not reachable:
        console.print(f"[yellow]Server unreachable.[/yellow] {pending} operation(s) remain queued.")
        if strict:
            raise typer.Exit(1)
        return

    if summary is None:
        console.print("[red]Sync did not complete.[/red] See logs for details.")
        raise typer.Exit(1)

    console.print(
        f"[green]Synced:[/green] {summary.succeeded}  "
        f"[yellow]Retrying:[/yellow] {summary.retried}  "
        f"[red]Failed:[/red] {summary.failed}"
    )
    for op_id, message in summary.errors.items():
        console.print(f"  [dim]{op_id}[/dim]: {message}")

    if strict and (summary.failed > 0 or summary.retried > 0):
        raise typer.Exit(1)


@app.command()
def failed() -> None:
    """List operations that exhausted their retries."""
    runtime = get_runtime()

    async def _list():
        try:
            return await runtime.store.list_failed()
        finally:
            await runtime.aclose()

    operations = asyncio.run(_list())
    if not operations:
        console.print("[green]No failed operations.[/green]")
        return

    table = Table(title="Failed Operations", show_header=True, header_style="bold")
    table.add_column("ID", style="dim")
    table.add_column("Type", style="cyan")
    table.add_column("Request")
    table.add_column("Attempts", justify="right")
    table.add_column("Last Error", style="red")
    for op in operations:
        table.add_row(
            op.id,
            op.type.value,
            f"{op.method.value} {op.url}",
            str(op.retry_count),
            op.last_error or "",
        )
    console.print(table)


@app.command()
def retry(
    operation_ids: Optional[list[str]] = typer.Argument(
        None,
        help="Failed operation ids to requeue (default: all failed)",
    ),
) -> None:
    """Return failed operations to the queue with a fresh retry budget."""
    runtime = get_runtime()

    async def _requeue() -> int:
        try:
            return await runtime.store.requeue_failed(operation_ids or None)
        finally:
            await runtime.aclose()

    count = asyncio.run(_requeue())
    if count == 0:
        console.print("[dim]No failed operations to requeue.[/dim]")
        return
    console.print(f"[green]✓[/green] Requeued {count} operation(s). Run 'sphair-sync now' to replay.")


@app.command()
def clear(
    failed_only: bool = typer.Option(False, "--failed-only", help="Only delete failed operations"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Delete queued operations. Pending operations are lost for good."""
    if not yes:
        target = "failed operations" if failed_only else "ALL queued operations"
        typer.confirm(f"Delete {target}?", abort=True)

    runtime = get_runtime()

    async def _clear() -> int:
        try:
            return await runtime.store.clear(OperationStatus.FAILED if failed_only else None)
        finally:
            await runtime.aclose()

    count = asyncio.run(_clear())
    console.print(f"Deleted {count} operation(s).")


@app.command(name="server")
def server(
    url: Optional[str] = typer.Argument(
        None,
        help="API base URL to set (http:// or https://)",
    ),
) -> None:
    """Show or set the API base URL used for replay.

    Examples:
        sphair-sync server
        sphair-sync server https://sphair.example.com/api
    """
    config = get_runtime().config
    if url is None:
        console.print(f"Server URL: [cyan]{config.get_server_url()}[/cyan]")
        console.print(f"Config File: [dim]{config.config_file}[/dim]")
        return

    normalized_url = url.strip().rstrip("/")
    parsed = urlparse(normalized_url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        console.print(
            "[red]Error:[/red] Invalid server URL. Use a full URL, "
            "for example: https://sphair.example.com/api"
        )
        raise typer.Exit(1)

    config.set_server_url(normalized_url)
    console.print(f"[green]✓[/green] Server set to [cyan]{normalized_url}[/cyan]")
    console.print("[dim]Queued operations will replay against this server.[/dim]")
