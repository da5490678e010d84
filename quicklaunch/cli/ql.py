#!/usr/bin/env python3
"""
Command-line front end for the quicklaunch daemon.

Usage:
    ql search "query"          - Rank apps, history and query actions
    ql open "query" [--pick N] - Launch the Nth result (default: first)
    ql history                 - Show the open history
    ql forget PATH             - Remove a path from history
    ql index NAME PATH         - Add an application to the index
    ql daemon start|stop|status
"""

import asyncio
from datetime import datetime
from typing import Optional

import click
import httpx
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table
from loguru import logger

console = Console()

# Default daemon URL
DAEMON_URL = "http://localhost:8765"


def _report_error(response: httpx.Response, action: str) -> None:
    try:
        message = response.json()["error"]["message"]
    except (ValueError, KeyError, TypeError):
        message = response.text
    console.print(f"[red]{action} failed:[/red] {message}")


def _not_running() -> None:
    console.print("[red]Cannot connect to daemon. Is it running?[/red]")
    console.print("Start with: [cyan]ql daemon start[/cyan]")


@click.group()
@click.option("--url", envvar="QL_DAEMON_URL", default=DAEMON_URL, show_default=True,
              help="Daemon base URL")
@click.pass_context
def cli(ctx, url: str):
    """quicklaunch - keyboard-driven launcher CLI."""
    ctx.ensure_object(dict)
    ctx.obj["url"] = url.rstrip("/")


@cli.command()
@click.argument("query", required=False, default="")
@click.option("--limit", "-l", default=20, help="Max results")
@click.pass_context
def search(ctx, query: str, limit: int):
    """Rank candidates for QUERY (empty shows history)."""
    asyncio.run(search_candidates(ctx.obj["url"], query, limit))


async def search_candidates(base_url: str, query: str, limit: int) -> Optional[list]:
    """Send search request to daemon and render the results."""
    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            transient=True,
            console=console
        ) as progress:
            progress.add_task(description="Searching...", total=None)

            async with httpx.AsyncClient() as client:
                response = await client.get(
                    f"{base_url}/search",
                    params={"q": query, "limit": limit},
                    timeout=5.0
                )
    except httpx.ConnectError:
        _not_running()
        return None

    if response.status_code != 200:
        _report_error(response, "Search")
        return None

    results = response.json().get("results", [])
    display_search_results(results)
    return results


def display_search_results(results: list) -> None:
    if not results:
        console.print("[yellow]No results found[/yellow]")
        return

    table = Table(title=f"Results ({len(results)})")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Label", style="cyan", no_wrap=False)
    table.add_column("Kind", style="magenta")
    table.add_column("Score", justify="right")
    table.add_column("Path", no_wrap=False)

    for i, r in enumerate(results):
        table.add_row(
            str(i),
            r.get("label", ""),
            r.get("kind", "unknown"),
            str(r.get("score", 0)),
            r.get("path", ""),
        )

    console.print(table)


@cli.command(name="open")
@click.argument("query")
@click.option("--pick", "-p", default=0, show_default=True, help="Result index to launch")
@click.pass_context
def open_cmd(ctx, query: str, pick: int):
    """Search for QUERY and launch one of the results."""
    asyncio.run(open_result(ctx.obj["url"], query, pick))


async def open_result(base_url: str, query: str, pick: int) -> None:
    try:
        async with httpx.AsyncClient() as client:
            response = await client.get(
                f"{base_url}/search",
                params={"q": query},
                timeout=5.0
            )
            if response.status_code != 200:
                _report_error(response, "Search")
                return

            response = await client.post(
                f"{base_url}/launch",
                json={"index": pick, "query": query},
                timeout=10.0
            )
    except httpx.ConnectError:
        _not_running()
        return

    if response.status_code != 200:
        _report_error(response, "Launch")
        return

    outcome = response.json()
    state = outcome.get("state")
    if state == "success":
        console.print("[green]✓[/green] Launched")
        if outcome.get("message"):
            console.print(outcome["message"])
    elif state == "self_healed":
        console.print(f"[yellow]{outcome.get('error')}[/yellow]")
    elif state == "hard_failure":
        console.print(f"[red]Launch failed:[/red] {outcome.get('error')}")
    else:
        console.print("[yellow]Nothing to launch[/yellow]")


@cli.command()
@click.option("--refresh", is_flag=True, help="Reconcile with the store first")
@click.pass_context
def history(ctx, refresh: bool):
    """Show the open history, most recent first."""
    asyncio.run(show_history(ctx.obj["url"], refresh))


async def show_history(base_url: str, refresh: bool) -> None:
    try:
        async with httpx.AsyncClient() as client:
            if refresh:
                await client.post(f"{base_url}/history/refresh", timeout=10.0)
            response = await client.get(f"{base_url}/history", timeout=5.0)
    except httpx.ConnectError:
        _not_running()
        return

    if response.status_code != 200:
        _report_error(response, "History")
        return

    entries = response.json().get("entries", [])
    if not entries:
        console.print("[yellow]History is empty[/yellow]")
        return

    table = Table(title="Open History")
    table.add_column("Name", style="cyan")
    table.add_column("Uses", justify="right")
    table.add_column("Last used")
    table.add_column("Path", no_wrap=False)

    for e in entries:
        last_used = datetime.fromtimestamp(e.get("last_used", 0)).strftime("%Y-%m-%d %H:%M")
        table.add_row(e.get("name", ""), str(e.get("use_count", 0)), last_used, e.get("path", ""))

    console.print(table)


@cli.command()
@click.argument("path")
@click.pass_context
def forget(ctx, path: str):
    """Remove PATH from the open history."""
    asyncio.run(forget_path(ctx.obj["url"], path))


async def forget_path(base_url: str, path: str) -> None:
    try:
        async with httpx.AsyncClient() as client:
            response = await client.delete(
                f"{base_url}/history",
                params={"path": path},
                timeout=5.0
            )
    except httpx.ConnectError:
        _not_running()
        return

    if response.status_code == 200:
        console.print(f"[green]✓[/green] Forgot {path}")
    else:
        _report_error(response, "Forget")


@cli.command()
@click.argument("name")
@click.argument("path")
@click.option("--pinyin", help="Full pinyin of the name")
@click.option("--initials", help="Pinyin initials of the name")
@click.option("--icon", help="Icon path")
@click.pass_context
def index(ctx, name: str, path: str, pinyin: Optional[str], initials: Optional[str], icon: Optional[str]):
    """Add an application to the index."""
    asyncio.run(index_app(ctx.obj["url"], name, path, pinyin, initials, icon))


async def index_app(
    base_url: str,
    name: str,
    path: str,
    pinyin: Optional[str] = None,
    initials: Optional[str] = None,
    icon: Optional[str] = None,
) -> None:
    try:
        async with httpx.AsyncClient() as client:
            response = await client.post(
                f"{base_url}/apps",
                json={
                    "name": name,
                    "path": path,
                    "icon": icon,
                    "name_pinyin": pinyin,
                    "name_pinyin_initials": initials,
                },
                timeout=5.0
            )
    except httpx.ConnectError:
        _not_running()
        return

    if response.status_code == 201:
        console.print(f"[green]✓[/green] Indexed {name} ({response.json().get('apps', 0)} apps)")
    else:
        _report_error(response, "Index")


@cli.group()
def daemon():
    """Manage the launcher daemon."""
    pass


@daemon.command()
@click.option("--config", "-c", type=click.Path(exists=True), help="Config file path")
def start(config: Optional[str]):
    """Start the launcher daemon in the foreground."""
    console.print("[cyan]Starting launcher daemon...[/cyan]")

    # Import here so client commands stay light
    from ..daemon.main import main as daemon_main

    try:
        asyncio.run(daemon_main(config))
    except KeyboardInterrupt:
        console.print("\n[yellow]Daemon stopped by user[/yellow]")
    except Exception as e:
        console.print(f"[red]Daemon error:[/red] {e}")
        logger.exception("Daemon crashed")


@daemon.command()
@click.pass_context
def stop(ctx):
    """Stop the launcher daemon."""
    asyncio.run(stop_daemon(ctx.obj["url"]))


async def stop_daemon(base_url: str) -> None:
    try:
        async with httpx.AsyncClient() as client:
            response = await client.post(f"{base_url}/shutdown", timeout=5.0)
    except httpx.ConnectError:
        console.print("[yellow]Daemon not running[/yellow]")
        return

    if response.status_code == 200:
        console.print("[green]Daemon stopping[/green]")
    else:
        _report_error(response, "Stop")


@daemon.command()
@click.pass_context
def status(ctx):
    """Check daemon status."""
    asyncio.run(check_status(ctx.obj["url"]))


async def check_status(base_url: str) -> None:
    try:
        async with httpx.AsyncClient() as client:
            response = await client.get(f"{base_url}/status", timeout=2.0)
    except httpx.ConnectError:
        console.print("[red]✗ Daemon is not running[/red]")
        console.print("Start with: [cyan]ql daemon start[/cyan]")
        return

    if response.status_code != 200:
        console.print("[red]Daemon error[/red]")
        return

    data = response.json()
    console.print("[green]✓ Daemon is running[/green]")
    console.print(f"\nVersion: {data.get('version', 'unknown')}")
    console.print(f"Uptime: {data.get('uptime', 'unknown')}")
    stats = data.get("stats", {})
    if stats:
        console.print(f"History entries: {stats.get('history_entries', 0)}")
        console.print(f"Indexed apps: {stats.get('indexed_apps', 0)}")
        console.print(f"Launches: {stats.get('launch_count', 0)} ({stats.get('pruned_count', 0)} pruned)")
        console.print(f"Memory: {stats.get('memory_mb', 0):.1f} MB")


def main():
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
