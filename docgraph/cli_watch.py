"""Watch mode: keep the document graph rebuilt as files change."""

from __future__ import annotations

import asyncio
import dataclasses
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from .config_manager import load_graph_settings
from .errors import DocGraphError
from .models import BuildOptions, BuildResult
from .session import GraphSession
from .watcher import WatchdogWatchService

console = Console()


def _report(result: BuildResult) -> None:
    broken = sum(len(n.broken_links) for n in result.nodes if n.node_type == "document")
    console.print(
        f"  [green]✓[/green] Build {result.generation}: "
        f"{result.graph.document_count} documents, {result.graph.external_count} domains, "
        f"{len(result.edges)} edges ({result.loaded_documents}/{result.total_documents} loaded"
        f"{', ' + str(broken) + ' broken links' if broken else ''})"
    )


async def _watch(root: Path, options: BuildOptions, interval: Optional[float]) -> None:
    settings = load_graph_settings()
    if interval is not None:
        settings = dataclasses.replace(settings, debounce_seconds=interval)

    service = WatchdogWatchService()
    session = GraphSession(root, settings=settings, watch_service=service)
    session.on_files_changed(lambda path: console.print(f"[dim]  changed: {path}[/dim]"))
    session.on_result(_report)
    try:
        try:
            await session.request_build(options=options)
        except DocGraphError as exc:
            console.print(f"  [red]✗[/red] {exc}")
        session.on_error(lambda exc: console.print(f"  [red]✗[/red] Rebuild failed: {exc}"))
        await asyncio.Event().wait()
    finally:
        await session.close()
        service.stop()


def watch(
    path: Path = typer.Argument(Path("."), exists=True, file_okay=False, help="Directory to watch for changes."),
    interval: Optional[float] = typer.Option(None, "--interval", "-i", min=0, help="Debounce interval in seconds."),
    max_nodes: Optional[int] = typer.Option(None, "--max-nodes", "-n", min=1, help="Maximum documents to load."),
    external: Optional[bool] = typer.Option(None, "--external/--no-external", help="Include external link nodes."),
):
    """👀 Watch mode: rebuild the graph whenever markdown files change.

    Example:
      dg watch ./docs
      dg watch ./notes --interval 1
    """
    settings = load_graph_settings()
    options = BuildOptions(
        include_external_links=settings.show_external_links if external is None else external,
        max_nodes=settings.max_nodes if max_nodes is None else max_nodes,
    )
    watch_path = path.resolve()

    console.print(f"\n[bold green]👀 Watching[/bold green] [cyan]{watch_path}[/cyan] for changes...")
    console.print(f"[dim]  Debounce:  {interval if interval is not None else settings.debounce_seconds}s")
    console.print("  Press Ctrl+C to stop[/dim]\n")

    try:
        asyncio.run(_watch(watch_path, options, interval))
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopped watching.[/yellow]")
