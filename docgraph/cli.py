"""Typer-based CLI for the markdown document graph."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn
from rich.table import Table

from . import __version__
from .cli_watch import watch
from .config_manager import (
    SETTING_KEYS,
    GraphSettings,
    load_graph_settings,
    reset_graph_settings,
    update_graph_setting,
)
from .errors import DocGraphError
from .focus import search_nodes
from .graph_export import EXPORT_FORMATS, export_graph
from .models import BuildOptions, BuildResult, FocusResult, ProgressData
from .session import GraphSession

console = Console()

app = typer.Typer(
    help="🕸️  docgraph: graph the links between your markdown documents.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

config_app = typer.Typer(
    help="⚙️  Configuration: graph view defaults.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)
app.add_typer(config_app, name="config")
app.command("watch")(watch)


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        typer.echo(f"docgraph v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", "-V", help="Enable debug logging."),
):
    """docgraph: scan, paginate and focus graphs of interlinked markdown documents."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# ===================================================================
# Helpers
# ===================================================================

def _options(settings: GraphSettings, max_nodes: Optional[int], external: Optional[bool]) -> BuildOptions:
    return BuildOptions(
        include_external_links=settings.show_external_links if external is None else external,
        max_nodes=settings.max_nodes if max_nodes is None else max_nodes,
    )


async def _run_build(
    root: Path,
    settings: GraphSettings,
    options: BuildOptions,
    load_more: int = 0,
    show_progress: bool = True,
) -> BuildResult:
    async with GraphSession(root, settings=settings) as session:
        if not show_progress:
            result = await session.request_build(options=options)
        else:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                TaskProgressColumn(),
                console=console,
                transient=True,
            ) as progress:
                task = progress.add_task("[cyan]Scanning...", total=None)

                def on_progress(data: ProgressData) -> None:
                    if data.phase == "scanning":
                        progress.update(task, description=f"[cyan]Scanning... {data.current} found")
                    else:
                        progress.update(
                            task,
                            description=f"[cyan]Parsing {data.current_file}",
                            completed=data.current,
                            total=data.total,
                        )

                session.on_progress(on_progress)
                result = await session.request_build(options=options)
        for _ in range(load_more):
            if not result.has_more:
                break
            result = await session.request_load_more()
        return result


def _build_or_exit(
    root: Path,
    settings: GraphSettings,
    options: BuildOptions,
    load_more: int = 0,
    quiet: bool = False,
) -> BuildResult:
    try:
        return asyncio.run(_run_build(root, settings, options, load_more, show_progress=not quiet))
    except DocGraphError as exc:
        console.print(f"[red]✗[/red] {exc}")
        raise typer.Exit(1)


def _print_summary(result: BuildResult) -> None:
    graph = result.graph
    table = Table(title="Document Graph", show_header=True, show_lines=False)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Documents", str(graph.document_count))
    table.add_row("External domains", str(graph.external_count))
    table.add_row("Edges", str(len(graph.edges)))
    table.add_row("Loaded / total", f"{result.loaded_documents} / {result.total_documents}")
    table.add_row("More available", "yes" if result.has_more else "no")
    console.print(table)

    broken = [(n.file_path, link) for n in graph.nodes if n.node_type == "document" for link in n.broken_links]
    if broken:
        console.print(f"\n[yellow]⚠ {len(broken)} broken link(s):[/yellow]")
        for file_path, link in broken:
            console.print(f"  [dim]{file_path}[/dim] → {link}")


def _print_focus(focus: FocusResult) -> None:
    if not focus.is_filtered:
        console.print("[yellow]No focus applied; showing the full graph.[/yellow]")
        for node in focus.nodes:
            console.print(f"  • {node.label} [dim]({node.id}, {node.connection_count} links)[/dim]")
        console.print(f"\n{len(focus.nodes)} nodes, {len(focus.edges)} edges")
        return

    by_depth: dict = {}
    for node in focus.nodes:
        by_depth.setdefault(node.depth, []).append(node)
    for depth in sorted(by_depth):
        console.print(f"[bold]Depth {depth}[/bold]")
        for node in by_depth[depth]:
            marker = "[green]●[/green]" if node.is_focused else "•"
            console.print(f"  {marker} {node.label} [dim]({node.id}, {node.connection_count} links)[/dim]")
    console.print(f"\n{len(focus.nodes)} nodes, {len(focus.edges)} edges")


# ===================================================================
# Commands
# ===================================================================

@app.command("build")
def build(
    root: Path = typer.Argument(..., exists=True, file_okay=False, help="Directory of markdown documents."),
    max_nodes: Optional[int] = typer.Option(None, "--max-nodes", "-n", min=1, help="Maximum documents to load."),
    external: Optional[bool] = typer.Option(None, "--external/--no-external", help="Include external link nodes."),
    load_more: int = typer.Option(0, "--load-more", "-l", min=0, help="Extra 'load more' steps after the first build."),
    as_json: bool = typer.Option(False, "--json", help="Print the renderer payload as JSON."),
):
    """Scan ROOT and print a summary of its document graph."""
    settings = load_graph_settings()
    result = _build_or_exit(root, settings, _options(settings, max_nodes, external), load_more, quiet=as_json)
    if as_json:
        typer.echo(json.dumps(result.to_dict(), indent=2))
        return
    _print_summary(result)


@app.command("focus")
def focus(
    root: Path = typer.Argument(..., exists=True, file_okay=False, help="Directory of markdown documents."),
    target: str = typer.Argument(..., help="Node id or file path (relative to ROOT) to focus on."),
    depth: Optional[int] = typer.Option(None, "--depth", "-d", min=0, max=5, help="Neighbor depth (0 = all)."),
    max_nodes: Optional[int] = typer.Option(None, "--max-nodes", "-n", min=1),
    external: Optional[bool] = typer.Option(None, "--external/--no-external"),
):
    """Show the ego-network of TARGET within DEPTH hops."""
    settings = load_graph_settings()
    options = _options(settings, max_nodes, external)

    async def _focus() -> FocusResult:
        async with GraphSession(root, settings=settings) as session:
            await session.request_build(options=options)
            return session.focus(target, depth)

    try:
        result = asyncio.run(_focus())
    except DocGraphError as exc:
        console.print(f"[red]✗[/red] {exc}")
        raise typer.Exit(1)
    _print_focus(result)


@app.command("search")
def search(
    root: Path = typer.Argument(..., exists=True, file_okay=False),
    query: str = typer.Argument(..., help="Case-insensitive text matched against titles, paths and domains."),
    max_nodes: Optional[int] = typer.Option(None, "--max-nodes", "-n", min=1),
):
    """List nodes matching QUERY."""
    settings = load_graph_settings()
    result = _build_or_exit(root, settings, _options(settings, max_nodes, True), quiet=True)
    nodes = result.graph.node_map()
    matches = search_nodes(result.nodes, query)
    if not matches:
        console.print(f"[yellow]No nodes match '{query}'.[/yellow]")
        return
    for node_id in matches:
        console.print(f"  • {nodes[node_id].label} [dim]({node_id})[/dim]")
    console.print(f"\n{len(matches)} of {len(nodes)} nodes match")


@app.command("export")
def export(
    root: Path = typer.Argument(..., exists=True, file_okay=False),
    output: Path = typer.Option(..., "--output", "-o", help="Output file."),
    fmt: str = typer.Option("json", "--format", "-f", help=f"One of: {', '.join(EXPORT_FORMATS)}."),
    focus_on: Optional[str] = typer.Option(None, "--focus", help="Node id or file path to focus on."),
    depth: Optional[int] = typer.Option(None, "--depth", "-d", min=0, max=5),
    max_nodes: Optional[int] = typer.Option(None, "--max-nodes", "-n", min=1),
    external: Optional[bool] = typer.Option(None, "--external/--no-external"),
):
    """Export the graph (optionally focused) as JSON, DOT or HTML."""
    if fmt not in EXPORT_FORMATS:
        raise typer.BadParameter(f"format must be one of: {', '.join(EXPORT_FORMATS)}")
    settings = load_graph_settings()
    options = _options(settings, max_nodes, external)

    async def _export():
        async with GraphSession(root, settings=settings) as session:
            result = await session.request_build(options=options)
            focused = session.focus(focus_on, depth) if focus_on else None
            return result, focused

    try:
        result, focused = asyncio.run(_export())
    except DocGraphError as exc:
        console.print(f"[red]✗[/red] {exc}")
        raise typer.Exit(1)

    if focused is not None:
        export_graph(fmt, result, output, focused.nodes, focused.edges)
    else:
        export_graph(fmt, result, output)
    console.print(f"[green]✓[/green] Exported {fmt.upper()} to {output}")


# ===================================================================
# Configuration
# ===================================================================

@config_app.command("show")
def config_show():
    """Show current graph settings."""
    settings = load_graph_settings()
    table = Table(show_header=True)
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    for key in SETTING_KEYS:
        table.add_row(key, str(getattr(settings, key)))
    console.print(table)


@config_app.command("set")
def config_set(
    key: str = typer.Argument(..., help=f"One of: {', '.join(SETTING_KEYS)}"),
    value: str = typer.Argument(...),
):
    """Set one graph setting."""
    try:
        update_graph_setting(key, value)
    except (KeyError, ValueError) as exc:
        console.print(f"[red]✗[/red] {exc.args[0] if exc.args else exc}")
        raise typer.Exit(1)
    console.print(f"[green]✓[/green] {key} = {value}")


@config_app.command("reset")
def config_reset():
    """Restore default graph settings."""
    reset_graph_settings()
    console.print("[green]✓[/green] Graph settings reset to defaults")
