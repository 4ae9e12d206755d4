"""Graph export helpers for JSON, DOT and simple standalone HTML outputs."""

from __future__ import annotations

import html
import json
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

from .models import BuildResult, Edge, GraphNode

EXPORT_FORMATS = ("json", "dot", "html")


def graph_payload(nodes: Sequence[GraphNode], edges: Sequence[Edge]) -> Dict[str, Any]:
    return {
        "nodes": [node.to_dict() for node in nodes],
        "edges": [edge.to_dict() for edge in edges],
    }


def export_json(
    result: BuildResult, nodes: Sequence[GraphNode], edges: Sequence[Edge], output_file: Path
) -> None:
    payload = result.to_dict()
    payload.update(graph_payload(nodes, edges))
    output_file.write_text(json.dumps(payload, indent=2), encoding="utf-8")


def render_dot(nodes: Sequence[GraphNode], edges: Sequence[Edge]) -> str:
    lines = ["digraph DocumentGraph {"]
    lines.append("  rankdir=LR;")
    lines.append('  node [shape=box, style="rounded"];')

    for node in nodes:
        if node.node_type == "document":
            attrs = f'label="{_esc(node.title)}\\n{_esc(node.file_path)}"'
            if node.broken_links:
                attrs += ", color=red"
        else:
            attrs = f'label="{_esc(node.domain)}", shape=ellipse, style=dashed'
        if node.is_focused:
            attrs += ", penwidth=2"
        lines.append(f'  "{_esc(node.id)}" [{attrs}];')

    for edge in edges:
        style = ", style=dashed" if edge.type == "external" else ""
        lines.append(f'  "{_esc(edge.source)}" -> "{_esc(edge.target)}" [label="{edge.type}"{style}];')

    lines.append("}")
    return "\n".join(lines)


def export_dot(nodes: Sequence[GraphNode], edges: Sequence[Edge], output_file: Path) -> None:
    output_file.write_text(render_dot(nodes, edges), encoding="utf-8")


def export_html(nodes: Sequence[GraphNode], edges: Sequence[Edge], output_file: Path) -> None:
    """Export a self-contained HTML page listing nodes and edges."""
    payload = graph_payload(nodes, edges)
    output_file.write_text(_basic_html_export(payload), encoding="utf-8")


def export_graph(
    fmt: str,
    result: BuildResult,
    output_file: Path,
    nodes: Optional[Sequence[GraphNode]] = None,
    edges: Optional[Sequence[Edge]] = None,
) -> None:
    """Write *result* (or the given focused subset) in format *fmt*."""
    nodes = list(result.nodes) if nodes is None else nodes
    edges = list(result.edges) if edges is None else edges
    if fmt == "json":
        export_json(result, nodes, edges, output_file)
    elif fmt == "dot":
        export_dot(nodes, edges, output_file)
    elif fmt == "html":
        export_html(nodes, edges, output_file)
    else:
        raise ValueError(f"Unknown export format '{fmt}'. Choose from: {', '.join(EXPORT_FORMATS)}")


def _basic_html_export(graph: dict) -> str:
    # the payload is embedded in a <script> block; keep "</" from closing it
    data = json.dumps(graph).replace("</", "<\\/")
    return f"""<!doctype html>
<html>
<head>
  <meta charset="utf-8" />
  <title>{html.escape("Document Graph")}</title>
  <style>
    body {{ font-family: ui-monospace, SFMono-Regular, Menlo, monospace; margin: 20px; }}
    #container {{ display: grid; grid-template-columns: 1fr 1fr; gap: 18px; }}
    .panel {{ border: 1px solid #ddd; border-radius: 8px; padding: 10px; }}
    ul {{ list-style: none; padding: 0; margin: 0; }}
    li {{ margin: 4px 0; }}
    .broken {{ color: #c0392b; }}
  </style>
</head>
<body>
  <h1>Document Graph</h1>
  <div id="container">
    <div class="panel">
      <h2>Nodes</h2>
      <ul id="nodes"></ul>
    </div>
    <div class="panel">
      <h2>Edges</h2>
      <ul id="edges"></ul>
    </div>
  </div>
  <script>
    const graph = {data};
    const nodesEl = document.getElementById('nodes');
    const edgesEl = document.getElementById('edges');
    graph.nodes.forEach(n => {{
      const li = document.createElement('li');
      const label = n.type === 'document' ? `${{n.title}} (${{n.filePath}})` : n.domain;
      li.textContent = `${{label}} [${{n.connectionCount}}]`;
      if (n.brokenLinks && n.brokenLinks.length) li.className = 'broken';
      nodesEl.appendChild(li);
    }});
    graph.edges.forEach(e => {{
      const li = document.createElement('li');
      li.textContent = `${{e.source}} --${{e.type}}--> ${{e.target}}`;
      edgesEl.appendChild(li);
    }});
  </script>
</body>
</html>
"""


def _esc(text: str) -> str:
    return text.replace("\\", "\\\\").replace('"', '\\"')
