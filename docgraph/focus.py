"""Ego-network focus filtering and view-side node selection."""

from __future__ import annotations

import dataclasses
import logging
from collections import deque
from typing import Dict, List, Sequence, Set

from .assembler import document_id
from .models import Edge, FocusResult, GraphNode

logger = logging.getLogger(__name__)

__all__ = ["document_id", "filter_by_depth", "filter_by_type", "search_nodes"]


def filter_by_depth(
    nodes: Sequence[GraphNode],
    edges: Sequence[Edge],
    focus_id: str,
    depth: int,
) -> FocusResult:
    """Keep the nodes within *depth* hops of *focus_id*.

    BFS runs over the undirected adjacency of *edges*. Surviving nodes are
    returned as annotated copies (``depth``, ``is_focused``) and edges are
    kept only when both endpoints survive.

    ``depth <= 0`` and an unknown *focus_id* both return the input
    unchanged, so a stale focus never blanks the view.
    """
    if depth <= 0:
        return FocusResult(nodes=list(nodes), edges=list(edges))
    if not any(node.id == focus_id for node in nodes):
        logger.debug("Focus node %s not in graph; showing all nodes", focus_id)
        return FocusResult(nodes=list(nodes), edges=list(edges))

    adjacency: Dict[str, Set[str]] = {}
    for edge in edges:
        adjacency.setdefault(edge.source, set()).add(edge.target)
        adjacency.setdefault(edge.target, set()).add(edge.source)

    visited: Dict[str, int] = {focus_id: 0}
    queue = deque([focus_id])
    while queue:
        current = queue.popleft()
        level = visited[current]
        if level >= depth:
            continue
        for neighbor in adjacency.get(current, ()):
            if neighbor not in visited:
                visited[neighbor] = level + 1
                queue.append(neighbor)

    kept = [
        dataclasses.replace(node, depth=visited[node.id], is_focused=node.id == focus_id)
        for node in nodes
        if node.id in visited
    ]
    kept_ids = {node.id for node in kept}
    kept_edges = [edge for edge in edges if edge.source in kept_ids and edge.target in kept_ids]
    depths = {node_id: d for node_id, d in visited.items() if node_id in kept_ids}
    return FocusResult(nodes=kept, edges=kept_edges, depths=depths, focus_id=focus_id)


def filter_by_type(
    nodes: Sequence[GraphNode],
    edges: Sequence[Edge],
    show_external: bool,
) -> FocusResult:
    """Hide external nodes (and their edges) unless *show_external*."""
    if show_external:
        return FocusResult(nodes=list(nodes), edges=list(edges))
    kept = [node for node in nodes if node.node_type == "document"]
    kept_ids = {node.id for node in kept}
    return FocusResult(
        nodes=kept,
        edges=[edge for edge in edges if edge.source in kept_ids and edge.target in kept_ids],
    )


def search_nodes(nodes: Sequence[GraphNode], query: str) -> List[str]:
    """Ids of nodes whose title/path (or domain) contains *query*, case-insensitively."""
    needle = query.strip().lower()
    if not needle:
        return []
    matches = []
    for node in nodes:
        if node.node_type == "document":
            haystacks = (node.title, node.file_path)
        else:
            haystacks = (node.domain,)
        if any(needle in value.lower() for value in haystacks):
            matches.append(node.id)
    return matches
