"""Graph assembly: scanned documents -> immutable node/edge graph."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Set, Tuple

from .models import (
    BuildOptions,
    BuildResult,
    DocumentNode,
    Edge,
    ExternalNode,
    Graph,
    GraphNode,
    Position,
    ProgressData,
)
from .parser import external_domain
from .scanner import DocumentScanner, ScannedDocument

logger = logging.getLogger(__name__)

DOC_PREFIX = "doc-"
EXT_PREFIX = "ext-"


def document_id(file_path: str) -> str:
    return f"{DOC_PREFIX}{file_path}"


def external_id(domain: str) -> str:
    return f"{EXT_PREFIX}{domain}"


class GraphAssembler:
    """Turn :class:`ScannedDocument` records into a :class:`Graph`.

    External links are collapsed into one :class:`ExternalNode` per domain.
    Degree and neighbor sets are computed over an undirected view of the
    link edges, while each edge keeps its own ``type``.
    """

    def assemble(
        self,
        documents: Sequence[ScannedDocument],
        include_external_links: bool = True,
        positions: Optional[Mapping[str, Position]] = None,
    ) -> Graph:
        positions = positions or {}
        edges: List[Edge] = []
        seen_edges: Set[Tuple[str, str, str]] = set()

        def add_edge(source: str, target: str, edge_type: str) -> None:
            key = (source, target, edge_type)
            if source == target or key in seen_edges:
                return
            seen_edges.add(key)
            edges.append(Edge(source, target, edge_type))

        doc_ids = {document_id(doc.file_path) for doc in documents}
        domains: Dict[str, List[str]] = {}
        domain_counts: Dict[str, int] = {}

        for doc in documents:
            source = document_id(doc.file_path)
            for target_path in doc.internal_targets:
                target = document_id(target_path)
                if target in doc_ids:
                    add_edge(source, target, "internal")
            if not include_external_links:
                continue
            for url in doc.external_links:
                domain = external_domain(url)
                if not domain:
                    continue
                domain_counts[domain] = domain_counts.get(domain, 0) + 1
                urls = domains.setdefault(domain, [])
                if url not in urls:
                    urls.append(url)
                add_edge(source, external_id(domain), "external")

        neighbors = _neighbor_map(edges)

        nodes: List[GraphNode] = []
        for doc in documents:
            node_id = document_id(doc.file_path)
            adjacent = neighbors.get(node_id, frozenset())
            nodes.append(
                DocumentNode(
                    id=node_id,
                    title=doc.parsed.title,
                    file_path=doc.file_path,
                    description=doc.parsed.description,
                    line_count=doc.parsed.line_count,
                    word_count=doc.parsed.word_count,
                    size=doc.size,
                    broken_links=tuple(doc.broken_links),
                    is_large_file=doc.is_large_file,
                    neighbors=adjacent,
                    connection_count=len(adjacent),
                    position=positions.get(node_id),
                )
            )
        for domain in sorted(domains):
            node_id = external_id(domain)
            adjacent = neighbors.get(node_id, frozenset())
            nodes.append(
                ExternalNode(
                    id=node_id,
                    domain=domain,
                    link_count=domain_counts[domain],
                    urls=tuple(domains[domain]),
                    neighbors=adjacent,
                    connection_count=len(adjacent),
                    position=positions.get(node_id),
                )
            )

        return Graph(nodes=tuple(nodes), edges=tuple(edges))


def _neighbor_map(edges: Sequence[Edge]) -> Dict[str, frozenset]:
    adjacency: Dict[str, Set[str]] = {}
    for edge in edges:
        adjacency.setdefault(edge.source, set()).add(edge.target)
        adjacency.setdefault(edge.target, set()).add(edge.source)
    return {node_id: frozenset(ids) for node_id, ids in adjacency.items()}


async def build_graph(
    root_path: str | Path,
    options: Optional[BuildOptions] = None,
    on_progress: Optional[Callable[[ProgressData], None]] = None,
    scanner: Optional[DocumentScanner] = None,
    positions: Optional[Mapping[str, Position]] = None,
) -> BuildResult:
    """Scan *root_path* and assemble the graph in one call."""
    options = options or BuildOptions()
    scanner = scanner or DocumentScanner()
    scan = await scanner.scan(root_path, options, on_progress)
    graph = GraphAssembler().assemble(
        scan.documents,
        include_external_links=options.include_external_links,
        positions=positions,
    )
    logger.info(
        "Built graph for %s: %d nodes, %d edges (%d/%d documents)",
        root_path, len(graph.nodes), len(graph.edges),
        scan.loaded_documents, scan.total_documents,
    )
    return BuildResult(
        graph=graph,
        total_documents=scan.total_documents,
        loaded_documents=scan.loaded_documents,
    )
