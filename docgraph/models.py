"""Core data models shared by scanning, assembly, focus filtering and export."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple, Union

Position = Tuple[float, float]


@dataclass(frozen=True)
class DocumentNode:
    id: str
    title: str
    file_path: str
    description: str = ""
    line_count: int = 0
    word_count: int = 0
    size: int = 0
    broken_links: Tuple[str, ...] = ()
    is_large_file: bool = False
    neighbors: FrozenSet[str] = frozenset()
    connection_count: int = 0
    depth: Optional[int] = None
    is_focused: bool = False
    position: Optional[Position] = None

    node_type = "document"

    @property
    def label(self) -> str:
        return self.title

    @property
    def size_label(self) -> str:
        return format_size(self.size)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.id,
            "type": self.node_type,
            "title": self.title,
            "filePath": self.file_path,
            "description": self.description,
            "lineCount": self.line_count,
            "wordCount": self.word_count,
            "size": self.size,
            "sizeLabel": self.size_label,
            "brokenLinks": list(self.broken_links),
            "isLargeFile": self.is_large_file,
        }
        return _with_view_fields(self, payload)


@dataclass(frozen=True)
class ExternalNode:
    id: str
    domain: str
    link_count: int = 0
    urls: Tuple[str, ...] = ()
    neighbors: FrozenSet[str] = frozenset()
    connection_count: int = 0
    depth: Optional[int] = None
    is_focused: bool = False
    position: Optional[Position] = None

    node_type = "external"

    @property
    def label(self) -> str:
        return self.domain

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.id,
            "type": self.node_type,
            "domain": self.domain,
            "linkCount": self.link_count,
            "urls": list(self.urls),
        }
        return _with_view_fields(self, payload)


GraphNode = Union[DocumentNode, ExternalNode]


@dataclass(frozen=True)
class Edge:
    source: str
    target: str
    type: str = "internal"

    def to_dict(self) -> Dict[str, str]:
        return {"source": self.source, "target": self.target, "type": self.type}


@dataclass(frozen=True)
class Graph:
    """Immutable node/edge set produced by one build."""

    nodes: Tuple[GraphNode, ...] = ()
    edges: Tuple[Edge, ...] = ()

    def node_map(self) -> Dict[str, GraphNode]:
        return {node.id: node for node in self.nodes}

    def get(self, node_id: str) -> Optional[GraphNode]:
        return self.node_map().get(node_id)

    @property
    def document_count(self) -> int:
        return sum(1 for node in self.nodes if node.node_type == "document")

    @property
    def external_count(self) -> int:
        return sum(1 for node in self.nodes if node.node_type == "external")

    def to_dict(self) -> Dict[str, List[Dict[str, Any]]]:
        return {
            "nodes": [node.to_dict() for node in self.nodes],
            "edges": [edge.to_dict() for edge in self.edges],
        }


@dataclass(frozen=True)
class BuildOptions:
    include_external_links: bool = True
    max_nodes: int = 50


@dataclass(frozen=True)
class BuildResult:
    graph: Graph
    total_documents: int
    loaded_documents: int
    generation: int = 0

    @property
    def has_more(self) -> bool:
        return self.total_documents > self.loaded_documents

    @property
    def nodes(self) -> Tuple[GraphNode, ...]:
        return self.graph.nodes

    @property
    def edges(self) -> Tuple[Edge, ...]:
        return self.graph.edges

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = self.graph.to_dict()
        payload.update(
            {
                "totalDocuments": self.total_documents,
                "loadedDocuments": self.loaded_documents,
                "hasMore": self.has_more,
            }
        )
        return payload


@dataclass(frozen=True)
class ProgressData:
    phase: str
    current: int
    total: int
    current_file: Optional[str] = None


@dataclass
class PaginationState:
    total_documents: int = 0
    loaded_documents: int = 0
    max_nodes: int = 50

    @property
    def has_more(self) -> bool:
        return self.total_documents > self.loaded_documents


@dataclass
class FocusResult:
    nodes: List[GraphNode]
    edges: List[Edge]
    depths: Dict[str, int] = field(default_factory=dict)
    focus_id: Optional[str] = None

    @property
    def is_filtered(self) -> bool:
        return self.focus_id is not None


def format_size(num_bytes: int) -> str:
    """Human readable byte size, e.g. ``1.2 KB``."""
    if num_bytes < 1024:
        return f"{num_bytes} B"
    value = float(num_bytes)
    for unit in ("KB", "MB", "GB"):
        value /= 1024
        if value < 1024 or unit == "GB":
            break
    return f"{value:.1f} {unit}"


def edge_endpoints_present(nodes: Iterable[GraphNode], edges: Iterable[Edge]) -> bool:
    ids = {node.id for node in nodes}
    return all(edge.source in ids and edge.target in ids for edge in edges)


def _with_view_fields(node: GraphNode, payload: Dict[str, Any]) -> Dict[str, Any]:
    payload["neighbors"] = sorted(node.neighbors)
    payload["connectionCount"] = node.connection_count
    if node.depth is not None:
        payload["depth"] = node.depth
        payload["isFocused"] = node.is_focused
    if node.position is not None:
        payload["x"], payload["y"] = node.position
    return payload
