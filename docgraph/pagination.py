"""Pagination of the document graph ("load more")."""

from __future__ import annotations

from .config import DEFAULT_MAX_NODES, LOAD_MORE_INCREMENT
from .models import BuildResult, PaginationState


class PaginationController:
    """Track total vs loaded documents and grow the node cap.

    Loading more never appends: the caller rebuilds the whole graph at the
    cap returned by :meth:`request_load_more`, so a newly admitted document
    can resolve links from documents that were already loaded.
    """

    def __init__(self, default_max_nodes: int = DEFAULT_MAX_NODES, increment: int = LOAD_MORE_INCREMENT) -> None:
        if default_max_nodes < 1 or increment < 1:
            raise ValueError("default_max_nodes and increment must be positive")
        self.default_max_nodes = default_max_nodes
        self.increment = increment
        self.state = PaginationState(max_nodes=default_max_nodes)

    @property
    def total_documents(self) -> int:
        return self.state.total_documents

    @property
    def loaded_documents(self) -> int:
        return self.state.loaded_documents

    @property
    def max_nodes(self) -> int:
        return self.state.max_nodes

    @property
    def has_more(self) -> bool:
        return self.state.has_more

    def request_load_more(self) -> int:
        """Raise the cap by one increment and return it."""
        self.state.max_nodes += self.increment
        return self.state.max_nodes

    def set_max_nodes(self, max_nodes: int) -> None:
        self.state.max_nodes = max(1, max_nodes)

    def apply(self, result: BuildResult) -> None:
        self.state.total_documents = result.total_documents
        self.state.loaded_documents = result.loaded_documents

    def reset(self) -> None:
        self.state = PaginationState(max_nodes=self.default_max_nodes)
