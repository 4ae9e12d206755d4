"""Graph-view session: the surface handed to a rendering/UI collaborator.

A :class:`GraphSession` owns everything that lives as long as one graph
view: the rebuild scheduler, pagination, the watch subscription and the
layout position cache. Closing the session (or pointing it at another
root) cancels pending rebuilds, releases the watch and clears the cache.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from .assembler import GraphAssembler, document_id
from .config_manager import GraphSettings
from .errors import SessionClosedError
from .focus import filter_by_depth
from .models import BuildOptions, BuildResult, Edge, FocusResult, GraphNode, Position, ProgressData
from .pagination import PaginationController
from .scanner import DocumentScanner
from .scheduler import BuildPhase, RebuildScheduler
from .watcher import WatchService, WatchSubscription

logger = logging.getLogger(__name__)


class PositionCache:
    """Settled layout positions keyed by node id, owned by one session."""

    def __init__(self) -> None:
        self._positions: Dict[str, Position] = {}

    def __len__(self) -> int:
        return len(self._positions)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._positions

    def get(self, node_id: str) -> Optional[Position]:
        return self._positions.get(node_id)

    def update(self, positions: Mapping[str, Position]) -> None:
        for node_id, (x, y) in positions.items():
            self._positions[node_id] = (float(x), float(y))

    def prune(self, node_ids: Iterable[str]) -> None:
        """Forget positions of nodes that no longer exist."""
        keep = set(node_ids)
        self._positions = {k: v for k, v in self._positions.items() if k in keep}

    def snapshot(self) -> Dict[str, Position]:
        return dict(self._positions)

    def clear(self) -> None:
        self._positions.clear()


class GraphSession:
    """Build, paginate, focus and auto-rebuild the graph of one root."""

    def __init__(
        self,
        root_path: str | Path,
        settings: Optional[GraphSettings] = None,
        scanner: Optional[DocumentScanner] = None,
        watch_service: Optional[WatchService] = None,
    ) -> None:
        settings = settings or GraphSettings()
        self.settings = settings
        self.root_path = Path(root_path).expanduser()
        self.include_external_links = settings.show_external_links
        self.scanner = scanner or DocumentScanner()
        self.assembler = GraphAssembler()
        self.pagination = PaginationController(settings.max_nodes, settings.load_more_increment)
        self.positions = PositionCache()
        self.result: Optional[BuildResult] = None
        self.closed = False

        self._watch_service = watch_service
        self._subscription: Optional[WatchSubscription] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._progress_callbacks: List[Callable[[ProgressData], None]] = []
        self._files_changed_callbacks: List[Callable[[str], None]] = []
        self._result_callbacks: List[Callable[[BuildResult], None]] = []
        self._error_callbacks: List[Callable[[BaseException], None]] = []

        self.scheduler: RebuildScheduler[BuildResult] = RebuildScheduler(
            self._build,
            debounce_seconds=settings.debounce_seconds,
            on_result=self._apply,
            on_error=self._notify_error,
        )

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def phase(self) -> BuildPhase:
        return self.scheduler.phase

    @property
    def error(self) -> Optional[BaseException]:
        return self.scheduler.error

    @property
    def total_documents(self) -> int:
        return self.pagination.total_documents

    @property
    def loaded_documents(self) -> int:
        return self.pagination.loaded_documents

    @property
    def has_more(self) -> bool:
        return self.pagination.has_more

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def on_progress(self, callback: Callable[[ProgressData], None]) -> Callable[[], None]:
        return _subscribe(self._progress_callbacks, callback)

    def on_files_changed(self, callback: Callable[[str], None]) -> Callable[[], None]:
        """Notified for each relevant file change (the session rebuilds on its own)."""
        return _subscribe(self._files_changed_callbacks, callback)

    def on_result(self, callback: Callable[[BuildResult], None]) -> Callable[[], None]:
        return _subscribe(self._result_callbacks, callback)

    def on_error(self, callback: Callable[[BaseException], None]) -> Callable[[], None]:
        """Notified when the latest build fails (the previous result is kept)."""
        return _subscribe(self._error_callbacks, callback)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def request_build(
        self,
        root_path: Optional[str | Path] = None,
        options: Optional[BuildOptions] = None,
    ) -> BuildResult:
        """Build (or rebuild) the graph and return the applied result.

        A different *root_path* resets pagination and the position cache and
        moves the watch. Changed *options* supersede a build in flight.
        Raises :class:`~docgraph.errors.ScanError` if the root is unreadable.
        """
        self._ensure_open()
        self._loop = asyncio.get_running_loop()
        supersede = False

        if root_path is not None and Path(root_path).expanduser() != self.root_path:
            self._change_root(Path(root_path).expanduser())
            supersede = True

        if options is not None:
            if (
                options.include_external_links != self.include_external_links
                or options.max_nodes != self.pagination.max_nodes
            ):
                supersede = True
            self.include_external_links = options.include_external_links
            self.pagination.set_max_nodes(options.max_nodes)

        return await self._trigger(supersede)

    async def request_load_more(self) -> BuildResult:
        """Rebuild the whole graph at the next cap, superseding a build in flight."""
        self._ensure_open()
        if self.result is None:
            return await self.request_build()
        if not self.pagination.has_more:
            return self.result
        self.pagination.request_load_more()
        logger.debug("Loading more documents, cap is now %d", self.pagination.max_nodes)
        # the cap changed, so a build in flight is outdated
        return await self._trigger(supersede=True)

    async def refresh(self) -> BuildResult:
        return await self.request_build()

    async def set_include_external_links(self, include: bool) -> BuildResult:
        return await self.request_build(
            options=BuildOptions(include_external_links=include, max_nodes=self.pagination.max_nodes)
        )

    @staticmethod
    def filter_by_depth(
        nodes: Sequence[GraphNode],
        edges: Sequence[Edge],
        focus_id: str,
        depth: int,
    ) -> FocusResult:
        return filter_by_depth(nodes, edges, focus_id, depth)

    def focus(self, focus: str, depth: Optional[int] = None) -> FocusResult:
        """Ego-network of the current graph around a node id or a relative file path."""
        if self.result is None:
            return FocusResult(nodes=[], edges=[])
        depth = self.settings.neighbor_depth if depth is None else depth
        graph = self.result.graph
        focus_id = focus if graph.get(focus) is not None else document_id(focus)
        return filter_by_depth(graph.nodes, graph.edges, focus_id, depth)

    def update_positions(self, positions: Mapping[str, Position]) -> None:
        """Remember settled layout positions; they are re-attached on rebuild."""
        self.positions.update(positions)

    async def close(self) -> None:
        """Tear down: cancel pending rebuilds, release the watch, clear caches."""
        if self.closed:
            return
        self.closed = True
        await self.scheduler.close()
        self._release_watch()
        self.positions.clear()
        self._progress_callbacks.clear()
        self._files_changed_callbacks.clear()
        self._result_callbacks.clear()
        self._error_callbacks.clear()

    async def __aenter__(self) -> "GraphSession":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _ensure_open(self) -> None:
        if self.closed:
            raise SessionClosedError("graph session is closed")

    async def _trigger(self, supersede: bool) -> BuildResult:
        self._loop = asyncio.get_running_loop()
        self._ensure_watch()
        return await self.scheduler.trigger(supersede=supersede)

    def _change_root(self, root: Path) -> None:
        logger.debug("Root changed from %s to %s", self.root_path, root)
        self.scheduler.coalescer.cancel()
        self._release_watch()
        self.root_path = root
        self.pagination.reset()
        self.positions.clear()
        self.result = None

    def _ensure_watch(self) -> None:
        if self._watch_service is None or self._subscription is not None:
            return
        self._subscription = self._watch_service.watch(self.root_path)
        self._subscription.on_change(self._on_watch_event)

    def _release_watch(self) -> None:
        subscription, self._subscription = self._subscription, None
        if subscription is not None and self._watch_service is not None:
            self._watch_service.unwatch(subscription.root, subscription)

    def _on_watch_event(self, path: str) -> None:
        # runs on the watcher thread
        loop = self._loop
        if loop is None or self.closed:
            return
        try:
            loop.call_soon_threadsafe(self._handle_file_change, path)
        except RuntimeError:
            logger.debug("Event loop closed; dropping change for %s", path)

    def _handle_file_change(self, path: str) -> None:
        if self.closed:
            return
        _notify(self._files_changed_callbacks, path)
        self.scheduler.notify_change()

    async def _build(self, generation: int, set_phase: Callable[[BuildPhase], None]) -> BuildResult:
        root = self.root_path
        include_external = self.include_external_links
        options = BuildOptions(include_external_links=include_external, max_nodes=self.pagination.max_nodes)

        def progress(data: ProgressData) -> None:
            if data.phase == "parsing" and self.scheduler.phase is BuildPhase.SCANNING:
                set_phase(BuildPhase.PARSING)
            if self.closed or not self.scheduler.generations.is_latest(generation):
                return
            _notify(self._progress_callbacks, data)

        scan = await self.scanner.scan(root, options, progress)
        set_phase(BuildPhase.ASSEMBLING)
        graph = self.assembler.assemble(
            scan.documents,
            include_external_links=include_external,
            positions=self.positions.snapshot(),
        )
        return BuildResult(
            graph=graph,
            total_documents=scan.total_documents,
            loaded_documents=scan.loaded_documents,
            generation=generation,
        )

    def _apply(self, result: BuildResult) -> None:
        self.result = result
        self.pagination.apply(result)
        self.positions.prune(node.id for node in result.graph.nodes)
        logger.info(
            "Applied build %d for %s: %d nodes, %d edges",
            result.generation, self.root_path, len(result.graph.nodes), len(result.graph.edges),
        )
        _notify(self._result_callbacks, result)

    def _notify_error(self, exc: BaseException) -> None:
        _notify(self._error_callbacks, exc)


def _subscribe(callbacks: List[Callable], callback: Callable) -> Callable[[], None]:
    callbacks.append(callback)

    def unsubscribe() -> None:
        if callback in callbacks:
            callbacks.remove(callback)

    return unsubscribe


def _notify(callbacks: List[Callable], value: object) -> None:
    for callback in list(callbacks):
        try:
            callback(value)
        except Exception:
            logger.exception("Subscriber %r failed", callback)
