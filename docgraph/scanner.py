"""Document scanner: enumerate, parse and link-resolve a markdown tree.

Enumeration is breadth-first over directories with a stable lexicographic
order on relative posix paths, so the same tree and the same ``max_nodes``
always select the same documents. All blocking I/O runs in worker threads
via :func:`asyncio.to_thread`; progress callbacks run on the event loop.
"""

from __future__ import annotations

import asyncio
import logging
import posixpath
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Callable, Dict, List, Optional, Set

from .config import (
    DEFAULT_MAX_NODES,
    LARGE_FILE_PARSE_LIMIT,
    LARGE_FILE_THRESHOLD,
    MARKDOWN_EXTENSIONS,
    SKIP_DIRS,
)
from .errors import ParseError, ScanError
from .files import FileService, LocalFileService
from .models import BuildOptions, ProgressData
from .parser import InternalLink, LinkParser, ParsedDocument

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressData], None]


@dataclass
class ScannedDocument:
    file_path: str
    parsed: ParsedDocument
    size: int
    is_large_file: bool = False
    internal_targets: List[str] = field(default_factory=list)
    broken_links: List[str] = field(default_factory=list)

    @property
    def external_links(self) -> List[str]:
        return self.parsed.external_links


@dataclass
class ScanResult:
    documents: List[ScannedDocument]
    total_documents: int
    loaded_documents: int

    @property
    def has_more(self) -> bool:
        return self.total_documents > self.loaded_documents


class DocumentScanner:
    """Scan a root directory into :class:`ScannedDocument` records."""

    def __init__(
        self,
        files: Optional[FileService] = None,
        parser: Optional[LinkParser] = None,
        large_file_threshold: int = LARGE_FILE_THRESHOLD,
        large_file_parse_limit: int = LARGE_FILE_PARSE_LIMIT,
    ) -> None:
        self.files = files or LocalFileService()
        self.parser = parser or LinkParser()
        self.large_file_threshold = large_file_threshold
        self.large_file_parse_limit = large_file_parse_limit

    async def scan(
        self,
        root_path: str | Path,
        options: Optional[BuildOptions] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> ScanResult:
        """Enumerate, parse and resolve up to ``options.max_nodes`` documents.

        Raises :class:`ScanError` if the root itself cannot be read; a file
        that fails to parse is logged and left out of the result.
        """
        options = options or BuildOptions(max_nodes=DEFAULT_MAX_NODES)
        root = Path(root_path).expanduser()
        emit = on_progress or (lambda _progress: None)

        await asyncio.to_thread(self.files.check_root, root)
        all_paths = await self.enumerate(root, emit)

        selected = all_paths[: max(options.max_nodes, 0)]
        documents: List[ScannedDocument] = []
        for index, rel_path in enumerate(selected, 1):
            emit(ProgressData("parsing", index, len(selected), rel_path))
            try:
                documents.append(await self._parse_one(root, rel_path))
            except ParseError as exc:
                logger.warning("Skipping document: %s", exc)

        resolver = _LinkResolver(all_paths, {doc.file_path for doc in documents})
        for doc in documents:
            resolver.resolve(doc)

        return ScanResult(
            documents=documents,
            total_documents=len(all_paths),
            loaded_documents=len(selected),
        )

    async def enumerate(self, root: Path, emit: ProgressCallback) -> List[str]:
        """Return every markdown path under *root*, sorted."""
        found: List[str] = []
        pending = [""]
        while pending:
            rel_dir = pending.pop(0)
            try:
                dirs, files = await asyncio.to_thread(self.files.list_dir, root, rel_dir)
            except OSError as exc:
                if not rel_dir:
                    raise ScanError(str(root), exc.strerror or str(exc)) from exc
                logger.warning("Cannot list '%s': %s", rel_dir, exc)
                continue

            for name in sorted(dirs):
                if name.startswith(".") or name in SKIP_DIRS:
                    continue
                pending.append(posixpath.join(rel_dir, name) if rel_dir else name)
            for name in files:
                if PurePosixPath(name).suffix.lower() in MARKDOWN_EXTENSIONS:
                    found.append(posixpath.join(rel_dir, name) if rel_dir else name)

            emit(ProgressData("scanning", len(found), len(found)))

        return sorted(found)

    async def _parse_one(self, root: Path, rel_path: str) -> ScannedDocument:
        try:
            size = await asyncio.to_thread(self.files.file_size, root, rel_path)
            is_large = size > self.large_file_threshold
            limit = self.large_file_parse_limit if is_large else None
            data = await asyncio.to_thread(self.files.read_bytes, root, rel_path, limit)
        except OSError as exc:
            raise ParseError(rel_path, exc.strerror or str(exc)) from exc

        try:
            # a truncated head may end mid-character
            text = data.decode("utf-8", errors="ignore" if is_large else "strict")
        except UnicodeDecodeError as exc:
            raise ParseError(rel_path, "not valid UTF-8") from exc

        return ScannedDocument(
            file_path=rel_path,
            parsed=self.parser.parse(text, rel_path),
            size=size,
            is_large_file=is_large,
        )


class _LinkResolver:
    """Resolve internal links against the enumerated and materialized sets.

    - target materialized: becomes an edge target
    - target enumerated but not materialized (beyond the cap): dropped
    - target absent: recorded as a broken link
    """

    def __init__(self, all_paths: List[str], materialized: Set[str]) -> None:
        self.all_paths = set(all_paths)
        self.materialized = materialized
        self.by_name: Dict[str, str] = {}
        for path in all_paths:
            self.by_name.setdefault(PurePosixPath(path).name.lower(), path)

    def resolve(self, doc: ScannedDocument) -> None:
        targets: List[str] = []
        broken: List[str] = []
        for link in doc.parsed.internal_links:
            path = self._locate(doc.file_path, link)
            if path is None:
                if link.raw not in broken:
                    broken.append(link.raw)
            elif path in self.materialized and path != doc.file_path and path not in targets:
                targets.append(path)
        doc.internal_targets = targets
        doc.broken_links = broken

    def _locate(self, source: str, link: InternalLink) -> Optional[str]:
        if link.root_relative:
            candidate = link.target
        else:
            candidate = posixpath.normpath(posixpath.join(posixpath.dirname(source), link.target))
        if candidate in self.all_paths:
            return candidate
        if link.wiki:
            return self.by_name.get(PurePosixPath(link.target).name.lower())
        return None
