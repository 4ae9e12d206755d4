"""File enumeration/read capability consumed by the scanner.

The scanner never touches the filesystem directly; it goes through a
:class:`FileService` so tests (and remote roots) can supply their own.
Methods are blocking and are run in worker threads by the scanner.
"""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional, Tuple

from .errors import ScanError


class FileService(ABC):
    """Directory listing and file content under a root path."""

    @abstractmethod
    def check_root(self, root: Path) -> None:
        """Raise :class:`ScanError` when *root* cannot be scanned."""
        ...

    @abstractmethod
    def list_dir(self, root: Path, rel_dir: str) -> Tuple[List[str], List[str]]:
        """Return ``(subdirectory names, file names)`` of *rel_dir* under *root*."""
        ...

    @abstractmethod
    def file_size(self, root: Path, rel_path: str) -> int:
        ...

    @abstractmethod
    def read_bytes(self, root: Path, rel_path: str, limit: Optional[int] = None) -> bytes:
        """Read at most *limit* bytes (all when ``None``)."""
        ...


class LocalFileService(FileService):
    """:class:`FileService` backed by the local filesystem."""

    def check_root(self, root: Path) -> None:
        if not root.exists():
            raise ScanError(str(root), "directory does not exist")
        if not root.is_dir():
            raise ScanError(str(root), "not a directory")
        try:
            with os.scandir(root):
                pass
        except OSError as exc:
            raise ScanError(str(root), exc.strerror or str(exc)) from exc

    def list_dir(self, root: Path, rel_dir: str) -> Tuple[List[str], List[str]]:
        dirs: List[str] = []
        files: List[str] = []
        with os.scandir(root / rel_dir if rel_dir else root) as entries:
            for entry in entries:
                try:
                    if entry.is_dir(follow_symlinks=False):
                        dirs.append(entry.name)
                    elif entry.is_file():
                        files.append(entry.name)
                except OSError:
                    continue
        return dirs, files

    def file_size(self, root: Path, rel_path: str) -> int:
        return (root / rel_path).stat().st_size

    def read_bytes(self, root: Path, rel_path: str, limit: Optional[int] = None) -> bytes:
        with open(root / rel_path, "rb") as f:
            return f.read() if limit is None else f.read(limit)
