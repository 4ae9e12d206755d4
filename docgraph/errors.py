"""Exception types raised by the document graph engine."""

from __future__ import annotations


class DocGraphError(Exception):
    """Base class for docgraph errors."""


class ScanError(DocGraphError):
    """The root directory could not be read; fails the whole build."""

    def __init__(self, root_path: str, reason: str) -> None:
        super().__init__(f"Cannot scan '{root_path}': {reason}")
        self.root_path = root_path
        self.reason = reason


class ParseError(DocGraphError):
    """A single document could not be read or decoded."""

    def __init__(self, file_path: str, reason: str) -> None:
        super().__init__(f"Failed to parse '{file_path}': {reason}")
        self.file_path = file_path


class SessionClosedError(DocGraphError):
    """Raised when a graph session is used after teardown."""
