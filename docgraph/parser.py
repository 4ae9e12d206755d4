"""Markdown link parser.

Extracts the metadata and outbound links of a single markdown document:

- title from front matter, else the first heading, else the file stem
- a short description from front matter or the first prose paragraph
- line / word counts
- links, classified as *internal* (another markdown document) or
  *external* (``http``/``https`` URL)

Links inside fenced code blocks and inline code spans are ignored.
Resolution of internal targets against the scanned tree happens in
:mod:`docgraph.scanner`; this module only classifies and normalises.
"""

from __future__ import annotations

import logging
import posixpath
import re
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Dict, List, Optional, Tuple
from urllib.parse import unquote, urlsplit

from .config import DESCRIPTION_MAX_LENGTH, MARKDOWN_EXTENSIONS

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Patterns
# ---------------------------------------------------------------------------
_FRONT_MATTER_RE = re.compile(r"\A---[ \t]*\r?\n(.*?)\r?\n---[ \t]*(?:\r?\n|\Z)", re.DOTALL)
_FENCE_RE = re.compile(r"^[ \t]{0,3}(`{3,}|~{3,}).*?^[ \t]{0,3}\1[ \t]*$", re.DOTALL | re.MULTILINE)
_INLINE_CODE_RE = re.compile(r"`[^`\n]*`")
_HEADING_RE = re.compile(r"^[ \t]{0,3}#{1,6}[ \t]+(.+?)[ \t]*#*[ \t]*$", re.MULTILINE)
_INLINE_LINK_RE = re.compile(
    r"(!?)\[(?:[^\[\]]|\[[^\]]*\])*\]\(\s*(?:<([^>\n]+)>|([^)\s<]+))(?:\s+[\"'(][^)]*)?\s*\)"
)
# footnote definitions ([^1]: ...) are not links
_REF_DEF_RE = re.compile(r"^[ \t]{0,3}\[(?!\^)[^\]]+\]:[ \t]*<?(\S+?)>?(?:[ \t]+.*)?$", re.MULTILINE)
_WIKI_LINK_RE = re.compile(r"(!?)\[\[([^\]|#]*)(?:#[^\]|]*)?(?:\|[^\]]*)?\]\]")
_AUTOLINK_RE = re.compile(r"<(https?://[^>\s]+)>", re.IGNORECASE)
_SCHEME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*:")

# Used when deriving a plain-text description
_MD_LINK_TEXT_RE = re.compile(r"!?\[([^\]]*)\]\([^)]*\)")
_WIKI_TEXT_RE = re.compile(r"\[\[(?:[^\]|]*\|)?([^\]]*)\]\]")
_EMPHASIS_RE = re.compile(r"(\*\*|__|\*|_|~~)(.+?)\1")


@dataclass(frozen=True)
class InternalLink:
    """An unresolved link to another document.

    ``target`` is the normalised path (relative to the linking document,
    or to the root when ``root_relative``); ``raw`` is what the author
    wrote and is what ends up in ``broken_links``.
    """

    target: str
    raw: str
    wiki: bool = False
    root_relative: bool = False


@dataclass
class ParsedDocument:
    title: str
    description: str
    line_count: int
    word_count: int
    internal_links: List[InternalLink] = field(default_factory=list)
    external_links: List[str] = field(default_factory=list)


class LinkParser:
    """Parse markdown text into a :class:`ParsedDocument`."""

    def __init__(self, description_length: int = DESCRIPTION_MAX_LENGTH) -> None:
        self.description_length = description_length

    def parse(self, text: str, file_path: str) -> ParsedDocument:
        meta, body = split_front_matter(text)
        stripped = strip_code(body)

        title = meta.get("title") or _first_heading(stripped) or PurePosixPath(file_path).stem
        description = meta.get("description") or _first_paragraph(stripped)
        description = _truncate(description, self.description_length)

        internal, external = self.extract_links(stripped)
        return ParsedDocument(
            title=title.strip(),
            description=description,
            line_count=count_lines(text),
            word_count=len(body.split()),
            internal_links=internal,
            external_links=external,
        )

    def extract_links(self, text: str) -> Tuple[List[InternalLink], List[str]]:
        """Return ``(internal, external)`` links in document order.

        *text* should already have code stripped (see :func:`strip_code`).
        """
        found: List[Tuple[int, str, bool]] = []

        for match in _INLINE_LINK_RE.finditer(text):
            if match.group(1):
                continue  # image
            found.append((match.start(), match.group(2) or match.group(3), False))
        for match in _REF_DEF_RE.finditer(text):
            found.append((match.start(), match.group(1), False))
        for match in _WIKI_LINK_RE.finditer(text):
            if match.group(1) or not match.group(2).strip():
                continue
            found.append((match.start(), match.group(2).strip(), True))
        for match in _AUTOLINK_RE.finditer(text):
            found.append((match.start(), match.group(1), False))

        found.sort(key=lambda item: item[0])

        internal: List[InternalLink] = []
        external: List[str] = []
        for _, raw, wiki in found:
            kind, value = classify_target(raw, wiki=wiki)
            if kind == "external":
                external.append(value)
            elif kind == "internal":
                internal.append(
                    InternalLink(
                        target=value,
                        raw=raw,
                        wiki=wiki,
                        root_relative=raw.startswith("/"),
                    )
                )
        return internal, external


def classify_target(raw: str, wiki: bool = False) -> Tuple[Optional[str], str]:
    """Classify a link target as ``external``, ``internal`` or ``None`` (ignored)."""
    target = raw.strip()
    if not target or target.startswith("#"):
        return None, target

    if _SCHEME_RE.match(target) and not wiki:
        scheme = target.split(":", 1)[0].lower()
        if scheme in {"http", "https"} and external_domain(target):
            return "external", target
        return None, target

    path = unquote(target.split("#", 1)[0].split("?", 1)[0]).strip()
    if not path:
        return None, target

    suffix = PurePosixPath(path).suffix.lower()
    if not suffix or wiki and suffix not in MARKDOWN_EXTENSIONS:
        path = f"{path}.md"
    elif suffix not in MARKDOWN_EXTENSIONS:
        return None, target  # image, pdf, ...

    return "internal", posixpath.normpath(path.lstrip("/"))


def split_front_matter(text: str) -> Tuple[Dict[str, str], str]:
    """Split simple ``key: value`` front matter from the body."""
    match = _FRONT_MATTER_RE.match(text)
    if not match:
        return {}, text

    meta: Dict[str, str] = {}
    for line in match.group(1).splitlines():
        if ":" not in line or line.startswith((" ", "\t", "-")):
            continue
        key, _, value = line.partition(":")
        value = value.strip().strip("\"'")
        if value:
            meta[key.strip().lower()] = value
    return meta, text[match.end():]


def strip_code(text: str) -> str:
    """Blank out fenced code blocks and inline code spans."""
    text = _FENCE_RE.sub(lambda m: "\n" * m.group(0).count("\n"), text)
    return _INLINE_CODE_RE.sub("", text)


def count_lines(text: str) -> int:
    if not text:
        return 0
    return len(text.splitlines())


def _first_heading(text: str) -> Optional[str]:
    match = _HEADING_RE.search(text)
    return match.group(1) if match else None


def _first_paragraph(text: str) -> str:
    paragraph: List[str] = []
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped:
            if paragraph:
                break
            continue
        if stripped.startswith(("#", ">", "|", "<!--", "---", "[")) and not paragraph:
            continue
        paragraph.append(stripped)
    return _plain_text(" ".join(paragraph))


def _plain_text(text: str) -> str:
    text = _MD_LINK_TEXT_RE.sub(r"\1", text)
    text = _WIKI_TEXT_RE.sub(r"\1", text)
    text = _EMPHASIS_RE.sub(r"\2", text)
    return " ".join(text.split())


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 3].rstrip() + "..."


def external_domain(url: str) -> str:
    """Domain used to collapse external links: lowercased, no port, no ``www.``."""
    try:
        host = (urlsplit(url).hostname or "").lower()
    except ValueError:
        logger.debug("Ignoring malformed URL %s", url)
        return ""
    if host.startswith("www."):
        host = host[4:]
    return host
