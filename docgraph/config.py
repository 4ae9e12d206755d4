"""Configuration paths and tuned defaults for the document graph engine."""

from __future__ import annotations

import os
from pathlib import Path

BASE_DIR = Path(os.environ.get("DOCGRAPH_HOME", str(Path.home() / ".docgraph"))).expanduser()
CONFIG_FILE = BASE_DIR / "config.toml"

# Pagination: initial cap and growth per "load more"
DEFAULT_MAX_NODES = 50
LOAD_MORE_INCREMENT = 25

# Quiet window before a burst of file changes triggers one rebuild
REBUILD_DEBOUNCE_SECONDS = 0.3

DEFAULT_NEIGHBOR_DEPTH = 2
MAX_NEIGHBOR_DEPTH = 5
DEFAULT_SHOW_EXTERNAL_LINKS = True

# Files above the threshold are flagged and only their head is parsed
LARGE_FILE_THRESHOLD = 1024 * 1024
LARGE_FILE_PARSE_LIMIT = 100 * 1024

DESCRIPTION_MAX_LENGTH = 200

MARKDOWN_EXTENSIONS = {".md", ".markdown"}

SKIP_DIRS = {
    ".git", "node_modules", ".venv", "venv", "__pycache__",
    ".tox", ".pytest_cache", ".mypy_cache", "dist", "build",
    ".obsidian", ".trash",
}
