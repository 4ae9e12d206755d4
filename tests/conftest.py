"""Pytest configuration and fixtures for docgraph tests."""

import shutil
import tempfile
from pathlib import Path
from typing import Dict, Generator, List, Optional

import pytest

from docgraph.watcher import WatchService, WatchSubscription


@pytest.fixture(autouse=True)
def _isolated_config(tmp_path_factory, monkeypatch):
    """Point the settings file at a throwaway location for every test.

    ``config_manager`` imports ``CONFIG_FILE`` at module load, so both
    modules are patched.
    """
    config_file = tmp_path_factory.mktemp("docgraph_home") / "config.toml"
    monkeypatch.setattr("docgraph.config.CONFIG_FILE", config_file)
    monkeypatch.setattr("docgraph.config_manager.CONFIG_FILE", config_file)
    return config_file


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    tmp = Path(tempfile.mkdtemp())
    yield tmp
    shutil.rmtree(tmp, ignore_errors=True)


def write_docs(root: Path, files: Dict[str, str]) -> Path:
    """Write ``{relative path: content}`` under *root* and return it."""
    for rel_path, content in files.items():
        path = root / rel_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    return root


@pytest.fixture
def sample_docs(temp_dir: Path) -> Path:
    """Three documents: A <-> B, A -> example.com, C isolated."""
    return write_docs(
        temp_dir,
        {
            "A.md": "# Alpha\n\nSee [B](B.md) and [site](https://example.com/x).\n",
            "B.md": "# Beta\n\nBack to [A](A.md).\n",
            "C.md": "# Gamma\n\nNo links here.\n",
        },
    )


@pytest.fixture
def chain_docs(temp_dir: Path) -> Path:
    """A -> B -> C -> D, plus E isolated."""
    return write_docs(
        temp_dir,
        {
            "A.md": "# A\n\n[next](B.md)\n",
            "B.md": "# B\n\n[next](C.md)\n",
            "C.md": "# C\n\n[next](D.md)\n",
            "D.md": "# D\n",
            "E.md": "# E\n",
        },
    )


class ManualWatchService(WatchService):
    """In-process :class:`WatchService` whose events are fired by the test."""

    def __init__(self) -> None:
        self.subscriptions: List[WatchSubscription] = []
        self.watched: List[Path] = []
        self.unwatched: List[Path] = []

    def watch(self, root: Path) -> WatchSubscription:
        subscription = WatchSubscription(Path(root), self._release)
        self.subscriptions.append(subscription)
        self.watched.append(Path(root))
        return subscription

    def unwatch(self, root: Path, subscription: Optional[WatchSubscription] = None) -> None:
        target = subscription or next(
            (s for s in reversed(self.subscriptions) if s.root == Path(root)), None
        )
        if target is not None:
            target.close()

    def fire(self, path: str) -> None:
        for subscription in list(self.subscriptions):
            subscription.emit(path)

    def _release(self, subscription: WatchSubscription) -> None:
        if subscription in self.subscriptions:
            self.subscriptions.remove(subscription)
            self.unwatched.append(subscription.root)


@pytest.fixture
def watch_service() -> ManualWatchService:
    return ManualWatchService()
