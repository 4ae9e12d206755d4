"""File-watch service for markdown roots, built on watchdog.

One observer watch is scheduled per resolved root path and shared by every
subscriber of that root; it is unscheduled when the last subscriber
detaches. Change callbacks run on the watchdog observer thread, so
consumers living on an event loop must marshal them (see
:class:`docgraph.session.GraphSession`).
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .config import MARKDOWN_EXTENSIONS, SKIP_DIRS

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[str], None]


class WatchSubscription:
    """A consumer's handle on a watched root."""

    def __init__(self, root: Path, release: Callable[["WatchSubscription"], None]) -> None:
        self.root = root
        self._release = release
        self._callbacks: List[ChangeCallback] = []
        self._lock = threading.Lock()
        self.active = True

    def on_change(self, callback: ChangeCallback) -> Callable[[], None]:
        """Register *callback* for changed paths; returns an unsubscribe function."""
        with self._lock:
            self._callbacks.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._callbacks:
                    self._callbacks.remove(callback)

        return unsubscribe

    def emit(self, changed_path: str) -> None:
        with self._lock:
            if not self.active:
                return
            callbacks = list(self._callbacks)
        for callback in callbacks:
            callback(changed_path)

    def close(self) -> None:
        with self._lock:
            if not self.active:
                return
            self.active = False
            self._callbacks.clear()
        self._release(self)


class WatchService(ABC):
    """``watch(root) -> subscription`` / ``unwatch(root)`` contract."""

    @abstractmethod
    def watch(self, root: Path) -> WatchSubscription:
        ...

    @abstractmethod
    def unwatch(self, root: Path, subscription: Optional[WatchSubscription] = None) -> None:
        ...


def is_relevant_change(root: Path, path: str) -> bool:
    """True for markdown files outside hidden and skipped directories."""
    candidate = Path(path)
    if candidate.suffix.lower() not in MARKDOWN_EXTENSIONS:
        return False
    try:
        parts = candidate.relative_to(root).parts
    except ValueError:
        parts = candidate.parts
    return not any(part.startswith(".") or part in SKIP_DIRS for part in parts[:-1])


def is_relevant_directory(root: Path, path: str) -> bool:
    """True for a directory under *root* that the scanner would descend into."""
    try:
        parts = Path(path).relative_to(root).parts
    except ValueError:
        return False
    return bool(parts) and not any(part.startswith(".") or part in SKIP_DIRS for part in parts)


class MarkdownChangeHandler(FileSystemEventHandler):
    """Forward markdown create/modify/delete/move events for one root.

    Directory creation, deletion and moves are forwarded too, since a
    moved folder of documents produces no per-file events.
    """

    def __init__(self, root: Path, dispatch: Callable[[Path, str], None]) -> None:
        super().__init__()
        self.root = root
        self._dispatch = dispatch

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.event_type in {"opened", "closed", "closed_no_write"}:
            return
        if event.is_directory and event.event_type not in {"created", "deleted", "moved"}:
            return
        relevant = is_relevant_directory if event.is_directory else is_relevant_change
        for attr in ("src_path", "dest_path"):
            path = getattr(event, attr, "")
            if isinstance(path, bytes):
                path = path.decode("utf-8", errors="replace")
            if path and relevant(self.root, path):
                self._dispatch(self.root, path)
                return


class _RootWatch:
    def __init__(self, handle: Any) -> None:
        self.handle = handle
        self.subscriptions: List[WatchSubscription] = []


class WatchdogWatchService(WatchService):
    """Reference-counted :class:`WatchService` over a single watchdog observer."""

    def __init__(self, observer_factory: Callable[[], Any] = Observer) -> None:
        self._observer_factory = observer_factory
        self._observer: Optional[Any] = None
        self._roots: Dict[Path, _RootWatch] = {}
        self._lock = threading.RLock()

    def watch(self, root: Path) -> WatchSubscription:
        key = Path(root).expanduser().resolve()
        with self._lock:
            entry = self._roots.get(key)
            if entry is None:
                observer = self._ensure_observer()
                handler = MarkdownChangeHandler(key, self._dispatch)
                entry = _RootWatch(observer.schedule(handler, str(key), recursive=True))
                self._roots[key] = entry
                logger.debug("Watching %s", key)
            subscription = WatchSubscription(key, self._release)
            entry.subscriptions.append(subscription)
            return subscription

    def unwatch(self, root: Path, subscription: Optional[WatchSubscription] = None) -> None:
        key = Path(root).expanduser().resolve()
        with self._lock:
            entry = self._roots.get(key)
            if entry is None or not entry.subscriptions:
                return
            target = subscription if subscription is not None else entry.subscriptions[-1]
        target.close()

    def ref_count(self, root: Path) -> int:
        key = Path(root).expanduser().resolve()
        with self._lock:
            entry = self._roots.get(key)
            return len(entry.subscriptions) if entry else 0

    def stop(self) -> None:
        """Detach every subscriber and stop the observer thread."""
        with self._lock:
            subscriptions = [s for entry in self._roots.values() for s in entry.subscriptions]
        for subscription in subscriptions:
            subscription.close()
        with self._lock:
            observer, self._observer = self._observer, None
        if observer is not None:
            observer.stop()
            observer.join()

    def _ensure_observer(self) -> Any:
        if self._observer is None:
            self._observer = self._observer_factory()
            self._observer.start()
        return self._observer

    def _release(self, subscription: WatchSubscription) -> None:
        with self._lock:
            entry = self._roots.get(subscription.root)
            if entry is None or subscription not in entry.subscriptions:
                return
            entry.subscriptions.remove(subscription)
            if entry.subscriptions:
                return
            del self._roots[subscription.root]
            if self._observer is not None:
                try:
                    self._observer.unschedule(entry.handle)
                except (KeyError, ValueError) as exc:
                    logger.warning("Failed to unschedule watch on %s: %s", subscription.root, exc)
            logger.debug("Stopped watching %s", subscription.root)

    def _dispatch(self, root: Path, path: str) -> None:
        with self._lock:
            entry = self._roots.get(root)
            subscriptions = list(entry.subscriptions) if entry else []
        for subscription in subscriptions:
            subscription.emit(path)
