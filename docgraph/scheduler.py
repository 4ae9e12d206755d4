"""Rebuild scheduling: debounce, single-flight coalescing and build generations.

Three layers, each testable on its own:

- :class:`DebounceCoalescer` is a pure state machine (``IDLE`` / ``PENDING``
  / ``BUILDING``) driven by explicit messages and an injected clock value.
- :class:`GenerationGuard` hands out monotonically increasing build
  generations and answers "is this result still the latest request?".
- :class:`RebuildScheduler` wires both to an asyncio event loop: it owns
  the debounce timer, runs at most one build at a time, queues exactly
  one trailing build and applies only results of the latest generation.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from typing import Awaitable, Callable, Generic, List, Optional, TypeVar

from .config import REBUILD_DEBOUNCE_SECONDS
from .errors import SessionClosedError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BuildPhase(str, enum.Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    PARSING = "parsing"
    ASSEMBLING = "assembling"
    READY = "ready"
    FAILED = "failed"


class DebounceState(str, enum.Enum):
    IDLE = "idle"
    PENDING = "pending"
    BUILDING = "building"


class DebounceCoalescer:
    """Debounce + coalesce state machine with no timers of its own.

    ``notify`` (a file change) pushes the deadline out by one window;
    ``request`` (manual refresh, settings change, load-more) makes a build
    due immediately. Anything that arrives while ``BUILDING`` collapses
    into a single trailing build, released by ``finish``.
    """

    def __init__(self, window: float = REBUILD_DEBOUNCE_SECONDS) -> None:
        if window < 0:
            raise ValueError("window must not be negative")
        self.window = window
        self.state = DebounceState.IDLE
        self.deadline: Optional[float] = None
        self.trailing = False

    def notify(self, now: float) -> None:
        self.deadline = now + self.window
        if self.state is DebounceState.IDLE:
            self.state = DebounceState.PENDING

    def request(self, now: float) -> None:
        if self.state is DebounceState.BUILDING:
            self.trailing = True
            return
        self.deadline = now
        self.state = DebounceState.PENDING

    def due(self, now: float) -> bool:
        return (
            self.state is DebounceState.PENDING
            and self.deadline is not None
            and now >= self.deadline
        )

    def start(self) -> None:
        if self.state is not DebounceState.PENDING:
            raise RuntimeError(f"cannot start a build from state {self.state.value}")
        self.state = DebounceState.BUILDING
        self.deadline = None
        self.trailing = False

    def finish(self, now: float) -> None:
        if self.state is not DebounceState.BUILDING:
            raise RuntimeError(f"cannot finish a build from state {self.state.value}")
        if self.trailing:
            self.state = DebounceState.PENDING
            self.deadline = now if self.deadline is None else min(self.deadline, now)
            self.trailing = False
        elif self.deadline is not None:
            self.state = DebounceState.PENDING
        else:
            self.state = DebounceState.IDLE

    def cancel(self) -> None:
        """Drop pending triggers; a running build stays ``BUILDING``."""
        self.deadline = None
        self.trailing = False
        if self.state is DebounceState.PENDING:
            self.state = DebounceState.IDLE


class GenerationGuard:
    """Monotonic build generations with last-request-wins semantics."""

    def __init__(self) -> None:
        self.latest = 0
        self._reserved: Optional[int] = None

    def dispatch(self) -> int:
        """Tag a build that is starting now."""
        if self._reserved is not None:
            generation, self._reserved = self._reserved, None
            return generation
        self.latest += 1
        return self.latest

    def supersede(self) -> int:
        """Make every dispatched build stale; the next dispatch gets the new id."""
        if self._reserved is None:
            self.latest += 1
            self._reserved = self.latest
        return self._reserved

    def is_latest(self, generation: int) -> bool:
        return generation == self.latest


BuildFunc = Callable[[int, Callable[[BuildPhase], None]], Awaitable[T]]


class RebuildScheduler(Generic[T]):
    """Run builds one at a time on the current event loop.

    ``build(generation, set_phase)`` produces a result; ``on_result`` is
    called only for results of the latest generation. Callers awaiting
    :meth:`trigger` receive the result that was finally applied, or the
    exception of the failed build.
    """

    def __init__(
        self,
        build: BuildFunc,
        debounce_seconds: float = REBUILD_DEBOUNCE_SECONDS,
        on_result: Optional[Callable[[T], None]] = None,
        on_phase: Optional[Callable[[BuildPhase], None]] = None,
        on_error: Optional[Callable[[BaseException], None]] = None,
    ) -> None:
        self._build = build
        self._on_result = on_result
        self._on_phase = on_phase
        self._on_error = on_error
        self.coalescer = DebounceCoalescer(debounce_seconds)
        self.generations = GenerationGuard()
        self.phase = BuildPhase.IDLE
        self.error: Optional[BaseException] = None
        self.builds_started = 0
        self.closed = False
        self._timer: Optional[asyncio.TimerHandle] = None
        self._task: Optional[asyncio.Task] = None
        self._next_waiters: List[asyncio.Future] = []
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    def notify_change(self) -> None:
        """Debounced trigger for filesystem change events."""
        if self.closed:
            return
        self.coalescer.notify(self._now())
        self._arm()

    async def trigger(self, supersede: bool = False) -> T:
        """Request a build as soon as possible and wait for the applied result.

        With *supersede*, the result of a build already in flight is
        discarded (its inputs are outdated) and its callers wait for the
        trailing build instead.
        """
        if self.closed:
            raise SessionClosedError("rebuild scheduler is closed")
        if supersede and self.running:
            generation = self.generations.supersede()
            logger.debug("Build superseded; next generation is %d", generation)
        waiter = self._get_loop().create_future()
        self._next_waiters.append(waiter)
        self.coalescer.request(self._now())
        self._arm()
        return await waiter

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def wait_idle(self) -> None:
        """Wait until no build is running or pending."""
        while not self.closed and (self.running or self.coalescer.state is not DebounceState.IDLE):
            if self._task is not None and not self._task.done():
                await asyncio.wait({self._task})
            else:
                await asyncio.sleep(self.coalescer.window / 4 or 0.001)

    async def close(self) -> None:
        """Cancel pending triggers and the running build; no state updates after this."""
        if self.closed:
            return
        self.closed = True
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self.coalescer.cancel()
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        for waiter in self._next_waiters:
            if not waiter.done():
                waiter.set_exception(SessionClosedError("rebuild scheduler is closed"))
        self._next_waiters = []

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def _now(self) -> float:
        return self._get_loop().time()

    def _arm(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self.closed or self.coalescer.state is not DebounceState.PENDING:
            return
        deadline = self.coalescer.deadline
        if deadline is None:
            return
        self._timer = self._get_loop().call_at(deadline, self._fire)

    def _fire(self) -> None:
        self._timer = None
        if self.closed:
            return
        if not self.coalescer.due(self._now()):
            self._arm()
            return
        self.coalescer.start()
        waiters, self._next_waiters = self._next_waiters, []
        generation = self.generations.dispatch()
        self.builds_started += 1
        logger.debug("Dispatching build generation %d", generation)
        self._task = self._get_loop().create_task(self._run(generation, waiters))

    def _set_phase(self, phase: BuildPhase) -> None:
        if self.closed:
            return
        self.phase = phase
        if self._on_phase is not None:
            self._call_hook(self._on_phase, phase)

    async def _run(self, generation: int, waiters: List[asyncio.Future]) -> None:
        self._set_phase(BuildPhase.SCANNING)
        try:
            result = await self._build(generation, self._set_phase)
        except asyncio.CancelledError:
            for waiter in waiters:
                if not waiter.done():
                    waiter.set_exception(SessionClosedError("build cancelled"))
            raise
        except Exception as exc:
            self._complete_failed(generation, waiters, exc)
        else:
            self._complete(generation, waiters, result)
        finally:
            if not self.closed:
                self.coalescer.finish(self._now())
                self._arm()

    def _complete(self, generation: int, waiters: List[asyncio.Future], result: T) -> None:
        if self.closed:
            return
        if not self.generations.is_latest(generation):
            logger.debug("Discarding stale build generation %d", generation)
            self._next_waiters[:0] = waiters
            return
        self.error = None
        if self._on_result is not None:
            self._call_hook(self._on_result, result)
        self._set_phase(BuildPhase.READY)
        for waiter in waiters:
            if not waiter.done():
                waiter.set_result(result)

    def _complete_failed(
        self, generation: int, waiters: List[asyncio.Future], exc: Exception
    ) -> None:
        if self.closed:
            return
        if not self.generations.is_latest(generation):
            logger.debug("Ignoring failure of stale build generation %d: %s", generation, exc)
            self._next_waiters[:0] = waiters
            return
        logger.warning("Build generation %d failed: %s", generation, exc)
        self.error = exc
        self._set_phase(BuildPhase.FAILED)
        if self._on_error is not None:
            self._call_hook(self._on_error, exc)
        for waiter in waiters:
            if not waiter.done():
                waiter.set_exception(exc)

    @staticmethod
    def _call_hook(hook: Callable, value: object) -> None:
        # waiters are resolved even when a hook raises
        try:
            hook(value)
        except Exception:
            logger.exception("Build callback %r failed", hook)
