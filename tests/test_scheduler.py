"""Tests for debounce, coalescing and build generations."""

import asyncio
from typing import Dict, List, Set

import pytest

from docgraph.errors import SessionClosedError
from docgraph.scheduler import (
    BuildPhase,
    DebounceCoalescer,
    DebounceState,
    GenerationGuard,
    RebuildScheduler,
)


async def _until(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.001)


class GatedBuilds:
    """Build function whose generations in ``blocked`` wait for ``release``."""

    def __init__(self, blocked: Set[int] = frozenset()) -> None:
        self.blocked = set(blocked)
        self.gates: Dict[int, asyncio.Event] = {}
        self.started: List[int] = []
        self.fail: Set[int] = set()

    async def __call__(self, generation: int, set_phase) -> str:
        self.started.append(generation)
        if generation in self.blocked:
            gate = self.gates.setdefault(generation, asyncio.Event())
            await gate.wait()
        set_phase(BuildPhase.ASSEMBLING)
        if generation in self.fail:
            raise RuntimeError(f"build {generation} failed")
        return f"result-{generation}"

    def release(self, generation: int) -> None:
        self.gates.setdefault(generation, asyncio.Event()).set()


class TestDebounceCoalescer:
    """Pure state machine with an injected clock."""

    def test_notify_waits_for_window(self):
        c = DebounceCoalescer(window=0.3)
        c.notify(now=0.0)
        assert c.state is DebounceState.PENDING
        assert not c.due(0.29)
        assert c.due(0.3)

    def test_burst_extends_deadline(self):
        c = DebounceCoalescer(window=0.3)
        for t in (0.0, 0.1, 0.2):
            c.notify(now=t)
        assert not c.due(0.45)
        assert c.due(0.5)

    def test_request_is_due_immediately(self):
        c = DebounceCoalescer(window=0.3)
        c.notify(now=0.0)
        c.request(now=0.1)
        assert c.due(0.1)

    def test_triggers_while_building_collapse_into_one(self):
        c = DebounceCoalescer(window=0.3)
        c.request(now=0.0)
        c.start()
        c.request(now=0.1)
        c.request(now=0.2)
        c.notify(now=0.2)
        assert c.state is DebounceState.BUILDING
        c.finish(now=1.0)
        assert c.state is DebounceState.PENDING
        assert c.due(1.0)
        c.start()
        c.finish(now=2.0)
        assert c.state is DebounceState.IDLE

    def test_change_while_building_keeps_window(self):
        c = DebounceCoalescer(window=0.3)
        c.request(now=0.0)
        c.start()
        c.notify(now=0.1)
        c.finish(now=0.2)
        assert c.state is DebounceState.PENDING
        assert not c.due(0.3)
        assert c.due(0.4)

    def test_finish_without_triggers_goes_idle(self):
        c = DebounceCoalescer()
        c.request(now=0.0)
        c.start()
        c.finish(now=0.1)
        assert c.state is DebounceState.IDLE
        assert not c.due(10.0)

    def test_invalid_transitions(self):
        c = DebounceCoalescer()
        with pytest.raises(RuntimeError):
            c.start()
        with pytest.raises(RuntimeError):
            c.finish(now=0.0)

    def test_cancel_drops_pending(self):
        c = DebounceCoalescer()
        c.notify(now=0.0)
        c.cancel()
        assert c.state is DebounceState.IDLE
        assert not c.due(10.0)

    def test_negative_window_rejected(self):
        with pytest.raises(ValueError):
            DebounceCoalescer(window=-1)


class TestGenerationGuard:
    """Last request wins."""

    def test_dispatch_is_monotonic(self):
        guard = GenerationGuard()
        assert [guard.dispatch() for _ in range(3)] == [1, 2, 3]
        assert guard.is_latest(3)
        assert not guard.is_latest(2)

    def test_superseded_generation_is_stale(self):
        guard = GenerationGuard()
        for _ in range(4):
            guard.dispatch()
        in_flight = guard.dispatch()
        reserved = guard.supersede()

        assert in_flight == 5
        assert reserved == 6
        assert not guard.is_latest(in_flight)
        assert guard.supersede() == 6
        assert guard.dispatch() == 6
        assert guard.is_latest(6)
        assert guard.dispatch() == 7


class TestRebuildScheduler:
    """Scheduler on a live event loop."""

    def test_trigger_returns_result(self):
        async def scenario():
            builds = GatedBuilds()
            applied: List[str] = []
            phases: List[BuildPhase] = []
            scheduler = RebuildScheduler(builds, debounce_seconds=0.05, on_result=applied.append, on_phase=phases.append)
            assert await scheduler.trigger() == "result-1"
            assert applied == ["result-1"]
            assert phases == [BuildPhase.SCANNING, BuildPhase.ASSEMBLING, BuildPhase.READY]
            assert scheduler.phase is BuildPhase.READY
            await scheduler.close()

        asyncio.run(scenario())

    def test_burst_of_changes_builds_once(self):
        async def scenario():
            builds = GatedBuilds()
            scheduler = RebuildScheduler(builds, debounce_seconds=0.2)
            for _ in range(5):
                scheduler.notify_change()
                await asyncio.sleep(0.01)
            await scheduler.wait_idle()
            assert scheduler.builds_started == 1
            await scheduler.close()

        asyncio.run(scenario())

    def test_changes_outside_window_build_separately(self):
        async def scenario():
            builds = GatedBuilds()
            scheduler = RebuildScheduler(builds, debounce_seconds=0.02)
            scheduler.notify_change()
            await scheduler.wait_idle()
            scheduler.notify_change()
            await scheduler.wait_idle()
            assert scheduler.builds_started == 2
            await scheduler.close()

        asyncio.run(scenario())

    def test_requests_during_build_coalesce_into_one_trailing_build(self):
        async def scenario():
            builds = GatedBuilds(blocked={1})
            scheduler = RebuildScheduler(builds, debounce_seconds=0.01)
            first = asyncio.create_task(scheduler.trigger())
            await _until(lambda: builds.started == [1])

            followers = [asyncio.create_task(scheduler.trigger()) for _ in range(3)]
            scheduler.notify_change()
            await asyncio.sleep(0.02)
            assert builds.started == [1]

            builds.release(1)
            assert await first == "result-1"
            assert await asyncio.gather(*followers) == ["result-2"] * 3
            await scheduler.wait_idle()
            assert builds.started == [1, 2]
            await scheduler.close()

        asyncio.run(scenario())

    def test_superseded_build_result_is_discarded(self):
        async def scenario():
            builds = GatedBuilds(blocked={5, 6})
            applied: List[str] = []
            scheduler = RebuildScheduler(builds, debounce_seconds=0, on_result=applied.append)
            for _ in range(4):
                await scheduler.trigger()
            applied.clear()

            older = asyncio.create_task(scheduler.trigger())
            await _until(lambda: 5 in builds.started)
            newer = asyncio.create_task(scheduler.trigger(supersede=True))
            await asyncio.sleep(0)

            # the toggle reserved generation 6; generation 5 completes afterwards
            assert scheduler.generations.latest == 6
            builds.release(6)
            builds.release(5)
            await _until(lambda: 6 in builds.started)

            assert await newer == "result-6"
            assert await older == "result-6"
            assert applied == ["result-6"]
            await scheduler.close()

        asyncio.run(scenario())

    def test_failure_is_reported_and_cleared(self):
        async def scenario():
            builds = GatedBuilds()
            builds.fail.add(1)
            errors: List[BaseException] = []
            scheduler = RebuildScheduler(builds, debounce_seconds=0, on_error=errors.append)
            with pytest.raises(RuntimeError, match="build 1 failed"):
                await scheduler.trigger()
            assert scheduler.phase is BuildPhase.FAILED
            assert scheduler.error is errors[0]

            assert await scheduler.trigger() == "result-2"
            assert scheduler.error is None
            assert scheduler.phase is BuildPhase.READY
            await scheduler.close()

        asyncio.run(scenario())

    def test_raising_hooks_still_resolve_callers(self):
        def boom(_value):
            raise ValueError("subscriber broke")

        async def scenario():
            builds = GatedBuilds()
            builds.fail.add(2)
            scheduler = RebuildScheduler(
                builds, debounce_seconds=0, on_result=boom, on_error=boom, on_phase=boom
            )
            assert await asyncio.wait_for(scheduler.trigger(), 2) == "result-1"
            assert scheduler.phase is BuildPhase.READY

            with pytest.raises(RuntimeError, match="build 2 failed"):
                await asyncio.wait_for(scheduler.trigger(), 2)
            assert scheduler.phase is BuildPhase.FAILED

            assert await asyncio.wait_for(scheduler.trigger(), 2) == "result-3"
            await scheduler.close()

        asyncio.run(scenario())

    def test_close_cancels_pending_and_running(self):
        async def scenario():
            builds = GatedBuilds(blocked={1})
            scheduler = RebuildScheduler(builds, debounce_seconds=0)
            running = asyncio.create_task(scheduler.trigger())
            await _until(lambda: builds.started == [1])
            waiting = asyncio.create_task(scheduler.trigger())
            await asyncio.sleep(0)

            await scheduler.close()
            with pytest.raises(SessionClosedError):
                await running
            with pytest.raises(SessionClosedError):
                await waiting
            with pytest.raises(SessionClosedError):
                await scheduler.trigger()

            scheduler.notify_change()
            await asyncio.sleep(0.01)
            assert builds.started == [1]

        asyncio.run(scenario())

    def test_close_drops_pending_debounce(self):
        async def scenario():
            builds = GatedBuilds()
            scheduler = RebuildScheduler(builds, debounce_seconds=0.02)
            scheduler.notify_change()
            await scheduler.close()
            await asyncio.sleep(0.05)
            assert builds.started == []

        asyncio.run(scenario())
