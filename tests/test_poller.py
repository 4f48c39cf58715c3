from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from mergewatch.models import RunConclusion, RunSnapshot, RunStatus
from mergewatch.notify import Notifier
from mergewatch.patterns import PatternStore
from mergewatch.poller import (
    AlreadyWatchingError,
    PollerState,
    RetryPolicy,
    StatusPoller,
    WatchOutcome,
)
from mergewatch.scheduler import AdaptiveScheduler, SchedulerPolicy


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        self.now += delay


class ScriptedSource:
    """Returns queued snapshots, raising queued exceptions; repeats the last item."""

    def __init__(self, items) -> None:
        self._items = list(items)
        self.calls = 0

    async def fetch_latest(self):
        self.calls += 1
        item = self._items.pop(0) if len(self._items) > 1 else self._items[0]
        if isinstance(item, Exception):
            raise item
        return item


class HangingSource:
    def __init__(self) -> None:
        self.started = asyncio.Event()
        self.cancelled = False

    async def fetch_latest(self):
        self.started.set()
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            self.cancelled = True
            raise


def _run(status: RunStatus, conclusion: RunConclusion | None = None, workflow: str = "CI") -> RunSnapshot:
    return RunSnapshot(id="101", workflow_name=workflow, branch="main", status=status, conclusion=conclusion)


RUNNING = _run(RunStatus.RUNNING)
PASSED = _run(RunStatus.COMPLETED, RunConclusion.SUCCESS)
FAILED = _run(RunStatus.COMPLETED, RunConclusion.FAILURE)


def _poller(source, clock: FakeClock, **kwargs) -> StatusPoller:
    return StatusPoller(source, clock=clock, sleep=clock.sleep, **kwargs)


def test_watch_until_success_records_pattern() -> None:
    clock = FakeClock()
    patterns = PatternStore()
    notifier = Notifier()
    poller = _poller(ScriptedSource([RUNNING, RUNNING, PASSED]), clock, patterns=patterns, notifier=notifier)

    result = asyncio.run(poller.watch())

    assert result.outcome is WatchOutcome.COMPLETED
    assert result.success
    assert result.iterations == 3
    assert result.status_changes == 2
    assert result.elapsed == pytest.approx(4.8)
    assert clock.sleeps == pytest.approx([2.0, 2.8])
    assert poller.state is PollerState.COMPLETED
    assert not poller.watching

    pattern = patterns.get_pattern("CI")
    assert pattern.sample_count == 1
    assert pattern.average_build_duration_ms == pytest.approx((240_000 + 4_800) / 2)
    assert pattern.average_interval_ms == pytest.approx(2_400)
    assert pattern.success_rate == pytest.approx(0.73)

    assert [event.type for event in notifier.events] == [
        "watch_started",
        "status",
        "status_change",
        "status",
        "status",
        "status_change",
        "completed",
    ]


def test_failed_run_completes_and_lowers_success_rate() -> None:
    clock = FakeClock()
    patterns = PatternStore()
    poller = _poller(ScriptedSource([RUNNING, FAILED]), clock, patterns=patterns)

    result = asyncio.run(poller.watch())

    assert result.outcome is WatchOutcome.COMPLETED
    assert not result.success
    assert result.snapshot == FAILED
    pattern = patterns.get_pattern("CI")
    assert pattern.success_rate == pytest.approx(0.63)
    assert len(pattern.recent_failures) == 1


def test_already_completed_run_finishes_on_first_check() -> None:
    clock = FakeClock()
    result = asyncio.run(_poller(ScriptedSource([PASSED]), clock).watch())

    assert result.outcome is WatchOutcome.COMPLETED
    assert result.iterations == 1
    assert clock.sleeps == []


def test_run_finished_before_watch_is_not_learned() -> None:
    patterns = PatternStore()

    for _ in range(2):
        clock = FakeClock()
        result = asyncio.run(_poller(ScriptedSource([PASSED]), clock, patterns=patterns).watch())
        assert result.outcome is WatchOutcome.COMPLETED
        assert result.success

    pattern = patterns.get_pattern("CI")
    assert pattern.sample_count == 0
    assert pattern.average_build_duration_ms == 240_000.0
    assert pattern.success_rate == 0.7
    assert patterns.workflows() == []


def test_watch_times_out_without_completion() -> None:
    clock = FakeClock()
    notifier = Notifier()
    patterns = PatternStore()
    poller = _poller(ScriptedSource([RUNNING]), clock, patterns=patterns, notifier=notifier, max_watch_time=10)

    result = asyncio.run(poller.watch())

    assert result.outcome is WatchOutcome.TIMEOUT
    assert result.elapsed == pytest.approx(10.0)
    assert result.snapshot == RUNNING
    assert result.iterations >= 4
    assert sum(clock.sleeps) == pytest.approx(10.0)
    assert poller.state is PollerState.TIMED_OUT
    assert notifier.events[-1].type == "timeout"
    assert patterns.workflows() == []


def test_watch_time_override() -> None:
    clock = FakeClock()
    poller = _poller(ScriptedSource([RUNNING]), clock, max_watch_time=600)

    result = asyncio.run(poller.watch(max_watch_time=3))

    assert result.outcome is WatchOutcome.TIMEOUT
    assert result.elapsed == pytest.approx(3.0)


def test_no_runs_keeps_polling() -> None:
    clock = FakeClock()
    source = ScriptedSource([None, None, PASSED])

    result = asyncio.run(_poller(source, clock).watch())

    assert result.outcome is WatchOutcome.COMPLETED
    assert result.iterations == 3
    assert source.calls == 3
    assert clock.sleeps == pytest.approx([2.8, 3.92])


def test_source_errors_are_retried() -> None:
    clock = FakeClock()
    states: list[PollerState] = []

    async def sleep(delay: float) -> None:
        states.append(poller.state)
        clock.now += delay

    source = ScriptedSource([RuntimeError("HTTP 502"), RUNNING, PASSED])
    poller = StatusPoller(source, clock=clock, sleep=sleep)

    result = asyncio.run(poller.watch())

    assert result.outcome is WatchOutcome.COMPLETED
    assert result.iterations == 3
    assert result.error is None
    assert states == [PollerState.ERRORED, PollerState.WATCHING]


def test_retry_policy_exhausted() -> None:
    clock = FakeClock()
    notifier = Notifier()
    poller = _poller(
        ScriptedSource([RuntimeError("boom")]),
        clock,
        notifier=notifier,
        retry_policy=RetryPolicy(max_consecutive_errors=2),
    )

    result = asyncio.run(poller.watch())

    assert result.outcome is WatchOutcome.SOURCE_FAILED
    assert result.iterations == 2
    assert result.error == "RuntimeError: boom"
    assert poller.state is PollerState.FAILED
    assert notifier.events[-1].type == "source_failed"


def test_learned_duration_shapes_delays() -> None:
    clock = FakeClock()
    patterns = PatternStore()
    patterns.record_completion("CI", 100_000, RunConclusion.SUCCESS)
    poller = _poller(ScriptedSource([RUNNING, RUNNING, PASSED]), clock, patterns=patterns)

    asyncio.run(poller.watch())

    # 170s expected duration: first delay (2.0 + 17.0) / 2, second (13.3 + 16.05) / 2
    assert clock.sleeps == pytest.approx([9.5, 14.675])


def test_pending_run_does_not_use_learned_duration() -> None:
    clock = FakeClock()
    patterns = PatternStore()
    patterns.record_completion("CI", 100_000, RunConclusion.SUCCESS)
    pending = _run(RunStatus.PENDING)
    poller = _poller(ScriptedSource([pending, PASSED]), clock, patterns=patterns)

    asyncio.run(poller.watch())

    assert clock.sleeps == pytest.approx([2.0])


def test_save_failure_does_not_fail_watch(tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("", encoding="utf-8")
    patterns = PatternStore(blocker / "patterns.json")
    clock = FakeClock()

    result = asyncio.run(_poller(ScriptedSource([RUNNING, PASSED]), clock, patterns=patterns).watch())

    assert result.outcome is WatchOutcome.COMPLETED
    assert patterns.get_pattern("CI").sample_count == 1


def test_poller_can_watch_again_after_completion() -> None:
    clock = FakeClock()
    poller = _poller(ScriptedSource([PASSED]), clock)

    first = asyncio.run(poller.watch())
    second = asyncio.run(poller.watch())

    assert first.outcome is second.outcome is WatchOutcome.COMPLETED


def test_stop_when_idle_is_noop() -> None:
    poller = StatusPoller(ScriptedSource([PASSED]))

    poller.stop()

    assert poller.state is PollerState.IDLE


def test_second_watch_rejected_and_stop_cancels_fetch() -> None:
    async def scenario():
        source = HangingSource()
        poller = StatusPoller(source)
        task = asyncio.create_task(poller.watch())
        await source.started.wait()

        assert poller.watching
        with pytest.raises(AlreadyWatchingError):
            await poller.watch()

        poller.stop()
        return source, poller, await task

    source, poller, result = asyncio.run(scenario())

    assert result.outcome is WatchOutcome.CANCELLED
    assert source.cancelled
    assert poller.state is PollerState.CANCELLED


def test_stop_interrupts_sleep() -> None:
    class SignallingSource(ScriptedSource):
        def __init__(self, items) -> None:
            super().__init__(items)
            self.fetched = asyncio.Event()

        async def fetch_latest(self):
            snapshot = await super().fetch_latest()
            self.fetched.set()
            return snapshot

    async def scenario():
        source = SignallingSource([RUNNING])
        scheduler = AdaptiveScheduler(SchedulerPolicy(initial_delay=60, min_delay=60, max_delay=300))
        poller = StatusPoller(source, scheduler=scheduler)
        task = asyncio.create_task(poller.watch())
        await source.fetched.wait()
        poller.stop()
        return await asyncio.wait_for(task, timeout=5)

    result = asyncio.run(scenario())

    assert result.outcome is WatchOutcome.CANCELLED
    assert result.iterations == 1
    assert result.snapshot == RUNNING
    assert result.elapsed < 5


def test_known_workflow_starts_from_learned_interval() -> None:
    clock = FakeClock()
    notifier = Notifier()
    patterns = PatternStore()
    patterns.record_completion("CI", 1_000, RunConclusion.SUCCESS, interval_ms=6_000)
    pending = _run(RunStatus.PENDING)
    poller = _poller(
        ScriptedSource([pending, pending, PASSED]), clock, patterns=patterns, notifier=notifier, workflow="CI"
    )

    asyncio.run(poller.watch())

    assert notifier.events[0].payload["initial_delay"] == pytest.approx(6.0)
    # first observation speeds up from the learned start, then backs off
    assert clock.sleeps == pytest.approx([4.2, 5.88])


def test_hung_source_call_times_out() -> None:
    async def scenario():
        source = HangingSource()
        notifier = Notifier()
        poller = StatusPoller(source, notifier=notifier, max_watch_time=0.2)
        result = await asyncio.wait_for(poller.watch(), timeout=5)
        return source, poller, notifier, result

    source, poller, notifier, result = asyncio.run(scenario())

    assert result.outcome is WatchOutcome.TIMEOUT
    assert result.iterations == 1
    assert result.elapsed < 5
    assert source.cancelled
    assert poller.state is PollerState.TIMED_OUT
    assert notifier.events[-1].type == "timeout"
