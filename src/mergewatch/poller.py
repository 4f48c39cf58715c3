"""Status polling loop for a single CI run."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable

from .gh.source import RunStatusSource
from .models import RunSnapshot, RunStatus, TransitionAnalysis
from .notify import Notifier
from .patterns import LearnedPattern, PatternStore
from .scheduler import AdaptiveScheduler

logger = logging.getLogger(__name__)


class AlreadyWatchingError(RuntimeError):
    """Raised when a watch is started on a poller that is already watching."""


class PollerState(str, Enum):
    IDLE = "idle"
    WATCHING = "watching"
    ERRORED = "errored"
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"
    FAILED = "failed"


class WatchOutcome(str, Enum):
    COMPLETED = "completed"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    SOURCE_FAILED = "source_failed"


_TERMINAL_STATES = {
    WatchOutcome.COMPLETED: PollerState.COMPLETED,
    WatchOutcome.TIMEOUT: PollerState.TIMED_OUT,
    WatchOutcome.CANCELLED: PollerState.CANCELLED,
    WatchOutcome.SOURCE_FAILED: PollerState.FAILED,
}


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    """How many consecutive source errors a watch tolerates.

    ``None`` retries until the watch time runs out.
    """

    max_consecutive_errors: int | None = None

    def exhausted(self, consecutive_errors: int) -> bool:
        limit = self.max_consecutive_errors
        return limit is not None and consecutive_errors >= limit


@dataclass(slots=True)
class WatchResult:
    outcome: WatchOutcome
    snapshot: RunSnapshot | None
    analysis: TransitionAnalysis | None
    elapsed: float
    iterations: int
    status_changes: int
    error: str | None = None

    @property
    def success(self) -> bool:
        return (
            self.outcome is WatchOutcome.COMPLETED
            and self.snapshot is not None
            and self.snapshot.is_success
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "run": self.snapshot.model_dump(mode="json") if self.snapshot else None,
            "elapsed": round(self.elapsed, 3),
            "iterations": self.iterations,
            "status_changes": self.status_changes,
            "error": self.error,
        }


class _StopRequested(Exception):
    pass


class _DeadlineReached(Exception):
    pass


class StatusPoller:
    """Watches one run at a time until it completes, times out or is stopped."""

    def __init__(
        self,
        source: RunStatusSource,
        *,
        scheduler: AdaptiveScheduler | None = None,
        patterns: PatternStore | None = None,
        notifier: Notifier | None = None,
        retry_policy: RetryPolicy | None = None,
        max_watch_time: float = 600.0,
        workflow: str | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        self._source = source
        self._scheduler = scheduler or AdaptiveScheduler()
        self._patterns = patterns
        self._notifier = notifier or Notifier()
        self._retry_policy = retry_policy or RetryPolicy()
        self._max_watch_time = max_watch_time
        self._workflow = workflow
        self._clock = clock
        self._sleep_fn = sleep
        self._state = PollerState.IDLE
        self._stop_requested = False
        self._stop_event: asyncio.Event | None = None

    @property
    def state(self) -> PollerState:
        return self._state

    @property
    def watching(self) -> bool:
        return self._state in {PollerState.WATCHING, PollerState.ERRORED}

    def stop(self) -> None:
        """Request cancellation; takes effect at the current sleep or source call."""

        if not self.watching:
            return
        self._stop_requested = True
        if self._stop_event is not None:
            self._stop_event.set()

    async def _sleep(self, delay: float) -> None:
        if delay <= 0:
            return
        if self._sleep_fn is not None:
            await self._sleep_fn(delay)
            return
        assert self._stop_event is not None
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    async def _fetch(self, timeout: float) -> RunSnapshot | None:
        """Race the source call against ``stop()`` and the remaining watch time."""

        assert self._stop_event is not None
        fetch = asyncio.ensure_future(self._source.fetch_latest())
        stopper = asyncio.ensure_future(self._stop_event.wait())
        try:
            done, _ = await asyncio.wait(
                {fetch, stopper}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            stopper.cancel()
        if fetch in done:
            return fetch.result()
        fetch.cancel()
        await asyncio.gather(fetch, return_exceptions=True)
        if stopper in done:
            raise _StopRequested
        raise _DeadlineReached

    async def watch(self, max_watch_time: float | None = None) -> WatchResult:
        """Poll until the latest run completes or the watch ends another way."""

        if self.watching:
            raise AlreadyWatchingError("A CI watch is already in progress on this poller")

        limit = self._max_watch_time if max_watch_time is None else max_watch_time
        self._state = PollerState.WATCHING
        self._stop_requested = False
        self._stop_event = asyncio.Event()
        try:
            return await self._watch_loop(limit)
        finally:
            if self.watching:
                self._state = PollerState.IDLE
            self._stop_event = None

    async def _watch_loop(self, limit: float) -> WatchResult:
        start = self._clock()
        learned: LearnedPattern | None = None
        if self._patterns is not None and self._workflow:
            learned = self._patterns.get_pattern(self._workflow)
        delay = self._scheduler.initial_delay_for(learned)
        previous: RunSnapshot | None = None
        analysis: TransitionAnalysis | None = None
        iterations = 0
        status_changes = 0
        consecutive_errors = 0
        last_error: str | None = None
        slept: list[float] = []

        logger.info(
            "Starting CI watch",
            extra={"initial_delay": delay, "max_watch_time": limit},
        )
        self._notifier.emit("watch_started", initial_delay=delay, max_watch_time=limit)

        def finish(outcome: WatchOutcome, snapshot: RunSnapshot | None = None) -> WatchResult:
            self._state = _TERMINAL_STATES[outcome]
            return WatchResult(
                outcome=outcome,
                snapshot=snapshot or previous,
                analysis=analysis,
                elapsed=self._clock() - start,
                iterations=iterations,
                status_changes=status_changes,
                error=last_error,
            )

        def timed_out() -> WatchResult:
            result = finish(WatchOutcome.TIMEOUT)
            logger.warning(
                "Watch timeout reached",
                extra={"elapsed": round(result.elapsed, 1), "iterations": iterations},
            )
            self._notifier.emit("timeout", **_event_fields(result))
            return result

        async def pause() -> None:
            remaining = limit - (self._clock() - start)
            wait = min(delay, remaining)
            if wait > 0:
                slept.append(wait)
                await self._sleep(wait)

        while True:
            if self._stop_requested:
                logger.info("CI watch cancelled")
                result = finish(WatchOutcome.CANCELLED)
                self._notifier.emit("cancelled", **_event_fields(result))
                return result

            elapsed = self._clock() - start
            if elapsed >= limit:
                return timed_out()

            iterations += 1
            try:
                snapshot = await self._fetch(limit - elapsed)
            except _StopRequested:
                continue
            except _DeadlineReached:
                return timed_out()
            except Exception as exc:  # source errors are transient by contract
                consecutive_errors += 1
                last_error = f"{type(exc).__name__}: {exc}"
                self._state = PollerState.ERRORED
                logger.warning(
                    "Error fetching CI status",
                    extra={"error": last_error, "consecutive_errors": consecutive_errors},
                )
                if self._retry_policy.exhausted(consecutive_errors):
                    result = finish(WatchOutcome.SOURCE_FAILED)
                    self._notifier.emit("source_failed", **_event_fields(result))
                    return result
                await pause()
                continue

            consecutive_errors = 0
            last_error = None
            self._state = PollerState.WATCHING

            if snapshot is None:
                logger.info("No CI runs found", extra={"iteration": iterations})
                delay = self._scheduler.next_delay(delay, False, False)
                await pause()
                continue

            analysis = TransitionAnalysis.compare(previous, snapshot, elapsed=elapsed)
            if self._patterns is not None and (
                learned is None or previous is None or previous.workflow_name != snapshot.workflow_name
            ):
                learned = self._patterns.get_pattern(snapshot.workflow_name)

            logger.debug(
                "CI status check",
                extra={
                    "iteration": iterations,
                    "elapsed": round(elapsed, 1),
                    "status": snapshot.status.value,
                    "conclusion": snapshot.conclusion.value if snapshot.conclusion else None,
                    "branch": snapshot.branch,
                    "workflow": snapshot.workflow_name,
                },
            )
            self._notifier.emit(
                "status",
                run_id=snapshot.id,
                status=snapshot.status.value,
                workflow=snapshot.workflow_name,
                branch=snapshot.branch,
                elapsed=elapsed,
            )
            if analysis.status_changed:
                status_changes += 1
                old_status = previous.status.value if previous is not None else None
                logger.info(
                    "CI status changed",
                    extra={"from": old_status, "to": snapshot.status.value, "run_id": snapshot.id},
                )
                self._notifier.emit(
                    "status_change",
                    run_id=snapshot.id,
                    previous_status=old_status,
                    status=snapshot.status.value,
                )

            if analysis.is_completed:
                if previous is None:
                    # finished before this watch began; its duration is unknown
                    logger.info(
                        "Run already completed on first check; pattern unchanged",
                        extra={"run_id": snapshot.id, "workflow": snapshot.workflow_name},
                    )
                else:
                    self._record_completion(snapshot, elapsed, iterations, slept)
                result = finish(WatchOutcome.COMPLETED, snapshot)
                logger.info(
                    "CI completed",
                    extra={
                        "conclusion": snapshot.conclusion.value if snapshot.conclusion else None,
                        "elapsed": round(elapsed, 1),
                        "status_changes": status_changes,
                    },
                )
                self._notifier.emit("completed", **_event_fields(result))
                return result

            delay = self._scheduler.next_delay(
                delay,
                analysis.is_progressing,
                analysis.is_success,
                learned,
                elapsed=elapsed,
                running=snapshot.status is RunStatus.RUNNING,
            )
            logger.debug("Next check scheduled", extra={"delay": round(delay, 2)})
            previous = snapshot
            await pause()

    def _record_completion(
        self,
        snapshot: RunSnapshot,
        elapsed: float,
        iterations: int,
        slept: list[float],
    ) -> None:
        if self._patterns is None or snapshot.conclusion is None:
            return
        interval_ms = sum(slept) / len(slept) * 1000 if slept else None
        self._patterns.record_completion(
            snapshot.workflow_name,
            elapsed * 1000,
            snapshot.conclusion,
            branch=snapshot.branch,
            attempt_count=iterations,
            interval_ms=interval_ms,
        )
        try:
            self._patterns.save()
        except OSError as exc:
            logger.error("Failed to save learned patterns", extra={"error": str(exc)})


def _event_fields(result: WatchResult) -> dict[str, Any]:
    snapshot = result.snapshot
    return {
        "outcome": result.outcome.value,
        "run_id": snapshot.id if snapshot else None,
        "conclusion": snapshot.conclusion.value if snapshot and snapshot.conclusion else None,
        "elapsed": result.elapsed,
        "iterations": result.iterations,
        "status_changes": result.status_changes,
    }


__all__ = [
    "AlreadyWatchingError",
    "PollerState",
    "RetryPolicy",
    "StatusPoller",
    "WatchOutcome",
    "WatchResult",
]
