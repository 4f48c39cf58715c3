from __future__ import annotations

import pytest

from mergewatch.patterns import LearnedPattern
from mergewatch.scheduler import AdaptiveScheduler, SchedulerPolicy


def _learned(**overrides) -> LearnedPattern:
    data = {"average_build_duration_ms": 240_000.0, "sample_count": 3}
    data.update(overrides)
    return LearnedPattern(**data)


def test_unchanged_status_backs_off() -> None:
    scheduler = AdaptiveScheduler()

    assert scheduler.next_delay(2.0, False, False) == pytest.approx(2.8)


def test_backoff_is_monotonic_and_capped() -> None:
    scheduler = AdaptiveScheduler()
    delay = 2.0
    seen = []
    for _ in range(30):
        delay = scheduler.next_delay(delay, False, False)
        seen.append(delay)

    assert seen == sorted(seen)
    assert seen[-1] == 120.0
    assert max(seen) <= 120.0


def test_progress_speeds_up() -> None:
    scheduler = AdaptiveScheduler()

    assert scheduler.next_delay(10.0, True, False) == pytest.approx(7.0)
    assert scheduler.next_delay(10.0, False, True) == pytest.approx(7.0)


def test_speed_up_never_drops_below_minimum() -> None:
    scheduler = AdaptiveScheduler()

    assert scheduler.next_delay(2.5, True, False) == 2.0


def test_learned_duration_is_blended_while_running() -> None:
    scheduler = AdaptiveScheduler()

    # backoff gives 14s; 200s remaining over 10 polls gives 20s
    delay = scheduler.next_delay(10.0, False, False, _learned(), elapsed=40.0, running=True)

    assert delay == pytest.approx(17.0)


@pytest.mark.parametrize(
    "learned, elapsed, running",
    [
        (_learned(), 40.0, False),
        (_learned(), 300.0, True),
        (_learned(sample_count=0), 40.0, True),
        (None, 40.0, True),
    ],
)
def test_learned_blend_skipped(learned, elapsed, running) -> None:
    scheduler = AdaptiveScheduler()

    delay = scheduler.next_delay(10.0, False, False, learned, elapsed=elapsed, running=running)

    assert delay == pytest.approx(14.0)


def test_zero_learned_weight_disables_blend() -> None:
    scheduler = AdaptiveScheduler(SchedulerPolicy(learned_weight=0.0))

    delay = scheduler.next_delay(10.0, False, False, _learned(), elapsed=40.0, running=True)

    assert delay == pytest.approx(14.0)


def test_initial_delay_uses_learned_interval() -> None:
    scheduler = AdaptiveScheduler()

    assert scheduler.initial_delay_for(None) == 2.0
    assert scheduler.initial_delay_for(_learned(average_interval_ms=8_000.0)) == pytest.approx(8.0)
    assert scheduler.initial_delay_for(_learned(average_interval_ms=500.0)) == 2.0
    assert scheduler.initial_delay_for(_learned(sample_count=0, average_interval_ms=8_000.0)) == 2.0


def test_results_stay_within_bounds() -> None:
    scheduler = AdaptiveScheduler(SchedulerPolicy(initial_delay=1.0, min_delay=1.0, max_delay=5.0))

    for current in (0.1, 1.0, 3.0, 5.0, 50.0):
        for changed in (True, False):
            delay = scheduler.next_delay(current, changed, False, _learned(), elapsed=1.0, running=True)
            assert 1.0 <= delay <= 5.0


@pytest.mark.parametrize(
    "kwargs",
    [
        {"min_delay": 10.0, "max_delay": 5.0},
        {"backoff_multiplier": 0.5},
        {"speed_up_factor": 0.0},
        {"learned_weight": 1.5},
        {"polls_per_remaining": 0},
    ],
)
def test_policy_validation(kwargs) -> None:
    with pytest.raises(ValueError):
        SchedulerPolicy(**kwargs)
