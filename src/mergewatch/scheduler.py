"""Adaptive poll delay calculation."""

from __future__ import annotations

from dataclasses import dataclass

from .patterns import LearnedPattern


@dataclass(slots=True, frozen=True)
class SchedulerPolicy:
    """Tunables for the adaptive backoff, all delays in seconds."""

    initial_delay: float = 2.0
    min_delay: float = 2.0
    max_delay: float = 120.0
    backoff_multiplier: float = 1.4
    speed_up_factor: float = 0.7
    learned_weight: float = 0.5
    polls_per_remaining: int = 10

    def __post_init__(self) -> None:
        if self.min_delay <= 0 or self.max_delay < self.min_delay:
            raise ValueError("require 0 < min_delay <= max_delay")
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be >= 1")
        if not 0 < self.speed_up_factor <= 1:
            raise ValueError("speed_up_factor must be in (0, 1]")
        if not 0 <= self.learned_weight <= 1:
            raise ValueError("learned_weight must be in [0, 1]")
        if self.polls_per_remaining < 1:
            raise ValueError("polls_per_remaining must be >= 1")


class AdaptiveScheduler:
    """Pure function over explicit state: no clocks, no I/O.

    Progress (a status change or a success) shrinks the delay toward
    ``min_delay``; an unchanged status grows it toward ``max_delay``. While a
    run is executing and the workflow has history, the delay is pulled toward
    a tenth of the expected remaining run time.
    """

    def __init__(self, policy: SchedulerPolicy | None = None) -> None:
        self._policy = policy or SchedulerPolicy()

    @property
    def policy(self) -> SchedulerPolicy:
        return self._policy

    def clamp(self, delay: float) -> float:
        return min(self._policy.max_delay, max(self._policy.min_delay, delay))

    def initial_delay_for(self, learned: LearnedPattern | None = None) -> float:
        if learned is not None and learned.learned and learned.average_interval_ms > 0:
            return self.clamp(learned.average_interval_ms / 1000)
        return self.clamp(self._policy.initial_delay)

    def remaining_estimate(self, learned: LearnedPattern, elapsed: float) -> float | None:
        """Delay that spreads the remaining polls over the expected run time."""

        remaining = learned.average_build_duration_ms / 1000 - elapsed
        if remaining <= 0:
            return None
        return max(self._policy.min_delay, remaining / self._policy.polls_per_remaining)

    def next_delay(
        self,
        current_delay: float,
        status_changed: bool,
        was_successful: bool,
        learned: LearnedPattern | None = None,
        *,
        elapsed: float = 0.0,
        running: bool = False,
    ) -> float:
        policy = self._policy
        if was_successful or status_changed:
            delay = max(policy.min_delay, current_delay * policy.speed_up_factor)
        else:
            delay = min(policy.max_delay, current_delay * policy.backoff_multiplier)

        if running and learned is not None and learned.learned and policy.learned_weight > 0:
            estimate = self.remaining_estimate(learned, elapsed)
            if estimate is not None:
                weight = policy.learned_weight
                delay = delay * (1 - weight) + estimate * weight

        return self.clamp(delay)


__all__ = ["AdaptiveScheduler", "SchedulerPolicy"]
