"""Learned timing patterns persisted between monitor runs."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

DEFAULT_BUILD_DURATION_MS = 240_000.0
DEFAULT_SUCCESS_RATE = 0.7
DEFAULT_INTERVAL_MS = 5_000.0


class FailureRecord(BaseModel):
    """A failed run kept for diagnostics."""

    timestamp: datetime
    branch: str | None = None
    attempt_count: int = 0


class LearnedPattern(BaseModel):
    """Running estimates for one workflow."""

    average_interval_ms: float = Field(
        default=DEFAULT_INTERVAL_MS,
        description="Steady-state poll interval that worked for this workflow.",
    )
    average_build_duration_ms: float = Field(
        default=DEFAULT_BUILD_DURATION_MS,
        description="Estimated total run duration.",
    )
    success_rate: float = Field(
        default=DEFAULT_SUCCESS_RATE,
        ge=0.0,
        le=1.0,
        description="Exponential moving average of successful conclusions.",
    )
    sample_count: int = Field(
        default=0,
        ge=0,
        description="Completions folded into this pattern; zero means cold-start values.",
    )
    recent_failures: list[FailureRecord] = Field(default_factory=list)

    @property
    def learned(self) -> bool:
        return self.sample_count > 0


class GlobalDefaults(BaseModel):
    """Aggregate values used for workflows that have no history yet."""

    avg_build_time_ms: float = DEFAULT_BUILD_DURATION_MS
    success_rate: float = Field(default=DEFAULT_SUCCESS_RATE, ge=0.0, le=1.0)


class PatternSnapshot(BaseModel):
    """On-disk shape of the pattern file."""

    defaults: GlobalDefaults = Field(default_factory=GlobalDefaults)
    workflows: dict[str, LearnedPattern] = Field(default_factory=dict)


__all__ = [
    "DEFAULT_BUILD_DURATION_MS",
    "DEFAULT_INTERVAL_MS",
    "DEFAULT_SUCCESS_RATE",
    "FailureRecord",
    "GlobalDefaults",
    "LearnedPattern",
    "PatternSnapshot",
]
