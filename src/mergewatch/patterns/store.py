"""JSON-file backed store of learned run patterns."""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

from pydantic import ValidationError

from ..models import RunConclusion
from .models import (
    DEFAULT_BUILD_DURATION_MS,
    DEFAULT_SUCCESS_RATE,
    FailureRecord,
    GlobalDefaults,
    LearnedPattern,
    PatternSnapshot,
)

logger = logging.getLogger(__name__)


class PatternStore:
    """Durable per-workflow timing and outcome estimates.

    The store is loaded once at startup and saved after each completed run.
    A missing or unreadable file never fails the monitor: the store simply
    starts empty and the next save replaces the bad file.
    """

    def __init__(
        self,
        path: Path | None = None,
        *,
        success_weight: float = 0.1,
        failure_limit: int = 50,
        default_build_duration_ms: float = DEFAULT_BUILD_DURATION_MS,
        default_success_rate: float = DEFAULT_SUCCESS_RATE,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if not 0 < success_weight <= 1:
            raise ValueError("success_weight must be in (0, 1]")
        if failure_limit < 1:
            raise ValueError("failure_limit must be >= 1")
        self._path = Path(path) if path is not None else None
        self._success_weight = success_weight
        self._failure_limit = failure_limit
        self._initial_defaults = GlobalDefaults(
            avg_build_time_ms=default_build_duration_ms,
            success_rate=default_success_rate,
        )
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._snapshot = self._empty_snapshot()

    def _empty_snapshot(self) -> PatternSnapshot:
        return PatternSnapshot(defaults=self._initial_defaults.model_copy())

    @property
    def path(self) -> Path | None:
        return self._path

    @property
    def defaults(self) -> GlobalDefaults:
        return self._snapshot.defaults.model_copy()

    def workflows(self) -> list[str]:
        return sorted(self._snapshot.workflows)

    def snapshot(self) -> PatternSnapshot:
        """Return a deep copy of the current state."""

        return self._snapshot.model_copy(deep=True)

    def load(self) -> PatternSnapshot:
        """Read the pattern file, falling back to an empty store."""

        self._snapshot = self._empty_snapshot()
        if self._path is None or not self._path.exists():
            logger.info("No pattern file found; starting with defaults", extra={"path": str(self._path)})
            return self.snapshot()

        try:
            raw = self._path.read_text(encoding="utf-8")
            self._snapshot = PatternSnapshot.model_validate(json.loads(raw))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError, ValidationError) as exc:
            logger.warning(
                "Pattern file unreadable; starting with defaults",
                extra={"path": str(self._path), "error": str(exc)},
            )
            self._snapshot = self._empty_snapshot()
        else:
            logger.info(
                "Loaded learned patterns",
                extra={"path": str(self._path), "workflows": len(self._snapshot.workflows)},
            )
        return self.snapshot()

    def save(self) -> None:
        """Atomically write the current state to disk."""

        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_name(self._path.name + ".tmp")
        tmp_path.write_text(self._snapshot.model_dump_json(indent=2), encoding="utf-8")
        os.replace(tmp_path, self._path)
        logger.debug("Saved learned patterns", extra={"path": str(self._path)})

    def get_pattern(self, workflow_name: str) -> LearnedPattern:
        """Return the learned pattern, or cold-start values for unseen workflows."""

        existing = self._snapshot.workflows.get(workflow_name)
        if existing is not None:
            return existing.model_copy(deep=True)
        defaults = self._snapshot.defaults
        return LearnedPattern(
            average_build_duration_ms=defaults.avg_build_time_ms,
            success_rate=defaults.success_rate,
        )

    def _blend_rate(self, rate: float, success: bool) -> float:
        weight = self._success_weight
        return rate * (1 - weight) + (1.0 if success else 0.0) * weight

    def record_completion(
        self,
        workflow_name: str,
        duration_ms: float,
        conclusion: RunConclusion | str,
        *,
        branch: str | None = None,
        attempt_count: int = 0,
        interval_ms: float | None = None,
    ) -> LearnedPattern:
        """Fold one completed run into the workflow's pattern and the global defaults."""

        success = RunConclusion(conclusion) is RunConclusion.SUCCESS
        duration_ms = max(0.0, float(duration_ms))
        pattern = self.get_pattern(workflow_name)

        pattern.average_build_duration_ms = (pattern.average_build_duration_ms + duration_ms) / 2
        pattern.success_rate = self._blend_rate(pattern.success_rate, success)
        if interval_ms is not None and interval_ms > 0:
            if pattern.learned:
                pattern.average_interval_ms = (pattern.average_interval_ms + interval_ms) / 2
            else:
                pattern.average_interval_ms = float(interval_ms)
        if not success:
            pattern.recent_failures.append(
                FailureRecord(timestamp=self._clock(), branch=branch, attempt_count=attempt_count)
            )
            del pattern.recent_failures[: -self._failure_limit]
        pattern.sample_count += 1
        self._snapshot.workflows[workflow_name] = pattern

        defaults = self._snapshot.defaults
        defaults.avg_build_time_ms = (defaults.avg_build_time_ms + duration_ms) / 2
        defaults.success_rate = self._blend_rate(defaults.success_rate, success)

        logger.info(
            "Recorded run completion",
            extra={
                "workflow": workflow_name,
                "conclusion": "success" if success else "failure",
                "duration_ms": duration_ms,
                "success_rate": round(pattern.success_rate, 4),
            },
        )
        return pattern.model_copy(deep=True)


__all__ = ["PatternStore"]
