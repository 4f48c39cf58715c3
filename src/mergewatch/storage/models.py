"""Data models for the completion audit log."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from ..eligibility import EligibilityResult
from ..merge import MergeAction, MergeOutcome
from ..models import RunSnapshot


@dataclass(slots=True, frozen=True)
class CompletionHistoryEntry:
    run: RunSnapshot
    action: MergeAction
    failure: bool
    recorded_at: datetime
    eligibility: EligibilityResult | None = None
    merge: MergeOutcome | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "run": self.run.model_dump(mode="json"),
            "action": self.action.value,
            "failure": self.failure,
            "recorded_at": self.recorded_at.isoformat(),
            "eligibility": self.eligibility.to_dict() if self.eligibility else None,
            "merge": self.merge.to_dict() if self.merge else None,
        }


@dataclass(slots=True)
class HistoryRecord:
    id: str
    run_id: str
    workflow: str
    action: str
    failure: bool
    recorded_at: datetime
    document: dict[str, Any]


__all__ = ["CompletionHistoryEntry", "HistoryRecord"]
