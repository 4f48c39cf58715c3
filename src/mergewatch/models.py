"""Run and pull-request models parsed from gh output."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator


class RunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"


class RunConclusion(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


_PENDING_STATES = {"queued", "waiting", "requested", "pending", "expected"}


def normalize_status(raw: str) -> RunStatus:
    """Map a gh run status onto the three states the monitor reasons about."""

    value = (raw or "").strip().lower()
    if value == "completed":
        return RunStatus.COMPLETED
    if value in {"in_progress", "running"}:
        return RunStatus.RUNNING
    if value in _PENDING_STATES:
        return RunStatus.PENDING
    raise ValueError(f"Unrecognized run status '{raw}'")


def normalize_conclusion(raw: str | None) -> RunConclusion | None:
    """Anything that completed without succeeding counts as a failure."""

    value = (raw or "").strip().lower()
    if not value:
        return None
    if value == "success":
        return RunConclusion.SUCCESS
    return RunConclusion.FAILURE


class RunSnapshot(BaseModel):
    """One observation of a pipeline run."""

    id: str = Field(..., description="Run identifier as reported by gh.")
    workflow_name: str = Field(default="default", description="Workflow the run belongs to.")
    branch: str | None = Field(default=None, description="Head branch of the run.")
    status: RunStatus
    conclusion: RunConclusion | None = None
    observed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    created_at: datetime | None = None
    url: str | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> str:
        if value is None or str(value).strip() == "":
            raise ValueError("Run id must not be empty")
        return str(value)

    @model_validator(mode="after")
    def _conclusion_matches_status(self) -> "RunSnapshot":
        completed = self.status is RunStatus.COMPLETED
        if completed and self.conclusion is None:
            raise ValueError("Completed runs must carry a conclusion")
        if not completed and self.conclusion is not None:
            raise ValueError("Only completed runs may carry a conclusion")
        return self

    @classmethod
    def from_gh(cls, payload: dict[str, Any], *, observed_at: datetime | None = None) -> "RunSnapshot":
        status = normalize_status(str(payload.get("status") or ""))
        conclusion = normalize_conclusion(payload.get("conclusion"))
        if status is not RunStatus.COMPLETED:
            # gh reports an empty string while the run is still going
            conclusion = None
        data: dict[str, Any] = {
            "id": payload.get("id") or payload.get("databaseId"),
            "workflow_name": payload.get("workflowName") or "default",
            "branch": payload.get("headBranch"),
            "status": status,
            "conclusion": conclusion,
            "created_at": payload.get("createdAt") or None,
            "url": payload.get("url"),
        }
        if observed_at is not None:
            data["observed_at"] = observed_at
        return cls.model_validate(data)

    @property
    def is_completed(self) -> bool:
        return self.status is RunStatus.COMPLETED

    @property
    def is_success(self) -> bool:
        return self.conclusion is RunConclusion.SUCCESS


class StatusCheck(BaseModel):
    """One entry of a pull request's statusCheckRollup."""

    name: str | None = None
    status: str | None = None
    conclusion: str | None = None
    state: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _pick_name(cls, value: Any):
        if isinstance(value, dict) and "name" not in value and "context" in value:
            value = {**value, "name": value.get("context")}
        return value

    @property
    def result(self) -> str:
        """Normalized outcome; commit statuses report ``state`` instead of ``conclusion``."""

        return (self.conclusion or self.state or "").upper()

    @property
    def completed(self) -> bool:
        if self.status is None:
            return bool(self.state) and self.state.upper() != "PENDING"
        return self.status.upper() == "COMPLETED"


class PullRequestInfo(BaseModel):
    """Pull request metadata as reported by ``gh pr view``."""

    number: int
    title: str = ""
    state: str = "OPEN"
    mergeable: bool = False
    status_checks: list[StatusCheck] = Field(default_factory=list)
    review_decision: str | None = None
    head_ref: str | None = None
    base_ref: str | None = None

    @field_validator("mergeable", mode="before")
    @classmethod
    def _parse_mergeable(cls, value: Any) -> bool:
        if isinstance(value, str):
            return value.strip().upper() == "MERGEABLE"
        return bool(value)

    @classmethod
    def from_gh(cls, payload: dict[str, Any]) -> "PullRequestInfo":
        return cls.model_validate(
            {
                "number": payload.get("number"),
                "title": payload.get("title") or "",
                "state": payload.get("state") or "OPEN",
                "mergeable": payload.get("mergeable"),
                "status_checks": payload.get("statusCheckRollup") or [],
                "review_decision": payload.get("reviewDecision") or None,
                "head_ref": payload.get("headRefName"),
                "base_ref": payload.get("baseRefName"),
            }
        )


@dataclass(slots=True)
class TransitionAnalysis:
    """Difference between the current snapshot and the previous one."""

    status_changed: bool
    conclusion_changed: bool
    is_completed: bool
    is_success: bool
    is_failure: bool
    elapsed: float

    @property
    def is_progressing(self) -> bool:
        return self.status_changed or self.conclusion_changed

    @classmethod
    def compare(
        cls,
        previous: RunSnapshot | None,
        current: RunSnapshot,
        *,
        elapsed: float,
    ) -> "TransitionAnalysis":
        previous_status = previous.status if previous is not None else None
        previous_conclusion = previous.conclusion if previous is not None else None
        return cls(
            status_changed=previous_status != current.status,
            conclusion_changed=previous_conclusion != current.conclusion,
            is_completed=current.is_completed,
            is_success=current.conclusion is RunConclusion.SUCCESS,
            is_failure=current.conclusion is RunConclusion.FAILURE,
            elapsed=elapsed,
        )


__all__ = [
    "PullRequestInfo",
    "RunConclusion",
    "RunSnapshot",
    "RunStatus",
    "StatusCheck",
    "TransitionAnalysis",
    "normalize_conclusion",
    "normalize_status",
]
