"""Merge action boundary."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .gh.source import PullRequestHost
from .models import PullRequestInfo

logger = logging.getLogger(__name__)


class MergeAction(str, Enum):
    MERGE_SUCCEEDED = "merge_succeeded"
    MERGE_FAILED = "merge_failed"
    DRY_RUN = "dry_run"
    DIRECT_PUSH = "direct_push"
    SKIPPED = "skipped"
    NONE = "none"


@dataclass(slots=True)
class MergeOutcome:
    action: MergeAction
    success: bool
    pr_number: int | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action.value,
            "success": self.success,
            "pr_number": self.pr_number,
            "details": dict(self.details),
        }


class MergeExecutor:
    """Requests at most one merge per call and never retries."""

    def __init__(self, host: PullRequestHost, *, dry_run: bool = False) -> None:
        self._host = host
        self._dry_run = dry_run

    @property
    def dry_run(self) -> bool:
        return self._dry_run

    async def attempt_merge(self, pull_request: PullRequestInfo | None) -> MergeOutcome:
        if pull_request is None:
            logger.info("No pull request found; assuming direct push workflow")
            return MergeOutcome(action=MergeAction.DIRECT_PUSH, success=True)

        number = pull_request.number
        if self._dry_run:
            logger.info("Dry run: would merge pull request", extra={"pr": number, "title": pull_request.title})
            return MergeOutcome(action=MergeAction.DRY_RUN, success=True, pr_number=number)

        logger.info("Merging pull request", extra={"pr": number, "title": pull_request.title})
        try:
            result = await self._host.merge(number)
        except Exception as exc:  # reported as a failed merge, never retried
            logger.error("Merge request could not be issued", extra={"pr": number, "error": str(exc)})
            return MergeOutcome(
                action=MergeAction.MERGE_FAILED,
                success=False,
                pr_number=number,
                details={"error": f"{type(exc).__name__}: {exc}"},
            )

        if not result.ok:
            error = result.stderr.strip() or result.stdout.strip() or f"exit code {result.returncode}"
            logger.error("Merge rejected by host", extra={"pr": number, "error": error})
            return MergeOutcome(
                action=MergeAction.MERGE_FAILED,
                success=False,
                pr_number=number,
                details={"error": error, "returncode": result.returncode},
            )

        return MergeOutcome(
            action=MergeAction.MERGE_SUCCEEDED,
            success=True,
            pr_number=number,
            details={"output": result.stdout.strip()[:2000]},
        )


__all__ = ["MergeAction", "MergeExecutor", "MergeOutcome"]
