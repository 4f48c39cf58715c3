"""Post-completion handling: eligibility, merge, history."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable

from .eligibility import EligibilityEvaluator, EligibilityResult
from .gh.source import PullRequestHost
from .merge import MergeAction, MergeExecutor, MergeOutcome
from .models import PullRequestInfo, RunSnapshot
from .notify import Notifier
from .poller import WatchOutcome, WatchResult
from .storage import CompletionHistoryEntry, HistoryStore

logger = logging.getLogger(__name__)

PR_LOOKUP_FAILED = "PR_LOOKUP_FAILED"

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CANCELLED = 130


@dataclass(slots=True)
class CompletionReport:
    """Machine-usable result of one monitor invocation."""

    watch: WatchResult
    action: MergeAction
    exit_code: int
    summary: str
    eligibility: EligibilityResult | None = None
    merge: MergeOutcome | None = None
    pull_request: PullRequestInfo | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "summary": self.summary,
            "exit_code": self.exit_code,
            "action": self.action.value,
            "watch": self.watch.to_dict(),
            "eligibility": self.eligibility.to_dict() if self.eligibility else None,
            "merge": self.merge.to_dict() if self.merge else None,
            "pull_request": self.pull_request.number if self.pull_request else None,
        }


def _run_fields(run: RunSnapshot | None) -> list[str]:
    if run is None:
        return ["run=none"]
    fields = [f"run={run.id}", f"workflow={run.workflow_name}"]
    if run.branch:
        fields.append(f"branch={run.branch}")
    return fields


def format_summary(
    label: str,
    watch: WatchResult,
    *,
    eligibility: EligibilityResult | None = None,
    action: MergeAction | None = None,
    extra: list[str] | None = None,
) -> str:
    parts = [label, *_run_fields(watch.snapshot)]
    if watch.snapshot is not None and not watch.snapshot.is_completed:
        parts.append(f"status={watch.snapshot.status.value}")
    if eligibility is not None:
        parts.append(f"score={eligibility.score}/100")
        parts.append(f"eligible={str(eligibility.eligible).lower()}")
        if eligibility.blockers:
            parts.append(f"blockers={','.join(eligibility.blockers)}")
    if action is not None:
        parts.append(f"action={action.value}")
    parts.extend(extra or [])
    parts.append(f"elapsed={watch.elapsed:.1f}s")
    parts.append(f"checks={watch.iterations}")
    return " ".join(parts)


class CompletionHandler:
    """Turns a finished watch into an eligibility decision and at most one merge."""

    def __init__(
        self,
        host: PullRequestHost,
        evaluator: EligibilityEvaluator,
        executor: MergeExecutor,
        *,
        history: HistoryStore | None = None,
        notifier: Notifier | None = None,
        auto_merge: bool = True,
        require_reviews: bool | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._host = host
        self._evaluator = evaluator
        self._executor = executor
        self._history = history
        self._notifier = notifier or Notifier()
        self._auto_merge = auto_merge
        self._require_reviews = require_reviews
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def handle(self, watch: WatchResult) -> CompletionReport:
        if watch.outcome is WatchOutcome.TIMEOUT:
            return self._report(watch, "TIMEOUT", EXIT_FAILURE)
        if watch.outcome is WatchOutcome.CANCELLED:
            return self._report(watch, "CANCELLED", EXIT_CANCELLED)
        if watch.outcome is WatchOutcome.SOURCE_FAILED:
            return self._report(
                watch, "SOURCE_FAILED", EXIT_FAILURE, extra=[f"error={watch.error!r}"]
            )

        run = watch.snapshot
        assert run is not None
        if not run.is_success:
            return self._handle_failure(watch, run)
        return await self._handle_success(watch, run)

    def _report(
        self,
        watch: WatchResult,
        label: str,
        exit_code: int,
        *,
        extra: list[str] | None = None,
    ) -> CompletionReport:
        summary = format_summary(label, watch, extra=extra)
        logger.warning(summary)
        return CompletionReport(watch=watch, action=MergeAction.NONE, exit_code=exit_code, summary=summary)

    def _handle_failure(self, watch: WatchResult, run: RunSnapshot) -> CompletionReport:
        self._append_history(
            CompletionHistoryEntry(
                run=run,
                action=MergeAction.NONE,
                failure=True,
                recorded_at=self._clock(),
            )
        )
        summary = format_summary("FAILURE", watch, action=MergeAction.NONE)
        logger.error(summary)
        self._notifier.emit("completion_failure", run_id=run.id, workflow=run.workflow_name, summary=summary)
        return CompletionReport(
            watch=watch,
            action=MergeAction.NONE,
            exit_code=EXIT_FAILURE,
            summary=summary,
        )

    async def _handle_success(self, watch: WatchResult, run: RunSnapshot) -> CompletionReport:
        pull_request, default_branch, blockers = await self._gather_context(run)
        eligibility = self._evaluator.evaluate(
            run,
            pull_request,
            default_branch=default_branch,
            require_reviews=self._require_reviews,
            extra_blockers=blockers,
        )
        self._notifier.emit(
            "eligibility",
            run_id=run.id,
            pr=pull_request.number if pull_request else None,
            score=eligibility.score,
            eligible=eligibility.eligible,
            reasons=",".join(eligibility.reasons),
            blockers=",".join(eligibility.blockers),
        )

        merge: MergeOutcome | None = None
        if eligibility.eligible and self._auto_merge:
            merge = await self._executor.attempt_merge(pull_request)
            action = merge.action
        else:
            action = MergeAction.SKIPPED

        self._append_history(
            CompletionHistoryEntry(
                run=run,
                action=action,
                failure=False,
                recorded_at=self._clock(),
                eligibility=eligibility,
                merge=merge,
            )
        )

        if merge is not None and not merge.success:
            label, exit_code = "MERGE_FAILED", EXIT_FAILURE
        elif eligibility.blockers:
            label, exit_code = "MERGE_BLOCKED", EXIT_FAILURE
        else:
            label, exit_code = "SUCCESS", EXIT_OK
        extra = [f"pr={pull_request.number}"] if pull_request else []
        summary = format_summary(label, watch, eligibility=eligibility, action=action, extra=extra)
        logger.log(logging.INFO if exit_code == EXIT_OK else logging.WARNING, summary)

        if merge is None:
            reason = "auto-merge disabled" if eligibility.eligible else "not eligible"
            self._notifier.emit("merge_blocked", run_id=run.id, reason=reason, summary=summary)
        elif merge.success:
            self._notifier.emit("merge_success", run_id=run.id, action=merge.action.value, pr=merge.pr_number)
        else:
            self._notifier.emit(
                "merge_failed",
                run_id=run.id,
                pr=merge.pr_number,
                error=str(merge.details.get("error", "")),
                summary=summary,
            )
        self._notifier.emit("completion_success", run_id=run.id, action=action.value, summary=summary)

        return CompletionReport(
            watch=watch,
            action=action,
            exit_code=exit_code,
            summary=summary,
            eligibility=eligibility,
            merge=merge,
            pull_request=pull_request,
        )

    async def _gather_context(
        self, run: RunSnapshot
    ) -> tuple[PullRequestInfo | None, str | None, list[str]]:
        try:
            pull_request = await self._host.get_pull_request(run.branch)
        except Exception as exc:  # lookup failures block the merge instead of aborting
            logger.warning(
                "Pull request lookup failed", extra={"branch": run.branch, "error": str(exc)}
            )
            return None, None, [PR_LOOKUP_FAILED]

        default_branch: str | None = None
        if pull_request is None:
            try:
                default_branch = await self._host.default_branch()
            except Exception as exc:  # only used for the direct-push criterion
                logger.warning("Default branch lookup failed", extra={"error": str(exc)})
        return pull_request, default_branch, []

    def _append_history(self, entry: CompletionHistoryEntry) -> None:
        if self._history is None:
            return
        try:
            self._history.append(entry)
        except Exception as exc:  # audit log must not change the outcome
            logger.error("Failed to append completion history", extra={"error": str(exc)})


__all__ = [
    "CompletionHandler",
    "CompletionReport",
    "EXIT_CANCELLED",
    "EXIT_FAILURE",
    "EXIT_OK",
    "PR_LOOKUP_FAILED",
    "format_summary",
]
