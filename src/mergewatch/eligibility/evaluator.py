"""Weighted merge-eligibility scoring."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

from ..models import PullRequestInfo, RunConclusion, RunSnapshot
from .policy import EligibilityPolicy

logger = logging.getLogger(__name__)

CI_PASSED = "CI_PASSED"
CI_FAILED = "CI_FAILED"
PR_MERGEABLE = "PR_MERGEABLE"
PR_NOT_MERGEABLE = "PR_NOT_MERGEABLE"
ALL_CHECKS_PASSED = "ALL_CHECKS_PASSED"
CHECKS_FAILED = "CHECKS_FAILED"
REVIEWS_APPROVED = "REVIEWS_APPROVED"
REVIEWS_NOT_REQUIRED = "REVIEWS_NOT_REQUIRED"
REVIEWS_REQUIRED = "REVIEWS_REQUIRED"
DEFAULT_BRANCH_PUSH = "DEFAULT_BRANCH_PUSH"


@dataclass(slots=True)
class EligibilityResult:
    score: int
    threshold: int
    reasons: list[str] = field(default_factory=list)
    blockers: list[str] = field(default_factory=list)

    @property
    def eligible(self) -> bool:
        return self.score >= self.threshold and not self.blockers

    def to_dict(self) -> dict[str, Any]:
        return {
            "score": self.score,
            "threshold": self.threshold,
            "eligible": self.eligible,
            "reasons": list(self.reasons),
            "blockers": list(self.blockers),
        }


class _Scorecard:
    def __init__(self) -> None:
        self.score = 0
        self.reasons: list[str] = []
        self.blockers: list[str] = []

    def award(self, points: int, reason: str | None = None) -> None:
        self.score += points
        if reason and reason not in self.reasons:
            self.reasons.append(reason)

    def block(self, blocker: str) -> None:
        if blocker not in self.blockers:
            self.blockers.append(blocker)


class EligibilityEvaluator:
    """Scores a completed run and its pull request against a policy.

    Ineligibility is an ordinary result: the evaluator never raises because a
    merge is not allowed.
    """

    def __init__(self, policy: EligibilityPolicy | None = None) -> None:
        self._policy = policy or EligibilityPolicy()

    @property
    def policy(self) -> EligibilityPolicy:
        return self._policy

    def evaluate(
        self,
        run: RunSnapshot,
        pull_request: PullRequestInfo | None,
        *,
        default_branch: str | None = None,
        require_reviews: bool | None = None,
        extra_blockers: Iterable[str] = (),
    ) -> EligibilityResult:
        policy = self._policy
        weights = policy.weights
        if require_reviews is None:
            require_reviews = policy.require_reviews
        card = _Scorecard()

        if run.conclusion is RunConclusion.SUCCESS:
            card.award(weights.ci_passed, CI_PASSED)
        else:
            card.block(CI_FAILED)

        if pull_request is not None:
            self._score_pull_request(card, pull_request, require_reviews)
        elif default_branch and run.branch == default_branch:
            card.award(weights.default_branch_push, DEFAULT_BRANCH_PUSH)

        for blocker in extra_blockers:
            card.block(blocker)

        result = EligibilityResult(
            score=min(100, card.score),
            threshold=policy.threshold,
            reasons=card.reasons,
            blockers=card.blockers,
        )
        logger.info(
            "Merge eligibility evaluated",
            extra={
                "run_id": run.id,
                "pr": pull_request.number if pull_request else None,
                "score": result.score,
                "eligible": result.eligible,
                "blockers": ",".join(result.blockers),
            },
        )
        return result

    def _score_pull_request(
        self,
        card: _Scorecard,
        pull_request: PullRequestInfo,
        require_reviews: bool,
    ) -> None:
        weights = self._policy.weights

        if pull_request.mergeable:
            card.award(weights.pr_mergeable, PR_MERGEABLE)
        else:
            card.block(PR_NOT_MERGEABLE)

        passing = self._policy.passing_check_conclusions
        if all(check.completed and check.result in passing for check in pull_request.status_checks):
            card.award(weights.checks_passed, ALL_CHECKS_PASSED)
        else:
            card.block(CHECKS_FAILED)

        if not require_reviews:
            card.award(weights.reviews_approved, REVIEWS_NOT_REQUIRED)
        elif (pull_request.review_decision or "").upper() == "APPROVED":
            card.award(weights.reviews_approved, REVIEWS_APPROVED)
        else:
            card.block(REVIEWS_REQUIRED)


__all__ = [
    "ALL_CHECKS_PASSED",
    "CHECKS_FAILED",
    "CI_FAILED",
    "CI_PASSED",
    "DEFAULT_BRANCH_PUSH",
    "EligibilityEvaluator",
    "EligibilityResult",
    "PR_MERGEABLE",
    "PR_NOT_MERGEABLE",
    "REVIEWS_APPROVED",
    "REVIEWS_NOT_REQUIRED",
    "REVIEWS_REQUIRED",
]
