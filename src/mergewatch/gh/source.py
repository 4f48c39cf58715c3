"""gh-backed run status source and pull request host."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Callable, Protocol

from pydantic import ValidationError

from ..models import PullRequestInfo, RunSnapshot
from .runner import GhExecutionResult, GhRunner, GhRunnerError

logger = logging.getLogger(__name__)

_NO_PR_MARKERS = ("no pull requests found", "no open pull requests", "could not find pull request")


class GhCommandError(GhRunnerError):
    """Raised when a gh command exits with a non-zero status."""

    def __init__(self, result: GhExecutionResult) -> None:
        detail = result.stderr.strip() or result.stdout.strip() or f"exit code {result.returncode}"
        super().__init__(f"{' '.join(result.args[1:3]) or 'gh'} failed: {detail}")
        self.result = result


class MalformedResponseError(GhRunnerError):
    """Raised when gh output cannot be parsed into the expected shape."""


class RunStatusSource(Protocol):
    """Reports the most recent run, or ``None`` when there are no runs yet."""

    async def fetch_latest(self) -> RunSnapshot | None:
        ...


class PullRequestHost(Protocol):
    async def get_pull_request(self, branch: str | None) -> PullRequestInfo | None:
        ...

    async def default_branch(self) -> str | None:
        ...

    async def merge(self, number: int) -> GhExecutionResult:
        ...


def _decode(result: GhExecutionResult) -> Any:
    if not result.ok:
        raise GhCommandError(result)
    try:
        return json.loads(result.stdout)
    except json.JSONDecodeError as exc:
        raise MalformedResponseError(f"Unparseable gh output: {exc}") from exc


class GhRunStatusSource:
    """Reads the latest workflow run through ``gh run list``."""

    def __init__(
        self,
        runner: GhRunner,
        *,
        branch: str | None = None,
        workflow: str | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._runner = runner
        self._branch = branch
        self._workflow = workflow
        self._clock = clock

    async def fetch_latest(self) -> RunSnapshot | None:
        result = await self._runner.run_list(limit=1, branch=self._branch, workflow=self._workflow)
        runs = _decode(result)
        if not isinstance(runs, list):
            raise MalformedResponseError("Expected a JSON array from gh run list")
        if not runs:
            return None
        observed_at = self._clock() if self._clock else None
        try:
            return RunSnapshot.from_gh(runs[0], observed_at=observed_at)
        except (ValidationError, ValueError, TypeError, AttributeError) as exc:
            raise MalformedResponseError(f"Invalid run payload: {exc}") from exc


class GhPullRequestHost:
    """Pull request queries and the merge action, backed by gh."""

    def __init__(self, runner: GhRunner, *, merge_method: str = "squash") -> None:
        self._runner = runner
        self._merge_method = merge_method

    async def get_pull_request(self, branch: str | None) -> PullRequestInfo | None:
        result = await self._runner.pr_view(branch)
        if not result.ok:
            message = (result.stderr or result.stdout).lower()
            if any(marker in message for marker in _NO_PR_MARKERS):
                logger.debug("No pull request for branch", extra={"branch": branch})
                return None
            raise GhCommandError(result)
        payload = _decode(result)
        if not isinstance(payload, dict):
            raise MalformedResponseError("Expected a JSON object from gh pr view")
        try:
            return PullRequestInfo.from_gh(payload)
        except ValidationError as exc:
            raise MalformedResponseError(f"Invalid pull request payload: {exc}") from exc

    async def default_branch(self) -> str | None:
        payload = _decode(await self._runner.repo_view())
        if not isinstance(payload, dict):
            raise MalformedResponseError("Expected a JSON object from gh repo view")
        ref = payload.get("defaultBranchRef") or {}
        if isinstance(ref, dict):
            return ref.get("name") or None
        return str(ref) or None

    async def merge(self, number: int) -> GhExecutionResult:
        return await self._runner.pr_merge(number, method=self._merge_method)


__all__ = [
    "GhCommandError",
    "GhPullRequestHost",
    "GhRunStatusSource",
    "MalformedResponseError",
    "PullRequestHost",
    "RunStatusSource",
]
