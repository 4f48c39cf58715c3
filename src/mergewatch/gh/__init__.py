"""GitHub CLI integration."""

from .runner import FakeGhRunner, GhExecutionResult, GhNotFoundError, GhRunner, GhRunnerError
from .source import (
    GhCommandError,
    GhPullRequestHost,
    GhRunStatusSource,
    MalformedResponseError,
    PullRequestHost,
    RunStatusSource,
)

__all__ = [
    "FakeGhRunner",
    "GhCommandError",
    "GhExecutionResult",
    "GhNotFoundError",
    "GhPullRequestHost",
    "GhRunStatusSource",
    "GhRunner",
    "GhRunnerError",
    "MalformedResponseError",
    "PullRequestHost",
    "RunStatusSource",
]
