"""Async runner for the GitHub CLI."""

from __future__ import annotations

import asyncio
import json
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Sequence

from .utils import sanitize_environment

RUN_FIELDS = ("id", "status", "conclusion", "headBranch", "workflowName", "createdAt", "url")
PR_FIELDS = (
    "number",
    "title",
    "state",
    "mergeable",
    "statusCheckRollup",
    "reviewDecision",
    "headRefName",
    "baseRefName",
)
REPO_FIELDS = ("name", "owner", "defaultBranchRef")


class GhRunnerError(RuntimeError):
    """Base class for gh runner errors."""


class GhNotFoundError(GhRunnerError):
    """Raised when the gh executable cannot be located."""


@dataclass(slots=True)
class GhExecutionResult:
    """Holds the outcome of a gh CLI invocation."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class GhRunner:
    """Execute gh CLI commands asynchronously."""

    def __init__(self, executable: Path | None = None, *, repo: str | None = None) -> None:
        self._executable_path = self._resolve_executable(executable)
        self._repo = repo

    @staticmethod
    def _resolve_executable(explicit: Path | None) -> Path:
        if explicit is not None:
            candidate = Path(explicit)
            if candidate.exists() and candidate.is_file():
                return candidate
            raise GhNotFoundError(f"gh executable not found at {candidate}")

        binary = shutil.which("gh")
        if binary is None:
            raise GhNotFoundError("GitHub CLI executable 'gh' not found on PATH")
        return Path(binary)

    @property
    def executable(self) -> Path:
        return self._executable_path

    @property
    def repo(self) -> str | None:
        return self._repo

    def _repo_flags(self) -> list[str]:
        return ["-R", self._repo] if self._repo else []

    async def version(self) -> GhExecutionResult:
        return await self._invoke("--version")

    async def run_list(
        self,
        *,
        limit: int = 1,
        branch: str | None = None,
        workflow: str | None = None,
        fields: Sequence[str] = RUN_FIELDS,
    ) -> GhExecutionResult:
        args: list[str] = ["run", "list", "--limit", str(limit), "--json", ",".join(fields)]
        if branch:
            args.extend(["--branch", branch])
        if workflow:
            args.extend(["--workflow", workflow])
        return await self._invoke(*args, *self._repo_flags())

    async def pr_view(
        self,
        selector: str | None = None,
        *,
        fields: Sequence[str] = PR_FIELDS,
    ) -> GhExecutionResult:
        args: list[str] = ["pr", "view"]
        if selector:
            args.append(selector)
        args.extend(["--json", ",".join(fields)])
        return await self._invoke(*args, *self._repo_flags())

    async def repo_view(self, *, fields: Sequence[str] = REPO_FIELDS) -> GhExecutionResult:
        args: list[str] = ["repo", "view"]
        if self._repo:
            args.append(self._repo)
        args.extend(["--json", ",".join(fields)])
        return await self._invoke(*args)

    async def pr_merge(self, number: int, *, method: str = "squash") -> GhExecutionResult:
        args = ["pr", "merge", str(number), f"--{method}"]
        return await self._invoke(*args, *self._repo_flags())

    async def _invoke(self, *args: str) -> GhExecutionResult:
        cmd = [str(self._executable_path), *args]
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=sanitize_environment(),
        )
        try:
            stdout_bytes, stderr_bytes = await process.communicate()
        except asyncio.CancelledError:
            if process.returncode is None:
                process.kill()
                await process.wait()
            raise
        stdout = stdout_bytes.decode("utf-8", errors="replace")
        stderr = stderr_bytes.decode("utf-8", errors="replace")
        return GhExecutionResult(args=tuple(cmd), returncode=process.returncode, stdout=stdout, stderr=stderr)


class FakeGhRunner(GhRunner):
    """Test double that simulates gh CLI responses."""

    def __init__(  # type: ignore[override]
        self,
        responses: Iterable[GhExecutionResult] | None = None,
        *,
        repo: str | None = None,
    ) -> None:
        self._responses = list(responses or [])
        self._invocations: list[tuple[str, ...]] = []
        self._executable_path = Path("/tmp/fake-gh")
        self._repo = repo

    def queue(self, *results: GhExecutionResult) -> None:
        self._responses.extend(results)

    async def _invoke(self, *args: str) -> GhExecutionResult:  # type: ignore[override]
        self._invocations.append(tuple(args))
        if self._responses:
            return self._responses.pop(0)
        return GhExecutionResult(args=tuple(args), returncode=0, stdout="", stderr="")

    @property
    def invocations(self) -> list[tuple[str, ...]]:
        return self._invocations


def json_result(payload: object, *, returncode: int = 0, stderr: str = "") -> GhExecutionResult:
    """Build a successful-looking result whose stdout is the JSON encoding of ``payload``."""

    return GhExecutionResult(
        args=("gh",),
        returncode=returncode,
        stdout=json.dumps(payload),
        stderr=stderr,
    )


__all__ = [
    "FakeGhRunner",
    "GhExecutionResult",
    "GhNotFoundError",
    "GhRunner",
    "GhRunnerError",
    "PR_FIELDS",
    "REPO_FIELDS",
    "RUN_FIELDS",
    "json_result",
]
