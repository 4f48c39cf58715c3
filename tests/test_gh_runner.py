from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from mergewatch.gh.runner import (
    FakeGhRunner,
    GhExecutionResult,
    GhNotFoundError,
    GhRunner,
    json_result,
)
from mergewatch.gh.utils import sanitize_environment


def _echo_script(tmp_path: Path) -> Path:
    script = tmp_path / "gh"
    script.write_text("#!/bin/sh\necho \"$@\"\n", encoding="utf-8")
    script.chmod(0o755)
    return script


def test_gh_runner_executes_script(tmp_path: Path) -> None:
    script = tmp_path / "gh"
    script.write_text("#!/bin/sh\necho 'gh version 2.40.0'\n", encoding="utf-8")
    script.chmod(0o755)

    runner = GhRunner(script)
    result = asyncio.run(runner.version())

    assert result.ok
    assert "gh version 2.40.0" in result.stdout


def test_run_list_passes_filters_and_repo(tmp_path: Path) -> None:
    runner = GhRunner(_echo_script(tmp_path), repo="octo/widgets")
    result = asyncio.run(runner.run_list(branch="main", workflow="ci.yml"))

    output = result.stdout.strip()
    assert output.startswith("run list --limit 1 --json id,status,conclusion,headBranch")
    assert "--branch main --workflow ci.yml -R octo/widgets" in output


def test_repo_view_uses_positional_repo(tmp_path: Path) -> None:
    runner = GhRunner(_echo_script(tmp_path), repo="octo/widgets")
    result = asyncio.run(runner.repo_view())

    assert result.stdout.strip() == "repo view octo/widgets --json name,owner,defaultBranchRef"


def test_pr_merge_squashes(tmp_path: Path) -> None:
    runner = GhRunner(_echo_script(tmp_path))
    result = asyncio.run(runner.pr_merge(17))

    assert result.stdout.strip() == "pr merge 17 --squash"


def test_nonzero_exit_is_reported(tmp_path: Path) -> None:
    script = tmp_path / "gh"
    script.write_text("#!/bin/sh\necho 'boom' >&2\nexit 4\n", encoding="utf-8")
    script.chmod(0o755)

    result = asyncio.run(GhRunner(script).version())

    assert not result.ok
    assert result.returncode == 4
    assert "boom" in result.stderr


def test_gh_not_found(tmp_path: Path) -> None:
    with pytest.raises(GhNotFoundError):
        GhRunner(tmp_path / "missing")


def test_fake_gh_runner_records_invocations() -> None:
    fake = FakeGhRunner([json_result([{"id": 1}])])

    first = asyncio.run(fake.run_list())
    second = asyncio.run(fake.pr_merge(3))

    assert first.stdout == '[{"id": 1}]'
    assert second == GhExecutionResult(args=("pr", "merge", "3", "--squash"), returncode=0, stdout="", stderr="")
    assert fake.invocations[1] == ("pr", "merge", "3", "--squash")


def test_sanitize_environment_is_non_interactive(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PYTHONPATH", "value")
    monkeypatch.setenv("GH_PAGER", "less")
    env = sanitize_environment({"EXTRA": "1"})

    assert "PYTHONPATH" not in env
    assert env["GH_PAGER"] == ""
    assert env["GH_PROMPT_DISABLED"] == "1"
    assert env["EXTRA"] == "1"
