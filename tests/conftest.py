"""Shared test fixtures."""

from __future__ import annotations

import datetime
import subprocess
from collections.abc import Callable
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import pytest

from gem_releaser.config import load_repo_config
from gem_releaser.github import GitHubHost
from gem_releaser.models import RepoConfig
from gem_releaser.pipeline import ReleasePipeline

Output = str | Exception | Callable[[], str]


class FakeRunner:
    """Stand-in for CommandRunner.

    Records every command and answers from a table keyed by command
    prefix; the longest matching prefix wins and unknown commands print
    nothing. An Exception value is raised; a callable is invoked (for side
    effects such as creating files) and its return value used.
    """

    def __init__(self, outputs: dict[tuple[str, ...], Output] | None = None) -> None:
        self.outputs: dict[tuple[str, ...], Output] = dict(outputs or {})
        self.calls: list[tuple[str, ...]] = []
        self.kwargs: list[dict[str, Any]] = []

    def _answer(self, cmd: tuple[str, ...]) -> str:
        for n in range(len(cmd), 0, -1):
            if cmd[:n] in self.outputs:
                out = self.outputs[cmd[:n]]
                if isinstance(out, Exception):
                    raise out
                return out() if callable(out) else out
        return ""

    def run(
        self,
        *args: str,
        check: bool = True,
        capture: bool = True,
        input: str | None = None,
        cwd: Any = None,
        env: Any = None,
    ) -> subprocess.CompletedProcess[str]:
        self.calls.append(tuple(args))
        self.kwargs.append({"input": input, "cwd": cwd, "env": env})
        return subprocess.CompletedProcess(list(args), 0, stdout=self._answer(tuple(args)), stderr="")

    def git(self, *args: str, check: bool = True, cwd: Any = None) -> str:
        return self.run("git", *args, cwd=cwd).stdout.strip()

    def gh(self, *args: str, input: str | None = None, check: bool = True) -> str:
        return self.run("gh", *args, input=input).stdout.strip()

    def called(self, *prefix: str) -> bool:
        return any(call[: len(prefix)] == prefix for call in self.calls)


@pytest.fixture(autouse=True)
def _clean_ci_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Tests run as if outside GitHub Actions unless they opt in."""
    for name in ("GITHUB_ACTIONS", "GITHUB_REPOSITORY", "GITHUB_SHA", "GITHUB_EVENT_PATH"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def gem_repo(tmp_path: Path) -> Path:
    """A single-gem repository checkout at version 1.2.3."""
    (tmp_path / "releases.yml").write_text(
        "repo: acme/widgets\nmain_branch: main\ngems:\n  - name: widgets\n"
    )
    lib = tmp_path / "lib" / "widgets"
    lib.mkdir(parents=True)
    (lib / "version.rb").write_text('module Widgets\n  VERSION = "1.2.3"\nend\n')
    (tmp_path / "CHANGELOG.md").write_text(
        "# Release History\n"
        "\n"
        "### v1.2.3 / 2024-01-01\n"
        "\n"
        "* Feature: add X\n"
        "\n"
        "### v1.2.2 / 2023-12-01\n"
        "\n"
        "* Fixed: correct Y\n"
    )
    return tmp_path


@pytest.fixture
def config(gem_repo: Path) -> RepoConfig:
    return load_repo_config(gem_repo / "releases.yml")


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner({("git", "rev-parse", "HEAD"): "abc123"})


@pytest.fixture
def host() -> MagicMock:
    """GitHub double: no release PRs, green CI."""
    host = MagicMock(spec=GitHubHost)
    host.find_release_prs.return_value = []
    host.get_check_runs.return_value = {
        "total_count": 2,
        "check_runs": [
            {"name": "tests (3.3)", "status": "completed", "conclusion": "success"},
            {"name": "rubocop", "status": "completed", "conclusion": "failure"},
        ],
    }
    host.set_release_state.side_effect = lambda pr, state: pr.with_state(state)
    host.create_issue.return_value = 99
    return host


@pytest.fixture
def pipeline(
    config: RepoConfig, runner: FakeRunner, host: MagicMock, gem_repo: Path
) -> ReleasePipeline:
    return ReleasePipeline(
        config,
        runner,  # type: ignore[arg-type]
        host,
        root=gem_repo,
        today=datetime.date(2024, 2, 1),
        current_repo="acme/widgets",
    )
