"""Tests for gem_releaser.github."""

from __future__ import annotations

import json

import pytest

from gem_releaser.errors import ParseFailure, RemoteCallFailure
from gem_releaser.github import GitHubHost
from gem_releaser.models import PullRequestRef, ReleaseState

from conftest import FakeRunner


def _pr(number: int, labels: list[str], **extra: object) -> dict:
    return {
        "number": number,
        "title": f"PR {number}",
        "labels": [{"name": name} for name in labels],
        "head": {"ref": "release/widgets"},
        **extra,
    }


class TestFindReleasePrs:
    def test_open_prs_filtered_by_label(self) -> None:
        runner = FakeRunner(
            {
                ("gh", "api"): json.dumps(
                    [_pr(1, ["release: pending"]), _pr(2, ["bug"]), _pr(3, ["release: error"])]
                )
            }
        )
        host = GitHubHost(runner, "acme/widgets")  # type: ignore[arg-type]

        prs = host.find_release_prs(gem_name="widgets")

        assert [pr.number for pr in prs] == [1]
        path = runner.calls[0][2]
        assert path.startswith("repos/acme/widgets/pulls?state=open&sort=created")
        assert "head=acme:release/widgets" in path

    def test_merged_pr_matched_by_sha(self) -> None:
        runner = FakeRunner(
            {
                ("gh", "api"): json.dumps(
                    [
                        _pr(4, ["release: pending"], merged_at=None, merge_commit_sha="abc"),
                        _pr(5, ["release: pending"], merged_at="2024-01-01T00:00:00Z", merge_commit_sha="def"),
                        _pr(6, ["release: pending"], merged_at="2024-01-01T00:00:00Z", merge_commit_sha="abc"),
                    ]
                )
            }
        )
        host = GitHubHost(runner, "acme/widgets")  # type: ignore[arg-type]

        prs = host.find_release_prs(merge_sha="abc")

        assert [pr.number for pr in prs] == [6]
        assert "state=closed" in runner.calls[0][2]

    def test_state_filter(self) -> None:
        runner = FakeRunner({("gh", "api"): json.dumps([_pr(7, ["release: triggered"])])})
        host = GitHubHost(runner, "acme/widgets")  # type: ignore[arg-type]

        assert host.find_release_prs(state=ReleaseState.TRIGGERED)[0].number == 7
        assert host.find_release_prs() == []


class TestWrites:
    def test_set_release_state_patches_labels(self) -> None:
        runner = FakeRunner()
        host = GitHubHost(runner, "acme/widgets")  # type: ignore[arg-type]
        pr = PullRequestRef.from_api(_pr(5, ["release: pending", "bug"]))

        updated = host.set_release_state(pr, ReleaseState.TRIGGERED)

        assert updated.release_state == ReleaseState.TRIGGERED
        assert runner.calls[0] == (
            "gh",
            "api",
            "-X",
            "PATCH",
            "repos/acme/widgets/issues/5",
            "-H",
            "Accept: application/vnd.github.v3+json",
            "--input",
            "-",
        )
        assert json.loads(runner.kwargs[0]["input"]) == {
            "labels": ["bug", "release: triggered"]
        }

    def test_create_issue_returns_number(self) -> None:
        runner = FakeRunner({("gh", "api", "-X", "POST"): '{"number": 42}'})
        host = GitHubHost(runner, "acme/widgets")  # type: ignore[arg-type]

        assert host.create_issue(title="Release failed", body="details") == 42
        assert json.loads(runner.kwargs[0]["input"]) == {
            "title": "Release failed",
            "body": "details",
        }

    def test_dispatch_workflow(self) -> None:
        runner = FakeRunner()
        host = GitHubHost(runner, "acme/widgets")  # type: ignore[arg-type]

        host.dispatch_workflow("perform.yml", ref="abc", inputs={"gem": "widgets"})

        assert runner.calls[0][4] == "repos/acme/widgets/actions/workflows/perform.yml/dispatches"
        assert json.loads(runner.kwargs[0]["input"]) == {
            "ref": "abc",
            "inputs": {"gem": "widgets"},
        }


class TestReads:
    def test_check_runs_use_preview_header(self) -> None:
        runner = FakeRunner({("gh", "api"): '{"total_count": 0, "check_runs": []}'})
        host = GitHubHost(runner, "acme/widgets")  # type: ignore[arg-type]

        assert host.get_check_runs("abc") == {"total_count": 0, "check_runs": []}
        assert runner.calls[0][-1] == "Accept: application/vnd.github.antiope-preview+json"

    def test_unparsable_response(self) -> None:
        runner = FakeRunner({("gh", "api"): "<html>"})
        host = GitHubHost(runner, "acme/widgets")  # type: ignore[arg-type]

        with pytest.raises(ParseFailure):
            host.get_check_runs("abc")

    def test_command_failure_propagates(self) -> None:
        runner = FakeRunner({("gh", "api"): RemoteCallFailure("gh: Not Found")})
        host = GitHubHost(runner, "acme/widgets")  # type: ignore[arg-type]

        with pytest.raises(RemoteCallFailure):
            host.add_comment(1, "hello")
