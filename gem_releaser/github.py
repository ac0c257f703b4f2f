"""GitHub access through the ``gh api`` command.

GitHubHost is a thin request/response wrapper over the REST endpoints the
release flows need: pull requests, labels, comments, issues, releases,
workflow dispatches and check runs. Any failing call raises
RemoteCallFailure; callers decide whether a call is advisory.
"""

from __future__ import annotations

import json
from typing import Any, Protocol

from .errors import ParseFailure
from .models import PullRequestRef, ReleaseState, release_branch_name
from .shell import CommandRunner

ACCEPT_V3 = "Accept: application/vnd.github.v3+json"


class RemoteHost(Protocol):
    """Interface the pipeline uses to read and write code-hosting state.

    Coding against this protocol keeps the orchestrator and checks
    testable with fakes.
    """

    def find_release_prs(
        self,
        *,
        gem_name: str | None = None,
        merge_sha: str | None = None,
        state: ReleaseState = ReleaseState.PENDING,
    ) -> list[PullRequestRef]: ...

    def set_release_state(
        self, pr: PullRequestRef, state: ReleaseState
    ) -> PullRequestRef: ...

    def add_comment(self, number: int, body: str) -> None: ...

    def create_pull_request(
        self, *, title: str, head: str, base: str, body: str
    ) -> PullRequestRef: ...

    def create_issue(self, *, title: str, body: str) -> int: ...

    def create_release(
        self, *, tag: str, commitish: str, name: str, body: str
    ) -> None: ...

    def dispatch_workflow(
        self, workflow: str, *, ref: str, inputs: dict[str, str]
    ) -> None: ...

    def get_check_runs(self, sha: str) -> dict[str, Any]: ...


class GitHubHost:
    """RemoteHost implementation backed by the gh CLI.

    Args:
        runner: Command runner used to invoke gh.
        repo: Repository in "owner/name" form.
    """

    def __init__(self, runner: CommandRunner, repo: str) -> None:
        self.runner = runner
        self.repo = repo

    def _api(
        self,
        path: str,
        *,
        method: str = "GET",
        body: dict[str, Any] | None = None,
        accept: str = ACCEPT_V3,
    ) -> Any:
        args = ["api", path, "-H", accept]
        if method != "GET":
            args[1:1] = ["-X", method]
        stdin = None
        if body is not None:
            args.extend(["--input", "-"])
            stdin = json.dumps(body)
        output = self.runner.gh(*args, input=stdin)
        if not output:
            return None
        try:
            return json.loads(output)
        except json.JSONDecodeError as exc:
            raise ParseFailure(f"Unparsable response from {path}: {exc}") from exc

    def list_pull_requests(
        self,
        *,
        state: str = "open",
        head: str | None = None,
        sort: str = "updated",
        per_page: int = 20,
    ) -> list[dict[str, Any]]:
        query = {
            "state": state,
            "sort": sort,
            "direction": "desc",
            "per_page": str(per_page),
        }
        if head:
            query["head"] = head
        qs = "&".join(f"{k}={v}" for k, v in query.items())
        return self._api(f"repos/{self.repo}/pulls?{qs}") or []

    def find_release_prs(
        self,
        *,
        gem_name: str | None = None,
        merge_sha: str | None = None,
        state: ReleaseState = ReleaseState.PENDING,
    ) -> list[PullRequestRef]:
        """Find release PRs carrying a given release-state label.

        With ``merge_sha``, searches closed PRs for the one merged as that
        commit; otherwise searches open PRs. ``gem_name`` narrows the search
        to the gem's release branch.
        """
        head = None
        sort = "updated"
        if gem_name:
            head = f"{self.repo.split('/')[0]}:{release_branch_name(gem_name)}"
            sort = "created"
        raw = self.list_pull_requests(
            state="closed" if merge_sha else "open", head=head, sort=sort
        )
        prs = [PullRequestRef.from_api(pr) for pr in raw]
        matches = [pr for pr in prs if pr.release_state == state]
        if merge_sha:
            matches = [
                pr for pr in matches if pr.merged_at and pr.merge_commit_sha == merge_sha
            ]
        return matches

    def set_release_state(
        self, pr: PullRequestRef, state: ReleaseState
    ) -> PullRequestRef:
        """Replace the PR's release-state label, keeping all other labels."""
        updated = pr.with_state(state)
        self._api(
            f"repos/{self.repo}/issues/{pr.number}",
            method="PATCH",
            body={"labels": updated.labels},
        )
        return updated

    def add_comment(self, number: int, body: str) -> None:
        self._api(
            f"repos/{self.repo}/issues/{number}/comments",
            method="POST",
            body={"body": body},
        )

    def create_pull_request(
        self, *, title: str, head: str, base: str, body: str
    ) -> PullRequestRef:
        data = self._api(
            f"repos/{self.repo}/pulls",
            method="POST",
            body={"title": title, "head": head, "base": base, "body": body},
        )
        return PullRequestRef.from_api(data)

    def create_issue(self, *, title: str, body: str) -> int:
        data = self._api(
            f"repos/{self.repo}/issues",
            method="POST",
            body={"title": title, "body": body},
        )
        return int(data["number"])

    def create_release(self, *, tag: str, commitish: str, name: str, body: str) -> None:
        self._api(
            f"repos/{self.repo}/releases",
            method="POST",
            body={
                "tag_name": tag,
                "target_commitish": commitish,
                "name": name,
                "body": body.strip(),
            },
        )

    def dispatch_workflow(
        self, workflow: str, *, ref: str, inputs: dict[str, str]
    ) -> None:
        self._api(
            f"repos/{self.repo}/actions/workflows/{workflow}/dispatches",
            method="POST",
            body={"ref": ref, "inputs": inputs},
        )

    def get_check_runs(self, sha: str) -> dict[str, Any]:
        return self._api(
            f"repos/{self.repo}/commits/{sha}/check-runs?per_page=100",
            accept="Accept: application/vnd.github.antiope-preview+json",
        ) or {}
