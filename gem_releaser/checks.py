"""Release verification checks.

Each check inspects external state (git, files, GitHub) and returns a
CheckResult. Callers decide the policy with ``enforce``: strict checks
abort the run, ``warn_only`` checks print a warning and continue.
"""

from __future__ import annotations

import datetime
import os
import re
from pathlib import Path
from typing import Any

from .errors import ParseFailure, RemoteCallFailure, VerificationFailure
from .github import RemoteHost
from .models import CheckResult, GemRecord
from .shell import CommandRunner, info, warning
from .sources import changelog_header_re, first_changelog_entry, read_version_rb

REMOTE_URL_PATTERNS = (
    re.compile(r"^git@github\.com:([^/]+/[^/]+?)(?:\.git)?$"),
    re.compile(r"^https://github\.com/([^/]+/[^/]+?)(?:\.git)?/?$"),
)


def enforce(result: CheckResult, *, warn_only: bool = False) -> CheckResult:
    """Apply the caller's failure policy to a check result.

    Raises:
        VerificationFailure: If the check failed and warn_only is False.
    """
    if result.ok:
        return result
    reason = result.reason or f"Check {result.name} failed"
    if warn_only:
        warning(reason)
        for line in result.details:
            warning(line)
        return result
    raise VerificationFailure(reason, *result.details)


def verify_git_clean(runner: CommandRunner) -> CheckResult:
    """The working tree has no uncommitted changes."""
    info("Verifying git clean...")
    # Unstripped: the first status column is significant.
    output = runner.run("git", "status", "-s").stdout.rstrip()
    if output:
        return CheckResult.failed(
            "git-clean",
            "There are local git changes that are not committed.",
            output,
        )
    return CheckResult.passed("git-clean")


def verify_library_version(gem: GemRecord, version: str, root: Path) -> CheckResult:
    """The version file's VERSION literal equals the requested version."""
    info(f"Verifying {gem.name} version file...")
    path = gem.version_file(root)
    try:
        lib_version = read_version_rb(path)
    except ParseFailure as exc:
        return CheckResult.failed("version-match", exc.message)
    if lib_version != version:
        return CheckResult.failed(
            "version-match",
            f"Requested version {version} doesn't match {gem.name} "
            f"library version {lib_version}.",
            f"Modify {path} and set {gem.constant_name} = {version!r}",
        )
    return CheckResult.passed("version-match", lib_version)


def verify_changelog_content(
    gem: GemRecord,
    version: str,
    root: Path,
    today: datetime.date | None = None,
) -> CheckResult:
    """The first changelog entry is for ``version``.

    On success the result's ``value`` is the full entry text.
    """
    info(f"Verifying {gem.name} changelog content...")
    path = gem.changelog_file(root)
    expected = f"### v{version} / {(today or datetime.date.today()).isoformat()}"
    if not path.is_file():
        return CheckResult.failed(
            "changelog-entry-present",
            f"The changelog {path} does not exist.",
            "The first changelog entry should start with:",
            expected,
        )

    header, entry = first_changelog_entry(path.read_text().splitlines(keepends=True))
    if header is None:
        return CheckResult.failed(
            "changelog-entry-present",
            f"The changelog {path} doesn't have any entries.",
            "The first changelog entry should start with:",
            expected,
        )
    if not changelog_header_re(version).match(header):
        return CheckResult.failed(
            "changelog-entry-present",
            f"The first changelog entry in {path} isn't for version {version}.",
            "It should start with:",
            expected,
            "But it actually starts with:",
            header,
        )
    return CheckResult.passed("changelog-entry-present", entry)


def parse_remote_url(url: str) -> str | None:
    """Extract ``owner/repo`` from a GitHub SSH or HTTPS remote URL."""
    for pattern in REMOTE_URL_PATTERNS:
        match = pattern.match(url)
        if match:
            return match.group(1)
    return None


def verify_repo_identity(
    runner: CommandRunner,
    expected_repo: str,
    git_remote: str = "origin",
    current_repo: str | None = None,
) -> CheckResult:
    """The checkout belongs to the configured GitHub repository.

    ``current_repo`` (usually $GITHUB_REPOSITORY) wins over the remote URL.
    """
    info("Verifying git repo identity...")
    if current_repo is None:
        current_repo = os.environ.get("GITHUB_REPOSITORY")
    if not current_repo:
        url = runner.git("remote", "get-url", git_remote)
        current_repo = parse_remote_url(url)
        if current_repo is None:
            return CheckResult.failed("remote-identity", f"Unrecognized remote url: {url!r}")
    if current_repo != expected_repo:
        return CheckResult.failed(
            "remote-identity",
            f"Remote repo is {current_repo}, expected {expected_repo}",
        )
    return CheckResult.passed("remote-identity", current_repo)


def evaluate_check_runs(sha: str, results: dict[str, Any]) -> CheckResult:
    """Judge a check-runs API response for a commit."""
    checks = results.get("check_runs") or []
    if not checks:
        return CheckResult.failed("ci-checks-green", f"No GitHub checks found for {sha}")
    if len(checks) != results.get("total_count"):
        return CheckResult.failed(
            "ci-checks-green",
            f"GitHub check count mismatch for {sha}",
            f"Reported {results.get('total_count')}, received {len(checks)}",
        )

    problems: list[str] = []
    for check in checks:
        name = check.get("name", "")
        if not name.startswith("test"):
            continue
        if check.get("status") != "completed":
            problems.append(f"GitHub check {name!r} is not complete")
        elif check.get("conclusion") != "success":
            problems.append(f"GitHub check {name!r} was not successful")
    if problems:
        return CheckResult.failed("ci-checks-green", problems[0], *problems[1:])
    return CheckResult.passed("ci-checks-green")


def verify_github_checks(host: RemoteHost, sha: str) -> CheckResult:
    """All ``test*`` check runs for ``sha`` completed successfully."""
    info(f"Verifying GitHub checks for {sha}...")
    try:
        results = host.get_check_runs(sha)
    except RemoteCallFailure:
        return CheckResult.failed(
            "ci-checks-green", f"Failed to obtain GitHub check results for {sha}"
        )
    return evaluate_check_runs(sha, results)
