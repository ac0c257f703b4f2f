"""Conventional-commit analysis: commit log → next version + changelog.

The analysis itself (``analyze_commits``) is a pure function of the last
released version, the commit list and an optional override version. The
git-reading helpers around it gather those inputs.

Commit grammar (first line)::

    type(scope)!: subject

where type is fix, feat or docs. A trailing ``!`` or a body line
``BREAKING CHANGE: text`` (or ``BREAKING-CHANGE:``) marks a breaking change.
"""

from __future__ import annotations

import datetime
import re

from .models import (
    BumpLevel,
    ChangeKind,
    ChangelogEntry,
    Commit,
    GemRecord,
    ReleaseInfo,
    tag_name,
)
from .shell import CommandRunner, info, step
from .versions import INITIAL_VERSION, bump_version, latest_version, validate_gem_version

COMMIT_HEADER_RE = re.compile(r"^(fix|feat|docs)(\([^()]+\))?(!)?:\s+(.*)$")
BREAKING_BODY_RE = re.compile(r"^BREAKING[ -]CHANGE:\s+(.*)$")

_TYPE_KINDS = {"feat": ChangeKind.FEAT, "fix": ChangeKind.FIX, "docs": ChangeKind.DOCS}
_TYPE_BUMPS = {"feat": BumpLevel.MINOR, "fix": BumpLevel.PATCH, "docs": BumpLevel.PATCH}


def classify_commit(message: str) -> tuple[list[ChangelogEntry], BumpLevel | None]:
    """Classify one commit message.

    Returns:
        Tuple of (changelog entries, bump level). Commits whose first line
        is not a recognized conventional commit yield ([], None).
    """
    lines = message.strip().splitlines()
    if not lines:
        return [], None
    match = COMMIT_HEADER_RE.match(lines[0].strip())
    if not match:
        return [], None

    commit_type, _scope, bang, subject = match.groups()
    subject = subject.strip()
    breaking_notes = [
        m.group(1).strip()
        for m in (BREAKING_BODY_RE.match(line.strip()) for line in lines[1:])
        if m
    ]

    entries: list[ChangelogEntry] = []
    if breaking_notes:
        entries.extend(ChangelogEntry(kind=ChangeKind.BREAKING, text=n) for n in breaking_notes)
        entries.append(ChangelogEntry(kind=_TYPE_KINDS[commit_type], text=subject))
    elif bang:
        # The subject itself describes the break; don't repeat it.
        entries.append(ChangelogEntry(kind=ChangeKind.BREAKING, text=subject))
    else:
        entries.append(ChangelogEntry(kind=_TYPE_KINDS[commit_type], text=subject))

    level = BumpLevel.MAJOR if (bang or breaking_notes) else _TYPE_BUMPS[commit_type]
    return entries, level


def analyze_commits(
    gem_name: str,
    last_version: str | None,
    commits: list[Commit],
    *,
    override_version: str | None = None,
    today: datetime.date | None = None,
) -> ReleaseInfo:
    """Compute the next release of a gem from its commits.

    Args:
        gem_name: Gem being released.
        last_version: Version of the last release tag, or None for a first
            release (commits are then ignored).
        commits: Commits since the last release, oldest first.
        override_version: Explicit version to use instead of the computed one.
        today: Release date for the changelog header.

    Returns:
        ReleaseInfo with version, bump level and ordered changelog entries.
    """
    release_date = today or datetime.date.today()

    if last_version is None:
        entries = [ChangelogEntry(kind=ChangeKind.OTHER, text="Initial release.")]
        level = BumpLevel.MINOR
        new_version = INITIAL_VERSION
    else:
        entries = []
        level = BumpLevel.PATCH
        for commit in commits:
            commit_entries, commit_level = classify_commit(commit.message)
            entries.extend(commit_entries)
            if commit_level is not None:
                level = level.combine(commit_level)
        new_version = bump_version(last_version, level)

    if override_version:
        new_version = validate_gem_version(override_version)

    return ReleaseInfo(
        gem_name=gem_name,
        last_version=last_version,
        new_version=new_version,
        bump_level=level,
        changelog_entries=tuple(entries),
        release_date=release_date,
    )


def find_last_version(runner: CommandRunner, gem_name: str) -> str | None:
    """Latest released version of a gem according to its tags."""
    tags = runner.git("tag", "--list", f"{gem_name}/v*", check=False)
    return latest_version(tags.splitlines(), gem_name)


def read_commits(
    runner: CommandRunner,
    since_ref: str,
    release_ref: str,
    *,
    directory: str | None = None,
) -> list[Commit]:
    """Read commits in ``since_ref..release_ref``, oldest first.

    When ``directory`` is given, commits that touched no file under it are
    dropped.
    """
    shas = runner.git("log", "--reverse", "--format=%H", f"{since_ref}..{release_ref}")
    prefix = None
    if directory and directory.strip("/") not in ("", "."):
        prefix = directory.strip("/") + "/"

    commits: list[Commit] = []
    for sha in shas.splitlines():
        files: list[str] = []
        if prefix:
            files = runner.git("show", "--name-only", "--format=", sha).splitlines()
            if not any(f.startswith(prefix) for f in files):
                continue
        message = runner.git("log", "-1", "--format=%B", sha)
        commits.append(Commit(sha=sha, message=message, files=files))
    return commits


def compute_release_info(
    runner: CommandRunner,
    gem: GemRecord,
    release_ref: str,
    *,
    override_version: str | None = None,
    multiple_gems: bool = False,
    today: datetime.date | None = None,
) -> ReleaseInfo:
    """Gather tags and commits from git and analyze them for one gem."""
    step(f"Analyzing commits for {gem.name}")
    last_version = find_last_version(runner, gem.name)
    commits: list[Commit] = []
    if last_version is not None:
        commits = read_commits(
            runner,
            tag_name(gem.name, last_version),
            release_ref,
            directory=gem.directory if multiple_gems else None,
        )
    info(f"Last version: {last_version or '<none>'}")
    info(f"Commits since last release: {len(commits)}")

    release = analyze_commits(
        gem.name,
        last_version,
        commits,
        override_version=override_version,
        today=today,
    )
    info(f"New version: {release.new_version} ({release.bump_level.value})")
    return release
