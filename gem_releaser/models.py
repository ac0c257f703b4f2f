"""Data models for gem-releaser.

These Pydantic models represent the core data structures used throughout
the release pipeline.
"""

from __future__ import annotations

import datetime
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

RELEASE_LABEL_PREFIX = "release: "


class BumpLevel(str, Enum):
    """Which semver segment a release increments."""

    PATCH = "patch"
    MINOR = "minor"
    MAJOR = "major"

    @property
    def severity(self) -> int:
        return [BumpLevel.PATCH, BumpLevel.MINOR, BumpLevel.MAJOR].index(self)

    def combine(self, other: BumpLevel) -> BumpLevel:
        """Return the more severe of two bump levels."""
        return self if self.severity >= other.severity else other


class ChangeKind(str, Enum):
    """Classification of a changelog line, in rendering order."""

    BREAKING = "breaking"
    FEAT = "feat"
    FIX = "fix"
    DOCS = "docs"
    OTHER = "other"


class ReleaseState(str, Enum):
    """Release-state labels carried by release pull requests.

    A PR holds at most one of these at a time; they act as the pipeline's
    state variable, stored on GitHub.
    """

    PENDING = "release: pending"
    TRIGGERED = "release: triggered"
    ERROR = "release: error"
    ABORTED = "release: aborted"
    COMPLETE = "release: complete"


class GemRecord(BaseModel):
    """Release metadata for a single gem in the repository.

    Attributes:
        name: Gem name (also the tag prefix and release branch suffix).
        directory: Gem directory relative to the repository root.
        version_rb_path: Version file, relative to the gem directory.
        changelog_path: Changelog file, relative to the gem directory.
        version_constant: Ruby constant path holding the version,
            e.g. ("CloudEvents", "VERSION").
        gh_pages_directory: Docs subdirectory on the gh-pages branch.
        gh_pages_version_var: JavaScript variable in 404.html holding the
            default docs version.
        docs_builder_tool: Command that generates docs into ``doc/``.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    directory: str
    version_rb_path: str
    changelog_path: str = "CHANGELOG.md"
    version_constant: tuple[str, ...]
    gh_pages_directory: str = "."
    gh_pages_version_var: str = "version"
    docs_builder_tool: tuple[str, ...] | None = None

    @property
    def constant_name(self) -> str:
        return "::".join(self.version_constant)

    def gem_dir(self, root: Path) -> Path:
        return root / self.directory

    def version_file(self, root: Path) -> Path:
        return self.gem_dir(root) / self.version_rb_path

    def changelog_file(self, root: Path) -> Path:
        return self.gem_dir(root) / self.changelog_path


class RepoConfig(BaseModel):
    """Repository-wide release configuration.

    ``gems`` preserves configuration order; the first gem is the default.
    """

    model_config = ConfigDict(frozen=True)

    repo: str
    main_branch: str = "main"
    gems: dict[str, GemRecord]
    perform_workflow: str | None = None

    @property
    def default_gem(self) -> str:
        return next(iter(self.gems))

    @property
    def repo_owner(self) -> str:
        return self.repo.split("/")[0]


class ChangelogEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: ChangeKind
    text: str


class Commit(BaseModel):
    """A commit as seen by the analyzer."""

    sha: str
    message: str
    files: list[str] = Field(default_factory=list)


class ReleaseInfo(BaseModel):
    """Everything computed for one release attempt of one gem.

    Derived entirely from tag history, commit log and config; never
    persisted.
    """

    model_config = ConfigDict(frozen=True)

    gem_name: str
    last_version: str | None = None
    new_version: str
    bump_level: BumpLevel
    changelog_entries: tuple[ChangelogEntry, ...] = ()
    release_date: datetime.date

    @property
    def changelog_body(self) -> str:
        lines: list[str] = []
        for kind in ChangeKind:
            group = [e for e in self.changelog_entries if e.kind == kind]
            if not group:
                continue
            if kind == ChangeKind.BREAKING:
                lines.extend(f"* BREAKING CHANGE: {e.text}" for e in group)
                if len(group) < len(self.changelog_entries):
                    lines.append("")
            else:
                prefix = _ENTRY_PREFIXES[kind]
                lines.extend(f"* {prefix}{e.text}" for e in group)
        return "\n".join(lines) if lines else "(No significant changes)"

    @property
    def full_changelog(self) -> str:
        header = f"### v{self.new_version} / {self.release_date.isoformat()}"
        return f"{header}\n\n{self.changelog_body}\n"

    @property
    def release_branch_name(self) -> str:
        return release_branch_name(self.gem_name)

    @property
    def commit_title(self) -> str:
        return f"release: Release {self.gem_name} {self.new_version}"

    @property
    def tag_name(self) -> str:
        return tag_name(self.gem_name, self.new_version)


_ENTRY_PREFIXES = {
    ChangeKind.FEAT: "Feature: ",
    ChangeKind.FIX: "Fixed: ",
    ChangeKind.DOCS: "Documentation: ",
    ChangeKind.OTHER: "",
}


class PullRequestRef(BaseModel):
    """Projection of a GitHub pull request relevant to releases.

    Labels are split into a single release-state slot and the set of
    unrelated labels, which are always preserved.
    """

    model_config = ConfigDict(frozen=True)

    number: int
    title: str = ""
    head_ref: str = ""
    release_state: ReleaseState | None = None
    other_labels: tuple[str, ...] = ()
    merge_commit_sha: str | None = None
    merged_at: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> PullRequestRef:
        """Build from a GitHub REST pull request (or webhook payload)."""
        state: ReleaseState | None = None
        others: list[str] = []
        for label in data.get("labels", []):
            name = label["name"] if isinstance(label, dict) else str(label)
            try:
                state = ReleaseState(name)
            except ValueError:
                # Unknown "release: *" labels are dropped from the slot.
                if not name.startswith(RELEASE_LABEL_PREFIX):
                    others.append(name)
        return cls(
            number=data["number"],
            title=data.get("title") or "",
            head_ref=(data.get("head") or {}).get("ref", ""),
            release_state=state,
            other_labels=tuple(others),
            merge_commit_sha=data.get("merge_commit_sha"),
            merged_at=data.get("merged_at"),
        )

    @property
    def labels(self) -> list[str]:
        labels = list(self.other_labels)
        if self.release_state is not None:
            labels.append(self.release_state.value)
        return labels

    @property
    def gem_name(self) -> str:
        return self.head_ref.removeprefix("release/")

    def with_state(self, state: ReleaseState) -> PullRequestRef:
        return self.model_copy(update={"release_state": state})


class CheckResult(BaseModel):
    """Outcome of one verification check.

    Attributes:
        name: Check identifier (e.g. "git-clean").
        ok: Whether the check passed.
        reason: One-line failure summary.
        details: Extra diagnostic lines.
        value: Payload produced by the check (e.g. the changelog entry).
    """

    name: str
    ok: bool
    reason: str | None = None
    details: list[str] = Field(default_factory=list)
    value: str | None = None

    @classmethod
    def passed(cls, name: str, value: str | None = None) -> CheckResult:
        return cls(name=name, ok=True, value=value)

    @classmethod
    def failed(cls, name: str, reason: str, *details: str) -> CheckResult:
        return cls(name=name, ok=False, reason=reason, details=list(details))


class ReleaseContext(BaseModel):
    """Immutable inputs shared by every stage of a release flow.

    Stages that produce data (the perform precheck reads the changelog)
    return an updated copy instead of mutating this one.
    """

    model_config = ConfigDict(frozen=True)

    gem: GemRecord
    version: str | None = None
    release_ref: str | None = None
    release_sha: str | None = None
    git_remote: str = "origin"
    git_user_name: str | None = None
    git_user_email: str | None = None
    dry_run: bool = False
    skip_checks: bool = False
    docs_dir: Path | None = None
    set_default_docs: bool = True
    api_key: str | None = None
    changelog: str | None = None
    release: ReleaseInfo | None = None

    @property
    def tag_name(self) -> str:
        return tag_name(self.gem.name, self.version or "")


def release_branch_name(gem_name: str) -> str:
    return f"release/{gem_name}"


def tag_name(gem_name: str, version: str) -> str:
    return f"{gem_name}/v{version}"
