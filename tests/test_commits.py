"""Tests for gem_releaser.commits."""

from __future__ import annotations

import datetime

import pytest

from gem_releaser.commits import (
    analyze_commits,
    classify_commit,
    compute_release_info,
    find_last_version,
    read_commits,
)
from gem_releaser.errors import ParseFailure
from gem_releaser.models import BumpLevel, ChangeKind, Commit, GemRecord

from conftest import FakeRunner

TODAY = datetime.date(2024, 3, 1)


def _commits(*messages: str) -> list[Commit]:
    return [Commit(sha=f"sha{i}", message=m) for i, m in enumerate(messages)]


class TestClassifyCommit:
    def test_scoped_fix(self) -> None:
        entries, level = classify_commit("fix(parser): handle empty input\n\nDetails here.")
        assert [(e.kind, e.text) for e in entries] == [(ChangeKind.FIX, "handle empty input")]
        assert level == BumpLevel.PATCH

    def test_bang_is_breaking(self) -> None:
        entries, level = classify_commit("feat!: drop Ruby 2.7")
        assert [(e.kind, e.text) for e in entries] == [(ChangeKind.BREAKING, "drop Ruby 2.7")]
        assert level == BumpLevel.MAJOR

    def test_breaking_body_keeps_subject(self) -> None:
        entries, level = classify_commit(
            "feat: new config format\n\nBREAKING CHANGE: old keys are ignored"
        )
        assert [(e.kind, e.text) for e in entries] == [
            (ChangeKind.BREAKING, "old keys are ignored"),
            (ChangeKind.FEAT, "new config format"),
        ]
        assert level == BumpLevel.MAJOR

    def test_hyphenated_breaking_footer(self) -> None:
        _, level = classify_commit("fix: x\n\nBREAKING-CHANGE: y")
        assert level == BumpLevel.MAJOR

    @pytest.mark.parametrize("message", ["chore: bump deps", "Merge branch 'main'", "", "feat:no space"])
    def test_ignored(self, message: str) -> None:
        assert classify_commit(message) == ([], None)


class TestAnalyzeCommits:
    def test_feature_and_fix(self) -> None:
        release = analyze_commits(
            "lib", "1.0.0", _commits("feat: add X", "fix: correct Y"), today=TODAY
        )

        assert release.new_version == "1.1.0"
        assert release.bump_level == BumpLevel.MINOR
        assert release.changelog_body == "* Feature: add X\n* Fixed: correct Y"

    def test_breaking_bumps_major(self) -> None:
        release = analyze_commits(
            "lib", "1.4.2", _commits("fix: a", "feat!: b", "docs: c"), today=TODAY
        )

        assert release.new_version == "2.0.0"
        assert release.changelog_body == (
            "* BREAKING CHANGE: b\n\n* Fixed: a\n* Documentation: c"
        )

    def test_no_qualifying_commits(self) -> None:
        release = analyze_commits("lib", "1.0.0", _commits("chore: tidy"), today=TODAY)

        assert release.new_version == "1.0.1"
        assert release.bump_level == BumpLevel.PATCH
        assert release.changelog_body == "(No significant changes)"

    def test_initial_release_ignores_commits(self) -> None:
        release = analyze_commits("lib", None, _commits("feat!: everything"), today=TODAY)

        assert release.new_version == "0.1.0"
        assert release.bump_level == BumpLevel.MINOR
        assert release.full_changelog == "### v0.1.0 / 2024-03-01\n\n* Initial release.\n"

    def test_override_version(self) -> None:
        release = analyze_commits(
            "lib", "1.0.0", _commits("fix: a"), override_version="3.0.0.rc.1", today=TODAY
        )
        assert release.new_version == "3.0.0.rc.1"
        assert release.bump_level == BumpLevel.PATCH

    def test_illegal_override(self) -> None:
        with pytest.raises(ParseFailure):
            analyze_commits("lib", "1.0.0", [], override_version="v2", today=TODAY)

    def test_is_pure(self) -> None:
        commits = _commits("feat: add X", "fix(io): correct Y\n\nBREAKING CHANGE: z")
        first = analyze_commits("lib", "1.0.0", commits, today=TODAY)
        second = analyze_commits("lib", "1.0.0", commits, today=TODAY)
        assert first == second


class TestGitReaders:
    def test_find_last_version(self) -> None:
        runner = FakeRunner(
            {("git", "tag", "--list", "lib/v*"): "lib/v1.2.0\nlib/v1.10.0\nlib/v1.9.9\n"}
        )
        assert find_last_version(runner, "lib") == "1.10.0"  # type: ignore[arg-type]

    def test_read_commits_filters_by_directory(self) -> None:
        runner = FakeRunner(
            {
                ("git", "log", "--reverse"): "aaa\nbbb",
                ("git", "show", "--name-only", "--format=", "aaa"): "lib-a/x.rb\nREADME.md",
                ("git", "show", "--name-only", "--format=", "bbb"): "lib-b/y.rb",
                ("git", "log", "-1", "--format=%B", "aaa"): "feat: touch a",
                ("git", "log", "-1", "--format=%B", "bbb"): "fix: touch b",
            }
        )

        commits = read_commits(runner, "lib-a/v1.0.0", "main", directory="lib-a")  # type: ignore[arg-type]

        assert [c.sha for c in commits] == ["aaa"]
        assert commits[0].message == "feat: touch a"
        assert runner.called("git", "log", "--reverse", "--format=%H", "lib-a/v1.0.0..main")

    def test_read_commits_root_gem_skips_file_lookup(self) -> None:
        runner = FakeRunner(
            {
                ("git", "log", "--reverse"): "aaa",
                ("git", "log", "-1", "--format=%B", "aaa"): "feat: x",
            }
        )

        commits = read_commits(runner, "w/v1.0.0", "main", directory=".")  # type: ignore[arg-type]

        assert len(commits) == 1
        assert not runner.called("git", "show")

    def test_compute_release_info(self) -> None:
        gem = GemRecord(
            name="widgets",
            directory=".",
            version_rb_path="lib/widgets/version.rb",
            version_constant=("Widgets", "VERSION"),
        )
        runner = FakeRunner(
            {
                ("git", "tag", "--list"): "widgets/v1.2.3",
                ("git", "log", "--reverse"): "aaa",
                ("git", "log", "-1", "--format=%B", "aaa"): "feat: add X",
            }
        )

        release = compute_release_info(runner, gem, "main", today=TODAY)  # type: ignore[arg-type]

        assert release.last_version == "1.2.3"
        assert release.new_version == "1.3.0"
        assert runner.called("git", "log", "--reverse", "--format=%H", "widgets/v1.2.3..main")
