"""Release pipeline: verify → mutate → branch → tag → build → publish.

This module orchestrates the gem release lifecycle as a set of linear
flows made of named stages:

- prepare:  precheck → mutate-version-and-changelog → commit-and-branch → open-pr
- trigger:  precheck → tag-and-push
- perform:  precheck → build-artifact → publish-artifact → build-docs
            → publish-docs → update-pr

Two event-driven flows move release PRs between states:

- post-push: after a push to the main line, trigger the release if the push
  merged a release PR, otherwise warn open release PRs about the new commit
- abort: a release PR closed without merging is labeled aborted

The release-state label on the PR is the only state that survives between
runs; everything else is re-derived from git and GitHub each time.
"""

from __future__ import annotations

import datetime
import shutil
from collections.abc import Callable
from pathlib import Path

from .checks import (
    enforce,
    verify_changelog_content,
    verify_git_clean,
    verify_github_checks,
    verify_library_version,
    verify_repo_identity,
)
from .commits import compute_release_info
from .config import get_gem
from .errors import (
    ConfigError,
    DuplicateReleaseError,
    ReleaseError,
    RemoteCallFailure,
    VerificationFailure,
)
from .github import RemoteHost
from .models import (
    GemRecord,
    PullRequestRef,
    ReleaseContext,
    ReleaseInfo,
    ReleaseState,
    RepoConfig,
)
from .shell import CommandRunner, info, step, success, warning
from .sources import (
    insert_changelog_entry,
    read_version_rb,
    set_default_docs_version,
    write_version_rb,
)
from .versions import is_plain_release

Stage = Callable[[ReleaseContext], "ReleaseContext | None"]
ErrorCallback = Callable[[str], None]

PREPARE_STAGES = (
    "precheck",
    "mutate-version-and-changelog",
    "commit-and-branch",
    "open-pr",
)
TRIGGER_STAGES = ("precheck", "tag-and-push")
PERFORM_STAGES = (
    "precheck",
    "build-artifact",
    "publish-artifact",
    "build-docs",
    "publish-docs",
    "update-pr",
)

PR_BODY_TEMPLATE = """\
This pull request prepares a release of **{gem}** version **{version}**.

Previous version: {last_version}

Changelog entry:

```
{changelog}
```

Merging this pull request will trigger the release once CI passes.
Closing it without merging aborts the release.
"""

ADDITIONAL_COMMIT_TEMPLATE = """\
WARNING: An additional commit was added while this release PR was open.
You may need to add to the changelog, or close this PR and prepare a new one.

Commit link: https://github.com/{repo}/commit/{sha}

Message:
{message}
"""


class ReleasePipeline:
    """Runs release flows against injected git/GitHub collaborators.

    Args:
        config: Repository release metadata.
        runner: Runs git and gem commands.
        host: Reads and writes pull request, issue and release state.
        root: Repository root; gem directories are relative to it.
        today: Date used for changelog headers (defaults to today).
        current_repo: Repository slug reported by CI, used instead of the
            git remote URL for the repo identity check.
    """

    def __init__(
        self,
        config: RepoConfig,
        runner: CommandRunner,
        host: RemoteHost,
        *,
        root: Path | None = None,
        today: datetime.date | None = None,
        current_repo: str | None = None,
    ) -> None:
        self.config = config
        self.runner = runner
        self.host = host
        self.root = root or Path.cwd()
        self.today = today
        self.current_repo = current_repo
        self._error_callback: ErrorCallback | None = None

    # ------------------------------------------------------------------
    # Error callback
    # ------------------------------------------------------------------

    def on_error(self, callback: ErrorCallback | None) -> None:
        """Register a function called with the failure text before a
        failing flow re-raises its error."""
        self._error_callback = callback

    def report_release_error(self, pr: PullRequestRef, message: str) -> None:
        """Mark a release PR as failed and open a tracking issue."""
        self.host.set_release_state(pr, ReleaseState.ERROR)
        self.host.add_comment(pr.number, message)
        issue = self.host.create_issue(
            title=f"Release of {pr.gem_name} failed",
            body=f"{message}\n\nRelease PR: #{pr.number}",
        )
        info(f"Opened issue #{issue} for the failed release")

    def release_error_reporter(self, gem_name: str, sha: str) -> ErrorCallback:
        """Build an error callback that reports to the triggered release PR."""

        def report(message: str) -> None:
            prs = self.host.find_release_prs(
                gem_name=gem_name, merge_sha=sha, state=ReleaseState.TRIGGERED
            )
            if not prs:
                warning("Unable to find a release PR to report the error to.")
                return
            self.report_release_error(prs[0], message)

        return report

    def _run_stages(
        self,
        flow: str,
        stages: dict[str, Stage],
        ctx: ReleaseContext,
        only: str | None,
    ) -> ReleaseContext:
        if only is not None and only not in stages:
            raise ConfigError(
                f"Unknown {flow} stage {only!r}",
                f"Valid stages: {', '.join(stages)}",
            )
        try:
            for name, stage in stages.items():
                if only is not None and name != only:
                    continue
                step(f"{flow}: {name} ({ctx.gem.name})")
                try:
                    ctx = stage(ctx) or ctx
                except OSError as exc:
                    # File operations (docs copy, version file edits)
                    raise ReleaseError(f"{flow} stage {name} failed", str(exc)) from exc
        except ReleaseError as exc:
            if self._error_callback is not None:
                self._error_callback(exc.full_text())
            raise
        return ctx

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    def _sha(self, ctx: ReleaseContext) -> str:
        return ctx.release_sha or self.runner.git("rev-parse", "HEAD")

    def _require_version(self, ctx: ReleaseContext) -> str:
        if not ctx.version:
            raise ConfigError(f"No version given for {ctx.gem.name}")
        return ctx.version

    def _release(self, ctx: ReleaseContext) -> ReleaseInfo:
        if ctx.release is None:
            raise ConfigError(f"No release analysis available for {ctx.gem.name}")
        return ctx.release

    def _configure_git_identity(self, ctx: ReleaseContext, cwd: Path | None = None) -> None:
        if ctx.git_user_name:
            self.runner.git("config", "user.name", ctx.git_user_name, cwd=cwd)
        if ctx.git_user_email:
            self.runner.git("config", "user.email", ctx.git_user_email, cwd=cwd)

    def _check_identity(self, ctx: ReleaseContext, *, warn_only: bool = False) -> None:
        enforce(
            verify_repo_identity(
                self.runner,
                self.config.repo,
                ctx.git_remote,
                current_repo=self.current_repo,
            ),
            warn_only=warn_only,
        )

    def verify_release(self, ctx: ReleaseContext, *, warn_only: bool = False) -> str:
        """Run the standard release checks for a gem version.

        Checks git clean, version file, changelog entry and CI status.

        Returns:
            The changelog entry for the version ("" if it failed leniently).
        """
        version = self._require_version(ctx)
        enforce(verify_git_clean(self.runner), warn_only=warn_only)
        enforce(verify_library_version(ctx.gem, version, self.root), warn_only=warn_only)
        changelog = enforce(
            verify_changelog_content(ctx.gem, version, self.root, self.today),
            warn_only=warn_only,
        ).value
        enforce(verify_github_checks(self.host, self._sha(ctx)), warn_only=warn_only)
        return changelog or ""

    def _ensure_tag_absent(self, tag: str) -> None:
        if self.runner.git("tag", "--list", tag):
            raise VerificationFailure(
                f"Tag {tag} already exists",
                "A released version is never re-tagged; release a new version instead.",
            )

    # ------------------------------------------------------------------
    # Prepare flow
    # ------------------------------------------------------------------

    def build_release_info(
        self,
        gem: GemRecord,
        release_ref: str,
        override_version: str | None = None,
    ) -> ReleaseInfo:
        """Analyze commits since the gem's last release."""
        return compute_release_info(
            self.runner,
            gem,
            release_ref,
            override_version=override_version,
            multiple_gems=len(self.config.gems) > 1,
            today=self.today,
        )

    def prepare(self, ctx: ReleaseContext, only: str | None = None) -> ReleaseInfo:
        """Open a release PR that bumps the version and changelog.

        ``ctx.release`` must hold the analysis from build_release_info.
        """
        release = self._release(ctx)
        stages: dict[str, Stage] = {
            "precheck": self._prepare_precheck,
            "mutate-version-and-changelog": self._mutate_sources,
            "commit-and-branch": self._commit_and_branch,
            "open-pr": self._open_pr,
        }
        self._run_stages("prepare", stages, ctx, only)
        return release

    def _prepare_precheck(self, ctx: ReleaseContext) -> None:
        enforce(verify_git_clean(self.runner))
        self._check_identity(ctx)
        existing = self.host.find_release_prs(gem_name=ctx.gem.name)
        if existing:
            raise DuplicateReleaseError(
                f"A release of {ctx.gem.name} is already pending in PR #{existing[0].number}",
                "Merge or close that pull request before preparing another release.",
            )
        self._ensure_tag_absent(self._release(ctx).tag_name)
        info("No pending release found")

    def _mutate_sources(self, ctx: ReleaseContext) -> None:
        release = self._release(ctx)
        version_file = ctx.gem.version_file(self.root)
        write_version_rb(version_file, release.new_version)
        info(f"Updated {version_file.relative_to(self.root)} → {release.new_version}")
        changelog_file = ctx.gem.changelog_file(self.root)
        insert_changelog_entry(changelog_file, release.full_changelog)
        info(f"Added changelog entry to {changelog_file.relative_to(self.root)}")

    def _commit_and_branch(self, ctx: ReleaseContext) -> None:
        release = self._release(ctx)
        branch = release.release_branch_name
        self._configure_git_identity(ctx)
        self.runner.git("checkout", "-B", branch)
        self.runner.git(
            "add",
            str(ctx.gem.version_file(self.root).relative_to(self.root)),
            str(ctx.gem.changelog_file(self.root).relative_to(self.root)),
        )
        self.runner.git("commit", "-m", release.commit_title)
        self.runner.git("push", "-f", ctx.git_remote, branch)
        if ctx.release_ref:
            self.runner.git("checkout", ctx.release_ref)
        info(f"Pushed {branch}")

    def _open_pr(self, ctx: ReleaseContext) -> None:
        release = self._release(ctx)
        body = PR_BODY_TEMPLATE.format(
            gem=release.gem_name,
            version=release.new_version,
            last_version=release.last_version or "(none)",
            changelog=release.full_changelog.rstrip(),
        )
        pr = self.host.create_pull_request(
            title=release.commit_title,
            head=release.release_branch_name,
            base=ctx.release_ref or self.config.main_branch,
            body=body,
        )
        self.host.set_release_state(pr, ReleaseState.PENDING)
        success(f"SUCCESS: Opened release PR #{pr.number} for {release.gem_name}")

    # ------------------------------------------------------------------
    # Trigger flow
    # ------------------------------------------------------------------

    def trigger(self, ctx: ReleaseContext, only: str | None = None) -> None:
        """Verify a version and push its release tag."""
        stages: dict[str, Stage] = {
            "precheck": self._trigger_precheck,
            "tag-and-push": self._tag_and_push,
        }
        self._run_stages("trigger", stages, ctx, only)

    def _trigger_precheck(self, ctx: ReleaseContext) -> ReleaseContext:
        changelog = self.verify_release(ctx)
        info("Found changelog entry:")
        info(changelog)
        return ctx.model_copy(update={"changelog": changelog})

    def _tag_and_push(self, ctx: ReleaseContext) -> None:
        self._require_version(ctx)
        tag = ctx.tag_name
        self._ensure_tag_absent(tag)
        self.runner.git("tag", tag, self._sha(ctx))
        self.runner.git("push", ctx.git_remote, tag)
        success(f"SUCCESS: Pushed tag {tag}")

    # ------------------------------------------------------------------
    # Perform flow
    # ------------------------------------------------------------------

    def perform(self, ctx: ReleaseContext, only: str | None = None) -> ReleaseContext:
        """Build and publish a gem version and its docs."""
        self._require_version(ctx)
        stages: dict[str, Stage] = {
            "precheck": self._perform_precheck,
            "build-artifact": self._build_artifact,
            "publish-artifact": self._publish_artifact,
            "build-docs": self._build_docs,
            "publish-docs": self._publish_docs,
            "update-pr": self._update_pr,
        }
        return self._run_stages("perform", stages, ctx, only)

    def local_prechecks(self, ctx: ReleaseContext) -> ReleaseContext:
        """Run every release check in warn-only mode.

        Used by local releases, which bypass the normal process.
        """
        self._check_identity(ctx, warn_only=True)
        changelog = self.verify_release(ctx, warn_only=True)
        return ctx.model_copy(update={"changelog": changelog})

    def release_gem_locally(self, ctx: ReleaseContext) -> None:
        """Build and push a gem from a local checkout."""
        stages: dict[str, Stage] = {
            "build-artifact": self._build_artifact,
            "publish-artifact": self._publish_artifact,
        }
        self._run_stages("gem", stages, ctx, None)

    def release_docs_locally(self, ctx: ReleaseContext) -> None:
        """Build docs and push them to the gh-pages checkout in ``ctx.docs_dir``."""
        if ctx.docs_dir is None:
            raise ConfigError(f"No gh-pages checkout given for {ctx.gem.name} docs")
        stages: dict[str, Stage] = {
            "build-docs": self._build_docs,
            "publish-docs": self._publish_docs,
        }
        self._run_stages("docs", stages, ctx, None)

    def _perform_precheck(self, ctx: ReleaseContext) -> ReleaseContext:
        version = self._require_version(ctx)
        if ctx.skip_checks:
            info("Skipping release checks")
            result = verify_changelog_content(ctx.gem, version, self.root, self.today)
            return ctx.model_copy(update={"changelog": result.value or ""})
        self._check_identity(ctx)
        enforce(verify_library_version(ctx.gem, version, self.root))
        changelog = enforce(
            verify_changelog_content(ctx.gem, version, self.root, self.today)
        ).value
        enforce(verify_github_checks(self.host, self._sha(ctx)))
        return ctx.model_copy(update={"changelog": changelog})

    def _gem_file(self, ctx: ReleaseContext) -> Path:
        return Path("pkg") / f"{ctx.gem.name}-{ctx.version}.gem"

    def _build_artifact(self, ctx: ReleaseContext) -> None:
        gem_dir = ctx.gem.gem_dir(self.root)
        (gem_dir / "pkg").mkdir(parents=True, exist_ok=True)
        info(f"Building {ctx.gem.name} {ctx.version} gem...")
        self.runner.run(
            "gem",
            "build",
            f"{ctx.gem.name}.gemspec",
            "-o",
            str(self._gem_file(ctx)),
            cwd=gem_dir,
            capture=False,
        )

    def _publish_artifact(self, ctx: ReleaseContext) -> None:
        gem_dir = ctx.gem.gem_dir(self.root)
        built = self._gem_file(ctx)
        if ctx.dry_run:
            if not (gem_dir / built).is_file():
                raise VerificationFailure(f"{built} didn't get built.")
            success(f"SUCCESS: Mock release of {ctx.gem.name} {ctx.version}")
            return

        env = {"GEM_HOST_API_KEY": ctx.api_key} if ctx.api_key else None
        if env is None and not (Path.home() / ".gem" / "credentials").is_file():
            raise ConfigError(
                "RubyGems API key not provided",
                "Pass --api-key or set RUBYGEMS_API_KEY.",
            )
        self.runner.run("gem", "push", str(built), cwd=gem_dir, env=env, capture=False)
        changelog = ctx.changelog
        if changelog is None:
            # Stage run on its own; precheck did not read the entry.
            changelog = verify_changelog_content(
                ctx.gem, self._require_version(ctx), self.root, self.today
            ).value
        self.host.create_release(
            tag=ctx.tag_name,
            commitish=self._sha(ctx),
            name=f"{ctx.gem.name} {ctx.version}",
            body=changelog or "",
        )
        success(f"SUCCESS: Released {ctx.gem.name} {ctx.version}")

    def _build_docs(self, ctx: ReleaseContext) -> None:
        if ctx.docs_dir is None:
            info("No docs directory given; skipping docs")
            return
        version = self._require_version(ctx)
        gem_dir = ctx.gem.gem_dir(self.root)
        self._configure_git_identity(ctx, cwd=ctx.docs_dir)

        info(f"Building {ctx.gem.name} {version} docs...")
        shutil.rmtree(gem_dir / ".yardoc", ignore_errors=True)
        shutil.rmtree(gem_dir / "doc", ignore_errors=True)
        self.runner.run(*(ctx.gem.docs_builder_tool or ("yardoc",)), cwd=gem_dir, capture=False)

        dest = ctx.docs_dir / ctx.gem.gh_pages_directory / f"v{version}"
        shutil.rmtree(dest, ignore_errors=True)
        shutil.copytree(gem_dir / "doc", dest)
        info(f"Copied docs to {dest}")

        if ctx.set_default_docs and is_plain_release(version):
            page = ctx.docs_dir / "404.html"
            if page.is_file() and set_default_docs_version(
                page, ctx.gem.gh_pages_version_var, version
            ):
                info(f"Default docs version set to {version}")
            else:
                warning(f"Unable to set the default docs version in {page}")

    def _publish_docs(self, ctx: ReleaseContext) -> None:
        if ctx.docs_dir is None:
            info("No docs directory given; skipping docs")
            return
        self.runner.git("add", ".", cwd=ctx.docs_dir)
        self.runner.git(
            "commit",
            "-m",
            f"Generate yardocs for {ctx.gem.name} {ctx.version}",
            cwd=ctx.docs_dir,
        )
        if ctx.dry_run:
            success(f"SUCCESS: Mock docs push for {ctx.gem.name} {ctx.version}")
            return
        self.runner.git("push", ctx.git_remote, "gh-pages", cwd=ctx.docs_dir)
        success(f"SUCCESS: Pushed docs for {ctx.gem.name} {ctx.version}")

    def _update_pr(self, ctx: ReleaseContext) -> None:
        prs = self.host.find_release_prs(
            gem_name=ctx.gem.name,
            merge_sha=self._sha(ctx),
            state=ReleaseState.TRIGGERED,
        )
        if not prs:
            warning("Unable to find a release PR to update.")
            return
        pr = prs[0]
        self.host.set_release_state(pr, ReleaseState.COMPLETE)
        self.host.add_comment(pr.number, "Release complete!")
        info(f"Marked release PR #{pr.number} complete")

    # ------------------------------------------------------------------
    # Event flows
    # ------------------------------------------------------------------

    def post_push(
        self,
        sha: str,
        ci_result: str,
        perform_defaults: ReleaseContext | None = None,
    ) -> None:
        """Handle a push to the main line.

        Args:
            sha: The pushed commit.
            ci_result: CI outcome for the commit ("success" or anything else).
            perform_defaults: Options (docs dir, API key, dry run, git
                identity) for an inline perform run; its gem and version are
                replaced.
        """
        step(f"Post-push handling for {sha}")
        prs = self.host.find_release_prs(merge_sha=sha)
        if prs:
            pr = prs[0]
            info(f"This appears to be a merge of release PR #{pr.number}.")
            self._handle_release_merge(pr, sha, ci_result, perform_defaults)
            return

        info("This was not a merge of a release PR.")
        self.update_open_release_prs(sha)
        if ci_result != "success":
            raise VerificationFailure(
                f"Exiting with an error code because the CI result was {ci_result}."
            )

    def _handle_release_merge(
        self,
        pr: PullRequestRef,
        sha: str,
        ci_result: str,
        perform_defaults: ReleaseContext | None,
    ) -> None:
        gem = get_gem(self.config, pr.gem_name)
        version = read_version_rb(gem.version_file(self.root))
        info(f"The release is for {gem.name} {version}.")

        if ci_result != "success":
            message = (
                f"Release of {gem.name} {version} failed because the CI result "
                f"was {ci_result}."
            )
            self.report_release_error(pr, message)
            raise VerificationFailure(message)

        pr = self.host.set_release_state(pr, ReleaseState.TRIGGERED)
        if self.config.perform_workflow:
            self.host.dispatch_workflow(
                self.config.perform_workflow,
                ref=sha,
                inputs={"gem": gem.name, "version": version, "flags": "--skip-checks"},
            )
            success(f"SUCCESS: Dispatched {self.config.perform_workflow} for {gem.name} {version}")
            return

        base = perform_defaults or ReleaseContext(gem=gem)
        ctx = base.model_copy(
            update={"gem": gem, "version": version, "release_sha": sha, "skip_checks": True}
        )
        previous = self._error_callback
        self.on_error(lambda message: self.report_release_error(pr, message))
        try:
            self.perform(ctx)
        finally:
            self.on_error(previous)

    def update_open_release_prs(self, sha: str) -> None:
        """Warn every pending release PR that a new commit landed.

        Advisory only: failures to comment are reported as warnings.
        """
        info("Searching for open release PRs...")
        prs = self.host.find_release_prs()
        if not prs:
            info("No existing release PRs to update.")
            return
        commit_message = self.runner.git("log", "-1", "--pretty=%B", sha)
        message = ADDITIONAL_COMMIT_TEMPLATE.format(
            repo=self.config.repo, sha=sha, message=commit_message
        )
        for pr in prs:
            info(f"Updating PR #{pr.number}...")
            try:
                self.host.add_comment(pr.number, message)
            except RemoteCallFailure as exc:
                warning(f"Unable to comment on PR #{pr.number}: {exc.message}")

    def abort(self, pull_request: dict, git_remote: str = "origin") -> PullRequestRef | None:
        """Mark a pending release PR that was closed without merging.

        Args:
            pull_request: The ``pull_request`` object of a GitHub event payload.

        Returns:
            The relabeled PR, or None if the PR was ignored.
        """
        enforce(
            verify_repo_identity(
                self.runner, self.config.repo, git_remote, current_repo=self.current_repo
            )
        )
        pr = PullRequestRef.from_api(pull_request)
        if pr.merged_at:
            info(f"PR #{pr.number} is merged. Ignoring.")
            return None
        if pr.release_state != ReleaseState.PENDING:
            info(f"PR #{pr.number} does not have the pending label. Ignoring.")
            return None

        info(f"Updating release PR #{pr.number} to mark it as aborted.")
        updated = self.host.set_release_state(pr, ReleaseState.ABORTED)
        self.host.add_comment(pr.number, "Release PR closed without merging.")
        return updated
