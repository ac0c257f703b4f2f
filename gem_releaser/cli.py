"""CLI entry point for gem-releaser."""

from __future__ import annotations

import functools
import json
import re
from dataclasses import dataclass
from pathlib import Path

import click

from gem_releaser.config import DEFAULT_CONFIG_PATH, get_gem, load_repo_config
from gem_releaser.errors import ConfigError, ReleaseError
from gem_releaser.github import GitHubHost
from gem_releaser.models import ReleaseContext
from gem_releaser.pipeline import PERFORM_STAGES, PREPARE_STAGES, ReleasePipeline
from gem_releaser.shell import CommandRunner, fatal, in_github_actions, warning
from gem_releaser.versions import parse_tag_name


@dataclass
class CliState:
    config_path: Path
    current_repo: str | None


def build_pipeline(state: CliState) -> ReleasePipeline:
    """Load the config and wire real git/gh collaborators."""
    config = load_repo_config(state.config_path)
    root = state.config_path.resolve().parent
    runner = CommandRunner(cwd=root)
    host = GitHubHost(runner, config.repo)
    return ReleasePipeline(
        config, runner, host, root=root, current_repo=state.current_repo
    )


def handle_release_errors(func):
    """Turn ReleaseError into an annotated message and exit code 1."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except ReleaseError as exc:
            fatal(exc.message, *exc.details)

    return wrapper


def parse_gem_list(value: str | None) -> list[tuple[str, str | None]]:
    """Parse "gem1:1.2.0,gem2" into (name, override version) pairs."""
    pairs: list[tuple[str, str | None]] = []
    for item in re.split(r"[\s,]+", value or ""):
        if not item:
            continue
        name, _, version = item.partition(":")
        pairs.append((name, version or None))
    return pairs


def releases_enabled(value: str | None) -> bool:
    """Releases are real only when --enable-releases starts with "t"."""
    return bool(re.match(r"^t", value or "", re.IGNORECASE))


def load_event_payload(event_path: Path | None, key: str) -> dict:
    """Read the GitHub event payload and return its ``key`` section."""
    if event_path is None or not event_path.is_file():
        raise ConfigError("No GitHub event payload found", "Pass --event-path.")
    try:
        payload = json.loads(event_path.read_text())
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Unable to parse {event_path}", str(exc)) from exc
    if not isinstance(payload, dict) or key not in payload:
        raise ConfigError(f"{event_path} is not a {key} event")
    return payload[key]


def event_path_option(help_text: str):
    def decorator(func):
        return click.option(
            "--event-path",
            envvar="GITHUB_EVENT_PATH",
            type=click.Path(dir_okay=False, path_type=Path),
            default=None,
            help=help_text,
        )(func)

    return decorator


def git_remote_option(func):
    return click.option(
        "--git-remote",
        default="origin",
        show_default=True,
        help="Git remote to push to and verify.",
    )(func)


def git_identity_options(func):
    func = click.option(
        "--git-user-email", envvar="GIT_USER_EMAIL", default=None, help="Commit email."
    )(func)
    func = click.option(
        "--git-user-name", envvar="GIT_USER_NAME", default=None, help="Commit author."
    )(func)
    return func


def publish_options(func):
    func = click.option(
        "--api-key",
        envvar="RUBYGEMS_API_KEY",
        default=None,
        help="RubyGems API key used for gem push.",
    )(func)
    func = click.option(
        "--docs-dir",
        envvar="RELEASE_DOCS_DIR",
        type=click.Path(file_okay=False, path_type=Path),
        default=None,
        help="Checkout of the gh-pages branch; docs are skipped if omitted.",
    )(func)
    func = click.option(
        "--enable-releases",
        default=None,
        help='Actually publish ("true"); anything else is a dry run.',
    )(func)
    return func


@click.group()
@click.version_option(package_name="gem-releaser")
@click.option(
    "-c",
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=DEFAULT_CONFIG_PATH,
    envvar="GEM_RELEASER_CONFIG",
    show_default=True,
    help="Release config file (YAML, or TOML by suffix).",
)
@click.option(
    "--repo",
    "current_repo",
    envvar="GITHUB_REPOSITORY",
    default=None,
    help="Repository slug of this checkout; defaults to the git remote URL.",
)
@click.pass_context
def cli(ctx: click.Context, config_path: Path, current_repo: str | None) -> None:
    """Release automation for Ruby gems hosted on GitHub."""
    ctx.obj = CliState(config_path=config_path, current_repo=current_repo)


@cli.command()
@click.argument("gem_name")
@click.argument("version")
@git_remote_option
@click.pass_obj
@handle_release_errors
def precheck(state: CliState, gem_name: str, version: str, git_remote: str) -> None:
    """Run release prechecks for GEM_NAME VERSION."""
    pipeline = build_pipeline(state)
    gem = get_gem(pipeline.config, gem_name)
    click.secho(f"Running prechecks for releasing {gem.name} {version}...", bold=True)
    pipeline.verify_release(ReleaseContext(gem=gem, version=version, git_remote=git_remote))
    click.secho("SUCCESS", fg="green", bold=True)


@cli.command()
@click.option(
    "--gems",
    default=None,
    help="Gems to release, e.g. 'foo,bar:2.0.0'. Defaults to all gems.",
)
@click.option("--release-ref", default=None, help="Branch to release from.")
@click.option("--only", type=click.Choice(PREPARE_STAGES), default=None)
@click.option("-y", "--yes", is_flag=True, help="Skip confirmation.")
@git_remote_option
@git_identity_options
@click.pass_obj
@handle_release_errors
def prepare(
    state: CliState,
    gems: str | None,
    release_ref: str | None,
    only: str | None,
    yes: bool,
    git_remote: str,
    git_user_name: str | None,
    git_user_email: str | None,
) -> None:
    """Open release pull requests with version and changelog updates."""
    pipeline = build_pipeline(state)
    release_ref = (
        release_ref
        or pipeline.runner.git("branch", "--show-current")
        or pipeline.config.main_branch
    )
    requested = parse_gem_list(gems) or [(name, None) for name in pipeline.config.gems]

    for gem_name, override in requested:
        gem = get_gem(pipeline.config, gem_name)
        release = pipeline.build_release_info(gem, release_ref, override)
        if not yes:
            if release.last_version:
                click.secho(f"Last {gem.name} version: {release.last_version}", bold=True)
            else:
                click.secho(f"No previous {gem.name} version.", bold=True)
            click.secho(f"New {gem.name} changelog:", bold=True)
            click.echo(release.full_changelog)
            if not click.confirm("Create release PR?", default=True):
                warning(f"Release of {gem.name} aborted")
                continue
        ctx = ReleaseContext(
            gem=gem,
            version=release.new_version,
            release_ref=release_ref,
            git_remote=git_remote,
            git_user_name=git_user_name,
            git_user_email=git_user_email,
            release=release,
        )
        pipeline.prepare(ctx, only=only)


@cli.command()
@click.argument("gem_name")
@click.argument("version")
@click.option("-y", "--yes", is_flag=True, help="Skip confirmation.")
@git_remote_option
@click.pass_obj
@handle_release_errors
def trigger(
    state: CliState, gem_name: str, version: str, yes: bool, git_remote: str
) -> None:
    """Verify GEM_NAME VERSION and push its release tag."""
    pipeline = build_pipeline(state)
    gem = get_gem(pipeline.config, gem_name)
    ctx = ReleaseContext(gem=gem, version=version, git_remote=git_remote)
    if yes:
        pipeline.trigger(ctx)
        return
    pipeline.trigger(ctx, only="precheck")
    if not click.confirm(f"Release {gem.name} {version}?", default=True):
        raise ReleaseError("Release aborted")
    pipeline.trigger(ctx, only="tag-and-push")


@cli.command()
@click.argument("gem_name", required=False)
@click.argument("version", required=False)
@event_path_option("GitHub release event payload; read when GEM_NAME is omitted.")
@click.option("--only", type=click.Choice(PERFORM_STAGES), default=None)
@click.option("--skip-checks", is_flag=True, help="Bypass release checks.")
@click.option(
    "--release-sha",
    envvar="GITHUB_SHA",
    default=None,
    help="Commit being released (defaults to HEAD).",
)
@click.option("-y", "--yes", is_flag=True, help="Skip confirmation.")
@publish_options
@git_remote_option
@git_identity_options
@click.pass_obj
@handle_release_errors
def perform(
    state: CliState,
    gem_name: str | None,
    version: str | None,
    event_path: Path | None,
    only: str | None,
    skip_checks: bool,
    release_sha: str | None,
    yes: bool,
    enable_releases: str | None,
    docs_dir: Path | None,
    api_key: str | None,
    git_remote: str,
    git_user_name: str | None,
    git_user_email: str | None,
) -> None:
    """Build and publish GEM_NAME VERSION (usually called from CI).

    Without arguments, the gem and version come from the tag of the GitHub
    release event in --event-path.
    """
    if gem_name is None:
        release = load_event_payload(event_path, "release")
        gem_name, version = parse_tag_name(release.get("tag_name") or "")
    elif version is None:
        raise ConfigError(f"No version given for {gem_name}")
    if not in_github_actions() and not yes:
        if not click.confirm("Perform a release locally, outside the normal process?"):
            raise ReleaseError("Release aborted")

    pipeline = build_pipeline(state)
    gem = get_gem(pipeline.config, gem_name)
    release_sha = release_sha or pipeline.runner.git("rev-parse", "HEAD")
    ctx = ReleaseContext(
        gem=gem,
        version=version,
        release_sha=release_sha,
        git_remote=git_remote,
        git_user_name=git_user_name,
        git_user_email=git_user_email,
        dry_run=not releases_enabled(enable_releases),
        skip_checks=skip_checks,
        docs_dir=docs_dir.resolve() if docs_dir else None,
        api_key=api_key,
    )
    if in_github_actions():
        pipeline.on_error(pipeline.release_error_reporter(gem.name, release_sha))
    pipeline.perform(ctx, only=only)


@cli.command("post-push")
@click.argument("ci_result")
@click.option("--sha", envvar="GITHUB_SHA", default=None, help="Pushed commit.")
@publish_options
@git_remote_option
@git_identity_options
@click.pass_obj
@handle_release_errors
def post_push(
    state: CliState,
    ci_result: str,
    sha: str | None,
    enable_releases: str | None,
    docs_dir: Path | None,
    api_key: str | None,
    git_remote: str,
    git_user_name: str | None,
    git_user_email: str | None,
) -> None:
    """Trigger a release or warn open release PRs after a push."""
    pipeline = build_pipeline(state)
    sha = sha or pipeline.runner.git("rev-parse", "HEAD")
    defaults = ReleaseContext(
        gem=get_gem(pipeline.config, None),
        git_remote=git_remote,
        git_user_name=git_user_name,
        git_user_email=git_user_email,
        dry_run=not releases_enabled(enable_releases),
        docs_dir=docs_dir.resolve() if docs_dir else None,
        api_key=api_key,
    )
    pipeline.post_push(sha, ci_result, perform_defaults=defaults)


@cli.command()
@event_path_option("GitHub pull_request event payload.")
@git_remote_option
@click.pass_obj
@handle_release_errors
def abort(state: CliState, event_path: Path | None, git_remote: str) -> None:
    """Mark a release PR closed without merging as aborted."""
    pull_request = load_event_payload(event_path, "pull_request")
    pipeline = build_pipeline(state)
    pipeline.abort(pull_request, git_remote=git_remote)


@cli.command("gem")
@click.argument("gem_name")
@click.argument("version")
@click.option("--dry-run/--no-dry-run", default=False, show_default=True)
@click.option("--api-key", envvar="RUBYGEMS_API_KEY", default=None)
@git_remote_option
@click.pass_obj
@handle_release_errors
def gem_command(
    state: CliState,
    gem_name: str,
    version: str,
    dry_run: bool,
    api_key: str | None,
    git_remote: str,
) -> None:
    """Build and push GEM_NAME VERSION from the local checkout."""
    pipeline = build_pipeline(state)
    gem = get_gem(pipeline.config, gem_name)
    ctx = ReleaseContext(
        gem=gem,
        version=version,
        git_remote=git_remote,
        dry_run=dry_run,
        api_key=api_key,
    )
    ctx = pipeline.local_prechecks(ctx)
    click.secho(
        "WARNING: You are releasing locally, outside the normal process!",
        fg="red",
        bold=True,
    )
    if not click.confirm(f"Build and push {gem.name} {version} gem?", default=False):
        raise ReleaseError("Release aborted")
    pipeline.release_gem_locally(ctx)


@cli.command("docs")
@click.argument("gem_name")
@click.argument("version")
@click.option(
    "--docs-dir",
    envvar="RELEASE_DOCS_DIR",
    type=click.Path(file_okay=False, path_type=Path),
    required=True,
    help="Checkout of the gh-pages branch.",
)
@click.option("--dry-run/--no-dry-run", default=False, show_default=True)
@click.option(
    "--set-default-version/--no-set-default-version",
    default=True,
    show_default=True,
    help="Point the gh-pages 404 redirect at this version.",
)
@git_remote_option
@click.pass_obj
@handle_release_errors
def docs_command(
    state: CliState,
    gem_name: str,
    version: str,
    docs_dir: Path,
    dry_run: bool,
    set_default_version: bool,
    git_remote: str,
) -> None:
    """Build GEM_NAME VERSION docs and push them to gh-pages."""
    pipeline = build_pipeline(state)
    gem = get_gem(pipeline.config, gem_name)
    ctx = ReleaseContext(
        gem=gem,
        version=version,
        git_remote=git_remote,
        dry_run=dry_run,
        docs_dir=docs_dir.resolve(),
        set_default_docs=set_default_version,
    )
    ctx = pipeline.local_prechecks(ctx)
    click.secho(
        "WARNING: You are pushing docs locally, outside the normal process!",
        fg="red",
        bold=True,
    )
    if not click.confirm(f"Build and push {gem.name} {version} docs?", default=False):
        raise ReleaseError("Push aborted")
    pipeline.release_docs_locally(ctx)
