"""Shell and git utilities.

Provides a small wrapper around subprocess calls for running git, gh and
gem, plus output formatting helpers that understand GitHub Actions
annotations.
"""

from __future__ import annotations

import os
import subprocess
import sys
from collections.abc import Mapping
from pathlib import Path

import click

from .errors import RemoteCallFailure


class CommandRunner:
    """Runs external commands on behalf of the pipeline.

    The pipeline never calls subprocess directly; it receives a runner so
    tests can substitute a fake.

    Args:
        cwd: Default working directory for commands (usually the repo root).
    """

    def __init__(self, cwd: Path | None = None) -> None:
        self.cwd = cwd

    def run(
        self,
        *args: str,
        check: bool = True,
        capture: bool = True,
        input: str | None = None,
        cwd: Path | str | None = None,
        env: Mapping[str, str] | None = None,
    ) -> subprocess.CompletedProcess[str]:
        """Run a command.

        Args:
            *args: Command and arguments (e.g., "gem", "build", "foo.gemspec").
            check: If True (default), raise RemoteCallFailure on non-zero exit.
            capture: Capture stdout/stderr instead of streaming to the terminal.
            input: Text fed to the command's stdin.
            cwd: Working directory; defaults to the runner's cwd.
            env: Extra environment variables layered over os.environ.

        Returns:
            CompletedProcess with returncode and (when captured) output.
        """
        full_env = {**os.environ, **env} if env else None
        try:
            result = subprocess.run(
                list(args),
                capture_output=capture,
                text=True,
                input=input,
                cwd=cwd or self.cwd,
                env=full_env,
            )
        except OSError as exc:
            raise RemoteCallFailure(f"Unable to run {args[0]}", str(exc)) from exc
        if check and result.returncode != 0:
            stderr = (result.stderr or "").strip() if capture else ""
            raise RemoteCallFailure(
                f"Command failed with status {result.returncode}: {' '.join(args)}",
                *([stderr] if stderr else []),
            )
        return result

    def git(self, *args: str, check: bool = True, cwd: Path | str | None = None) -> str:
        """Run a git command and return stripped stdout."""
        return self.run("git", *args, check=check, cwd=cwd).stdout.strip()

    def gh(self, *args: str, input: str | None = None, check: bool = True) -> str:
        """Run a gh command and return stripped stdout."""
        return self.run("gh", *args, input=input, check=check).stdout.strip()


def in_github_actions() -> bool:
    return bool(os.environ.get("GITHUB_ACTIONS"))


def step(msg: str) -> None:
    """Print a visually distinct step header.

    Used to separate the stages of a release flow in terminal output.
    """
    click.echo(f"\n{'─' * 60}\n{msg}\n{'─' * 60}")


def info(msg: str) -> None:
    click.echo(f"  {msg}")


def success(msg: str) -> None:
    click.secho(msg, fg="green", bold=True)


def warning(msg: str) -> None:
    """Print a warning, as a workflow annotation when running in Actions."""
    if in_github_actions():
        click.echo(f"::warning::{msg}")
    else:
        click.secho(f"WARNING: {msg}", fg="yellow", err=True)


def error_message(msg: str, *details: str) -> None:
    """Print an error and its detail lines without exiting."""
    if in_github_actions():
        click.echo(f"::error::{msg}")
    else:
        click.secho(f"ERROR: {msg}", fg="red", bold=True, err=True)
    for line in details:
        click.echo(line, err=True)


def fatal(msg: str, *details: str) -> None:
    """Print an error message and exit with code 1.

    Use for unrecoverable errors that should halt the pipeline.
    """
    error_message(msg, *details)
    sys.exit(1)
