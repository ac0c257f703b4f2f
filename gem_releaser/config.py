"""Repository release metadata loading.

Reads ``releases.yml`` (or ``releases.toml``) and fills in per-gem
defaults. The resulting RepoConfig is read-only for the rest of the run.

Example ``releases.yml``::

    repo: cloudevents/sdk-ruby
    main_branch: main
    gems:
      - name: cloud_events
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigError
from .models import GemRecord, RepoConfig
from .toml import load_toml, to_plain

DEFAULT_CONFIG_PATH = "releases.yml"


def camelize(segment: str) -> str:
    """Convert a snake_case name segment to a Ruby constant name.

    Examples:
        "cloud_events" → "CloudEvents"
        "_private_" → "Private"
    """
    s = re.sub(r"^_|_$", "", segment)
    s = re.sub(r"_+", "_", s)
    return re.sub(r"(?:^|_)([a-zA-Z])", lambda m: m.group(1).upper(), s)


def build_gem_record(raw: dict[str, Any], *, multiple_gems: bool) -> GemRecord:
    """Apply defaults to one ``gems`` entry."""
    name = raw.get("name")
    if not name:
        raise ConfigError("Name missing from gem in release config")
    if not isinstance(name, str):
        raise ConfigError(f"Gem name must be a string, got {name!r}")

    segments = name.split("-")
    constant = raw.get("version_constant")
    if constant is None:
        constant = [camelize(seg) for seg in segments] + ["VERSION"]
    elif isinstance(constant, str):
        constant = constant.split("::")

    docs_tool = raw.get("docs_builder_tool")
    if isinstance(docs_tool, str):
        docs_tool = docs_tool.split()

    return GemRecord(
        name=name,
        directory=raw.get("directory") or (name if multiple_gems else "."),
        version_rb_path=raw.get("version_rb_path")
        or f"lib/{'/'.join(segments)}/version.rb",
        changelog_path=raw.get("changelog_path") or "CHANGELOG.md",
        version_constant=tuple(constant),
        gh_pages_directory=raw.get("gh_pages_directory")
        or (name if multiple_gems else "."),
        gh_pages_version_var=raw.get("gh_pages_version_var")
        or (f"version_{name}".replace("-", "_") if multiple_gems else "version"),
        docs_builder_tool=tuple(docs_tool) if docs_tool else None,
    )


def parse_repo_config(data: dict[str, Any]) -> RepoConfig:
    """Build a RepoConfig from already-parsed config data.

    Raises:
        ConfigError: If ``repo`` or ``gems`` is missing or malformed.
    """
    if not isinstance(data, dict):
        raise ConfigError("Release config must be a mapping")
    repo = data.get("repo")
    if not repo:
        raise ConfigError("Repo key missing from release config")
    if not isinstance(repo, str) or not re.fullmatch(r"[^/\s]+/[^/\s]+", repo):
        raise ConfigError(f"Repo must have the form owner/name, got {repo!r}")

    raw_gems = data.get("gems") or []
    if not raw_gems:
        raise ConfigError("No gems listed in release config")
    if not isinstance(raw_gems, list):
        raise ConfigError("Gems must be a list of mappings, each with a name")

    multiple = len(raw_gems) > 1
    gems: dict[str, GemRecord] = {}
    for raw in raw_gems:
        if not isinstance(raw, dict):
            raise ConfigError(
                f"Gem entry {raw!r} must be a mapping",
                "Write each gem as '- name: <gem>'.",
            )
        record = build_gem_record(raw, multiple_gems=multiple)
        if record.name in gems:
            raise ConfigError(f"Gem {record.name} is listed more than once")
        gems[record.name] = record

    return RepoConfig(
        repo=repo,
        main_branch=data.get("main_branch") or "main",
        gems=gems,
        perform_workflow=data.get("perform_workflow"),
    )


def load_repo_config(path: Path) -> RepoConfig:
    """Load release metadata from a YAML or TOML file.

    The format is chosen by suffix: ``.toml`` is read with tomlkit,
    anything else as YAML.
    """
    if not path.is_file():
        raise ConfigError(f"Unable to find release config {path}")

    if path.suffix == ".toml":
        data = to_plain(load_toml(path))
    else:
        try:
            data = yaml.safe_load(path.read_text()) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"Unable to parse {path}: {exc}") from exc

    return parse_repo_config(data)


def get_gem(config: RepoConfig, gem_name: str | None) -> GemRecord:
    """Look up a gem by name, falling back to the default gem."""
    name = gem_name or config.default_gem
    try:
        return config.gems[name]
    except KeyError:
        known = ", ".join(config.gems)
        raise ConfigError(f"Unknown gem {name!r}", f"Configured gems: {known}") from None
