"""Version parsing, bumping and tag utilities.

Handles conversion between version strings and semver objects, with
special handling for incomplete version strings (e.g., "1.0" → "1.0.0"),
and the ``<gem>/v<version>`` tag convention.
"""

from __future__ import annotations

import re

import semver

from .errors import ParseFailure
from .models import BumpLevel

# Ruby gem versions: three numeric segments, optionally followed by
# dot-separated prerelease segments ("1.0.0.alpha", "2.1.0.rc.1").
GEM_VERSION_RE = re.compile(r"^\d+\.\d+\.\d+(?:\.(?:\d+|[a-zA-Z]\w*))*$")
TAG_REF_RE = re.compile(
    r"^(?:refs/tags/)?([^/]+)/v(\d+\.\d+\.\d+(?:\.(?:\d+|[a-zA-Z]\w*))*)$"
)
INITIAL_VERSION = "0.1.0"


def parse_version(version_str: str) -> semver.Version:
    """Parse a version string into a semver.Version object.

    Handles incomplete versions by padding with zeros:
    - "1" → "1.0.0"
    - "1.2" → "1.2.0"
    - "1.2.3" → "1.2.3"

    Only the first 3 components are used (major.minor.patch).
    """
    parts = version_str.split(".")
    # Pad with zeros to ensure we have at least 3 parts
    while len(parts) < 3:
        parts.append("0")
    try:
        return semver.Version.parse(".".join(parts[:3]))
    except ValueError as exc:
        raise ParseFailure(f"Invalid version {version_str!r}") from exc


def bump_version(version_str: str, level: BumpLevel) -> str:
    """Increment the segment matching ``level`` and zero lower segments.

    Examples:
        "1.2.3", MINOR → "1.3.0"
        "1.2.3", MAJOR → "2.0.0"
        "1.2", PATCH → "1.2.1"
    """
    version = parse_version(version_str)
    if level == BumpLevel.MAJOR:
        return str(version.bump_major())
    if level == BumpLevel.MINOR:
        return str(version.bump_minor())
    return str(version.bump_patch())


def validate_gem_version(version_str: str) -> str:
    """Return the version unchanged if it is a legal gem release version."""
    if not GEM_VERSION_RE.match(version_str):
        raise ParseFailure(
            f"Illegal release version {version_str!r}",
            "Versions look like 1.2.3 or 1.2.3.alpha",
        )
    return version_str


def latest_version(tags: list[str], gem_name: str) -> str | None:
    """Pick the greatest semver among ``<gem>/v<version>`` tags.

    Tags whose suffix is not a valid semver (or belong to another gem) are
    ignored.

    Returns:
        The version string (without the ``v``), or None if no tag matches.
    """
    prefix = f"{gem_name}/v"
    best: semver.Version | None = None
    for tag in tags:
        if not tag.startswith(prefix):
            continue
        suffix = tag[len(prefix):]
        if not semver.Version.is_valid(suffix):
            continue
        candidate = semver.Version.parse(suffix)
        if best is None or candidate > best:
            best = candidate
    return str(best) if best is not None else None


def parse_tag_name(ref: str) -> tuple[str, str]:
    """Split a release tag (or ``refs/tags/...`` ref) into gem and version.

    Examples:
        "refs/tags/cloud_events/v1.2.3" → ("cloud_events", "1.2.3")
    """
    match = TAG_REF_RE.match(ref)
    if not match:
        raise ParseFailure(f"Illegal release ref: {ref}")
    return match.group(1), match.group(2)


def is_plain_release(version_str: str) -> bool:
    """True for x.y.z versions (no prerelease segments)."""
    return re.fullmatch(r"\d+\.\d+\.\d+", version_str) is not None
