"""Reading and rewriting gem source files.

Covers the three files a release touches:
- ``version.rb``: holds ``VERSION = "x.y.z"``
- ``CHANGELOG.md``: entries headed ``### v<version> / <YYYY-MM-DD>``,
  most recent first
- gh-pages ``404.html``: holds the default docs version variable
"""

from __future__ import annotations

import re
from pathlib import Path

from .errors import ParseFailure

VERSION_RB_RE = re.compile(
    r"""^(?P<lead>\s*VERSION\s*=\s*)(?P<q>["'])(?P<version>[^"']+)(?P=q)""",
    re.MULTILINE,
)
DEFAULT_CHANGELOG_TITLE = "# Release History\n"


def read_version_rb(path: Path) -> str:
    """Return the literal VERSION string from a Ruby version file.

    Raises:
        ParseFailure: If the file is missing or has no VERSION assignment.
    """
    if not path.is_file():
        raise ParseFailure(f"Version file {path} not found")
    match = VERSION_RB_RE.search(path.read_text())
    if not match:
        raise ParseFailure(f"No VERSION constant found in {path}")
    return match.group("version")


def write_version_rb(path: Path, version: str) -> None:
    """Replace the VERSION literal in place, keeping quotes and indentation."""
    content = path.read_text()
    new_content, count = VERSION_RB_RE.subn(
        lambda m: f"{m.group('lead')}{m.group('q')}{version}{m.group('q')}",
        content,
        count=1,
    )
    if not count:
        raise ParseFailure(f"No VERSION constant found in {path}")
    path.write_text(new_content)


def changelog_header_re(version: str) -> re.Pattern[str]:
    return re.compile(rf"^### v{re.escape(version)} / \d\d\d\d-\d\d-\d\d$")


def first_changelog_entry(lines: list[str]) -> tuple[str | None, str]:
    """Find the first ``### `` entry in a changelog.

    Returns:
        Tuple of (header line or None, entry text). The entry text
        includes the header and runs up to the next header, with trailing
        blank lines removed.
    """
    entry: list[str] = []
    header: str | None = None
    for line in lines:
        if line.startswith("### "):
            if header is not None:
                break
            header = line.rstrip("\n")
        if header is not None:
            entry.append(line if line.endswith("\n") else line + "\n")
    text = "".join(entry).rstrip()
    return header, (text + "\n" if text else "")


def insert_changelog_entry(path: Path, entry: str) -> None:
    """Insert a new entry above the most recent one.

    Creates the changelog (with a title) if it does not exist. Text before
    the first ``### `` header (the title) is preserved.
    """
    if path.exists():
        content = path.read_text()
    else:
        path.parent.mkdir(parents=True, exist_ok=True)
        content = DEFAULT_CHANGELOG_TITLE

    match = re.search(r"^### ", content, re.MULTILINE)
    if match:
        head, tail = content[: match.start()], content[match.start():]
    else:
        head, tail = content, ""
    if head and not head.endswith("\n\n"):
        head = head.rstrip("\n") + "\n\n"

    block = entry.rstrip("\n") + "\n"
    if tail:
        block += "\n"
    path.write_text(head + block + tail)


def set_default_docs_version(path: Path, var_name: str, version: str) -> bool:
    """Point the docs landing page at a new default version.

    Rewrites ``<var_name> = "<old>";`` in the 404 page.

    Returns:
        True if the variable was found and updated.
    """
    content = path.read_text()
    pattern = re.compile(rf'{re.escape(var_name)} = "[\w.]+";')
    new_content, count = pattern.subn(f'{var_name} = "{version}";', content, count=1)
    if count:
        path.write_text(new_content)
    return bool(count)
