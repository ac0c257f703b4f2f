"""TOML reading utilities.

Uses tomlkit so the TOML flavour of the release config is parsed with the
same library used to edit TOML elsewhere in the toolchain.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import tomlkit
from tomlkit.exceptions import ParseError

from .errors import ConfigError


def load_toml(path: Path) -> tomlkit.TOMLDocument:
    """Load and parse a TOML file.

    Raises:
        ConfigError: If the file is not valid TOML.
    """
    try:
        return tomlkit.parse(path.read_text())
    except ParseError as exc:
        raise ConfigError(f"Unable to parse {path}: {exc}") from exc


def to_plain(doc: tomlkit.TOMLDocument) -> dict[str, Any]:
    """Convert a TOMLDocument into plain Python dicts/lists/strings.

    tomlkit containers carry formatting state; callers that only read
    values (like the config loader) want ordinary builtins.
    """
    return doc.unwrap()
