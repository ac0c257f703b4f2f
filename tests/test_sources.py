"""Tests for gem_releaser.sources."""

from __future__ import annotations

from pathlib import Path

import pytest

from gem_releaser.errors import ParseFailure
from gem_releaser.sources import (
    first_changelog_entry,
    insert_changelog_entry,
    read_version_rb,
    set_default_docs_version,
    write_version_rb,
)


class TestVersionRb:
    def test_read(self, tmp_path: Path) -> None:
        path = tmp_path / "version.rb"
        path.write_text("module Foo\n  VERSION = '2.0.1'\nend\n")
        assert read_version_rb(path) == "2.0.1"

    def test_write_keeps_quotes_and_indent(self, tmp_path: Path) -> None:
        path = tmp_path / "version.rb"
        path.write_text('module Foo\n  VERSION = "1.0.0"\nend\n')

        write_version_rb(path, "1.1.0")

        assert path.read_text() == 'module Foo\n  VERSION = "1.1.0"\nend\n'

    def test_missing_constant(self, tmp_path: Path) -> None:
        path = tmp_path / "version.rb"
        path.write_text("module Foo\nend\n")
        with pytest.raises(ParseFailure):
            read_version_rb(path)
        with pytest.raises(ParseFailure):
            write_version_rb(path, "1.0.0")

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ParseFailure, match="not found"):
            read_version_rb(tmp_path / "version.rb")


class TestFirstChangelogEntry:
    def test_stops_at_next_header(self) -> None:
        lines = [
            "# Release History\n",
            "\n",
            "### v1.1.0 / 2024-01-01\n",
            "\n",
            "* Feature: add X\n",
            "\n",
            "### v1.0.0 / 2023-01-01\n",
            "* Initial release.\n",
        ]

        header, entry = first_changelog_entry(lines)

        assert header == "### v1.1.0 / 2024-01-01"
        assert entry == "### v1.1.0 / 2024-01-01\n\n* Feature: add X\n"

    def test_no_entries(self) -> None:
        assert first_changelog_entry(["# Release History\n"]) == (None, "")


class TestInsertChangelogEntry:
    def test_inserts_above_latest(self, tmp_path: Path) -> None:
        path = tmp_path / "CHANGELOG.md"
        path.write_text("# Release History\n\n### v1.0.0 / 2023-01-01\n\n* Initial release.\n")

        insert_changelog_entry(path, "### v1.1.0 / 2024-01-01\n\n* Fixed: correct Y\n")

        assert path.read_text() == (
            "# Release History\n"
            "\n"
            "### v1.1.0 / 2024-01-01\n"
            "\n"
            "* Fixed: correct Y\n"
            "\n"
            "### v1.0.0 / 2023-01-01\n"
            "\n"
            "* Initial release.\n"
        )

    def test_creates_missing_changelog(self, tmp_path: Path) -> None:
        path = tmp_path / "CHANGELOG.md"

        insert_changelog_entry(path, "### v0.1.0 / 2024-01-01\n\n* Initial release.\n")

        assert path.read_text() == (
            "# Release History\n\n### v0.1.0 / 2024-01-01\n\n* Initial release.\n"
        )


class TestSetDefaultDocsVersion:
    def test_updates_variable(self, tmp_path: Path) -> None:
        page = tmp_path / "404.html"
        page.write_text('<script>\n  version = "1.0.0";\n</script>\n')

        assert set_default_docs_version(page, "version", "1.1.0")
        assert 'version = "1.1.0";' in page.read_text()

    def test_variable_missing(self, tmp_path: Path) -> None:
        page = tmp_path / "404.html"
        page.write_text("<html></html>\n")
        assert not set_default_docs_version(page, "version_widgets", "1.1.0")
