"""Error types raised by the release pipeline.

Library code raises these; the CLI catches ``ReleaseError`` and turns it
into a highlighted message and exit code 1.
"""

from __future__ import annotations


class ReleaseError(Exception):
    """Base class for all release failures.

    Attributes:
        message: One-line summary shown as the error annotation.
        details: Extra lines printed after the summary (hints, context).
    """

    def __init__(self, message: str, *details: str) -> None:
        super().__init__(message)
        self.message = message
        self.details = list(details)

    def full_text(self) -> str:
        return "\n".join([self.message, *self.details])


class ConfigError(ReleaseError):
    """Bad or missing release metadata."""


class VerificationFailure(ReleaseError):
    """A release precondition check failed."""


class DuplicateReleaseError(VerificationFailure):
    """A release PR for the gem is already pending."""


class RemoteCallFailure(ReleaseError):
    """A git, gh or gem invocation returned a non-zero status."""


class ParseFailure(ReleaseError):
    """Malformed commit, changelog, tag or version text."""
