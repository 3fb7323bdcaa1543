"""Error types raised by the HCP to S3 migration tool."""

from __future__ import annotations

from typing import Optional


class MigrationToolError(Exception):
    """Base class for every error raised by this package."""


class ConfigurationError(MigrationToolError):
    """Invalid or missing configuration detected before any work starts."""


class SourceProtocolError(MigrationToolError):
    """The source namespace answered with something the protocol does not allow."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        hcp_message: Optional[str] = None,
    ):
        if hcp_message:
            message = f"{message} ({hcp_message})"
        super().__init__(message)
        self.status_code = status_code
        self.hcp_message = hcp_message


class ListingDecodeError(MigrationToolError):
    """A directory listing could not be decoded."""


class DocumentError(MigrationToolError):
    """An object annotation document could not be decoded."""


class InvalidDocumentDateError(DocumentError):
    """A date field in an annotation document does not match the wire format."""


class MalformedDocumentError(DocumentError):
    """An annotation document is not well-formed or has an unexpected shape."""


class ListingFileError(MigrationToolError):
    """The object listing file could not be written."""


class OutcomeLogError(MigrationToolError):
    """A migration outcome log could not be written completely."""
