"""
Annotation documents attached to source objects.

An annotation is a small XML document stored next to an object in the source
namespace. It names the report the object belongs to and drives both the
destination key and the user metadata written next to the migrated object.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from lxml import etree

from .exceptions import InvalidDocumentDateError, MalformedDocumentError
from .utils import join_path

DOCUMENT_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"
KEY_DATE_FORMAT = "%Y/%m/%d"
METADATA_PREFIX = "x-amz-meta-"

_PARSER = etree.XMLParser(resolve_entities=False, no_network=True, huge_tree=False)

# XML element name -> MetadataDocument field
_TEXT_FIELDS = {
    "documenttype": "type",
    "documentfileformat": "file_format",
    "encryptedaccountnumber": "encrypted_account_number",
    "reportfamily": "report_family",
    "documentlocale": "locale",
    "documentgenerationschedule": "generation_schedule",
    "reporttype": "report_type",
    "windowname": "window_name",
    "timezone": "time_zone",
    "reportfilename": "file_name",
}
_DATE_FIELDS = {
    "reportperiodstartdate": "period_start",
    "reportperiodenddate": "period_end",
    "reportrundate": "run_date",
}


@dataclass(frozen=True)
class MetadataDocument:  # pylint: disable=too-many-instance-attributes
    """Decoded annotation document"""

    type: str = ""
    file_format: str = ""
    encrypted_account_number: str = ""
    report_family: str = ""
    locale: str = ""
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None
    run_date: Optional[datetime] = None
    generation_schedule: str = ""
    report_type: str = ""
    window_name: str = ""
    file_count: int = 0
    time_zone: str = ""
    file_name: str = ""

    @classmethod
    def decode(cls, data: bytes) -> "MetadataDocument":
        """
        Decode an annotation document.

        Unknown elements are ignored and missing ones keep their defaults.

        Raises:
            MalformedDocumentError: data is not well-formed XML, the root element
                is not <document>, or filecount is not an integer
            InvalidDocumentDateError: a date element does not match DOCUMENT_DATE_FORMAT
        """
        try:
            root = etree.fromstring(data, parser=_PARSER)
        except etree.XMLSyntaxError as exc:
            raise MalformedDocumentError(f"Annotation is not well-formed XML: {exc}") from exc
        if etree.QName(root).localname != "document":
            raise MalformedDocumentError(
                f"Annotation root element is <{etree.QName(root).localname}>, expected <document>"
            )
        values: dict[str, object] = {}
        for child in root:
            if not isinstance(child.tag, str):
                continue
            name = etree.QName(child).localname
            text = (child.text or "").strip()
            if name in _TEXT_FIELDS:
                values[_TEXT_FIELDS[name]] = text
            elif name in _DATE_FIELDS:
                values[_DATE_FIELDS[name]] = _parse_document_date(name, text)
            elif name == "filecount":
                values["file_count"] = _parse_file_count(text)
        return cls(**values)

    def destination_key(self) -> str:
        """
        Build the destination object key.

        Layout: {account}/{report type}/{document type}/YYYY/MM/DD/{format}/{file name}.
        Empty fields are skipped rather than producing empty path segments.
        """
        run_date = self.run_date.strftime(KEY_DATE_FORMAT) if self.run_date else ""
        return join_path(
            self.encrypted_account_number,
            self.report_type,
            self.type,
            run_date,
            self.file_format,
            self.file_name,
        )

    def user_metadata(self) -> dict[str, str]:
        """Return the provenance metadata written next to the migrated object."""
        return {
            f"{METADATA_PREFIX}Report-Start-Date": _format_document_date(self.period_start),
            f"{METADATA_PREFIX}Report-End-Date": _format_document_date(self.period_end),
            f"{METADATA_PREFIX}Report-Run-Date": _format_document_date(self.run_date),
            f"{METADATA_PREFIX}DocType": self.type,
            f"{METADATA_PREFIX}Locale": self.locale,
            f"{METADATA_PREFIX}ReportFamily": self.report_family,
            f"{METADATA_PREFIX}ReportType": self.report_type,
            f"{METADATA_PREFIX}ReportFileName": self.file_name,
        }


def _parse_document_date(name: str, text: str) -> datetime:
    try:
        return datetime.strptime(text, DOCUMENT_DATE_FORMAT)
    except ValueError as exc:
        raise InvalidDocumentDateError(
            f"Invalid date format in document: <{name}>{text}</{name}>"
        ) from exc


def _parse_file_count(text: str) -> int:
    if not text:
        return 0
    try:
        return int(text)
    except ValueError as exc:
        raise MalformedDocumentError(f"filecount is not an integer: {text!r}") from exc


def _format_document_date(value: Optional[datetime]) -> str:
    return value.strftime(DOCUMENT_DATE_FORMAT) if value else ""


def derive_key(document: MetadataDocument) -> str:
    """Destination key for a decoded annotation."""
    return document.destination_key()


def derive_metadata(document: MetadataDocument) -> dict[str, str]:
    """Destination user metadata for a decoded annotation."""
    return document.user_metadata()
