"""
Namespace directory listings.

A listing request returns one <directory path="..."> element whose <entry>
children describe objects, sub-directories and anything else the namespace
holds. ListingDecoder consumes the response incrementally, so memory stays
bounded no matter how many entries a directory has.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

from lxml import etree

from .exceptions import ListingDecodeError
from .utils import join_path


class EntryKind(str, Enum):
    """Kinds of directory entries the crawler distinguishes."""

    OBJECT = "object"
    DIRECTORY = "directory"
    OTHER = "other"

    @classmethod
    def from_wire(cls, value: Optional[str]) -> "EntryKind":
        """Map the entry's type attribute onto a kind."""
        if value == cls.OBJECT.value:
            return cls.OBJECT
        if value == cls.DIRECTORY.value:
            return cls.DIRECTORY
        return cls.OTHER


@dataclass(frozen=True)
class Entry:
    """One child of a directory listing.

    object_path is not transmitted; it is the parent directory path joined with
    url_name. wire_type keeps the raw type attribute for entries of kind OTHER.
    """

    url_name: str
    kind: EntryKind
    object_path: str
    size: Optional[int] = None
    hash: Optional[str] = None
    hash_scheme: Optional[str] = None
    wire_type: str = ""


@dataclass(frozen=True)
class DirectoryListing:
    """A fully decoded directory listing."""

    path: str
    entries: tuple[Entry, ...]


def _entry_from_element(element, directory_path: str) -> Entry:
    url_name = element.get("urlName")
    if url_name is None:
        raise ListingDecodeError(f"Entry without urlName in directory {directory_path!r}")
    size_text = element.get("size")
    size = None
    if size_text:
        try:
            size = int(size_text)
        except ValueError as exc:
            raise ListingDecodeError(
                f"Entry {url_name!r} in {directory_path!r} has invalid size {size_text!r}"
            ) from exc
    wire_type = element.get("type", "")
    return Entry(
        url_name=url_name,
        kind=EntryKind.from_wire(wire_type),
        object_path=join_path(directory_path, url_name),
        size=size,
        hash=element.get("hash") or None,
        hash_scheme=element.get("hashScheme") or None,
        wire_type=wire_type,
    )


class ListingDecoder:
    """Incremental decoder for a single directory listing response.

    Feed raw response chunks with feed(); each call returns the entries whose
    elements were completed by that chunk. close() must be called once the
    body is exhausted; it validates that the document was complete.
    """

    def __init__(self):
        self._parser = etree.XMLPullParser(
            events=("start", "end"), resolve_entities=False, no_network=True
        )
        self._directory_path: Optional[str] = None
        self._closed = False

    @property
    def directory_path(self) -> Optional[str]:
        """Path attribute of the <directory> element, once it has been seen."""
        return self._directory_path

    def feed(self, chunk: bytes) -> list[Entry]:
        """Consume a chunk of the response body."""
        if self._closed:
            raise ListingDecodeError("Listing decoder already closed")
        try:
            self._parser.feed(chunk)
            return self._drain()
        except etree.XMLSyntaxError as exc:
            raise ListingDecodeError(f"Malformed directory listing: {exc}") from exc

    def close(self) -> list[Entry]:
        """Finish decoding and return any remaining entries."""
        self._closed = True
        try:
            self._parser.close()
            entries = self._drain()
        except etree.XMLSyntaxError as exc:
            raise ListingDecodeError(f"Malformed directory listing: {exc}") from exc
        if self._directory_path is None:
            raise ListingDecodeError("Listing response contains no <directory> element")
        return entries

    def _drain(self) -> list[Entry]:
        entries = []
        for event, element in self._parser.read_events():
            name = etree.QName(element).localname
            if event == "start" and name == "directory":
                self._directory_path = element.get("path", "")
            elif event == "end" and name == "entry":
                if self._directory_path is None:
                    raise ListingDecodeError("<entry> found outside of a <directory> element")
                entries.append(_entry_from_element(element, self._directory_path))
                # Entries are converted to values; drop the element tree behind them.
                element.clear()
                parent = element.getparent()
                if parent is not None:
                    while element.getprevious() is not None:
                        del parent[0]
        return entries


def read_listing(chunks: Iterable[bytes]) -> DirectoryListing:
    """
    Decode a listing response from its body chunks.

    Entries are collected as compact values while the element tree is freed
    behind them; nothing is returned unless the whole document decodes.

    Raises:
        ListingDecodeError: the body is not a well-formed directory listing
    """
    decoder = ListingDecoder()
    entries = []
    for chunk in chunks:
        entries.extend(decoder.feed(chunk))
    entries.extend(decoder.close())
    return DirectoryListing(path=decoder.directory_path or "", entries=tuple(entries))
