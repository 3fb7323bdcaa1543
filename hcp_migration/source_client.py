"""
HTTP access to the source namespace.

Two request modes share one pooled httpx.Client: directory listings, which the
caller decodes incrementally, and whole-object fetches, where the source
places the object's annotation document in front of the payload.
"""

from __future__ import annotations

import base64
import hashlib
import io
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterator, Mapping, Optional

import httpx

from .config import (
    DEFAULT_CONTENT_TYPE,
    HCP_ERROR_MESSAGE_HEADER,
    HCP_METADATA_FIRST_HEADER,
    HCP_SIZE_HEADER,
    HTTP_DATE_FORMAT,
    LISTING_CHUNK_SIZE,
    SourceSettings,
)
from .document import MetadataDocument, derive_key, derive_metadata
from .exceptions import SourceProtocolError
from .latency import LatencyAccumulator, RequestTrace

REDACTED_HEADERS = frozenset({"authorization"})


def build_auth_token(username: str, password: str) -> str:
    """Build an HCP authorization token from a username and password."""
    encoded_user = base64.b64encode(username.encode("utf-8")).decode("ascii")
    # The source protocol mandates an MD5 hex digest of the password.
    hashed_password = hashlib.md5(password.encode("utf-8")).hexdigest()  # noqa: S324
    return f"HCP {encoded_user}:{hashed_password}"


@dataclass(frozen=True)
class ObjectDescriptor:
    """Protocol-independent description of one object to transfer."""

    key: str
    size: int
    etag: str
    last_modified: datetime
    content_type: str
    user_metadata: Mapping[str, str] = field(default_factory=dict)
    source_path: str = ""


class ObjectStream(io.RawIOBase):
    """Readable file object over a streamed response body.

    Chunks are handed through as they arrive; only the unread remainder of the
    current chunk is held.
    """

    def __init__(self, response: httpx.Response):
        super().__init__()
        self._response = response
        self._chunks = response.iter_raw()
        self._pending = b""

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:
        while not self._pending:
            chunk = next(self._chunks, None)
            if chunk is None:
                return 0
            self._pending = chunk
        size = min(len(buffer), len(self._pending))
        buffer[:size] = self._pending[:size]
        self._pending = self._pending[size:]
        return size

    def read_exact(self, size: int) -> bytes:
        """Read exactly size bytes or raise SourceProtocolError."""
        parts = []
        remaining = size
        while remaining > 0:
            data = self.read(remaining)
            if not data:
                raise SourceProtocolError(
                    f"Response ended after {size - remaining} of {size} annotation bytes"
                )
            parts.append(data)
            remaining -= len(data)
        return b"".join(parts)

    def close(self) -> None:
        if not self.closed:
            self._response.close()
        super().close()


def format_exchange(request: httpx.Request, response: Optional[httpx.Response]) -> str:
    """Render a request/response pair for debug logging, redacting credentials."""
    lines = [f"[REQUEST] {request.method} {request.url.raw_path.decode('ascii', 'replace')}"]
    for name, value in request.headers.items():
        shown = "**REDACTED**" if name.lower() in REDACTED_HEADERS else value
        lines.append(f"{name}: {shown}")
    if response is None:
        lines.append("[RESPONSE] <none>")
    else:
        lines.append(f"[RESPONSE] {response.status_code} {response.reason_phrase}")
        lines.extend(f"{name}: {value}" for name, value in response.headers.items())
    return "\n".join(lines)


def _first_header(headers: httpx.Headers, names) -> Optional[str]:
    for name in names:
        value = headers.get(name)
        if value:
            return value
    return None


def _parse_length(headers: httpx.Headers, names) -> int:
    value = _first_header(headers, names)
    if value is None:
        raise SourceProtocolError(f"Response has none of the length headers {', '.join(names)}")
    try:
        return int(value)
    except ValueError as exc:
        raise SourceProtocolError(f"Invalid length header value {value!r}") from exc


def parse_http_date(value: Optional[str]) -> datetime:
    """Parse a Last-Modified style header into an aware UTC datetime."""
    if not value:
        raise SourceProtocolError("Response has no Last-Modified header")
    try:
        parsed = datetime.strptime(value, HTTP_DATE_FORMAT)
    except ValueError as exc:
        raise SourceProtocolError(f"Invalid date format for Last-Modified header: {value!r}") from exc
    return parsed.replace(tzinfo=timezone.utc)


class SourceTransferClient:
    """Authenticated requests against the source namespace."""

    def __init__(
        self,
        http_client: httpx.Client,
        settings: SourceSettings,
        latency: Optional[LatencyAccumulator] = None,
        trace_requests: bool = False,
    ):
        self.http = http_client
        self.settings = settings
        self.policy = settings.policy
        self.latency = latency if latency is not None else LatencyAccumulator()
        self.trace_requests = trace_requests
        self._base_url = httpx.URL(settings.namespace_url)

    @property
    def root_path(self) -> str:
        """Path component of the namespace URL"""
        return self._base_url.path

    def url_for(self, path: str) -> httpx.URL:
        """Absolute URL for a namespace path; the empty path is the namespace root."""
        if not path:
            return self._base_url
        return self._base_url.copy_with(path=path)

    def fallback_key(self, path: str) -> str:
        """Destination key used when an object carries no annotation."""
        prefix = self.policy.strip_prefix
        if prefix and path.startswith(prefix):
            return path[len(prefix):]
        return path

    def _send(self, path: str, params=None, extra_headers=None) -> httpx.Response:
        headers = {"Authorization": self.settings.auth_token}
        if self.settings.host_header:
            headers["Host"] = self.settings.host_header
        if extra_headers:
            headers.update(extra_headers)
        trace = RequestTrace()
        request = self.http.build_request(
            "GET",
            self.url_for(path),
            params=params,
            headers=headers,
            extensions={"trace": trace},
        )
        response = None
        try:
            response = self.http.send(request, stream=True)
            trace.mark_response()
        finally:
            count = trace.record_into(self.latency)
            if self.trace_requests:
                logging.debug("%s", format_exchange(request, response))
        logging.info(
            "HCP DNS Done: %.6fs TLS Handshake: %.6fs Connect time: %.6fs TTFB: %.6fs req# %d",
            trace.durations["dns"],
            trace.durations["tls_handshake"],
            trace.durations["connect"],
            trace.ttfb,
            count,
        )
        if response.status_code != httpx.codes.OK:
            hcp_message = response.headers.get(HCP_ERROR_MESSAGE_HEADER)
            response.close()
            raise SourceProtocolError(
                f"Bad request status {response.status_code} for {path or '/'}",
                status_code=response.status_code,
                hcp_message=hcp_message,
            )
        return response

    @contextmanager
    def fetch_listing(self, path: str) -> Iterator[Iterator[bytes]]:
        """Request the listing of a directory and yield its body as raw chunks.

        The response is closed when the with-block exits, whether or not the
        body was read to the end.
        """
        response = self._send(path)
        try:
            yield response.iter_raw(LISTING_CHUNK_SIZE)
        finally:
            response.close()

    def fetch_object(
        self, path: str, annotation: Optional[str] = None
    ) -> tuple[ObjectStream, ObjectDescriptor]:
        """
        Fetch an object together with its annotation.

        The returned stream is positioned at the first payload byte; the caller
        owns it and must close it.

        Raises:
            SourceProtocolError: bad status, missing or invalid headers, or a
                negative or truncated annotation
            DocumentError: the annotation could not be decoded
            httpx.HTTPError: transport failure
        """
        params = {"type": "whole-object"}
        if annotation:
            params["annotation"] = annotation
        response = self._send(path, params, {HCP_METADATA_FIRST_HEADER: "true"})
        stream = ObjectStream(response)
        try:
            descriptor = self._describe(path, response.headers, stream)
        except Exception:
            stream.close()
            raise
        return stream, descriptor

    def _describe(self, path: str, headers: httpx.Headers, stream: ObjectStream) -> ObjectDescriptor:
        object_size = _parse_length(headers, (HCP_SIZE_HEADER,))
        total_length = _parse_length(headers, self.policy.length_headers)
        annotation_length = total_length - object_size
        if annotation_length < 0:
            raise SourceProtocolError(
                f"Negative annotation length for {path}: total {total_length}, object {object_size}"
            )
        last_modified = parse_http_date(headers.get("Last-Modified"))
        key = self.fallback_key(path)
        user_metadata: dict[str, str] = {}
        if annotation_length > 0:
            document = MetadataDocument.decode(stream.read_exact(annotation_length))
            key = derive_key(document) or key
            user_metadata = derive_metadata(document)
        return ObjectDescriptor(
            key=key,
            size=object_size,
            etag=headers.get("ETag", "").strip('"'),
            last_modified=last_modified,
            content_type=_first_header(headers, self.policy.content_type_headers)
            or DEFAULT_CONTENT_TYPE,
            user_metadata=user_metadata,
            source_path=path,
        )
