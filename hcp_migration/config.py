"""
Configuration for the HCP to S3 migration tool.

File names, protocol constants and worker defaults live here as module
constants. Runtime settings are collected into frozen dataclasses by the CLI;
destination credentials are read from the environment by client_factory.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional

# Files written to (and read from) the working directory
OBJECT_LISTING_FILE: str = "object_listing.txt"
FAILED_MIGRATIONS_FILE: str = "migration_fails.txt"
MIGRATED_OBJECTS_FILE: str = "migration_success.txt"
LOG_TIMESTAMP_FORMAT: str = ".%m-%d-%Y-%H-%M-%S"

# Source protocol
REST_PREFIX: str = "/rest/"
HCP_SIZE_HEADER: str = "X-HCP-Size"
HCP_ERROR_MESSAGE_HEADER: str = "X-HCP-ErrorMessage"
HCP_METADATA_FIRST_HEADER: str = "X-HCP-CustomMetadataFirst"
HCP_METADATA_CONTENT_TYPE_HEADER: str = "X-HCP-CustomMetadataContentType"
HTTP_DATE_FORMAT: str = "%a, %d %b %Y %H:%M:%S GMT"
DEFAULT_CONTENT_TYPE: str = "application/octet-stream"

# Listing workers. Each worker holds at most one listing request in flight.
DEFAULT_LIST_WORKERS: int = 4
LISTING_OUTPUT_CAPACITY: int = 1000
LISTING_CHUNK_SIZE: int = 64 * 1024

# Migration workers
DEFAULT_MIGRATION_CONCURRENCY: int = min(32, (os.cpu_count() or 1) + 4)

# HTTP transport
CONNECT_TIMEOUT_SECONDS: float = 30.0
READ_TIMEOUT_SECONDS: float = 300.0
MAX_KEEPALIVE_CONNECTIONS: int = 256
DEFAULT_DESTINATION_REGION: str = "us-east-1"

# Upload tuning for boto3's transfer manager
MULTIPART_THRESHOLD: int = 64 * 1024 * 1024
MULTIPART_CHUNKSIZE: int = 16 * 1024 * 1024

# Destination environment variables
ENV_FILE_VARIABLE: str = "HCP_MIGRATION_ENV_FILE"
ENV_DESTINATION_ENDPOINT: str = "MINIO_ENDPOINT"
ENV_DESTINATION_ACCESS_KEY: str = "MINIO_ACCESS_KEY"
ENV_DESTINATION_SECRET_KEY: str = "MINIO_SECRET_KEY"
ENV_DESTINATION_BUCKET: str = "MINIO_BUCKET"


@dataclass(frozen=True)
class FetchPolicy:
    """How object fetch responses are mapped onto destination keys and fields.

    strip_prefix: prefix removed from the source path when the object has no
        annotation; None keeps the source path unchanged.
    length_headers: headers consulted, in order, for the total response length.
    content_type_headers: headers consulted, in order, for the content type.
    """

    strip_prefix: Optional[str] = REST_PREFIX
    length_headers: tuple[str, ...] = ("Content-Length", HCP_SIZE_HEADER)
    content_type_headers: tuple[str, ...] = (
        "Content-Type",
        HCP_METADATA_CONTENT_TYPE_HEADER,
    )


@dataclass(frozen=True)
class SourceSettings:
    """Connection settings for the source namespace."""

    namespace_url: str
    auth_token: str
    host_header: str = ""
    insecure: bool = False
    annotation: Optional[str] = None
    policy: FetchPolicy = field(default_factory=FetchPolicy)


@dataclass(frozen=True)
class DestinationSettings:
    """Connection settings for the S3-compatible destination."""

    endpoint: str
    access_key: str
    secret_key: str
    bucket: str
    insecure: bool = False

    def __repr__(self) -> str:
        return (
            f"DestinationSettings(endpoint={self.endpoint!r}, bucket={self.bucket!r}, "
            f"access_key={self.access_key!r}, secret_key='***')"
        )
