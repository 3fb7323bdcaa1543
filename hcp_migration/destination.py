"""
Destination stores a migration writes into.

Both stores offer the same two calls: exists(key) for the idempotence check and
put(key, stream, descriptor) for the streaming upload.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

from boto3.s3.transfer import TransferConfig
from botocore.exceptions import ClientError

from .config import MULTIPART_CHUNKSIZE, MULTIPART_THRESHOLD
from .document import METADATA_PREFIX
from .exceptions import SourceProtocolError
from .source_client import ObjectDescriptor

PROVENANCE_ETAG = "source-etag"
PROVENANCE_MTIME = "source-mtime"
_MISSING_KEY_CODES = frozenset({"404", "NoSuchKey", "NotFound"})
_COPY_CHUNK_SIZE = 1024 * 1024


def s3_metadata(descriptor: ObjectDescriptor) -> dict[str, str]:
    """User metadata for boto3, which adds the x-amz-meta- prefix itself."""
    metadata = {}
    for name, value in descriptor.user_metadata.items():
        if name.lower().startswith(METADATA_PREFIX):
            name = name[len(METADATA_PREFIX):]
        metadata[name] = value
    if descriptor.etag:
        metadata[PROVENANCE_ETAG] = descriptor.etag
    metadata[PROVENANCE_MTIME] = descriptor.last_modified.isoformat()
    return metadata


class S3Destination:
    """Bucket in an S3-compatible store"""

    def __init__(self, s3, bucket: str, transfer_config: Optional[TransferConfig] = None):
        self.s3 = s3
        self.bucket = bucket
        self.transfer_config = transfer_config or TransferConfig(
            multipart_threshold=MULTIPART_THRESHOLD,
            multipart_chunksize=MULTIPART_CHUNKSIZE,
            use_threads=False,
        )

    def exists(self, key: str) -> bool:
        """
        Check whether key is already present in the bucket.

        Raises:
            ClientError: for any failure other than a missing key
        """
        try:
            self.s3.head_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            error_code = exc.response.get("Error", {}).get("Code", "")
            if error_code in _MISSING_KEY_CODES:
                return False
            raise
        return True

    def put(self, key: str, stream, descriptor: ObjectDescriptor) -> None:
        """Stream an object into the bucket under key."""
        self.s3.upload_fileobj(
            stream,
            self.bucket,
            key,
            ExtraArgs={
                "ContentType": descriptor.content_type,
                "Metadata": s3_metadata(descriptor),
            },
            Config=self.transfer_config,
        )

    def __str__(self) -> str:
        return f"s3://{self.bucket}"


class LocalDirectoryDestination:
    """Flat directory of downloaded objects; key slashes become dashes."""

    def __init__(self, base_path: Path):
        self.base_path = Path(base_path)

    def path_for(self, key: str) -> Path:
        """Local file name for key"""
        return self.base_path / key.strip("/").replace("/", "-")

    def exists(self, key: str) -> bool:
        """Check whether key was already downloaded"""
        return self.path_for(key).is_file()

    def put(self, key: str, stream, descriptor: ObjectDescriptor) -> None:
        """
        Copy exactly descriptor.size bytes of stream to the local file for key.

        The data lands in a .part file that is renamed once complete, so a
        failed download never looks present to exists().

        Raises:
            SourceProtocolError: the stream ended before descriptor.size bytes
        """
        target = self.path_for(key)
        partial = target.with_name(target.name + ".part")
        remaining = descriptor.size
        try:
            with open(partial, "wb") as handle:
                while remaining > 0:
                    chunk = stream.read(min(_COPY_CHUNK_SIZE, remaining))
                    if not chunk:
                        raise SourceProtocolError(
                            f"Object {key} ended after {descriptor.size - remaining} "
                            f"of {descriptor.size} bytes"
                        )
                    handle.write(chunk)
                    remaining -= len(chunk)
            os.replace(partial, target)
        except BaseException:
            partial.unlink(missing_ok=True)
            raise
        logging.debug("Downloaded %s to %s", key, target)

    def __str__(self) -> str:
        return str(self.base_path)
