"""Bulk migration of objects from an HCP namespace into S3-compatible storage."""

from .crawler import NamespaceCrawler, download_object_list
from .destination import LocalDirectoryDestination, S3Destination
from .document import MetadataDocument, derive_key, derive_metadata
from .latency import LatencyAccumulator
from .listing import DirectoryListing, Entry, EntryKind, ListingDecoder, read_listing
from .pipeline import MigrationJob, MigrationOutcome, MigrationPipeline, read_jobs
from .source_client import ObjectDescriptor, SourceTransferClient

__all__ = [
    "DirectoryListing",
    "Entry",
    "EntryKind",
    "LatencyAccumulator",
    "ListingDecoder",
    "LocalDirectoryDestination",
    "MetadataDocument",
    "MigrationJob",
    "MigrationOutcome",
    "MigrationPipeline",
    "NamespaceCrawler",
    "ObjectDescriptor",
    "S3Destination",
    "SourceTransferClient",
    "derive_key",
    "derive_metadata",
    "download_object_list",
    "read_jobs",
    "read_listing",
]
