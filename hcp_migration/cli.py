"""
Command-line interface for the HCP to S3 migration tool.

Two sub-commands share the source connection flags:
  list     crawl the namespace and write object_listing.txt to the data dir
  migrate  copy every object named in the listing file into the destination
"""

from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from pathlib import Path
from typing import Optional, Sequence

from .client_factory import (
    create_http_client,
    create_s3_client,
    load_destination_settings,
    normalize_host_header,
    validate_namespace_url,
)
from .config import (
    DEFAULT_LIST_WORKERS,
    DEFAULT_MIGRATION_CONCURRENCY,
    FAILED_MIGRATIONS_FILE,
    MIGRATED_OBJECTS_FILE,
    OBJECT_LISTING_FILE,
    FetchPolicy,
    SourceSettings,
)
from .crawler import NamespaceCrawler, download_object_list
from .destination import LocalDirectoryDestination, S3Destination
from .exceptions import ConfigurationError, MigrationToolError
from .latency import LatencyAccumulator
from .pipeline import MigrationPipeline, read_jobs
from .source_client import SourceTransferClient, build_auth_token
from .utils import join_path, read_lines, timestamped_name

EXIT_CONFIGURATION_ERROR = 2
EXIT_INTERRUPTED = 130

EXAMPLES = """
examples:
  List objects in the namespace and write the listing to /tmp/data:
    hcp-to-s3 list -a "HCP bXl1c2Vy:3f3c6784e97531774380db177774ac8d" \\
      --host-header "s3testbucket.tenant.hcp.example.com" \\
      --namespace-url "https://hcp-vip.example.com/rest" --data-dir /tmp/data

  Migrate the listing after skipping the first 10000 entries:
    export MINIO_ENDPOINT=https://minio:9000 MINIO_ACCESS_KEY=minio \\
           MINIO_SECRET_KEY=minio123 MINIO_BUCKET=miniobucket
    hcp-to-s3 migrate -a "HCP bXl1c2Vy:3f3c6784e97531774380db177774ac8d" \\
      --namespace-url "https://hcp-vip.example.com/rest" --data-dir /tmp/data \\
      --annotation myannotation --skip 10000
"""


def _add_source_arguments(parser: argparse.ArgumentParser) -> None:
    """Flags shared by every sub-command."""
    parser.add_argument("-a", "--auth-token", default="", help="Authorization token for HCP.")
    parser.add_argument("--username", default="", help="HCP user, if no auth token is given.")
    parser.add_argument("--password", default="", help="HCP password, if no auth token is given.")
    parser.add_argument(
        "-n",
        "--namespace-url",
        default="",
        help="Namespace URL, e.g. https://namespace-name.tenant-name.hcp-domain-name/rest",
    )
    parser.add_argument("--host-header", default="", help="Host header for HCP.")
    parser.add_argument("-d", "--data-dir", default="", help="Path to work directory for tool.")
    parser.add_argument(
        "-i", "--insecure", action="store_true", help="Disable TLS certificate verification."
    )
    parser.add_argument("-l", "--log", action="store_true", help="Enable logging.")
    parser.add_argument("--debug", action="store_true", help="Enable debugging.")


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with list and migrate sub-commands."""
    parser = argparse.ArgumentParser(
        prog="hcp-to-s3",
        description="Migration tool from HCP object store to S3-compatible storage",
        epilog=EXAMPLES,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    list_parser = subparsers.add_parser(
        "list", help="List objects in HCP namespace and download the listing to disk"
    )
    _add_source_arguments(list_parser)
    list_parser.add_argument(
        "--prefixes-file", help="File with list of child prefixes under namespace url."
    )
    list_parser.add_argument(
        "--output", help=f"Listing file (default: <data-dir>/{OBJECT_LISTING_FILE})."
    )
    list_parser.add_argument(
        "--workers",
        type=int,
        default=DEFAULT_LIST_WORKERS,
        help="Concurrent listing requests (default: %(default)s).",
    )

    migrate_parser = subparsers.add_parser("migrate", help="Migrate HCP objects to S3")
    _add_source_arguments(migrate_parser)
    migrate_parser.add_argument(
        "-s", "--skip", type=int, default=0, help="Number of entries to skip from input file."
    )
    migrate_parser.add_argument(
        "--fake", action="store_true", help="Perform a fake migration (dry run)."
    )
    migrate_parser.add_argument(
        "--annotation", help="Annotation whose document names the destination object."
    )
    migrate_parser.add_argument(
        "--input-file", help=f"Listing file (default: <data-dir>/{OBJECT_LISTING_FILE})."
    )
    migrate_parser.add_argument(
        "--concurrency",
        type=int,
        default=DEFAULT_MIGRATION_CONCURRENCY,
        help="Concurrent object transfers (default: %(default)s).",
    )
    migrate_parser.add_argument(
        "--download",
        action="store_true",
        help="Download objects into the data dir instead of uploading them.",
    )
    migrate_parser.add_argument(
        "--keep-source-path",
        action="store_true",
        help="Use the full source path as key for objects without annotation.",
    )
    return parser


def configure_logging(args: argparse.Namespace) -> None:
    """Map --log/--debug onto the root logger level."""
    if args.debug:
        level = logging.DEBUG
    elif args.log:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(message)s")


def source_settings_from_args(args: argparse.Namespace) -> SourceSettings:
    """
    Build source settings from parsed flags.

    Raises:
        ConfigurationError: if the namespace URL or credentials are missing or invalid
    """
    validate_namespace_url(args.namespace_url)
    auth_token = args.auth_token
    if not auth_token:
        if not (args.username and args.password):
            raise ConfigurationError(
                "--auth-token (or --username and --password), --namespace-url "
                "and --data-dir required"
            )
        auth_token = build_auth_token(args.username, args.password)
    policy = FetchPolicy()
    if getattr(args, "keep_source_path", False):
        policy = FetchPolicy(strip_prefix=None)
    return SourceSettings(
        namespace_url=args.namespace_url,
        auth_token=auth_token,
        host_header=normalize_host_header(args.host_header),
        insecure=args.insecure,
        annotation=getattr(args, "annotation", None),
        policy=policy,
    )


def data_dir_from_args(args: argparse.Namespace) -> Path:
    """
    Resolve and create the working directory.

    Raises:
        ConfigurationError: if no working directory was given or it cannot be created
    """
    if not args.data_dir:
        raise ConfigurationError("path to working dir required, please set --data-dir flag")
    data_dir = Path(args.data_dir).expanduser()
    try:
        data_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise ConfigurationError(f"Cannot use data dir {data_dir}: {exc}") from exc
    return data_dir


def print_latency_stats(latency: LatencyAccumulator) -> None:
    """Print average source request latencies, if any request was made."""
    report = latency.report()
    if report is None:
        return
    print(f"HCP Latency Stats - {report} ({report.count:,} requests)")


def crawl_roots(args: argparse.Namespace, source: SourceTransferClient) -> list[str]:
    """Namespace paths to crawl: the root, or each entry of --prefixes-file."""
    if not args.prefixes_file:
        return [""]
    try:
        prefixes = read_lines(Path(args.prefixes_file))
    except OSError as exc:
        raise ConfigurationError(f"error reading {args.prefixes_file}: {exc}") from exc
    return [join_path(source.root_path, prefix.strip()) for prefix in prefixes]


def list_command(args: argparse.Namespace, cancel_event: threading.Event) -> int:
    """Crawl the namespace into the listing file."""
    settings = source_settings_from_args(args)
    data_dir = data_dir_from_args(args)
    listing_path = Path(args.output) if args.output else data_dir / OBJECT_LISTING_FILE
    with create_http_client(settings) as http_client:
        source = SourceTransferClient(http_client, settings, trace_requests=args.debug)
        roots = crawl_roots(args, source)
        crawler = NamespaceCrawler(source, workers=args.workers, cancel_event=cancel_event)
        total = download_object_list(crawler, roots, listing_path)
    print(f"Listed {total:,} objects to {listing_path}")
    if crawler.stats is not None and crawler.stats.failed_listings:
        print(f"⚠️  {crawler.stats.failed_listings:,} directories could not be listed (see log)")
    print_latency_stats(source.latency)
    return EXIT_INTERRUPTED if cancel_event.is_set() else 0


def _destination_for(args: argparse.Namespace, data_dir: Path):
    if args.download:
        return LocalDirectoryDestination(data_dir)
    if args.fake:
        return None
    logging.info("Init destination client..")
    destination_settings = load_destination_settings(insecure=args.insecure)
    return S3Destination(create_s3_client(destination_settings), destination_settings.bucket)


def migrate_command(args: argparse.Namespace, cancel_event: threading.Event) -> int:
    """Migrate every object in the listing file."""
    settings = source_settings_from_args(args)
    data_dir = data_dir_from_args(args)
    listing_path = Path(args.input_file) if args.input_file else data_dir / OBJECT_LISTING_FILE
    if not listing_path.is_file():
        raise ConfigurationError(f"could not open file: {listing_path}")
    if args.skip < 0:
        raise ConfigurationError("--skip must not be negative")
    destination = _destination_for(args, data_dir)
    with create_http_client(settings) as http_client:
        source = SourceTransferClient(http_client, settings, trace_requests=args.debug)
        pipeline = MigrationPipeline(
            source,
            destination,
            concurrency=args.concurrency,
            dry_run=args.fake,
            annotation=settings.annotation,
            failure_log=data_dir / timestamped_name(FAILED_MIGRATIONS_FILE),
            success_log=data_dir / timestamped_name(MIGRATED_OBJECTS_FILE),
            cancel_event=cancel_event,
        )
        summary = pipeline.run(read_jobs(listing_path, skip=args.skip))
    if summary.dry_run:
        print(f"Dry run: {summary.migrated:,} objects would be migrated")
    else:
        print(f"Migrated {summary.migrated:,} objects, {summary.failed:,} failures")
        print("successfully completed migration.")
    print_latency_stats(source.latency)
    return EXIT_INTERRUPTED if cancel_event.is_set() else 0


def install_interrupt_handler(cancel_event: threading.Event) -> None:
    """First Ctrl+C asks workers to stop after their current request; the second aborts."""

    def _handler(_signum, _frame):
        if cancel_event.is_set():
            raise KeyboardInterrupt
        cancel_event.set()
        print("\nInterrupted: finishing in-flight requests (Ctrl+C again to abort)", file=sys.stderr)

    signal.signal(signal.SIGINT, _handler)


COMMANDS = {
    "list": list_command,
    "migrate": migrate_command,
}


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point for the hcp-to-s3 command."""
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args)
    cancel_event = threading.Event()
    install_interrupt_handler(cancel_event)
    try:
        return COMMANDS[args.command](args, cancel_event)
    except ConfigurationError as exc:
        logging.error("%s", exc)
        print(f"✗ {exc}", file=sys.stderr)
        return EXIT_CONFIGURATION_ERROR
    except MigrationToolError as exc:
        logging.error("%s", exc)
        print(f"✗ {exc}", file=sys.stderr)
        return 1
