"""
Recursive discovery of every object below a namespace root.

A fixed pool of listing workers pulls directory jobs from a shared queue
and decodes each listing as it streams in. Only a listing that decoded
completely is dispatched: its object paths go to a bounded output queue and
its sub-directories are queued as further jobs. Every queued job is
counted as outstanding until a worker finishes it. A single coordinator
thread waits for the count to reach zero (or for cancellation) and is the
only place that shuts the workers and the output stream down.
"""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional

import httpx

from .config import DEFAULT_LIST_WORKERS, LISTING_OUTPUT_CAPACITY
from .exceptions import ListingDecodeError, ListingFileError, SourceProtocolError
from .listing import Entry, EntryKind, read_listing

_STOP = object()
_COORDINATOR_POLL_SECONDS = 0.2


@dataclass(frozen=True)
class CrawlJob:
    """A directory waiting to be listed."""

    path: str


@dataclass(frozen=True)
class CrawlStats:
    """Counters describing a finished crawl."""

    objects: int
    directories_listed: int
    jobs_submitted: int
    failed_listings: int
    dropped_entries: int
    cancelled: bool


class NamespaceCrawler:  # pylint: disable=too-many-instance-attributes
    """Walks a namespace with a fixed pool of listing workers.

    A crawler instance runs one crawl at a time; crawl() may be called again
    once the previous crawl has been consumed.
    """

    def __init__(
        self,
        source,
        *,
        workers: int = DEFAULT_LIST_WORKERS,
        output_capacity: int = LISTING_OUTPUT_CAPACITY,
        cancel_event: Optional[threading.Event] = None,
    ):
        if workers < 1:
            raise ValueError("workers must be at least 1")
        self.source = source
        self.workers = workers
        self.output_capacity = output_capacity
        self.cancel_event = cancel_event or threading.Event()
        self.stats: Optional[CrawlStats] = None
        self._reset()

    def _reset(self):
        self._jobs: queue.Queue = queue.Queue()
        self._output: queue.Queue = queue.Queue(maxsize=self.output_capacity)
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._outstanding = 0
        self._submitted = 0
        self._listed = 0
        self._failed = 0
        self._dropped = 0

    # Outstanding-work accounting -------------------------------------------

    def _submit(self, job: CrawlJob) -> None:
        with self._lock:
            self._outstanding += 1
            self._submitted += 1
        self._jobs.put(job)

    def _job_done(self) -> None:
        with self._lock:
            self._outstanding -= 1
            if not self._outstanding:
                self._idle.notify_all()

    @property
    def outstanding(self) -> int:
        """Jobs queued or in progress"""
        with self._lock:
            return self._outstanding

    # Workers ----------------------------------------------------------------

    def _work(self) -> None:
        while True:
            job = self._jobs.get()
            if job is _STOP:
                return
            try:
                if self.cancel_event.is_set():
                    logging.debug("Crawl cancelled, skipping directory %r", job.path)
                    continue
                self._list_directory(job)
            except (SourceProtocolError, ListingDecodeError, httpx.HTTPError) as exc:
                with self._lock:
                    self._failed += 1
                logging.warning("Abandoning directory %r: %s", job.path or "/", exc)
            except Exception:  # pylint: disable=broad-exception-caught
                with self._lock:
                    self._failed += 1
                logging.exception("Unexpected error listing directory %r", job.path or "/")
            finally:
                self._job_done()

    def _list_directory(self, job: CrawlJob) -> None:
        logging.debug("Directory: %r", job.path or "/")
        with self.source.fetch_listing(job.path) as chunks:
            listing = read_listing(chunks)
        for entry in listing.entries:
            self._dispatch(entry)
        with self._lock:
            self._listed += 1

    def _dispatch(self, entry: Entry) -> None:
        logging.debug("read entry> %s at path> %s", entry.url_name, entry.object_path)
        if entry.kind is EntryKind.OBJECT:
            self._output.put(entry.object_path)
        elif entry.kind is EntryKind.DIRECTORY:
            self._submit(CrawlJob(entry.object_path))
        else:
            with self._lock:
                self._dropped += 1
            logging.debug("Dropped entry %s (type %r)", entry.object_path, entry.wire_type)

    # Coordination -----------------------------------------------------------

    def _coordinate(self, threads: list[threading.Thread]) -> None:
        with self._idle:
            while self._outstanding and not self.cancel_event.is_set():
                self._idle.wait(_COORDINATOR_POLL_SECONDS)
        for _ in threads:
            self._jobs.put(_STOP)
        for thread in threads:
            thread.join()
        self._output.put(_STOP)

    def _start(self, root: str) -> threading.Thread:
        self._reset()
        self._submit(CrawlJob(root))
        threads = [
            threading.Thread(target=self._work, name=f"hcp-list-{index}", daemon=True)
            for index in range(self.workers)
        ]
        for thread in threads:
            thread.start()
        coordinator = threading.Thread(
            target=self._coordinate, args=(threads,), name="hcp-list-coordinator", daemon=True
        )
        coordinator.start()
        return coordinator

    def crawl(self, root: str = "") -> Iterator[str]:
        """
        Yield every object path below root exactly once.

        The empty root denotes the namespace root. Iteration ends when every
        directory has been listed or the cancel event is set. Closing the
        iterator early cancels the crawl.
        """
        coordinator = self._start(root)
        seen: set[str] = set()
        finished = False
        try:
            while True:
                path = self._output.get()
                if path is _STOP:
                    finished = True
                    break
                if path in seen:
                    continue
                seen.add(path)
                yield path
        finally:
            if not finished:
                self.cancel_event.set()
                while self._output.get() is not _STOP:
                    pass
            coordinator.join()
            with self._lock:
                self.stats = CrawlStats(
                    objects=len(seen),
                    directories_listed=self._listed,
                    jobs_submitted=self._submitted,
                    failed_listings=self._failed,
                    dropped_entries=self._dropped,
                    cancelled=self.cancel_event.is_set(),
                )


def write_object_listing(crawler: NamespaceCrawler, root: str, handle) -> int:
    """Crawl root and write one object path per line to an open text file."""
    count = 0
    for path in crawler.crawl(root):
        handle.write(path + "\n")
        count += 1
    logging.info("Listed %d objects under %r", count, root or "/")
    return count


def download_object_list(crawler: NamespaceCrawler, roots: list[str], listing_path: Path) -> int:
    """
    Crawl each root in turn into a single listing file; returns the object count.

    Raises:
        ListingFileError: the listing file could not be created or written
    """
    total = 0
    try:
        with open(listing_path, "w", encoding="utf-8") as handle:
            for root in roots:
                if crawler.cancel_event.is_set():
                    break
                logging.info("Downloading namespace listing to disk for: %r", root or "/")
                total += write_object_listing(crawler, root, handle)
                handle.flush()
    except OSError as exc:
        raise ListingFileError(f"Error writing object listing {listing_path}: {exc}") from exc
    return total
