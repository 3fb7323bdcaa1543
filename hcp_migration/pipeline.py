"""
Migration of listed source objects into a destination store.

Worker threads take MigrationJob values from a bounded queue. Each job fetches
one object, derives its destination key, skips it if the key already exists
and otherwise streams it into the destination. Outcomes are counted and sent
to two writer threads that persist the failure log and the success log.
"""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, Optional

import httpx
from botocore.exceptions import BotoCoreError, ClientError

from .config import DEFAULT_MIGRATION_CONCURRENCY
from .exceptions import MigrationToolError, OutcomeLogError

_STOP = object()

# Expected per-object failures; anything else is also recorded, with its traceback logged.
TRANSFER_ERRORS = (MigrationToolError, httpx.HTTPError, ClientError, BotoCoreError, OSError)


@dataclass(frozen=True)
class MigrationJob:
    """One source object path to migrate"""

    path: str
    ordinal: Optional[int] = None


@dataclass(frozen=True)
class MigrationOutcome:
    """Terminal result of a MigrationJob."""

    path: str
    success: bool
    key: Optional[str] = None
    uploaded: bool = False
    error: Optional[str] = None


@dataclass(frozen=True)
class MigrationSummary:
    """Final counters of a pipeline run."""

    migrated: int
    failed: int
    uploaded: int
    dry_run: bool


def _describe_error(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


class _Counter:
    """Integer counter safe for concurrent increments"""

    def __init__(self):
        self._lock = threading.Lock()
        self._value = 0

    def increment(self) -> int:
        with self._lock:
            self._value += 1
            return self._value

    @property
    def value(self) -> int:
        with self._lock:
            return self._value


def read_jobs(listing_path: Path, skip: int = 0) -> Iterator[MigrationJob]:
    """
    Yield a MigrationJob per line of an object listing file.

    The first `skip` lines are dropped so a run can resume past a known-good
    offset. Blank lines count towards the offset but produce no job.
    """
    with open(listing_path, encoding="utf-8") as handle:
        for ordinal, line in enumerate(handle):
            if ordinal < skip:
                continue
            path = line.rstrip("\r\n")
            if not path:
                continue
            yield MigrationJob(path=path, ordinal=ordinal)


class _LineWriter:
    """Background thread appending lines from a queue to a text file."""

    def __init__(self, path: Optional[Path], name: str, capacity: int):
        self.path = path
        self.lines: queue.Queue = queue.Queue(maxsize=capacity)
        self.error: Optional[OSError] = None
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)

    def start(self):
        self._thread.start()

    def write(self, line: str):
        self.lines.put(line)

    def close(self):
        self.lines.put(_STOP)
        self._thread.join()

    def _run(self):
        handle = None
        try:
            if self.path is not None:
                handle = open(self.path, "w", encoding="utf-8")  # pylint: disable=consider-using-with
        except OSError as exc:
            self.error = exc
            logging.error("Could not create %s: %s", self.path, exc)
        while True:
            line = self.lines.get()
            if line is _STOP:
                break
            if handle is None or self.error is not None:
                continue
            try:
                handle.write(line + "\n")
            except OSError as exc:
                self.error = exc
                logging.error("Error writing to %s: %s", self.path, exc)
        if handle is not None:
            handle.close()


class MigrationPipeline:  # pylint: disable=too-many-instance-attributes
    """Fixed pool of transfer workers moving source objects into a destination."""

    def __init__(  # pylint: disable=too-many-arguments
        self,
        source,
        destination,
        *,
        concurrency: int = DEFAULT_MIGRATION_CONCURRENCY,
        dry_run: bool = False,
        annotation: Optional[str] = None,
        failure_log: Optional[Path] = None,
        success_log: Optional[Path] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.source = source
        self.destination = destination
        self.concurrency = max(1, concurrency)
        self.dry_run = dry_run
        self.annotation = annotation
        self.cancel_event = cancel_event or threading.Event()
        self.migrated = _Counter()
        self.failed = _Counter()
        self.uploaded = _Counter()
        self._jobs: queue.Queue = queue.Queue(maxsize=self.concurrency)
        self._failures = _LineWriter(failure_log, "migration-fail-log", self.concurrency)
        self._successes = _LineWriter(success_log, "migration-success-log", self.concurrency)
        self._workers: list[threading.Thread] = []
        self._started = False

    def start(self) -> None:
        """Start the outcome writers and the transfer workers."""
        if self._started:
            raise RuntimeError("pipeline already started")
        self._started = True
        self._failures.start()
        self._successes.start()
        for index in range(self.concurrency):
            worker = threading.Thread(target=self._work, name=f"migrate-{index}", daemon=True)
            worker.start()
            self._workers.append(worker)

    def submit(self, job: MigrationJob) -> None:
        """Queue a job, blocking while the queue is full."""
        logging.debug("adding %s to migration queue", job.path)
        self._jobs.put(job)

    def finish(self) -> MigrationSummary:
        """
        Close the job queue, wait for the workers, then close the outcome logs.

        Raises:
            OutcomeLogError: a log file could not be written completely
        """
        for _ in self._workers:
            self._jobs.put(_STOP)
        for worker in self._workers:
            worker.join()
        self._failures.close()
        self._successes.close()
        summary = MigrationSummary(
            migrated=self.migrated.value,
            failed=self.failed.value,
            uploaded=self.uploaded.value,
            dry_run=self.dry_run,
        )
        if self.dry_run:
            logging.info("Dry run: %d objects would be migrated", summary.migrated)
        else:
            logging.info("Migrated %d objects, %d failures", summary.migrated, summary.failed)
        for writer in (self._failures, self._successes):
            if writer.error is not None:
                raise OutcomeLogError(f"Could not write {writer.path}: {writer.error}")
        return summary

    def run(self, jobs: Iterable[MigrationJob]) -> MigrationSummary:
        """Migrate every job and return the final counters."""
        self.start()
        try:
            for job in jobs:
                if self.cancel_event.is_set():
                    logging.warning("Migration cancelled; remaining jobs were not queued")
                    break
                self.submit(job)
        finally:
            summary = self.finish()
        return summary

    def _work(self) -> None:
        while True:
            job = self._jobs.get()
            if job is _STOP:
                return
            if self.cancel_event.is_set():
                logging.debug("Migration cancelled, not migrating %s", job.path)
                continue
            logging.debug("Migrating...%s", job.path)
            try:
                outcome = self.migrate_object(job.path)
            except Exception as exc:  # pylint: disable=broad-exception-caught
                logging.exception("Unexpected error migrating %s", job.path)
                outcome = MigrationOutcome(path=job.path, success=False, error=_describe_error(exc))
            self._record(outcome)

    def _record(self, outcome: MigrationOutcome) -> None:
        if outcome.success:
            self.migrated.increment()
            if outcome.uploaded:
                self.uploaded.increment()
            self._successes.write(outcome.path)
        else:
            self.failed.increment()
            logging.info("error migrating object %s: %s", outcome.path, outcome.error)
            self._failures.write(f"{outcome.path} : {outcome.error}")

    def migrate_object(self, path: str) -> MigrationOutcome:
        """Fetch, check and upload a single object; never raises for transfer errors."""
        try:
            stream, descriptor = self.source.fetch_object(path, self.annotation)
        except TRANSFER_ERRORS as exc:
            return MigrationOutcome(path=path, success=False, error=_describe_error(exc))
        try:
            if self.dry_run:
                logging.info("DryRun: Migrating %s => %s", path, descriptor.key)
                return MigrationOutcome(path=path, success=True, key=descriptor.key)
            if self.destination.exists(descriptor.key):
                logging.debug(
                    "object already exists on %s %s not migrated", self.destination, descriptor.key
                )
                return MigrationOutcome(path=path, success=True, key=descriptor.key)
            self.destination.put(descriptor.key, stream, descriptor)
        except TRANSFER_ERRORS as exc:
            logging.debug("upload of %s failed: %s", descriptor.key, exc)
            return MigrationOutcome(
                path=path, success=False, key=descriptor.key, error=_describe_error(exc)
            )
        finally:
            stream.close()
        logging.debug("Uploaded %s successfully", descriptor.key)
        return MigrationOutcome(path=path, success=True, key=descriptor.key, uploaded=True)
