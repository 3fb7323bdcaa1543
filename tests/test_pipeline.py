"""Tests for MigrationPipeline outcomes, idempotence, dry-run and logs."""

import threading
from unittest import mock

import pytest
from botocore.exceptions import ClientError

from hcp_migration.exceptions import OutcomeLogError
from hcp_migration.pipeline import MigrationJob, MigrationPipeline, read_jobs


def jobs_for(*paths):
    return [MigrationJob(path) for path in paths]


@pytest.fixture(name="logs")
def fixture_logs(tmp_path):
    """Failure and success log paths"""
    return tmp_path / "migration_fails.txt", tmp_path / "migration_success.txt"


def make_pipeline(source, destination, logs, **kwargs):
    failure_log, success_log = logs
    return MigrationPipeline(
        source, destination, failure_log=failure_log, success_log=success_log, **kwargs
    )


def log_lines(path):
    return path.read_text(encoding="utf-8").splitlines()


class TestIdempotence:
    """Existing destination keys are never uploaded again"""

    def test_same_path_twice_uploads_once(self, fake_source, destination, logs):
        pipeline = make_pipeline(fake_source, destination, logs, concurrency=1)

        summary = pipeline.run(jobs_for("/rest/a.pdf", "/rest/a.pdf"))

        assert destination.put_calls == ["a.pdf"]
        assert summary.migrated == 2
        assert summary.uploaded == 1
        assert summary.failed == 0
        assert log_lines(logs[1]) == ["/rest/a.pdf", "/rest/a.pdf"]

    def test_second_run_uploads_nothing(self, fake_source, destination, logs):
        jobs = jobs_for(*(f"/rest/obj{i}" for i in range(20)))
        first = make_pipeline(fake_source, destination, logs, concurrency=4).run(jobs)
        second = make_pipeline(fake_source, destination, logs, concurrency=4).run(jobs)

        assert first.uploaded == 20
        assert second.uploaded == 0
        assert second.migrated == 20
        assert len(destination.put_calls) == 20

    def test_payload_reaches_destination(self, fake_source, destination, logs):
        fake_source.payloads["/rest/a.pdf"] = b"%PDF-1.4 content"
        make_pipeline(fake_source, destination, logs).run(jobs_for("/rest/a.pdf"))
        assert destination.objects["a.pdf"] == b"%PDF-1.4 content"


class TestDryRun:
    """Dry-run never touches the destination"""

    def test_no_destination_calls(self, fake_source, logs):
        destination = mock.Mock()
        pipeline = make_pipeline(fake_source, destination, logs, dry_run=True)

        summary = pipeline.run(jobs_for("/rest/a", "/rest/b", "/rest/c"))

        assert destination.method_calls == []
        assert summary.dry_run is True
        assert summary.migrated == 3
        assert summary.uploaded == 0
        assert sorted(log_lines(logs[1])) == ["/rest/a", "/rest/b", "/rest/c"]

    def test_without_destination(self, fake_source, logs, caplog):
        caplog.set_level("INFO")
        summary = make_pipeline(fake_source, None, logs, dry_run=True).run(jobs_for("/rest/a"))
        assert summary.migrated == 1
        assert "DryRun: Migrating /rest/a => a" in caplog.text

    def test_fetch_failure_still_fails(self, fake_source, logs, protocol_error):
        fake_source.failures["/rest/bad"] = protocol_error
        summary = make_pipeline(fake_source, None, logs, dry_run=True).run(jobs_for("/rest/bad"))
        assert summary.failed == 1


class TestFailures:
    """Per-object failures are logged and never stop the pipeline"""

    def test_fetch_failure_line_format(self, fake_source, destination, logs, protocol_error):
        fake_source.failures["/rest/bad"] = protocol_error

        summary = make_pipeline(fake_source, destination, logs).run(
            jobs_for("/rest/good", "/rest/bad")
        )

        assert summary.migrated == 1
        assert summary.failed == 1
        assert log_lines(logs[0]) == [f"/rest/bad : {protocol_error}"]
        assert log_lines(logs[1]) == ["/rest/good"]

    def test_upload_failure_closes_stream(self, fake_source, logs):
        destination = mock.Mock()
        destination.exists.return_value = False
        destination.put.side_effect = ClientError(
            {"Error": {"Code": "AccessDenied", "Message": "Access Denied"}}, "PutObject"
        )

        summary = make_pipeline(fake_source, destination, logs).run(jobs_for("/rest/a"))

        assert summary.failed == 1
        assert fake_source.streams[0].closed
        assert "AccessDenied" in log_lines(logs[0])[0]

    def test_exists_failure_is_recorded(self, fake_source, logs):
        destination = mock.Mock()
        destination.exists.side_effect = ClientError(
            {"Error": {"Code": "403", "Message": "Forbidden"}}, "HeadObject"
        )

        summary = make_pipeline(fake_source, destination, logs).run(jobs_for("/rest/a"))

        assert summary.failed == 1
        destination.put.assert_not_called()

    def test_every_job_counted_once(self, fake_source, destination, logs, protocol_error):
        paths = [f"/rest/obj{i}" for i in range(200)]
        for path in paths[::7]:
            fake_source.failures[path] = protocol_error

        summary = make_pipeline(fake_source, destination, logs, concurrency=16).run(
            jobs_for(*paths)
        )

        assert summary.migrated + summary.failed == 200
        assert summary.failed == len(paths[::7])
        assert len(log_lines(logs[0])) == summary.failed
        assert len(log_lines(logs[1])) == summary.migrated

    def test_unexpected_error_is_recorded(self, fake_source, logs, caplog):
        destination = mock.Mock()
        destination.exists.return_value = False
        destination.put.side_effect = [RuntimeError("boom")] + [None] * 5
        paths = [f"/rest/obj{i}" for i in range(6)]

        summary = make_pipeline(fake_source, destination, logs, concurrency=1).run(
            jobs_for(*paths)
        )

        assert summary.failed == 1
        assert summary.migrated == 5
        assert len(log_lines(logs[0])) == 1
        assert log_lines(logs[0])[0].endswith(" : boom")
        assert all(stream.closed for stream in fake_source.streams)
        assert "Unexpected error migrating" in caplog.text

    def test_unwritable_log_raises_after_run(self, fake_source, destination, tmp_path):
        pipeline = MigrationPipeline(
            fake_source,
            destination,
            failure_log=tmp_path / "missing" / "migration_fails.txt",
            success_log=tmp_path / "migration_success.txt",
        )
        with pytest.raises(OutcomeLogError):
            pipeline.run(jobs_for("/rest/a"))
        assert destination.put_calls == ["a"]


class TestLifecycle:
    """Test start, finish and cancellation"""

    def test_annotation_passed_to_source(self, fake_source, destination, logs):
        make_pipeline(fake_source, destination, logs, annotation="myannotation").run(
            jobs_for("/rest/a")
        )
        assert fake_source.fetched == [("/rest/a", "myannotation")]

    def test_cancelled_pipeline_migrates_nothing(self, fake_source, destination, logs):
        cancel_event = threading.Event()
        cancel_event.set()

        summary = make_pipeline(fake_source, destination, logs, cancel_event=cancel_event).run(
            jobs_for("/rest/a", "/rest/b")
        )

        assert summary.migrated == 0
        assert not fake_source.fetched

    def test_start_twice(self, fake_source, destination, logs):
        pipeline = make_pipeline(fake_source, destination, logs)
        pipeline.start()
        with pytest.raises(RuntimeError):
            pipeline.start()
        pipeline.finish()

    def test_without_log_files(self, fake_source, destination):
        summary = MigrationPipeline(fake_source, destination).run(jobs_for("/rest/a"))
        assert summary.migrated == 1


class TestReadJobs:
    """Test read_jobs"""

    def test_skip_offset(self, tmp_path):
        listing = tmp_path / "object_listing.txt"
        listing.write_text("/rest/a\n/rest/b\n\n/rest/c\n", encoding="utf-8")

        assert [job.path for job in read_jobs(listing)] == ["/rest/a", "/rest/b", "/rest/c"]
        assert [(job.path, job.ordinal) for job in read_jobs(listing, skip=2)] == [("/rest/c", 3)]

    def test_skip_beyond_end(self, tmp_path):
        listing = tmp_path / "object_listing.txt"
        listing.write_text("/rest/a\n", encoding="utf-8")
        assert not list(read_jobs(listing, skip=5))
