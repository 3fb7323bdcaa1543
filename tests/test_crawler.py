"""Tests for NamespaceCrawler completion, deduplication and failure isolation."""

import threading

import httpx
import pytest

from hcp_migration.crawler import NamespaceCrawler, download_object_list, write_object_listing
from hcp_migration.exceptions import ListingFileError
from tests.hcp_test_utils import make_source


def build_tree(namespace, root="/rest", depth=3, width=3):
    """Populate a balanced tree; returns the expected object paths."""
    expected = set()
    files = [(f"file{i}.dat", "object") for i in range(width)]
    dirs = [(f"dir{i}", "directory") for i in range(width)] if depth else []
    namespace.add_directory(root, files + dirs)
    expected.update(f"{root}/{name}" for name, _ in files)
    for name, _ in dirs:
        expected |= build_tree(namespace, f"{root}/{name}", depth - 1, width)
    return expected


@pytest.fixture(name="simple_namespace")
def fixture_simple_namespace(namespace):
    """Root with two objects and one sub-directory holding a third"""
    namespace.add_directory("/rest", [("a.txt", "object"), ("b.txt", "object"), ("sub", "directory")])
    namespace.add_directory("/rest/sub", [("c.txt", "object")])
    return namespace


class TestCrawl:
    """Test NamespaceCrawler.crawl"""

    def test_lists_every_object(self, simple_namespace, source):
        crawler = NamespaceCrawler(source, workers=2)

        paths = list(crawler.crawl())

        assert sorted(paths) == ["/rest/a.txt", "/rest/b.txt", "/rest/sub/c.txt"]
        assert crawler.stats.objects == 3
        assert crawler.stats.cancelled is False
        assert crawler.outstanding == 0

    def test_one_job_per_directory(self, namespace, source):
        """N sub-directories produce exactly N listing jobs besides the root"""
        subdirs = [(f"d{i}", "directory") for i in range(25)]
        namespace.add_directory("/rest", subdirs)
        for name, _ in subdirs:
            namespace.add_directory(f"/rest/{name}", [("obj", "object")])
        crawler = NamespaceCrawler(source, workers=4)

        paths = list(crawler.crawl())

        assert len(paths) == 25
        assert crawler.stats.jobs_submitted == 26
        assert crawler.stats.directories_listed == 26
        assert sorted(namespace.listing_requests()) == sorted(
            ["/rest"] + [f"/rest/{name}" for name, _ in subdirs]
        )

    def test_deep_tree_each_object_once(self, namespace, source):
        expected = build_tree(namespace)
        crawler = NamespaceCrawler(source, workers=8, output_capacity=4)

        paths = list(crawler.crawl())

        assert len(paths) == len(expected)
        assert set(paths) == expected

    def test_directories_are_never_emitted(self, simple_namespace, source):
        paths = list(NamespaceCrawler(source).crawl())
        assert "/rest/sub" not in paths

    def test_empty_root(self, namespace, source):
        namespace.add_directory("/rest", [])
        crawler = NamespaceCrawler(source)

        assert not list(crawler.crawl())
        assert crawler.stats.directories_listed == 1
        assert crawler.stats.failed_listings == 0

    def test_other_entry_kinds_are_dropped(self, namespace, source):
        namespace.add_directory("/rest", [("a.txt", "object"), ("link", "symlink")])
        crawler = NamespaceCrawler(source)

        assert list(crawler.crawl()) == ["/rest/a.txt"]
        assert crawler.stats.dropped_entries == 1

    def test_duplicate_entries_emitted_once(self, namespace, source):
        namespace.add_directory("/rest", [("a.txt", "object"), ("a.txt", "object")])
        assert list(NamespaceCrawler(source).crawl()) == ["/rest/a.txt"]

    def test_crawl_from_prefix(self, simple_namespace, source):
        assert list(NamespaceCrawler(source).crawl("/rest/sub")) == ["/rest/sub/c.txt"]

    def test_crawler_is_reusable(self, simple_namespace, source):
        crawler = NamespaceCrawler(source)
        first = sorted(crawler.crawl())
        second = sorted(crawler.crawl())
        assert first == second

    def test_rejects_zero_workers(self, source):
        with pytest.raises(ValueError):
            NamespaceCrawler(source, workers=0)


class TestFailureIsolation:
    """A failing directory is abandoned while its siblings complete"""

    def test_malformed_listing(self, namespace, source):
        namespace.add_directory(
            "/rest", [("good", "directory"), ("bad", "directory"), ("top.txt", "object")]
        )
        namespace.add_directory("/rest/good", [("g.txt", "object")])
        namespace.listings["/rest/bad"] = (
            b'<directory path="/rest/bad"><entry urlName="early.txt" type="object"/>'
            b'<entry urlName="nested" type="directory"/><entry urlName='
        )
        namespace.add_directory("/rest/bad/nested", [("deep.txt", "object")])
        crawler = NamespaceCrawler(source, workers=2)

        paths = sorted(crawler.crawl())

        assert paths == ["/rest/good/g.txt", "/rest/top.txt"]
        assert crawler.stats.failed_listings == 1
        assert "/rest/bad/nested" not in namespace.listing_requests()
        assert crawler.outstanding == 0

    def test_malformed_root_emits_nothing(self, namespace, source):
        """Entries decoded before the break are discarded with their listing"""
        namespace.listings["/rest"] = (
            b'<directory path="/rest"><entry urlName="early.txt" type="object"/>'
            b'<entry urlName="sub" type="directory"/><entry urlName='
        )
        namespace.add_directory("/rest/sub", [("deep.txt", "object")])
        crawler = NamespaceCrawler(source)

        assert not list(crawler.crawl())
        assert crawler.stats.failed_listings == 1
        assert crawler.stats.jobs_submitted == 1
        assert namespace.listing_requests() == ["/rest"]

    def test_unexpected_error_keeps_single_worker_alive(self, namespace):
        namespace.add_directory(
            "/rest", [("boom", "directory"), ("ok", "directory"), ("top.txt", "object")]
        )
        namespace.add_directory("/rest/ok", [("fine.txt", "object")])

        def handler(request):
            if request.url.path == "/rest/boom":
                raise RuntimeError("unexpected transport state")
            return namespace.handler(request)

        crawler = NamespaceCrawler(make_source(handler), workers=1)

        assert sorted(crawler.crawl()) == ["/rest/ok/fine.txt", "/rest/top.txt"]
        assert crawler.stats.failed_listings == 1
        assert crawler.outstanding == 0

    def test_error_status(self, namespace, source):
        namespace.add_directory("/rest", [("missing", "directory"), ("top.txt", "object")])
        crawler = NamespaceCrawler(source)

        assert list(crawler.crawl()) == ["/rest/top.txt"]
        assert crawler.stats.failed_listings == 1

    def test_transport_error(self, namespace):
        namespace.add_directory("/rest", [("flaky", "directory"), ("top.txt", "object")])

        def handler(request):
            if request.url.path == "/rest/flaky":
                raise httpx.ReadTimeout("timed out", request=request)
            return namespace.handler(request)

        crawler = NamespaceCrawler(make_source(handler))

        assert list(crawler.crawl()) == ["/rest/top.txt"]
        assert crawler.stats.failed_listings == 1

    def test_root_failure_ends_crawl(self, namespace, source):
        crawler = NamespaceCrawler(source)
        assert not list(crawler.crawl())
        assert crawler.stats.failed_listings == 1


class TestCancellation:
    """Test cancel event and early close"""

    def test_preset_cancel_lists_nothing(self, simple_namespace, source):
        cancel_event = threading.Event()
        cancel_event.set()
        crawler = NamespaceCrawler(source, cancel_event=cancel_event)

        assert not list(crawler.crawl())
        assert crawler.stats.cancelled is True
        assert not simple_namespace.listing_requests()

    def test_closing_iterator_early_stops_workers(self, namespace, source):
        build_tree(namespace, depth=2, width=6)
        crawler = NamespaceCrawler(source, workers=3, output_capacity=1)

        paths = crawler.crawl()
        first = next(paths)
        paths.close()

        assert first.startswith("/rest/")
        assert crawler.stats.cancelled is True


class TestListingFiles:
    """Test write_object_listing and download_object_list"""

    def test_write_object_listing(self, simple_namespace, source, tmp_path):
        target = tmp_path / "object_listing.txt"
        with open(target, "w", encoding="utf-8") as handle:
            count = write_object_listing(NamespaceCrawler(source), "", handle)

        lines = target.read_text(encoding="utf-8").splitlines()
        assert count == 3
        assert sorted(lines) == ["/rest/a.txt", "/rest/b.txt", "/rest/sub/c.txt"]

    def test_download_object_list_multiple_roots(self, namespace, source, tmp_path):
        namespace.add_directory("/rest/x", [("1.txt", "object")])
        namespace.add_directory("/rest/y", [("2.txt", "object"), ("z", "directory")])
        namespace.add_directory("/rest/y/z", [("3.txt", "object")])
        target = tmp_path / "object_listing.txt"

        total = download_object_list(NamespaceCrawler(source), ["/rest/x", "/rest/y"], target)

        assert total == 3
        assert sorted(target.read_text(encoding="utf-8").splitlines()) == [
            "/rest/x/1.txt",
            "/rest/y/2.txt",
            "/rest/y/z/3.txt",
        ]

    def test_download_object_list_unwritable_path(self, simple_namespace, source, tmp_path):
        target = tmp_path / "missing" / "object_listing.txt"

        with pytest.raises(ListingFileError, match="Error writing object listing"):
            download_object_list(NamespaceCrawler(source), [""], target)
