"""Shared pytest fixtures for test files."""

from __future__ import annotations

import io
import os
import threading

import pytest

from hcp_migration.exceptions import SourceProtocolError
from tests.hcp_test_utils import FakeNamespace, InMemoryDestination, make_descriptor, make_source


class FakeSource:
    """Source returning canned payloads keyed by path, for pipeline tests."""

    def __init__(self, payloads=None, failures=None, key_for=None):
        self.payloads = dict(payloads or {})
        self.failures = dict(failures or {})
        self.key_for = key_for or (lambda path: path.removeprefix("/rest/"))
        self.fetched: list[tuple[str, object]] = []
        self.streams: list[io.BytesIO] = []
        self._lock = threading.Lock()

    def fetch_object(self, path, annotation=None):
        with self._lock:
            self.fetched.append((path, annotation))
        if path in self.failures:
            raise self.failures[path]
        data = self.payloads.get(path, b"data")
        stream = io.BytesIO(data)
        with self._lock:
            self.streams.append(stream)
        return stream, make_descriptor(self.key_for(path), size=len(data), source_path=path)


@pytest.fixture(name="namespace")
def fixture_namespace():
    """Empty fake namespace."""
    return FakeNamespace()


@pytest.fixture(name="source")
def fixture_source(namespace):
    """SourceTransferClient talking to the fake namespace."""
    client = make_source(namespace.handler)
    yield client
    client.http.close()


@pytest.fixture(name="destination")
def fixture_destination():
    """In-memory destination store."""
    return InMemoryDestination()


@pytest.fixture(name="fake_source")
def fixture_fake_source():
    """Source with canned payloads; configure via attributes."""
    return FakeSource()


@pytest.fixture(name="protocol_error")
def fixture_protocol_error():
    """A representative per-object protocol failure."""
    return SourceProtocolError("Bad request status 503 for /rest/x", status_code=503)


@pytest.fixture(name="clean_env")
def fixture_clean_env(monkeypatch):
    """Replace os.environ with a copy free of destination variables."""
    environ = {k: v for k, v in os.environ.items() if not k.startswith(("MINIO_", "HCP_MIGRATION"))}
    monkeypatch.setattr(os, "environ", environ)
    return environ
