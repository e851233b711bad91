"""Module with fixtures for trees, origins and caches shared by the tests."""

import functools
from http.server import SimpleHTTPRequestHandler, ThreadingHTTPServer
import threading

import pytest

from treesync.remote import LocalTransport, RemoteCache
from treesync.storage import LocalStorage
from treesync.sync import ChangeLog, scan


class QuietHandler(SimpleHTTPRequestHandler):
    def log_message(self, format, *args):
        pass


@pytest.fixture
def tree(tmp_path):
    """Directory with a small tree of files."""
    root = tmp_path / "tree"

    (root / "b").mkdir(parents=True)
    (root / "a.txt").write_bytes(b"0123456789")
    (root / "b" / "c.txt").write_bytes(b"hello")

    return root


@pytest.fixture
def published(tree):
    """Tree with up-to-date synchronization files."""
    sync = ChangeLog(LocalStorage(str(tree)))
    sync.load()
    scan(sync)

    return tree


@pytest.fixture
def cache_storage(tmp_path):
    return LocalStorage(str(tmp_path / "cache"))


@pytest.fixture
def updated_cache(published, cache_storage):
    """Cache that has fetched the change log of the published tree."""
    cache = RemoteCache(cache_storage, LocalTransport(str(published)))
    cache.update()

    return cache


@pytest.fixture
def http_origin(published):
    """Base URL of an HTTP server that serves the published tree."""
    handler = functools.partial(QuietHandler, directory=str(published))
    server = ThreadingHTTPServer(("127.0.0.1", 0), handler)

    t = threading.Thread(target=server.serve_forever, daemon=True)
    t.start()

    try:
        yield f"http://127.0.0.1:{server.server_address[1]}/"
    finally:
        server.shutdown()
        server.server_close()
