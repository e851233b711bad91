"""Module that implements the commands that mirror a published tree."""

import contextlib
import os
import shutil
import sys
from typing import Optional

import treesync.codec as codec
from treesync.errors import SyncError
from treesync.logger import log
from treesync.remote import open_transport, RemoteCache, Transport
from treesync.storage import LocalStorage
from treesync.sync import ChangeLog
from .common import Operations


class ConsumerOperations(Operations):
    """Base class for commands that work with the cache of a mirrored tree."""

    def _open_cache(self, require_origin: bool = False) -> RemoteCache:
        """Open the cache directory with the change log it currently contains."""
        storage = LocalStorage(self._cache_path())

        return RemoteCache(storage, self._open_transport(require_origin))

    def _cache_path(self) -> str:
        path = getattr(self._args, "cache", None) or self._config.cache.path

        return os.path.expanduser(path)

    def _open_transport(self, require_origin: bool) -> Optional[Transport]:
        origin = getattr(self._args, "origin", None) or self._config.origin.url

        if origin is None:
            if require_origin:
                raise SyncError("no origin specified (use --origin or the config file)")

            return None

        timeout = getattr(self._args, "timeout", None) or self._config.origin.timeout

        return open_transport(origin, timeout, self._config.origin.chunk_size)


class UpdateOperations(ConsumerOperations):
    """Fetches the latest synchronization data from the origin."""

    def _run(self, stack: contextlib.ExitStack) -> int:
        storage = LocalStorage(self._cache_path())

        # A damaged change log in the cache is simply replaced by the update
        sync = ChangeLog(storage)

        try:
            sync.load()
        except SyncError as e:
            log.warning(f"ignoring unusable synchronization data in cache: {e}")
            sync = ChangeLog(storage)

        cache = RemoteCache(storage, self._open_transport(True), sync)

        previous = cache.revision
        revision = cache.update()

        print(f"updated from revision {previous} to {revision}")

        return 0


class GetOperations(ConsumerOperations):
    """
    Fetches files into the cache and prints where they are.

    Online-only files are written to stdout instead and removed from the cache again.
    """

    def _run(self, stack: contextlib.ExitStack) -> int:
        cache = self._open_cache(require_origin=True)

        for path in self._args.paths:
            if self._args.online:
                cache.mark_online(path)

                with cache.open(path) as f:
                    shutil.copyfileobj(f, sys.stdout.buffer)

                sys.stdout.buffer.flush()
            else:
                print(cache.storage.host_path(cache.get(path)))

        if self._args.online:
            cache.repair()

        return 0


class RepairOperations(ConsumerOperations):
    """Removes stale and corrupted files from the cache."""

    def _run(self, stack: contextlib.ExitStack) -> int:
        removed = self._open_cache().repair()

        for path in removed:
            print(path)

        return 0


class ListOperations(ConsumerOperations):
    """Lists a directory of the mirrored tree without fetching anything."""

    def _run(self, stack: contextlib.ExitStack) -> int:
        cache = self._open_cache()
        path = codec.normalize(self._args.path)

        snapshot = cache.snapshot

        for name in cache.listdir(path):
            child = codec.implode(codec.explode(path) + [name])

            if snapshot.contains_directory(child):
                print(f"{name}/")
            else:
                print(name)

        return 0
