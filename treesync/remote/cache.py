"""Module that implements the lazily fetching cache of a remote tree."""

from __future__ import annotations

import contextlib
import errno
import os
import tempfile
import threading
from typing import Callable, IO, List, Optional, Set

import treesync.codec as codec
from treesync.codec import FileId
from treesync.constants import SYNC_LOG_FILENAME, SYNC_META_FILENAME, TEMP_PREFIX
from treesync.errors import IntegrityMismatch, LocalStorageFailure, TransportFailure
from treesync.logger import log
from treesync.remote.common import FileState, LockIndex, Snapshot
from treesync.remote.transport import Transport
from treesync.storage import Attributes, LocalStorage, ReadOnlyFileSystem
from treesync.sync.changelog import ChangeLog


class RemoteCache(ReadOnlyFileSystem):
    """
    Read-only file system that mirrors a remote tree on demand.

    The cache is made up of a local directory and a transport to the origin of the
    tree. The local directory contains a copy of the origin's change log along with
    any files that have been fetched so far, at the same paths as in the origin.

    The design is based on the idea that the change log is all that's needed to answer
    questions about the structure of the tree:

    * file_exists(), is_directory(), readdir() and listdir() never touch the network.
    * open() and stat() fetch the file only if there is no local copy yet, or if the
    local copy doesn't match the digest and size in the change log.

    Fetched contents are always verified before they are used. A partially fetched file
    (e.g. because the connection dropped) is resumed from where it left off, but if the
    result doesn't verify then the file is fetched once more from scratch before giving
    up with IntegrityMismatch.

    The change log is only replaced by update(), which downloads and verifies a new
    log from the origin, installs it and then repairs the local directory: files that
    are no longer part of the tree, whose contents no longer match, or that were marked
    as online-only are deleted. All queries are answered from a snapshot of the change
    log that is swapped out as a whole, so queries that are running during an update
    finish against the old tree.
    """

    def __init__(
        self,
        storage: LocalStorage,
        transport: Optional[Transport] = None,
        sync: Optional[ChangeLog] = None,
    ) -> None:
        """
        Instantiate a cache in the specified storage for the tree at the origin.

        If no change log is given then the one stored in the cache directory is loaded,
        which may be empty if the cache has never been updated. Without a transport,
        only files that are already cached can be used.
        """
        self._storage = storage
        self._transport = transport

        if sync is None:
            sync = ChangeLog(storage)
            sync.load()

        self._snapshot = Snapshot(sync)
        self._snapshot_lock = threading.Lock()

        # Serializes update() and repair(); queries only take the snapshot lock
        self._update_lock = threading.RLock()

        self._fetch_locks = LockIndex()

        self._online: Set[str] = set()
        self._online_lock = threading.Lock()

    @property
    def storage(self) -> LocalStorage:
        return self._storage

    @property
    def snapshot(self) -> Snapshot:
        """Return the snapshot that queries are currently answered from."""
        with self._snapshot_lock:
            return self._snapshot

    @property
    def revision(self) -> int:
        return self.snapshot.revision

    @property
    def transport(self) -> Transport:
        if self._transport is None:
            raise TransportFailure("no origin to download from has been configured")

        return self._transport

    def state(self, path: str) -> FileState:
        """Return whether the cached copy of a file is known to be valid."""
        return self.snapshot.state(codec.normalize(path))

    #
    # Queries answered from the change log
    #

    def file_exists(self, path: str) -> bool:
        path = codec.normalize(path)
        snapshot = self.snapshot

        return path == "" or snapshot.is_file(path) or snapshot.is_directory(path)

    def is_directory(self, path: str) -> bool:
        """Return whether a tracked file has the path as its direct parent."""
        return self.snapshot.is_directory(codec.normalize(path))

    def readdir(self, path: str) -> List[str]:
        """
        List the names of the tracked files whose direct parent is the path.

        Subdirectories aren't included and unknown paths give an empty list. Use
        listdir() to browse the tree including its subdirectories.
        """
        return self.snapshot.children(codec.normalize(path))

    def listdir(self, path: str) -> List[str]:
        """List the names of the tracked files and subdirectories in a directory."""
        path = codec.normalize(path)
        snapshot = self.snapshot

        if not snapshot.contains_directory(path):
            if snapshot.is_file(path):
                raise NotADirectoryError(errno.ENOTDIR, "not a directory", path)
            else:
                raise FileNotFoundError(errno.ENOENT, "no such directory", path)

        return snapshot.entries(path)

    #
    # Operations on cached contents
    #

    def open(self, path: str, mode: str = "rb") -> IO:
        """
        Open a file for reading, fetching it first if needed.

        Cached files can only be opened for reading.
        """
        if any(c in mode for c in "wax+"):
            raise OSError(errno.EROFS, "remote cache is read-only", path)

        path = self.get(path)

        return self._storage.open(path, mode)

    def stat(self, path: str) -> Attributes:
        """Retrieve the (read-only) attributes of a file, fetching it if needed."""
        path = codec.normalize(path)

        if self.snapshot.contains_directory(path):
            self._storage.mkdir(path)
        else:
            self.get(path)

        return self._storage.stat(path).as_readonly()

    def get(self, path: str, trust_digest: bool = False) -> str:
        """
        Make sure that a valid copy of a file is present in the cache.

        If a local copy exists and matches its recorded digest and size, nothing is
        downloaded. If trust_digest is set, only the size of an existing copy is checked
        and its digest is assumed to be right.

        Returns the normalized path of the file within the cache storage.
        """
        path = codec.normalize(path)
        snapshot = self.snapshot

        expected = snapshot.lookup(path)

        if expected is None:
            raise FileNotFoundError(
                errno.ENOENT, "not part of the synchronization data", path
            )

        with self._fetch_locks.lock(path):
            # Verified files only need their size checked
            trusted = trust_digest or snapshot.state(path) == FileState.VERIFIED

            if self._digest_ok(snapshot, path, expected, trusted):
                return path

            self._fetch(snapshot, path, expected)

        return path

    def _fetch(self, snapshot: Snapshot, path: str, expected: FileId) -> None:
        """Download a file (resuming a partial copy if possible) and verify it."""
        url = self.transport.url(path)

        try:
            self._storage.mkdir(codec.parent(path))

            local_size = self._local_size(path)

            # A copy that isn't smaller than expected can't be completed by resuming
            resumed = 0 < local_size < expected.size

            if not resumed and local_size >= 0:
                self._storage.remove([path])
        except OSError as e:
            raise LocalStorageFailure(f"failed to prepare cache for {path}: {e}") from e

        attempts = [True, False] if resumed else [False]
        actual: Optional[FileId] = None
        reason = ""

        for resume in attempts:
            if not resume:
                self._storage.remove([path])

            self._download(path)

            try:
                actual = self._storage.file_id(path)
            except FileNotFoundError:
                actual = None
                reason = "file disappeared from the cache during the download"
            else:
                if actual == expected:
                    snapshot.mark(path, FileState.VERIFIED)
                    log.debug(f"fetched and verified {path}")
                    return

                reason = codec.describe_mismatch(expected, actual)

            log.warning(
                f"downloading {path} from {url} gave the wrong contents ({reason})"
            )

        raise IntegrityMismatch(
            f"downloading file '{path}' from '{url}' doesn't give the right checksum "
            f"({reason}), update and try again",
            path,
            expected,
            actual,
        )

    def _download(self, path: str) -> None:
        """Append the missing part of a file from the origin to the cached copy."""
        host_path = self._storage.host_path(path)

        try:
            f = open(host_path, "ab")
        except OSError as e:
            raise LocalStorageFailure(f"failed to open {host_path}: {e}") from e

        with f:
            offset = f.seek(0, os.SEEK_END)

            if offset > 0:
                log.info(f"resuming download of {path} at byte {offset}")
            else:
                log.info(f"downloading {path}")

            self.transport.download(path, f)

    def _local_size(self, path: str) -> int:
        """Return the size of the cached copy of a file, or -1 if there is none."""
        try:
            return self._storage.size(path)
        except FileNotFoundError:
            return -1

    def _digest_ok(
        self,
        snapshot: Snapshot,
        path: str,
        expected: FileId,
        trusted: bool = False,
    ) -> bool:
        """
        Check if the cached copy of a file matches its recorded digest and size.

        If the digest is trusted, only the size of the cached copy is compared.
        """
        if not self._storage.is_file(path):
            snapshot.mark(path, FileState.UNKNOWN)
            return False

        actual = self._storage.file_id(path, expected.digest if trusted else None)

        if actual != expected:
            snapshot.mark(path, FileState.UNKNOWN)
            return False

        if not trusted:
            snapshot.mark(path, FileState.VERIFIED)

        return True

    #
    # Online-only files
    #

    def mark_online(self, path: str) -> None:
        """
        Mark a file as online-only.

        Online-only files can still be read, but they are deleted from the cache by the
        next repair (and therefore by the next update).
        """
        with self._online_lock:
            self._online.add(codec.normalize(path))

    def is_online(self, path: str) -> bool:
        with self._online_lock:
            return codec.normalize(path) in self._online

    #
    # Repair and update
    #

    def repair(self) -> List[str]:
        """
        Delete everything from the cache that shouldn't be there.

        The cache is cleaned in multiple passes: online-only files are deleted first,
        then files that aren't part of the tree and then files that don't match their
        digest and size. Afterwards, empty directories are deleted until there are none
        left.

        Each file is checked and deleted while holding its fetch lock, so files that are
        being downloaded are only looked at once the download has finished.

        Returns the paths of the deleted files.
        """
        with self._update_lock:
            snapshot = self.snapshot

            removed: List[str] = []
            removed += self._clean_files(lambda p: not self.is_online(p), "online-only")
            removed += self._clean_files(snapshot.is_file, "not part of the tree")
            removed += self._clean_files(
                lambda p: self._matches_log(snapshot, p), "wrong digest or size"
            )

            self._clean_empty_dirs()

        if removed:
            log.info(f"repair removed {len(removed)} files from the cache")

        return removed

    def _matches_log(self, snapshot: Snapshot, path: str) -> bool:
        expected = snapshot.lookup(path)

        return expected is not None and self._digest_ok(snapshot, path, expected)

    def _clean_files(self, keep: Callable[[str], bool], reason: str) -> List[str]:
        """Delete all cached files that don't satisfy a predicate."""
        removed = []

        for path in list(self._storage.files()):
            with self._fetch_locks.lock(path):
                if not keep(path):
                    log.info(f"file {path} is to be removed from the cache ({reason})")
                    removed += self._storage.remove([path])

        return removed

    def _clean_empty_dirs(self) -> None:
        """Delete empty directories until a pass doesn't delete anything."""
        while True:
            empty = self._storage.empty_directories()

            if not empty:
                return

            for path in empty:
                log.info(f"directory {path} is empty")

                with contextlib.suppress(FileNotFoundError):
                    self._storage.rmdir(path)

    def update(self) -> int:
        """
        Synchronize the cache with the current change log of the origin.

        The meta record and log are downloaded to temporary files and the log is
        verified against the meta record. Only if that succeeds are they moved into
        place, after which the new change log is loaded and the cache is repaired.
        A failure at any point leaves the current change log untouched.

        Returns the revision of the new change log.
        """
        with self._update_lock, contextlib.ExitStack() as stack:
            self._storage.mkdir("")

            meta_path = self._temp_file(stack, SYNC_META_FILENAME)
            log_path = self._temp_file(stack, SYNC_LOG_FILENAME)

            log.info(
                f"downloading meta synchronization data "
                f"'{self.transport.url(SYNC_META_FILENAME)}'"
            )
            self._download_to(SYNC_META_FILENAME, meta_path)

            with open(meta_path, "r", encoding="utf-8") as f:
                meta = codec.decode_meta(f.read())

            url = self.transport.url(SYNC_LOG_FILENAME)

            log.info(f"downloading synchronization data '{url}'")
            self._download_to(SYNC_LOG_FILENAME, log_path)

            with open(log_path, "rb") as f:
                actual = FileId(codec.file_digest(f), f.tell())

            if actual != meta.log_id:
                raise IntegrityMismatch(
                    f"download of '{url}' failed "
                    f"({codec.describe_mismatch(meta.log_id, actual)})",
                    SYNC_LOG_FILENAME,
                    meta.log_id,
                    actual,
                )

            log.info(f"download of '{url}' successful")

            current = self.snapshot.revision

            if meta.revision < current:
                log.warning(
                    f"origin went back from revision {current} to {meta.revision}"
                )

            sync = ChangeLog(self._storage)
            sync.install(log_path, meta_path)

            snapshot = Snapshot(sync)

            with self._snapshot_lock:
                self._snapshot = snapshot

            # Fix obvious problems in the cached tree
            self.repair()

            return sync.revision

    def _temp_file(self, stack: contextlib.ExitStack, name: str) -> str:
        """Create a temporary file in the cache that is deleted when the stack exits."""
        fd, path = tempfile.mkstemp(
            prefix=f"{TEMP_PREFIX}{name}-", suffix=".tmp", dir=self._storage.root
        )
        os.close(fd)

        def cleanup() -> None:
            with contextlib.suppress(FileNotFoundError):
                os.remove(path)

        stack.callback(cleanup)

        return path

    def _download_to(self, path: str, host_path: str) -> None:
        with open(host_path, "r+b") as f:
            f.truncate()
            self.transport.download(path, f)
