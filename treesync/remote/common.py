"""Data structures shared by the remote cache components."""

from __future__ import annotations

import collections
from contextlib import contextmanager
from enum import auto, Enum
import threading
from typing import Dict, Iterator, List, Optional, Set

import treesync.codec as codec
from treesync.codec import FileId
from treesync.sync.changelog import ChangeLog


class FileState(Enum):
    """Verification state of a cached file within a snapshot."""

    UNKNOWN = auto()
    VERIFIED = auto()


class Snapshot:
    """
    Immutable view of a change log used to answer queries about the remote tree.

    A snapshot is built once per successful update and is never modified afterwards,
    apart from the set of paths whose cached contents have been verified against it.
    Threads that are still working with an older snapshot after an update therefore
    see a consistent tree, and whatever they verify doesn't leak into the new one.
    """

    def __init__(self, sync: ChangeLog) -> None:
        """Index the reconciled state of a loaded change log."""
        self.sync = sync

        self._files: Dict[str, FileId] = sync.state

        # Names of the tracked files directly in a directory
        self._children: Dict[str, Set[str]] = collections.defaultdict(set)

        # Names of the files and subdirectories of every directory on a tracked path
        self._entries: Dict[str, Set[str]] = collections.defaultdict(set)

        for path in self._files:
            self._children[codec.parent(path)].add(codec.basename(path))

            child = path

            for directory in codec.ancestors(path):
                self._entries[directory].add(codec.basename(child))
                child = directory

        self._verified: Set[str] = set()
        self._verified_lock = threading.Lock()

    @property
    def revision(self) -> int:
        return self.sync.revision

    def lookup(self, path: str) -> Optional[FileId]:
        return self._files.get(path)

    def is_file(self, path: str) -> bool:
        return path in self._files

    def is_directory(self, path: str) -> bool:
        """Return whether a tracked file has the path as its direct parent."""
        return path in self._children

    def children(self, path: str) -> List[str]:
        """Return the names of the tracked files whose direct parent is the path."""
        return sorted(self._children.get(path, ()))

    def contains_directory(self, path: str) -> bool:
        """Return whether the path is the root or an ancestor of a tracked file."""
        return path == "" or path in self._entries

    def entries(self, path: str) -> List[str]:
        """Return the names of the tracked files and subdirectories in a directory."""
        return sorted(self._entries.get(path, ()))

    def paths(self) -> List[str]:
        return sorted(self._files)

    def state(self, path: str) -> FileState:
        with self._verified_lock:
            if path in self._verified:
                return FileState.VERIFIED

        return FileState.UNKNOWN

    def mark(self, path: str, state: FileState) -> None:
        with self._verified_lock:
            if state == FileState.VERIFIED:
                self._verified.add(path)
            else:
                self._verified.discard(path)


class LockIndex:
    """
    Collection of mutexes to lock critical sections by arbitrary values.

    The remote cache uses it to serialize fetches of the same path while fetches of
    different paths proceed in parallel. Locks are automatically garbage collected when
    no longer in use (no threads in the critical section and none waiting to enter).
    """

    def __init__(self) -> None:
        """Instantiate a LockIndex."""
        self._global_lock = threading.Lock()

        self._locks: Dict[str, threading.Lock] = collections.defaultdict(threading.Lock)
        self._lock_users: Dict[str, int] = collections.defaultdict(int)

    @contextmanager
    def lock(self, key: str) -> Iterator[None]:
        """Lock a critical section based on the specified key."""
        with self._global_lock:
            self._lock_users[key] += 1
            lock = self._locks[key]

        try:
            with lock:
                yield
        finally:
            with self._global_lock:
                self._lock_users[key] -= 1

                if self._lock_users[key] == 0:
                    del self._lock_users[key]
                    del self._locks[key]

    @property
    def lock_count(self) -> int:
        """Return the number of locks currently in use."""
        with self._global_lock:
            return len(self._locks)
