"""Module with the change log that records which files exist in a tree."""

from __future__ import annotations

import os
import threading
from typing import Dict, Iterable, List, Optional, Tuple

import fasteners

import treesync.codec as codec
from treesync.codec import Add, Entry, FileId, MetaRecord, Remove
from treesync.constants import (
    SYNC_LOCK_FILENAME,
    SYNC_LOG_FILENAME,
    SYNC_META_FILENAME,
    TEMP_PREFIX,
)
from treesync.errors import FormatError, InconsistentLog, IntegrityMismatch
from treesync.logger import log, summarize
from treesync.storage import LocalStorage

EMPTY_LOG = FileId(codec.data_digest(b""), 0)


class ChangeLog:
    """
    Append-only record of the files in a tree and their digest and size.

    The change log consists of an ordered sequence of Add and Remove entries, and the
    reconciled state that results from replaying them: a mapping of every existing path
    to its FileId. Adding a file with an unchanged identity or removing a file that is
    not there does not produce an entry, so every entry is a real change.

    The entries are persisted in two files at the root of the tree:

    * sync.jsonl contains every entry since the tree was created, one per line. Lines
    are only ever appended to it.
    * sync-meta.json contains a revision number along with the size and digest of
    sync.jsonl. It is used to verify that the log is complete and uncorrupted, which is
    especially important for consumers that download both files over the network.

    dump() appends the entries created since the previous dump and only writes the meta
    record after that has succeeded. The meta record is replaced atomically, so readers
    never see it describe anything but a complete log. If the process dies in between,
    the new lines in sync.jsonl are not covered by the meta record and are discarded by
    the next dump.

    All mutations and dumps of the same instance are serialized by a lock and dumps and
    loads are protected against other processes by a lock file. There can still only be
    a single writer per tree: a dump fails if another writer has modified the files
    since this instance last read or wrote them.
    """

    def __init__(self, storage: LocalStorage) -> None:
        """Instantiate an empty change log for the tree in the specified storage."""
        self._storage = storage

        self._lock = threading.RLock()
        self._process_lock = fasteners.InterProcessLock(
            storage.host_path(SYNC_LOCK_FILENAME)
        )

        self._entries: List[Entry] = []
        self._state: Dict[str, FileId] = {}

        # Last persisted (or loaded) entries and the log file they correspond to
        self._dumped: List[Entry] = []
        self._log_id = EMPTY_LOG
        self._revision = 0

    @classmethod
    def create(cls, storage: LocalStorage, recover: bool = False) -> ChangeLog:
        """
        Load the change log of a tree, or create it if the tree doesn't have one yet.

        Either way the synchronization files exist on disk afterwards.
        """
        sync = cls(storage)
        sync.load(recover)
        sync.dump()

        return sync

    #
    # Reconciled state
    #

    @property
    def storage(self) -> LocalStorage:
        return self._storage

    @property
    def revision(self) -> int:
        """Return the revision of the last dumped or loaded log."""
        return self._revision

    @property
    def size(self) -> int:
        """Return the size of the last dumped or loaded log file."""
        return self._log_id.size

    @property
    def entries(self) -> Tuple[Entry, ...]:
        with self._lock:
            return tuple(self._entries)

    @property
    def state(self) -> Dict[str, FileId]:
        with self._lock:
            return dict(self._state)

    @property
    def dirty(self) -> bool:
        """Return whether there are entries that haven't been dumped yet."""
        with self._lock:
            return len(self._entries) != len(self._dumped)

    def lookup(self, path: str) -> Optional[FileId]:
        """Return the recorded identity of a file, or None if it isn't tracked."""
        with self._lock:
            return self._state.get(codec.normalize(path))

    def paths(self) -> List[str]:
        """Return all tracked paths in sorted order."""
        with self._lock:
            return sorted(self._state)

    def __contains__(self, path: object) -> bool:
        if not isinstance(path, str):
            return False

        with self._lock:
            return codec.normalize(path) in self._state

    def __len__(self) -> int:
        with self._lock:
            return len(self._state)

    @staticmethod
    def replay(entries: Iterable[Entry]) -> Dict[str, FileId]:
        """Compute the reconciled state that results from a sequence of entries."""
        state: Dict[str, FileId] = {}

        for entry in entries:
            if isinstance(entry, Add):
                state[entry.path] = entry.file_id
            else:
                state.pop(entry.path, None)

        return state

    #
    # Mutations
    #

    def add(self, path: str, digest: bytes, size: int) -> bool:
        """
        Record that a file exists with the specified digest and size.

        Returns whether an entry was created, which isn't the case if the file was
        already recorded with the same identity.
        """
        path = self._checked_path(path)
        file_id = FileId(digest, size)

        with self._lock:
            if self._state.get(path) == file_id:
                return False

            self._entries.append(Add(path, digest, size))
            self._state[path] = file_id

            return True

    def add_file(self, path: str, digest: Optional[bytes] = None) -> bool:
        """Record a file in the tree with the digest and size it currently has."""
        file_id = self._storage.file_id(path, digest)

        return self.add(path, file_id.digest, file_id.size)

    def remove(self, path: str) -> bool:
        """
        Record that a file no longer exists.

        Returns whether an entry was created, which isn't the case if the file wasn't
        recorded to begin with.
        """
        path = self._checked_path(path)

        with self._lock:
            if path not in self._state:
                return False

            self._entries.append(Remove(path))
            del self._state[path]

            return True

    def _checked_path(self, path: str) -> str:
        path = codec.normalize(path)

        if not path:
            raise ValueError("the root of the tree is not a file")
        elif self._storage.is_reserved(path):
            raise ValueError(f"{path} is reserved for synchronization data")

        return path

    #
    # Persistence
    #

    def dump(self) -> int:
        """
        Append all new entries to the log file and update the meta record.

        Returns the revision of the log, which is incremented if there were new entries.
        """
        with self._lock, self._process_lock:
            unwritten = self._unwritten_entries()

            self._check_unchanged_on_disk()
            self._storage.mkdir("")

            log_id = self._append(unwritten)
            revision = self._revision + 1 if unwritten else self._revision

            self._write_meta(MetaRecord(revision, log_id.size, log_id.digest))

            self._dumped = list(self._entries)
            self._log_id = log_id
            self._revision = revision

        if unwritten:
            log.info(
                f"appended {len(unwritten)} entries to {SYNC_LOG_FILENAME} "
                f"(revision {revision})"
            )
            log.debug(f"appended entries: {summarize(unwritten)}")

        return revision

    def _unwritten_entries(self) -> List[Entry]:
        """
        Determine the entries created since the last dump.

        The entries that were dumped before must still be the start of the current
        sequence. If they aren't then history has been rewritten in memory and there is
        no way to tell which entries still need to be written.
        """
        dumped_count = len(self._dumped)

        if (
            len(self._entries) < dumped_count
            or self._entries[:dumped_count] != self._dumped
        ):
            raise InconsistentLog(
                f"unable to find new entries for {SYNC_LOG_FILENAME}: the last "
                "dumped entries are no longer a prefix of the change log"
            )

        return self._entries[dumped_count:]

    def _check_unchanged_on_disk(self) -> None:
        """Assert that the files on disk still describe the last dumped/loaded log."""
        meta_path = self._storage.host_path(SYNC_META_FILENAME)

        try:
            meta = self._read_meta(meta_path)
        except FileNotFoundError:
            meta = None

        on_disk = meta.log_id if meta else EMPTY_LOG

        if on_disk != self._log_id or (meta and meta.revision != self._revision):
            raise InconsistentLog(
                f"{SYNC_META_FILENAME} was modified by another writer or the change "
                "log was not loaded before dumping"
            )

    def _append(self, entries: List[Entry]) -> FileId:
        """
        Append entries to the log file and return the identity of the resulting file.

        The entries are written directly after the committed part of the file. Anything
        beyond that was never covered by a meta record and is discarded.
        """
        log_path = self._storage.host_path(SYNC_LOG_FILENAME)
        committed = self._log_id.size

        fd = os.open(log_path, os.O_RDWR | os.O_CREAT, 0o644)

        with os.fdopen(fd, "r+b") as f:
            actual_size = f.seek(0, os.SEEK_END)

            if actual_size > committed:
                log.warning(
                    f"discarding {actual_size - committed} uncommitted bytes at the "
                    f"end of {SYNC_LOG_FILENAME}"
                )
            elif actual_size < committed:
                raise IntegrityMismatch(
                    f"{SYNC_LOG_FILENAME} has been truncated "
                    f"({actual_size} < {committed} bytes)",
                    SYNC_LOG_FILENAME,
                )

            f.seek(committed)
            f.truncate()

            for entry in entries:
                f.write((codec.encode_entry(entry) + "\n").encode("utf-8"))

            f.flush()
            os.fsync(f.fileno())

            f.seek(0)
            digest = codec.file_digest(f)
            size = f.tell()

        return FileId(digest, size)

    def _write_meta(self, meta: MetaRecord) -> None:
        """Atomically replace the meta record."""
        tmp_path = self._storage.host_path(f"{TEMP_PREFIX}{SYNC_META_FILENAME}")

        with open(tmp_path, "w", encoding="utf-8") as f:
            f.write(codec.encode_meta(meta) + "\n")
            f.flush()
            os.fsync(f.fileno())

        self._storage.replace(tmp_path, SYNC_META_FILENAME)

    @staticmethod
    def _read_meta(path: str) -> MetaRecord:
        with open(path, "r", encoding="utf-8") as f:
            return codec.decode_meta(f.read())

    def load(self, recover: bool = False) -> None:
        """
        Replace the in-memory change log with the one stored on disk.

        The log file is checked against the meta record first and IntegrityMismatch is
        raised if its size or digest differs. If recover is set, a log file that only
        has extra data at the end (e.g. from a dump that was interrupted before the
        meta record was written) is accepted and the extra data is ignored.

        If there is no meta record then the change log is left empty, because any log
        file without one was never completely written.
        """
        with self._lock, self._process_lock:
            log_path = self._storage.host_path(SYNC_LOG_FILENAME)
            meta_path = self._storage.host_path(SYNC_META_FILENAME)

            if not os.path.exists(meta_path):
                if os.path.exists(log_path):
                    log.warning(f"ignoring {SYNC_LOG_FILENAME} without meta record")

                log.debug(f"no change log in {self._storage.root}")
                return

            self._load_files(log_path, meta_path, recover)

        log.info(
            f"loaded {len(self._entries)} entries from {SYNC_LOG_FILENAME} "
            f"(revision {self._revision})"
        )

    def install(self, log_source: str, meta_source: str) -> None:
        """
        Adopt a log and meta record from elsewhere as the state of this tree.

        The files are fully verified and loaded before they are moved into place, log
        file first. If anything fails, the files in the tree are left untouched.
        """
        with self._lock, self._process_lock:
            self._load_files(log_source, meta_source)

            self._storage.mkdir("")
            self._storage.replace(log_source, SYNC_LOG_FILENAME)
            self._storage.replace(meta_source, SYNC_META_FILENAME)

        log.info(f"installed change log revision {self._revision}")

    def _load_files(self, log_path: str, meta_path: str, recover: bool = False) -> None:
        meta = self._read_meta(meta_path)

        try:
            with open(log_path, "rb") as f:
                data = f.read()
        except FileNotFoundError:
            data = b""

        actual = FileId(codec.data_digest(data), len(data))

        if actual != meta.log_id:
            committed = data[: meta.size]
            committed_id = FileId(codec.data_digest(committed), len(committed))

            if recover and committed_id == meta.log_id:
                log.warning(
                    f"ignoring {actual.size - meta.size} uncommitted bytes at the end "
                    f"of {SYNC_LOG_FILENAME}"
                )
                data = committed
            else:
                raise IntegrityMismatch(
                    f"{SYNC_LOG_FILENAME} does not match its meta record "
                    f"({codec.describe_mismatch(meta.log_id, actual)})",
                    SYNC_LOG_FILENAME,
                    meta.log_id,
                    actual,
                )

        try:
            lines = data.decode("utf-8").splitlines()
        except UnicodeDecodeError as e:
            raise FormatError(f"{SYNC_LOG_FILENAME} is not valid UTF-8: {e}")

        entries = [codec.decode_entry(line) for line in lines if line.strip()]

        self._entries = entries
        self._state = self.replay(entries)

        self._dumped = list(entries)
        self._log_id = meta.log_id
        self._revision = meta.revision
