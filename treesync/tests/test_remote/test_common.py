import hashlib
import threading

from treesync.remote.common import FileState, LockIndex, Snapshot
from treesync.storage import LocalStorage
from treesync.sync.changelog import ChangeLog

D = hashlib.sha256(b"x").digest()


def create_snapshot(tmp_path, paths):
    sync = ChangeLog(LocalStorage(str(tmp_path)))

    for path in paths:
        sync.add(path, D, 1)

    return Snapshot(sync)


def test_snapshot_structure(tmp_path):
    snapshot = create_snapshot(tmp_path, ["a.txt", "b/c.txt", "b/d/e.txt", "f/g/h.txt"])

    assert snapshot.is_file("a.txt")
    assert not snapshot.is_file("b")

    # Only direct parents of tracked files are directories
    assert snapshot.is_directory("")
    assert snapshot.is_directory("b")
    assert snapshot.is_directory("b/d")
    assert snapshot.is_directory("f/g")
    assert not snapshot.is_directory("f")
    assert not snapshot.is_directory("a.txt")
    assert not snapshot.is_directory("x")

    assert snapshot.children("") == ["a.txt"]
    assert snapshot.children("b") == ["c.txt"]
    assert snapshot.children("f") == []
    assert snapshot.children("f/g") == ["h.txt"]
    assert snapshot.children("x") == []

    assert snapshot.contains_directory("")
    assert snapshot.contains_directory("f")
    assert not snapshot.contains_directory("a.txt")
    assert not snapshot.contains_directory("x")

    assert snapshot.entries("") == ["a.txt", "b", "f"]
    assert snapshot.entries("b") == ["c.txt", "d"]
    assert snapshot.entries("f") == ["g"]
    assert snapshot.entries("x") == []

    assert snapshot.paths() == ["a.txt", "b/c.txt", "b/d/e.txt", "f/g/h.txt"]


def test_snapshot_empty(tmp_path):
    snapshot = create_snapshot(tmp_path, [])

    assert not snapshot.is_directory("")
    assert snapshot.contains_directory("")
    assert snapshot.children("") == []
    assert snapshot.revision == 0


def test_snapshot_unaffected_by_later_changes(tmp_path):
    sync = ChangeLog(LocalStorage(str(tmp_path)))
    sync.add("a.txt", D, 1)

    snapshot = Snapshot(sync)

    sync.add("b.txt", D, 1)
    sync.remove("a.txt")

    assert snapshot.paths() == ["a.txt"]
    assert snapshot.lookup("a.txt") is not None
    assert snapshot.lookup("b.txt") is None


def test_snapshot_file_state(tmp_path):
    snapshot = create_snapshot(tmp_path, ["a.txt"])

    assert snapshot.state("a.txt") == FileState.UNKNOWN

    snapshot.mark("a.txt", FileState.VERIFIED)
    assert snapshot.state("a.txt") == FileState.VERIFIED

    snapshot.mark("a.txt", FileState.UNKNOWN)
    assert snapshot.state("a.txt") == FileState.UNKNOWN


def test_lock_index():
    index = LockIndex()

    with index.lock("a"):
        with index.lock("b"):
            with index.lock("c"):
                assert index.lock_count == 3

        assert index.lock_count == 1

    assert index.lock_count == 0


def test_lock_index_serializes_same_key():
    index = LockIndex()

    inside = 0
    max_inside = 0
    counter_lock = threading.Lock()

    def critical_section():
        nonlocal inside, max_inside

        with index.lock("key"):
            with counter_lock:
                inside += 1
                max_inside = max(max_inside, inside)

            threading.Event().wait(0.01)

            with counter_lock:
                inside -= 1

    threads = [threading.Thread(target=critical_section) for _ in range(8)]

    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert max_inside == 1
    assert index.lock_count == 0
