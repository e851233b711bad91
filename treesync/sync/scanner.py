"""Module that reconciles a change log with the files that actually exist in a tree."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List

from treesync.logger import log
from treesync.sync.changelog import ChangeLog


@dataclass
class ScanResult:
    """Paths that were added to and removed from the change log by a scan."""

    adds: List[str] = field(default_factory=list)
    deletes: List[str] = field(default_factory=list)

    revision: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.adds or self.deletes)


def scan(sync: ChangeLog) -> ScanResult:
    """
    Bring the change log in line with the regular files currently in its tree.

    Files that exist but aren't tracked are added and tracked files that no longer exist
    are removed, after which the change log is dumped. This is used to populate the
    change log of a new tree and to periodically heal any drift that live watching may
    have missed.

    Only existence is compared. A tracked file whose contents changed in place keeps its
    recorded identity (watching with change tracking enabled takes care of those).
    """
    storage = sync.storage

    live = list(storage.files())
    live_set = set(live)

    tracked = set(sync.paths())

    result = ScanResult()

    for path in sorted(tracked - live_set):
        if sync.remove(path):
            result.deletes.append(path)

    # Adds in the order the files were discovered
    for path in live:
        if path in tracked:
            continue

        try:
            if sync.add_file(path):
                result.adds.append(path)
        except FileNotFoundError:
            log.debug(f"{path} disappeared while scanning")

    result.revision = sync.dump()

    log.info(
        f"scan of {storage.root} added {len(result.adds)} and removed "
        f"{len(result.deletes)} files"
    )

    return result
