"""Module that implements the commands that publish a tree."""

import contextlib

from treesync.storage import LocalStorage
from treesync.sync import ChangeLog, scan, Watcher, WatcherBridge
from .common import Operations


class ScanOperations(Operations):
    """Brings the synchronization data of a tree up to date with a full scan."""

    def _run(self, stack: contextlib.ExitStack) -> int:
        sync = ChangeLog(LocalStorage(self._args.root))
        sync.load()

        result = scan(sync)

        print(
            f"revision {result.revision}: "
            f"{len(result.adds)} added, {len(result.deletes)} removed"
        )

        return 0


class WatchOperations(Operations):
    """Keeps the synchronization data of a tree up to date until interrupted."""

    def _run(self, stack: contextlib.ExitStack) -> int:
        config = self._config.watch

        scan_interval = self._args.scan_interval
        if scan_interval is None:
            scan_interval = config.scan_interval

        track_changes = self._args.track_changes
        if track_changes is None:
            track_changes = config.track_changes

        sync = ChangeLog(LocalStorage(self._args.root))
        sync.load()

        watcher = Watcher(
            WatcherBridge(sync, track_changes),
            scan_interval=scan_interval,
            batch_delay=config.batch_delay,
            initial_scan=True,
        )
        watcher.start()
        stack.callback(watcher.stop)

        while watcher.running:
            watcher.wait(1.0)

        # Raises the error that stopped the watcher
        watcher.wait()

        return 0
