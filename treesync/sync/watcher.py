"""
Module that keeps a change log up to date with live file system notifications.

Notifications are translated into a small closed set of events, which the bridge
applies to the change log in order. The change log is dumped after every batch of
events so that consumers see changes as soon as possible.

Watching is inherently unreliable (notifications can be dropped when the kernel queue
overflows, for example), so the watcher can also periodically run a full scan to heal
any drift.
"""

from __future__ import annotations

from dataclasses import dataclass
import os
import queue
import threading
import time
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union

from watchdog.events import (
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from treesync.logger import log
from treesync.storage import LocalStorage
from treesync.sync.changelog import ChangeLog
import treesync.sync.scanner as scanner


@dataclass(frozen=True)
class Created:
    path: str


@dataclass(frozen=True)
class Deleted:
    path: str


@dataclass(frozen=True)
class Changed:
    path: str


@dataclass(frozen=True)
class MovedTo:
    """The file at path was moved (renamed) to target."""

    path: str
    target: str


@dataclass(frozen=True)
class CopiedFrom:
    """The file at path was created as a copy of source."""

    path: str
    source: str


FsEvent = Union[Created, Deleted, Changed, MovedTo, CopiedFrom]


class WatcherBridge:
    """
    Applies file system events to a change log.

    | event      | action                                               |
    |------------|------------------------------------------------------|
    | Created    | add the file with its current digest and size        |
    | Deleted    | remove the file                                      |
    | Changed    | add the file again if track_changes is set, else nop |
    | MovedTo    | add the target, then remove the original path        |
    | CopiedFrom | add the file with its current digest and size        |

    Events for the synchronization files themselves and for directories are ignored.
    Adding a file with an unchanged digest does not create a log entry, so a Changed
    event for a file that was only touched costs a digest computation but nothing else.
    """

    def __init__(self, sync: ChangeLog, track_changes: bool = True) -> None:
        """Instantiate a bridge that writes to the specified change log."""
        self._sync = sync
        self._storage = sync.storage
        self._track_changes = track_changes

        # Events must be applied one after another
        self._lock = threading.Lock()

        self._handlers: Dict[type, Callable[..., None]] = {
            Created: self._on_created,
            Deleted: self._on_deleted,
            Changed: self._on_changed,
            MovedTo: self._on_moved_to,
            CopiedFrom: self._on_copied_from,
        }

    @property
    def changelog(self) -> ChangeLog:
        return self._sync

    def handle(self, event: FsEvent) -> int:
        """Apply a single event and dump the change log."""
        return self.handle_batch([event])

    def handle_batch(self, events: Iterable[FsEvent]) -> int:
        """Apply events in order and dump the change log once afterwards."""
        with self._lock:
            for event in events:
                if self._storage.is_reserved(event.path):
                    continue

                log.debug(f"applying {event}")
                self._handlers[type(event)](event)

            return self._sync.dump()

    def _on_created(self, event: Created) -> None:
        self._add(event.path)

    def _on_deleted(self, event: Deleted) -> None:
        self._sync.remove(event.path)

    def _on_changed(self, event: Changed) -> None:
        if self._track_changes:
            self._add(event.path)

    def _on_moved_to(self, event: MovedTo) -> None:
        if not self._storage.is_reserved(event.target):
            self._add(event.target)

        self._sync.remove(event.path)

    def _on_copied_from(self, event: CopiedFrom) -> None:
        self._add(event.path)

    def _add(self, path: str) -> None:
        """Add a regular file, skipping directories and files that are already gone."""
        if not self._storage.is_file(path):
            return

        try:
            self._sync.add_file(path)
        except FileNotFoundError:
            log.debug(f"{path} disappeared before it could be added")
        except OSError as e:
            # A later scan will pick the file up again
            log.warning(f"failed to add {path}: {e}")


class _EventForwarder(FileSystemEventHandler):
    """Translates watchdog notifications into events and queues them."""

    def __init__(self, storage: LocalStorage, events: queue.Queue) -> None:
        super().__init__()

        self._storage = storage
        self._events = events

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return

        translated = translate_event(self._storage, event)

        if translated is not None:
            self._events.put(translated)


def translate_event(
    storage: LocalStorage, event: FileSystemEvent
) -> Optional[FsEvent]:
    """
    Translate a watchdog notification into an event relative to the storage root.

    Moves into the tree become Created and moves out of the tree become Deleted.
    Notifications that don't affect existence or contents (like opened/closed) are
    dropped by returning None.
    """
    path = storage.relative(os.fsdecode(event.src_path))

    if event.event_type == EVENT_TYPE_MOVED:
        target = storage.relative(os.fsdecode(event.dest_path))

        if path and target:
            return MovedTo(path, target)
        elif target:
            return Created(target)
        elif path:
            return Deleted(path)
        else:
            return None

    if not path:
        return None
    elif event.event_type == EVENT_TYPE_CREATED:
        return Created(path)
    elif event.event_type == EVENT_TYPE_DELETED:
        return Deleted(path)
    elif event.event_type == EVENT_TYPE_MODIFIED:
        return Changed(path)
    else:
        return None


class Watcher:
    """
    Watches a tree and feeds its notifications to a WatcherBridge.

    The watchdog observer thread only queues events. A single worker thread applies
    them, so the order of events is preserved. Events that arrive within batch_delay
    seconds of each other are applied as one batch with a single dump.

    If initial_scan is set, the worker starts with a full scan to catch up with changes
    made while nobody was watching. It runs after the observer has been started, so
    nothing that happens in between is missed. If scan_interval is set, the worker also
    runs a full scan whenever that many seconds have passed since the previous one.
    """

    def __init__(
        self,
        bridge: WatcherBridge,
        scan_interval: float = 0,
        batch_delay: float = 0.1,
        initial_scan: bool = False,
    ) -> None:
        """Instantiate a watcher for the tree of the bridge's change log."""
        self._bridge = bridge
        self._storage = bridge.changelog.storage
        self._scan_interval = scan_interval
        self._batch_delay = batch_delay
        self._initial_scan = initial_scan

        self._events: queue.Queue[Optional[FsEvent]] = queue.Queue()

        self._observer: Optional[Observer] = None
        self._worker: Optional[threading.Thread] = None
        self._error: Optional[Exception] = None

    @property
    def running(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    def start(self) -> None:
        """Start watching the tree recursively."""
        if self._observer is not None:
            return

        self._observer = Observer()
        self._observer.schedule(
            _EventForwarder(self._storage, self._events),
            self._storage.root,
            recursive=True,
        )
        self._observer.start()

        self._worker = threading.Thread(target=self._run, daemon=True)
        self._worker.start()

        log.info(f"watching {self._storage.root} for changes")

    def post(self, event: FsEvent) -> None:
        """Queue an event from a source other than the observer."""
        self._events.put(event)

    def stop(self) -> None:
        """Stop watching, apply any queued events and raise the error of the worker."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5.0)
            self._observer = None

        self._events.put(None)
        self.wait()

        log.info(f"stopped watching {self._storage.root}")

    def wait(self, timeout: Optional[float] = None) -> None:
        """Wait for the worker to finish and raise the error it failed with, if any."""
        if self._worker is not None:
            self._worker.join(timeout)

        if self._error is not None:
            raise self._error

    def _run(self) -> None:
        """Apply queued events in batches and run periodic scans until stopped."""
        next_scan = self._next_scan()

        try:
            if self._initial_scan:
                result = scanner.scan(self._bridge.changelog)
                log.info(f"starting at revision {result.revision}")

            while True:
                timeout = None

                if next_scan is not None:
                    timeout = max(0.0, next_scan - time.monotonic())

                try:
                    event = self._events.get(timeout=timeout)
                except queue.Empty:
                    scanner.scan(self._bridge.changelog)
                    next_scan = self._next_scan()
                    continue

                if event is None:
                    return

                batch, stopped = self._collect_batch(event)
                self._bridge.handle_batch(batch)

                if stopped:
                    return
        except Exception as e:
            log.error(f"failed to process file system events: {e}")
            self._error = e

            if self._observer is not None:
                self._observer.stop()

    def _collect_batch(self, first: FsEvent) -> Tuple[List[FsEvent], bool]:
        """Gather the events queued shortly after the first one."""
        batch = [first]

        if self._batch_delay > 0:
            time.sleep(self._batch_delay)

        while True:
            try:
                event = self._events.get_nowait()
            except queue.Empty:
                return batch, False

            if event is None:
                return batch, True

            batch.append(event)

    def _next_scan(self) -> Optional[float]:
        if self._scan_interval > 0:
            return time.monotonic() + self._scan_interval
        else:
            return None
