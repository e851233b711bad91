"""
Modules that record which files exist in a tree on the producer side.

The record is a change log: an append-only sequence of Add(path, digest, size) and
Remove(path) entries. Replaying the entries produces the current state of the tree,
and consumers only need the log to know what the tree looks like without listing
anything on the producer.

So, why a log instead of simply publishing a list of all files? A list would need to
be rewritten and downloaded in its entirety for every change, while a log can be
extended cheaply and its integrity is easy to verify: it only ever grows, so a meta
record with its size and digest describes it completely.

The log is kept up to date in two complementary ways:

* The watcher applies live file system notifications as they come in, dumping the log
after every batch of events.
* The scanner compares the log with a full listing of the tree. It is used to create
the initial log and to heal any drift caused by notifications that were missed.
"""

from .changelog import ChangeLog
from .scanner import scan, ScanResult
from .watcher import Watcher, WatcherBridge

__all__ = [
    "ChangeLog",
    "scan",
    "ScanResult",
    "Watcher",
    "WatcherBridge",
]
