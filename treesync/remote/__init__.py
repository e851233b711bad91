"""
Modules that mirror a remote tree on the consumer side.

The consumer never lists anything at the origin. Instead it downloads the change log
published next to the tree and answers all questions about the structure of the tree
from it. File contents are only fetched when they're actually opened, after which
they're kept in a local cache directory for as long as they match the change log.

The transport used to reach the origin is pluggable. HTTP(S) origins are accessed with
range requests so that interrupted downloads can be resumed, but an origin may also be
a plain (possibly network mounted) directory.
"""

from .cache import RemoteCache
from .common import FileState, LockIndex, Snapshot
from .transport import HttpTransport, LocalTransport, open_transport, Transport

__all__ = [
    "RemoteCache",
    "FileState",
    "LockIndex",
    "Snapshot",
    "HttpTransport",
    "LocalTransport",
    "open_transport",
    "Transport",
]
