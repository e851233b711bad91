"""
Error kinds raised by the synchronization engine.

Callers are expected to distinguish between them:

* IntegrityMismatch: recorded and actual digest/size disagree. Fatal to the operation
that detected it, but the cache can recover by deleting and fetching again.
* NotFoundUpstream: the origin does not have a file. Callers decide whether to skip it
or abort.
* InconsistentLog: the in-memory history of a change log diverged from what it last
persisted. Always fatal since it means a logic or concurrency bug.
* TransportFailure: any other network problem. Retrying may help.
* LocalStorageFailure: the cache directory could not be written.
"""

from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from treesync.codec import FileId


class SyncError(Exception):
    """Base class of all errors raised by treesync."""


class FormatError(SyncError):
    """Exception raised when a log or meta record cannot be parsed."""


class IntegrityMismatch(SyncError):
    """Exception raised when contents do not match their recorded digest and size."""

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        expected: Optional["FileId"] = None,
        actual: Optional["FileId"] = None,
    ) -> None:
        """Instantiate the exception with the mismatching identities, if known."""
        super().__init__(message)

        self.message = message

        self.path = path
        self.expected = expected
        self.actual = actual


class NotFoundUpstream(SyncError):
    """Exception raised when the origin reports that a file does not exist."""

    def __init__(self, message: str, url: str) -> None:
        """Instantiate the exception for the URL that could not be found."""
        super().__init__(message)

        self.message = message
        self.url = url


class InconsistentLog(SyncError):
    """Exception raised when unwritten log entries can no longer be determined."""


class TransportFailure(SyncError, IOError):
    """Exception raised for network errors other than a missing file."""


class LocalStorageFailure(SyncError, OSError):
    """Exception raised when the local cache cannot be modified."""
