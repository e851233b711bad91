"""
Textual encodings shared by the producer and consumer side.

Everything written to the synchronization files has to be readable on any host, so
digests are stored as hexadecimal strings and paths as slash-separated segments
relative to the root of the tree, regardless of the host path syntax.
"""

from __future__ import annotations

from dataclasses import dataclass
import hashlib
import json
import os
import posixpath
import string
from typing import BinaryIO, Iterable, List, Union

import semver

from treesync.constants import CHUNK_SIZE, FORMAT_VERSION
from treesync.errors import FormatError

DIGEST_SIZE = hashlib.sha256().digest_size

_HEX_DIGITS = set(string.hexdigits)


#
# Digests
#


def digest_to_hex(digest: bytes) -> str:
    """Encode a raw digest as lowercase hexadecimal."""
    return digest.hex()


def digest_from_hex(text: str) -> bytes:
    """Decode a hexadecimal digest into its raw bytes."""
    if len(text) % 2 != 0:
        raise ValueError(f"odd number of hexadecimal digits in '{text}'")

    for c in text:
        if c not in _HEX_DIGITS:
            raise ValueError(f"unknown hexadecimal digit '{c}' in '{text}'")

    return bytes.fromhex(text)


def _decode_digest(text: str) -> bytes:
    digest = digest_from_hex(text)

    if len(digest) != DIGEST_SIZE:
        raise ValueError(f"digest '{text}' does not have {DIGEST_SIZE} bytes")

    return digest


def file_digest(f: BinaryIO, chunk_size: int = CHUNK_SIZE) -> bytes:
    """Digest the remaining contents of a binary file object."""
    h = hashlib.sha256()

    for chunk in iter(lambda: f.read(chunk_size), b""):
        h.update(chunk)

    return h.digest()


def data_digest(data: bytes) -> bytes:
    """Digest an in-memory byte string."""
    return hashlib.sha256(data).digest()


@dataclass(frozen=True)
class FileId:
    """Identity of file contents: their digest and their size in bytes."""

    digest: bytes
    size: int

    @property
    def hexdigest(self) -> str:
        """Return the digest as hexadecimal."""
        return digest_to_hex(self.digest)

    def __str__(self) -> str:
        return f"{self.hexdigest} ({self.size} bytes)"


#
# Paths
#


def explode(path: str) -> List[str]:
    """
    Split a host or portable relative path into normalized segments.

    Both the host separator and "/" are accepted. Empty and "." segments are dropped
    and ".." segments are resolved. A path that climbs out of the root is rejected.
    """
    if os.sep != "/":
        path = path.replace(os.sep, "/")

    if os.altsep and os.altsep != "/":
        path = path.replace(os.altsep, "/")

    segments: List[str] = []

    for segment in path.split("/"):
        if segment in ("", "."):
            continue
        elif segment == "..":
            if not segments:
                raise ValueError(f"path '{path}' is outside of the tree")

            segments.pop()
        else:
            segments.append(segment)

    return segments


def implode(segments: Iterable[str]) -> str:
    """Join path segments into the portable representation."""
    return "/".join(segments)


def normalize(path: str) -> str:
    """Turn any representation of a relative path into its canonical portable form."""
    return implode(explode(path))


def to_host(path: str) -> str:
    """Convert a portable path into a path relative to the root on this host."""
    segments = explode(path)

    if not segments:
        return os.curdir

    return os.path.join(*segments)


def parent(path: str) -> str:
    """Return the portable parent directory of a normalized path ("" for the root)."""
    return posixpath.dirname(path)


def basename(path: str) -> str:
    """Return the last segment of a normalized portable path."""
    return posixpath.basename(path)


def ancestors(path: str) -> List[str]:
    """Return all proper ancestors of a normalized path, closest first."""
    result = []

    while path:
        path = parent(path)
        result.append(path)

    return result


#
# Log entries
#


@dataclass(frozen=True)
class Add:
    """Entry recording that a file exists with the given identity."""

    path: str
    digest: bytes
    size: int

    @property
    def file_id(self) -> FileId:
        return FileId(self.digest, self.size)


@dataclass(frozen=True)
class Remove:
    """Entry recording that a file no longer exists."""

    path: str


Entry = Union[Add, Remove]


def encode_entry(entry: Entry) -> str:
    """Encode an entry as a single line of JSON (without the newline)."""
    if isinstance(entry, Add):
        record = ["Add", entry.path, digest_to_hex(entry.digest), entry.size]
    elif isinstance(entry, Remove):
        record = ["Remove", entry.path]
    else:
        raise TypeError(f"unknown entry type {type(entry)}")

    return json.dumps(record, ensure_ascii=False, separators=(",", ":"))


def decode_entry(line: str) -> Entry:
    """Decode a single line of the log file into an entry."""
    try:
        record = json.loads(line)
    except ValueError as e:
        raise FormatError(f"malformed log entry {line!r}: {e}")

    if not isinstance(record, list) or not record:
        raise FormatError(f"malformed log entry {line!r}")

    tag, *fields = record

    try:
        if tag == "Add" and len(fields) == 3:
            path, hexdigest, size = fields

            if not isinstance(path, str) or not isinstance(size, int) or size < 0:
                raise ValueError("unexpected field types")

            return Add(normalize(path), _decode_digest(hexdigest), size)
        elif tag == "Remove" and len(fields) == 1:
            if not isinstance(fields[0], str):
                raise ValueError("unexpected field types")

            return Remove(normalize(fields[0]))
    except (TypeError, ValueError) as e:
        raise FormatError(f"malformed log entry {line!r}: {e}")

    raise FormatError(f"unknown log entry {line!r}")


#
# Meta record
#


@dataclass(frozen=True)
class MetaRecord:
    """Description of the entire log file, used to verify its integrity."""

    revision: int
    size: int
    digest: bytes

    version: str = FORMAT_VERSION

    @property
    def log_id(self) -> FileId:
        return FileId(self.digest, self.size)


def encode_meta(meta: MetaRecord) -> str:
    """Encode a meta record as JSON."""
    return json.dumps(
        {
            "version": meta.version,
            "revision": meta.revision,
            "size": meta.size,
            "digest": digest_to_hex(meta.digest),
        },
        sort_keys=True,
    )


def decode_meta(text: str) -> MetaRecord:
    """
    Decode and validate a meta record.

    Records written with a different major format version are refused since their log
    entries cannot be interpreted reliably.
    """
    try:
        obj = json.loads(text)

        version = semver.VersionInfo.parse(obj["version"])

        meta = MetaRecord(
            revision=int(obj["revision"]),
            size=int(obj["size"]),
            digest=_decode_digest(obj["digest"]),
            version=str(version),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise FormatError(f"malformed meta record: {e}")

    if version.major != semver.VersionInfo.parse(FORMAT_VERSION).major:
        raise FormatError(f"incompatible format ({version} != {FORMAT_VERSION})")

    if meta.revision < 0 or meta.size < 0:
        raise FormatError("malformed meta record: negative revision or size")

    return meta


def describe_mismatch(expected: FileId, actual: FileId) -> str:
    """Describe how two file identities differ, e.g. "size: 10 <> 12"."""
    reasons = []

    if expected.size != actual.size:
        reasons.append(f"size: {expected.size} <> {actual.size}")

    if expected.digest != actual.digest:
        reasons.append(f"digest: {expected.hexdigest} <> {actual.hexdigest}")

    return "; ".join(reasons)
