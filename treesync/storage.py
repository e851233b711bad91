"""
Module with the local storage that trees and caches live in.

All paths given to LocalStorage are portable paths relative to its root (see
treesync.codec). The storage translates them to host paths, which means that the
rest of the code never has to deal with host path syntax.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
import dataclasses
from dataclasses import dataclass
import os
import stat
from typing import IO, Iterable, Iterator, List, Optional, Union

from treesync.constants import RESERVED_FILENAMES, TEMP_PREFIX
from treesync.logger import log
import treesync.codec as codec


@dataclass
class Attributes:
    """Container of file system attributes (basically os.stat_result as a dataclass)."""

    st_mode: int
    st_ino: int
    st_dev: int
    st_nlink: int
    st_uid: int
    st_gid: int
    st_size: int
    st_atime_ns: int
    st_mtime_ns: int
    st_ctime_ns: int

    def __init__(self, **attribs: Union[int, float]) -> None:
        """
        Instantiate with the specified file system attributes.

        You must specify the attributes declared in this class, but you may include any
        number of extra attributes, like st_blocks.
        """
        for name, value in attribs.items():
            setattr(self, name, value)

    @staticmethod
    def from_stat(st: os.stat_result) -> Attributes:
        """Instantiate from the attributes contained within an os.stat_result object."""
        st_dict = {k: getattr(st, k) for k in dir(st) if k.startswith("st_")}
        return Attributes(**st_dict)

    def as_readonly(self) -> Attributes:
        """Copy the attributes with write permissions removed from the mode."""
        readonly_mode = self.st_mode & ~(stat.S_IWUSR | stat.S_IWGRP | stat.S_IWOTH)

        return dataclasses.replace(self, st_mode=readonly_mode)

    @property
    def is_file(self) -> bool:
        return stat.S_ISREG(self.st_mode)

    @property
    def is_dir(self) -> bool:
        return stat.S_ISDIR(self.st_mode)


@dataclass(frozen=True)
class WalkEntry:
    """
    Item produced by LocalStorage.walk().

    Files are produced as they are discovered. Directories are produced after all of
    their contents (post-order), which allows them to be removed while walking.
    """

    path: str
    is_dir: bool


class ReadOnlyFileSystem(ABC):
    """Read-only operations shared by local storage and the remote cache."""

    @abstractmethod
    def file_exists(self, path: str) -> bool:
        """Return whether a file or directory exists at the path."""

    @abstractmethod
    def is_directory(self, path: str) -> bool:
        """Return whether the path is a directory."""

    @abstractmethod
    def readdir(self, path: str) -> List[str]:
        """List the names of the entries in a directory."""

    @abstractmethod
    def open(self, path: str, mode: str = "rb") -> IO:
        """Open a file for reading."""

    @abstractmethod
    def stat(self, path: str) -> Attributes:
        """Retrieve the attributes of a file or directory."""


class LocalStorage(ReadOnlyFileSystem):
    """Directory on the local machine addressed through portable paths."""

    def __init__(self, root: str) -> None:
        """Instantiate storage rooted at the specified (possibly future) directory."""
        self.root = os.path.abspath(root)

    def __repr__(self) -> str:
        return f"LocalStorage({self.root!r})"

    def host_path(self, path: str) -> str:
        """Translate a portable path into an absolute host path."""
        return os.path.normpath(os.path.join(self.root, codec.to_host(path)))

    def relative(self, host_path: str) -> Optional[str]:
        """
        Translate a host path into a portable path.

        Returns None if the host path is not located within the root.
        """
        rel = os.path.relpath(os.path.abspath(host_path), self.root)

        try:
            return codec.normalize(rel)
        except ValueError:
            return None

    @staticmethod
    def is_reserved(path: str) -> bool:
        """Return whether the path is a synchronization or temporary file."""
        return path in RESERVED_FILENAMES or (
            "/" not in path and path.startswith(TEMP_PREFIX)
        )

    #
    # Read-only operations
    #

    def file_exists(self, path: str) -> bool:
        return os.path.exists(self.host_path(path))

    def is_directory(self, path: str) -> bool:
        return os.path.isdir(self.host_path(path))

    def is_file(self, path: str) -> bool:
        """Return whether the path is a regular file (symlinks are not followed)."""
        try:
            return stat.S_ISREG(os.lstat(self.host_path(path)).st_mode)
        except (FileNotFoundError, NotADirectoryError):
            return False

    def readdir(self, path: str) -> List[str]:
        return sorted(os.listdir(self.host_path(path)))

    def open(self, path: str, mode: str = "rb") -> IO:
        return open(self.host_path(path), mode)

    def stat(self, path: str) -> Attributes:
        return Attributes.from_stat(os.stat(self.host_path(path)))

    def size(self, path: str) -> int:
        """Return the size of a file in bytes."""
        return os.stat(self.host_path(path)).st_size

    def file_id(self, path: str, digest: Optional[bytes] = None) -> codec.FileId:
        """
        Determine the digest and size of a file.

        If a digest is given it is trusted and only the size is read from the disk.
        """
        size = self.size(path)

        if digest is None:
            with self.open(path, "rb") as f:
                digest = codec.file_digest(f)

        return codec.FileId(digest, size)

    def walk(self, path: str = "") -> Iterator[WalkEntry]:
        """
        Recursively produce all files and directories below a directory.

        Names are visited in sorted order with the files of a directory produced before
        its subdirectories, so the order is stable across runs. The starting directory
        itself is not produced. Symbolic links are neither produced nor followed.
        """
        host_dir = self.host_path(path)

        try:
            with os.scandir(host_dir) as it:
                entries = sorted(it, key=lambda e: e.name)
        except FileNotFoundError:
            return

        subdirs: List[str] = []

        for entry in entries:
            child = codec.implode(codec.explode(path) + [entry.name])

            if entry.is_symlink():
                continue
            elif entry.is_dir():
                subdirs.append(child)
            elif entry.is_file():
                yield WalkEntry(child, is_dir=False)

        for child in subdirs:
            yield from self.walk(child)
            yield WalkEntry(child, is_dir=True)

    def files(self) -> Iterator[str]:
        """Produce all regular files in the tree except the synchronization files."""
        for entry in self.walk():
            if not entry.is_dir and not self.is_reserved(entry.path):
                yield entry.path

    #
    # Modifying operations
    #

    def mkdir(self, path: str, mode: int = 0o755, exist_ok: bool = True) -> None:
        """Create a directory and any missing parents."""
        os.makedirs(self.host_path(path), mode, exist_ok=exist_ok)

    def remove(self, paths: Iterable[str]) -> List[str]:
        """
        Delete the given files.

        Files that have already disappeared are ignored. Returns the paths that were
        actually removed.
        """
        removed = []

        for path in paths:
            try:
                os.remove(self.host_path(path))
            except FileNotFoundError:
                # Race condition where the file has already been removed
                continue

            log.debug(f"removed {path} from {self.root}")
            removed.append(path)

        return removed

    def rmdir(self, path: str) -> None:
        """Delete an empty directory."""
        os.rmdir(self.host_path(path))

    def replace(self, host_source: str, path: str) -> None:
        """Atomically move a host file into the storage, replacing any existing file."""
        os.replace(host_source, self.host_path(path))

    def empty_directories(self) -> List[str]:
        """Find all empty directories, deepest first."""
        empty: List[str] = []

        for entry in self.walk():
            if entry.is_dir and not os.listdir(self.host_path(entry.path)):
                empty.append(entry.path)

        return empty

