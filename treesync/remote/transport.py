"""
Module with the transports that download files from an origin.

Downloads are always written to the end of the file object they're given. If that
file object already contains data, only the missing part is requested, which makes
interrupted downloads resumable. Verifying the result is up to the caller.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
import os
from typing import BinaryIO, Optional
from urllib.parse import quote, urlsplit
from urllib.request import url2pathname

import requests

import treesync.codec as codec
from treesync.constants import CHUNK_SIZE
from treesync.errors import NotFoundUpstream, TransportFailure
from treesync.logger import log


class Transport(ABC):
    """Source of the files of a remote tree."""

    @abstractmethod
    def url(self, path: str) -> str:
        """Return the location of a file at the origin."""

    @abstractmethod
    def download(self, path: str, f: BinaryIO) -> int:
        """
        Download a file from the origin and append it to a file object.

        The download resumes at the current size of the file object. Returns the number
        of bytes that were written.
        """


class HttpTransport(Transport):
    """Downloads files over HTTP(S), using range requests to resume downloads."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        chunk_size: int = CHUNK_SIZE,
        session: Optional[requests.Session] = None,
    ) -> None:
        """Instantiate a transport for the tree published at the specified URL."""
        self._base_url = base_url
        self._timeout = timeout
        self._chunk_size = chunk_size
        self._session = session or requests.Session()

    def url(self, path: str) -> str:
        """Concatenate the quoted portable path onto the base URL."""
        tail = "/".join(quote(segment) for segment in codec.explode(path))

        if self._base_url.endswith("/"):
            return self._base_url + tail
        else:
            return self._base_url + "/" + tail

    def download(self, path: str, f: BinaryIO) -> int:
        url = self.url(path)
        offset = f.seek(0, os.SEEK_END)

        # Byte ranges refer to the unencoded contents
        headers = {"Accept-Encoding": "identity"}

        if offset > 0:
            headers["Range"] = f"bytes={offset}-"

        log.debug(f"downloading {url} from byte {offset}")

        written = 0

        try:
            with self._session.get(
                url, headers=headers, stream=True, timeout=self._timeout
            ) as response:
                if response.status_code == 404:
                    raise NotFoundUpstream(f"URL not found '{url}'", url)
                elif response.status_code == 416 and offset > 0:
                    # Nothing left beyond the offset
                    log.debug(f"{url} has no data after byte {offset}")
                    return 0

                response.raise_for_status()

                if offset > 0 and response.status_code != 206:
                    log.debug(f"{url} does not support ranges, restarting download")
                    f.seek(0)
                    f.truncate()

                for chunk in response.iter_content(chunk_size=self._chunk_size):
                    f.write(chunk)
                    written += len(chunk)
        except requests.RequestException as e:
            raise TransportFailure(f"failed to download '{url}': {e}") from e

        f.flush()

        log.debug(f"download of {url} completed ({written} bytes)")

        return written


class LocalTransport(Transport):
    """Copies files from a tree in a local (or mounted) directory."""

    def __init__(self, directory: str, chunk_size: int = CHUNK_SIZE) -> None:
        """Instantiate a transport for the tree in the specified directory."""
        self._directory = os.path.abspath(directory)
        self._chunk_size = chunk_size

    def url(self, path: str) -> str:
        return os.path.join(self._directory, codec.to_host(path))

    def download(self, path: str, f: BinaryIO) -> int:
        source = self.url(path)
        offset = f.seek(0, os.SEEK_END)

        log.debug(f"copying {source} from byte {offset}")

        written = 0

        try:
            with open(source, "rb") as src:
                src.seek(offset)

                for chunk in iter(lambda: src.read(self._chunk_size), b""):
                    f.write(chunk)
                    written += len(chunk)
        except FileNotFoundError:
            raise NotFoundUpstream(f"file not found '{source}'", source)
        except IsADirectoryError:
            raise NotFoundUpstream(f"'{source}' is a directory", source)
        except OSError as e:
            raise TransportFailure(f"failed to copy '{source}': {e}") from e

        f.flush()

        return written


def open_transport(
    origin: str, timeout: float = 30.0, chunk_size: int = CHUNK_SIZE
) -> Transport:
    """Create the transport for an origin URL (http, https, file) or directory."""
    scheme = urlsplit(origin).scheme.lower()

    if scheme in ("http", "https"):
        return HttpTransport(origin, timeout=timeout, chunk_size=chunk_size)
    elif scheme == "file":
        return LocalTransport(url2pathname(urlsplit(origin).path), chunk_size)
    elif scheme == "" or os.path.isabs(origin):
        return LocalTransport(origin, chunk_size)
    else:
        raise ValueError(f"unsupported origin '{origin}'")
