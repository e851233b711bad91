"""Module defining the command-line arguments and providing a parser for them."""

from __future__ import annotations

import argparse
from typing import List, Optional

from treesync.constants import FORMAT_VERSION, VERSION


class Arguments(argparse.Namespace):
    """Parsed command-line arguments."""

    command: str

    # Producer side
    root: str
    scan_interval: Optional[float]
    track_changes: Optional[bool]

    # Consumer side
    origin: Optional[str]
    cache: Optional[str]
    timeout: Optional[float]
    paths: List[str]
    path: str
    online: bool

    config: str

    debug: bool

    @classmethod
    def parse(cls, args: Optional[List[str]] = None) -> Arguments:
        """
        Parse command-line arguments from the given list of strings.

        Defaults to sys.argv if none are specified.
        """
        return cls._get_parser().parse_args(args, namespace=cls())

    @classmethod
    def _get_parser(cls) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(
            description="Publish a directory tree and mirror it lazily elsewhere.",
            usage="treesync [option...] command [arg...]",
        )

        parser.add_argument(
            "--version",
            action="version",
            version=f"%(prog)s {VERSION} (format {FORMAT_VERSION})",
            help="show the program version and synchronization format version",
        )

        # Path to (optional) config file
        parser.add_argument(
            "--config",
            type=str,
            help="path to config file (default is ~/.treesync/config)",
            default="~/.treesync/config",
        )

        # Enable debug output for development
        parser.add_argument(
            "--debug", action="store_true", help="enable debug information"
        )

        commands = parser.add_subparsers(dest="command", metavar="command")
        commands.required = True

        # Producer side
        scan = commands.add_parser(
            "scan", help="bring the synchronization data of a tree up to date"
        )
        scan.add_argument("root", type=str, help="root directory of the tree")

        watch = commands.add_parser(
            "watch", help="keep the synchronization data of a tree up to date"
        )
        watch.add_argument("root", type=str, help="root directory of the tree")
        watch.add_argument(
            "--scan-interval",
            type=cls._parse_interval,
            help="seconds between full scans of the tree (0 disables them)",
        )
        watch.add_argument(
            "--no-track-changes",
            action="store_const",
            const=False,
            help="ignore modifications of existing files",
            dest="track_changes",
        )

        # Consumer side
        update = commands.add_parser(
            "update", help="fetch the latest synchronization data from the origin"
        )
        cls._add_origin_arguments(update)
        cls._add_cache_argument(update)

        get = commands.add_parser("get", help="fetch files into the cache")
        get.add_argument("paths", type=str, nargs="+", help="paths within the tree")
        cls._add_origin_arguments(get)
        cls._add_cache_argument(get)
        get.add_argument(
            "--online",
            action="store_true",
            help="remove the files from the cache again on the next repair",
        )

        repair = commands.add_parser(
            "repair", help="remove stale and corrupted files from the cache"
        )
        cls._add_cache_argument(repair)

        ls = commands.add_parser("ls", help="list a directory of the mirrored tree")
        ls.add_argument(
            "path", type=str, nargs="?", default="", help="directory within the tree"
        )
        cls._add_cache_argument(ls)

        return parser

    @classmethod
    def _add_origin_arguments(cls, parser: argparse.ArgumentParser) -> None:
        parser.add_argument(
            "--origin", type=str, help="URL or directory the tree is published at"
        )
        parser.add_argument(
            "--timeout",
            type=cls._parse_timeout,
            help="timeout for network communications in seconds",
        )

    @staticmethod
    def _add_cache_argument(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--cache", type=str, help="cache directory")

    @staticmethod
    def _parse_timeout(arg: str) -> float:
        try:
            val = float(arg)
            assert val > 0
            return val
        except (ValueError, AssertionError):
            raise argparse.ArgumentTypeError("expected number > 0")

    @staticmethod
    def _parse_interval(arg: str) -> float:
        try:
            val = float(arg)
            assert val >= 0
            return val
        except (ValueError, AssertionError):
            raise argparse.ArgumentTypeError("expected number >= 0")
