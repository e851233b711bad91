"""Shared functionality between producer and consumer operations."""

from abc import ABC
import contextlib
import os

from treesync.args import Arguments
from treesync.config import Config


class Operations(ABC):
    """Base class for the logic of a single command."""

    def __init__(self, args: Arguments):
        """Initialize operations based on command-line arguments and config file."""
        self._args = args
        self._config = Config.load(os.path.expanduser(args.config))

    def run(self) -> int:
        """Run the operations and clean up properly in case of errors."""
        with contextlib.ExitStack() as stack:
            return self._run(stack)

        # https://github.com/python/mypy/issues/7726
        assert False, "unreachable"

    def _run(self, stack: contextlib.ExitStack) -> int:
        """Run the actual operations."""
        raise NotImplementedError()
