"""
Module implementing the command-line interface and invoking the main logic of treesync.

treesync has two sides. On the producer side, scan and watch record the files in a
directory tree in a change log that is published next to the tree itself. On the
consumer side, update downloads that change log from the origin, after which get and ls
use it to access the tree without ever listing anything at the origin. Files are only
downloaded when they're needed and are verified against their recorded digest.
"""

import logging
import signal
import sys
from typing import List, NoReturn, Optional

import treesync.constants as constants
from treesync.logger import log
import treesync.operations as operations
from .args import Arguments


def main(arguments: Optional[List[str]] = None) -> NoReturn:
    """
    Run the treesync command with the given arguments.

    Defaults to parsing command-line arguments from sys.argv if none are specified.
    """
    # Parse command-line arguments.
    args = Arguments.parse(arguments)

    # Configure debug logging.
    if args.debug:
        log.setLevel(logging.DEBUG)
    else:
        log.setLevel(logging.ERROR)

    ops: operations.Operations

    try:
        if args.command == "scan":
            ops = operations.ScanOperations(args)
        elif args.command == "watch":
            ops = operations.WatchOperations(args)
        elif args.command == "update":
            ops = operations.UpdateOperations(args)
        elif args.command == "get":
            ops = operations.GetOperations(args)
        elif args.command == "repair":
            ops = operations.RepairOperations(args)
        else:
            ops = operations.ListOperations(args)

        exit_code = ops.run()
    except KeyboardInterrupt:
        exit_code = 128 + signal.SIGINT
    except Exception as e:
        log.error(f"failed to run command: {e}")
        exit_code = constants.TREESYNC_ERROR_CODE

    # Exit with either 0 for success or TREESYNC_ERROR_CODE for failures.
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
