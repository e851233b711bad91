"""Modules that implement the logic behind each of the commands of treesync."""

from .common import Operations
from .consumer import (
    GetOperations,
    ListOperations,
    RepairOperations,
    UpdateOperations,
)
from .producer import ScanOperations, WatchOperations

__all__ = [
    "Operations",
    "GetOperations",
    "ListOperations",
    "RepairOperations",
    "UpdateOperations",
    "ScanOperations",
    "WatchOperations",
]
