"""
Archive module for PhotoZip.

This module turns a storage prefix into a streamed ZIP:
- PrefixWalker enumerates every object key under the prefix
- ArchiveAggregator fetches each object and appends it in order
- ArchiveStream serializes entries and hands bytes to the response

Invariants:
    - Only one object body is in flight per request
    - The archive is finalized only after every object was appended
    - Abort stops all further list, fetch and append work
"""

from .aggregator import AggregateStats, ArchiveAggregator, relative_path
from .cancellation import AbortSignal
from .errors import ArchiveAborted, ArchiveError, ArchiveWriteError, WalkRootViolation
from .walker import PrefixWalker
from .zip_stream import ArchiveEvent, ArchiveState, ArchiveStream

__all__ = [
    "AbortSignal",
    "AggregateStats",
    "ArchiveAborted",
    "ArchiveAggregator",
    "ArchiveError",
    "ArchiveEvent",
    "ArchiveState",
    "ArchiveStream",
    "ArchiveWriteError",
    "PrefixWalker",
    "WalkRootViolation",
    "relative_path",
]
