"""
Archive aggregator: walk a prefix, fetch each object, append it.

The aggregator is strictly sequential. It does not issue the next fetch
until the current object's body has been fully copied into the archive, so
at most one object body is in flight per request.

Invariants:
    - Every leaf key under the root is appended exactly once
    - finalize() is called once, after the last append returned
    - A listing or fetch failure stops the aggregation; finalize() is then
      never called
    - The abort signal is checked before every list, fetch and append

How to change safely:
    - Do not parallelize fetches; memory bounds and failure attribution
      depend on one body at a time
    - Keep relative_path a byte-for-byte prefix strip
"""

from __future__ import annotations

import logging
import time
from contextlib import aclosing
from dataclasses import dataclass
from typing import Any

from ..storage.base import ObjectSource
from .cancellation import AbortSignal
from .errors import ArchiveWriteError, WalkRootViolation
from .walker import PrefixWalker
from .zip_stream import ArchiveStream

logger = logging.getLogger(__name__)


def relative_path(key: str, root: str) -> str:
    """Strip the walk root from a key.

    Args:
        key: Full object key
        root: Walk root prefix

    Returns:
        Archive-relative entry name

    Raises:
        WalkRootViolation: If the key is not strictly under the root
    """
    if not key.startswith(root) or len(key) == len(root):
        raise WalkRootViolation(key, root)
    return key[len(root):]


@dataclass
class AggregateStats:
    """Counters for one aggregation.

    Attributes:
        root: Walk root
        appended: Entries written to the archive
        skipped: Keys whose object had no body
        folders: List calls issued
        bytes_written: Archive bytes handed to the sink
        duration_ms: Wall time of the aggregation
    """

    root: str
    appended: int = 0
    skipped: int = 0
    folders: int = 0
    bytes_written: int = 0
    duration_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "root": self.root,
            "appended": self.appended,
            "skipped": self.skipped,
            "folders": self.folders,
            "bytes_written": self.bytes_written,
            "duration_ms": self.duration_ms,
        }


class ArchiveAggregator:
    """Drives the walker and copies every object into an archive.

    Attributes:
        source: Object source shared by all requests
        delimiter: Hierarchy delimiter

    Example:
        >>> aggregator = ArchiveAggregator(source)
        >>> stats = await aggregator.aggregate("photosession/u1/f1/", archive)
        >>> print(stats.appended)
    """

    def __init__(self, source: ObjectSource, delimiter: str = "/") -> None:
        self.source = source
        self.delimiter = delimiter

    async def aggregate(
        self,
        root: str,
        archive: ArchiveStream,
        signal: AbortSignal | None = None,
    ) -> AggregateStats:
        """Append every object under ``root`` to ``archive`` and finalize it.

        Args:
            root: Walk root
            archive: Open archive stream
            signal: Abort signal; defaults to the archive's own signal

        Returns:
            AggregateStats for the request

        Raises:
            ListingError: If a list call fails
            FetchError: If an object read fails
            ArchiveWriteError: If the archive writer fails
            ArchiveAborted: If the request was aborted
            WalkRootViolation: If the store returned a key outside the root
        """
        signal = signal or archive.signal
        walker = PrefixWalker(self.source, self.delimiter)
        stats = AggregateStats(root=root)
        started = time.monotonic()

        try:
            async with aclosing(walker.walk(root, signal)) as keys:
                async for key in keys:
                    name = relative_path(key, root)

                    signal.raise_if_aborted()
                    content = await self.source.get_content(key)
                    if content is None:
                        logger.warning(f"Skipping object without body: {key}", extra={"key": key})
                        stats.skipped += 1
                        continue

                    logger.info(f"Adding file to archive: {key}", extra={"key": key, "entry": name})
                    if not await archive.append(name, content):
                        signal.raise_if_aborted()
                        raise ArchiveWriteError(
                            f"Archive is {archive.state.value}, cannot append {name}",
                            details={"entry": name},
                        )
                    stats.appended += 1

            signal.raise_if_aborted()
            if not await archive.finalize():
                signal.raise_if_aborted()
                raise ArchiveWriteError(f"Archive is {archive.state.value}, cannot finalize")
        finally:
            stats.folders = walker.folders_listed
            stats.bytes_written = archive.bytes_written
            stats.duration_ms = int((time.monotonic() - started) * 1000)

        logger.info("Archive aggregation complete", extra=stats.to_dict())
        return stats
