"""
Prefix walker over a delimiter-listed object store.

Expands virtual folders (common prefixes) through an explicit FIFO queue of
pending prefixes instead of recursion, so hierarchy depth never grows the
call stack.

Invariants:
    - Every leaf key under the root is yielded once per listing that returns it
    - Folder marker keys (ending in the delimiter) are never yielded
    - Every queued prefix strictly extends the prefix it was listed under
    - The abort signal is checked before every list call
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import AsyncIterator

from ..storage.base import ObjectSource
from .cancellation import AbortSignal
from .errors import WalkRootViolation

logger = logging.getLogger(__name__)


class PrefixWalker:
    """Enumerates every leaf key under a prefix.

    Attributes:
        source: Object source to list from
        delimiter: Hierarchy delimiter
        folders_listed: Number of list calls issued by the last walk

    Example:
        >>> walker = PrefixWalker(source)
        >>> async for key in walker.walk("photosession/u1/f1/"):
        ...     print(key)
    """

    def __init__(self, source: ObjectSource, delimiter: str = "/") -> None:
        self.source = source
        self.delimiter = delimiter
        self.folders_listed = 0

    async def walk(
        self,
        prefix: str,
        signal: AbortSignal | None = None,
    ) -> AsyncIterator[str]:
        """Yield leaf keys under ``prefix``, lazily.

        The leaves of one folder are yielded before the next folder is
        listed, so a consumer that fetches between yields keeps the
        list -> fetch -> append order per folder.

        Args:
            prefix: Walk root
            signal: Optional abort signal checked before each list call

        Yields:
            Leaf object keys

        Raises:
            ListingError: If any list call fails
            ArchiveAborted: If the signal is aborted
            WalkRootViolation: If the store returns a prefix that does not
                extend the listed one
        """
        self.folders_listed = 0
        pending: deque[str] = deque([prefix])

        while pending:
            current = pending.popleft()
            if signal is not None:
                signal.raise_if_aborted()

            page = await self.source.list(current, self.delimiter)
            self.folders_listed += 1
            logger.info(
                f"Found {len(page.keys)} items in {current}",
                extra={"prefix": current, "keys": len(page.keys), "folders": len(page.prefixes)},
            )

            for key in page.keys:
                if not key.endswith(self.delimiter):
                    yield key

            for child in page.prefixes:
                if child == current or not child.startswith(current):
                    raise WalkRootViolation(child, current)
                logger.debug(f"Queueing subfolder: {child}", extra={"prefix": child})
                pending.append(child)
