"""
In-memory object source implementation for testing.

This module provides a simple in-memory storage backend for:
- Unit tests
- Integration tests
- Local development without a bucket

Listing follows S3 ListObjectsV2 delimiter semantics: keys are returned in
lexicographic order, keys containing the delimiter after the prefix are
rolled up into common prefixes, and a folder marker key equal to the prefix
is returned as a leaf key.

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep interface compatible with ObjectSource protocol
    - Add features to help with testing scenarios
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from datetime import datetime, timezone

from .base import (
    FetchError,
    ListingError,
    ListingPage,
    ObjectContent,
    StorageConnectionError,
)

logger = logging.getLogger(__name__)


@dataclass
class InMemoryObject:
    """Stored object. ``data`` of None models an object without a body."""

    data: bytes | None
    last_modified: datetime


@dataclass
class _InjectedFailure:
    exception: Exception
    after_chunks: int = 0


class InMemoryObjectSource:
    """In-memory implementation of ObjectSource for testing.

    Attributes:
        chunk_size: Size of the chunks yielded from object bodies
        latency: Seconds to sleep at every list/get call (0 still yields
            control to the event loop, like real I/O would)
        list_calls: Prefixes passed to list(), in call order
        get_calls: Keys passed to get_content(), in call order

    Example:
        >>> source = InMemoryObjectSource()
        >>> await source.connect()
        >>> source.put("photosession/u1/f1/a.jpg", b"...")
        >>> page = await source.list("photosession/u1/f1/")
    """

    def __init__(self, chunk_size: int = 64 * 1024, latency: float = 0.0) -> None:
        """Initialize in-memory object source.

        Args:
            chunk_size: Size of body chunks
            latency: Artificial delay per call in seconds
        """
        self.chunk_size = chunk_size
        self.latency = latency
        self.list_calls: list[str] = []
        self.get_calls: list[str] = []
        self._objects: dict[str, InMemoryObject] = {}
        self._connected = False
        self._listing_failures: dict[str, Exception] = {}
        self._fetch_failures: dict[str, _InjectedFailure] = {}
        self._get_hooks: list[Callable[[str], None]] = []

    @property
    def is_connected(self) -> bool:
        """Whether connected (always true after connect())."""
        return self._connected

    async def connect(self) -> None:
        """Connect (no-op for in-memory)."""
        self._connected = True
        logger.debug("InMemoryObjectSource connected")

    async def close(self) -> None:
        """Close the source. Stored objects are kept."""
        self._connected = False
        logger.debug("InMemoryObjectSource closed")

    async def list(self, prefix: str, delimiter: str = "/") -> ListingPage:
        """List one level under a prefix.

        Args:
            prefix: Key prefix
            delimiter: Hierarchy delimiter

        Returns:
            ListingPage with sorted keys and common prefixes
        """
        if not self._connected:
            raise StorageConnectionError("Not connected", prefix=prefix)

        self.list_calls.append(prefix)
        await asyncio.sleep(self.latency)

        failure = self._listing_failures.get(prefix)
        if failure is not None:
            raise failure

        keys: list[str] = []
        prefixes: list[str] = []
        for key in sorted(self._objects):
            if not key.startswith(prefix):
                continue
            rest = key[len(prefix):]
            idx = rest.find(delimiter) if delimiter else -1
            if idx < 0:
                keys.append(key)
                continue
            # Child folder markers ("prefix/sub/") roll up into the common prefix too
            common = prefix + rest[: idx + len(delimiter)]
            if not prefixes or prefixes[-1] != common:
                prefixes.append(common)

        return ListingPage(keys=tuple(keys), prefixes=tuple(prefixes))

    async def get_content(self, key: str) -> ObjectContent | None:
        """Open a stored object's body.

        Args:
            key: Object key

        Returns:
            ObjectContent, or None if the object was stored without a body

        Raises:
            FetchError: If the key is unknown or a failure was injected
        """
        if not self._connected:
            raise StorageConnectionError("Not connected", key=key)

        self.get_calls.append(key)
        for hook in self._get_hooks:
            hook(key)
        await asyncio.sleep(self.latency)

        failure = self._fetch_failures.get(key)
        if failure is not None and failure.after_chunks == 0:
            raise failure.exception

        obj = self._objects.get(key)
        if obj is None:
            raise FetchError(f"No such key: {key}", key=key)
        if obj.data is None:
            return None

        return ObjectContent(
            key=key,
            chunks=self._iter_chunks(obj.data, failure),
            size=len(obj.data),
            last_modified=obj.last_modified,
        )

    async def _iter_chunks(
        self,
        data: bytes,
        failure: _InjectedFailure | None,
    ) -> AsyncIterator[bytes]:
        for index, offset in enumerate(range(0, len(data), self.chunk_size)):
            if failure is not None and index >= failure.after_chunks:
                raise failure.exception
            await asyncio.sleep(0)
            yield data[offset : offset + self.chunk_size]
        if failure is not None:
            raise failure.exception

    # Testing helpers

    def put(
        self,
        key: str,
        data: bytes | None,
        last_modified: datetime | None = None,
    ) -> None:
        """Store an object (testing helper).

        Args:
            key: Object key
            data: Object body, or None for an object without a body
            last_modified: Modification time (defaults to now, UTC)
        """
        self._objects[key] = InMemoryObject(
            data=data,
            last_modified=last_modified or datetime.now(timezone.utc),
        )

    def delete(self, key: str) -> None:
        """Remove an object (testing helper)."""
        self._objects.pop(key, None)

    def keys(self, prefix: str = "") -> list[str]:
        """All stored keys under a prefix, sorted (testing helper)."""
        return sorted(k for k in self._objects if k.startswith(prefix))

    def inject_listing_failure(self, prefix: str, exception: Exception | None = None) -> None:
        """Make list(prefix) raise (testing helper)."""
        self._listing_failures[prefix] = exception or ListingError(
            f"Injected listing failure for {prefix}", prefix=prefix
        )

    def inject_fetch_failure(
        self,
        key: str,
        exception: Exception | None = None,
        after_chunks: int = 0,
    ) -> None:
        """Make get_content(key) fail (testing helper).

        Args:
            key: Object key
            exception: Exception to raise (defaults to FetchError)
            after_chunks: 0 fails the open call itself; N > 0 yields N body
                chunks and then fails mid-body
        """
        self._fetch_failures[key] = _InjectedFailure(
            exception=exception or FetchError(f"Injected fetch failure for {key}", key=key),
            after_chunks=after_chunks,
        )

    def add_get_hook(self, hook: Callable[[str], None]) -> None:
        """Call ``hook(key)`` on every get_content() call (testing helper)."""
        self._get_hooks.append(hook)

    def clear(self) -> None:
        """Drop all objects, call logs and injected failures (testing helper)."""
        self._objects.clear()
        self.list_calls.clear()
        self.get_calls.clear()
        self._listing_failures.clear()
        self._fetch_failures.clear()
        self._get_hooks.clear()
